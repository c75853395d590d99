"""
Queue statistics snapshot types.
"""

from pydantic import BaseModel, Field


class QueueDepth(BaseModel):
    """Job counts for one queue."""

    pending: int = 0
    scheduled: int = 0
    processing: int = 0


class QueueStats(BaseModel):
    """
    Point-in-time view of all queues.

    Counts may lag concurrent transitions slightly; they are read without
    blocking producers or workers.
    """

    queues: dict[str, QueueDepth] = Field(default_factory=dict)
    dead_letter_count: int = 0

    def depth(self, queue_name: str) -> QueueDepth:
        return self.queues.get(queue_name, QueueDepth())
