"""
Request dependencies for the ops API.
"""

from typing import Annotated

from fastapi import Depends, Request

from jobcore.observability.metrics import QueueMetricsExporter
from jobcore.queue import JobQueue


def get_queue(request: Request) -> JobQueue:
    """The JobQueue the application was built with."""
    return request.app.state.queue


def get_exporter(request: Request) -> QueueMetricsExporter:
    return request.app.state.exporter


Queue = Annotated[JobQueue, Depends(get_queue)]
Exporter = Annotated[QueueMetricsExporter, Depends(get_exporter)]
