"""
Unit tests for job, batch and API types.
"""

import json
from datetime import UTC, datetime
from uuid import uuid4

from jobcore.constants import PRIORITY_SCORE_FACTOR, JobStatus
from jobcore.types.api import JobResponse
from jobcore.types.batch import BatchView
from jobcore.types.job import JobContext, JobSpec, JobView, compute_score

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def make_view(**overrides) -> JobView:
    fields = {
        "id": uuid4(),
        "queue_name": "default",
        "job_type": "echo",
        "payload": b"hello",
        "priority": 5,
        "status": JobStatus.PENDING,
        "score": compute_score(NOW, 5),
        "enqueued_at": NOW,
        "created_at": NOW,
        "updated_at": NOW,
    }
    fields.update(overrides)
    return JobView(**fields)


class TestJobTypes:
    """Tests for job models."""

    def test_score_prefers_priority_over_age(self):
        """A week-old low priority job still sorts behind a fresh high one."""
        week_old = datetime(2025, 12, 25, tzinfo=UTC)

        assert compute_score(NOW, 6) < compute_score(week_old, 5)
        assert compute_score(NOW, 5) - compute_score(NOW, 6) == PRIORITY_SCORE_FACTOR

    def test_spec_encodes_text_payload(self):
        assert JobSpec(job_type="echo", payload="héllo").payload == "héllo".encode()

    def test_view_terminal_and_remaining(self):
        running = make_view(status=JobStatus.PROCESSING, attempts=1, max_attempts=3)
        failed = make_view(status=JobStatus.FAILED, attempts=3, max_attempts=3)

        assert not running.is_terminal
        assert running.remaining_attempts == 2
        assert failed.is_terminal
        assert failed.remaining_attempts == 0

    def test_context_last_attempt(self):
        context = JobContext(
            job_id=uuid4(),
            queue_name="default",
            job_type="echo",
            payload=b"",
            attempt=3,
            max_attempts=3,
            worker_id="w-1",
        )

        assert context.is_last_attempt
        assert context.remaining_attempts == 0


class TestBatchView:
    def test_progress(self):
        batch = BatchView(
            id=uuid4(), queue_name="default", total=10, completed=7, failed=2, created_at=NOW
        )

        assert batch.pending == 1
        assert not batch.done


class TestJobResponse:
    def test_payload_rendered_as_base64(self):
        """Opaque payload bytes survive JSON as base64."""
        response = JobResponse.from_view(make_view(payload=b"\x00\xffhello"))

        data = json.loads(response.model_dump_json())

        assert data["payload"] == "AP9oZWxsbw=="
        assert data["status"] == "pending"
