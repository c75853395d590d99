"""
Built-in job handlers.

Small handlers for smoke-testing a deployment. Point
``JOBCORE_WORKER_HANDLERS`` at your own registry for real work.
"""

import asyncio
import logging

from jobcore.exceptions import PermanentHandlerError, TransientHandlerError
from jobcore.types.job import JobContext, JobResult
from jobcore.worker.handlers import HandlerRegistry

logger = logging.getLogger(__name__)

registry = HandlerRegistry()


@registry.register("echo")
async def handle_echo(context: JobContext) -> JobResult:
    """
    Echo handler for testing.

    Returns the payload decoded as text.
    """
    logger.info(
        "Echo job executing",
        extra={"job_id": str(context.job_id), "attempt": context.attempt},
    )
    return JobResult(
        success=True,
        output={"echo": context.payload.decode("utf-8", errors="replace")},
    )


@registry.register("sleep", timeout=300)
async def handle_sleep(context: JobContext) -> dict:
    """
    Sleep handler for testing delays and deadlines.

    Payload is the number of seconds to sleep, as text.
    """
    try:
        duration = float(context.payload or b"1")
    except ValueError as e:
        raise PermanentHandlerError(f"Payload is not a duration: {context.payload!r}") from e

    logger.info(
        "Sleep job starting",
        extra={"job_id": str(context.job_id), "duration": duration},
    )
    await asyncio.sleep(duration)
    return {"slept_for": duration}


@registry.register("failing_job")
async def handle_failing_job(context: JobContext) -> None:
    """
    Handler that always fails - for testing retry logic.
    """
    logger.info(
        "Failing job executing (will fail)",
        extra={"job_id": str(context.job_id), "attempt": context.attempt},
    )
    raise TransientHandlerError(f"Intentional failure on attempt {context.attempt}")
