"""
Job handler registry.

Job handlers must be idempotent - they may be executed more than once for
the same job when a worker crashes or a status write is lost.
"""

import importlib
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from jobcore.types.job import JobContext

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[Any]]


@dataclass(frozen=True)
class HandlerSpec:
    """A registered handler and its execution deadline in seconds."""

    job_type: str
    handler: JobHandler
    timeout: float | None = None


class HandlerRegistry:
    """
    Mapping of job type to handler.

    Built at startup, then frozen when a worker pool takes it. A frozen
    registry rejects further registrations.

    Example:
        registry = HandlerRegistry()

        @registry.register("send_email", timeout=30)
        async def send_email(context: JobContext) -> dict:
            ...
    """

    def __init__(self) -> None:
        self._handlers: dict[str, HandlerSpec] = {}
        self._frozen = False

    def register(
        self,
        job_type: str,
        timeout: float | None = None,
    ) -> Callable[[JobHandler], JobHandler]:
        """
        Decorator to register a job handler.

        Args:
            job_type: The job type this handler processes.
            timeout: Seconds the handler may run before it is cancelled.

        Returns:
            Decorator function.
        """

        def decorator(handler: JobHandler) -> JobHandler:
            self.add(job_type, handler, timeout=timeout)
            return handler

        return decorator

    def add(self, job_type: str, handler: JobHandler, timeout: float | None = None) -> None:
        if self._frozen:
            raise RuntimeError(
                f"Cannot register {job_type!r}: handler registry is frozen"
            )
        if job_type in self._handlers:
            raise ValueError(f"Handler already registered for job type: {job_type}")
        if timeout is not None and timeout <= 0:
            raise ValueError("Handler timeout must be positive")

        self._handlers[job_type] = HandlerSpec(job_type, handler, timeout)
        logger.info(f"Registered handler for job type: {job_type}")

    def freeze(self) -> "HandlerRegistry":
        """Stop accepting registrations. Returns self."""
        if not self._frozen:
            self._frozen = True
            self._handlers = MappingProxyType(dict(self._handlers))
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, job_type: str) -> HandlerSpec | None:
        """
        Get the handler for a job type.

        Returns:
            The handler spec or None if not registered.
        """
        return self._handlers.get(job_type)

    def job_types(self) -> list[str]:
        """List all registered job types."""
        return list(self._handlers)

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

    def __iter__(self) -> Iterator[HandlerSpec]:
        return iter(self._handlers.values())

    def __len__(self) -> int:
        return len(self._handlers)


def load_registry(target: str) -> HandlerRegistry:
    """
    Import a registry from a ``package.module:attribute`` path.

    Raises:
        ValueError: If the path is malformed.
        TypeError: If the attribute is not a HandlerRegistry.
    """
    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got {target!r}")

    registry = getattr(importlib.import_module(module_name), attribute)
    if not isinstance(registry, HandlerRegistry):
        raise TypeError(f"{target} is not a HandlerRegistry")
    return registry
