from __future__ import annotations

from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Callable, Optional, Sequence

from redis import Redis
from rq import Queue

from mediaforge.conversions.models import ConversionDefinition, MediaDescriptor

from .config import get_settings
from .logging import get_logger

DEFAULT_QUEUE_NAME = "mediaforge-conversions"

QueuedRunner = Callable[[Sequence[ConversionDefinition], MediaDescriptor], None]


class BaseJobBackend(ABC):
    @abstractmethod
    def enqueue(
        self,
        conversions: Sequence[ConversionDefinition],
        media: MediaDescriptor,
        queue_name: Optional[str] = None,
    ) -> None: ...


class ImmediateJobBackend(BaseJobBackend):
    """Runs queued conversions on the caller; meant for development and tests."""

    def __init__(self, runner: QueuedRunner | None = None):
        self.runner = runner

    def enqueue(
        self,
        conversions: Sequence[ConversionDefinition],
        media: MediaDescriptor,
        queue_name: Optional[str] = None,
    ) -> None:
        runner = self.runner
        if runner is None:
            from mediaforge.workers.tasks import perform_queued_conversions

            runner = perform_queued_conversions
        runner(tuple(conversions), media)


class RQJobBackend(BaseJobBackend):
    def __init__(self, connection: Redis, *, default_queue: str = DEFAULT_QUEUE_NAME, queue_factory=Queue):
        self.connection = connection
        self.default_queue = default_queue
        self._queue_factory = queue_factory
        self.logger = get_logger(component="job_backend", backend="rq")

    def enqueue(
        self,
        conversions: Sequence[ConversionDefinition],
        media: MediaDescriptor,
        queue_name: Optional[str] = None,
    ) -> None:
        from mediaforge.workers.tasks import perform_queued_conversions

        name = queue_name or self.default_queue
        queue = self._queue_factory(name, connection=self.connection)
        job = queue.enqueue(perform_queued_conversions, tuple(conversions), media)
        self.logger.info(
            "conversions_enqueued",
            queue=name,
            job_id=getattr(job, "id", None),
            media_id=media.id,
            conversions=[conversion.name for conversion in conversions],
        )


@lru_cache()
def get_job_backend() -> BaseJobBackend:
    settings = get_settings()
    backend = settings.normalized_job_backend
    if backend == "immediate":
        return ImmediateJobBackend()
    if backend == "rq":  # pragma: no cover - requires redis
        connection = Redis.from_url(settings.redis_url)
        return RQJobBackend(connection)
    raise ValueError(f"Unsupported job backend: {settings.job_queue_backend}")


__all__ = [
    "BaseJobBackend",
    "ImmediateJobBackend",
    "RQJobBackend",
    "DEFAULT_QUEUE_NAME",
    "get_job_backend",
]
