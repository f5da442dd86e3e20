from __future__ import annotations

from typing import Sequence

from redis import Redis
from rq import Queue, Worker

from mediaforge.conversions.models import ConversionDefinition, MediaDescriptor
from mediaforge.core.config import get_settings
from mediaforge.core.errors import DerivedFileError
from mediaforge.core.jobs import DEFAULT_QUEUE_NAME
from mediaforge.core.logging import configure_logging, get_logger
from mediaforge.services.container import build_orchestrator


def perform_queued_conversions(conversions: Sequence[ConversionDefinition], media: MediaDescriptor) -> None:
    """Entry-point executed by the RQ worker."""

    settings = get_settings()
    logger = get_logger(job="perform_queued_conversions", media_id=media.id)

    orchestrator = build_orchestrator(settings)
    try:
        orchestrator.perform_conversions(list(conversions), media)
    except DerivedFileError:
        logger.exception("queued_conversions_failed", conversions=[conversion.name for conversion in conversions])
        raise


def run_worker(*, worker_factory=Worker, burst: bool = False) -> None:
    """Configure logging once and process the conversion queue until stopped."""

    settings = get_settings()
    configure_logging(settings.log_level)
    connection = Redis.from_url(settings.redis_url)
    queue = Queue(settings.queue_name or DEFAULT_QUEUE_NAME, connection=connection)
    get_logger(component="worker").info("worker_starting", queue=queue.name)
    worker_factory([queue], connection=connection).work(burst=burst)


__all__ = ["perform_queued_conversions", "run_worker"]
