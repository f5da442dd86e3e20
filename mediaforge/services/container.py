from __future__ import annotations

from typing import Optional

from mediaforge.conversions.registry import ConversionRegistry
from mediaforge.core.config import Settings
from mediaforge.core.events import EventNotifier, LocalEventNotifier
from mediaforge.core.jobs import BaseJobBackend, ImmediateJobBackend, get_job_backend
from mediaforge.core.locking import ExclusiveLock, get_exclusive_lock
from mediaforge.core.storage import Storage, get_storage
from mediaforge.staging.image import ImageTransformer
from mediaforge.staging.office import OfficeToPdfBridge
from mediaforge.staging.pdf import PdfRasterizer
from mediaforge.staging.transcode import AudioTranscoder, VideoTranscoder

from .derived_files import DerivedFileOrchestrator


def build_registry(settings: Settings) -> ConversionRegistry:
    registry = ConversionRegistry()
    if settings.conversions_file:
        registry.load_file(settings.conversions_file)
    return registry


def build_orchestrator(
    settings: Settings,
    *,
    registry: Optional[ConversionRegistry] = None,
    storage: Optional[Storage] = None,
    events: Optional[EventNotifier] = None,
    jobs: Optional[BaseJobBackend] = None,
    lock: Optional[ExclusiveLock] = None,
) -> DerivedFileOrchestrator:
    """Wire an orchestrator from settings; any collaborator may be overridden."""
    office_bridge = OfficeToPdfBridge(
        settings.office_bridge_url,
        lock or get_exclusive_lock(settings),
        timeout_s=settings.office_bridge_timeout_s,
        max_attempts=settings.office_bridge_max_attempts,
        retry_delay_s=settings.office_bridge_retry_delay_s,
        min_bytes=settings.office_bridge_min_bytes,
    )
    backend = jobs or get_job_backend()
    orchestrator = DerivedFileOrchestrator(
        settings,
        storage or get_storage(settings),
        events or LocalEventNotifier(),
        backend,
        registry if registry is not None else build_registry(settings),
        image_transformer=ImageTransformer(watermark_root=settings.library_root),
        pdf_rasterizer=PdfRasterizer(
            settings.pdftoppm_binary,
            resolution_dpi=settings.pdf_resolution_dpi,
            timeout_s=settings.process_timeout_s,
        ),
        office_bridge=office_bridge,
        video_transcoder=VideoTranscoder(settings.ffmpeg_binary, timeout_s=settings.transcode_timeout_s),
        audio_transcoder=AudioTranscoder(settings.ffmpeg_binary, timeout_s=settings.transcode_timeout_s),
    )
    if isinstance(backend, ImmediateJobBackend) and backend.runner is None:
        # Inline jobs run on this orchestrator and its storage and listeners.
        orchestrator.jobs = ImmediateJobBackend(runner=orchestrator.perform_conversions)
    return orchestrator


__all__ = ["build_orchestrator", "build_registry"]
