from __future__ import annotations

import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence

from mediaforge.conversions.models import ConversionDefinition, MediaDescriptor, MediaType
from mediaforge.conversions.registry import ConversionRegistry
from mediaforge.core.config import Settings
from mediaforge.core.errors import CapabilityMissing, ManipulationFailed
from mediaforge.core.events import ConversionCompleted, EventNotifier
from mediaforge.core.jobs import BaseJobBackend
from mediaforge.core.logging import get_logger
from mediaforge.core.process import raise_if_cancelled
from mediaforge.core.storage import Storage
from mediaforge.core.workdir import random_filename, random_name, rename_in_directory, working_directory
from mediaforge.staging.image import ImageTransformer
from mediaforge.staging.office import OfficeToPdfBridge
from mediaforge.staging.pdf import PdfRasterizer
from mediaforge.staging.transcode import AudioTranscoder, VideoTranscoder

THUMB_PDF = "thumb.pdf"
THUMB_MP4 = "thumb.mp4"
THUMB_MP3 = "thumb.mp3"


@dataclass(slots=True)
class StagingOutcome:
    """Renderable image produced by staging, or the reason there is none."""

    source: Optional[Path]
    reason: Optional[str] = None

    @classmethod
    def renderable(cls, source: Path) -> "StagingOutcome":
        return cls(source=source)

    @classmethod
    def without_source(cls, reason: str) -> "StagingOutcome":
        return cls(source=None, reason=reason)


Stager = Callable[[MediaDescriptor, Path, Path, Optional[threading.Event]], StagingOutcome]


class DerivedFileOrchestrator:
    """Creates the derived files declared for a media item's collection."""

    def __init__(
        self,
        settings: Settings,
        storage: Storage,
        events: EventNotifier,
        jobs: BaseJobBackend,
        registry: ConversionRegistry,
        *,
        image_transformer: ImageTransformer,
        pdf_rasterizer: PdfRasterizer,
        office_bridge: OfficeToPdfBridge,
        video_transcoder: VideoTranscoder,
        audio_transcoder: AudioTranscoder,
    ):
        self.settings = settings
        self.storage = storage
        self.events = events
        self.jobs = jobs
        self.registry = registry
        self.image_transformer = image_transformer
        self.pdf_rasterizer = pdf_rasterizer
        self.office_bridge = office_bridge
        self.video_transcoder = video_transcoder
        self.audio_transcoder = audio_transcoder
        self.logger = get_logger(component="derived_files")
        self._stagers: Dict[MediaType, Stager] = {
            MediaType.image: self._stage_image,
            MediaType.pdf: self._stage_pdf,
            MediaType.word: self._stage_office_document,
            MediaType.ppt: self._stage_office_document,
            MediaType.video: self._stage_video,
            MediaType.audio: self._stage_audio,
        }

    def create_derived_files(self, media: MediaDescriptor, *, cancel: Optional[threading.Event] = None) -> None:
        """Run the non-queued conversions now and hand the queued ones to the job backend.

        Raises:
            CapabilityMissing: a document needs rasterizing and no rasterizer is installed.
            ConversionFailed: a staging conversion produced no usable output.
            ManipulationFailed: an image manipulation errored.
        """
        if media.type == MediaType.other:
            return

        if media.type.needs_rasterizer and not self.pdf_rasterizer.is_available():
            raise CapabilityMissing(f"cannot rasterize {media.type.value} media {media.id}: rasterizer unavailable")

        conversion_set = self.registry.conversion_set_for(media.collection_name)

        self.perform_conversions(conversion_set.nonqueued, media, cancel=cancel)

        if conversion_set.queued:
            self.jobs.enqueue(conversion_set.queued, media, queue_name=self.settings.queue_name)

    def perform_conversions(
        self,
        conversions: Sequence[ConversionDefinition],
        media: MediaDescriptor,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        if not conversions:
            return

        stager = self._stagers.get(media.type)
        if stager is None:
            self.logger.info("no_staging_for_media_type", media_id=media.id, media_type=media.type.value)
            return

        logger = self.logger.bind(media_id=media.id, media_type=media.type.value)
        logger.info("derived_files_started", conversions=[conversion.name for conversion in conversions])

        with working_directory(self.settings.temp_root) as workdir:
            original = workdir / random_filename(media.extension)
            self.storage.copy_from_library(media, original)

            outcome = stager(media, original, workdir, cancel)
            if outcome.source is None:
                self._complete_without_artifacts(conversions, media, outcome.reason)
            else:
                self._fan_out(conversions, media, outcome.source, cancel)

        logger.info("derived_files_finished")

    def perform_conversion(self, media: MediaDescriptor, conversion: ConversionDefinition, source: Path) -> Path:
        target = source.with_name(f"{random_name()}{conversion.name}{source.suffix}")
        shutil.copyfile(source, target)

        for manipulation in conversion.manipulations:
            self.image_transformer.apply(manipulation, target)

        return target

    def _fan_out(
        self,
        conversions: Sequence[ConversionDefinition],
        media: MediaDescriptor,
        source: Path,
        cancel: Optional[threading.Event],
    ) -> None:
        source_extension = source.suffix.lstrip(".")
        failed: list[str] = []

        for conversion in conversions:
            raise_if_cancelled(cancel)
            try:
                result = self.perform_conversion(media, conversion, source)
            except ManipulationFailed as exc:
                if not self.settings.isolate_conversion_failures:
                    raise ManipulationFailed(str(exc), conversions=[conversion.name]) from exc
                self.logger.warning("conversion_failed", media_id=media.id, conversion=conversion.name, error=str(exc))
                failed.append(conversion.name)
                continue

            renamed = rename_in_directory(result, f"{conversion.name}.{conversion.result_extension(source_extension)}")
            self.storage.copy_to_library(renamed, media, overwrite=True)
            self.events.publish(ConversionCompleted(media=media, conversion=conversion))

        if failed:
            raise ManipulationFailed(f"conversions failed for media {media.id}: {', '.join(failed)}", conversions=failed)

    def _complete_without_artifacts(
        self,
        conversions: Sequence[ConversionDefinition],
        media: MediaDescriptor,
        reason: Optional[str],
    ) -> None:
        self.logger.info(
            "derived_files_without_image",
            media_id=media.id,
            reason=reason,
            notify=self.settings.notify_without_artifact,
        )
        if not self.settings.notify_without_artifact:
            return
        for conversion in conversions:
            self.events.publish(ConversionCompleted(media=media, conversion=conversion))

    def _stage_image(self, media, original, workdir, cancel) -> StagingOutcome:
        return StagingOutcome.renderable(original)

    def _stage_pdf(self, media, original, workdir, cancel) -> StagingOutcome:
        return StagingOutcome.renderable(self.pdf_rasterizer.rasterize_first_page(original, cancel=cancel))

    def _stage_office_document(self, media, original, workdir, cancel) -> StagingOutcome:
        pdf = self.office_bridge.convert(original, cancel=cancel)
        self.storage.copy_to_library(pdf, media, overwrite=True, name=THUMB_PDF)
        return StagingOutcome.renderable(self.pdf_rasterizer.rasterize_first_page(pdf, cancel=cancel))

    def _stage_video(self, media, original, workdir, cancel) -> StagingOutcome:
        compressed = self.video_transcoder.compress(original, workdir / random_filename("mp4"), cancel=cancel)
        self.storage.copy_to_library(compressed, media, overwrite=True, name=THUMB_MP4)

        frame = self.video_transcoder.extract_frame(
            compressed,
            workdir / random_filename("jpg"),
            timestamp_s=self.settings.frame_timestamp_s,
            cancel=cancel,
        )
        if frame is None:
            return StagingOutcome.without_source("frame_extraction_failed")
        return StagingOutcome.renderable(frame)

    def _stage_audio(self, media, original, workdir, cancel) -> StagingOutcome:
        compressed = self.audio_transcoder.compress(original, workdir / random_filename("mp3"), cancel=cancel)
        self.storage.copy_to_library(compressed, media, overwrite=True, name=THUMB_MP3)
        return StagingOutcome.without_source("audio_has_no_image")


__all__ = ["DerivedFileOrchestrator", "StagingOutcome", "THUMB_PDF", "THUMB_MP4", "THUMB_MP3"]
