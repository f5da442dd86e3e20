from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Optional

import cv2
import numpy as np
import pytest

from mediaforge.conversions.models import ConversionDefinition, MediaDescriptor
from mediaforge.conversions.registry import ConversionRegistry
from mediaforge.core.config import get_settings
from mediaforge.core.errors import CapabilityMissing, ConversionFailed
from mediaforge.core.events import ConversionCompleted, EventNotifier
from mediaforge.core.jobs import BaseJobBackend, get_job_backend
from mediaforge.core.locking import ExclusiveLock
from mediaforge.core.storage import LocalStorage
from mediaforge.services.derived_files import DerivedFileOrchestrator
from mediaforge.staging.image import ImageTransformer
from mediaforge.staging.office import OfficeToPdfBridge
from mediaforge.staging.pdf import PdfRasterizer
from mediaforge.staging.transcode import AudioTranscoder, VideoTranscoder


@pytest.fixture(autouse=True)
def configure_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("MEDIAFORGE_ENV", "test")
    monkeypatch.setenv("MEDIAFORGE_LOG_LEVEL", "debug")
    monkeypatch.setenv("MEDIAFORGE_LIBRARY_ROOT", str(tmp_path / "library"))
    monkeypatch.setenv("MEDIAFORGE_TEMP_ROOT", str(tmp_path / "temp"))
    monkeypatch.setenv("MEDIAFORGE_LOCK_PATH", str(tmp_path / "locks" / "office-bridge.lock"))
    monkeypatch.setenv("MEDIAFORGE_JOB_BACKEND", "inline")
    monkeypatch.setenv("MEDIAFORGE_OFFICE_BRIDGE_URL", "http://office-bridge.test/convert")
    monkeypatch.delenv("MEDIAFORGE_QUEUE", raising=False)
    monkeypatch.delenv("MEDIAFORGE_QUEUE_NAME", raising=False)

    get_settings.cache_clear()
    get_job_backend.cache_clear()
    yield
    get_job_backend.cache_clear()
    get_settings.cache_clear()


def write_image(path: Path, width: int = 64, height: int = 48, color=(0, 128, 255)) -> Path:
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[:] = color
    path.parent.mkdir(parents=True, exist_ok=True)
    assert cv2.imwrite(str(path), image)
    return path


@pytest.fixture()
def image_file() -> Callable[..., Path]:
    return write_image


@pytest.fixture()
def gif_pixel() -> bytes:
    """A 1x1 single-colour GIF89a."""
    return (
        b"GIF89a\x01\x00\x01\x00\x80\x00\x00\xff\xff\xff\x00\x00\x00"
        b"!\xf9\x04\x00\x00\x00\x00\x00,\x00\x00\x00\x00\x01\x00\x01\x00\x00\x02\x02D\x01\x00;"
    )


class RecordingStorage(LocalStorage):
    def __init__(self, base_path: Path):
        super().__init__(base_path)
        self.calls: list[tuple[str, str]] = []

    def copy_from_library(self, media, destination):
        self.calls.append(("copy_from_library", media.id))
        return super().copy_from_library(media, destination)

    def copy_to_library(self, local_path, media, *, overwrite=True, name=None):
        self.calls.append(("copy_to_library", name or local_path.name))
        return super().copy_to_library(local_path, media, overwrite=overwrite, name=name)

    def stored_names(self, media: MediaDescriptor) -> set[str]:
        directory = self.conversions_directory(media)
        if not directory.exists():
            return set()
        return {path.name for path in directory.iterdir()}


class RecordingNotifier(EventNotifier):
    def __init__(self):
        self.events: list[ConversionCompleted] = []

    def publish(self, event: ConversionCompleted) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [event.conversion.name for event in self.events]


class RecordingJobs(BaseJobBackend):
    def __init__(self):
        self.enqueued: list[tuple[tuple[ConversionDefinition, ...], MediaDescriptor, Optional[str]]] = []

    def enqueue(self, conversions, media, queue_name=None):
        self.enqueued.append((tuple(conversions), media, queue_name))


class SpyLock(ExclusiveLock):
    def __init__(self):
        self.history: list[str] = []
        self.held = False

    def acquire(self, *, cancel=None):
        assert not self.held, "lock acquired twice"
        self.held = True
        self.history.append("acquire")

    def release(self):
        assert self.held, "release without acquire"
        self.held = False
        self.history.append("release")


class FakeRasterizer(PdfRasterizer):
    def __init__(self, available: bool = True):
        super().__init__("pdftoppm")
        self.available = available
        self.calls: list[Path] = []

    def is_available(self) -> bool:
        return self.available

    def rasterize_first_page(self, pdf_path, *, cancel=None):
        if not self.available:
            raise CapabilityMissing("rasterizer unavailable")
        self.calls.append(pdf_path)
        return write_image(pdf_path.with_suffix(".jpg"))


class FakeVideoTranscoder(VideoTranscoder):
    def __init__(self, *, compress_ok: bool = True, frame_ok: bool = True):
        super().__init__("ffmpeg")
        self.compress_ok = compress_ok
        self.frame_ok = frame_ok

    def compress(self, source, target, *, cancel=None):
        if not self.compress_ok:
            raise ConversionFailed("could not transcode")
        target.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64)
        return target

    def extract_frame(self, video, target, *, timestamp_s=1.0, cancel=None):
        if not self.frame_ok:
            return None
        return write_image(target)


class FakeAudioTranscoder(AudioTranscoder):
    def __init__(self, *, compress_ok: bool = True):
        super().__init__("ffmpeg")
        self.compress_ok = compress_ok

    def compress(self, source, target, *, cancel=None):
        if not self.compress_ok:
            raise ConversionFailed("could not transcode")
        target.write_bytes(b"ID3" + b"\x00" * 64)
        return target


@pytest.fixture()
def settings():
    return get_settings()


@pytest.fixture()
def storage(settings) -> RecordingStorage:
    return RecordingStorage(Path(settings.library_root))


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def jobs() -> RecordingJobs:
    return RecordingJobs()


@pytest.fixture()
def spy_lock() -> SpyLock:
    return SpyLock()


@pytest.fixture()
def make_orchestrator(settings, storage, notifier, jobs, spy_lock):
    def _make(
        *definitions: ConversionDefinition,
        settings_overrides: dict | None = None,
        rasterizer: PdfRasterizer | None = None,
        office_bridge: OfficeToPdfBridge | None = None,
        video: VideoTranscoder | None = None,
        audio: AudioTranscoder | None = None,
        image_transformer: ImageTransformer | None = None,
    ) -> DerivedFileOrchestrator:
        active = settings.model_copy(update=settings_overrides or {})
        bridge = office_bridge or OfficeToPdfBridge(active.office_bridge_url, spy_lock, sleep=lambda _: None)
        return DerivedFileOrchestrator(
            active,
            storage,
            notifier,
            jobs,
            ConversionRegistry(definitions),
            image_transformer=image_transformer or ImageTransformer(),
            pdf_rasterizer=rasterizer or FakeRasterizer(),
            office_bridge=bridge,
            video_transcoder=video or FakeVideoTranscoder(),
            audio_transcoder=audio or FakeAudioTranscoder(),
        )

    return _make


@pytest.fixture()
def add_media(storage, tmp_path):
    """Place an original in the library and return its descriptor."""

    def _add(file_name: str, payload: bytes | None = None, *, media_id: str = "media-1", collection: str = "default"):
        media = MediaDescriptor.for_file(media_id, file_name, collection_name=collection)
        source = tmp_path / "uploads" / media_id / file_name
        if payload is None:
            write_image(source)
        else:
            source.parent.mkdir(parents=True, exist_ok=True)
            source.write_bytes(payload)
        storage.add_original(source, media)
        return media

    return _add


@pytest.fixture()
def fakes():
    return {
        "rasterizer": FakeRasterizer,
        "video": FakeVideoTranscoder,
        "audio": FakeAudioTranscoder,
    }


def leftover_directories(temp_root: Path) -> list[Path]:
    if not temp_root.exists():
        return []
    return list(temp_root.iterdir())


@pytest.fixture()
def temp_leftovers(settings) -> Callable[[], list[Path]]:
    return lambda: leftover_directories(Path(settings.temp_root))


@pytest.fixture()
def cancel_event() -> threading.Event:
    return threading.Event()
