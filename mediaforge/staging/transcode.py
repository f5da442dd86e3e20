from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional, Tuple

import cv2  # type: ignore

from mediaforge.core.errors import ConversionCancelled, ConversionFailed
from mediaforge.core.logging import get_logger
from mediaforge.core.process import run_command

MAX_VIDEO_WIDTH = 1280
VIDEO_CRF = 28
VIDEO_MAXRATE = "1M"
VIDEO_BUFSIZE = "2M"
AUDIO_BITRATE = "128k"
AUDIO_SAMPLE_RATE = 44100


class VideoTranscoder:
    def __init__(self, binary: str = "ffmpeg", *, timeout_s: float | None = 1800.0):
        self.binary = binary
        self.timeout_s = timeout_s
        self.logger = get_logger(component="video_transcoder")

    def compress(self, source: Path, target: Path, *, cancel: Optional[threading.Event] = None) -> Path:
        """Transcode ``source`` to a size-capped H.264/AAC MP4."""
        command = [
            self.binary,
            "-nostdin",
            "-v",
            "error",
            "-y",
            "-i",
            str(source),
            "-c:v",
            "libx264",
            "-preset",
            "veryfast",
            "-crf",
            str(VIDEO_CRF),
            "-maxrate",
            VIDEO_MAXRATE,
            "-bufsize",
            VIDEO_BUFSIZE,
            "-vf",
            f"scale='min({MAX_VIDEO_WIDTH},iw)':-2",
            "-pix_fmt",
            "yuv420p",
            "-c:a",
            "aac",
            "-b:a",
            AUDIO_BITRATE,
            "-movflags",
            "+faststart",
            str(target),
        ]
        result = run_command(command, timeout=self.timeout_s, cancel=cancel)
        if not _produced(target):
            self.logger.error("video_transcode_failed", source=source.name, returncode=result.returncode, stderr=result.stderr.strip())
            raise ConversionFailed(f"could not transcode {source.name} to mp4")
        if not result.ok:
            self.logger.warning("video_transcode_nonzero_exit", source=source.name, returncode=result.returncode)
        return target

    def extract_frame(
        self,
        video: Path,
        target: Path,
        *,
        timestamp_s: float = 1.0,
        cancel: Optional[threading.Event] = None,
    ) -> Path | None:
        """Grab one frame as JPEG; returns ``None`` when no frame could be produced."""
        command = [
            self.binary,
            "-nostdin",
            "-v",
            "error",
            "-ss",
            f"{max(timestamp_s, 0.0):.3f}",
            "-i",
            str(video),
            "-frames:v",
            "1",
            "-q:v",
            "2",
            "-y",
            str(target),
        ]
        try:
            run_command(command, timeout=self.timeout_s, cancel=cancel)
        except ConversionCancelled:
            raise
        except ConversionFailed:
            self.logger.warning("video_frame_extraction_failed", video=video.name)
            target.unlink(missing_ok=True)
            return None

        if _image_dimensions(target) is None:
            self.logger.warning("video_frame_unreadable", video=video.name)
            target.unlink(missing_ok=True)
            return None
        return target


class AudioTranscoder:
    def __init__(self, binary: str = "ffmpeg", *, timeout_s: float | None = 1800.0):
        self.binary = binary
        self.timeout_s = timeout_s
        self.logger = get_logger(component="audio_transcoder")

    def compress(self, source: Path, target: Path, *, cancel: Optional[threading.Event] = None) -> Path:
        command = [
            self.binary,
            "-nostdin",
            "-v",
            "error",
            "-y",
            "-i",
            str(source),
            "-vn",
            "-c:a",
            "libmp3lame",
            "-b:a",
            AUDIO_BITRATE,
            "-ar",
            str(AUDIO_SAMPLE_RATE),
            str(target),
        ]
        result = run_command(command, timeout=self.timeout_s, cancel=cancel)
        if not _produced(target):
            self.logger.error("audio_transcode_failed", source=source.name, returncode=result.returncode, stderr=result.stderr.strip())
            raise ConversionFailed(f"could not transcode {source.name} to mp3")
        return target


def _produced(path: Path) -> bool:
    return path.exists() and path.stat().st_size > 0


def _image_dimensions(image_path: Path) -> Tuple[int, int] | None:
    if not image_path.exists():
        return None
    image = cv2.imread(str(image_path))
    if image is None:
        return None
    height, width = image.shape[:2]
    return width, height


__all__ = ["VideoTranscoder", "AudioTranscoder"]
