from __future__ import annotations

import shutil
import threading
from pathlib import Path
from typing import Optional

from mediaforge.core.errors import CapabilityMissing, ConversionFailed
from mediaforge.core.logging import get_logger
from mediaforge.core.process import run_command


class PdfRasterizer:
    """Renders the first page of a PDF to JPEG with poppler's ``pdftoppm``."""

    def __init__(self, binary: str = "pdftoppm", *, resolution_dpi: int = 150, timeout_s: float | None = 600.0):
        self.binary = binary
        self.resolution_dpi = resolution_dpi
        self.timeout_s = timeout_s
        self.logger = get_logger(component="pdf_rasterizer")

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def rasterize_first_page(self, pdf_path: Path, *, cancel: Optional[threading.Event] = None) -> Path:
        if not self.is_available():
            raise CapabilityMissing(f"{self.binary} is not installed")

        output_prefix = pdf_path.with_suffix("")
        image_path = output_prefix.with_suffix(".jpg")
        command = [
            self.binary,
            "-f",
            "1",
            "-l",
            "1",
            "-singlefile",
            "-jpeg",
            "-r",
            str(self.resolution_dpi),
            str(pdf_path),
            str(output_prefix),
        ]
        result = run_command(command, timeout=self.timeout_s, cancel=cancel)
        if not image_path.exists():
            self.logger.error("pdf_rasterize_failed", path=str(pdf_path), returncode=result.returncode, stderr=result.stderr.strip())
            raise ConversionFailed(f"could not rasterize {pdf_path.name}")
        return image_path


__all__ = ["PdfRasterizer"]
