"""Client for the shared office-document to PDF conversion service.

The service accepts a single request at a time across the whole deployment
and sometimes answers a failed conversion with a near-empty body and a
success status. Every call is therefore wrapped in the exclusive lock and
its output size is validated, with a bounded number of retries.
"""

from __future__ import annotations

import mimetypes
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import httpx

from mediaforge.core.errors import ConversionFailed
from mediaforge.core.locking import ExclusiveLock
from mediaforge.core.logging import get_logger
from mediaforge.core.retry import RetryExhausted, fixed_backoff, retry

MIN_PDF_BYTES = 1000


class OfficeToPdfBridge:
    def __init__(
        self,
        url: str,
        lock: ExclusiveLock,
        *,
        timeout_s: float = 120.0,
        max_attempts: int = 10,
        retry_delay_s: float = 5.5,
        min_bytes: int = MIN_PDF_BYTES,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = url
        self.lock = lock
        self.timeout_s = timeout_s
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s
        self.min_bytes = min_bytes
        self._transport = transport
        self._sleep = sleep
        self.logger = get_logger(component="office_bridge", url=url)

    def convert(self, document_path: Path, *, cancel: Optional[threading.Event] = None) -> Path:
        """Convert ``document_path`` and write the PDF beside it.

        Raises:
            ConversionFailed: every attempt returned an error or an undersized body.
        """

        def _attempt(attempt: int) -> bytes | None:
            self.logger.debug("office_bridge_attempt", attempt=attempt, document=document_path.name)
            with self.lock.hold(cancel=cancel):
                return self._request(document_path)

        try:
            content = retry(
                _attempt,
                max_attempts=self.max_attempts,
                backoff=fixed_backoff(self.retry_delay_s),
                is_success=self._is_valid,
                retry_on=(httpx.HTTPError,),
                on_rejected=self._log_rejected,
                sleep=self._sleep,
                cancel=cancel,
            )
        except RetryExhausted as exc:
            self.logger.error("office_bridge_exhausted", attempts=exc.attempts, document=document_path.name)
            raise ConversionFailed(
                f"office bridge could not convert {document_path.name} after {exc.attempts} attempts"
            ) from exc

        pdf_path = document_path.with_suffix(".pdf")
        pdf_path.write_bytes(content)
        return pdf_path

    def _request(self, document_path: Path) -> bytes | None:
        content_type = mimetypes.guess_type(document_path.name)[0] or "application/octet-stream"
        with httpx.Client(timeout=self.timeout_s, transport=self._transport) as client:
            with document_path.open("rb") as handle:
                response = client.post(self.url, files={"file": (document_path.name, handle, content_type)})
        if response.is_success:
            return response.content
        self.logger.warning("office_bridge_http_error", status_code=response.status_code)
        return None

    def _is_valid(self, content: bytes | None) -> bool:
        return content is not None and len(content) >= self.min_bytes

    def _log_rejected(self, attempt: int, content: bytes | None, error: BaseException | None) -> None:
        self.logger.warning(
            "office_bridge_attempt_rejected",
            attempt=attempt,
            size_bytes=None if content is None else len(content),
            error=None if error is None else str(error),
        )


__all__ = ["OfficeToPdfBridge", "MIN_PDF_BYTES"]
