from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from mediaforge.core.errors import ConversionCancelled, ConversionFailed
from mediaforge.staging.office import OfficeToPdfBridge


@pytest.fixture()
def document(tmp_path: Path) -> Path:
    path = tmp_path / "work" / "3f2a.docx"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"PK\x03\x04 word document")
    return path


def _bridge(lock, handler, **kwargs) -> OfficeToPdfBridge:
    delays: list[float] = kwargs.pop("delays", [])
    return OfficeToPdfBridge(
        "http://office-bridge.test/convert",
        lock,
        transport=httpx.MockTransport(handler),
        sleep=delays.append,
        **kwargs,
    )


def test_valid_response_is_written_next_to_document(spy_lock, document):
    uploads: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        uploads.append(request.read())
        return httpx.Response(200, content=b"%PDF" + b"x" * 2000)

    pdf = _bridge(spy_lock, handler).convert(document)

    assert pdf == document.with_suffix(".pdf")
    assert pdf.read_bytes().startswith(b"%PDF")
    assert len(uploads) == 1
    assert b"word document" in uploads[0]
    assert b'filename="3f2a.docx"' in uploads[0]
    assert spy_lock.history == ["acquire", "release"]


def test_undersized_responses_are_retried_with_fixed_delay(spy_lock, document):
    sizes = iter([10, 999, 1000])
    delays: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"p" * next(sizes))

    pdf = _bridge(spy_lock, handler, delays=delays, retry_delay_s=5.5).convert(document)

    assert pdf.stat().st_size == 1000
    assert delays == [5.5, 5.5]
    assert spy_lock.history == ["acquire", "release"] * 3


def test_http_errors_and_transport_errors_count_as_failed_attempts(spy_lock, document):
    responses = iter(["error", "boom", "ok"])

    def handler(request: httpx.Request) -> httpx.Response:
        outcome = next(responses)
        if outcome == "boom":
            raise httpx.ConnectError("connection refused", request=request)
        if outcome == "error":
            return httpx.Response(500, content=b"x" * 5000)
        return httpx.Response(200, content=b"x" * 5000)

    pdf = _bridge(spy_lock, handler).convert(document)

    assert pdf.exists()
    assert spy_lock.history == ["acquire", "release"] * 3
    assert not spy_lock.held


def test_exhausted_attempts_raise_conversion_failed(spy_lock, document):
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(200, content=b"<html>error</html>")

    with pytest.raises(ConversionFailed):
        _bridge(spy_lock, handler, max_attempts=4).convert(document)

    assert len(calls) == 4
    assert spy_lock.history == ["acquire", "release"] * 4
    assert not document.with_suffix(".pdf").exists()


def test_lock_is_released_when_request_raises_unexpectedly(spy_lock, document):
    def handler(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("transport bug")

    with pytest.raises(RuntimeError):
        _bridge(spy_lock, handler).convert(document)

    assert spy_lock.history == ["acquire", "release"]


def test_cancelled_bridge_does_not_call_service(spy_lock, document, cancel_event):
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("service called")

    cancel_event.set()
    with pytest.raises(ConversionCancelled):
        _bridge(spy_lock, handler).convert(document, cancel=cancel_event)

    assert spy_lock.history == []
