"""Argument-vector subprocess runner with deadlines and cooperative cancellation."""

from __future__ import annotations

import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from .errors import CommandTimedOut, ConversionCancelled, ConversionFailed

POLL_INTERVAL_S = 0.2


@dataclass(slots=True)
class CommandResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def raise_if_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ConversionCancelled("conversion run cancelled")


def run_command(
    argv: Sequence[str],
    *,
    timeout: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> CommandResult:
    """Run ``argv`` without a shell and capture its output.

    Args:
        argv: The program and its arguments.
        timeout: Seconds before the child is killed and ``CommandTimedOut`` raised.
        cancel: Event that, once set, kills the child and raises ``ConversionCancelled``.

    Returns:
        The exit code and decoded output streams.
    """
    argv = [str(arg) for arg in argv]
    raise_if_cancelled(cancel)
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
    except FileNotFoundError as exc:
        raise ConversionFailed(f"executable not found: {argv[0]}") from exc

    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        wait_for = POLL_INTERVAL_S
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                _kill(proc)
                raise CommandTimedOut(f"{argv[0]} exceeded {timeout}s", argv=argv, timeout=timeout)
            wait_for = min(wait_for, remaining)
        try:
            stdout, stderr = proc.communicate(timeout=wait_for)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_set():
                _kill(proc)
                raise ConversionCancelled(f"{argv[0]} cancelled") from None

    return CommandResult(argv=argv, returncode=proc.returncode, stdout=stdout or "", stderr=stderr or "")


def _kill(proc: subprocess.Popen) -> None:
    proc.kill()
    proc.communicate()


__all__ = ["CommandResult", "run_command", "raise_if_cancelled"]
