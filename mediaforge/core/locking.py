"""Advisory exclusive locks serialising calls into shared external services."""

from __future__ import annotations

import fcntl
import os
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from redis import Redis
from redis.exceptions import LockError

from .config import Settings
from .errors import ConversionCancelled, LockTimeout
from .logging import get_logger


class ExclusiveLock(ABC):
    @abstractmethod
    def acquire(self, *, cancel: Optional[threading.Event] = None) -> None: ...

    @abstractmethod
    def release(self) -> None: ...

    @contextmanager
    def hold(self, *, cancel: Optional[threading.Event] = None) -> Iterator[None]:
        self.acquire(cancel=cancel)
        try:
            yield
        finally:
            self.release()


class FileLock(ExclusiveLock):
    """``flock`` based lock shared by every process on the host.

    Each acquisition opens its own descriptor, so threads of one process
    exclude each other as well.
    """

    def __init__(
        self,
        path: Path,
        *,
        poll_interval_s: float = 2.0,
        timeout_s: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.path = Path(path)
        self.poll_interval_s = poll_interval_s
        self.timeout_s = timeout_s
        self._sleep = sleep
        self._local = threading.local()
        self.logger = get_logger(component="file_lock", path=str(self.path))

    def acquire(self, *, cancel: Optional[threading.Event] = None) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        started = time.monotonic()
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    pass
                if self.timeout_s is not None and time.monotonic() - started >= self.timeout_s:
                    raise LockTimeout(f"could not acquire {self.path} within {self.timeout_s}s")
                self.logger.debug("lock_wait")
                _wait(self.poll_interval_s, cancel, self._sleep)
        except BaseException:
            os.close(fd)
            raise
        self._local.fd = fd

    def release(self) -> None:
        fd = getattr(self._local, "fd", None)
        if fd is None:
            raise RuntimeError("release of an unheld lock")
        self._local.fd = None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


class RedisLock(ExclusiveLock):
    """redis-py lock shared by every worker connected to the same Redis."""

    def __init__(
        self,
        client: Redis,
        name: str,
        *,
        poll_interval_s: float = 2.0,
        timeout_s: float | None = None,
        lease_s: float | None = 900.0,
    ):
        self.client = client
        self.name = name
        self.poll_interval_s = poll_interval_s
        self.timeout_s = timeout_s
        self.lease_s = lease_s
        self._local = threading.local()
        self.logger = get_logger(component="redis_lock", name=name)

    def acquire(self, *, cancel: Optional[threading.Event] = None) -> None:
        lock: Any = self.client.lock(self.name, timeout=self.lease_s, sleep=self.poll_interval_s)
        started = time.monotonic()
        while not lock.acquire(blocking=False):
            if self.timeout_s is not None and time.monotonic() - started >= self.timeout_s:
                raise LockTimeout(f"could not acquire {self.name} within {self.timeout_s}s")
            _wait(self.poll_interval_s, cancel, time.sleep)
        self._local.lock = lock

    def release(self) -> None:
        lock = getattr(self._local, "lock", None)
        if lock is None:
            raise RuntimeError("release of an unheld lock")
        self._local.lock = None
        try:
            lock.release()
        except LockError:
            # Lease expired while held; another holder may already own the key.
            self.logger.warning("lock_lease_expired")


def _wait(delay: float, cancel: Optional[threading.Event], sleep: Callable[[float], None]) -> None:
    if cancel is None:
        sleep(delay)
        return
    if cancel.wait(delay):
        raise ConversionCancelled("cancelled while waiting for lock")


def get_exclusive_lock(settings: Settings) -> ExclusiveLock:
    if settings.lock_backend == "file":
        return FileLock(
            settings.lock_path,
            poll_interval_s=settings.lock_poll_interval_s,
            timeout_s=settings.lock_timeout_s,
        )
    if settings.lock_backend == "redis":  # pragma: no cover - requires redis
        return RedisLock(
            Redis.from_url(settings.redis_url),
            settings.lock_name,
            poll_interval_s=settings.lock_poll_interval_s,
            timeout_s=settings.lock_timeout_s,
        )
    raise ValueError(f"Unsupported lock backend: {settings.lock_backend}")


__all__ = ["ExclusiveLock", "FileLock", "RedisLock", "get_exclusive_lock"]
