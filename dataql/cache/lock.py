"""Advisory per-key lock for cache write-back."""

from __future__ import annotations

import contextlib
import os
import time
from pathlib import Path
from types import ModuleType

from ..utils.error_handling import CacheLockError

try:
    import fcntl as _fcntl
except ImportError:  # pragma: no cover
    fcntl: ModuleType | None = None
else:
    fcntl = _fcntl

POLL_INTERVAL_SECONDS = 0.05


class KeyLock:
    """Exclusive ``flock`` on ``<cache_dir>/<key>.lock``.

    Advisory only: it serializes DataQL writers for the same key, nothing
    else. On platforms without ``fcntl`` the lock file is created but no
    lock is taken.
    """

    def __init__(self, path: Path, timeout: float = 30.0):
        self.path = path
        self.timeout = timeout
        self._fd: int | None = None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o644)
        self._fd = fd
        if fcntl is None:
            return

        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except OSError as e:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    self._fd = None
                    raise CacheLockError(f"cache lock is held: {self.path}") from e
                time.sleep(POLL_INTERVAL_SECONDS)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            if fcntl is not None:
                with contextlib.suppress(OSError):
                    fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> "KeyLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
