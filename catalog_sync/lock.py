"""Single-run guard backed by a PID marker file."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from catalog_sync.errors import LockContentionError
from catalog_sync.logging_config import get_logger

LOGGER = get_logger(__name__)

LOCK_FILENAME = ".lock"


class RunLock(Protocol):
    def acquire(self) -> None: ...

    def release(self) -> None: ...


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but belongs to another user.
        return True
    except OSError:
        return False
    return True


def _read_marker(path: Path) -> int | None:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
        return int(payload["pid"])
    except FileNotFoundError:
        raise
    except (OSError, ValueError, KeyError, TypeError):
        return None


class PidFileLock:
    """Exclusive-create lock marker holding ``{"pid", "started_at"}``.

    A marker left by a dead process, or one that cannot be read, is removed
    and the acquisition retried once.
    """

    def __init__(self, path: str | Path, *, pid: int | None = None) -> None:
        self.path = Path(path)
        self.pid = pid if pid is not None else os.getpid()
        self._owned = False

    @classmethod
    def in_dir(cls, report_dir: str | Path) -> "PidFileLock":
        return cls(Path(report_dir) / LOCK_FILENAME)

    def _try_create(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        payload = {"pid": self.pid, "started_at": datetime.now(timezone.utc).isoformat()}
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle)
        return True

    def acquire(self) -> None:
        for _ in range(2):
            if self._try_create():
                self._owned = True
                LOGGER.debug("Lock acquired at %s (pid=%s)", self.path, self.pid)
                return
            try:
                holder = _read_marker(self.path)
            except FileNotFoundError:
                continue
            if holder is not None and _pid_alive(holder):
                raise LockContentionError(path=str(self.path), pid=holder)
            LOGGER.warning("Removing stale lock %s (pid=%s)", self.path, holder)
            self.path.unlink(missing_ok=True)
        raise LockContentionError(path=str(self.path))

    def release(self) -> None:
        if not self._owned:
            return
        self._owned = False
        try:
            holder = _read_marker(self.path)
        except FileNotFoundError:
            return
        if holder == self.pid:
            self.path.unlink(missing_ok=True)
            LOGGER.debug("Lock released at %s", self.path)

    def __enter__(self) -> "PidFileLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


__all__ = ["LOCK_FILENAME", "PidFileLock", "RunLock"]
