import json
import os

import pytest

from catalog_sync.errors import LockContentionError
from catalog_sync.lock import LOCK_FILENAME, PidFileLock


def _dead_pid() -> int:
    pid = 999_999
    while True:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return pid
        except PermissionError:
            pass
        pid -= 1


def test_acquire_and_release(tmp_path) -> None:
    lock = PidFileLock.in_dir(tmp_path)

    lock.acquire()
    marker = json.loads((tmp_path / LOCK_FILENAME).read_text(encoding="utf-8"))
    assert marker["pid"] == os.getpid()
    assert "started_at" in marker

    lock.release()
    assert not (tmp_path / LOCK_FILENAME).exists()


def test_live_pid_blocks_second_holder(tmp_path) -> None:
    first = PidFileLock.in_dir(tmp_path)
    first.acquire()

    with pytest.raises(LockContentionError) as excinfo:
        PidFileLock.in_dir(tmp_path).acquire()

    assert excinfo.value.context["pid"] == os.getpid()
    first.release()


def test_stale_marker_is_replaced(tmp_path) -> None:
    path = tmp_path / LOCK_FILENAME
    path.write_text(json.dumps({"pid": _dead_pid(), "started_at": "2024-01-01T00:00:00+00:00"}))

    with PidFileLock(path):
        assert json.loads(path.read_text(encoding="utf-8"))["pid"] == os.getpid()
    assert not path.exists()


def test_malformed_marker_is_replaced(tmp_path) -> None:
    path = tmp_path / LOCK_FILENAME
    path.write_text("not json")

    lock = PidFileLock(path)
    lock.acquire()

    assert json.loads(path.read_text(encoding="utf-8"))["pid"] == os.getpid()
    lock.release()


def test_release_leaves_foreign_marker(tmp_path) -> None:
    path = tmp_path / LOCK_FILENAME
    lock = PidFileLock(path)
    lock.acquire()
    path.write_text(json.dumps({"pid": os.getpid() + 1}))

    lock.release()

    assert path.exists()


def test_release_without_acquire_is_noop(tmp_path) -> None:
    path = tmp_path / LOCK_FILENAME
    path.write_text(json.dumps({"pid": os.getpid()}))

    PidFileLock(path).release()

    assert path.exists()
