"""Atomic file writes and cooperative locking for state files."""
from __future__ import annotations

import contextlib
import errno
import fcntl
import os
import tempfile
import time
from pathlib import Path
from typing import Iterator

from minion_sync.errors import MinionSyncError

LOCK_SLEEP_INTERVAL = 0.05


class LockTimeoutError(MinionSyncError):
    """Another process holds the lock for longer than the timeout."""


def atomic_write_text(path: Path | str, content: str) -> None:
    """Write ``content`` to ``path`` so readers see either the old or the new file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise


def lock_path_for(path: Path | str) -> Path:
    path = Path(path)
    return path.parent / f"{path.name}.lock"


@contextlib.contextmanager
def exclusive_lock(path: Path | str, timeout: float = 10.0) -> Iterator[Path]:
    """Hold an advisory ``flock`` on the companion lock file of ``path``."""
    lock_path = lock_path_for(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + timeout
    with open(lock_path, "a") as lock_file:
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError as exc:
                if exc.errno not in (errno.EACCES, errno.EAGAIN):
                    raise
                if time.monotonic() >= deadline:
                    raise LockTimeoutError(
                        f"Another sync holds {lock_path}; waited {timeout:.1f}s"
                    ) from exc
                time.sleep(LOCK_SLEEP_INTERVAL)
        try:
            yield lock_path
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


__all__ = ["atomic_write_text", "exclusive_lock", "lock_path_for", "LockTimeoutError"]
