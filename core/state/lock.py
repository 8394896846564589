"""Single-writer lock for execute runs.

The lock file holds ``{"pid": ..., "createdAt": <epoch ms>}``. A lock is live
while its process exists and it is younger than the timeout; a running
executor heartbeats the file's mtime so long runs are not reclaimed.
"""

import json
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from core.errors import LockContentionError, StateFileError
from core.observability.logging import get_logger
from core.security.files import create_private_file

logger = get_logger(__name__)


@dataclass
class RunLock:
    """An acquired lock."""
    pid: int
    created_at: int  # epoch ms
    path: Optional[Path] = None

    def to_dict(self):
        return {"pid": self.pid, "createdAt": self.created_at}

    def heartbeat(self) -> None:
        """Refresh the lock file's mtime."""
        if self.path is None:
            return
        try:
            os.utime(self.path)
        except FileNotFoundError:
            logger.warning("Lock file disappeared during run")


def is_process_alive(pid: int) -> bool:
    """Check a pid with signal 0; a permission error still means it exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _read_lock(path: Path) -> Optional[RunLock]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return RunLock(pid=int(data["pid"]), created_at=int(data["createdAt"]), path=path)
    except (OSError, ValueError, KeyError, TypeError):
        return None


def _is_live(path: Path, timeout_seconds: float, now: float) -> bool:
    try:
        mtime = path.lstat().st_mtime
    except FileNotFoundError:
        # Released since the exists() check
        return False
    existing = _read_lock(path)
    if existing is None:
        return now - mtime < timeout_seconds

    last_seen = max(existing.created_at / 1000.0, mtime)
    if now - last_seen >= timeout_seconds:
        return False
    return is_process_alive(existing.pid)


def acquire_lock(path: Path, timeout_seconds: float = 30.0) -> RunLock:
    """Acquire the run lock, reclaiming a stale one.

    Raises:
        LockContentionError: If another run holds a live lock
        StateFileError: If the lock path is a symlink
    """
    path = Path(path)
    if path.is_symlink():
        raise StateFileError(f"Refusing symlinked lock file: {path}")

    if path.exists():
        if _is_live(path, timeout_seconds, time.time()):
            raise LockContentionError("Another reconcile run is in progress")
        logger.info("Removing stale lock file")
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    lock = RunLock(pid=os.getpid(), created_at=int(time.time() * 1000), path=path)
    try:
        create_private_file(path, json.dumps(lock.to_dict()))
    except FileExistsError as e:
        raise LockContentionError("Another reconcile run is in progress") from e
    return lock


def release_lock(path: Path) -> None:
    """Remove the lock if it belongs to this process."""
    path = Path(path)
    if path.is_symlink() or not path.exists():
        return
    existing = _read_lock(path)
    if existing is not None and existing.pid != os.getpid():
        logger.warning("Lock file owned by another process; leaving it in place")
        return
    try:
        path.unlink()
    except FileNotFoundError:
        pass
