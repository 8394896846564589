"""Owner-only file helpers for state, lock, config and audit files.

All sensitive files are created with mode 0600 and refused on read when they
are symlinks or readable by group/other.
"""

import json
import os
import secrets
import stat
import time
from pathlib import Path
from typing import Any

from core.errors import StateFileError

PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700


def assert_secure_file(path: Path) -> None:
    """Refuse symlinks and files with any group/other permission bits.

    Raises:
        StateFileError: If the file is a symlink or its mode is too open
    """
    info = os.lstat(path)
    if stat.S_ISLNK(info.st_mode):
        raise StateFileError(f"Refusing to read symlinked file: {path}")
    mode = stat.S_IMODE(info.st_mode)
    if mode & 0o077:
        raise StateFileError(f"File permissions too open: {path} ({mode:o})")


def create_private_file(path: Path, content: str = "") -> None:
    """Create a new file with owner-only permissions; fail if it already exists."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, PRIVATE_FILE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)


def ensure_private_dir(path: Path) -> Path:
    """Create a directory (and parents) with owner-only permissions."""
    path.mkdir(parents=True, exist_ok=True, mode=PRIVATE_DIR_MODE)
    return path


def atomic_write_json(path: Path, payload: Any) -> None:
    """Write JSON atomically via a uniquely named temp file and rename.

    After the rename the target is re-checked; if its permission bits drifted
    from 0600 the file is removed and an error raised.

    Raises:
        StateFileError: If the written file does not end up owner-only
    """
    path.parent.mkdir(parents=True, exist_ok=True, mode=PRIVATE_DIR_MODE)
    temp_path = path.with_name(
        f"{path.name}.tmp-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
    )
    data = json.dumps(payload, indent=2)

    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, PRIVATE_FILE_MODE)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except BaseException:
        if temp_path.exists():
            temp_path.unlink()
        raise

    mode = stat.S_IMODE(os.stat(path).st_mode)
    if mode != PRIVATE_FILE_MODE:
        path.unlink()
        raise StateFileError(f"File permissions incorrect after write: {path} ({mode:o})")
