"""Security module - credential redaction and owner-only file handling."""

from core.security.files import (
    PRIVATE_DIR_MODE,
    PRIVATE_FILE_MODE,
    assert_secure_file,
    atomic_write_json,
    create_private_file,
    ensure_private_dir,
)
from core.security.redaction import sanitize_error_message

__all__ = [
    "PRIVATE_DIR_MODE",
    "PRIVATE_FILE_MODE",
    "assert_secure_file",
    "atomic_write_json",
    "create_private_file",
    "ensure_private_dir",
    "sanitize_error_message",
]
