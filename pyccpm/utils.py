"""Utility functions for pyccpm."""

import hashlib
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# =============================================================================
# Constants for file operations
# =============================================================================

# Read size used when hashing files (1 MB)
DEFAULT_HASH_CHUNK_SIZE: int = 1024 * 1024

# Retry configuration for state file contention
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 0.5  # seconds

# Default number of sources deployed in parallel
DEFAULT_MAX_WORKERS: int = 3

# Seconds to wait for a lock file before giving up
DEFAULT_LOCK_TIMEOUT: float = 10.0


# =============================================================================
# Timestamp utilities
# =============================================================================


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def timestamp_suffix() -> str:
    """Return a filesystem-safe timestamp for backup file names."""
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


# =============================================================================
# Hash calculation utilities
# =============================================================================


def calculate_file_hash(
    file_path: Path, chunk_size: int = DEFAULT_HASH_CHUNK_SIZE
) -> str:
    """Calculate the SHA-256 hash of a file's content.

    Args:
        file_path: File to hash
        chunk_size: Number of bytes read per iteration

    Returns:
        Lowercase hex digest

    Raises:
        OSError: If the file cannot be read

    Examples:
        >>> import tempfile, pathlib
        >>> with tempfile.TemporaryDirectory() as tmp:
        ...     p = pathlib.Path(tmp) / "a.md"
        ...     _ = p.write_bytes(b"hello")
        ...     calculate_file_hash(p)[:12]
        '2cf24dba5fb0'
    """
    digest = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def safe_file_hash(file_path: Path) -> Optional[str]:
    """Hash a file, returning None when it is missing or unreadable."""
    try:
        return calculate_file_hash(file_path)
    except OSError:
        return None


def path_key(value: str, length: int = 16) -> str:
    """Derive a short filesystem-safe key from an arbitrary identifier."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def real_path(path: Path) -> Path:
    """Resolve symlinks and '..' in the directories leading to path.

    The final component is left alone, so a symlink placed in the target
    tree is judged by where it sits rather than where it points.
    """
    if path.name in ("", ".", ".."):
        return Path(os.path.realpath(path))
    return Path(os.path.realpath(path.parent)) / path.name


def is_within(path: Path, root: Path) -> bool:
    """Return True if path is root itself or really lies beneath it.

    Examples:
        >>> is_within(Path("/tmp/claude/agents/a.md"), Path("/tmp/claude"))
        True
        >>> is_within(Path("/tmp/claude/agents/../../x.md"), Path("/tmp/claude"))
        False
    """
    try:
        real_path(path).relative_to(os.path.realpath(root))
        return True
    except ValueError:
        return False
