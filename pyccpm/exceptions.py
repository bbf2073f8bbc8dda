"""Exception hierarchy for pyccpm."""

from pathlib import Path
from typing import Optional, Union


class CcpmError(Exception):
    """Base exception for all pyccpm errors."""


class ConfigError(CcpmError):
    """Raised when the configuration file or environment is invalid."""


class RegistryError(CcpmError):
    """Raised when the source registry cannot be read or is malformed."""


class SourceNotReadyError(CcpmError):
    """Raised when a source has no usable local checkout."""

    def __init__(self, source_id: str, message: str):
        super().__init__(f"Source '{source_id}': {message}")
        self.source_id = source_id


class MappingError(CcpmError):
    """Raised when a source tree cannot be mapped at all."""


class TransferError(CcpmError):
    """Raised when copying a single path fails."""

    def __init__(self, path: Union[str, Path], message: str):
        super().__init__(f"{path}: {message}")
        self.path = Path(path)


class UnsupportedFileTypeError(TransferError):
    """Raised when a path is neither a regular file nor a directory."""


class LockTimeoutError(CcpmError):
    """Raised when a lock could not be acquired within its timeout."""

    def __init__(self, lock_path: Union[str, Path], timeout: float):
        super().__init__(f"Timed out after {timeout:.1f}s waiting for {lock_path}")
        self.lock_path = Path(lock_path)
        self.timeout = timeout


class StateError(CcpmError):
    """Base class for deployment state failures."""


class StateWriteError(StateError):
    """Raised when the state file cannot be committed."""


class StateCorruptionError(StateError):
    """Raised when the state file cannot be parsed."""

    def __init__(self, message: str, backup_path: Optional[Path] = None):
        super().__init__(message)
        self.backup_path = backup_path


class StateMigrationError(StateError):
    """Raised when a state file cannot be migrated to the current schema."""
