"""pyccpm - deploy Claude commands, agents and hooks from source trees."""

from .config import Config, load_config
from .deploy import DeploymentEngine
from .exceptions import (
    CcpmError,
    ConfigError,
    LockTimeoutError,
    MappingError,
    RegistryError,
    SourceNotReadyError,
    StateCorruptionError,
    StateError,
    StateMigrationError,
    StateWriteError,
    TransferError,
    UnsupportedFileTypeError,
)
from .models import (
    Category,
    ConflictStrategy,
    DeploymentMode,
    DeploymentResult,
    DeployOptions,
    Source,
)

__version__ = "0.3.0"

__all__ = [
    "Config",
    "load_config",
    "DeploymentEngine",
    "Category",
    "ConflictStrategy",
    "DeploymentMode",
    "DeploymentResult",
    "DeployOptions",
    "Source",
    "CcpmError",
    "ConfigError",
    "LockTimeoutError",
    "MappingError",
    "RegistryError",
    "SourceNotReadyError",
    "StateCorruptionError",
    "StateError",
    "StateMigrationError",
    "StateWriteError",
    "TransferError",
    "UnsupportedFileTypeError",
]
