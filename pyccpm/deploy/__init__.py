"""Deployment engine for pyccpm - mapping, transfer, state and cleanup."""

from .engine import DeploymentEngine
from .mapper import (
    DEFAULT_EXTENSIONS,
    NOISE_DIRS,
    DeploymentMapper,
    compile_pattern,
    default_patterns,
    validate_category_patterns,
)
from .migrations import CURRENT_VERSION, detect_version, migrate
from .reconciler import Reconciler
from .resolver import ConflictResolver
from .state import StateStore, empty_state
from .transfer import FileTransfer

__all__ = [
    "DeploymentEngine",
    "DeploymentMapper",
    "ConflictResolver",
    "FileTransfer",
    "StateStore",
    "Reconciler",
    "DEFAULT_EXTENSIONS",
    "NOISE_DIRS",
    "compile_pattern",
    "default_patterns",
    "validate_category_patterns",
    "CURRENT_VERSION",
    "detect_version",
    "migrate",
    "empty_state",
]
