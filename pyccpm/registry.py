"""Read-only access to the source registry file.

The registry is owned by the registration tooling; this module only loads
it into :class:`~pyccpm.models.Source` objects. Two layouts are accepted::

    {"repositories": [{"id": "...", "localPath": "...", ...}]}
    [{"id": "...", "root_path": "...", ...}]
"""

import json
import logging
from pathlib import Path
from typing import Optional

from .exceptions import RegistryError
from .models import Source

logger = logging.getLogger(__name__)


def load_sources(registry_file: Path) -> list[Source]:
    """Load every registered source.

    Args:
        registry_file: Path to the registry JSON file

    Returns:
        Sources sorted by id; an empty list if the file does not exist

    Raises:
        RegistryError: If the file is unreadable or an entry is invalid
    """
    if not registry_file.exists():
        logger.debug(f"No registry found at {registry_file}")
        return []

    try:
        with open(registry_file, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise RegistryError(f"Invalid JSON in {registry_file}: {e}") from e
    except OSError as e:
        raise RegistryError(f"Cannot read {registry_file}: {e}") from e

    if isinstance(data, dict):
        entries = data.get("repositories", [])
    else:
        entries = data

    if not isinstance(entries, list):
        raise RegistryError(f"{registry_file}: 'repositories' must be a list")

    sources: list[Source] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise RegistryError(f"{registry_file}: entry {index} is not an object")
        try:
            source = Source.from_dict(entry)
        except ValueError as e:
            raise RegistryError(f"{registry_file}: entry {index}: {e}") from e
        if source.id in seen:
            raise RegistryError(f"{registry_file}: duplicate source id '{source.id}'")
        seen.add(source.id)
        sources.append(source)

    logger.debug(f"Loaded {len(sources)} source(s) from {registry_file}")
    return sorted(sources, key=lambda s: s.id)


def find_source(sources: list[Source], name_or_id: str) -> Optional[Source]:
    """Find a source by id, falling back to its name."""
    for source in sources:
        if source.id == name_or_id:
            return source
    for source in sources:
        if source.name == name_or_id:
            return source
    return None
