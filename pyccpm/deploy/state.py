"""Persistent record of what has been deployed from each source.

The whole state lives in one JSON file (see :mod:`.migrations` for the
schema). Every write is atomic: the new document is written to a temporary
file in the same directory, flushed to disk and renamed over the old one,
so readers only ever see a complete document.

Writers from several processes are serialised with a ``filelock.FileLock``
next to the state file. Inside the lock the file is re-read and only the
writer's own source entry is replaced, so commits for different sources
merge instead of overwriting each other.

Opening a store never writes. A corrupt file is set aside and an older
schema is backed up only when the first change is committed.
"""

import copy
import json
import logging
import os
import shutil
import tempfile
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional

from filelock import FileLock, Timeout

from ..exceptions import (
    LockTimeoutError,
    MappingError,
    StateCorruptionError,
    StateMigrationError,
    StateWriteError,
)
from ..models import (
    Category,
    DeployedFile,
    DeploymentRecord,
    Source,
    StateIssue,
    StateIssueKind,
    StateReconstructResult,
)
from ..utils import (
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    is_within,
    safe_file_hash,
    timestamp_suffix,
    utc_now_iso,
)
from .mapper import DeploymentMapper
from .migrations import CURRENT_VERSION, detect_version, migrate

logger = logging.getLogger(__name__)


def empty_state() -> dict[str, Any]:
    """Return a fresh state document of the current version."""
    now = utc_now_iso()
    return {
        "version": CURRENT_VERSION,
        "sources": {},
        "metadata": {
            "createdAt": now,
            "updatedAt": now,
            "lastCleanup": None,
            "totalSources": 0,
            "totalDeployedFiles": 0,
        },
    }


def is_well_formed(data: dict[str, Any]) -> bool:
    """Check that a current-version document has the shape the store reads.

    Examples:
        >>> is_well_formed({"version": 3, "sources": {}})
        True
        >>> is_well_formed({"version": 3, "sources": []})
        False
        >>> is_well_formed({"version": 3, "sources": {"r": {"deployedFiles": [{}]}}})
        False
    """
    sources = data.get("sources", {})
    if not isinstance(sources, dict):
        return False
    if not isinstance(data.get("metadata", {}), dict):
        return False
    for source_id, entry in sources.items():
        if not isinstance(entry, dict):
            return False
        if not isinstance(entry.get("sourceId", source_id), str):
            return False
        files = entry.get("deployedFiles", [])
        if not isinstance(files, list):
            return False
        for deployed in files:
            if not isinstance(deployed, dict):
                return False
            if not isinstance(deployed.get("targetAbsolutePath"), str):
                return False
    return True


class StateStore:
    """Loads, migrates and atomically commits deployment records.

    Examples:
        >>> store = StateStore(Path("~/.ccpm/state.json").expanduser())  # doctest: +SKIP
        >>> store.commit("agents-repo", deployed_files)  # doctest: +SKIP
        >>> store.get("agents-repo").targets  # doctest: +SKIP
    """

    def __init__(
        self,
        state_file: Path,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        write_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        """Initialize state store and load the state file.

        A missing file yields an empty store. A file that cannot be read, is
        not JSON or does not have the expected structure leaves the store
        empty with :attr:`needs_reconstruction` set; it is moved aside as
        ``<stem>.corrupt.<timestamp>.json`` before the first commit. Older
        schema versions are migrated in memory and backed up as
        ``<stem>.backup.<timestamp>.json`` before the first commit writes
        the new version.

        Args:
            state_file: Path to the JSON state file
            lock_timeout: Seconds to wait for the state lock per attempt
            write_retries: Extra attempts after a lock timeout
            retry_delay: Initial delay between attempts (grows 1.5x)

        Raises:
            StateCorruptionError: If the file was written by a newer version
        """
        self.state_file = state_file
        self.lock_file = state_file.with_name(state_file.name + ".lock")
        self.lock_timeout = lock_timeout
        self.write_retries = write_retries
        self.retry_delay = retry_delay

        self.needs_reconstruction = False
        """Set when the state file was corrupt and has to be rebuilt"""

        self.existed = os.path.lexists(state_file)
        """Whether a state file was present when the store was opened"""

        self.corrupt_backup: Optional[Path] = None
        self.migration_backup: Optional[Path] = None

        self._pending_corrupt = False
        self._pending_migration = False
        self._preview = False
        self._mutex = threading.RLock()
        self._data = self._load()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        if not self.existed:
            logger.debug(f"No state file at {self.state_file}, starting empty")
            return empty_state()

        raw = self._read_raw()
        if raw is None:
            return self._mark_corrupt("cannot be read as a JSON object")

        try:
            version = detect_version(raw)
        except StateMigrationError as e:
            raise StateCorruptionError(str(e)) from e

        if version > CURRENT_VERSION:
            raise StateCorruptionError(
                f"State file {self.state_file} has version {version}, "
                f"newer than supported version {CURRENT_VERSION}"
            )

        if version < CURRENT_VERSION:
            try:
                raw, _ = migrate(raw)
            except (AttributeError, KeyError, TypeError) as e:
                return self._mark_corrupt(f"cannot be migrated ({e})")
            self._pending_migration = True
            logger.info(
                f"Migrated state file {self.state_file} from version {version} "
                f"to {CURRENT_VERSION}; it is rewritten on the next commit"
            )

        if not is_well_formed(raw):
            return self._mark_corrupt("has an invalid structure")
        return self._normalize(raw)

    def _mark_corrupt(self, reason: str) -> dict[str, Any]:
        self._pending_corrupt = True
        self.needs_reconstruction = True
        logger.warning(
            f"State file {self.state_file} {reason}; it will be preserved "
            "and the state rebuilt"
        )
        return empty_state()

    def _read_raw(self) -> Optional[dict[str, Any]]:
        """Read the state file; None if it is unreadable or not a JSON object."""
        try:
            with open(self.state_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.debug(f"Failed to read {self.state_file}: {e}")
            return None
        if not isinstance(data, dict):
            return None
        return data

    def _read_usable(self) -> Optional[dict[str, Any]]:
        """Read the state file if it is a well-formed current-version document.

        Raises:
            StateCorruptionError: If another process wrote a newer version
        """
        raw = self._read_raw()
        if raw is None:
            return None
        try:
            version = detect_version(raw)
        except StateMigrationError:
            return None
        if version > CURRENT_VERSION:
            raise StateCorruptionError(
                f"State file {self.state_file} was rewritten with "
                f"unsupported version {version}"
            )
        if version < CURRENT_VERSION or not is_well_formed(raw):
            return None
        return self._normalize(raw)

    @staticmethod
    def _normalize(data: dict[str, Any]) -> dict[str, Any]:
        sources = data.setdefault("sources", {})
        for source_id, entry in sources.items():
            entry.setdefault("sourceId", source_id)
            entry.setdefault("deployedFiles", [])
        metadata = data.setdefault("metadata", {})
        now = utc_now_iso()
        metadata.setdefault("createdAt", now)
        metadata.setdefault("updatedAt", now)
        metadata.setdefault("lastCleanup", None)
        return data

    def _backup_path(self, kind: str) -> Path:
        return self.state_file.with_name(
            f"{self.state_file.stem}.{kind}.{timestamp_suffix()}.json"
        )

    def _current(self) -> dict[str, Any]:
        """Return the freshest readable document.

        Other processes may have committed since this store was opened, so
        the file on disk wins when it is a usable current-version document.
        """
        if self._preview:
            return self._data
        if os.path.lexists(self.state_file):
            disk = self._read_usable()
            if disk is not None:
                self._data = disk
        return self._data

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    @contextmanager
    def _file_lock(self) -> Iterator[None]:
        """Hold the cross-process state lock, retrying on timeout.

        Raises:
            StateWriteError: If the lock cannot be acquired after all retries
        """
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.lock_file), timeout=self.lock_timeout)
        delay = self.retry_delay

        for attempt in range(self.write_retries + 1):
            try:
                lock.acquire()
                break
            except Timeout:
                if attempt >= self.write_retries:
                    timeout_error = LockTimeoutError(self.lock_file, self.lock_timeout)
                    raise StateWriteError(
                        f"Could not lock {self.state_file} after "
                        f"{self.write_retries + 1} attempts: {timeout_error}"
                    ) from timeout_error
                logger.warning(
                    f"State file is locked, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.write_retries})"
                )
                time.sleep(delay)
                delay *= 1.5

        try:
            yield
        finally:
            lock.release()

    def _preserve_original(self) -> None:
        """Keep the file loaded at open time before it is first replaced.

        Raises:
            StateWriteError: If the file cannot be moved or copied aside
        """
        if not (self._pending_corrupt or self._pending_migration):
            return
        if not os.path.lexists(self.state_file) or self._read_usable() is not None:
            # Another process already replaced it with a usable document
            self._pending_corrupt = self._pending_migration = False
            return

        try:
            if self._pending_corrupt:
                backup = self._backup_path("corrupt")
                os.replace(self.state_file, backup)
                self.corrupt_backup = backup
                logger.warning(f"Preserved corrupt state file as {backup}")
            else:
                backup = self._backup_path("backup")
                shutil.copy2(self.state_file, backup)
                self.migration_backup = backup
                logger.info(f"Backed up state to {backup} before migration")
        except OSError as e:
            raise StateWriteError(
                f"Failed to preserve {self.state_file} before rewriting it: {e}"
            ) from e
        self._pending_corrupt = self._pending_migration = False

    def _write(self, data: dict[str, Any]) -> None:
        """Atomically replace the state file with data.

        Raises:
            StateWriteError: If the document cannot be written
        """
        sources = data.get("sources", {})
        metadata = data.setdefault("metadata", {})
        metadata["updatedAt"] = utc_now_iso()
        metadata["totalSources"] = len(sources)
        metadata["totalDeployedFiles"] = sum(
            len(record.get("deployedFiles", [])) for record in sources.values()
        )
        data["version"] = CURRENT_VERSION

        tmp_path: Optional[str] = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.state_file.parent,
                prefix=f".{self.state_file.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_path = f.name
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.state_file)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            raise StateWriteError(f"Failed to write {self.state_file}: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    logger.debug(f"Could not remove temporary file {tmp_path}")

        self.existed = True
        logger.debug(
            f"Saved state with {metadata['totalSources']} source(s) and "
            f"{metadata['totalDeployedFiles']} file(s) to {self.state_file}"
        )

    def _update(self, mutate: Callable[[dict[str, Any]], None]) -> None:
        """Read-modify-write the state file under both locks."""
        with self._mutex, self._file_lock():
            self._preserve_original()
            data = copy.deepcopy(self._current())
            mutate(data)
            self._write(data)
            self._data = data

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, source_id: str) -> Optional[DeploymentRecord]:
        """Return the record for a source, or None if nothing is recorded."""
        with self._mutex:
            entry = self._current()["sources"].get(source_id)
        if entry is None:
            return None
        return DeploymentRecord.from_dict(entry, source_id)

    def all_records(self) -> list[DeploymentRecord]:
        """Return every record, sorted by source id."""
        with self._mutex:
            sources = self._current()["sources"]
            return [
                DeploymentRecord.from_dict(sources[source_id], source_id)
                for source_id in sorted(sources)
            ]

    def commit(
        self,
        source_id: str,
        deployed_files: Iterable[DeployedFile],
        errors: Optional[list[str]] = None,
        commit: Optional[str] = None,
    ) -> DeploymentRecord:
        """Replace a source's record with the given deployed files.

        Args:
            source_id: Source being committed
            deployed_files: Complete list of files now deployed by the source
            errors: Non-fatal errors from the run
            commit: Commit identifier of the deployed checkout

        Returns:
            The committed record

        Raises:
            StateWriteError: If the state file cannot be locked or written
        """
        record = DeploymentRecord(
            source_id=source_id,
            deployed_files=list(deployed_files),
            last_deployed_at=utc_now_iso(),
            last_errors=list(errors or []),
            last_commit=commit,
        )

        def apply(data: dict[str, Any]) -> None:
            data["sources"][source_id] = record.to_dict()

        self._update(apply)
        logger.debug(
            f"Committed {len(record.deployed_files)} file(s) for source {source_id}"
        )
        return record

    def remove(self, source_id: str) -> bool:
        """Drop a source's record.

        Returns:
            True if a record existed
        """
        removed = []

        def apply(data: dict[str, Any]) -> None:
            if data["sources"].pop(source_id, None) is not None:
                removed.append(source_id)

        self._update(apply)
        return bool(removed)

    def mark_cleanup(self) -> None:
        """Record that orphaned files were just cleaned up."""

        def apply(data: dict[str, Any]) -> None:
            data["metadata"]["lastCleanup"] = utc_now_iso()

        self._update(apply)

    def owners_of(self, target_path: Path) -> list[str]:
        """Return the ids of all sources whose record contains target_path."""
        target = str(target_path)
        with self._mutex:
            sources = self._current()["sources"]
            return sorted(
                source_id
                for source_id, entry in sources.items()
                if any(
                    f.get("targetAbsolutePath") == target
                    for f in entry.get("deployedFiles", [])
                )
            )

    def metadata(self) -> dict[str, Any]:
        """Return a copy of the global metadata block."""
        with self._mutex:
            return dict(self._current()["metadata"])

    def check(self, sources: Iterable[Source], target_root: Path) -> list[StateIssue]:
        """Find records that no longer match the registry or the target tree.

        Reports records of sources that are not registered, recorded paths
        outside target_root and recorded files that no longer exist.

        Args:
            sources: Registered sources
            target_root: Root every recorded path must live under

        Returns:
            Issues sorted by source id
        """
        registered = {source.id for source in sources}
        issues: list[StateIssue] = []

        for record in self.all_records():
            if record.source_id not in registered:
                issues.append(
                    StateIssue(StateIssueKind.UNREGISTERED_SOURCE, record.source_id)
                )
            for deployed in sorted(
                record.deployed_files, key=lambda f: str(f.target_absolute_path)
            ):
                path = deployed.target_absolute_path
                if not is_within(path, target_root):
                    issues.append(
                        StateIssue(StateIssueKind.OUTSIDE_TARGET, record.source_id, path)
                    )
                elif not os.path.lexists(path):
                    issues.append(
                        StateIssue(StateIssueKind.MISSING_FILE, record.source_id, path)
                    )
        return issues

    def repair(self, issues: Iterable[StateIssue]) -> int:
        """Drop the records and entries named by issues from :meth:`check`.

        Files on disk are never touched; only the state file changes.

        Returns:
            Number of records and file entries dropped
        """
        drop_sources = set()
        drop_paths: dict[str, set[str]] = {}
        for issue in issues:
            if issue.kind == StateIssueKind.UNREGISTERED_SOURCE:
                drop_sources.add(issue.source_id)
            elif issue.path is not None:
                drop_paths.setdefault(issue.source_id, set()).add(str(issue.path))

        if not drop_sources and not drop_paths:
            return 0

        dropped = []

        def apply(data: dict[str, Any]) -> None:
            sources = data["sources"]
            for source_id in drop_sources:
                if sources.pop(source_id, None) is not None:
                    dropped.append(source_id)
            for source_id, paths in drop_paths.items():
                entry = sources.get(source_id)
                if entry is None:
                    continue
                kept = []
                for deployed in entry["deployedFiles"]:
                    if deployed["targetAbsolutePath"] in paths:
                        dropped.append(deployed["targetAbsolutePath"])
                    else:
                        kept.append(deployed)
                entry["deployedFiles"] = kept

        self._update(apply)
        logger.info(f"Repaired state: dropped {len(dropped)} record(s) and entries")
        return len(dropped)

    def reconstruct(
        self,
        target_roots: list[Path],
        sources: list[Source],
        mapper: DeploymentMapper,
        dry_run: bool = False,
    ) -> StateReconstructResult:
        """Rebuild all records by matching target files against sources.

        Each file found under a category directory of a target root is
        attributed to the first source (by id) whose current mappings
        resolve to that path. Files no source claims are reported as
        warnings. Nothing on disk is deleted.

        Args:
            target_roots: Target trees to scan
            sources: Registered sources
            mapper: Mapper used to compute each source's expected targets
            dry_run: Keep the rebuilt records in memory only; the state
                file is left untouched

        Returns:
            StateReconstructResult describing the rebuild
        """
        errors: list[str] = []
        warnings: list[str] = []
        claims: dict[Path, tuple[str, str, Category]] = {}
        processed = 0

        for source in sorted(sources, key=lambda s: s.id):
            if source.root_path is None or not source.root_path.is_dir():
                warnings.append(f"Source {source.id} has no local tree, skipped")
                continue
            try:
                matches = mapper.compute_mappings(source)
            except (MappingError, OSError) as e:
                errors.append(f"Source {source.id}: {e}")
                continue
            processed += 1
            for root in target_roots:
                for match in matches:
                    target = mapper.resolve_target(match, root)
                    claims.setdefault(
                        target, (source.id, match.source_relative_path, match.category)
                    )

        records: dict[str, DeploymentRecord] = {}
        now = utc_now_iso()
        recovered = 0

        for root in target_roots:
            for category in Category:
                category_dir = root / category.value
                if not category_dir.is_dir():
                    continue
                for relative_path in mapper.scan_files(category_dir):
                    path = category_dir.joinpath(*relative_path.split("/"))
                    claim = claims.get(path)
                    if claim is None:
                        warnings.append(f"No source claims {path}")
                        continue
                    content_hash = safe_file_hash(path)
                    if content_hash is None:
                        errors.append(f"Cannot hash {path}")
                        continue
                    source_id, source_relative, claimed_category = claim
                    record = records.setdefault(
                        source_id,
                        DeploymentRecord(source_id=source_id, last_deployed_at=now),
                    )
                    record.deployed_files.append(
                        DeployedFile(
                            source_relative_path=source_relative,
                            target_absolute_path=path,
                            content_hash=content_hash,
                            deployed_at=now,
                            category=claimed_category,
                        )
                    )
                    recovered += 1

        for warning in warnings:
            logger.warning(warning)

        rebuilt = {
            source_id: record.to_dict() for source_id, record in records.items()
        }

        def apply(data: dict[str, Any]) -> None:
            data["sources"] = rebuilt

        if dry_run:
            with self._mutex:
                preview = copy.deepcopy(self._current())
                apply(preview)
                self._data = preview
                self._preview = True
        else:
            self._update(apply)
            self.needs_reconstruction = False

        message = (
            f"Recovered {recovered} file(s) for {len(records)} source(s) "
            f"from {len(target_roots)} target root(s)"
        )
        logger.info(message + (" (dry run)" if dry_run else ""))
        return StateReconstructResult(
            success=not errors,
            message=message,
            sources_processed=processed,
            files_recovered=recovered,
            errors=errors,
            warnings=warnings,
        )
