"""Deployment engine orchestrating mapping, transfer, state and cleanup."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout
from rich.progress import Progress, SpinnerColumn, TextColumn

from ..config import Config
from ..confirm import ConfirmationPort
from ..exceptions import (
    CcpmError,
    LockTimeoutError,
    SourceNotReadyError,
    StateError,
    TransferError,
)
from ..models import (
    BatchResult,
    Category,
    ConflictDecision,
    ConflictStrategy,
    DeployedFile,
    DeploymentRecord,
    DeploymentResult,
    DeployOptions,
    Source,
    StateReconstructResult,
    UninstallResult,
)
from ..output import OutputFormatter
from ..utils import (
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_MAX_WORKERS,
    calculate_file_hash,
    is_within,
    path_key,
    safe_file_hash,
    utc_now_iso,
)
from .mapper import DeploymentMapper
from .reconciler import Reconciler
from .resolver import ConflictResolver
from .state import StateStore
from .transfer import FileTransfer

logger = logging.getLogger(__name__)


class DeploymentEngine:
    """Deploys sources into the target tree and keeps the state store in sync.

    For one source the steps run strictly in order: map, resolve and copy
    each file, commit the new record, then remove orphans. Deploys of the
    same source are serialised with a lock file under ``locks_dir``.
    """

    def __init__(
        self,
        store: StateStore,
        target_root: Path,
        locks_dir: Path,
        mapper: Optional[DeploymentMapper] = None,
        resolver: Optional[ConflictResolver] = None,
        transfer: Optional[FileTransfer] = None,
        output: Optional[OutputFormatter] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        """Initialize deployment engine.

        Args:
            store: State store holding deployment records
            target_root: Root of the target tree
            locks_dir: Directory for per-source lock files
            mapper: Mapper computing source to target paths
            resolver: Conflict resolver (defaults to one without a
                confirmation port, so prompting skips)
            transfer: File copier
            output: Output formatter for displaying results
            lock_timeout: Seconds to wait for a per-source lock
        """
        self.store = store
        self.target_root = target_root
        self.locks_dir = locks_dir
        self.mapper = mapper or DeploymentMapper()
        self.resolver = resolver or ConflictResolver()
        self.transfer = transfer or FileTransfer()
        self.output = output or OutputFormatter()
        self.lock_timeout = lock_timeout
        self.reconciler = Reconciler(store, target_root)
        self._prompt_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: Config,
        confirmation: Optional[ConfirmationPort] = None,
        output: Optional[OutputFormatter] = None,
    ) -> "DeploymentEngine":
        """Build an engine and its collaborators from a Config."""
        store = StateStore(
            config.state_file,
            lock_timeout=config.lock_timeout,
            write_retries=config.state_write_retries,
            retry_delay=config.retry_delay,
        )
        return cls(
            store=store,
            target_root=config.target_dir,
            locks_dir=config.locks_dir,
            mapper=DeploymentMapper(config.type_based_extensions),
            resolver=ConflictResolver(confirmation),
            output=output,
            lock_timeout=config.lock_timeout,
        )

    def _source_lock(self, source_id: str) -> FileLock:
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        lock_path = self.locks_dir / f"{path_key(source_id)}.lock"
        return FileLock(str(lock_path), timeout=self.lock_timeout)

    def _acquire(self, source_id: str) -> FileLock:
        lock = self._source_lock(source_id)
        try:
            lock.acquire()
        except Timeout as e:
            raise LockTimeoutError(lock.lock_file, self.lock_timeout) from e
        return lock

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    def deploy(
        self, source: Source, options: Optional[DeployOptions] = None
    ) -> DeploymentResult:
        """Deploy one source.

        Args:
            source: Source to deploy
            options: Force, dry-run and conflict strategy

        Returns:
            DeploymentResult for the source

        Raises:
            SourceNotReadyError: If the source has no local tree
            LockTimeoutError: If another deploy of the same source holds the lock
            StateError: If the state file cannot be committed
        """
        options = options or DeployOptions()
        if source.root_path is None:
            raise SourceNotReadyError(source.id, "no local path, clone it first")
        if not source.root_path.is_dir():
            raise SourceNotReadyError(
                source.id, f"local path {source.root_path} does not exist"
            )

        lock = self._acquire(source.id)
        try:
            return self._deploy_locked(source, options)
        finally:
            lock.release()

    def _deploy_locked(
        self, source: Source, options: DeployOptions
    ) -> DeploymentResult:
        result = DeploymentResult(source_id=source.id, dry_run=options.dry_run)
        previous = self.store.get(source.id)
        strategy = options.effective_strategy

        matches = self.mapper.compute_mappings(source)
        logger.info(
            f"Deploying {len(matches)} file(s) from {source.id}"
            + (" (dry run)" if options.dry_run else "")
        )

        kept: list[DeployedFile] = []
        new_targets: list[Path] = []

        for match in matches:
            source_path = source.root_path.joinpath(
                *match.source_relative_path.split("/")
            )
            target_path = self.mapper.resolve_target(match, self.target_root)
            new_targets.append(target_path)
            recorded = previous.find(target_path) if previous else None

            try:
                source_hash = calculate_file_hash(source_path)
            except OSError as e:
                logger.warning(f"Cannot read {source_path}: {e}")
                result.failed.append(target_path)
                result.errors.append(f"{match.source_relative_path}: {e}")
                if recorded:
                    kept.append(recorded)
                continue

            deployed = DeployedFile(
                source_relative_path=match.source_relative_path,
                target_absolute_path=target_path,
                content_hash=source_hash,
                deployed_at=utc_now_iso(),
                category=match.category,
            )

            target_hash = safe_file_hash(target_path)
            if target_hash == source_hash:
                if recorded:
                    deployed.deployed_at = recorded.deployed_at
                result.unchanged.append(deployed)
                continue

            exists = target_path.exists() or target_path.is_symlink()
            is_update = recorded is not None and recorded.content_hash == target_hash
            if exists and not is_update:
                result.conflicts.append(target_path)
                decision = self._resolve(target_path, strategy)
                if decision == ConflictDecision.SKIP:
                    result.skipped.append(target_path)
                    if recorded:
                        kept.append(recorded)
                    continue

            if options.dry_run:
                result.deployed.append(deployed)
                continue

            try:
                deployed.content_hash = self.transfer.copy_file(source_path, target_path)
            except TransferError as e:
                logger.warning(f"Failed to deploy {match.source_relative_path}: {e}")
                result.failed.append(target_path)
                result.errors.append(str(e))
                if recorded:
                    kept.append(recorded)
                continue
            result.deployed.append(deployed)

        if options.dry_run:
            result.removed = self.reconciler.reconcile(
                source.id, new_targets, previous, dry_run=True
            )
            return result

        self.store.commit(
            source.id,
            result.deployed + result.unchanged + kept,
            errors=result.errors,
            commit=source.commit,
        )
        result.removed = self.reconciler.reconcile(source.id, new_targets, previous)

        logger.info(
            f"Source {source.id}: {len(result.deployed)} deployed, "
            f"{len(result.unchanged)} unchanged, {len(result.skipped)} skipped, "
            f"{len(result.failed)} failed, {len(result.removed)} removed"
        )
        return result

    def _resolve(self, target_path: Path, strategy: ConflictStrategy) -> ConflictDecision:
        # Prompts from parallel deploys must not interleave on the terminal
        with self._prompt_lock:
            return self.resolver.resolve(target_path, strategy)

    def deploy_many(
        self,
        sources: list[Source],
        options: Optional[DeployOptions] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> BatchResult:
        """Deploy several sources in parallel.

        A source that fails outright is recorded in ``BatchResult.errors``
        and never stops its siblings.

        Args:
            sources: Sources to deploy
            options: Options applied to every source
            max_workers: Maximum number of sources deployed at once

        Returns:
            BatchResult with per-source results and errors
        """
        options = options or DeployOptions()
        batch = BatchResult()
        if not sources:
            return batch

        workers = max(1, min(max_workers, len(sources)))
        logger.debug(f"Deploying {len(sources)} source(s) with {workers} worker(s)")

        def deploy_with_timing(source: Source) -> tuple[DeploymentResult, float]:
            start = time.time()
            result = self.deploy(source, options)
            return result, time.time() - start

        show_progress = (
            not self.output.quiet
            and not self.output.json_output
            and options.effective_strategy != ConflictStrategy.PROMPT
        )

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.output.console,
            transient=True,
            disable=not show_progress,
        ) as progress:
            task = progress.add_task(
                f"Deploying {len(sources)} source(s)...", total=len(sources)
            )
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = {
                    executor.submit(deploy_with_timing, source): source
                    for source in sources
                }
                for future in as_completed(futures):
                    source = futures[future]
                    try:
                        result, elapsed = future.result()
                        batch.results[source.id] = result
                        logger.debug(f"Deployed {source.id} in {elapsed:.2f}s")
                    except (CcpmError, OSError) as e:
                        logger.error(f"Deployment of {source.id} failed: {e}")
                        batch.errors[source.id] = str(e)
                    progress.advance(task)

        return batch

    # ------------------------------------------------------------------
    # Uninstall
    # ------------------------------------------------------------------

    def uninstall(
        self, source_id: str, force: bool = False, dry_run: bool = False
    ) -> UninstallResult:
        """Remove every file a source has deployed.

        Files whose content no longer matches the recorded hash were edited
        after deployment and are kept unless force is set.

        Args:
            source_id: Source to uninstall
            force: Also remove modified files
            dry_run: Only report what would be removed

        Returns:
            UninstallResult

        Raises:
            StateError: If nothing is recorded for the source
        """
        lock = self._acquire(source_id)
        try:
            record = self.store.get(source_id)
            if record is None:
                raise StateError(f"No deployment recorded for source '{source_id}'")
            return self._uninstall_locked(record, force, dry_run)
        finally:
            lock.release()

    def _uninstall_locked(
        self, record: DeploymentRecord, force: bool, dry_run: bool
    ) -> UninstallResult:
        result = UninstallResult(source_id=record.source_id, dry_run=dry_run)
        remaining: list[DeployedFile] = []

        for deployed in sorted(record.deployed_files, key=lambda f: str(f.target_absolute_path)):
            path = deployed.target_absolute_path
            if not is_within(path, self.target_root):
                logger.warning(f"Not removing {path}: outside {self.target_root}")
                result.skipped.append(path)
                continue
            if not path.exists():
                logger.debug(f"{path} already removed")
                continue
            owners = [o for o in self.store.owners_of(path) if o != record.source_id]
            if owners:
                logger.info(f"Keeping {path}: also deployed by {', '.join(owners)}")
                result.skipped.append(path)
                continue
            if safe_file_hash(path) != deployed.content_hash and not force:
                logger.warning(f"Keeping modified file {path}")
                result.modified.append(path)
                remaining.append(deployed)
                continue

            if dry_run:
                result.removed.append(path)
                continue
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Failed to remove {path}: {e}")
                result.failed.append(path)
                remaining.append(deployed)
                continue
            result.removed.append(path)
            self.reconciler.prune_empty_dirs(path.parent)

        if dry_run:
            return result

        if remaining:
            self.store.commit(
                record.source_id,
                remaining,
                errors=record.last_errors,
                commit=record.last_commit,
            )
        else:
            self.store.remove(record.source_id)
        if result.removed:
            self.store.mark_cleanup()
        return result

    # ------------------------------------------------------------------
    # State recovery
    # ------------------------------------------------------------------

    def target_has_content(self) -> bool:
        """Return True if any category directory in the target holds a file."""
        for category in Category:
            category_dir = self.target_root / category.value
            if category_dir.is_dir() and self.mapper.scan_files(category_dir):
                return True
        return False

    def ensure_state(
        self, sources: list[Source], dry_run: bool = False
    ) -> Optional[StateReconstructResult]:
        """Rebuild the state store when it is missing or was corrupt.

        Args:
            sources: Registered sources
            dry_run: Rebuild in memory only, leaving the state file untouched

        Returns:
            The reconstruction result, or None if the state was usable
        """
        if self.store.needs_reconstruction:
            logger.warning("State was corrupt, reconstructing from the target tree")
        elif not self.store.existed and self.target_has_content():
            logger.warning("No state file but target has content, reconstructing")
        else:
            return None
        return self.store.reconstruct(
            [self.target_root], sources, self.mapper, dry_run=dry_run
        )

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def display_result(self, result: DeploymentResult) -> None:
        """Display the outcome of one deploy."""
        if self.output.quiet or self.output.json_output:
            return

        verb = "Would deploy" if result.dry_run else "Deployed"
        self.output.info(f"{result.source_id}:")
        if result.deployed:
            self.output.info(f"  ↑ {verb}: {len(result.deployed)} file(s)")
        if result.unchanged:
            self.output.info(f"  = Unchanged: {len(result.unchanged)} file(s)")
        if result.skipped:
            self.output.warning(f"  ⚠ Skipped: {len(result.skipped)} file(s)")
            for path in result.skipped:
                self.output.warning(f"    {path}")
        if result.removed:
            verb = "Would remove" if result.dry_run else "Removed"
            self.output.info(f"  ✗ {verb}: {len(result.removed)} orphaned file(s)")
        if result.failed:
            self.output.error(f"  ✗ Failed: {len(result.failed)} file(s)")
            for error in result.errors:
                self.output.error(f"    {error}")
        if not (result.deployed or result.removed or result.skipped or result.failed):
            self.output.info("  No changes needed - everything is up to date")
