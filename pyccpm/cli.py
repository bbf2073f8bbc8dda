"""CLI interface for pyccpm."""

import logging
from pathlib import Path
from typing import Any, Optional

import click

from . import __version__
from .config import Config, load_config
from .confirm import ClickConfirmation, ConfirmationPort, StaticConfirmation
from .deploy import DeploymentEngine, validate_category_patterns
from .exceptions import CcpmError
from .models import BatchResult, ConflictStrategy, DeployOptions, Source
from .output import OutputFormatter
from .registry import find_source, load_sources

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2
EXIT_INTERRUPTED = 130


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.json (default: $CCPM_HOME/config.json)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(version=__version__)
@click.pass_context
def main(
    ctx: Any,
    config_path: Optional[Path],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """pyccpm - Deploy Claude commands, agents and hooks from source trees."""
    ctx.ensure_object(dict)
    out = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["out"] = out

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyccpm").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        ctx.obj["config"] = load_config(config_path)
    except CcpmError as e:
        out.error(f"Configuration error: {e}")
        ctx.exit(EXIT_FAILURE)


def _build_engine(
    ctx: Any, confirmation: Optional[ConfirmationPort] = None
) -> DeploymentEngine:
    config: Config = ctx.obj["config"]
    return DeploymentEngine.from_config(config, confirmation, ctx.obj["out"])


def _select_sources(
    sources: list[Source], names: tuple[str, ...], out: OutputFormatter
) -> Optional[list[Source]]:
    """Resolve source names or ids; None if any is unknown."""
    if not names:
        return sources
    selected = []
    for name in names:
        source = find_source(sources, name)
        if source is None:
            out.error(f"Unknown source: {name}")
            return None
        if source not in selected:
            selected.append(source)
    return selected


def _batch_exit_code(batch: BatchResult) -> int:
    if batch.total_failure:
        return EXIT_FAILURE
    if batch.has_failures:
        return EXIT_PARTIAL
    return EXIT_OK


@main.command()
@click.argument("sources", nargs=-1)
@click.option(
    "--dry-run", is_flag=True, help="Show what would be deployed without deploying"
)
@click.option(
    "--force", "-f", is_flag=True, help="Overwrite conflicting files without asking"
)
@click.option(
    "--conflict",
    type=click.Choice([s.value for s in ConflictStrategy]),
    default=None,
    help="Conflict strategy for existing files (default: from config)",
)
@click.option(
    "--workers",
    type=int,
    default=None,
    help="Number of sources deployed in parallel (default: from config)",
)
@click.option(
    "--non-interactive",
    is_flag=True,
    help="Never prompt; conflicts that would prompt are skipped",
)
@click.pass_context
def deploy(
    ctx: Any,
    sources: tuple[str, ...],
    dry_run: bool,
    force: bool,
    conflict: Optional[str],
    workers: Optional[int],
    non_interactive: bool,
) -> None:
    """Deploy registered sources into the Claude directory.

    SOURCES are source ids or names; all registered sources are deployed
    when none are given.

    Examples:
        pyccpm deploy                       # Deploy everything
        pyccpm deploy agents-repo --dry-run # Preview one source
        pyccpm deploy --conflict overwrite  # Replace differing files
    """
    out: OutputFormatter = ctx.obj["out"]
    config: Config = ctx.obj["config"]

    if workers is not None and workers < 1:
        out.error("--workers must be at least 1")
        ctx.exit(EXIT_FAILURE)

    try:
        registered = load_sources(config.registry_file)
        selected = _select_sources(registered, sources, out)
        if selected is None:
            ctx.exit(EXIT_FAILURE)
            return
        if not selected:
            out.warning("No sources registered, nothing to deploy")
            return

        confirmation: ConfirmationPort = (
            StaticConfirmation(interactive=False)
            if non_interactive
            else ClickConfirmation()
        )
        engine = _build_engine(ctx, confirmation)

        rebuilt = engine.ensure_state(registered, dry_run=dry_run)
        if rebuilt is not None:
            verb = "would be reconstructed" if dry_run else "reconstructed"
            out.warning(f"State {verb}: {rebuilt.message}")

        options = DeployOptions(
            force=force,
            dry_run=dry_run,
            conflict_strategy=ConflictStrategy(conflict or config.conflict_strategy),
        )
        if not out.json_output and dry_run:
            out.info("Dry run: no files will be changed")

        batch = engine.deploy_many(
            selected, options, max_workers=workers or config.max_workers
        )
    except KeyboardInterrupt:
        out.warning("\nDeployment cancelled by user")
        ctx.exit(EXIT_INTERRUPTED)
        return
    except CcpmError as e:
        out.error(f"Error: {e}")
        ctx.exit(EXIT_FAILURE)
        return

    if out.json_output:
        out.output_json(
            {
                "results": [
                    batch.results[source_id].to_dict()
                    for source_id in sorted(batch.results)
                ],
                "errors": batch.errors,
            }
        )
    else:
        for source_id in sorted(batch.results):
            engine.display_result(batch.results[source_id])
        for source_id, message in sorted(batch.errors.items()):
            out.error(f"{source_id}: {message}")

        results = batch.results.values()
        out.print_summary(
            "Dry Run Complete" if dry_run else "Deployment Complete",
            [
                ("Sources", f"{len(batch.results)} ok, {len(batch.errors)} failed"),
                ("Deployed", f"{sum(len(r.deployed) for r in results)} files"),
                ("Unchanged", f"{sum(len(r.unchanged) for r in results)} files"),
                ("Skipped", f"{sum(len(r.skipped) for r in results)} files"),
                ("Failed", f"{sum(len(r.failed) for r in results)} files"),
                ("Removed", f"{sum(len(r.removed) for r in results)} files"),
            ],
        )

    ctx.exit(_batch_exit_code(batch))


@main.command()
@click.pass_context
def status(ctx: Any) -> None:
    """Show what is currently deployed from each source."""
    out: OutputFormatter = ctx.obj["out"]

    try:
        engine = _build_engine(ctx)
        records = engine.store.all_records()
        metadata = engine.store.metadata()
    except CcpmError as e:
        out.error(f"Error: {e}")
        ctx.exit(EXIT_FAILURE)
        return

    if out.json_output:
        out.output_json(
            {
                "sources": [record.to_dict() for record in records],
                "metadata": metadata,
                "needsReconstruction": engine.store.needs_reconstruction,
            }
        )
        return

    if engine.store.needs_reconstruction:
        out.warning("State file was corrupt; run 'pyccpm reconstruct'")

    if not records:
        out.info("Nothing deployed yet")
        return

    out.print_table(
        "Deployed Sources",
        ["Source", "Files", "Last deployed", "Commit", "Errors"],
        [
            [
                record.source_id,
                str(len(record.deployed_files)),
                record.last_deployed_at or "-",
                (record.last_commit or "-")[:12],
                str(len(record.last_errors)),
            ]
            for record in records
        ],
    )
    out.print_summary(
        "State",
        [
            ("Total files", str(metadata.get("totalDeployedFiles", 0))),
            ("Last updated", str(metadata.get("updatedAt") or "-")),
            ("Last cleanup", str(metadata.get("lastCleanup") or "never")),
        ],
    )


@main.command()
@click.argument("source")
@click.option("--force", "-f", is_flag=True, help="Also remove locally modified files")
@click.option(
    "--dry-run", is_flag=True, help="Show what would be removed without removing"
)
@click.pass_context
def uninstall(ctx: Any, source: str, force: bool, dry_run: bool) -> None:
    """Remove every file deployed from SOURCE.

    Files edited since they were deployed are kept unless --force is given.
    """
    out: OutputFormatter = ctx.obj["out"]
    config: Config = ctx.obj["config"]

    try:
        registered = load_sources(config.registry_file)
        match = find_source(registered, source)
        source_id = match.id if match else source
        engine = _build_engine(ctx)
        result = engine.uninstall(source_id, force=force, dry_run=dry_run)
    except KeyboardInterrupt:
        out.warning("\nUninstall cancelled by user")
        ctx.exit(EXIT_INTERRUPTED)
        return
    except CcpmError as e:
        out.error(f"Error: {e}")
        ctx.exit(EXIT_FAILURE)
        return

    if out.json_output:
        out.output_json(result.to_dict())
    else:
        verb = "Would remove" if dry_run else "Removed"
        for path in result.modified:
            out.warning(f"Kept modified file {path} (use --force to remove)")
        for path in result.failed:
            out.error(f"Failed to remove {path}")
        out.print_summary(
            f"Uninstalled {source_id}" if not dry_run else f"Dry run: {source_id}",
            [
                (verb, f"{len(result.removed)} files"),
                ("Kept (modified)", f"{len(result.modified)} files"),
                ("Skipped", f"{len(result.skipped)} files"),
                ("Failed", f"{len(result.failed)} files"),
            ],
        )

    if result.failed:
        ctx.exit(EXIT_PARTIAL if result.removed else EXIT_FAILURE)


@main.command()
@click.pass_context
def reconstruct(ctx: Any) -> None:
    """Rebuild the deployment state by scanning the Claude directory.

    Every file under commands/, agents/ and hooks/ is attributed to the
    first registered source that would deploy it. Nothing is deleted.
    """
    out: OutputFormatter = ctx.obj["out"]
    config: Config = ctx.obj["config"]

    try:
        registered = load_sources(config.registry_file)
        engine = _build_engine(ctx)
        result = engine.store.reconstruct([config.target_dir], registered, engine.mapper)
    except CcpmError as e:
        out.error(f"Error: {e}")
        ctx.exit(EXIT_FAILURE)
        return

    if out.json_output:
        out.output_json(
            {
                "success": result.success,
                "message": result.message,
                "sourcesProcessed": result.sources_processed,
                "filesRecovered": result.files_recovered,
                "errors": result.errors,
                "warnings": result.warnings,
            }
        )
    else:
        for warning in result.warnings:
            out.warning(warning)
        for error in result.errors:
            out.error(error)
        out.success(result.message)

    if not result.success:
        ctx.exit(EXIT_PARTIAL)


@main.command()
@click.option(
    "--repair",
    is_flag=True,
    help="Drop state entries for unregistered sources, paths outside the "
    "Claude directory and files that no longer exist",
)
@click.pass_context
def validate(ctx: Any, repair: bool) -> None:
    """Check source patterns and the deployment state.

    Reports invalid category patterns, sources without a local tree and
    state records that no longer match the registry or the Claude
    directory. Files on disk are never changed, not even with --repair.
    """
    out: OutputFormatter = ctx.obj["out"]
    config: Config = ctx.obj["config"]

    try:
        registered = load_sources(config.registry_file)
        engine = _build_engine(ctx)
        issues = engine.store.check(registered, config.target_dir)
        repaired = engine.store.repair(issues) if repair and issues else 0
    except CcpmError as e:
        out.error(f"Error: {e}")
        ctx.exit(EXIT_FAILURE)
        return

    report = {}
    error_count = 0
    for source in registered:
        errors, warnings = validate_category_patterns(source)
        if source.root_path is None or not source.root_path.is_dir():
            warnings.append(f"Local path {source.root_path} does not exist")
        report[source.id] = {"errors": errors, "warnings": warnings}
        error_count += len(errors)

    state_ok = not issues or bool(repaired)
    if out.json_output:
        out.output_json(
            {
                "sources": report,
                "state": {
                    "issues": [issue.to_dict() for issue in issues],
                    "repaired": repaired,
                    "needsReconstruction": engine.store.needs_reconstruction,
                },
            }
        )
    else:
        for source_id, entry in report.items():
            for error in entry["errors"]:
                out.error(f"{source_id}: {error}")
            for warning in entry["warnings"]:
                out.warning(f"{source_id}: {warning}")
        if engine.store.needs_reconstruction:
            out.warning("State file was corrupt; run 'pyccpm reconstruct'")
        for issue in issues:
            out.warning(f"State: {issue.message}")
        if repaired:
            out.success(f"Repaired state: dropped {repaired} stale entries")
        elif issues:
            out.info("Run 'pyccpm validate --repair' to drop stale state entries")
        if error_count == 0 and state_ok:
            out.success(f"{len(registered)} source(s) valid")

    if error_count or not state_ok:
        ctx.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
