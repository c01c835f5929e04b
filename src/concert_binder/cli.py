"""CLI for concert-binder using Typer and Rich.

Commands map one-to-one onto pipeline runs; everything user-visible is a
run summary, a validation report or a cache/backup listing.
"""

from __future__ import annotations

import json
import logging
import sys
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any

import typer

from concert_binder.artifacts import PersistedArtifacts
from concert_binder.backup import DryRunSink, cleanup_backups
from concert_binder.config import Config
from concert_binder.console import (
    print as cprint,
)
from concert_binder.console import (
    print_counts,
    print_error,
    print_json,
    print_lines,
    print_success,
    print_warning,
    set_console,
)
from concert_binder.errors import ConcertBinderError
from concert_binder.pipeline import (
    CACHE_FILES,
    EnrichSummary,
    ImportSummary,
    Pipeline,
    artist_overrides,
    open_cache,
)
from concert_binder.safe_logging import configure_rich_logging, redact_config
from concert_binder.validator import ConsistencyValidator, suggested_fixes

log = logging.getLogger(__name__)


class OutputFormat(StrEnum):
    """How command results are rendered."""

    TEXT = "text"
    JSON = "json"


class ExitCode:
    """Process exit codes; usage errors exit 2 via Typer."""

    SUCCESS = 0
    ERROR = 1


app = typer.Typer(
    name="concert-binder",
    help="Concert-Binder: concert catalog import, enrichment and validation",
    no_args_is_help=True,
    add_completion=False,
)

enrich_app = typer.Typer(help="Enrich catalog artists and venues from external providers")
cache_app = typer.Typer(help="Provider cache management commands")
backups_app = typer.Typer(help="Artifact backup management")

app.add_typer(enrich_app, name="enrich")
app.add_typer(cache_app, name="cache")
app.add_typer(backups_app, name="backups")


class AppState:
    """Settings resolved by the root callback and read by every command."""

    config: Config
    output_format: OutputFormat
    verbose: int


state = AppState()


@app.callback()
def main(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to configuration TOML file", exists=True),
    ] = None,
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", help="Directory holding the CSV export and the JSON artifacts"),
    ] = None,
    output: Annotated[
        OutputFormat,
        typer.Option("--output", "-o", help="Output format"),
    ] = OutputFormat.TEXT,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
) -> None:
    """Concert-Binder: keeps concerts.json and its metadata documents enriched and consistent."""
    try:
        cfg = Config.load(config_path)
    except ValueError as e:
        # pydantic.ValidationError and tomllib.TOMLDecodeError are both ValueErrors
        print_error(f"Invalid configuration: {e}")
        raise typer.Exit(code=ExitCode.ERROR) from e

    # CLI > Env > Config File > Defaults
    if data_dir:
        cfg.paths.data_dir = data_dir

    if verbose > 0:
        log_level = logging.DEBUG if verbose >= 2 else logging.INFO
    else:
        log_level = getattr(logging, cfg.logging.level.upper(), logging.WARNING)

    console = configure_rich_logging(
        level=log_level,
        format_string=cfg.logging.format,
        show_time=True,
        show_path=False,
    )
    set_console(console)

    # Request lines carry API keys; keep them out unless very verbose (-vvv)
    if verbose < 3:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    if config_path:
        log.info(f"Loaded config from {config_path}")
    log.debug(f"Effective config: {redact_config(cfg.model_dump(mode='json'))}")

    state.config = cfg
    state.output_format = output
    state.verbose = verbose


def _fail(error: ConcertBinderError) -> None:
    print_error(str(error))
    sys.exit(ExitCode.ERROR)


DRY_RUN_PREVIEW_LINES = 20


def _planned_writes(pipeline: Pipeline) -> list[dict[str, Any]]:
    """Writes the dry-run sink held back, with their full documents."""
    if not isinstance(pipeline.sink, DryRunSink):
        return []
    return [
        {"path": str(write.path), "bytes": write.size, "content": json.loads(write.content)}
        for write in pipeline.sink.writes
    ]


def _summary_json(summary: ImportSummary | EnrichSummary, pipeline: Pipeline) -> dict[str, Any]:
    data = summary.to_dict()
    planned = _planned_writes(pipeline)
    if planned:
        data["plannedWrites"] = planned
    return data


def _report_dry_run(pipeline: Pipeline) -> None:
    if not isinstance(pipeline.sink, DryRunSink):
        return
    for write in pipeline.sink.writes:
        print_warning(f"Dry run, not writing {write.path} ({write.size} bytes)")
        lines = write.content.splitlines()
        preview = lines[:DRY_RUN_PREVIEW_LINES]
        if len(lines) > len(preview):
            preview.append(f"... ({len(lines) - len(preview)} more lines)")
        print_lines("Would write", preview)


def _print_enrich_summary(summary: EnrichSummary) -> None:
    counts: dict[str, Any] = {
        "total": summary.total,
        "enriched": summary.enriched,
        "cached": summary.cached,
        "skipped": summary.skipped,
        "failed": summary.failed,
    }
    for provider, count in sorted(summary.providers.items()):
        counts[f"via {provider}"] = count
    print_counts(f"Enriched {summary.target}", counts)
    if summary.written:
        print_success(f"Wrote {summary.written}")
    if summary.backup:
        cprint(f"Backup: {summary.backup}")


# ====================================================================
# MAIN COMMANDS
# ====================================================================


@app.command("import")
def import_(
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Run everything but do not write concerts.json")] = False,
) -> None:
    """Rebuild concerts.json from the CSV export, preserving stored ids and extra fields.

    Examples:
        concert-binder import --dry-run
        concert-binder --data-dir public/data import
    """
    pipeline = Pipeline(state.config, dry_run=dry_run, show_progress=state.output_format == OutputFormat.TEXT)
    try:
        summary = pipeline.run_import()
    except ConcertBinderError as e:
        _fail(e)
        return

    if state.output_format == OutputFormat.JSON:
        print_json(_summary_json(summary, pipeline))
        return

    _report_dry_run(pipeline)
    print_counts(
        "Import",
        {
            "rows": summary.rows,
            "venues": summary.venues,
            "located": summary.located,
            "unlocated": summary.unlocated,
            "added": summary.added,
            "updated": summary.updated,
            "unchanged": summary.unchanged,
            "retained": summary.retained,
            "dropped": summary.dropped,
            "total concerts": summary.total,
        },
    )
    if summary.written:
        print_success(f"Wrote {summary.written}")
    if summary.backup:
        cprint(f"Backup: {summary.backup}")


@app.command()
def validate() -> None:
    """Check artifact keys against the normalization rules.

    Exits with status 1 when any error-severity issue is found.
    """
    paths = state.config.paths
    try:
        artifacts = PersistedArtifacts.load(
            paths.catalog_path, paths.artists_metadata_path, paths.venues_metadata_path
        )
        issues = ConsistencyValidator(artist_overrides(state.config)).validate(artifacts)
    except ConcertBinderError as e:
        _fail(e)
        return

    errors = [i for i in issues if i.is_error]
    warnings = [i for i in issues if not i.is_error]
    fixes = suggested_fixes(issues)

    if state.output_format == OutputFormat.JSON:
        print_json(
            {
                "valid": not errors,
                "errors": [i.to_dict() for i in errors],
                "warnings": [i.to_dict() for i in warnings],
                "suggestedFixes": fixes,
            }
        )
    else:
        print_lines(f"Errors ({len(errors)})", (i.message for i in errors))
        print_lines(f"Warnings ({len(warnings)})", (i.message for i in warnings))
        print_lines("Suggested fixes", fixes)
        if errors:
            print_error(f"Validation failed with {len(errors)} errors")
        else:
            print_success(f"All keys consistent ({len(warnings)} warnings)")

    if errors:
        raise typer.Exit(code=ExitCode.ERROR)


# ====================================================================
# ENRICH COMMANDS
# ====================================================================


@enrich_app.command("artists")
def enrich_artists(
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Do not write artists-metadata.json")] = False,
    refresh: Annotated[bool, typer.Option("--refresh", help="Ignore cached provider answers")] = False,
    only: Annotated[
        str | None,
        typer.Option("--only", help="Use a single provider (spotify, theaudiodb, lastfm)"),
    ] = None,
) -> None:
    """Fetch artist images, bios and genres for every catalog artist."""
    pipeline = Pipeline(state.config, dry_run=dry_run, show_progress=state.output_format == OutputFormat.TEXT)
    try:
        summary = pipeline.enrich_artists(refresh=refresh, only=only)
    except ConcertBinderError as e:
        _fail(e)
        return

    if state.output_format == OutputFormat.JSON:
        print_json(_summary_json(summary, pipeline))
        return
    _report_dry_run(pipeline)
    _print_enrich_summary(summary)


@enrich_app.command("venues")
def enrich_venues(
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Do not write venues-metadata.json")] = False,
    refresh: Annotated[bool, typer.Option("--refresh", help="Ignore cached provider answers")] = False,
) -> None:
    """Fetch place details and photos for every catalog venue."""
    pipeline = Pipeline(state.config, dry_run=dry_run, show_progress=state.output_format == OutputFormat.TEXT)
    try:
        summary = pipeline.enrich_venues(refresh=refresh)
    except ConcertBinderError as e:
        _fail(e)
        return

    if state.output_format == OutputFormat.JSON:
        print_json(_summary_json(summary, pipeline))
        return
    _report_dry_run(pipeline)
    _print_enrich_summary(summary)


# ====================================================================
# CACHE COMMANDS
# ====================================================================


@cache_app.command("status")
def cache_status() -> None:
    """Show entry counts for every provider cache."""
    report: dict[str, dict[str, Any]] = {}
    for domain in CACHE_FILES:
        cache = open_cache(state.config, domain)
        report[domain] = {"path": str(cache.path), **cache.stats()}

    if state.output_format == OutputFormat.JSON:
        print_json(report)
        return
    for domain, stats in report.items():
        print_counts(f"{domain} cache", stats)


@cache_app.command("purge")
def cache_purge(
    expired_only: Annotated[bool, typer.Option(help="Only purge expired entries")] = False,
    negative_only: Annotated[
        bool, typer.Option(help="Only purge negative entries so misses are looked up again")
    ] = False,
    force: Annotated[bool, typer.Option(help="Skip confirmation prompt")] = False,
) -> None:
    """Purge provider cache entries."""
    if expired_only and negative_only:
        print_error("Use either --expired-only or --negative-only, not both")
        raise typer.Exit(code=ExitCode.ERROR)

    if not (expired_only or negative_only or force):
        typer.confirm("Delete every cached provider answer?", abort=True)

    removed: dict[str, int] = {}
    for domain in CACHE_FILES:
        cache = open_cache(state.config, domain)
        if expired_only:
            removed[domain] = cache.purge_expired()
        elif negative_only:
            removed[domain] = cache.purge_negative()
        else:
            removed[domain] = len(cache)
            cache.clear()
        if cache.dirty and not cache.flush():
            print_error(f"Could not save {cache.path}")
            raise typer.Exit(code=ExitCode.ERROR)

    if state.output_format == OutputFormat.JSON:
        print_json({"removed": removed})
        return
    print_counts("Removed cache entries", removed)


# ====================================================================
# BACKUP COMMANDS
# ====================================================================


@backups_app.command("cleanup")
def backups_cleanup(
    keep: Annotated[
        int | None,
        typer.Option("--keep", min=0, help="Backups to keep per artifact (default: backup.retention)"),
    ] = None,
) -> None:
    """Delete old artifact backups in the data directory."""
    keep = state.config.backup.retention if keep is None else keep
    deleted = cleanup_backups(state.config.paths.data_dir, keep)

    if state.output_format == OutputFormat.JSON:
        print_json({"keep": keep, "deleted": deleted})
        return
    if not deleted:
        cprint("No backups found")
        return
    print_counts(f"Deleted backups (keeping {keep} each)", deleted)


def cli() -> None:
    """Entry point for the concert-binder command."""
    app()


if __name__ == "__main__":
    cli()
