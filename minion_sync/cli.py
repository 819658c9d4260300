"""Command-line interface for task synchronization."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import typer

from minion_sync.clients.factory import build_backend
from minion_sync.config import AppConfig
from minion_sync.errors import ConfigurationError, MinionSyncError
from minion_sync.fileio import exclusive_lock
from minion_sync.reporting import TextReporter, render_json, render_text
from minion_sync.services.conflict import ConflictStrategy
from minion_sync.services.mapping_store import IdentityMapStore
from minion_sync.services.sync import SyncCallbacks, SyncConfiguration, SyncEngine

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_CONFIG = Path("minion-sync.yaml")

app = typer.Typer(help="Task synchronization between task backends")
sync_app = typer.Typer(help="Sync tasks between backends")
app.add_typer(sync_app, name="sync")


class OutputFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


@dataclass
class CliState:
    output: OutputFormat = OutputFormat.TEXT


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format=LOG_FORMAT)


def build_engine(
    config: AppConfig,
    source: str,
    target: str,
    *,
    dry_run: Optional[bool] = None,
    strategy: Optional[ConflictStrategy] = None,
    callbacks: Optional[SyncCallbacks] = None,
) -> tuple[SyncEngine, IdentityMapStore]:
    if source == target:
        raise ConfigurationError("Source and target backends must differ")
    source_backend = build_backend(source, config.backend(source))
    target_backend = build_backend(target, config.backend(target))
    config.ensure_runtime_dirs()
    store = IdentityMapStore.for_pair(config.state_dir, source, target)
    options = config.sync
    sync_config = SyncConfiguration(
        conflict_strategy=strategy or options.conflict_strategy,
        dry_run=options.dry_run if dry_run is None else dry_run,
        sync_tags=options.sync_tags,
        sync_sections=options.sync_sections,
        filter=options.filter.to_filter() if options.filter else None,
        time_budget=options.time_budget,
        callbacks=callbacks or SyncCallbacks(),
    )
    engine = SyncEngine(
        source_backend,
        target_backend,
        store,
        sync_config,
        source_name=source,
        target_name=target,
    )
    return engine, store


def _fail(message: str) -> None:
    typer.secho(f"✗ {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    output: OutputFormat = typer.Option(OutputFormat.TEXT, "--output", "-o", help="Output format"),
) -> None:
    """Task synchronization between task backends."""
    ctx.obj = CliState(output=output)


@sync_app.command("pull")
def pull(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Name of the source backend"),
    target: str = typer.Argument(..., help="Name of the target backend"),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to the YAML configuration"),
    dry_run: Optional[bool] = typer.Option(
        None,
        "--dry-run/--no-dry-run",
        help="Preview the sync without making changes (default taken from the configuration)",
    ),
    strategy: Optional[ConflictStrategy] = typer.Option(
        None, "--strategy", help="Conflict strategy (default taken from the configuration)"
    ),
    verbosity: int = typer.Option(0, "--verbose", "-v", count=True, help="Logging level"),
) -> None:
    """One-way sync of tasks from SOURCE to TARGET."""
    configure_logging(verbosity)
    state: CliState = ctx.obj or CliState()
    as_json = state.output is OutputFormat.JSON
    reporter = TextReporter(disable=as_json)
    try:
        config = AppConfig.load(config_path)
        effective_dry_run = config.sync.dry_run if dry_run is None else dry_run
        engine, store = build_engine(
            config,
            source,
            target,
            dry_run=effective_dry_run,
            strategy=strategy,
            callbacks=None if as_json else reporter.callbacks(),
        )
        if not as_json:
            typer.echo(f"\nSyncing from '{source}' to '{target}'...")
            if effective_dry_run:
                typer.echo("(DRY RUN - no changes will be made)\n")
        with exclusive_lock(store.path):
            result = engine.sync()
    except MinionSyncError as exc:
        reporter.close()
        _fail(f"Sync failed: {exc}")
        return
    reporter.close()

    typer.echo(render_json(result) if as_json else render_text(result))
    if not result.success:
        raise typer.Exit(code=1)


@sync_app.command("status")
def status(
    ctx: typer.Context,
    source: str = typer.Argument(..., help="Name of the source backend"),
    target: str = typer.Argument(..., help="Name of the target backend"),
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to the YAML configuration"),
) -> None:
    """Shows the identity mappings recorded for SOURCE -> TARGET."""
    state: CliState = ctx.obj or CliState()
    try:
        config = AppConfig.load(config_path)
        config.backend(source)
        config.backend(target)
        store = IdentityMapStore.for_pair(config.state_dir, source, target)
        store.load()
        mappings = store.all()
    except MinionSyncError as exc:
        _fail(str(exc))
        return
    if state.output is OutputFormat.JSON:
        payload = {
            "source": source,
            "target": target,
            "stateFile": str(store.path),
            "mappings": len(mappings),
        }
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    typer.echo(f"{source} -> {target}: {len(mappings)} mapped tasks ({store.path})")


@app.command("backends")
def backends(
    ctx: typer.Context,
    config_path: Path = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to the YAML configuration"),
) -> None:
    """Lists the configured backends."""
    state: CliState = ctx.obj or CliState()
    try:
        config = AppConfig.load(config_path)
    except MinionSyncError as exc:
        _fail(str(exc))
        return
    if state.output is OutputFormat.JSON:
        payload = [
            {"name": name, "type": settings.type, "description": settings.description}
            for name, settings in sorted(config.backends.items())
        ]
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    if not config.backends:
        typer.echo("No backends configured")
        return
    for name, settings in sorted(config.backends.items()):
        suffix = f" - {settings.description}" if settings.description else ""
        typer.echo(f"{name} ({settings.type}){suffix}")


if __name__ == "__main__":
    app()
