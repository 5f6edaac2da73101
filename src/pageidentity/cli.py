"""Command-line interface for page identity capture, comparison and resolution."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from pageidentity import __version__
from pageidentity.config import Config, SQLiteConfig, find_config_file
from pageidentity.fingerprint import CaptureUnavailableError, capture_page_identity, compare_identities, normalize_url
from pageidentity.models import PageIdentityPayload, PageIdentityResolutionModel
from pageidentity.observability import MetricsManager, configure_logging
from pageidentity.service import PageIdentityService
from pageidentity.storage import SQLitePageIdentityStore, StoreUnavailableError, StoreWriteError

console = Console()


def _load_config(config_path: Optional[str]) -> Config:
    path = Path(config_path) if config_path else find_config_file()
    if path:
        return Config.from_yaml(path)
    return Config()


def _read_payload(path: str) -> PageIdentityPayload:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return PageIdentityPayload.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise click.ClickException(f"Invalid page identity payload in {path}: {e}") from e


def _echo_json(data: Dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2))


def _service_for(config: Config, db: Optional[str]) -> tuple[SQLitePageIdentityStore, PageIdentityService]:
    sqlite_config = config.storage.sqlite
    if db:
        sqlite_config = SQLiteConfig(**{**sqlite_config.model_dump(), "db_path": Path(db)})
    store = SQLitePageIdentityStore(sqlite_config)
    return store, PageIdentityService(store, matching=config.matching)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="Configuration file path")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], log_level: Optional[str]) -> None:
    """Capture, compare and resolve page identities."""
    ctx.ensure_object(dict)
    try:
        config = _load_config(config_path)
    except (ValidationError, FileNotFoundError, yaml.YAMLError) as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e

    if log_level:
        config.monitoring.log_level = log_level.upper()
    configure_logging(config.monitoring)
    MetricsManager(config.monitoring).start()
    ctx.obj["config"] = config


@cli.command()
@click.argument("url")
@click.option("--keep-hash", is_flag=True, help="Keep the URL fragment")
@click.pass_context
def normalize(ctx: click.Context, url: str, keep_hash: bool) -> None:
    """Print the normalized form of URL."""
    config: Config = ctx.obj["config"]
    click.echo(normalize_url(url, ignore_query_params=config.capture.ignore_query_params, strip_hash=not keep_hash))


@cli.command()
@click.argument("html_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--url", "current_url", help="URL the page was loaded from")
@click.option("--token-limit", type=int, default=None, help="Maximum text tokens sampled")
@click.option("--node-sample-limit", type=int, default=None, help="Maximum nodes visited")
@click.option("--keep-hash", is_flag=True, help="Keep the URL fragment")
@click.pass_context
def capture(
    ctx: click.Context,
    html_file: str,
    current_url: Optional[str],
    token_limit: Optional[int],
    node_sample_limit: Optional[int],
    keep_hash: bool,
) -> None:
    """Capture the identity of a saved HTML page and print its payload."""
    config: Config = ctx.obj["config"]
    html = Path(html_file).read_bytes()

    try:
        identity = asyncio.run(
            capture_page_identity(
                html,
                current_url=current_url,
                token_limit=token_limit if token_limit is not None else config.capture.token_limit,
                node_sample_limit=(
                    node_sample_limit if node_sample_limit is not None else config.capture.node_sample_limit
                ),
                ignore_query_params=config.capture.ignore_query_params,
                strip_hash=config.capture.strip_hash and not keep_hash,
                yield_to_event_loop=config.capture.yield_to_event_loop,
            )
        )
    except CaptureUnavailableError as e:
        raise click.ClickException(str(e)) from e

    _echo_json(identity.to_payload())


@cli.command()
@click.argument("first", type=click.Path(exists=True, dir_okay=False))
@click.argument("second", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print the comparison as JSON")
@click.pass_context
def compare(ctx: click.Context, first: str, second: str, as_json: bool) -> None:
    """Compare two page identity payload files."""
    config: Config = ctx.obj["config"]
    subject = _read_payload(first).to_identity()
    candidate = _read_payload(second).to_identity()

    result = compare_identities(subject, candidate, config.matching.comparison_options())

    if as_json:
        _echo_json(result.to_dict())
        return

    table = Table(title="Page Identity Comparison")
    table.add_column("Signal", style="cyan")
    table.add_column("Value", style="magenta")
    table.add_row("Match", "yes" if result.is_match else "no")
    table.add_row("Canonical match", "yes" if result.canonical_match else "no")
    table.add_row("Content distance", f"{result.content_distance} / 64")
    table.add_row("Layout similarity", f"{result.layout_similarity:.3f}")
    table.add_row("Reasons", ", ".join(result.reason) or "-")
    console.print(table)

    if not result.is_match:
        sys.exit(1)


@cli.command()
@click.argument("payload_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--db", type=click.Path(dir_okay=False), help="SQLite database path")
@click.pass_context
def resolve(ctx: click.Context, payload_file: str, db: Optional[str]) -> None:
    """Resolve a payload against the store and print the resolution."""
    config: Config = ctx.obj["config"]
    payload = _read_payload(payload_file)

    async def _run() -> Dict[str, Any]:
        store, service = _service_for(config, db)
        await store.initialize()
        try:
            result = await service.resolve_page_identity(payload)
        finally:
            await store.close()
        return PageIdentityResolutionModel.from_resolution(result.resolution).model_dump(by_alias=True)

    try:
        _echo_json(asyncio.run(_run()))
    except (StoreUnavailableError, StoreWriteError) as e:
        raise click.ClickException(f"Page identity store error: {e}") from e


@cli.command()
@click.argument("normalized_url")
@click.option("--canonical", "canonical_url", help="Also fold records declaring this canonical URL")
@click.option("--db", type=click.Path(dir_okay=False), help="SQLite database path")
@click.pass_context
def reconcile(ctx: click.Context, normalized_url: str, canonical_url: Optional[str], db: Optional[str]) -> None:
    """Fold duplicate records stored under NORMALIZED_URL (or sharing --canonical)."""
    config: Config = ctx.obj["config"]

    async def _run() -> list[str]:
        store, service = _service_for(config, db)
        await store.initialize()
        try:
            return await service.reconcile(normalized_url, canonical_url)
        finally:
            await store.close()

    try:
        merged = asyncio.run(_run())
    except (StoreUnavailableError, StoreWriteError) as e:
        raise click.ClickException(f"Page identity store error: {e}") from e

    _echo_json({"normalizedUrl": normalized_url, "canonicalUrl": canonical_url, "mergedIds": merged})


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
