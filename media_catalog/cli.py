"""
CLI commands for media-catalog.

Provides the `media-catalog` command-line interface for catalog setup,
indexing, watching, search, tagging, lineage and event-log maintenance.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, TypeVar

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn

from config.loader import ConfigurationLoader
from core.catalog import Catalog
from core.indexer.service import IndexerError
from core.models.assets import Asset
from core.models.config import APP_DIR_NAME, GlobalSettings, configure_logging
from core.search.engine import SearchFilters
from core.storage.database import SchemaMigrationError

from . import __version__

console = Console()

T = TypeVar("T")


@click.group()
@click.version_option(version=__version__, prog_name="media-catalog")
@click.option(
    '--root', '-r',
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help='Catalog root directory (default: current directory)'
)
@click.option(
    '--db',
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help='Database file (default: <data dir>/catalog.db)'
)
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def main(ctx: click.Context, root: Optional[Path], db: Optional[Path], verbose: bool):
    """
    Media Catalog CLI.

    Index, search and tag media under a root shared with other processes.
    """
    settings = GlobalSettings()
    if verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    ctx.ensure_object(dict)
    ctx.obj["root"] = (root or Path.cwd()).resolve()
    ctx.obj["db"] = db
    ctx.obj["settings"] = settings


def _build_catalog(ctx: click.Context) -> Catalog:
    settings: GlobalSettings = ctx.obj["settings"]
    loader = ConfigurationLoader(settings)
    config = loader.load_catalog_config(ctx.obj["root"])
    return Catalog(config, settings=settings, database_path=ctx.obj["db"])


def _run_with_catalog(
    ctx: click.Context,
    action: Callable[[Catalog], Awaitable[T]],
    description: str = "Indexing catalog...",
    start_watcher: bool = False
) -> T:
    """Open the catalog, run ``action`` and close it again"""

    async def runner() -> T:
        catalog = _build_catalog(ctx)
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True
            ) as progress:
                progress.add_task(description, total=None)
                await catalog.open(start_watcher=start_watcher)
            return await action(catalog)
        finally:
            await catalog.close()

    try:
        return asyncio.run(runner())
    except SchemaMigrationError as e:
        console.print(f"[red]❌ Database error: {e}[/red]")
        sys.exit(1)


def _asset_table(title: str, assets: List[Asset], scores: Optional[List[Optional[float]]] = None) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Path", style="white")
    table.add_column("Type", style="dim")
    table.add_column("Status", style="yellow")
    table.add_column("Tags", style="magenta")
    if scores is not None:
        table.add_column("Score", style="green")

    for i, asset in enumerate(assets):
        row = [
            asset.id[:12],
            asset.path,
            asset.type.value,
            asset.status,
            ", ".join(tag.name for tag in asset.tags),
        ]
        if scores is not None:
            score = scores[i]
            row.append(f"{score:.3f}" if score is not None else "")
        table.add_row(*row)
    return table


def _resolve_asset_id(catalog: Catalog, asset_ref: str) -> Optional[str]:
    """Accept a full id, a unique id prefix or a path relative to the root"""
    if catalog.assets.get_asset(asset_ref) is not None:
        return asset_ref
    by_path = catalog.assets.get_asset_by_path(catalog.root_path, asset_ref.replace('\\', '/'))
    if by_path is not None and by_path.deleted_at is None:
        return by_path.id
    matches = [a.id for a in catalog.assets.get_assets(catalog.root_path) if a.id.startswith(asset_ref)]
    return matches[0] if len(matches) == 1 else None


@main.command()
@click.option('--name', help='Catalog name (default: root directory name)')
@click.option('--force', '-f', is_flag=True, help='Overwrite existing configuration')
@click.pass_context
def init(ctx: click.Context, name: Optional[str], force: bool):
    """Create the catalog configuration and app directory under the root."""
    root = ctx.obj["root"]
    loader = ConfigurationLoader(ctx.obj["settings"])

    if (root / APP_DIR_NAME / "config.json").exists() and not force:
        console.print("[yellow]⚠️  Catalog already initialized. Use --force to overwrite.[/yellow]")
        return

    try:
        config = loader.setup_catalog(root, name, overwrite=force)
    except ValueError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✅ Initialized catalog '{config.name}' at {config.root_path}[/green]")
    console.print(f"[dim]Config: {config.get_config_file()}[/dim]")


@main.command()
@click.pass_context
def index(ctx: click.Context):
    """Scan the root and bring the index up to date."""

    async def action(catalog: Catalog):
        return catalog.indexer.get_stats()

    stats = _run_with_catalog(ctx, action, "Scanning media...")

    table = Table(title="Index Summary")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    table.add_row("Media files", str(stats.total_files))
    table.add_row("Folders", str(stats.total_folders))
    table.add_row("Images", str(stats.images))
    table.add_row("Videos", str(stats.videos))
    table.add_row("Skipped files", str(stats.skipped_files))
    table.add_row("Thumbnails", f"{stats.thumbnails_generated} generated, {stats.thumbnails_failed} failed")
    table.add_row("Embeddings", str(stats.embeddings_generated))
    table.add_row("Errors", str(len(stats.errors)))
    console.print(table)
    console.print("[green]🎉 Indexing completed[/green]")


@main.command()
@click.pass_context
def watch(ctx: click.Context):
    """Index, then follow file changes and sync events until interrupted."""

    async def action(catalog: Catalog):
        console.print(f"[blue]👀 Watching {catalog.root_path} (Ctrl+C to stop)[/blue]")
        await asyncio.Event().wait()

    try:
        _run_with_catalog(ctx, action, "Scanning media...", start_watcher=True)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped.[/yellow]")


@main.command()
@click.argument('query', required=False, default="")
@click.option('--type', 'media_type', type=click.Choice(['image', 'video']), help='Filter by media type')
@click.option('--status', help='Filter by status')
@click.option('--tag', 'tag_names', multiple=True, help='Filter by tag name (repeatable)')
@click.option('--related-to', help='Assets that list this asset id as an input')
@click.option('--limit', '-n', type=int, default=50, show_default=True, help='Maximum results')
@click.option('--json', 'as_json', is_flag=True, help='Print results as JSON')
@click.pass_context
def search(
    ctx: click.Context,
    query: str,
    media_type: Optional[str],
    status: Optional[str],
    tag_names: List[str],
    related_to: Optional[str],
    limit: int,
    as_json: bool
):
    """Full-text search over paths and metadata."""

    async def action(catalog: Catalog):
        tag_ids = []
        for name in tag_names:
            tag = catalog.tags.get_tag_by_name(name)
            if tag is None:
                return None
            tag_ids.append(tag.id)
        filters = SearchFilters(
            tag_ids=tag_ids,
            type=media_type,
            status=status,
            related_to_asset_id=related_to,
            limit=limit
        )
        return await catalog.search.search_assets(query, filters)

    results = _run_with_catalog(ctx, action)
    if results is None:
        console.print("[yellow]⚠️  Unknown tag, no results[/yellow]")
        return

    if as_json:
        click.echo(json.dumps(
            [{**r.asset.model_dump(mode='json', exclude={'metadata'}), "similarity": r.similarity} for r in results],
            indent=2
        ))
        return

    if not results:
        console.print("[yellow]No matching assets[/yellow]")
        return
    console.print(_asset_table(
        f"Results for '{query}'" if query else "Assets",
        [r.asset for r in results],
        [r.similarity for r in results]
    ))


@main.command()
@click.argument('asset_ref')
@click.pass_context
def lineage(ctx: click.Context, asset_ref: str):
    """Show every ancestor and descendant of an asset."""

    async def action(catalog: Catalog):
        asset_id = _resolve_asset_id(catalog, asset_ref)
        if asset_id is None:
            return None
        return catalog.asset_service.get_lineage(asset_id)

    assets = _run_with_catalog(ctx, action)
    if assets is None:
        console.print(f"[red]❌ Asset not found: {asset_ref}[/red]")
        sys.exit(1)
    console.print(_asset_table("Lineage", assets))


@main.command(name="set-status")
@click.argument('asset_ref')
@click.argument('status')
@click.pass_context
def set_status(ctx: click.Context, asset_ref: str, status: str):
    """Change an asset's status (published to other processes)."""

    async def action(catalog: Catalog):
        asset_id = _resolve_asset_id(catalog, asset_ref)
        if asset_id is None:
            return None
        await catalog.asset_service.update_asset_status(asset_id, status)
        return asset_id

    asset_id = _run_with_catalog(ctx, action)
    if asset_id is None:
        console.print(f"[red]❌ Asset not found: {asset_ref}[/red]")
        sys.exit(1)
    console.print(f"[green]✅ {asset_id[:12]} -> {status}[/green]")


@main.command()
@click.pass_context
def tags(ctx: click.Context):
    """List tags."""

    async def action(catalog: Catalog):
        return catalog.tag_service.get_tags()

    all_tags = _run_with_catalog(ctx, action)
    table = Table(title="Tags")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Color", style="dim")
    for tag in all_tags:
        table.add_row(tag.id, tag.name, tag.color or "")
    console.print(table)


@main.command()
@click.argument('asset_ref')
@click.argument('tag_name')
@click.option('--color', help='Color for a newly created tag')
@click.option('--remove', is_flag=True, help='Remove the tag instead of adding it')
@click.pass_context
def tag(ctx: click.Context, asset_ref: str, tag_name: str, color: Optional[str], remove: bool):
    """Add (or remove) a tag on an asset, creating the tag if needed."""

    async def action(catalog: Catalog):
        asset_id = _resolve_asset_id(catalog, asset_ref)
        if asset_id is None:
            return None
        if remove:
            existing = catalog.tags.get_tag_by_name(tag_name)
            if existing is None:
                return False
            return await catalog.tag_service.remove_tag_from_asset(asset_id, existing.id)
        created = await catalog.tag_service.create_tag(tag_name, color)
        return await catalog.tag_service.add_tag_to_asset(asset_id, created.id)

    changed = _run_with_catalog(ctx, action)
    if changed is None:
        console.print(f"[red]❌ Asset not found: {asset_ref}[/red]")
        sys.exit(1)
    verb = "Removed" if remove else "Added"
    if changed:
        console.print(f"[green]✅ {verb} tag '{tag_name}'[/green]")
    else:
        console.print(f"[yellow]No change for tag '{tag_name}'[/yellow]")


@main.command()
@click.argument('asset_ref', required=False)
@click.option('--limit', '-n', type=int, default=50, show_default=True, help='Maximum rows')
@click.pass_context
def history(ctx: click.Context, asset_ref: Optional[str], limit: int):
    """Show the audit log of one asset, or recent catalog activity."""

    async def action(catalog: Catalog):
        if asset_ref:
            asset_id = _resolve_asset_id(catalog, asset_ref) or asset_ref
            return catalog.history.get_asset_history(asset_id)[:limit]
        return catalog.history.get_recent_activity(limit)

    events = _run_with_catalog(ctx, action)
    table = Table(title="History")
    table.add_column("Time", style="dim", no_wrap=True)
    table.add_column("Asset", style="cyan", no_wrap=True)
    table.add_column("Action", style="white")
    table.add_column("Field", style="yellow")
    table.add_column("Old", style="dim")
    table.add_column("New", style="green")
    table.add_column("User", style="magenta")
    for event in events:
        table.add_row(
            str(event.timestamp),
            event.asset_id[:12],
            event.action.value,
            event.field or "",
            event.old_value or "",
            event.new_value or "",
            event.user_id or "",
        )
    console.print(table)


@main.command()
@click.argument('source', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--project', help='Project folder under uploads/')
@click.option('--scene', help='Scene folder under the project')
@click.option('--target', help='Destination directory relative to the root')
@click.pass_context
def ingest(ctx: click.Context, source: Path, project: Optional[str], scene: Optional[str], target: Optional[str]):
    """Copy a file into the root and index it."""

    async def action(catalog: Catalog):
        return await catalog.indexer.ingest_file(source, project=project, scene=scene, target_path=target)

    try:
        asset = _run_with_catalog(ctx, action)
    except IndexerError as e:
        console.print(f"[red]❌ Ingest failed: {e}[/red]")
        sys.exit(1)
    console.print(f"[green]✅ Ingested {asset.path} as {asset.id}[/green]")


@main.command()
@click.pass_context
def compact(ctx: click.Context):
    """Fold individual event files into one batch file."""

    async def action(catalog: Catalog):
        return await catalog.sync.compact_events()

    batch = _run_with_catalog(ctx, action)
    if batch is None:
        console.print("[yellow]Nothing to compact[/yellow]")
    else:
        console.print(f"[green]✅ Compacted into {batch.name}[/green]")


@main.command()
@click.option('--json', 'as_json', is_flag=True, help='Print status as JSON')
@click.pass_context
def status(ctx: click.Context, as_json: bool):
    """Show indexer, sync and index health."""

    async def action(catalog: Catalog):
        return catalog.get_status(), catalog.history.get_stats()

    catalog_status, activity = _run_with_catalog(ctx, action)

    if as_json:
        click.echo(json.dumps({**catalog_status, "activity": activity.model_dump(mode='json')}, indent=2, default=str))
        return

    sync_status = catalog_status["sync"]
    problems = catalog_status["index_problems"]

    table = Table(title="Media Catalog Status")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    table.add_row("Root", "[green]✅ Open[/green]", str(catalog_status["root_path"]))
    table.add_row("Database", f"schema v{catalog_status['schema_version']}", f"{catalog_status['assets']} assets")
    if problems:
        table.add_row("Search Index", f"[red]❌ {len(problems)} problems[/red]", problems[0])
    else:
        table.add_row("Search Index", "[green]✅ In parity[/green]", "")
    if sync_status["enabled"]:
        table.add_row("Sync", "[green]✅ Active[/green]", str(sync_status["sync_dir"]))
    else:
        table.add_row("Sync", "[yellow]⚠️  Disabled[/yellow]", sync_status.get("last_error") or "")
    for name, count in sorted(activity.assets_by_status.items()):
        table.add_row(f"Status: {name}", str(count), "")
    console.print(table)


if __name__ == "__main__":
    main()
