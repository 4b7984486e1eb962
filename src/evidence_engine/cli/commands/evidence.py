"""Evidence maintenance commands.

Purpose:
    Operator commands over an evidence tree written by :class:`EvidenceStore`.
External Dependencies:
    Uses ``rich`` for terminal tables. All filesystem work goes through the
    store; no collectors are started.
Fallback Semantics:
    Unknown executions and unreadable archives are reported and exit with a
    non-zero code.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from evidence_engine.config.settings import EvidenceSettings
from evidence_engine.core.exceptions import ArchiveError, CollectionNotFoundError
from evidence_engine.evidence.store import EvidenceStore

logger = logging.getLogger(__name__)
console = Console()


def _format_bytes(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.1f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= 1024
    return f"{size:.1f} GB"


def _store(ctx: typer.Context) -> EvidenceStore:
    settings = ctx.obj if isinstance(ctx.obj, EvidenceSettings) else EvidenceSettings.from_env()
    return EvidenceStore(settings)


def stats(ctx: typer.Context) -> None:
    """Show size and file counts per evidence directory."""
    store = _store(ctx)
    result = asyncio.run(store.get_storage_stats())

    table = Table(title=f"Evidence storage: {result['root']}", show_header=True, header_style="bold cyan")
    table.add_column("Directory")
    table.add_column("Files", justify="right")
    table.add_column("Size", justify="right")
    for name, entry in result["directories"].items():
        table.add_row(name, str(entry["files"]), _format_bytes(entry["size"]))
    table.add_row("[bold]total[/]", str(result["totalFiles"]), _format_bytes(result["totalSize"]))
    console.print(table)
    console.print(f"Manifests: {result['manifests']}  Budget per execution: {_format_bytes(result['maxEvidenceSize'])}")


def cleanup(ctx: typer.Context) -> None:
    """Apply the retention policy now."""
    store = _store(ctx)
    result = asyncio.run(store.run_retention())
    console.print(
        f"Removed {result.manifests_removed} manifests, {result.files_removed} files "
        f"and {result.archives_removed} archives older than {store.settings.retention_days} days"
    )
    if result.failures:
        console.print(f"[yellow]{result.failures} files could not be deleted[/]")


def verify(
    ctx: typer.Context,
    execution_id: Annotated[str, typer.Argument(help="Execution whose manifest to verify.")],
) -> None:
    """Recompute checksums recorded in an execution's manifest."""
    store = _store(ctx)
    try:
        results = asyncio.run(store.verify_manifest(execution_id))
    except CollectionNotFoundError as exc:
        console.print(f"[red]{exc.message}[/]")
        raise typer.Exit(code=1) from exc

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Item")
    table.add_column("Checksum")
    for item_id, ok in sorted(results.items()):
        table.add_row(item_id, "[green]ok[/]" if ok else "[red]mismatch[/]")
    console.print(table)

    failed = sum(1 for ok in results.values() if not ok)
    if failed:
        console.print(f"[red]{failed} of {len(results)} items failed verification[/]")
        raise typer.Exit(code=1)
    console.print(f"[green]All {len(results)} items verified[/]")


def summary(
    ctx: typer.Context,
    execution_id: Annotated[str, typer.Argument(help="Execution to summarise.")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the raw summary as JSON.")] = False,
) -> None:
    """Print the evidence summary of an execution."""
    store = _store(ctx)
    try:
        result = asyncio.run(store.export_summary(execution_id))
    except CollectionNotFoundError as exc:
        console.print(f"[red]{exc.message}[/]")
        raise typer.Exit(code=1) from exc

    if as_json:
        console.print_json(json.dumps(result))
        return

    totals = result["summary"]
    console.print(f"[bold]{execution_id}[/] ({result['state']})")
    console.print(f"Items: {totals['totalItems']}  Size: {_format_bytes(totals['totalSize'])}")
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Type")
    table.add_column("Items", justify="right")
    for item_type, count in sorted(totals["byType"].items()):
        table.add_row(item_type, str(count))
    console.print(table)


def extract(
    ctx: typer.Context,
    archive_path: Annotated[str, typer.Argument(help="Archive file (.json.gz).")],
    target_dir: Annotated[str, typer.Argument(help="Directory to restore into.")],
) -> None:
    """Restore the manifest recorded in an archive."""
    store = _store(ctx)
    try:
        manifest_file = asyncio.run(store.extract_archive(archive_path, target_dir))
    except ArchiveError as exc:
        console.print(f"[red]{exc.message}[/]")
        raise typer.Exit(code=1) from exc
    console.print(f"Restored manifest to {manifest_file}")


__all__ = ["cleanup", "extract", "stats", "summary", "verify"]
