#!/usr/bin/env python3
"""
Snapward CLI - snapshot and restore commands.
"""
from __future__ import annotations

import json
import sys
from typing import List, Optional

import click
from rich.table import Table

from snapward.cli_helpers import (
    console,
    format_size,
    format_timestamp,
    open_workspace,
    print_error,
    print_success,
    print_warning,
    workspace_key,
)
from snapward.errors import BlobIntegrityError, ConflictApplyError
from snapward.storage.snapshot_store import GC_GRACE_SECONDS


# ============================================================
# SNAPSHOT COMMANDS
# ============================================================

@click.group()
def snapshots():
    """List, inspect and prune snapshots."""
    pass


@snapshots.command("list")
@click.option("--limit", "-n", default=20, help="Number of snapshots to show")
@click.option("--file", "file_path", help="Only snapshots containing this file")
@click.option("--trigger", help="Filter by trigger (e.g. protected_save, warn_save)")
@click.option("--json", "json_out", is_flag=True, help="Output as JSON")
@click.pass_context
def snapshots_list(ctx: click.Context, limit: int, file_path: Optional[str], trigger: Optional[str], json_out: bool):
    """Show recent snapshots, newest first."""
    ws = open_workspace(ctx)
    if file_path:
        manifests = ws.snapshots.get_for_file(workspace_key(file_path, ws.root), limit=limit)
    else:
        manifests = ws.snapshots.list(trigger=trigger, limit=limit)

    if json_out:
        click.echo(json.dumps([m.to_dict() for m in manifests], indent=2))
        return

    if not manifests:
        console.print("[dim]No snapshots yet.[/dim]")
        return

    table = Table(title="Snapshots")
    table.add_column("ID", style="cyan")
    table.add_column("Created")
    table.add_column("Name")
    table.add_column("Files", justify="right")
    table.add_column("Trigger")
    for m in manifests:
        trigger_str = "[red]protected[/red]" if m.is_protected else m.trigger
        table.add_row(m.id, format_timestamp(m.timestamp), m.name, str(len(m.files)), trigger_str)
    console.print(table)
    console.print(f"[dim]{ws.snapshots.count()} snapshot(s) stored[/dim]")


@snapshots.command("show")
@click.argument("snapshot_id")
@click.pass_context
def snapshots_show(ctx: click.Context, snapshot_id: str):
    """Show the files captured in a snapshot."""
    ws = open_workspace(ctx)
    manifest = ws.snapshots.get_manifest(snapshot_id)
    if manifest is None:
        print_error(f"Snapshot not found: {snapshot_id}", "Run: snapward snapshots list")
        sys.exit(1)

    console.print(f"[bold]{manifest.name}[/bold]  [dim]{manifest.id}[/dim]")
    console.print(f"Created: {format_timestamp(manifest.timestamp)}   Trigger: {manifest.trigger}")
    for key, value in sorted(manifest.metadata.items()):
        console.print(f"[dim]{key}: {value}[/dim]")

    table = Table()
    table.add_column("Path")
    table.add_column("Size", justify="right")
    table.add_column("SHA-256", width=16)
    for path, entry in sorted(manifest.files.items()):
        table.add_row(path, format_size(entry.size), entry.blob[:16] + "...")
    console.print(table)


@snapshots.command("delete")
@click.argument("snapshot_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def snapshots_delete(ctx: click.Context, snapshot_id: str, yes: bool):
    """Delete a snapshot manifest. Run `gc` to reclaim blob space."""
    ws = open_workspace(ctx)
    if not ws.snapshots.exists(snapshot_id):
        print_error(f"Snapshot not found: {snapshot_id}")
        sys.exit(1)
    if not yes and not click.confirm(f"Delete snapshot {snapshot_id}?"):
        console.print("[dim]Cancelled.[/dim]")
        return
    ws.snapshots.delete(snapshot_id)
    print_success(f"Deleted {snapshot_id}")


@snapshots.command("gc")
@click.option("--grace", type=float, default=GC_GRACE_SECONDS, show_default=True,
              help="Keep unreferenced blobs touched within this many seconds")
@click.pass_context
def snapshots_gc(ctx: click.Context, grace: float):
    """Apply retention and remove unreferenced blobs."""
    ws = open_workspace(ctx)
    pruned = ws.snapshots.enforce_retention()
    removed = ws.snapshots.collect_garbage(grace_seconds=grace)
    print_success(f"Pruned {len(pruned)} snapshot(s), removed {removed} unreferenced blob(s)")


# ============================================================
# RESTORE
# ============================================================

def _interactive_selector(conflict, options):
    console.print(f"\n[bold]{conflict.file}[/bold] ([yellow]{conflict.conflict_type.value}[/yellow])")
    for i, option in enumerate(options, 1):
        console.print(f"  {i}. {option.label} [dim]- {option.detail}[/dim]")
    console.print("  0. Cancel restore")
    choice = click.prompt("Choose", type=click.IntRange(0, len(options)), default=1)
    if choice == 0:
        return None
    return options[choice - 1].resolution


@click.command()
@click.argument("snapshot_id")
@click.argument("paths", nargs=-1)
@click.option(
    "--strategy", "-s",
    type=click.Choice(["use_snapshot", "use_current", "skip"]),
    help="Resolve every conflict the same way instead of prompting",
)
@click.option("--dry-run", is_flag=True, help="Only list conflicts")
@click.pass_context
def restore(ctx: click.Context, snapshot_id: str, paths: tuple, strategy: Optional[str], dry_run: bool):
    """Restore files from a snapshot.

    PATHS limits the restore to those files. Files on disk that are not in
    the snapshot are reported as "added" when named explicitly.
    """
    from snapward.restore.conflicts import fixed_strategy

    ws = open_workspace(ctx)
    try:
        snapshot = ws.snapshots.get(snapshot_id)
    except BlobIntegrityError as e:
        print_error(f"Snapshot {snapshot_id} is damaged: {e}")
        sys.exit(1)
    if snapshot is None:
        print_error(f"Snapshot not found: {snapshot_id}", "Run: snapward snapshots list")
        sys.exit(1)

    resolver = ws.conflict_resolver()
    targets: Optional[List[str]] = [workspace_key(p, ws.root) for p in paths] or None
    conflicts = resolver.detect_conflicts(snapshot, targets)
    if not conflicts:
        print_success("Workspace already matches the snapshot")
        return

    summary = resolver.summarize(conflicts)
    console.print(
        f"{len(conflicts)} conflict(s): {summary['modified']} modified, "
        f"{summary['added']} added, {summary['deleted']} deleted"
    )
    if dry_run:
        for conflict in conflicts:
            console.print(f"  [yellow]{conflict.conflict_type.value:<9}[/yellow] {conflict.file}")
        return

    selector = fixed_strategy(strategy) if strategy else _interactive_selector
    resolutions = resolver.resolve(conflicts, selector)
    if resolutions is None:
        print_warning("Restore cancelled, no files changed")
        return

    try:
        report = resolver.apply(resolutions, conflicts)
    except ConflictApplyError as e:
        print_error(str(e))
        sys.exit(1)

    print_success(
        f"Restored from {snapshot.id}: {len(report.written)} written, "
        f"{len(report.deleted)} deleted, {len(report.unchanged)} kept"
    )
