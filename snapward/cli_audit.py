#!/usr/bin/env python3
"""
Snapward CLI - audit trail and cooldown commands.
"""
from __future__ import annotations

import json
from typing import Optional

import click
from rich.table import Table

from snapward.cli_helpers import (
    console,
    format_duration_ms,
    format_level,
    format_timestamp,
    open_workspace,
    print_success,
    print_warning,
    workspace_key,
)
from snapward.storage.cooldown_store import AuditAction


ACTION_COLORS = {
    AuditAction.SAVE_BLOCKED: "red",
    AuditAction.USER_OVERRIDE: "yellow",
    AuditAction.SNAPSHOT_CREATED: "green",
}


def _require_store(ws) -> bool:
    if ws.cooldowns.available:
        return True
    print_warning(f"Cooldown database unavailable: {ws.cooldowns.unavailable_reason}")
    return False


# ============================================================
# AUDIT
# ============================================================

@click.command()
@click.argument("path", required=False)
@click.option("--limit", "-n", default=20, help="Number of entries to show")
@click.option("--action", "-a", type=click.Choice([a.value for a in AuditAction]), help="Filter by action")
@click.option("--json", "json_out", is_flag=True, help="Output as JSON")
@click.pass_context
def audit(ctx: click.Context, path: Optional[str], limit: int, action: Optional[str], json_out: bool):
    """Show protective actions, most recent first."""
    ws = open_workspace(ctx)
    if not _require_store(ws):
        return

    key = workspace_key(path, ws.root) if path else None
    entries = ws.cooldowns.get_audit_trail(key, limit=limit, action=action)

    if json_out:
        click.echo(json.dumps([
            {
                "id": e.id,
                "file_path": e.file_path,
                "protection_level": e.protection_level.value,
                "action": e.action.value,
                "timestamp": e.timestamp,
                "snapshot_id": e.snapshot_id,
                "details": e.details,
            }
            for e in entries
        ], indent=2))
        return

    if not entries:
        console.print("[dim]No audit entries.[/dim]")
        return

    table = Table(title="Audit Trail")
    table.add_column("Time", style="dim")
    table.add_column("File")
    table.add_column("Level", width=8)
    table.add_column("Action")
    table.add_column("Snapshot", style="cyan")
    for e in entries:
        color = ACTION_COLORS.get(e.action, "white")
        table.add_row(
            format_timestamp(e.timestamp),
            e.file_path,
            format_level(e.protection_level),
            f"[{color}]{e.action.value}[/{color}]",
            e.snapshot_id or "",
        )
    console.print(table)


# ============================================================
# COOLDOWNS
# ============================================================

@click.group()
def cooldown():
    """Inspect and sweep cooldown windows."""
    pass


@cooldown.command("status")
@click.pass_context
def cooldown_status(ctx: click.Context):
    """Show active cooldowns and store statistics."""
    ws = open_workspace(ctx)
    if not _require_store(ws):
        return

    store = ws.cooldowns
    active = store.list_active_cooldowns()
    stats = store.get_stats()

    if active:
        now = store.now()
        table = Table(title="Active Cooldowns")
        table.add_column("File")
        table.add_column("Level", width=8)
        table.add_column("Action")
        table.add_column("Remaining", justify="right")
        for entry in active:
            table.add_row(
                entry.file_path,
                format_level(entry.protection_level),
                entry.action_taken.value,
                format_duration_ms(entry.expires_at - now),
            )
        console.print(table)
    else:
        console.print("[dim]No active cooldowns.[/dim]")

    console.print(
        f"[dim]{stats['active_cooldowns']} active, {stats['expired_cooldowns']} expired, "
        f"{stats['audit_total']} audit entries[/dim]"
    )


@cooldown.command("sweep")
@click.pass_context
def cooldown_sweep(ctx: click.Context):
    """Delete expired cooldown rows."""
    ws = open_workspace(ctx)
    if not _require_store(ws):
        return
    removed = ws.cooldowns.clear_expired_cooldowns()
    print_success(f"Removed {removed} expired cooldown(s)")
