#!/usr/bin/env python3
"""
Snapward CLI - policy and allowance commands.
"""
from __future__ import annotations

import json
import sys
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from snapward.cli_helpers import (
    console,
    format_level,
    format_timestamp,
    open_workspace,
    print_error,
    print_success,
    print_warning,
    workspace_key,
)
from snapward.errors import InvalidPatternError
from snapward.policy.rules import ProtectionLevel

LEVEL_CHOICES = click.Choice([level.value for level in ProtectionLevel])


# ============================================================
# POLICY COMMANDS
# ============================================================

@click.group()
def policy():
    """Inspect and edit the protection policy."""
    pass


@policy.command("show")
@click.option("--source", type=click.Choice(["default", "stack", "user"]), help="Only rules from this source")
@click.option("--json", "json_out", is_flag=True, help="Output as JSON")
@click.pass_context
def policy_show(ctx: click.Context, source: Optional[str], json_out: bool):
    """Show the effective rules for this workspace."""
    ws = open_workspace(ctx)
    built = ws.policy
    rules = [r for r in built.rules if source is None or r.source.value == source]

    if json_out:
        data = built.to_dict()
        data["rules"] = [r.to_dict() for r in rules]
        click.echo(json.dumps(data, indent=2))
        return

    audit = built.audit
    stacks = ", ".join(s.name for s in built.stacks) or "none"
    console.print(Panel.fit(
        f"[cyan]Source:[/cyan] {audit.source}\n"
        f"[cyan]Rules:[/cyan] {audit.rules_count} "
        f"({audit.default_rules_count} default, {audit.stack_rules_count} stack, {audit.user_rules_count} user)\n"
        f"[cyan]Stacks:[/cyan] {stacks}\n"
        f"[cyan]Ignored:[/cyan] {len(built.ignore)} pattern(s)",
        title="Protection Policy",
    ))

    table = Table()
    table.add_column("Pattern")
    table.add_column("Level", width=8)
    table.add_column("Source", width=8)
    table.add_column("Category")
    for rule in rules:
        table.add_row(rule.pattern, format_level(rule.level), rule.source.value, rule.category or "")
    console.print(table)

    for pattern in audit.skipped_patterns:
        print_warning(f"Skipped unsafe pattern: {pattern}")


@policy.command("explain")
@click.argument("path")
@click.pass_context
def policy_explain(ctx: click.Context, path: str):
    """Show which rule decides the protection level of PATH."""
    ws = open_workspace(ctx)
    key = workspace_key(path, ws.root)
    built = ws.policy

    if ws.engine.is_ignored(key, built):
        console.print(f"{key}: [dim]ignored[/dim]")
        return

    matches = ws.engine.matching_rules(key, built)
    if not matches:
        console.print(f"{key}: {format_level(ProtectionLevel.WATCH)} [dim](no rule matches, unprotected)[/dim]")
        return

    winner = matches[0]
    console.print(f"{key}: {format_level(winner.level)} via [bold]{winner.pattern}[/bold] ({winner.source.value})")
    if len(matches) > 1:
        console.print("[dim]Also matched (lower precedence):[/dim]")
        for rule in matches[1:]:
            console.print(f"  [dim]{rule.pattern}  {rule.level.label}  {rule.source.value}[/dim]")


@policy.command("validate")
@click.argument("pattern")
def policy_validate(pattern: str):
    """Check whether PATTERN is a safe glob."""
    from snapward.policy.glob_validator import rejection_reason

    reason = rejection_reason(pattern)
    if reason is None:
        print_success(f"Pattern is safe: {pattern}")
        return
    print_error(f"Pattern rejected: {reason}")
    sys.exit(1)


@policy.command("add")
@click.argument("pattern")
@click.option("--level", "-l", type=LEVEL_CHOICES, help="Protection level (default: watch)")
@click.pass_context
def policy_add(ctx: click.Context, pattern: str, level: Optional[str]):
    """Append PATTERN to the workspace .snapwardrc."""
    from snapward.policy.loader import RC_FILENAME, add_rc_pattern

    ws = open_workspace(ctx)
    try:
        added = add_rc_pattern(ws.root / RC_FILENAME, pattern, ProtectionLevel.parse(level) if level else None)
    except InvalidPatternError as e:
        print_error(str(e))
        sys.exit(1)
    if added:
        print_success(f"Added {pattern} to {RC_FILENAME}")
    else:
        console.print(f"[dim]{pattern} is already in {RC_FILENAME}[/dim]")


# ============================================================
# ALLOWANCES
# ============================================================

@click.command()
@click.argument("path", required=False)
@click.option("--duration", "-d", type=float, help="Allow all saves for this many seconds instead of once")
@click.option("--reason", "-r", default="", help="Why the allowance is needed")
@click.option("--list", "list_flag", is_flag=True, help="List active allowances")
@click.option("--revoke", is_flag=True, help="Revoke allowances for PATH")
@click.pass_context
def allow(ctx: click.Context, path: Optional[str], duration: Optional[float], reason: str,
          list_flag: bool, revoke: bool):
    """Let saves to PATH skip the confirmation prompt.

    By default the allowance covers the next save only.
    """
    ws = open_workspace(ctx)
    allowances = ws.allowances

    if list_flag:
        active = allowances.list_active()
        if not active:
            console.print("[dim]No active allowances.[/dim]")
            return
        table = Table(title="Active Allowances")
        table.add_column("Path")
        table.add_column("Mode")
        table.add_column("Expires")
        table.add_column("Reason")
        for a in active:
            table.add_row(a["file_path"], a["mode"], format_timestamp(a["expires_at"]), a.get("reason", ""))
        console.print(table)
        return

    if not path:
        print_error("PATH is required", "Run: snapward allow --list")
        sys.exit(1)

    key = workspace_key(path, ws.root)
    if revoke:
        count = allowances.revoke(key)
        print_success(f"Revoked {count} allowance(s) for {key}")
        return

    if duration is not None:
        allowances.grant(key, mode="duration", ttl_seconds=duration, reason=reason)
        print_success(f"Saves to {key} allowed for {duration:.0f}s")
    else:
        allowances.grant(key, mode="once", reason=reason)
        print_success(f"Next save to {key} allowed")
