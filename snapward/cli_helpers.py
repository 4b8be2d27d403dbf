"""
Snapward CLI Helpers

Shared formatting utilities for consistent CLI output across all commands.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from snapward.policy.rules import ProtectionLevel
from snapward.snapshot.naming import relative_path

# Single shared Console instance for the entire CLI
console = Console()


def print_success(message: str) -> None:
    """Print a success message with green checkmark."""
    console.print(f"[green]\u2713[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message with yellow triangle."""
    console.print(f"[yellow]\u26a0[/yellow]  {message}")


def print_error(message: str, fix_hint: str = "") -> None:
    """Print an error message with red X and optional fix hint."""
    console.print(f"[red]\u2717[/red] {message}")
    if fix_hint:
        console.print(f"  [white]Hint: {fix_hint}[/white]")


def format_level(level: ProtectionLevel) -> str:
    color = {
        ProtectionLevel.BLOCK: "red",
        ProtectionLevel.WARN: "yellow",
        ProtectionLevel.WATCH: "cyan",
    }.get(level, "white")
    return f"[{color}]{level.label}[/{color}]"


def format_size(size_bytes: int) -> str:
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


def format_timestamp(epoch_ms: Optional[int]) -> str:
    if not epoch_ms:
        return "-"
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


def format_duration_ms(ms: int) -> str:
    seconds = max(0, ms) // 1000
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {seconds:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes:02d}m"


def workspace_key(file_path: str, root: Path) -> str:
    """Normalize a command-line path to the key stores use."""
    return relative_path(file_path, root)


def open_workspace(ctx: click.Context):
    """The Workspace for the current invocation."""
    from snapward.workspace import Workspace

    obj = ctx.ensure_object(dict)
    if "workspace" not in obj:
        obj["workspace"] = Workspace(obj.get("root") or Path.cwd())
        ctx.call_on_close(obj["workspace"].close)
    return obj["workspace"]
