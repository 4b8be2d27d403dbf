#!/usr/bin/env python3
"""
Snapward CLI - protected saves and snapshots for your workspace.

Usage:
    snapward snapshots list [--limit N] [--file PATH]
    snapward snapshots show SNAPSHOT_ID
    snapward snapshots delete SNAPSHOT_ID
    snapward snapshots gc
    snapward restore SNAPSHOT_ID [PATHS...] [--strategy use_snapshot|use_current|skip] [--dry-run]
    snapward policy show
    snapward policy explain PATH
    snapward policy validate PATTERN
    snapward policy add PATTERN [--level watch|warn|block]
    snapward allow PATH [--duration SECONDS] [--reason TEXT]
    snapward audit [PATH] [--limit N]
    snapward cooldown status
    snapward cooldown sweep
"""

import logging
from pathlib import Path
from typing import Optional

import click

from snapward import __version__
from snapward.cli_audit import audit, cooldown
from snapward.cli_policy import allow, policy
from snapward.cli_snapshots import restore, snapshots


@click.group()
@click.version_option(version=__version__, prog_name="snapward")
@click.option(
    "--workspace", "-w",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="SNAPWARD_WORKSPACE",
    help="Workspace root (defaults to the current directory)",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def main(ctx: click.Context, workspace: Optional[Path], verbose: bool):
    """Snapward - snapshots before risky saves."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["root"] = workspace


main.add_command(snapshots)
main.add_command(restore)
main.add_command(policy)
main.add_command(allow)
main.add_command(audit)
main.add_command(cooldown)


if __name__ == "__main__":
    main()
