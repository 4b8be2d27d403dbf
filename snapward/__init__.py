"""
Snapward - protected saves and snapshots for developer workspaces.

Snapward intercepts file saves, classifies each path under a protection
policy (Watch / Warn / Block) and captures content-addressed snapshots of
the pre-save state before risky changes land.
"""

__version__ = "0.3.1"
__author__ = "Snapward"
