"""
Technology stack profiles.

A stack profile contributes protection rules when at least one of its
detector globs matches something in the workspace (OR across detectors).
Detection only reads the directory tree; it never modifies anything.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from snapward.policy.glob_match import match_path
from snapward.policy.rules import ProtectionLevel, ProtectionRule, RuleSource

logger = logging.getLogger(__name__)

# Directories recorded for detection but never descended into
_PRUNE_DIRS = {".git", "node_modules", ".venv", "venv", "__pycache__", "dist", "build", "target", ".snapward"}

MAX_SCAN_FILES = 20000


@dataclass(frozen=True)
class Detector:
    glob: str
    confidence: float = 1.0


@dataclass(frozen=True)
class StackProfile:
    id: str
    name: str
    detect: Tuple[Detector, ...]
    rules: Tuple[ProtectionRule, ...] = field(default_factory=tuple)
    description: str = ""


def _stack_rules(entries: Iterable[Tuple[str, str, str]]) -> Tuple[ProtectionRule, ...]:
    return tuple(
        ProtectionRule(
            pattern=pattern,
            level=ProtectionLevel.parse(level),
            category=category,
            source=RuleSource.STACK,
        )
        for pattern, level, category in entries
    )


STACK_PROFILES: Tuple[StackProfile, ...] = (
    StackProfile(
        id="nodejs",
        name="Node.js",
        description="Node.js runtime and npm/yarn/pnpm",
        detect=(Detector("package.json", 0.7), Detector("package-lock.json", 0.8), Detector("node_modules/", 0.9)),
        rules=_stack_rules([
            ("package.json", "block", "dependencies"),
            ("package-lock.json", "watch", "dependencies"),
            (".npmrc", "block", "config"),
            (".yarnrc*", "block", "config"),
        ]),
    ),
    StackProfile(
        id="python",
        name="Python",
        description="Python packaging and virtual environments",
        detect=(
            Detector("requirements.txt", 0.9),
            Detector("setup.py", 0.9),
            Detector("pyproject.toml", 0.9),
            Detector("*.py", 0.6),
        ),
        rules=_stack_rules([
            ("requirements*.txt", "block", "dependencies"),
            ("setup.py", "block", "config"),
            ("pyproject.toml", "block", "config"),
            (".env*", "block", "secrets"),
        ]),
    ),
    StackProfile(
        id="typescript",
        name="TypeScript",
        detect=(Detector("tsconfig.json", 1.0), Detector("tsconfig.*.json", 0.9)),
        rules=_stack_rules([
            ("tsconfig.json", "block", "config"),
            ("tsconfig.*.json", "watch", "config"),
        ]),
    ),
    StackProfile(
        id="docker",
        name="Docker",
        detect=(
            Detector("Dockerfile", 1.0),
            Detector("docker-compose.{yml,yaml}", 0.95),
            Detector(".dockerignore", 0.8),
        ),
        rules=_stack_rules([
            ("Dockerfile", "warn", "infrastructure"),
            ("docker-compose*.{yml,yaml}", "warn", "infrastructure"),
            (".dockerignore", "watch", "infrastructure"),
        ]),
    ),
    StackProfile(
        id="terraform",
        name="Terraform",
        detect=(Detector("*.tf", 0.95), Detector("terraform/**/*", 0.9)),
        rules=_stack_rules([
            ("*.tf", "block", "infrastructure"),
            ("terraform.tfvars", "block", "secrets"),
            (".terraform/**", "watch", "infrastructure"),
        ]),
    ),
    StackProfile(
        id="database",
        name="Database migrations",
        detect=(Detector("**/migrations/*.sql", 0.9), Detector("db/schema*", 0.8)),
        rules=_stack_rules([
            ("**/migrations/*.sql", "block", "database"),
            ("**/schema*", "block", "database"),
        ]),
    ),
    StackProfile(
        id="github",
        name="GitHub",
        description="GitHub Actions and repository configuration",
        detect=(Detector(".github/workflows/**", 0.95), Detector(".github/**", 0.8)),
        rules=_stack_rules([
            (".github/workflows/**", "block", "ci"),
        ]),
    ),
)


def get_stack_profile(stack_id: str) -> Optional[StackProfile]:
    for profile in STACK_PROFILES:
        if profile.id == stack_id:
            return profile
    return None


def _scan_workspace(root: Path, max_files: int = MAX_SCAN_FILES) -> List[str]:
    """Collect root-relative file paths and ``dir/`` entries for pruned dirs."""
    entries: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root).replace(os.sep, "/")
        prefix = "" if rel_dir == "." else rel_dir + "/"
        kept = []
        for name in dirnames:
            if name in _PRUNE_DIRS:
                entries.append(prefix + name + "/")
            else:
                kept.append(name)
        dirnames[:] = kept
        for name in filenames:
            entries.append(prefix + name)
            if len(entries) >= max_files:
                logger.debug("Workspace scan stopped at %d entries", max_files)
                return entries
    return entries


def _detector_matches(detector: Detector, entries: Sequence[str], dirs: Set[str]) -> bool:
    if detector.glob.endswith("/"):
        return detector.glob in dirs
    return any(match_path(entry, detector.glob) for entry in entries if not entry.endswith("/"))


def detect_stacks(
    workspace_root,
    profiles: Sequence[StackProfile] = STACK_PROFILES,
    min_confidence: float = 0.0,
) -> List[StackProfile]:
    """Return the profiles detected in a workspace.

    A profile is detected if any of its detectors (at or above
    min_confidence) matches at least one workspace entry.
    """
    root = Path(workspace_root)
    if not root.is_dir():
        logger.warning("Stack detection skipped, not a directory: %s", root)
        return []

    try:
        entries = _scan_workspace(root)
    except OSError as e:
        logger.error("Failed to scan workspace %s: %s", root, e)
        return []

    dirs = {e for e in entries if e.endswith("/")}
    detected = []
    for profile in profiles:
        for detector in profile.detect:
            if detector.confidence < min_confidence:
                continue
            if _detector_matches(detector, entries, dirs):
                logger.debug("Stack detector matched: %s / %s", profile.id, detector.glob)
                detected.append(profile)
                break

    logger.info("Detected %d stack(s): %s", len(detected), ", ".join(p.id for p in detected))
    return detected


def rules_for_stacks(stacks: Iterable[StackProfile]) -> List[ProtectionRule]:
    rules: List[ProtectionRule] = []
    for stack in stacks:
        rules.extend(stack.rules)
    return rules
