"""
Workspace rule loading.

Two sources are read from the workspace root:

``.snapwardrc``
    Line-oriented. Blank lines and ``#`` comments are ignored. Each line is
    ``<pattern>`` (Watch), ``<pattern> <level>`` or ``<pattern> @<level>``.
    A leading ``!`` marks an ignore pattern.

``.snapward.yaml``
    ``rules:`` list of {pattern, level, category, description} mappings and
    an optional ``ignore:`` list.

Every pattern goes through the glob validator; failing patterns are skipped
with a warning and reported, never rewritten.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import yaml

from snapward.policy.glob_validator import rejection_reason
from snapward.policy.rules import ProtectionLevel, ProtectionRule, RuleSource

logger = logging.getLogger(__name__)

RC_FILENAME = ".snapwardrc"
YAML_FILENAME = ".snapward.yaml"


@dataclass
class LoadedRules:
    """Rules and ignore patterns read from workspace configuration."""
    rules: List[ProtectionRule] = field(default_factory=list)
    ignore: List[str] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)

    def extend(self, other: "LoadedRules") -> None:
        self.rules.extend(other.rules)
        self.ignore.extend(other.ignore)
        self.skipped.extend(other.skipped)
        self.sources.extend(other.sources)


def _accept(pattern: str, origin: str, loaded: LoadedRules) -> bool:
    reason = rejection_reason(pattern)
    if reason is not None:
        logger.warning("Skipping unsafe pattern %r from %s: %s", pattern, origin, reason)
        loaded.skipped.append((pattern, reason))
        return False
    return True


def parse_rc_line(line: str) -> Optional[Tuple[str, Optional[str], bool]]:
    """Split one rc line into (pattern, level name or None, is_ignore).

    Returns None for blank and comment lines.
    """
    text = line.strip()
    if not text or text.startswith("#"):
        return None

    is_ignore = text.startswith("!")
    if is_ignore:
        text = text[1:].strip()

    level = None
    parts = text.rsplit(None, 1)
    if len(parts) == 2:
        candidate = parts[1].lstrip("@")
        try:
            ProtectionLevel.parse(candidate)
        except ValueError:
            pass
        else:
            text, level = parts[0].strip(), candidate
    if level is None and "@" in text:
        head, _, tail = text.rpartition("@")
        try:
            ProtectionLevel.parse(tail)
        except ValueError:
            pass
        else:
            text, level = head.strip(), tail
    return text, level, is_ignore


def parse_rc_content(
    content: str,
    origin: str = RC_FILENAME,
    default_level: ProtectionLevel = ProtectionLevel.WATCH,
) -> LoadedRules:
    """Parse ``.snapwardrc`` text into rules."""
    loaded = LoadedRules(sources=[origin])
    for line in content.splitlines():
        parsed = parse_rc_line(line)
        if parsed is None:
            continue
        pattern, level_name, is_ignore = parsed
        if not _accept(pattern, origin, loaded):
            continue
        if is_ignore:
            loaded.ignore.append(pattern)
            continue
        level = ProtectionLevel.parse(level_name) if level_name else default_level
        loaded.rules.append(ProtectionRule(pattern=pattern, level=level, source=RuleSource.USER))
    return loaded


def load_rc_file(path: Path, default_level: ProtectionLevel = ProtectionLevel.WATCH) -> LoadedRules:
    """Load a ``.snapwardrc`` file. A missing file yields no rules."""
    path = Path(path)
    if not path.exists():
        return LoadedRules()
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read %s: %s", path, e)
        return LoadedRules()
    return parse_rc_content(content, origin=str(path), default_level=default_level)


def load_yaml_rules(path: Path) -> LoadedRules:
    """Load rules from a ``.snapward.yaml`` file. A missing file yields no rules."""
    path = Path(path)
    if not path.exists():
        return LoadedRules()
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Could not parse %s: %s", path, e)
        return LoadedRules()

    loaded = LoadedRules(sources=[str(path)])
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: top level must be a mapping", path)
        return loaded

    for entry in data.get("rules") or []:
        if isinstance(entry, str):
            entry = {"pattern": entry}
        if not isinstance(entry, dict) or "pattern" not in entry:
            logger.warning("Ignoring malformed rule in %s: %r", path, entry)
            continue
        if not _accept(entry["pattern"], str(path), loaded):
            continue
        try:
            loaded.rules.append(ProtectionRule.from_dict(entry, source=RuleSource.USER))
        except ValueError as e:
            logger.warning("Ignoring rule %r in %s: %s", entry["pattern"], path, e)

    for pattern in data.get("ignore") or []:
        if _accept(pattern, str(path), loaded):
            loaded.ignore.append(pattern)
    return loaded


def load_workspace_rules(workspace_root: Path) -> LoadedRules:
    """Load user rules from every supported file in a workspace root."""
    root = Path(workspace_root)
    loaded = LoadedRules()
    loaded.extend(load_rc_file(root / RC_FILENAME))
    loaded.extend(load_yaml_rules(root / YAML_FILENAME))
    if loaded.rules:
        logger.debug("Loaded %d user rule(s) from %s", len(loaded.rules), ", ".join(loaded.sources))
    return loaded


def add_rc_pattern(path: Path, pattern: str, level: Optional[ProtectionLevel] = None) -> bool:
    """Append a pattern to a ``.snapwardrc`` file.

    Returns:
        True if the pattern was added, False if it was already present.

    Raises:
        InvalidPatternError: If the pattern is unsafe.
    """
    from snapward.policy.glob_validator import sanitize

    sanitize(pattern)
    path = Path(path)
    existing = []
    current = path.read_text(encoding="utf-8") if path.exists() else ""
    if current:
        for line in current.splitlines():
            parsed = parse_rc_line(line)
            if parsed is not None:
                existing.append(parsed[0])
    if pattern in existing:
        return False

    line = pattern if level is None else f"{pattern} {level.value}"
    with open(path, "a", encoding="utf-8") as f:
        if current and not current.endswith("\n"):
            f.write("\n")
        f.write(line + "\n")
    return True
