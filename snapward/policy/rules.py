"""
Protection levels, rules and the immutable policy bundle.

Level-specific behaviour (ordering rank, whether a confirmation is needed,
whether the user is notified, which cooldown applies) is data attached to
each ProtectionLevel member rather than conditionals spread across callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class LevelTraits:
    """Per-level policy data."""
    rank: int
    requires_confirmation: bool
    notifies_user: bool
    cooldown_kind: str  # "protected" or "other"


_LEVEL_TRAITS: Dict[str, LevelTraits] = {
    "watch": LevelTraits(rank=0, requires_confirmation=False, notifies_user=False, cooldown_kind="other"),
    "warn": LevelTraits(rank=1, requires_confirmation=False, notifies_user=True, cooldown_kind="other"),
    "block": LevelTraits(rank=2, requires_confirmation=True, notifies_user=True, cooldown_kind="protected"),
}

# Older configs and the editor integration use these names
_LEVEL_ALIASES = {
    "watched": "watch",
    "warning": "warn",
    "protected": "block",
}


class ProtectionLevel(str, Enum):
    """How aggressively saves of a file are guarded (Watch < Warn < Block)."""
    WATCH = "watch"
    WARN = "warn"
    BLOCK = "block"

    @property
    def traits(self) -> LevelTraits:
        return _LEVEL_TRAITS[self.value]

    @property
    def rank(self) -> int:
        return self.traits.rank

    @property
    def requires_confirmation(self) -> bool:
        return self.traits.requires_confirmation

    @property
    def notifies_user(self) -> bool:
        return self.traits.notifies_user

    @property
    def cooldown_kind(self) -> str:
        return self.traits.cooldown_kind

    @property
    def label(self) -> str:
        return self.value.capitalize()

    def is_at_least(self, other: "ProtectionLevel") -> bool:
        """True if this level is as strict as other or stricter."""
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Any) -> "ProtectionLevel":
        """Parse a level name, accepting legacy aliases.

        Raises:
            ValueError: If the value is not a known level.
        """
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        text = _LEVEL_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"Unknown protection level: {value!r}") from None


def stricter_level(a: ProtectionLevel, b: ProtectionLevel) -> ProtectionLevel:
    """Return the stricter of two levels."""
    return a if a.rank >= b.rank else b


class RuleSource(str, Enum):
    """Where a rule came from. Higher rank wins precedence ties."""
    DEFAULT = "default"
    STACK = "stack"
    USER = "user"

    @property
    def rank(self) -> int:
        return {"default": 0, "stack": 1, "user": 2}[self.value]


@dataclass(frozen=True)
class ProtectionRule:
    """A glob pattern mapped to a protection level."""
    pattern: str
    level: ProtectionLevel
    category: Optional[str] = None
    description: Optional[str] = None
    source: RuleSource = RuleSource.DEFAULT

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "pattern": self.pattern,
            "level": self.level.value,
            "source": self.source.value,
        }
        if self.category:
            data["category"] = self.category
        if self.description:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: RuleSource = RuleSource.USER) -> "ProtectionRule":
        return cls(
            pattern=data["pattern"],
            level=ProtectionLevel.parse(data.get("level", "watch")),
            category=data.get("category"),
            description=data.get("description"),
            source=RuleSource(data.get("source", source.value)),
        )


@dataclass(frozen=True)
class StackRef:
    id: str
    name: str


@dataclass(frozen=True)
class PolicyAudit:
    """Provenance of a built policy."""
    loaded_at: str
    source: str  # defaults | snapwardrc | merged
    rules_count: int
    default_rules_count: int
    user_rules_count: int
    stack_rules_count: int = 0
    skipped_patterns: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ProtectionPolicy:
    """Immutable bundle of rules. Rebuilt on change, never mutated."""
    rules: Tuple[ProtectionRule, ...]
    audit: PolicyAudit
    stacks: Tuple[StackRef, ...] = ()
    ignore: Tuple[str, ...] = ()
    version: str = "1.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "rules": [r.to_dict() for r in self.rules],
            "stacks": [{"id": s.id, "name": s.name} for s in self.stacks],
            "ignore": list(self.ignore),
            "audit": {
                "loaded_at": self.audit.loaded_at,
                "source": self.audit.source,
                "rules_count": self.audit.rules_count,
                "default_rules_count": self.audit.default_rules_count,
                "user_rules_count": self.audit.user_rules_count,
                "stack_rules_count": self.audit.stack_rules_count,
                "skipped_patterns": list(self.audit.skipped_patterns),
            },
        }
