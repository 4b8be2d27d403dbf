"""
Pydantic models for Snapward configuration.

These models define the schema for ``config.yaml`` (user-level in
``~/.snapward/`` and project-level in ``<workspace>/.snapward/``). Unknown
keys are kept so newer config files still load on older releases.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ============================================================================
# Section Models
# ============================================================================


class CooldownSettings(BaseModel):
    """Suppression windows after a protective action (minutes)."""
    protected_cooldown_minutes: float = Field(default=10.0, gt=0)
    other_cooldown_minutes: float = Field(default=5.0, gt=0)
    override_cooldown_minutes: float = Field(default=60.0, gt=0)

    model_config = {"extra": "allow"}

    def duration_ms(self, kind: str) -> int:
        """Window length for a cooldown kind: protected, other or override."""
        minutes = {
            "protected": self.protected_cooldown_minutes,
            "other": self.other_cooldown_minutes,
            "override": self.override_cooldown_minutes,
        }[kind]
        return int(minutes * 60 * 1000)


class StorageSettings(BaseModel):
    """Where snapshots and the cooldown database live.

    Relative paths are resolved against the workspace root.
    """
    data_dir: str = ".snapward"
    database_name: str = "cooldowns.db"
    snapshots_dir: str = "snapshots"
    blobs_dir: str = "blobs"
    max_snapshots: int = Field(default=100, ge=0)

    model_config = {"extra": "allow"}


class DedupSettings(BaseModel):
    max_cache_size: int = Field(default=500, ge=0)

    model_config = {"extra": "allow"}


class NamingSettings(BaseModel):
    git_timeout_seconds: float = Field(default=5.0, gt=0)
    max_name_length: int = Field(default=60, ge=10)
    use_git: bool = True

    model_config = {"extra": "allow"}


class PolicySettings(BaseModel):
    include_defaults: bool = True
    include_extended: bool = True
    detect_stacks: bool = True
    extra_rules: List[Dict[str, Any]] = Field(default_factory=list)
    ignore: Optional[List[str]] = None

    model_config = {"extra": "allow"}

    @field_validator("extra_rules", mode="before")
    @classmethod
    def coerce_rule_strings(cls, v: Any) -> Any:
        """Accept bare pattern strings as Watch rules."""
        if isinstance(v, list):
            return [{"pattern": item} if isinstance(item, str) else item for item in v]
        return v


class AllowanceSettings(BaseModel):
    """Temporary allowances (one-shot prompt bypasses)."""
    default_ttl_seconds: float = Field(default=300.0, gt=0)

    model_config = {"extra": "allow"}


# ============================================================================
# Root Model
# ============================================================================


class SnapwardConfig(BaseModel):
    """Complete Snapward configuration."""
    version: int = 1
    cooldowns: CooldownSettings = Field(default_factory=CooldownSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    dedup: DedupSettings = Field(default_factory=DedupSettings)
    naming: NamingSettings = Field(default_factory=NamingSettings)
    policy: PolicySettings = Field(default_factory=PolicySettings)
    allowances: AllowanceSettings = Field(default_factory=AllowanceSettings)
    slow_operation_ms: Optional[float] = Field(default=None, gt=0)

    model_config = {"extra": "allow"}

    @model_validator(mode="after")
    def check_cooldown_order(self) -> "SnapwardConfig":
        if self.cooldowns.protected_cooldown_minutes < self.cooldowns.other_cooldown_minutes:
            raise ValueError(
                f"protected_cooldown_minutes ({self.cooldowns.protected_cooldown_minutes}) "
                f"must be at least other_cooldown_minutes ({self.cooldowns.other_cooldown_minutes})"
            )
        return self
