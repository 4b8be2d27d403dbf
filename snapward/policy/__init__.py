"""
Snapward protection policy: glob safety, rules, rule sources and the engine
that classifies paths into Watch / Warn / Block.
"""

from snapward.policy.engine import PolicyEngine, build_policy, classify
from snapward.policy.glob_validator import GlobValidator, is_glob_safe, sanitize
from snapward.policy.rules import (
    ProtectionLevel,
    ProtectionPolicy,
    ProtectionRule,
    RuleSource,
)

__all__ = [
    "GlobValidator",
    "PolicyEngine",
    "ProtectionLevel",
    "ProtectionPolicy",
    "ProtectionRule",
    "RuleSource",
    "build_policy",
    "classify",
    "is_glob_safe",
    "sanitize",
]
