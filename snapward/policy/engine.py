"""
Protection policy engine.

Builds immutable ProtectionPolicy bundles from the default catalogue, user
rules and stack-contributed rules, and classifies paths against them.

Precedence when several rules match one path:
    1. the most specific pattern (literal characters, then literal segments)
    2. the rule source: user, then stack, then default
    3. the stricter level
    4. the later rule in the policy
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from snapward.policy.defaults import DEFAULT_IGNORE, default_rules
from snapward.policy.glob_match import match_path, pattern_specificity
from snapward.policy.glob_validator import rejection_reason
from snapward.policy.rules import (
    PolicyAudit,
    ProtectionLevel,
    ProtectionPolicy,
    ProtectionRule,
    RuleSource,
    StackRef,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def _precedence_key(index: int, rule: ProtectionRule) -> Tuple[int, int, int, int, int]:
    literals, segments = pattern_specificity(rule.pattern)
    return (literals, segments, rule.source.rank, rule.level.rank, index)


class PolicyEngine:
    """Builds policies and classifies paths.

    Args:
        workspace_root: Root used to relativize absolute paths before
            matching. Relative paths are matched as given.
        include_defaults: Start every policy from the default catalogue.
        include_extended: Include the extended (docs/editor/build) defaults.
    """

    def __init__(
        self,
        workspace_root: Optional[PathLike] = None,
        include_defaults: bool = True,
        include_extended: bool = True,
    ):
        self.workspace_root = workspace_root
        self.include_defaults = include_defaults
        self.include_extended = include_extended

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def build_policy(
        self,
        user_rules: Optional[Iterable[ProtectionRule]] = None,
        detected_stack_rules: Optional[Iterable[ProtectionRule]] = None,
        stacks: Sequence[StackRef] = (),
        ignore: Optional[Iterable[str]] = None,
    ) -> ProtectionPolicy:
        """Merge defaults, user rules and stack rules into a new policy.

        Unsafe patterns are dropped with a warning and listed in the
        policy audit.
        """
        skipped: List[str] = []

        def _safe(rules: Iterable[ProtectionRule], source: RuleSource) -> List[ProtectionRule]:
            kept = []
            for rule in rules:
                reason = rejection_reason(rule.pattern)
                if reason is not None:
                    logger.warning("Skipping unsafe %s rule %r: %s", source.value, rule.pattern, reason)
                    skipped.append(str(rule.pattern))
                    continue
                if rule.source != source:
                    rule = ProtectionRule(
                        pattern=rule.pattern,
                        level=rule.level,
                        category=rule.category,
                        description=rule.description,
                        source=source,
                    )
                kept.append(rule)
            return kept

        defaults = _safe(default_rules(self.include_extended), RuleSource.DEFAULT) if self.include_defaults else []
        users = _safe(user_rules or [], RuleSource.USER)
        stack_rules = _safe(detected_stack_rules or [], RuleSource.STACK)

        ignore_patterns = []
        for pattern in (DEFAULT_IGNORE if ignore is None else ignore):
            reason = rejection_reason(pattern)
            if reason is not None:
                logger.warning("Skipping unsafe ignore pattern %r: %s", pattern, reason)
                skipped.append(str(pattern))
                continue
            ignore_patterns.append(pattern)

        if users or stack_rules:
            source = "merged" if defaults else "snapwardrc"
        else:
            source = "defaults"

        rules = tuple(defaults + users + stack_rules)
        audit = PolicyAudit(
            loaded_at=datetime.now(timezone.utc).isoformat(),
            source=source,
            rules_count=len(rules),
            default_rules_count=len(defaults),
            user_rules_count=len(users),
            stack_rules_count=len(stack_rules),
            skipped_patterns=tuple(skipped),
        )
        logger.debug(
            "Built policy: %d rules (%d default, %d user, %d stack), %d skipped",
            len(rules), len(defaults), len(users), len(stack_rules), len(skipped),
        )
        return ProtectionPolicy(
            rules=rules,
            audit=audit,
            stacks=tuple(stacks),
            ignore=tuple(ignore_patterns),
        )

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def is_ignored(self, path: PathLike, policy: ProtectionPolicy) -> bool:
        return any(match_path(path, p, self.workspace_root) for p in policy.ignore)

    def matching_rules(self, path: PathLike, policy: ProtectionPolicy) -> List[ProtectionRule]:
        """All rules matching path, highest precedence first."""
        if self.is_ignored(path, policy):
            return []
        matches = [
            (i, rule) for i, rule in enumerate(policy.rules)
            if match_path(path, rule.pattern, self.workspace_root)
        ]
        matches.sort(key=lambda item: _precedence_key(*item), reverse=True)
        return [rule for _, rule in matches]

    def find_rule(self, path: PathLike, policy: ProtectionPolicy) -> Optional[ProtectionRule]:
        """The winning rule for path, or None if the path is unprotected."""
        matches = self.matching_rules(path, policy)
        return matches[0] if matches else None

    def classify(self, path: PathLike, policy: ProtectionPolicy) -> ProtectionLevel:
        """Protection level for path. Watch when no rule matches."""
        rule = self.find_rule(path, policy)
        return rule.level if rule else ProtectionLevel.WATCH

    def is_protected(self, path: PathLike, policy: ProtectionPolicy) -> bool:
        return self.find_rule(path, policy) is not None


_default_engine = PolicyEngine()


def build_policy(
    user_rules: Optional[Iterable[ProtectionRule]] = None,
    detected_stack_rules: Optional[Iterable[ProtectionRule]] = None,
) -> ProtectionPolicy:
    """Build a policy with the default engine settings."""
    return _default_engine.build_policy(user_rules, detected_stack_rules)


def classify(path: PathLike, policy: ProtectionPolicy) -> ProtectionLevel:
    """Classify a (workspace-relative) path with the default engine."""
    return _default_engine.classify(path, policy)
