"""
Tests for snapward.policy.engine and snapward.policy.rules.

Covers:
- Level ordering and per-level traits
- Policy building: provenance counts, re-tagging, unsafe patterns
- Classification precedence: specificity, source (user > stack > default), stricter level
- Ignore patterns
"""

import dataclasses

import pytest

from snapward.policy import PolicyEngine, ProtectionLevel, ProtectionRule, RuleSource, build_policy, classify
from snapward.policy.defaults import DEFAULT_IGNORE, default_rules
from snapward.policy.rules import StackRef, stricter_level

pytestmark = pytest.mark.security

W, N, B = ProtectionLevel.WATCH, ProtectionLevel.WARN, ProtectionLevel.BLOCK


def user(pattern, level=W, **kwargs):
    return ProtectionRule(pattern=pattern, level=level, source=RuleSource.USER, **kwargs)


def stack(pattern, level=W):
    return ProtectionRule(pattern=pattern, level=level, source=RuleSource.STACK)


# ============================================================================
# Levels
# ============================================================================


class TestProtectionLevel:

    def test_ordering(self):
        assert W.rank < N.rank < B.rank
        assert B.is_at_least(N)
        assert N.is_at_least(N)
        assert not W.is_at_least(N)

    def test_stricter_level(self):
        assert stricter_level(W, B) == B
        assert stricter_level(N, W) == N

    def test_traits_are_data(self):
        assert B.requires_confirmation
        assert not N.requires_confirmation
        assert N.notifies_user and not W.notifies_user
        assert B.cooldown_kind == "protected"
        assert N.cooldown_kind == W.cooldown_kind == "other"

    @pytest.mark.parametrize("text,expected", [
        ("watch", W), ("Watched", W), ("warn", N), ("WARNING", N),
        ("block", B), ("Protected", B), (B, B),
    ])
    def test_parse(self, text, expected):
        assert ProtectionLevel.parse(text) == expected

    def test_parse_unknown(self):
        with pytest.raises(ValueError, match="Unknown protection level"):
            ProtectionLevel.parse("paranoid")


# ============================================================================
# Building
# ============================================================================


class TestBuildPolicy:

    def test_defaults_only(self):
        policy = PolicyEngine().build_policy()
        assert policy.audit.source == "defaults"
        assert policy.audit.default_rules_count == len(default_rules())
        assert policy.audit.user_rules_count == 0
        assert policy.ignore == DEFAULT_IGNORE
        assert policy.version == "1.0"

    def test_critical_only(self):
        policy = PolicyEngine(include_extended=False).build_policy()
        assert policy.audit.default_rules_count == len(default_rules(include_extended=False))
        assert policy.audit.default_rules_count < len(default_rules())

    def test_merged_provenance(self):
        policy = PolicyEngine().build_policy(
            user_rules=[user("src/**", B)],
            detected_stack_rules=[stack("*.tf", B), stack("terraform.tfvars", B)],
            stacks=[StackRef("terraform", "Terraform")],
        )
        audit = policy.audit
        assert audit.source == "merged"
        assert audit.user_rules_count == 1
        assert audit.stack_rules_count == 2
        assert audit.rules_count == len(policy.rules)
        assert audit.rules_count == audit.default_rules_count + 3
        assert policy.stacks == (StackRef("terraform", "Terraform"),)

    def test_user_rules_without_defaults(self):
        policy = PolicyEngine(include_defaults=False).build_policy(user_rules=[user("*.sql", B)])
        assert policy.audit.source == "snapwardrc"
        assert len(policy.rules) == 1

    def test_order_is_defaults_then_user_then_stack(self):
        policy = PolicyEngine(include_defaults=False).build_policy(
            user_rules=[user("a.txt")], detected_stack_rules=[stack("b.txt")],
        )
        assert [r.pattern for r in policy.rules] == ["a.txt", "b.txt"]

    def test_sources_are_retagged(self):
        mislabeled = ProtectionRule(pattern="a.txt", level=W, source=RuleSource.DEFAULT)
        policy = PolicyEngine(include_defaults=False).build_policy(user_rules=[mislabeled])
        assert policy.rules[0].source == RuleSource.USER

    def test_unsafe_rules_are_skipped(self, caplog):
        policy = PolicyEngine(include_defaults=False).build_policy(
            user_rules=[user("(a+)+b", B), user("ok.txt")],
            detected_stack_rules=[stack("a" * 1001)],
        )
        assert [r.pattern for r in policy.rules] == ["ok.txt"]
        assert "(a+)+b" in policy.audit.skipped_patterns
        assert "a" * 1001 in policy.audit.skipped_patterns
        assert policy.audit.user_rules_count == 1
        assert "Skipping unsafe" in caplog.text

    def test_unsafe_ignore_patterns_are_skipped(self):
        policy = PolicyEngine().build_policy(ignore=["dist/**", "(x*)+"])
        assert policy.ignore == ("dist/**",)
        assert "(x*)+" in policy.audit.skipped_patterns

    def test_policy_is_immutable(self):
        policy = PolicyEngine().build_policy()
        with pytest.raises(dataclasses.FrozenInstanceError):
            policy.rules = ()

    def test_to_dict(self):
        data = PolicyEngine(include_defaults=False).build_policy(user_rules=[user("x.txt", N)]).to_dict()
        assert data["version"] == "1.0"
        assert data["rules"] == [{"pattern": "x.txt", "level": "warn", "source": "user"}]
        assert data["audit"]["source"] == "snapwardrc"


# ============================================================================
# Classification
# ============================================================================


class TestClassify:

    @pytest.fixture
    def engine(self):
        return PolicyEngine()

    @pytest.mark.parametrize("path,level", [
        ("package-lock.json", B),
        ("apps/web/yarn.lock", B),
        (".env", B),
        ("config/.env.production", B),
        ("package.json", N),
        ("Dockerfile", N),
        ("docs/guide.md", W),
        ("settings.json", W),
    ])
    def test_defaults(self, engine, path, level):
        policy = engine.build_policy()
        assert engine.classify(path, policy) == level
        assert engine.is_protected(path, policy)

    def test_unmatched_is_watch_but_unprotected(self, engine):
        policy = engine.build_policy()
        assert engine.classify("src/app.ts", policy) == W
        assert engine.find_rule("src/app.ts", policy) is None
        assert not engine.is_protected("src/app.ts", policy)

    def test_more_specific_pattern_wins(self, engine):
        # "**/package-lock.json" (Block) beats "*.json" (Watch)
        policy = engine.build_policy()
        rule = engine.find_rule("package-lock.json", policy)
        assert rule.pattern == "**/package-lock.json"

    def test_specific_user_rule_can_relax(self, engine):
        policy = engine.build_policy(user_rules=[user("package.json", W)])
        assert engine.classify("package.json", policy) == W

    def test_user_wins_tie_with_default(self, engine):
        policy = engine.build_policy(user_rules=[user("Dockerfile", B)])
        assert engine.classify("Dockerfile", policy) == B

    def test_stack_wins_tie_with_default(self, engine):
        policy = engine.build_policy(detected_stack_rules=[stack("package.json", B)])
        assert engine.classify("package.json", policy) == B

    def test_stack_can_relax_default_on_tie(self, engine):
        policy = engine.build_policy(detected_stack_rules=[stack("**/package-lock.json", W)])
        rule = engine.find_rule("package-lock.json", policy)
        assert rule.source == RuleSource.STACK
        assert rule.level == W

    def test_user_wins_tie_with_stack(self, engine):
        policy = engine.build_policy(
            user_rules=[user("tsconfig.json", W)],
            detected_stack_rules=[stack("tsconfig.json", B)],
        )
        assert engine.find_rule("tsconfig.json", policy).source == RuleSource.USER
        assert engine.classify("tsconfig.json", policy) == W

    def test_stricter_wins_tie_within_source(self):
        engine = PolicyEngine(include_defaults=False)
        policy = engine.build_policy(detected_stack_rules=[stack("a.txt", B), stack("a.txt", W)])
        assert engine.classify("a.txt", policy) == B

    def test_later_rule_wins_full_tie(self):
        engine = PolicyEngine(include_defaults=False)
        policy = engine.build_policy(user_rules=[user("a.txt", N, category="first"), user("a.txt", N, category="second")])
        assert engine.find_rule("a.txt", policy).category == "second"

    def test_matching_rules_ordered(self, engine):
        policy = engine.build_policy(user_rules=[user("**/*.json", N)])
        patterns = [r.pattern for r in engine.matching_rules("package-lock.json", policy)]
        assert patterns[0] == "**/package-lock.json"
        assert set(patterns[1:]) == {"**/*.json", "*.json"}

    def test_absolute_paths_use_workspace_root(self, tmp_path):
        engine = PolicyEngine(workspace_root=tmp_path)
        policy = engine.build_policy()
        assert engine.classify(str(tmp_path / "yarn.lock"), policy) == B


class TestIgnore:

    def test_default_ignore(self):
        engine = PolicyEngine()
        policy = engine.build_policy()
        assert engine.is_ignored("node_modules/left-pad/package.json", policy)
        assert engine.find_rule("node_modules/left-pad/package.json", policy) is None
        assert engine.find_rule("dist/package.json", policy) is None

    def test_custom_ignore_replaces_defaults(self):
        engine = PolicyEngine()
        policy = engine.build_policy(ignore=["generated/**"])
        assert engine.find_rule("generated/schema.json", policy) is None
        assert engine.classify("node_modules/x/package.json", policy) == N

    def test_empty_ignore(self):
        engine = PolicyEngine()
        policy = engine.build_policy(ignore=[])
        assert policy.ignore == ()
        assert engine.is_protected("dist/package.json", policy)


class TestModuleFunctions:

    def test_build_and_classify(self):
        policy = build_policy(user_rules=[user("migrations/*.sql", B)])
        assert classify("migrations/001.sql", policy) == B
        assert classify("README.md", policy) == W
