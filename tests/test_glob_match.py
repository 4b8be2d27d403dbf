"""
Tests for snapward.policy.glob_match.

Covers path normalization, brace expansion, globstar semantics, basename
matching for slash-free patterns and specificity ranking.
"""

import pytest

from snapward.policy.glob_match import (
    MAX_BRACE_EXPANSIONS,
    expand_braces,
    match_path,
    normalize_path,
    pattern_specificity,
)

pytestmark = pytest.mark.security


class TestNormalizePath:

    def test_backslashes(self):
        assert normalize_path("src\\app\\main.ts") == "src/app/main.ts"

    def test_strips_dot_prefix(self):
        assert normalize_path("./././a.txt") == "a.txt"

    def test_relative_to_root(self):
        assert normalize_path("/work/proj/src/a.ts", "/work/proj") == "src/a.ts"
        assert normalize_path("/work/proj/src/a.ts", "/work/proj/") == "src/a.ts"

    def test_outside_root_unchanged(self):
        assert normalize_path("/other/a.ts", "/work/proj") == "/other/a.ts"
        # Shared prefix is not containment
        assert normalize_path("/work/project2/a.ts", "/work/proj") == "/work/project2/a.ts"


class TestExpandBraces:

    def test_simple(self):
        assert expand_braces("*.{yml,yaml}") == ("*.yml", "*.yaml")

    def test_multiple_groups(self):
        assert set(expand_braces("{a,b}/{c,d}")) == {"a/c", "a/d", "b/c", "b/d"}

    def test_nested(self):
        assert set(expand_braces("x.{a,{b,c}}")) == {"x.a", "x.b", "x.c"}

    def test_no_comma_is_literal(self):
        assert expand_braces("{abc}.txt") == ("{abc}.txt",)

    def test_bounded(self):
        pattern = "{a,b,c,d}" * 6  # 4096 combinations
        assert len(expand_braces(pattern)) <= MAX_BRACE_EXPANSIONS


class TestMatchPath:

    @pytest.mark.parametrize("path,pattern", [
        ("package.json", "package.json"),
        ("web/package.json", "package.json"),
        ("package-lock.json", "**/package-lock.json"),
        ("apps/web/package-lock.json", "**/package-lock.json"),
        (".env", "**/.env*"),
        ("config/.env.local", "**/.env*"),
        ("src/app.ts", "src/*.ts"),
        (".github/workflows/ci.yml", ".github/workflows/*.yml"),
        ("docker-compose.yaml", "docker-compose*.{yml,yaml}"),
        ("a/b/c/d.txt", "a/**"),
        ("a/d.txt", "a/**/d.txt"),
        ("a/b/c/d.txt", "a/**/d.txt"),
    ])
    def test_matches(self, path, pattern):
        assert match_path(path, pattern)

    @pytest.mark.parametrize("path,pattern", [
        ("src/nested/app.ts", "src/*.ts"),
        ("package.json.bak", "package.json"),
        (".github/workflows/sub/ci.yml", ".github/workflows/*.yml"),
        ("b/d.txt", "a/**/d.txt"),
        ("Package.json", "package.json"),
    ])
    def test_does_not_match(self, path, pattern):
        assert not match_path(path, pattern)

    def test_absolute_path_with_root(self, tmp_path):
        assert match_path(str(tmp_path / "src" / "app.ts"), "src/*.ts", tmp_path)

    def test_unsafe_pattern_never_matches(self):
        assert not match_path("aaaa", "(a+)+")
        assert not match_path("x", "**/" * 4 + "x")

    def test_empty_path(self):
        assert not match_path("", "*")


class TestPatternSpecificity:

    def test_literal_beats_wildcard(self):
        assert pattern_specificity("package.json") > pattern_specificity("*.json")

    def test_deeper_literal_path(self):
        assert pattern_specificity("src/config/app.json") > pattern_specificity("**/app.json")

    def test_counts(self):
        assert pattern_specificity("src/*.ts") == (6, 1)
        assert pattern_specificity("**") == (0, 0)
