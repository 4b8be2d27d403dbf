"""
Glob matching for protection rules.

Supports ``**`` (zero or more path segments), ``*`` and ``?`` within a
segment, ``[...]`` character classes and ``{a,b}`` alternation. Patterns
without a ``/`` match against the basename, so ``package.json`` covers
``web/package.json`` too.

Callers are expected to run patterns through the glob validator first;
match_path() refuses unsafe patterns rather than executing them.
"""

import fnmatch
import os
from functools import lru_cache
from pathlib import PurePosixPath
from typing import List, Optional, Tuple, Union

from snapward.policy.glob_validator import is_glob_safe

# Upper bound on alternatives produced by brace expansion
MAX_BRACE_EXPANSIONS = 256

_WILDCARD_CHARS = set("*?[]{},")


def normalize_path(path: Union[str, os.PathLike], root: Optional[Union[str, os.PathLike]] = None) -> str:
    """Normalize a path for matching.

    Converts separators to ``/``, strips a leading ``./`` and, when root is
    given and the path lives under it, makes the path root-relative.
    """
    text = os.fspath(path).replace("\\", "/")
    if root is not None:
        root_text = os.fspath(root).replace("\\", "/").rstrip("/")
        if root_text and (text == root_text or text.startswith(root_text + "/")):
            text = text[len(root_text):].lstrip("/")
    while text.startswith("./"):
        text = text[2:]
    return text


def _find_brace_group(pattern: str) -> Optional[Tuple[int, int]]:
    """Locate the first top-level {...} group containing a comma."""
    depth = 0
    start = -1
    has_comma = False
    for i, ch in enumerate(pattern):
        if ch == "{":
            if depth == 0:
                start = i
                has_comma = False
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and has_comma:
                return start, i
        elif ch == "," and depth == 1:
            has_comma = True
    return None


def _split_alternatives(body: str) -> List[str]:
    parts = []
    depth = 0
    current = []
    for ch in body:
        if ch == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current.append(ch)
    parts.append("".join(current))
    return parts


@lru_cache(maxsize=1024)
def expand_braces(pattern: str) -> Tuple[str, ...]:
    """Expand ``{a,b}`` alternation into concrete patterns.

    >>> expand_braces("*.{yml,yaml}")
    ('*.yml', '*.yaml')
    """
    results = []
    pending = [pattern]
    while pending:
        current = pending.pop(0)
        group = _find_brace_group(current)
        if group is None:
            results.append(current)
        else:
            start, end = group
            prefix, body, suffix = current[:start], current[start + 1:end], current[end + 1:]
            for alt in _split_alternatives(body):
                pending.append(prefix + alt + suffix)
        if len(results) + len(pending) > MAX_BRACE_EXPANSIONS:
            break
    return tuple(results[:MAX_BRACE_EXPANSIONS])


def _match_segments(path_parts: List[str], pattern_parts: List[str]) -> bool:
    if not pattern_parts:
        return not path_parts

    if not path_parts:
        return all(p == "**" for p in pattern_parts)

    if pattern_parts[0] == "**":
        # Collapse runs of ** before recursing
        rest = pattern_parts[1:]
        while rest and rest[0] == "**":
            rest = rest[1:]
        if not rest:
            return True
        for i in range(len(path_parts)):
            if _match_segments(path_parts[i:], rest):
                return True
        return False

    if fnmatch.fnmatchcase(path_parts[0], pattern_parts[0]):
        return _match_segments(path_parts[1:], pattern_parts[1:])
    return False


def _match_single(path: str, pattern: str) -> bool:
    pattern = pattern.lstrip("/")
    if "/" not in pattern and "**" not in pattern:
        return fnmatch.fnmatchcase(PurePosixPath(path).name, pattern)
    path_parts = [p for p in path.split("/") if p]
    pattern_parts = [p for p in pattern.split("/") if p]
    return _match_segments(path_parts, pattern_parts)


def match_path(
    path: Union[str, os.PathLike],
    pattern: str,
    root: Optional[Union[str, os.PathLike]] = None,
) -> bool:
    """Check whether a path matches a glob pattern.

    Args:
        path: File path, absolute or relative.
        pattern: Glob pattern. Unsafe patterns never match.
        root: Workspace root used to relativize absolute paths.

    Returns:
        True if the path matches any brace alternative of the pattern.
    """
    if not is_glob_safe(pattern):
        return False
    normalized = normalize_path(path, root)
    if not normalized:
        return False
    return any(_match_single(normalized, alt) for alt in expand_braces(pattern))


def pattern_specificity(pattern: str) -> Tuple[int, int]:
    """Rank a pattern by how specific it is.

    Returns:
        (literal character count, literal segment count). Higher is more
        specific. Separators and wildcard syntax do not count as literals.
    """
    literals = sum(1 for ch in pattern if ch not in _WILDCARD_CHARS and ch != "/")
    segments = sum(
        1 for seg in pattern.split("/")
        if seg and not any(ch in _WILDCARD_CHARS for ch in seg)
    )
    return literals, segments
