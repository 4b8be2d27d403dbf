"""
Snapshot naming.

Names are derived through four tiers, each returning as soon as it
produces a name:

1. Repository history: if the workspace is a git working copy,
   "Modified app.py" or "2A 1M in src/api".
2. File operations: tests, dependency manifests and config files get
   category names ("Updated 2 tests", "Updated dependencies").
3. Content analysis: import and declaration counts
   ("Updated 3 imports", "Refactored api module (4 files)").
4. Fallback: repository-style names for code files, otherwise
   "Modified 2 files (40 lines)".

The git lookup is optional and time-bounded; any failure just skips the
tier.
"""

from __future__ import annotations

import logging
import os
import posixpath
import re
import subprocess
from collections import Counter
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from snapward.snapshot.models import ChangeStatus, FileChange

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 5.0
MAX_NAME_LENGTH = 60

ContentReader = Callable[[str], Optional[str]]

CODE_EXTENSIONS = frozenset({
    ".ts", ".js", ".tsx", ".jsx", ".py", ".java", ".c", ".cpp", ".h", ".hpp",
    ".go", ".rs", ".rb", ".php", ".cs", ".swift", ".kt", ".scala", ".html",
    ".css", ".scss", ".sass", ".less", ".json", ".xml", ".yaml", ".yml",
    ".md", ".config", ".toml", ".sh",
})
KNOWN_CODE_FILES = ("Dockerfile", "Makefile", "README.md", ".gitignore")

DEPENDENCY_FILES = frozenset({
    "package.json", "package-lock.json", "pnpm-lock.yaml", "yarn.lock",
    "requirements.txt", "pyproject.toml", "poetry.lock", "Pipfile", "Pipfile.lock",
    "uv.lock", "Cargo.toml", "Cargo.lock", "go.mod", "go.sum",
})
CONFIG_FILES = frozenset({"tsconfig.json", "jsconfig.json", "setup.cfg", "tox.ini"})

_TEST_SUFFIXES = (
    ".test.ts", ".test.js", ".test.tsx", ".test.jsx",
    ".spec.ts", ".spec.js", ".spec.tsx", ".spec.jsx",
    "_test.py", "_test.go",
)
_RC_NAME = re.compile(r"rc(\.[A-Za-z0-9]+)?$")

IMPORT_RE = re.compile(
    r"import\s+.*from|require\(|^\s*from\s+[\w.]+\s+import\s|^\s*import\s+[\w.]+\s*$",
    re.MULTILINE,
)
STRUCTURE_RE = re.compile(
    r"function\s+\w+|class\s+\w+|const\s+\w+\s*=\s*\(|^\s*(?:async\s+)?def\s+\w+",
    re.MULTILINE,
)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def _posix(path: str) -> str:
    return path.replace("\\", "/")


def sanitize_name(text: str) -> str:
    """Collapse runs of ``@#$`` and whitespace to single spaces."""
    text = re.sub(r"[@#$]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max(0, max_length - 3)] + "..."


def is_test_file(path: str) -> bool:
    path = _posix(path)
    name = posixpath.basename(path)
    if name.endswith(_TEST_SUFFIXES):
        return True
    if name.startswith("test_") and name.endswith(".py"):
        return True
    return "__tests__" in posixpath.dirname(path).split("/")


def is_dependency_file(path: str) -> bool:
    name = posixpath.basename(_posix(path))
    return name in DEPENDENCY_FILES or (name.startswith("requirements") and name.endswith(".txt"))


def is_config_file(path: str) -> bool:
    name = posixpath.basename(_posix(path))
    return (
        ".config." in name
        or bool(_RC_NAME.search(name))
        or name.startswith(".env")
        or name in CONFIG_FILES
    )


def is_code_file(path: str) -> bool:
    """Known code extension, a well-known build/doc file, or no extension."""
    name = posixpath.basename(_posix(path))
    if any(name == known or name.endswith(known) for known in KNOWN_CODE_FILES):
        return True
    ext = posixpath.splitext(name)[1].lower()
    return not ext or ext in CODE_EXTENSIONS


def common_directory(files: Sequence[FileChange]) -> str:
    """Deepest directory shared by every file ("" if none)."""
    if not files:
        return ""
    dirs = [posixpath.dirname(_posix(f.path)) for f in files]
    if len(dirs) == 1:
        return dirs[0]
    split = [d.split("/") if d else [] for d in dirs]
    common: List[str] = []
    for parts in zip(*split):
        if all(p == parts[0] for p in parts):
            common.append(parts[0])
        else:
            break
    return "/".join(common)


def _is_synthetic(segment: str) -> bool:
    return "tmp" in segment or "test-" in segment or segment.startswith(".")


def extract_module_name(dir_path: str, files: Sequence[FileChange]) -> str:
    """Module name from a directory, skipping temp-looking segments."""
    if not dir_path:
        return "module"
    base = posixpath.basename(_posix(dir_path).rstrip("/"))
    if base and not _is_synthetic(base):
        return base
    if files:
        parts = [p for p in _posix(files[0].path).split("/") if p and p != "."]
        for part in reversed(parts[:-1]):
            if not _is_synthetic(part) and len(part) > 2:
                return part
    return "module"


class SnapshotNamingStrategy:
    """Derives human-readable snapshot names.

    Args:
        workspace_root: Directory used for the git lookup and for reading
            file contents. Paths in FileChange are relative to it (or
            absolute).
        use_git: Enable the repository-history tier.
        git_timeout: Seconds before a git call is abandoned.
        content_reader: Returns a file's text or None. Defaults to reading
            from disk under workspace_root.
    """

    def __init__(
        self,
        workspace_root: Optional[Path] = None,
        use_git: bool = True,
        git_timeout: float = GIT_TIMEOUT_SECONDS,
        max_length: int = MAX_NAME_LENGTH,
        content_reader: Optional[ContentReader] = None,
    ):
        self.workspace_root = Path(workspace_root) if workspace_root else Path.cwd()
        self.use_git = use_git
        self.git_timeout = git_timeout
        self.max_length = max_length
        self.content_reader = content_reader or self._read_from_disk

    def generate_name(self, files: Sequence[FileChange]) -> str:
        if not files:
            return "No changes"

        name = (
            self.try_git_naming(files)
            or self.try_file_operation_naming(files)
            or self.try_content_analysis_naming(files)
            or self.fallback_naming(files)
        )
        return truncate(sanitize_name(name), self.max_length)

    # -- Tier 1 ------------------------------------------------------------

    def _git(self, *args: str) -> Optional[str]:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=str(self.workspace_root),
                capture_output=True,
                text=True,
                timeout=self.git_timeout,
            )
        except (FileNotFoundError, NotADirectoryError, subprocess.TimeoutExpired, OSError) as e:
            logger.debug("git %s unavailable: %s", " ".join(args), e)
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def try_git_naming(self, files: Sequence[FileChange]) -> Optional[str]:
        if not self.use_git:
            return None
        if not self._git("rev-parse", "--git-dir"):
            return None
        if not self._git("status", "--porcelain"):
            return None
        if len(files) == 1:
            return self.single_file_name(files[0])
        return self.multi_file_name(files)

    def single_file_name(self, change: FileChange) -> str:
        base = sanitize_name(posixpath.basename(_posix(change.path)))
        base = truncate(base, self.max_length - 20)
        verb = {
            ChangeStatus.ADDED: "Added",
            ChangeStatus.MODIFIED: "Modified",
            ChangeStatus.DELETED: "Deleted",
        }[ChangeStatus(change.status)]
        return f"{verb} {base}"

    def multi_file_name(self, files: Sequence[FileChange]) -> str:
        counts = []
        for status, letter in ((ChangeStatus.ADDED, "A"), (ChangeStatus.MODIFIED, "M"), (ChangeStatus.DELETED, "D")):
            n = sum(1 for f in files if ChangeStatus(f.status) == status)
            if n:
                counts.append(f"{n}{letter}")
        common = common_directory(files)
        where = self._relative_directory(common) if common else "workspace"
        return f"{' '.join(counts)} in {where}"

    def _relative_directory(self, directory: str) -> str:
        path = Path(directory)
        if path.is_absolute():
            try:
                relative = path.relative_to(self.workspace_root).as_posix()
            except ValueError:
                return "."
        else:
            relative = _posix(directory)
        while relative.startswith("./"):
            relative = relative[2:]
        if not relative or relative == "." or relative.startswith(".."):
            return "."
        return relative

    # -- Tier 2 ------------------------------------------------------------

    def try_file_operation_naming(self, files: Sequence[FileChange]) -> Optional[str]:
        tests = [f for f in files if is_test_file(f.path)]
        if tests and len(tests) == len(files):
            return f"Updated {_plural(len(tests), 'test')}"
        if any(is_dependency_file(f.path) for f in files):
            return "Updated dependencies"
        configs = [f for f in files if is_config_file(f.path)]
        if configs and len(configs) == len(files):
            return f"Modified {_plural(len(configs), 'config')}"
        if tests:
            return f"Updated {_plural(len(tests), 'test')}"
        return None

    # -- Tier 3 ------------------------------------------------------------

    def _read_from_disk(self, path: str) -> Optional[str]:
        target = Path(path)
        if not target.is_absolute():
            target = self.workspace_root / target
        try:
            return target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return None

    def _count(self, files: Sequence[FileChange], pattern: "re.Pattern[str]") -> int:
        total = 0
        for change in files:
            if ChangeStatus(change.status) == ChangeStatus.DELETED:
                continue
            text = self.content_reader(change.path)
            if text:
                total += len(pattern.findall(text))
        return total

    def try_content_analysis_naming(self, files: Sequence[FileChange]) -> Optional[str]:
        imports = self._count(files, IMPORT_RE)
        structures = self._count(files, STRUCTURE_RE)

        if imports and not structures:
            return f"Updated {_plural(imports, 'import')}"
        if structures > 3 and len(files) > 1:
            module = extract_module_name(common_directory(files), files)
            return f"Refactored {module} module ({len(files)} files)"
        if structures >= 3 and len(files) == 1:
            module = extract_module_name(posixpath.dirname(_posix(files[0].path)), files)
            return f"Refactored {module} ({structures} changes)"
        if imports:
            return f"Updated {_plural(imports, 'import')}"
        return None

    # -- Tier 4 ------------------------------------------------------------

    def fallback_naming(self, files: Sequence[FileChange]) -> str:
        total_lines = sum(f.lines_added + f.lines_deleted for f in files)
        if len(files) == 1:
            change = files[0]
            if not is_code_file(change.path):
                return f"Modified 1 file ({total_lines} lines)"
            return self.single_file_name(change)
        if not all(is_code_file(f.path) for f in files):
            return f"Modified {len(files)} files ({total_lines} lines)"
        return self.multi_file_name(files)


def count_line_changes(before: Optional[bytes], after: Optional[bytes]):
    """(lines_added, lines_deleted) between two file versions.

    Uses a multiset comparison of lines, which is enough for naming.
    """
    old = Counter((before or b"").splitlines())
    new = Counter((after or b"").splitlines())
    added = sum((new - old).values())
    deleted = sum((old - new).values())
    return added, deleted


def describe_change(path: str, before: Optional[bytes], after: Optional[bytes]) -> FileChange:
    """Build a FileChange from two versions of a file (None = absent)."""
    if before is None:
        status = ChangeStatus.ADDED
    elif after is None:
        status = ChangeStatus.DELETED
    else:
        status = ChangeStatus.MODIFIED
    added, deleted = count_line_changes(before, after)
    return FileChange(path=path, status=status, lines_added=added, lines_deleted=deleted)


def relative_path(path: str, root: Optional[Path]) -> str:
    """Path relative to root when it lives under it, else unchanged."""
    if root is None:
        return _posix(path)
    try:
        return Path(os.path.abspath(path)).relative_to(Path(os.path.abspath(root))).as_posix()
    except ValueError:
        return _posix(path)
