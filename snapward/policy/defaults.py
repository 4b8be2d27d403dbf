"""
Built-in protection rule catalogue.

CRITICAL_RULES are files where an accidental change has immediate impact
(lockfiles, secrets, build and deploy configuration). EXTENDED_RULES cover
documentation, editor and build-tool configuration at lower levels.
DEFAULT_IGNORE lists build output and tool directories that are never
protected.
"""

from typing import List, Tuple

from snapward.policy.rules import ProtectionLevel, ProtectionRule, RuleSource

W = ProtectionLevel.WATCH
N = ProtectionLevel.WARN
B = ProtectionLevel.BLOCK

# (pattern, level, category, description)
_CRITICAL: List[Tuple[str, ProtectionLevel, str, str]] = [
    # Dependency locks
    ("**/package-lock.json", B, "lockfile", "npm lock file"),
    ("**/yarn.lock", B, "lockfile", "Yarn lock file"),
    ("**/pnpm-lock.yaml", B, "lockfile", "pnpm lock file"),
    ("**/poetry.lock", B, "lockfile", "Poetry lock file"),
    ("**/Cargo.lock", B, "lockfile", "Cargo lock file"),
    ("**/go.sum", B, "lockfile", "Go module checksums"),
    ("**/Gemfile.lock", B, "lockfile", "Bundler lock file"),
    ("**/composer.lock", B, "lockfile", "Composer lock file"),
    # Secrets
    ("**/.env*", B, "secrets", "Environment variables and secrets"),
    # Core configuration
    ("package.json", N, "config", "Node.js manifest"),
    ("tsconfig.json", N, "config", "TypeScript compiler configuration"),
    # Infrastructure
    ("Dockerfile", N, "infrastructure", "Container image definition"),
    ("docker-compose.yml", N, "infrastructure", "Container orchestration"),
    ("**/docker-compose.yaml", N, "infrastructure", "Container orchestration"),
    ("**/*.tf", N, "infrastructure", "Terraform definitions"),
    (".github/workflows/*.yml", N, "ci", "GitHub Actions workflow"),
    (".github/workflows/*.yaml", N, "ci", "GitHub Actions workflow"),
]

_EXTENDED: List[Tuple[str, ProtectionLevel, str, str]] = [
    ("*.md", W, "docs", "Documentation"),
    ("*.txt", W, "docs", "Text files"),
    ("README*", W, "docs", "README"),
    ("*.json", W, "config", "JSON configuration"),
    (".editorconfig", W, "config", "Editor configuration"),
    (".prettierrc*", W, "config", "Prettier configuration"),
    (".eslintrc*", W, "config", "ESLint configuration"),
    (".babelrc", W, "config", "Babel configuration"),
    (".gitignore", N, "config", "Git ignore rules"),
    (".vscode/settings.json", W, "editor", "VS Code settings"),
    (".idea/**", W, "editor", "IDE configuration"),
    ("vite.config.*", N, "build", "Vite configuration"),
    ("webpack.config.*", N, "build", "Webpack configuration"),
    ("rollup.config.*", N, "build", "Rollup configuration"),
    ("esbuild.config.*", N, "build", "esbuild configuration"),
    ("Makefile", W, "build", "Make configuration"),
    ("CMakeLists.txt", W, "build", "CMake configuration"),
    ("requirements.txt", W, "dependencies", "Python requirements"),
    ("Gemfile", N, "dependencies", "Bundler manifest"),
    ("composer.json", N, "dependencies", "Composer manifest"),
    ("setup.py", N, "build", "Python package setup"),
    ("pyproject.toml", N, "build", "Python project configuration"),
    ("pom.xml", N, "build", "Maven build"),
    ("build.gradle*", N, "build", "Gradle build"),
    ("*.csproj", N, "build", ".NET project"),
    ("go.mod", N, "dependencies", "Go module definition"),
    ("Cargo.toml", N, "dependencies", "Cargo manifest"),
    ("*.sln", W, "build", "Visual Studio solution"),
    ("kubernetes/*.yaml", N, "infrastructure", "Kubernetes manifests"),
]

DEFAULT_IGNORE: Tuple[str, ...] = (
    "node_modules/**",
    "dist/**",
    "build/**",
    "coverage/**",
    "*.log",
    "*.tmp",
    ".snapward/**",
    ".git/**",
    "vendor/**",
    "target/**",
)


def _build(entries: List[Tuple[str, ProtectionLevel, str, str]]) -> Tuple[ProtectionRule, ...]:
    return tuple(
        ProtectionRule(pattern=p, level=lvl, category=cat, description=desc, source=RuleSource.DEFAULT)
        for p, lvl, cat, desc in entries
    )


CRITICAL_RULES: Tuple[ProtectionRule, ...] = _build(_CRITICAL)
EXTENDED_RULES: Tuple[ProtectionRule, ...] = _build(_EXTENDED)


def default_rules(include_extended: bool = True) -> List[ProtectionRule]:
    """Return the default catalogue, critical rules first."""
    rules = list(CRITICAL_RULES)
    if include_extended:
        rules.extend(EXTENDED_RULES)
    return rules
