"""
Snapward configuration loading.

User config lives in ``~/.snapward/config.yaml``; a workspace may add
``<workspace>/.snapward/config.yaml`` which is merged over it key by key.
Invalid config never stops Snapward: validation errors are logged and the
defaults are used instead.
"""

import copy
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from snapward.config.models import (
    AllowanceSettings,
    CooldownSettings,
    DedupSettings,
    NamingSettings,
    PolicySettings,
    SnapwardConfig,
    StorageSettings,
)

logger = logging.getLogger("snapward.config")

USER_CONFIG_PATH = Path.home() / ".snapward" / "config.yaml"
PROJECT_CONFIG_RELPATH = Path(".snapward") / "config.yaml"

__all__ = [
    "AllowanceSettings",
    "CooldownSettings",
    "DedupSettings",
    "NamingSettings",
    "PolicySettings",
    "SnapwardConfig",
    "StorageSettings",
    "USER_CONFIG_PATH",
    "get_config",
    "load_config",
    "reset_config",
    "save_config",
]


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Could not read config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: top level must be a mapping", path)
        return {}
    return data


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(
    user_path: Optional[Path] = None,
    workspace_root: Optional[Path] = None,
) -> SnapwardConfig:
    """Load and validate configuration.

    Args:
        user_path: User config file. Defaults to USER_CONFIG_PATH.
        workspace_root: If given, ``.snapward/config.yaml`` under it is
            merged over the user config.
    """
    data = _read_yaml(Path(user_path) if user_path else USER_CONFIG_PATH)
    if workspace_root is not None:
        data = _deep_merge(data, _read_yaml(Path(workspace_root) / PROJECT_CONFIG_RELPATH))

    try:
        return SnapwardConfig.model_validate(data)
    except ValidationError as e:
        logger.warning("Invalid Snapward config, using defaults: %s", e)
        return SnapwardConfig()


def save_config(config: SnapwardConfig, path: Optional[Path] = None) -> Path:
    """Write config as YAML and return the path written."""
    target = Path(path) if path else USER_CONFIG_PATH
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        yaml.dump(config.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)
    return target


_config: Optional[SnapwardConfig] = None
_config_lock = threading.Lock()


def get_config() -> SnapwardConfig:
    """Get the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached config (for tests)."""
    global _config
    with _config_lock:
        _config = None
