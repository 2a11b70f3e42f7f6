"""Configuration loading for sitetasks.

Settings live in ``sitetasks.yaml`` at the project root. Every key is
optional; the file is deep-merged over DEFAULT_CONFIG so a project only
lists what it changes.

Key functions:
- load_config: Load and merge the configuration file.
- selector_from: Build a FileSelector from a config section.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .selectors import FileSelector

CONFIG_FILENAME = "sitetasks.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "styles": {
        "source_dir": "sass",
        "include": ["**/*.scss"],
        "output_dir": "public/stylesheets",
        "output_style": "expanded",
        "autoprefixer": True,
    },
    "templates": {
        "source": "views/index.jinja",
        "watch": ["views/**/*.jinja"],
        "output_dir": "public",
        "extension": ".html",
        "variables": {"title": "Hello World!"},
    },
    "scripts": {
        "include": ["**/*.js"],
        "exclude": ["build/**", "node_modules/**"],
        "build_dir": "build",
    },
    "tests": {
        "include": ["**/*.test.js"],
        "exclude": ["build/**", "node_modules/**"],
    },
    "watch": {
        "scripts_exclude": ["node_modules/**"],
        "debounce": 0,
    },
    "server": {
        "root": "public",
        "port": 3000,
        "ws_port": None,
    },
    "tools": {
        "eslint": "eslint",
        "mocha": "mocha",
        "postcss": "postcss",
        "terser": "terser",
    },
}


def load_config(project_root: Path, config_path: Path | None = None) -> dict[str, Any]:
    """Load project configuration from sitetasks.yaml.

    Args:
        project_root: Root directory of the project.
        config_path: Optional explicit configuration file. Relative paths
            are resolved against the project root.

    Returns:
        Configuration dictionary with defaults applied.

    Raises:
        ConfigError: If the file cannot be parsed or is not a mapping.
    """
    path = config_path or Path(CONFIG_FILENAME)
    if not path.is_absolute():
        path = project_root / path
    config = copy.deepcopy(DEFAULT_CONFIG)
    if not path.exists():
        return config
    try:
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    _merge(config, loaded)
    return config


def _merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Recursively merge override into base in place."""
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value


def selector_from(
    root: Path, section: dict[str, Any], exclude_key: str = "exclude"
) -> FileSelector:
    """Build a FileSelector from a config section's include/exclude lists."""
    return FileSelector(
        root,
        include=tuple(section.get("include", ())),
        exclude=tuple(section.get(exclude_key, ())),
    )
