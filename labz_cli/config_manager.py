"""Configuration manager for labz using TOML files."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List

import toml

from .config import (
    CONFIG_FILE,
    DEFAULT_LOCATOR_NAMESPACE,
    DEFAULT_OPERATION_NAMESPACES,
    DEFAULT_PROJECT_NAME,
)

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "parser": {
        "operation_namespaces": list(DEFAULT_OPERATION_NAMESPACES),
    },
    "locator": {
        "namespace": DEFAULT_LOCATOR_NAMESPACE,
    },
    "project": {
        "default_name": DEFAULT_PROJECT_NAME,
    },
}


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections) as written on disk."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", CONFIG_FILE, exc)
        return {}


def load_config() -> Dict[str, Dict[str, Any]]:
    """Load configuration merged over :data:`DEFAULT_CONFIG`.

    Unknown sections in the file are kept; known sections are filled in
    key by key so a partial file still yields every default.
    """
    merged = copy.deepcopy(DEFAULT_CONFIG)
    for section, values in load_full_config().items():
        if isinstance(values, dict):
            merged.setdefault(section, {}).update(values)
    return merged


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    try:
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config file %s: %s", CONFIG_FILE, exc)
        return False


def set_value(key: str, value: str) -> bool:
    """Set ``section.name`` to *value* and save.

    List-valued defaults (``parser.operation_namespaces``) take a
    comma-separated string.

    Raises:
        KeyError: if *key* is not a known ``section.name`` pair.
    """
    section, _, name = key.partition(".")
    if section not in DEFAULT_CONFIG or name not in DEFAULT_CONFIG[section]:
        raise KeyError(key)

    parsed: Any = value
    if isinstance(DEFAULT_CONFIG[section][name], list):
        parsed = [item.strip() for item in value.split(",") if item.strip()]

    config = load_full_config()
    config.setdefault(section, {})[name] = parsed
    return _save_full_config(config)


def reset_config() -> bool:
    """Remove the known sections from the config file, restoring defaults."""
    config = load_full_config()
    for section in DEFAULT_CONFIG:
        config.pop(section, None)
    return _save_full_config(config)


def get_operation_namespaces() -> List[str]:
    namespaces = load_config()["parser"].get("operation_namespaces")
    if not namespaces or not isinstance(namespaces, list):
        return list(DEFAULT_OPERATION_NAMESPACES)
    return [str(ns) for ns in namespaces]


def get_locator_namespace() -> str:
    return str(load_config()["locator"].get("namespace") or DEFAULT_LOCATOR_NAMESPACE)


def get_default_project_name() -> str:
    return str(load_config()["project"].get("default_name") or DEFAULT_PROJECT_NAME)
