"""Configuration paths and engine defaults for labz."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("LABZ_HOME", str(Path.home() / ".labz"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"

# Library identifiers whose member calls the parser records as operations.
DEFAULT_OPERATION_NAMESPACES = ("FHE",)
DEFAULT_LOCATOR_NAMESPACE = "FHE"
DEFAULT_PROJECT_NAME = "MyContract"
