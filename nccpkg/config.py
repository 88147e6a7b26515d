"""
Configuration — TOML file merged over built-in defaults.

Lookup order: explicit path, $NCCPKG_CONFIG, ~/.ncc/nccpkg.toml.

Example nccpkg.toml:
    compression = true
    compression_level = 6
    strict = false
    scan_chunk_size = 65536
    component_extensions = [".php", ".phtml"]
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from nccpkg import (
    CONFIG_DIR,
    CONFIG_ENV_VAR,
    CONFIG_FILENAME,
    DEFAULT_COMPRESSION_LEVEL,
)
from nccpkg._format.spec import DEFAULT_SCAN_CHUNK_SIZE, SIGNATURE
from nccpkg.payload import clamp_compression_level

log = logging.getLogger(__name__)

# Default config
DEFAULT_CONFIG: dict[str, Any] = {
    "scan_chunk_size": DEFAULT_SCAN_CHUNK_SIZE,
    "compression": True,
    "compression_level": DEFAULT_COMPRESSION_LEVEL,
    "overwrite": False,
    "strict": False,
    "component_extensions": [".php"],
}


def default_config_path() -> Path:
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env)
    return Path.home() / CONFIG_DIR / CONFIG_FILENAME


def _validate(config: dict[str, Any]) -> dict[str, Any]:
    level = config["compression_level"]
    if not isinstance(level, int) or isinstance(level, bool):
        log.warning("compression_level must be an integer, using %d", DEFAULT_COMPRESSION_LEVEL)
        config["compression_level"] = DEFAULT_COMPRESSION_LEVEL
    else:
        config["compression_level"] = clamp_compression_level(level)

    chunk = config["scan_chunk_size"]
    if not isinstance(chunk, int) or isinstance(chunk, bool) or chunk < len(SIGNATURE):
        log.warning(
            "scan_chunk_size must be an integer >= %d, using %d",
            len(SIGNATURE), DEFAULT_SCAN_CHUNK_SIZE,
        )
        config["scan_chunk_size"] = DEFAULT_SCAN_CHUNK_SIZE

    for key in ("compression", "overwrite", "strict"):
        if not isinstance(config[key], bool):
            log.warning("%s must be true or false, using %s", key, DEFAULT_CONFIG[key])
            config[key] = DEFAULT_CONFIG[key]

    extensions = config["component_extensions"]
    if not isinstance(extensions, list) or not all(isinstance(e, str) for e in extensions):
        log.warning("component_extensions must be a list of strings, using defaults")
        config["component_extensions"] = list(DEFAULT_CONFIG["component_extensions"])
    return config


def load_config(config_path: Path | None = None) -> dict[str, Any]:
    """Load config from a TOML file, falling back to defaults."""
    config = dict(DEFAULT_CONFIG)
    config["component_extensions"] = list(DEFAULT_CONFIG["component_extensions"])

    path = Path(config_path) if config_path else default_config_path()
    if path.is_file():
        try:
            import tomllib
        except ImportError:
            import tomli as tomllib

        try:
            with open(path, "rb") as f:
                file_config = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            log.warning("Failed to load config from %s: %s", path, e)
            return config

        for key, value in file_config.items():
            if key not in DEFAULT_CONFIG:
                log.warning("Ignoring unknown config key %r in %s", key, path)
                continue
            config[key] = value
        log.debug("Loaded config from %s", path)

    return _validate(config)
