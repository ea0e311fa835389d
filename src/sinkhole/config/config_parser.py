"""Configuration parsing helpers for sinkhole-server.

Brief:
  Reads the optional YAML configuration file, validates it against the bundled
  JSON Schema, and fills in defaults so the CLI entrypoint always works with a
  complete mapping.

Inputs:
  - YAML config paths

Outputs:
  - Normalized config dicts
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Optional

import yaml

from .config_schema import validate_config

DEFAULT_PORT = 5300

DEFAULTS: Dict[str, Any] = {
    "listen": {"host": "0.0.0.0", "port": DEFAULT_PORT},
    "blocklist": None,
    "timeout_ms": 3000,
    "max_hops": 16,
    "threaded": True,
    "servfail_on_error": False,
    "blocked_authoritative": False,
    "logging": {"level": "info", "stderr": True},
}


def apply_defaults(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Brief: Return a new mapping with DEFAULTS filled in under cfg.

    Inputs:
      - cfg: Validated configuration mapping (not mutated).

    Outputs:
      - dict: Complete configuration. Nested ``listen`` and ``logging``
        mappings are merged key by key; explicit nulls fall back to defaults.
    """

    out = copy.deepcopy(DEFAULTS)
    for key, value in cfg.items():
        if key in ("listen", "logging"):
            if isinstance(value, dict):
                out[key].update(value)
            continue
        if value is None and key != "blocklist":
            continue
        out[key] = value
    return out


def parse_config_file(config_path: str) -> Dict[str, Any]:
    """Brief: Read and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.

    Outputs:
      - dict: Parsed configuration mapping as written in the file.

    Raises:
      - ValueError: when the YAML is malformed, the root is not a mapping, or
        schema validation fails.
      - OSError: when the file cannot be read.
    """

    with open(config_path, "r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(cfg, dict):
        raise ValueError("Configuration root must be a mapping")

    validate_config(cfg, config_path=config_path)
    return cfg


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Brief: Load the effective configuration.

    Inputs:
      - config_path: Optional YAML file path; None means defaults only.

    Outputs:
      - dict: Configuration with defaults applied.

    Example:
      >>> load_config()["listen"]["port"]
      5300
    """

    if config_path is None:
        return apply_defaults({})
    return apply_defaults(parse_config_file(config_path))
