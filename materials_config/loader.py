"""
Configuration Loader (``materials_config.loader``).

Responsibility
--------------
Loads the YAML configuration document and parses it into the frozen
``materials_config.schema`` dataclasses.  The single public entry point
for runtime config is ``materials_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a typo never silently
  falls back to a default.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  document after overrides are applied.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad values  -> ``ValueError`` from the schema's ``__post_init__``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from materials_config.schema import (
    AllocationConfig,
    DatabaseConfig,
    LocationsConfig,
    LoggingConfig,
    MaterialsConfig,
    RetryPolicy,
)

_SECTIONS: dict[str, type] = {
    "locations": LocationsConfig,
    "allocation": AllocationConfig,
    "retry": RetryPolicy,
    "database": DatabaseConfig,
    "logging": LoggingConfig,
}

_TOP_LEVEL_KEYS = frozenset({"config_id", "version"}) | frozenset(_SECTIONS)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def merge_overrides(data: dict[str, Any], overrides: dict[str, Any] | None) -> dict[str, Any]:
    """Deep-merge ``overrides`` into a copy of ``data``."""
    merged = copy.deepcopy(data)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_overrides(merged[key], value)
        else:
            merged[key] = value
    return merged


def _parse_section(name: str, cls: type, data: dict[str, Any] | None) -> Any:
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Section {name!r} must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in {name!r}: {sorted(unknown)}")
    return cls(**data)


def parse_config(data: dict[str, Any], checksum: str = "") -> MaterialsConfig:
    """
    Parse a configuration document into ``MaterialsConfig``.

    Missing sections take the schema defaults.
    """
    unknown = set(data) - _TOP_LEVEL_KEYS
    if unknown:
        raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

    sections = {
        name: _parse_section(name, cls, data.get(name))
        for name, cls in _SECTIONS.items()
    }
    return MaterialsConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        checksum=checksum,
        **sections,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
