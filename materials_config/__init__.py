"""
materials_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files directly.

Architecture position:
    Configuration -- sits above ``materials_kernel`` and below
    ``materials_services``.  The kernel MUST NEVER import from
    ``materials_config``; services hand the relevant values (split
    tolerance, location names, retry policy) down as plain arguments.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful ``get_active_config()`` call logs
    ``materials_config_loaded`` with the config id, version and checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from materials_config.loader import (
    compute_checksum,
    load_yaml_file,
    merge_overrides,
    parse_config,
)
from materials_config.schema import (
    AllocationConfig,
    DatabaseConfig,
    LocationsConfig,
    LoggingConfig,
    MaterialsConfig,
    RetryPolicy,
)

_logger = logging.getLogger("materials_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(
    path: Path | str | None = None,
    overrides: dict[str, Any] | None = None,
) -> MaterialsConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to materials_config/sets/default.yaml.
        overrides: Nested mapping merged over the file before parsing
            (e.g. ``{"retry": {"max_attempts": 5}}``).

    Returns:
        A frozen ``MaterialsConfig`` carrying the checksum of the merged
        document.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_PATH
    data = merge_overrides(load_yaml_file(config_path), overrides)
    checksum = compute_checksum(data)
    config = parse_config(data, checksum=checksum)

    _logger.info(
        "materials_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": checksum,
            "source": str(config_path),
            "override_keys": sorted(overrides) if overrides else [],
        },
    )
    return config


__all__ = [
    "AllocationConfig",
    "DatabaseConfig",
    "LocationsConfig",
    "LoggingConfig",
    "MaterialsConfig",
    "RetryPolicy",
    "get_active_config",
]
