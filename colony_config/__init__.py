"""
colony_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files directly.  Returns a frozen ``LedgerConfig``.

Architecture position:
    Configuration -- sits above ``colony_ledger`` and below
    ``colony_services``.  The kernel MUST NEVER import from
    ``colony_config``; ``colony_config.bridges`` translates a LedgerConfig
    into kernel-compatible inputs.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``KeyError`` / ``ValueError`` -- missing or out-of-range values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``COLONY_CONFIG_TRACE`` log entry containing the config_id, version,
    and checksum, tying every ledger run to the exact configuration that
    governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from colony_config.loader import load_yaml_file, parse_config
from colony_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LockConfig,
    LoggingConfig,
    QueryConfig,
)

_logger = logging.getLogger("colony_ledger.config")

# Default configuration file
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned ``LedgerConfig`` has passed value validation.
        - A ``COLONY_CONFIG_TRACE`` log entry is emitted on every
          successful call.

    Non-goals:
        - Does NOT cache across calls; callers hold the returned config.

    Args:
        config_path: Override path to a YAML file.  Defaults to
            colony_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        KeyError: If a required key is missing.
        ValueError: If a value is out of range.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path))

    _logger.info(
        "COLONY_CONFIG_TRACE",
        extra={
            "trace_type": "COLONY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DatabaseConfig",
    "LedgerConfig",
    "LockConfig",
    "LoggingConfig",
    "QueryConfig",
    "get_active_config",
]
