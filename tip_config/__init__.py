"""
tip_config -- single public entrypoint for tip ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.  Returns a frozen
    ``TipLedgerConfig``; YAML loading is internal.

Architecture position:
    Configuration -- sits above ``tip_kernel`` and ``tip_batch`` and is
    consumed by the runtime wiring in ``tip_services``.  The kernel MUST
    NEVER import from ``tip_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through
      ``get_active_config()``.
    - Deterministic identity: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or invalid fields.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``TIPLEDGER_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying a running process to the exact configuration it used.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from tip_config.loader import load_yaml_file, parse_config
from tip_config.schema import TipLedgerConfig

_logger = logging.getLogger("tip_kernel.config")

# Default configuration set
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_DEFAULT_CONFIG_FILE = _DEFAULT_CONFIG_DIR / "default.yaml"

CONFIG_PATH_ENV = "TIPLEDGER_CONFIG"
DATABASE_URL_ENV = "TIPLEDGER_DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> TipLedgerConfig:
    """
    Load the active configuration set.

    This is the ONLY public entrypoint for configuration.

    Resolution order for the file: ``config_path``, then the
    ``TIPLEDGER_CONFIG`` environment variable, then the bundled
    ``sets/default.yaml``.  ``TIPLEDGER_DATABASE_URL``, when set, overrides
    ``database.url``.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        KeyError: If a required field is missing.
        ValueError: If a field is invalid.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_FILE
    path = Path(config_path)
    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    config = parse_config(load_yaml_file(path))

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        config = replace(config, database=replace(config.database, url=database_url))

    _logger.info(
        "TIPLEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "TIPLEDGER_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
            "database_url_overridden": bool(database_url),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "TipLedgerConfig",
    "CONFIG_PATH_ENV",
    "DATABASE_URL_ENV",
]
