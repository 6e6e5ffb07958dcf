"""
Ledger client configuration.

Public entrypoint:
    ``get_active_config(path)``.  Sessions receive a ``ClientConfig``; no
    other component reads configuration files directly.

Architecture position:
    Configuration -- sits beside ``ledger_kernel`` and below
    ``ledger_services``.  The kernel MUST NEVER import from
    ``ledger_config``; the session translates settings into kernel
    constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``KeyError`` / ``ValueError`` -- missing or invalid values.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ledger_config.loader import compute_checksum, load_client_config, parse_client_config
from ledger_config.schema import (
    AccountingSettings,
    ActionSettings,
    ClientConfig,
    SyncSettings,
)

_logger = logging.getLogger("ledger_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "client.yaml"


def get_active_config(path: Path | None = None) -> ClientConfig:
    """
    Load and validate the client configuration.

    Emits a ``LEDGER_CONFIG_TRACE`` log entry with the contract, chain and
    checksum on every successful call.
    """
    config = load_client_config(path or _DEFAULT_CONFIG_PATH)
    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "contract_address": config.contract_address,
            "chain_id": config.chain_id,
            "checksum": config.checksum,
        },
    )
    return config


__all__ = [
    "AccountingSettings",
    "ActionSettings",
    "ClientConfig",
    "SyncSettings",
    "compute_checksum",
    "get_active_config",
    "load_client_config",
    "parse_client_config",
]
