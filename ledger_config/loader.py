"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed
``ledger_config.schema`` dataclasses.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; only optional sections fall back to defaults.
* Monetary and rate values are parsed to ``Decimal`` from their textual
  form, never through float arithmetic.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing ``contract_address`` / ``chain_id``  -> ``KeyError``.
* Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    DEFAULT_DATABASE_URL,
    AccountingSettings,
    ActionSettings,
    ClientConfig,
    SyncSettings,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, name: str) -> Decimal:
    """Parse a Decimal from YAML (string, int or float literal)."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{name}: cannot parse decimal from {value!r}") from exc


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in {section}: {sorted(unknown)}")


def parse_sync_settings(data: dict[str, Any] | None) -> SyncSettings:
    if not data:
        return SyncSettings()
    _check_keys("sync", data, {f.name for f in fields(SyncSettings)})
    kwargs: dict[str, Any] = dict(data)
    if "amount_tolerance" in kwargs:
        kwargs["amount_tolerance"] = parse_decimal(kwargs["amount_tolerance"], "amount_tolerance")
    for name in ("poll_interval_seconds", "call_timeout_seconds", "stale_after_seconds"):
        if name in kwargs:
            kwargs[name] = float(kwargs[name])
    for name in ("lookback_blocks", "max_block_span", "fuzzy_window_seconds"):
        if name in kwargs:
            kwargs[name] = int(kwargs[name])
    return SyncSettings(**kwargs)


def parse_accounting_settings(data: dict[str, Any] | None) -> AccountingSettings:
    if not data:
        return AccountingSettings()
    _check_keys("accounting", data, {f.name for f in fields(AccountingSettings)})
    return AccountingSettings(
        **{name: parse_decimal(value, name) for name, value in data.items()}
    )


def parse_action_settings(data: dict[str, Any] | None) -> ActionSettings:
    if not data:
        return ActionSettings()
    _check_keys("actions", data, {f.name for f in fields(ActionSettings)})
    kwargs: dict[str, Any] = dict(data)
    if "required_confirmations" in kwargs:
        kwargs["required_confirmations"] = int(kwargs["required_confirmations"])
    if "confirmation_timeout_seconds" in kwargs:
        kwargs["confirmation_timeout_seconds"] = float(kwargs["confirmation_timeout_seconds"])
    return ActionSettings(**kwargs)


def parse_client_config(data: dict[str, Any]) -> ClientConfig:
    """
    Parse a ``ClientConfig`` from a dict.

    Raises:
        KeyError: if ``contract_address`` or ``chain_id`` is missing.
        ValueError: on unknown keys or invalid values.
    """
    _check_keys(
        "client",
        data,
        {"contract_address", "chain_id", "database_url", "sync", "accounting", "actions"},
    )
    return ClientConfig(
        contract_address=str(data["contract_address"]).lower(),
        chain_id=int(data["chain_id"]),
        database_url=data.get("database_url") or DEFAULT_DATABASE_URL,
        sync=parse_sync_settings(data.get("sync")),
        accounting=parse_accounting_settings(data.get("accounting")),
        actions=parse_action_settings(data.get("actions")),
        checksum=compute_checksum(data),
    )


def load_client_config(path: Path) -> ClientConfig:
    return parse_client_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
