"""
Configuration loader (``upkeep_config.loader``).

Loads a keeper YAML file and parses it into ``upkeep_config.schema``
dataclasses.  Runtime code goes through ``upkeep_config.get_active_config()``.

Failure modes:
    * Missing YAML file  -> ``FileNotFoundError`` propagates.
    * Malformed YAML  -> ``yaml.YAMLError`` propagates.
    * Missing required keys  -> ``KeyError`` propagates.
    * Unknown manager kind or inconsistent values  -> ``ValueError``.
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from upkeep_config.schema import (
    KeeperConfig,
    ManagerConfig,
    RegistryConfig,
    SchedulerConfig,
    WatchdogConfig,
)

# Per-kind defaults applied before the manager's own keys.
KIND_DEFAULTS: dict[str, dict[str, Any]] = {
    "gauge": {"batch_size": 5, "interval_seconds": 604800},
    "redistribute": {"batch_size": 5, "interval_seconds": 604800},
    "token": {"batch_size": 1, "interval_seconds": 3600},
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields ``{}``."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _decimal(value: Any) -> Decimal:
    # YAML floats go through str() so 0.1 stays 0.1
    return Decimal(str(value))


def parse_registry(data: dict[str, Any]) -> RegistryConfig:
    defaults = RegistryConfig()
    return RegistryConfig(
        finality_delay_seconds=int(
            data.get("finality_delay_seconds", defaults.finality_delay_seconds)
        ),
        default_min_balance=_decimal(
            data.get("default_min_balance", defaults.default_min_balance)
        ),
    )


def parse_scheduler(data: dict[str, Any]) -> SchedulerConfig:
    defaults = SchedulerConfig()
    return SchedulerConfig(
        tick_interval_seconds=int(
            data.get("tick_interval_seconds", defaults.tick_interval_seconds)
        ),
        forwarder=str(data.get("forwarder", defaults.forwarder)),
        block_time_seconds=int(data.get("block_time_seconds", defaults.block_time_seconds)),
    )


def parse_manager(data: dict[str, Any]) -> ManagerConfig:
    """Parse one manager entry.

    Raises:
        KeyError: ``name``, ``kind`` or ``owner`` missing.
        ValueError: Unknown kind or batch size outside 1..entities_per_job.
    """
    kind = data["kind"]
    if kind not in KIND_DEFAULTS:
        raise ValueError(
            f"Unknown manager kind {kind!r}; expected one of {sorted(KIND_DEFAULTS)}"
        )
    merged = {**KIND_DEFAULTS[kind], **data}
    defaults = ManagerConfig(name="", kind=kind, owner="")

    config = ManagerConfig(
        name=data["name"],
        kind=kind,
        owner=data["owner"],
        address=data.get("address"),
        relay=data.get("relay"),
        upstream_source=data.get("upstream_source"),
        watchdog=data.get("watchdog"),
        entities_per_job=int(merged.get("entities_per_job", defaults.entities_per_job)),
        cancel_buffer=int(merged.get("cancel_buffer", defaults.cancel_buffer)),
        batch_size=int(merged["batch_size"]),
        interval_seconds=int(merged["interval_seconds"]),
        gas_limit=int(merged.get("gas_limit", defaults.gas_limit)),
        fund_amount=_decimal(merged.get("fund_amount", defaults.fund_amount)),
        initial_deposit=_decimal(merged.get("initial_deposit", defaults.initial_deposit)),
        excluded_categories=tuple(data.get("excluded_categories", ())),
        forwarders=tuple(data.get("forwarders", ())),
    )
    if not 0 < config.batch_size <= config.entities_per_job:
        raise ValueError(
            f"Manager {config.name!r}: batch_size {config.batch_size} must be in "
            f"1..{config.entities_per_job}"
        )
    if config.interval_seconds <= 0:
        raise ValueError(f"Manager {config.name!r}: interval_seconds must be positive")
    return config


def parse_watchdog(data: dict[str, Any]) -> WatchdogConfig:
    defaults = WatchdogConfig(name="", owner="")
    return WatchdogConfig(
        name=data["name"],
        owner=data["owner"],
        address=data.get("address"),
        max_batch_size=int(data.get("max_batch_size", defaults.max_batch_size)),
        min_percentage=int(data.get("min_percentage", defaults.min_percentage)),
        target_percentage=int(data.get("target_percentage", defaults.target_percentage)),
        max_top_up_amount=_decimal(data.get("max_top_up_amount", defaults.max_top_up_amount)),
        max_iterations=int(data.get("max_iterations", defaults.max_iterations)),
        initial_deposit=_decimal(data.get("initial_deposit", defaults.initial_deposit)),
        forwarders=tuple(data.get("forwarders", ())),
    )


def parse_keeper_config(data: dict[str, Any]) -> KeeperConfig:
    """Parse the root mapping.

    Raises:
        ValueError: Duplicate names, or a manager naming an unknown watchdog.
    """
    watchdogs = tuple(parse_watchdog(w) for w in data.get("watchdogs") or ())
    managers = tuple(parse_manager(m) for m in data.get("managers") or ())

    for label, names in (
        ("watchdog", [w.name for w in watchdogs]),
        ("manager", [m.name for m in managers]),
    ):
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate {label} names: {duplicates}")

    known = {w.name for w in watchdogs}
    for m in managers:
        if m.watchdog is not None and m.watchdog not in known:
            raise ValueError(f"Manager {m.name!r} names unknown watchdog {m.watchdog!r}")

    return KeeperConfig(
        database_url=str(data.get("database_url", KeeperConfig.database_url)),
        registry=parse_registry(data.get("registry") or {}),
        scheduler=parse_scheduler(data.get("scheduler") or {}),
        watchdogs=watchdogs,
        managers=managers,
    )


def load_config(path: Path) -> KeeperConfig:
    return parse_keeper_config(load_yaml_file(path))
