"""
Keeper configuration schema.

Frozen dataclasses parsed from YAML by ``upkeep_config.loader``.  These are
plain declarative data; the orchestrator turns them into manager and
watchdog rows.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegistryConfig:
    """Local job registry settings."""

    finality_delay_seconds: int = 600
    default_min_balance: Decimal = Decimal("0.1")


@dataclass(frozen=True)
class ManagerConfig:
    """One upkeep manager."""

    name: str
    kind: str  # gauge, redistribute or token
    owner: str
    address: str | None = None
    relay: str | None = None
    upstream_source: str | None = None
    watchdog: str | None = None
    entities_per_job: int = 100
    cancel_buffer: int = 20
    batch_size: int = 5
    interval_seconds: int = 604800
    gas_limit: int = 500000
    fund_amount: Decimal = Decimal("0.1")
    initial_deposit: Decimal = Decimal("0")
    excluded_categories: tuple[str, ...] = ()
    forwarders: tuple[str, ...] = ()


@dataclass(frozen=True)
class WatchdogConfig:
    """One funding watchdog."""

    name: str
    owner: str
    address: str | None = None
    max_batch_size: int = 10
    min_percentage: int = 120
    target_percentage: int = 300
    max_top_up_amount: Decimal = Decimal("10")
    max_iterations: int = 10
    initial_deposit: Decimal = Decimal("0")
    forwarders: tuple[str, ...] = ()


@dataclass(frozen=True)
class SchedulerConfig:
    """Polling loop settings."""

    tick_interval_seconds: int = 60
    forwarder: str = "keeper"
    block_time_seconds: int = 12


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeeperConfig:
    """Complete keeper configuration."""

    database_url: str = "sqlite:///upkeep.db"
    registry: RegistryConfig = RegistryConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    watchdogs: tuple[WatchdogConfig, ...] = ()
    managers: tuple[ManagerConfig, ...] = ()

    def manager(self, name: str) -> ManagerConfig:
        for m in self.managers:
            if m.name == name:
                return m
        raise KeyError(f"No manager named {name!r}")

    def watchdog(self, name: str) -> WatchdogConfig:
        for w in self.watchdogs:
            if w.name == name:
                return w
        raise KeyError(f"No watchdog named {name!r}")
