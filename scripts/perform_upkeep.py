#!/usr/bin/env python3
"""
Perform one register/deregister action on a manager as a trusted forwarder.

Reads the action from the environment:
    PERFORM_UPKEEP_ACTION          RegisterGauge | DeregisterGauge | register | deregister | 0 | 1
    PERFORM_UPKEEP_ENTITY_ADDRESS  gauge or token address

Usage:
    PERFORM_UPKEEP_ACTION=RegisterGauge PERFORM_UPKEEP_ENTITY_ADDRESS=0xabc \\
        python3 scripts/perform_upkeep.py [--manager gauges] [--config path] [--db-url URL]
"""

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

ACTION_ENV = "PERFORM_UPKEEP_ACTION"
ENTITY_ENV = "PERFORM_UPKEEP_ENTITY_ADDRESS"

_ACTION_ALIASES = {
    "registergauge": "register",
    "deregistergauge": "deregister",
    "registertoken": "register",
    "deregistertoken": "deregister",
}


def action_from_env(environ=None):
    """Build the MembershipAction named by the environment.

    Raises:
        KeyError: A required variable is missing.
        InvalidPerformDataError: Unknown action or empty address.
    """
    from upkeep_jobs.domain.types import MembershipAction

    environ = os.environ if environ is None else environ
    raw_action = environ[ACTION_ENV]
    entity = environ[ENTITY_ENV]
    action = _ACTION_ALIASES.get(raw_action.strip().lower(), raw_action)
    return MembershipAction.from_perform_data((action, entity))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Perform a manager register/deregister action")
    p.add_argument("--manager", default="gauges", help="Manager name (default: gauges)")
    p.add_argument("--config", default=None, help="Keeper YAML (default: UPKEEP_CONFIG_PATH or packaged)")
    p.add_argument("--db-url", default=None, help="Database URL (default: from config)")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from upkeep_config import get_active_config
    from upkeep_jobs.orchestrator import KeeperOrchestrator
    from upkeep_kernel.db.engine import init_engine_from_url, session_scope
    from upkeep_kernel.exceptions import UpkeepKernelError
    from upkeep_kernel.logging_config import configure_logging

    configure_logging()
    try:
        action = action_from_env()
    except KeyError as exc:
        print(f"Error: {exc.args[0]} is required", file=sys.stderr)
        return 1
    except UpkeepKernelError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    config = get_active_config(args.config)
    init_engine_from_url(args.db_url or config.database_url)

    print(f"Performing {args.manager} upkeep...")
    print(f"  action: {action.kind.value}")
    print(f"  entity: {action.entity}")
    with session_scope() as session:
        manager = KeeperOrchestrator.from_session(session, config=config).create_manager_service(
            args.manager
        )
        result = manager.perform_action(config.scheduler.forwarder, action)

    print(
        f"Upkeep performed: registered={list(result.registered)} "
        f"deregistered={list(result.deregistered)} "
        f"jobs_opened={list(result.jobs_opened)} "
        f"jobs_cancelled={list(result.jobs_cancelled)}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
