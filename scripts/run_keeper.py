#!/usr/bin/env python3
"""
Run the keeper: bootstrap components from config, then tick the scheduler.

Usage:
    python3 scripts/run_keeper.py [--config path] [--db-url URL]
        [--once] [--ticks N] [--log-level INFO]

With ``--once`` (or ``--ticks N``) the scheduler ticks in the foreground
and exits; otherwise it runs in a background thread until interrupted.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run the upkeep keeper")
    p.add_argument("--config", default=None, help="Keeper YAML (default: UPKEEP_CONFIG_PATH or packaged)")
    p.add_argument("--db-url", default=None, help="Database URL (default: from config)")
    p.add_argument("--once", action="store_true", help="Tick once and exit")
    p.add_argument("--ticks", type=int, default=None, help="Tick N times and exit")
    p.add_argument("--log-level", default="INFO")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from upkeep_config import get_active_config
    from upkeep_jobs.orchestrator import KeeperOrchestrator
    from upkeep_kernel.db.engine import (
        create_tables,
        get_session,
        init_engine_from_url,
        session_scope,
    )
    from upkeep_kernel.logging_config import configure_logging

    configure_logging(level=getattr(logging, args.log_level.upper(), logging.INFO))
    config = get_active_config(args.config)

    init_engine_from_url(args.db_url or config.database_url)
    create_tables()

    with session_scope() as session:
        orchestrator = KeeperOrchestrator.from_session(session, config=config)
        created = orchestrator.bootstrap()
    print(f"Bootstrapped: {list(created) or 'nothing new'}")

    scheduler = orchestrator.create_scheduler(get_session)

    ticks = 1 if args.once else args.ticks
    if ticks is not None:
        for _ in range(ticks):
            summary = scheduler.tick()
            print(
                f"  batches={summary.batches} top_ups={summary.top_ups} "
                f"failures={summary.failures}"
            )
        return 0

    scheduler.start()
    print(f"Keeper running (tick every {config.scheduler.tick_interval_seconds}s). Ctrl-C to stop.")
    try:
        while scheduler.is_running:
            time.sleep(1)
    except KeyboardInterrupt:
        print("Stopping...")
    finally:
        scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
