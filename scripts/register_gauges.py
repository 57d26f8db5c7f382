#!/usr/bin/env python3
"""
Register the gauges in logs/gauges.json with a gauge manager.

Only gauges the manager does not already track are registered, in chunks
of 25 per call (each chunk commits on its own).  The job ids opened by
the run are written to logs/upkeeps.json.

Usage:
    python3 scripts/register_gauges.py [--manager gauges] [--config path]
        [--db-url URL] [--chunk-size 25] [--log-dir logs]
"""

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DEFAULT_CHUNK_SIZE = 25


def chunked(items: list[str], size: int) -> list[list[str]]:
    if size <= 0:
        raise ValueError(f"Chunk size must be positive: {size}")
    return [items[i:i + size] for i in range(0, len(items), size)]


def register_gauges(session_factory, orchestrator_factory, manager_name, caller, gauges, chunk_size):
    """Register unknown gauges chunk by chunk.  Returns the job ids opened."""
    session = session_factory()
    try:
        manager = orchestrator_factory(session).create_manager_service(manager_name)
        known = set(manager.entity_list(0, manager.entity_list_length()))
    finally:
        session.close()

    pending = [g for g in gauges if g not in known]
    job_ids: list[int] = []
    for i, chunk in enumerate(chunked(pending, chunk_size)):
        start = i * chunk_size
        print(f"Registering gauges {start} to {start + len(chunk)}")
        session = session_factory()
        try:
            manager = orchestrator_factory(session).create_manager_service(manager_name)
            result = manager.register(caller, chunk)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        print(f"  registered={len(result.registered)} new jobs={list(result.jobs_opened)}")
        job_ids.extend(result.jobs_opened)
    return job_ids


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Register logged gauges with a manager")
    p.add_argument("--manager", default="gauges", help="Manager name (default: gauges)")
    p.add_argument("--config", default=None, help="Keeper YAML (default: UPKEEP_CONFIG_PATH or packaged)")
    p.add_argument("--db-url", default=None, help="Database URL (default: from config)")
    p.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    p.add_argument("--log-dir", type=Path, default=Path("logs"))
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from upkeep_config import get_active_config
    from upkeep_jobs.orchestrator import KeeperOrchestrator
    from upkeep_kernel.db.engine import create_tables, get_session, init_engine_from_url
    from upkeep_kernel.logging_config import configure_logging

    configure_logging()
    config = get_active_config(args.config)

    gauge_path = args.log_dir / "gauges.json"
    if not gauge_path.exists():
        print(f"Error: gauges log file not found: {gauge_path}", file=sys.stderr)
        return 1
    gauges = json.loads(gauge_path.read_text())

    init_engine_from_url(args.db_url or config.database_url)
    create_tables()

    session = get_session()
    try:
        KeeperOrchestrator.from_session(session, config=config).bootstrap()
        session.commit()
    finally:
        session.close()

    owner = config.manager(args.manager).owner
    job_ids = register_gauges(
        get_session,
        lambda s: KeeperOrchestrator.from_session(s, config=config),
        args.manager,
        owner,
        gauges,
        args.chunk_size,
    )

    args.log_dir.mkdir(parents=True, exist_ok=True)
    upkeep_path = args.log_dir / "upkeeps.json"
    upkeep_path.write_text(json.dumps([str(j) for j in job_ids], indent=2))
    print(f"Logs successfully written to {upkeep_path}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
