#!/usr/bin/env python3
"""
Collect live gauges from a voter export and merge them into logs/gauges.json.

The export is a JSON list of ``{"pool": ..., "gauge": ..., "alive": ...}``
records (one per pool).  Pools without a gauge and killed gauges are
dropped; gauges already present in the log are not duplicated and the
log keeps its existing order.

Usage:
    python3 scripts/fetch_gauges.py voter_export.json [--log-dir logs]
"""

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def live_gauges(records: list[dict]) -> list[str]:
    """Gauge addresses of pools that have a live gauge, in export order."""
    gauges: list[str] = []
    for record in records:
        gauge = record.get("gauge")
        if not gauge or gauge == ZERO_ADDRESS:
            continue
        if not record.get("alive", False):
            continue
        if gauge not in gauges:
            gauges.append(gauge)
    return gauges


def merge_gauges(existing: list[str], fetched: list[str]) -> tuple[list[str], list[str]]:
    """Return (combined, newly_added) keeping ``existing`` first."""
    known = set(existing)
    new = [g for g in fetched if g not in known]
    return existing + new, new


def read_gauge_log(path: Path) -> list[str]:
    if not path.exists():
        return []
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        print(f"  WARNING: could not parse {path}: {exc}", file=sys.stderr)
        return []


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Merge live gauges into logs/gauges.json")
    p.add_argument("export", type=Path, help="Voter export JSON file")
    p.add_argument("--log-dir", type=Path, default=Path("logs"), help="Log directory")
    return p.parse_args()


def main() -> int:
    args = _parse_args()
    if not args.export.exists():
        print(f"Error: export not found: {args.export}", file=sys.stderr)
        return 1

    records = json.loads(args.export.read_text())
    print(f"Fetched {len(records)} pools")
    gauges = live_gauges(records)
    print(f"Live gauges: {len(gauges)}")

    log_path = args.log_dir / "gauges.json"
    combined, new = merge_gauges(read_gauge_log(log_path), gauges)
    if not new:
        print("No new gauges to append.")
        return 0

    args.log_dir.mkdir(parents=True, exist_ok=True)
    log_path.write_text(json.dumps(combined, indent=2))
    print(f"Appended {len(new)} gauges; logs written to {log_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
