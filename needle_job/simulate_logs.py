"""
simulate_logs.py

Demo data: append random needle-change cycles through the LogStore so the
dashboard has something to show.
- machines / operators / supervisors come from the metadata files
- per machine per day: `cycles` cycles spread over one shift
- review outcome: 20% never reviewed, otherwise 10% NOT_CONFIRMED;
  the scan time falls inside the cycle
- --seed makes a run reproducible
"""
from __future__ import annotations
import argparse
import logging
import random
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from needle_api.config import SETTINGS
from needle_api.dates import default_date_window, parse_date_range
from needle_api.metadata import MetadataCache
from needle_api.store import LogStore, normalize_machine_id
from needle_api.utils import to_utc_iso, tz

logger = logging.getLogger("needle.job.simulate")

# Simulation weights (sum ~ 1.0)
STATUS_WEIGHTS: Dict[str, float] = {"OK": 0.85, "DELAY": 0.15}
COLORS: List[str] = ["RED", "GREEN", "BLUE", "YELLOW", "WHITE", "BLACK"]

P_UNREVIEWED = 0.2
P_NOT_CONFIRMED = 0.1

SHIFT_START_HOUR = 6
CYCLE_MIN_SEC = 5 * 60
CYCLE_MAX_SEC = 30 * 60


def _choose(rng: random.Random, weights: Dict[str, float]) -> str:
    keys = list(weights)
    return rng.choices(keys, weights=[weights[k] for k in keys], k=1)[0]


def simulate_cycle(rng: random.Random, machine_id, start: datetime,
                   operators: List[dict], supervisors: List[dict]) -> dict:
    duration = rng.randint(CYCLE_MIN_SEC, CYCLE_MAX_SEC)
    end = start + timedelta(seconds=duration)
    press = start + timedelta(seconds=rng.uniform(0, duration))
    op = rng.choice(operators) if operators else None

    log = {
        "machine_id": machine_id,
        "operator_id": op.get("operator_id") if op else None,
        "color": rng.choice(COLORS),
        "status": _choose(rng, STATUS_WEIGHTS),
        "operator_press_time": to_utc_iso(press),
        "cycle_start_time": to_utc_iso(start),
        "cycle_end_time": to_utc_iso(end),
        "supervisor_id": None,
        "supervisor_badge": None,
        "supervisor_confirmation": None,
        "supervisor_scan_time": None,
    }
    if supervisors and rng.random() >= P_UNREVIEWED:
        sup = rng.choice(supervisors)
        scan = start + timedelta(seconds=rng.uniform(0, duration))
        log.update({
            "supervisor_id": sup.get("supervisor_id"),
            "supervisor_badge": sup.get("badge"),
            "supervisor_confirmation": "NOT_CONFIRMED" if rng.random() < P_NOT_CONFIRMED else "CONFIRMED",
            "supervisor_scan_time": to_utc_iso(scan),
        })
    return log


def simulate_logs(data_root: Path, start_date: Optional[str] = None, end_date: Optional[str] = None,
                  cycles: int = 12, seed: Optional[int] = None) -> int:
    """Append `cycles` logs per machine per day in [start_date, end_date]; returns the count."""
    rng = random.Random(seed)
    if not (start_date and end_date):
        start_date, end_date = default_date_window()
    first, last = parse_date_range(start_date, end_date)

    metadata = MetadataCache(data_root)
    store = LogStore(data_root, metadata=metadata)
    machines = [normalize_machine_id(m.get("machine_id")) for m in metadata.get_machines()]
    machines = [mid for mid in machines if mid is not None]
    operators = metadata.get_operators()
    supervisors = metadata.get_supervisors()
    if not machines:
        logger.warning("no machines in %s/machines.json, nothing to simulate", data_root)
        return 0

    gap = (SETTINGS.SHIFT_HOURS * 3600) / max(cycles, 1)
    n = 0
    day = first
    while day <= last:
        shift_start = datetime(day.year, day.month, day.day, SHIFT_START_HOUR, tzinfo=tz())
        for mid in machines:
            for i in range(cycles):
                start = shift_start + timedelta(seconds=i * gap + rng.uniform(0, gap / 2))
                store.append(simulate_cycle(rng, mid, start, operators, supervisors))
                n += 1
        day += timedelta(days=1)

    logger.info("Simulated %d logs for %d machine(s), %s .. %s", n, len(machines), start_date, end_date)
    return n


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Append random needle-change cycles for demos.")
    parser.add_argument("--data-root", default=SETTINGS.DATA_PATH)
    parser.add_argument("--start-date", help="YYYY-MM-DD (default: today - DEFAULT_LOOKBACK_DAYS)")
    parser.add_argument("--end-date", help="YYYY-MM-DD (default: today)")
    parser.add_argument("--cycles", type=int, default=12, help="Cycles per machine per day")
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [simulate_logs] %(levelname)s: %(message)s",
    )
    try:
        simulate_logs(Path(args.data_root), args.start_date, args.end_date, args.cycles, args.seed)
        return 0
    except Exception as e:
        logger.exception("Unhandled exception in simulate_logs: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
