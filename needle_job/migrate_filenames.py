"""
migrate_filenames.py

One-off rename of legacy day-files: machine_<id>/DDMMYYYY.json -> YYYY-MM-DD.json
- invalid calendar dates (e.g. 31022024) are left alone
- a target that already exists is never overwritten
- re-running is a no-op
"""
from __future__ import annotations
import argparse
import logging
import re
import sys
from datetime import date
from pathlib import Path
from typing import List, Optional, Tuple

from needle_api.config import SETTINGS
from needle_api.dates import day_file_name
from needle_job.session_job import iter_machine_dirs

logger = logging.getLogger("needle.job.migrate_filenames")

_LEGACY = re.compile(r"^(\d{2})(\d{2})(\d{4})\.json$")


def legacy_target(name: str) -> Optional[str]:
    """'05012024.json' -> '2024-01-05.json'; None when not a valid legacy name."""
    m = _LEGACY.match(name)
    if not m:
        return None
    dd, mm, yyyy = (int(x) for x in m.groups())
    try:
        day = date(yyyy, mm, dd)
    except ValueError:
        return None
    return day_file_name(day.isoformat())


def migrate_filenames(data_root: Path, dry_run: bool = False) -> List[Tuple[Path, Path]]:
    """Rename every legacy file; returns the (old, new) pairs handled."""
    renamed = []
    for _, mdir in iter_machine_dirs(Path(data_root)):
        for f in sorted(mdir.glob("*.json")):
            target = legacy_target(f.name)
            if target is None:
                if _LEGACY.match(f.name):
                    logger.warning("skip %s: not a calendar date", f)
                continue
            new_path = f.with_name(target)
            if new_path.exists():
                logger.warning("skip %s: %s already exists", f, new_path.name)
                continue
            logger.info("%s %s -> %s", "would rename" if dry_run else "rename", f, new_path.name)
            if not dry_run:
                f.rename(new_path)
            renamed.append((f, new_path))
    logger.info("migrate_filenames done: %d file(s)%s", len(renamed), " (dry run)" if dry_run else "")
    return renamed


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Rename DDMMYYYY.json day-files to YYYY-MM-DD.json.")
    parser.add_argument("--data-root", default=SETTINGS.DATA_PATH)
    parser.add_argument("--dry-run", action="store_true", help="Only print what would be renamed")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [migrate_filenames] %(levelname)s: %(message)s",
    )
    try:
        migrate_filenames(Path(args.data_root), dry_run=args.dry_run)
        return 0
    except Exception as e:
        logger.exception("Unhandled exception in migrate_filenames: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
