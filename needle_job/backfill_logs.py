"""
backfill_logs.py

Bring older day-files up to the current log shape:
- every log gets the review fields (supervisor_id, supervisor_badge,
  supervisor_confirmation, supervisor_scan_time), default null
- supervisor_badge is filled from supervisors.json when supervisor_id is known
- only files that actually change are rewritten; corrupt files are skipped

Nothing is invented: a log that was never reviewed stays unreviewed.
"""
from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from needle_api.config import SETTINGS
from needle_api.db import file_lock, read_json_list, write_json_atomic
from needle_api.errors import FileParseFailure
from needle_api.metadata import MetadataCache
from needle_api.utils import normalize_id
from needle_job.session_job import iter_day_files

logger = logging.getLogger("needle.job.backfill")

REVIEW_FIELDS = ("supervisor_id", "supervisor_badge", "supervisor_confirmation", "supervisor_scan_time")


def supervisor_badges(supervisors: List[dict]) -> Dict[str, str]:
    return {
        str(normalize_id(s.get("supervisor_id"))): s.get("badge")
        for s in supervisors
        if isinstance(s, dict) and s.get("supervisor_id") is not None and s.get("badge")
    }


def backfill_log(log: dict, badges: Dict[str, str]) -> dict:
    out = dict(log)
    for f in REVIEW_FIELDS:
        out.setdefault(f, None)
    sup_id = normalize_id(out.get("supervisor_id"))
    if sup_id is not None and not out.get("supervisor_badge"):
        badge = badges.get(str(sup_id))
        if badge:
            out["supervisor_badge"] = badge
    return out


def backfill_logs(data_root: Path, supervisors: Optional[List[dict]] = None, dry_run: bool = False) -> List[Path]:
    """Returns the day-files that were (or would be) rewritten."""
    data_root = Path(data_root)
    if supervisors is None:
        supervisors = MetadataCache(data_root).get_supervisors()
    badges = supervisor_badges(supervisors)

    changed = []
    for _, path in iter_day_files(data_root):
        with file_lock(path):
            try:
                logs = read_json_list(path)
            except FileParseFailure as e:
                logger.error("skip %s", e)
                continue
            updated = [backfill_log(log, badges) if isinstance(log, dict) else log for log in logs]
            if updated == logs:
                continue
            changed.append(path)
            if dry_run:
                logger.info("would update %s", path)
                continue
            write_json_atomic(path, updated)
        logger.info("updated %s", path)

    logger.info("backfill done: %d file(s) changed%s", len(changed), " (dry run)" if dry_run else "")
    return changed


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Add missing review fields to stored cycle logs.")
    parser.add_argument("--data-root", default=SETTINGS.DATA_PATH)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [backfill_logs] %(levelname)s: %(message)s",
    )
    try:
        backfill_logs(Path(args.data_root), dry_run=args.dry_run)
        return 0
    except Exception as e:
        logger.exception("Unhandled exception in backfill_logs: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
