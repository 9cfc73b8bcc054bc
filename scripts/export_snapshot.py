#!/usr/bin/env python3
"""
Dump the export snapshot of an accident as JSON.

Reads from DATABASE_URL (or --database-url). Use --list to see the
stored accidents and their workflow status.
"""

import argparse
import json
import logging
import sys


def main() -> int:
    parser = argparse.ArgumentParser(description="Export an accident analysis snapshot as JSON.")
    parser.add_argument("accident_id", nargs="?", type=int, help="Accident id to export")
    parser.add_argument("--database-url", help="SQLAlchemy URL (default: DATABASE_URL setting)")
    parser.add_argument("--list", action="store_true", help="List accidents instead of exporting")
    parser.add_argument("--output", "-o", help="Write to this file instead of stdout")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from accident_analysis.config import get_settings
    from accident_analysis.db import Database
    from accident_analysis.errors import AnalysisError
    from accident_analysis.orchestrator import AnalysisOrchestrator
    from accident_analysis.storage import SqlStorage

    settings = get_settings()
    database = Database(args.database_url or settings.database_url, echo=settings.sql_echo)
    database.init_db()
    orchestrator = AnalysisOrchestrator(SqlStorage(database))

    if args.list:
        for accident in orchestrator.list_accidents():
            print(f"{accident.id}\t{accident.accident_number}\t{accident.status.value}\t{accident.location}")
        stats = orchestrator.analysis_stats()
        print(f"total={stats.total_analyses} draft={stats.draft} "
              f"in_progress={stats.in_progress} completed={stats.completed}")
        return 0

    if args.accident_id is None:
        parser.error("accident_id is required unless --list is given")

    try:
        snapshot = orchestrator.export_snapshot(args.accident_id)
    except AnalysisError as e:
        print(f"Export failed: {e}", file=sys.stderr)
        return 1

    payload = json.dumps(snapshot, ensure_ascii=False, indent=2)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(payload + "\n")
        print(f"Wrote {args.output}")
    else:
        print(payload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
