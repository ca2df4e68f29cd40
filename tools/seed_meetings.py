from __future__ import annotations

"""CLI utility to load meeting rows into the configured SQL table."""

import argparse

from src.app.settings import settings
from src.rag.errors import StoreError
from src.store.memory import load_seed_rows
from src.store.sql import SQLMeetingStore


def main() -> None:
    """Insert a JSON array of meeting rows using app settings."""
    parser = argparse.ArgumentParser(description="Load meeting rows into the SQL meeting store.")
    parser.add_argument("path", help="JSON file containing an array of meeting rows.")
    parser.add_argument(
        "--db-uri",
        default=settings.meeting_db_uri,
        help="SQLAlchemy connection URI (defaults to MEETING_DB_URI).",
    )
    parser.add_argument(
        "--table",
        default=settings.meeting_table,
        help="Table name to insert into.",
    )
    args = parser.parse_args()

    if not args.db_uri:
        raise SystemExit("MEETING_DB_URI or --db-uri is required")

    try:
        rows = load_seed_rows(args.path)
        store = SQLMeetingStore(args.db_uri, table=args.table)
        inserted = store.insert_rows(rows)
    except StoreError as exc:
        raise SystemExit(str(exc)) from exc
    print(f"Inserted {inserted} meeting rows into {args.table}")


if __name__ == "__main__":
    main()
