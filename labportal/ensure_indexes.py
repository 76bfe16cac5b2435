"""Create the portal tables and indexes, then print the indexes in place.

Usage:
    python -m labportal.ensure_indexes
"""
import json
import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from labportal.core import config
from labportal.database import ensure_indexes, list_indexes

TABLES = ("users", "logbooks")


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL)
    try:
        ensure_indexes()
    except SQLAlchemyError as exc:
        print("Index creation failed:", exc, file=sys.stderr)
        sys.exit(1)

    for table in TABLES:
        print(f"{table}:")
        print(json.dumps(list_indexes(table), indent=2, default=str))


if __name__ == "__main__":
    main()
