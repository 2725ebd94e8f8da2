"""
Offline ingestion of payload files.

    chatsync-ingest ./payloads

Reads every *.json file of the directory and reconciles it into the
configured database exactly like POST /payloads/ingest would.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from chatsync.config import settings
from chatsync.errors import ValidationError
from chatsync.ingestion import ingest_directory
from chatsync.logging_utils import setup_logging
from chatsync.storage import database

logger = logging.getLogger(__name__)


async def _run(directory: str) -> dict[str, int]:
    if not database.connect():
        raise SystemExit(f"Database unavailable: {database.error}")
    try:
        with database.session() as db:
            return await ingest_directory(db, directory)
    finally:
        database.dispose()


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="chatsync-ingest", description="Ingest webhook payload files")
    ap.add_argument("directory", nargs="?", default="payloads", help="payload directory (default: ./payloads)")
    ap.add_argument("--log-level", default=settings.LOG_LEVEL, help="logging level")
    args = ap.parse_args(argv)

    setup_logging(args.log_level)
    try:
        totals = asyncio.run(_run(args.directory))
    except ValidationError as e:
        logger.error(e.message)
        return 1

    print(json.dumps(totals))
    return 0


if __name__ == "__main__":
    sys.exit(main())
