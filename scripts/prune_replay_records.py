#!/usr/bin/env python3
"""Replay Record Maintenance Script.

Deletes consumed authorization digests that are past both their retention
window and their deadline margin, and lists submissions that failed.

Usage:
    python scripts/prune_replay_records.py [--dry-run] [--show-failed]

Options:
    --dry-run      Only report what would be pruned
    --show-failed  List records whose submission failed
"""

import argparse
import asyncio
import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
from sqlalchemy import func, select

from stakerelay.config import Settings
from stakerelay.ledger.database import Database
from stakerelay.ledger.models import ReplayRecord
from stakerelay.ledger.repository import ReplayRepository
from stakerelay.relay.replay import ReplayGuard, SQLReplayStore

load_dotenv()

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


async def count_prunable(database: Database, settings: Settings) -> int:
    now = time.time()
    consumed_before = datetime.fromtimestamp(now - settings.replay_retention_seconds, tz=timezone.utc)
    deadline_before = int(now) - settings.replay_deadline_margin_seconds
    async with database.session() as session:
        stmt = select(func.count()).select_from(ReplayRecord).where(
            ReplayRecord.consumed_at < consumed_before,
            ReplayRecord.expires_at < deadline_before,
        )
        result = await session.execute(stmt)
        return result.scalar_one()


async def show_failed(database: Database) -> None:
    async with database.session() as session:
        records = await ReplayRepository(session).list_failed()

    if not records:
        logger.info("No failed submissions")
        return

    logger.info(f"{len(records)} failed submissions:")
    for record in records:
        logger.info(
            f"  {record.digest} user={record.user} pid={record.pid} "
            f"amount={record.amount} consumed_at={record.consumed_at}: {record.error_message}"
        )


async def main(dry_run: bool, failed: bool) -> int:
    settings = Settings()
    database = Database(settings.database_url)
    try:
        await database.init()

        if failed:
            await show_failed(database)

        if dry_run:
            count = await count_prunable(database, settings)
            logger.info(f"[DRY RUN] {count} replay records would be pruned")
            return 0

        guard = ReplayGuard(
            SQLReplayStore(database),
            retention_seconds=settings.replay_retention_seconds,
            deadline_margin_seconds=settings.replay_deadline_margin_seconds,
        )
        removed = await guard.prune()
        logger.info(f"Pruned {removed} replay records")
        return 0
    finally:
        await database.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Prune expired replay records")
    parser.add_argument("--dry-run", action="store_true", help="Only report what would be pruned")
    parser.add_argument("--show-failed", action="store_true", help="List failed submissions")
    args = parser.parse_args()

    sys.exit(asyncio.run(main(args.dry_run, args.show_failed)))
