"""Scheduled task for reminder delivery.

Claims due reminders, sends them through the configured provider and
records each outcome. Several workers can run at once: each reminder is
leased to one worker at a time.

Usage:
    # One batch and exit (cron)
    python -m app.tasks.reminder_dispatch --once

    # Poll forever
    python -m app.tasks.reminder_dispatch --worker-id dispatcher-1

    # Environment variables:
    DATABASE_URL - PostgreSQL connection string
    DISPATCHER_POLL_INTERVAL_SECONDS - Seconds between batches
"""

import asyncio
import logging
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings
from app.core.logging import setup_logging
from app.services.messaging import LoggingProvider, MessageProvider
from app.services.reminders import ReminderDispatcher

logger = logging.getLogger(__name__)


async def run_reminder_dispatch_task(
    database_url: str | None = None,
    worker_id: str | None = None,
    provider: MessageProvider | None = None,
    once: bool = True,
    poll_interval: float | None = None,
) -> dict:
    """Run the reminder dispatcher.

    Args:
        database_url: Database connection string. Defaults to settings.database_url.
        worker_id: Name recorded on leased reminders
        provider: Delivery channel, logging-only when omitted
        once: Process a single batch and return
        poll_interval: Seconds to sleep between batches when polling

    Returns:
        Totals across every batch processed
    """
    db_url = database_url or settings.database_url

    # Convert sync URL to async if needed
    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    if poll_interval is None:
        poll_interval = settings.dispatcher_poll_interval_seconds

    engine = create_async_engine(db_url, echo=False, pool_pre_ping=True)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    totals = {"batches": 0, "claimed": 0, "sent": 0, "retrying": 0, "failed": 0, "skipped": 0}

    try:
        while True:
            async with session_factory() as session:
                dispatcher = ReminderDispatcher(
                    session,
                    provider=provider or LoggingProvider(),
                    worker_id=worker_id,
                )
                stats = await dispatcher.run_once()

            totals["batches"] += 1
            for key, value in stats.items():
                totals[key] += value

            if once:
                break

            # Drain backlogs without waiting
            if stats["claimed"] == 0:
                await asyncio.sleep(poll_interval)

    finally:
        await engine.dispose()

    return totals


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Deliver due appointment reminders")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process one batch and exit",
    )
    parser.add_argument(
        "--worker-id",
        default=None,
        help="Worker name recorded on leased reminders",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (overrides DATABASE_URL env var)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between batches when polling",
    )
    args = parser.parse_args()

    setup_logging()

    try:
        results = asyncio.run(
            run_reminder_dispatch_task(
                database_url=args.database_url,
                worker_id=args.worker_id,
                once=args.once,
                poll_interval=args.poll_interval,
            )
        )
        print(f"Dispatcher finished: {results}")
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info("Dispatcher stopped")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Dispatcher failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
