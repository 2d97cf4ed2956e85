"""
Run the automation sweeps. Meant to be invoked by cron.

Usage:
  python -m foodsafe.db.run_sweeps [--sweep NAME ...] [--batch-size N] [--start-after ID] [--max-seconds S]
"""
import argparse
import asyncio
import logging
import signal
import sys
import time
import uuid

from foodsafe.core.notifications.service import InboxNotifier
from foodsafe.core.workflow.errors import WorkflowError
from foodsafe.core.workflow.scheduler import SWEEPS, run_sweep
from foodsafe.core.workflow.store import SqlAlchemyRecordStore
from foodsafe.db.base import utcnow
from foodsafe.db.session import get_session
from foodsafe.settings import get_settings

logger = logging.getLogger("foodsafe.sweeps")


class StopFlag:
    def __init__(self, max_seconds: float | None = None):
        self.deadline = time.monotonic() + max_seconds if max_seconds else None
        self.requested = False

    def request(self, *_) -> None:
        logger.info("Stop requested, finishing current record")
        self.requested = True

    def __call__(self) -> bool:
        return self.requested or (self.deadline is not None and time.monotonic() >= self.deadline)


async def run(names: list[str], batch_size: int | None, start_after: uuid.UUID | None, stop: StopFlag) -> int:
    now = utcnow()
    failed = 0
    for name in names:
        if stop():
            break
        # One transaction per sweep: a failing sweep does not undo the others.
        try:
            async with get_session() as session:
                store = SqlAlchemyRecordStore(session)
                report = await run_sweep(
                    name, store, InboxNotifier(store),
                    now=now, batch_size=batch_size, start_after=start_after, should_stop=stop,
                )
        except WorkflowError as exc:
            logger.error("Sweep %s aborted: %s", name, exc.reason)
            failed += 1
            continue
        failed += len(report.failures)
        if report.stopped_early:
            logger.info("Resume %s with --start-after %s", name, report.last_processed_id)
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run workflow automation sweeps")
    parser.add_argument("--sweep", action="append", choices=sorted(SWEEPS), help="Sweep to run (repeatable, default: all)")
    parser.add_argument("--batch-size", type=int, default=None, help="Records per batch")
    parser.add_argument("--start-after", type=uuid.UUID, default=None, help="Resume after this record id")
    parser.add_argument("--max-seconds", type=float, default=None, help="Stop cleanly after this long")
    args = parser.parse_args(argv)

    logging.basicConfig(level=get_settings().LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    stop = StopFlag(args.max_seconds)
    signal.signal(signal.SIGTERM, stop.request)
    signal.signal(signal.SIGINT, stop.request)
    return asyncio.run(run(args.sweep or list(SWEEPS), args.batch_size, args.start_after, stop))


if __name__ == "__main__":
    sys.exit(main())
