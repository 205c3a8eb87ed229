# api/oddsraiders/worker.py
"""
Background ingestion worker.

Each tick runs one ingestion cycle, then expires subscriptions whose term
ran out, then sleeps INGEST_INTERVAL_SEC. SIGINT/SIGTERM cancel the cycle
in flight at the next step boundary and stop the loop.
"""
from __future__ import annotations

import argparse
import logging
import signal
import threading

from .db import SessionLocal
from .log import setup_logging
from .services.ingestion import IngestionScheduler, build_scheduler
from .services.subscriptions import SubscriptionLedger
from .settings import settings

logger = logging.getLogger("oddsraiders.worker")


def expire_subscriptions() -> int:
    db = SessionLocal()
    try:
        return SubscriptionLedger(db).expire_due()
    finally:
        db.close()


def tick(scheduler: IngestionScheduler, cancel: threading.Event) -> None:
    summary = scheduler.run_cycle(cancel)
    failed = [s.name for s in summary.steps if s.status != "ok"]
    logger.info("[worker] cycle %s %s; steps not ok: %s", summary.run_id, summary.status, failed or "none")
    expired = expire_subscriptions()
    if expired:
        logger.info("[worker] expired %d subscription(s)", expired)


def run_forever(scheduler: IngestionScheduler, interval: float, stop: threading.Event) -> None:
    while not stop.is_set():
        try:
            tick(scheduler, stop)
        except Exception:
            logger.exception("worker error")
        stop.wait(interval)
    logger.info("[worker] stopped")


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(prog="oddsraiders-worker", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--once", action="store_true", help="run a single cycle and exit")
    parser.add_argument("--interval", type=float, default=settings.INGEST_INTERVAL_SEC,
                        help="seconds between cycles (default: INGEST_INTERVAL_SEC)")
    args = parser.parse_args(argv)

    setup_logging(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    stop = threading.Event()

    def _stop(signum, _frame):
        logger.warning("[worker] got signal %s, finishing current step and stopping", signum)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    scheduler = build_scheduler()
    if args.once:
        tick(scheduler, stop)
        return
    run_forever(scheduler, args.interval, stop)


if __name__ == "__main__":
    main()
