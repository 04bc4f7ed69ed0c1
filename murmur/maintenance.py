"""
Maintenance jobs for murmur storage.

Run once from cron, or loop with ``--interval-seconds``:

    murmur-maintenance anonymize-origins --retention-days 30
    murmur-maintenance cleanup-grants --once
    murmur-maintenance reconcile-counters --account-id <id>
    murmur-maintenance set-plan <account-id> premium
"""

from __future__ import annotations

import argparse
import logging
import random
import time
from functools import partial
from typing import Callable, Optional, Sequence

from murmur.accounts import AccountService
from murmur.config import get_settings
from murmur.db import DbClient
from murmur.dependencies import get_db_client, get_password_hasher, get_token_service
from murmur.errors import MurmurError
from murmur.messages import MessageService
from murmur.sharing import SharingService

logger = logging.getLogger(__name__)


def _account_service(db: DbClient) -> AccountService:
    return AccountService(db, get_password_hasher(), get_token_service())


def run_anonymize(db: DbClient, retention_days: int) -> int:
    return MessageService(db).anonymize_origins(retention_days)


def run_cleanup_grants(db: DbClient) -> int:
    return SharingService(db).cleanup_expired()


def run_reconcile(db: DbClient, account_id: Optional[str] = None) -> int:
    """Recompute active group counters; returns how many accounts were touched."""
    accounts = _account_service(db)
    account_ids = [account_id] if account_id else db.list_account_ids()
    for current in account_ids:
        count = accounts.reconcile_counters(current)
        logger.info("Account %s has %d active groups", current, count)
    return len(account_ids)


def _loop(job: Callable[[], int], once: bool, interval_seconds: int, jitter_seconds: int) -> int:
    while True:
        try:
            changed = job()
            logger.info("Job complete, %d rows changed", changed)
        except Exception as exc:
            logger.exception("Job failed: %s", exc)
            if once:
                return 1

        if once:
            return 0

        sleep_for = interval_seconds + random.uniform(0, jitter_seconds)
        logger.info("Sleeping for %.1fs", sleep_for)
        time.sleep(sleep_for)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="murmur maintenance jobs")
    parser.add_argument(
        "--interval-seconds",
        type=int,
        default=3600,
        help="Seconds between runs when looping",
    )
    parser.add_argument(
        "--jitter-seconds",
        type=int,
        default=60,
        help="Max random jitter added to sleep",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    anonymize = sub.add_parser(
        "anonymize-origins", help="Replace stored sender origins on old messages"
    )
    anonymize.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Keep origins for this many days (defaults to settings)",
    )

    sub.add_parser("cleanup-grants", help="Delete expired shared-access grants")

    reconcile = sub.add_parser(
        "reconcile-counters", help="Recompute active group counters"
    )
    reconcile.add_argument(
        "--account-id",
        default=None,
        help="Only this account (default: every account)",
    )

    plan = sub.add_parser("set-plan", help="Move an account to another plan")
    plan.add_argument("account_id")
    plan.add_argument("plan", choices=["free", "premium"])
    return parser


def main(argv: Optional[Sequence[str]] = None, db: Optional[DbClient] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    settings = get_settings()
    db = db or get_db_client()

    if args.command == "set-plan":
        try:
            account = _account_service(db).update_plan(args.account_id, args.plan)
        except MurmurError as exc:
            logger.error("Could not change plan: %s", exc)
            return 1
        logger.info("Account %s is now on %s", account.account_id, account.plan)
        return 0

    if args.command == "anonymize-origins":
        retention = args.retention_days
        if retention is None:
            retention = settings.origin_retention_days
        job = partial(run_anonymize, db, retention)
    elif args.command == "cleanup-grants":
        job = partial(run_cleanup_grants, db)
    else:
        job = partial(run_reconcile, db, args.account_id)

    return _loop(job, args.once, args.interval_seconds, args.jitter_seconds)


if __name__ == "__main__":
    raise SystemExit(main())
