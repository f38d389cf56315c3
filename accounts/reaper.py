"""
accounts/reaper.py -- Deletes accounts that never verified their email.

A password registration starts unverified. If the address is still
unverified UNVERIFIED_RETENTION_DAYS (default 5) after sign-up, the account
is removed: the owner gets a best-effort notice, then the row is deleted.

reap_unverified() is a plain function so the CLI (python main.py reap) and
tests can call it directly. reaper_loop() is the asyncio task the API
lifespan starts: one pass shortly after startup, then one per interval. Each
pass runs in a worker thread because the store and the mailer block.

Concurrency: the delete re-checks "unverified and older than the cutoff" in
its WHERE clause, so a user who verifies after selection keeps the account.
Two overlapping passes select overlapping rows; the delete is idempotent, so
the worst case is a duplicate notice, never a corrupted row.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from auth.codes import CodeService
from auth.store import UserStore, utcnow
from core.errors import EmailSendFailedError
from core.mailer import Mailer

logger = logging.getLogger("bilogames.reaper")


def reap_unverified(
    store: UserStore,
    mailer: Mailer,
    retention_days: int = 5,
    now: Optional[datetime] = None,
) -> int:
    """Delete every unverified account older than retention_days.

    A failure on one account is logged and the batch moves on.
    Returns the number of accounts deleted.
    """
    cutoff = (now or utcnow()) - timedelta(days=retention_days)
    stale = store.list_unverified_before(cutoff)
    deleted = 0
    for user in stale:
        try:
            try:
                mailer.send_account_deleted(user.email, user.firstname, retention_days)
            except EmailSendFailedError:
                logger.warning("Deletion notice to user %s not sent", user.id)
            if store.delete_unverified_user(user.id, cutoff):
                deleted += 1
                logger.info("Deleted unverified user %s (created %s)", user.id, user.created_at)
        except Exception:
            logger.exception("Failed to reap user %s", user.id)
    if stale:
        logger.info("Reaper pass: %d of %d unverified accounts deleted", deleted, len(stale))
    return deleted


def run_reaper_pass(store: UserStore, mailer: Mailer, codes: CodeService, retention_days: int) -> int:
    """One full housekeeping pass: stale accounts, then dead one-time codes."""
    deleted = reap_unverified(store, mailer, retention_days)
    purged = codes.purge_expired()
    if purged:
        logger.info("Purged %d expired or used one-time codes", purged)
    return deleted


async def reaper_loop(app, startup_delay: float, interval: float, retention_days: int) -> None:
    """Run the reaper shortly after startup, then every interval seconds.

    Reads the stores from app.state on every pass so tests can swap them.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and ends the loop.
    """
    await asyncio.sleep(startup_delay)
    while True:
        try:
            await asyncio.to_thread(
                run_reaper_pass,
                app.state.user_store,
                app.state.mailer,
                app.state.code_service,
                retention_days,
            )
        except Exception:
            logger.exception("Reaper pass failed")
        await asyncio.sleep(interval)
