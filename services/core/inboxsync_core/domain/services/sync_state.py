"""Sync state tracker.

Durable per-account backfill status, keyed by (account, provider). Every
write is last-write-wins; there is no in-process cache of the record.

State transitions:
    idle -> syncing -> completed
                    -> failed

completed and failed are terminal for a run, but a later start() or
update_progress() begins a new run instead of raising.

Usage:
    tracker = SyncStateTracker(db_session)

    tracker.start(account.id, "unipile")
    tracker.update_progress(account.id, "unipile", {"chats_processed": 10}, "chats")
    tracker.complete(account.id, "unipile")
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from inboxsync_core.domain.models import SyncRun, SyncRunStatus

logger = logging.getLogger(__name__)


TERMINAL_STATUSES = (SyncRunStatus.COMPLETED, SyncRunStatus.FAILED)


class SyncStateTracker:
    """Reads and writes SyncRun records."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, account_id: int, provider: str) -> Optional[SyncRun]:
        """Get the run record for an account, if any."""
        return self.db.query(SyncRun).filter_by(
            account_id=account_id,
            provider=provider,
        ).first()

    def start(self, account_id: int, provider: str) -> SyncRun:
        """Begin a run: status syncing, counters reset, error cleared."""
        run = self._get_or_create(account_id, provider)
        now = datetime.utcnow()

        run.status = SyncRunStatus.SYNCING
        run.counters = {}
        run.current_step = "starting"
        run.error = None
        run.started_at = now
        run.completed_at = None
        run.updated_at = now

        self.db.flush()
        return run

    def update_progress(
        self,
        account_id: int,
        provider: str,
        counters: dict[str, Any],
        current_step: Optional[str] = None,
    ) -> SyncRun:
        """Merge counters into the run and record the current step.

        Updating a terminal run reopens it as syncing.
        """
        run = self._get_or_create(account_id, provider)

        if run.status in TERMINAL_STATUSES or run.status == SyncRunStatus.IDLE:
            logger.info(
                f"Progress update on {run.status} run for account {account_id}; "
                f"treating as a new run"
            )
            run.status = SyncRunStatus.SYNCING
            run.started_at = run.started_at or datetime.utcnow()
            run.completed_at = None
            run.error = None

        # Reassign so the JSON column is marked dirty
        run.counters = {**(run.counters or {}), **counters}
        if current_step is not None:
            run.current_step = current_step
        run.updated_at = datetime.utcnow()

        self.db.flush()
        return run

    def complete(self, account_id: int, provider: str) -> SyncRun:
        """Mark the run completed."""
        run = self._get_or_create(account_id, provider)
        now = datetime.utcnow()

        run.status = SyncRunStatus.COMPLETED
        run.current_step = "completed"
        run.completed_at = now
        run.updated_at = now

        self.db.flush()
        return run

    def fail(self, account_id: int, provider: str, error: str) -> SyncRun:
        """Mark the run failed with an error message."""
        run = self._get_or_create(account_id, provider)
        now = datetime.utcnow()

        run.status = SyncRunStatus.FAILED
        run.current_step = "failed"
        run.error = error
        run.completed_at = now
        run.updated_at = now

        self.db.flush()
        return run

    def _get_or_create(self, account_id: int, provider: str) -> SyncRun:
        run = self.get(account_id, provider)
        if run is None:
            run = SyncRun(
                account_id=account_id,
                provider=provider,
                status=SyncRunStatus.IDLE,
                counters={},
            )
            self.db.add(run)
            self.db.flush()
        return run
