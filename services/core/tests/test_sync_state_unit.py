"""Unit tests for SyncStateTracker."""

import pytest

from inboxsync_core.domain.models import SyncRun
from inboxsync_core.domain.services.sync_state import SyncStateTracker


@pytest.fixture
def tracker(db_session):
    return SyncStateTracker(db_session)


class TestSyncStateTracker:
    """Tests for run status transitions."""

    def test_get_returns_none_before_first_run(self, tracker, account):
        assert tracker.get(account.id, "LINKEDIN") is None

    def test_start_resets_run(self, tracker, account):
        tracker.start(account.id, "LINKEDIN")
        tracker.update_progress(account.id, "LINKEDIN", {"chats_processed": 4})
        tracker.fail(account.id, "LINKEDIN", "boom")

        run = tracker.start(account.id, "LINKEDIN")

        assert run.status == "syncing"
        assert run.counters == {}
        assert run.current_step == "starting"
        assert run.error is None
        assert run.started_at is not None
        assert run.completed_at is None

    def test_progress_merges_counters(self, tracker, account):
        tracker.start(account.id, "LINKEDIN")
        tracker.update_progress(account.id, "LINKEDIN", {"chats_processed": 10})

        run = tracker.update_progress(
            account.id,
            "LINKEDIN",
            {"messages_processed": 50},
            current_step="chat_page_2",
        )

        assert run.counters == {"chats_processed": 10, "messages_processed": 50}
        assert run.current_step == "chat_page_2"

    def test_complete(self, tracker, account):
        tracker.start(account.id, "LINKEDIN")

        run = tracker.complete(account.id, "LINKEDIN")

        assert run.status == "completed"
        assert run.current_step == "completed"
        assert run.completed_at is not None

    def test_fail_records_error(self, tracker, account):
        tracker.start(account.id, "LINKEDIN")

        run = tracker.fail(account.id, "LINKEDIN", "Connectivity test failed")

        assert run.status == "failed"
        assert run.error == "Connectivity test failed"

    def test_progress_on_terminal_run_starts_new_run(self, tracker, account):
        """Updating a completed run reopens it rather than raising."""
        tracker.start(account.id, "LINKEDIN")
        tracker.complete(account.id, "LINKEDIN")

        run = tracker.update_progress(account.id, "LINKEDIN", {"chats_processed": 1})

        assert run.status == "syncing"
        assert run.completed_at is None

    def test_one_record_per_account_and_provider(self, db_session, tracker, account):
        tracker.start(account.id, "LINKEDIN")
        tracker.complete(account.id, "LINKEDIN")
        tracker.start(account.id, "LINKEDIN")

        assert db_session.query(SyncRun).filter_by(account_id=account.id).count() == 1
