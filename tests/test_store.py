"""Tests for the SQLAlchemy-backed enhancement and deployment stores."""

from __future__ import annotations

import datetime as dt
import threading

import pytest

from monitor_agent.errors import ConcurrentUpdateError
from monitor_agent.schemas import DeploymentStatus
from monitor_agent.schemas import EnhancementStatus as S
from monitor_agent.state_machine import StateTransitionError
from monitor_agent.store import Database, Deployment, Enhancement, EnhancementStore, utcnow


class TestEnhancementQueue:
    def test_create_defaults(self, enhancements):
        record = enhancements.create("Add export", "CSV export", requested_by="ana@example.com")

        assert record.id == 1
        assert record.status is S.PENDING
        assert record.priority == 5
        assert record.branch_name is None
        assert record.pr_number is None
        assert record.created_at is not None

    def test_pending_ordered_by_priority_then_age(self, enhancements):
        low = enhancements.create("low", priority=1)
        high_old = enhancements.create("high old", priority=9)
        high_new = enhancements.create("high new", priority=9)
        mid = enhancements.create("mid")

        ids = [e.id for e in enhancements.get_pending()]

        assert ids == [high_old.id, high_new.id, mid.id, low.id]

    def test_pending_excludes_claimed(self, enhancements):
        a = enhancements.create("a")
        b = enhancements.create("b")
        assert enhancements.claim(a.id)

        assert [e.id for e in enhancements.get_pending()] == [b.id]


class TestClaim:
    def test_claim_stamps_started_at(self, enhancements):
        record = enhancements.create("x")

        assert enhancements.claim(record.id) is True
        claimed = enhancements.get(record.id)
        assert claimed.status is S.PROCESSING
        assert claimed.started_at is not None

    def test_second_claim_loses(self, enhancements):
        record = enhancements.create("x")

        assert enhancements.claim(record.id) is True
        assert enhancements.claim(record.id) is False

    def test_claim_missing_row(self, enhancements):
        assert enhancements.claim(999) is False

    @pytest.mark.integration
    def test_concurrent_claims_have_exactly_one_winner(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'race.db'}"
        setup = Database(url)
        setup.create_all()
        record = EnhancementStore(setup).create("race")

        results: list[bool] = []
        lock = threading.Lock()
        barrier = threading.Barrier(8)

        def _worker() -> None:
            store = EnhancementStore(Database(url))
            barrier.wait()
            won = store.claim(record.id)
            with lock:
                results.append(won)

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 8
        assert results.count(True) == 1


class TestTransitions:
    def test_transition_sets_fields(self, enhancements):
        record = enhancements.create("x")
        enhancements.claim(record.id)

        updated = enhancements.transition(record.id, S.PROCESSING, S.PLANNING, plan_json="{}")

        assert updated.status is S.PLANNING
        assert updated.plan_json == "{}"
        assert updated.updated_at >= updated.started_at

    def test_transition_requires_expected_status(self, enhancements):
        record = enhancements.create("x")

        with pytest.raises(ConcurrentUpdateError):
            enhancements.transition(record.id, S.PROCESSING, S.PLANNING)
        assert enhancements.get(record.id).status is S.PENDING

    def test_illegal_transition_never_writes(self, enhancements):
        record = enhancements.create("x")
        enhancements.claim(record.id)

        with pytest.raises(StateTransitionError):
            enhancements.transition(record.id, S.PROCESSING, S.PR_CREATED, pr_number=1)
        after = enhancements.get(record.id)
        assert after.status is S.PROCESSING
        assert after.pr_number is None

    def test_completed_stamps_completed_at(self, enhancements):
        record = enhancements.create("x")
        enhancements.claim(record.id)
        enhancements.transition(record.id, S.PROCESSING, S.PLANNING)

        done = enhancements.transition(record.id, S.PLANNING, S.COMPLETED, notes="dry")

        assert done.completed_at is not None
        assert done.notes == "dry"

    def test_update_fields_keeps_status(self, enhancements):
        record = enhancements.create("x")
        enhancements.claim(record.id)

        updated = enhancements.update_fields(record.id, S.PROCESSING, notes="hello")

        assert updated.status is S.PROCESSING
        assert updated.notes == "hello"

    def test_unknown_field_rejected(self, enhancements):
        record = enhancements.create("x")
        enhancements.claim(record.id)

        with pytest.raises(ValueError):
            enhancements.update_fields(record.id, S.PROCESSING, title="nope")

    def test_mark_failed_records_error_without_completed_at(self, enhancements):
        record = enhancements.create("x")
        enhancements.claim(record.id)

        assert enhancements.mark_failed(record.id, "boom") is True
        failed = enhancements.get(record.id)
        assert failed.status is S.FAILED
        assert failed.error_message == "boom"
        assert failed.completed_at is None

    def test_mark_failed_ignores_terminal_rows(self, enhancements):
        record = enhancements.create("x")
        enhancements.claim(record.id)
        enhancements.mark_failed(record.id, "first")

        assert enhancements.mark_failed(record.id, "second") is False
        assert enhancements.get(record.id).error_message == "first"

    def test_active_count(self, enhancements):
        a = enhancements.create("a")
        enhancements.create("b")
        assert enhancements.active_count() == 0

        enhancements.claim(a.id)

        assert enhancements.active_count() == 1


class TestStaleJobs:
    def test_disabled_by_default(self, enhancements):
        assert enhancements.fail_stale(0) == []

    def test_fails_only_old_active_rows(self, enhancements, database):
        old = enhancements.create("old")
        fresh = enhancements.create("fresh")
        enhancements.claim(old.id)
        enhancements.claim(fresh.id)
        with database.session() as db:
            db.get(Enhancement, old.id).updated_at = utcnow() - dt.timedelta(hours=2)

        failed = enhancements.fail_stale(30)

        assert failed == [old.id]
        assert enhancements.get(old.id).status is S.FAILED
        assert "Stale" in enhancements.get(old.id).error_message
        assert enhancements.get(fresh.id).status is S.PROCESSING


class TestDeployments:
    def _enhancement_with_pr(self, enhancements, pr_number=7):
        record = enhancements.create("feature", "desc", requested_by="ana@example.com")
        enhancements.claim(record.id)
        for current, new in [
            (S.PROCESSING, S.PLANNING),
            (S.PLANNING, S.IMPLEMENTING),
            (S.IMPLEMENTING, S.REVIEWING),
            (S.REVIEWING, S.COPILOT_REVIEWING),
        ]:
            enhancements.transition(record.id, current, new)
        enhancements.transition(
            record.id, S.COPILOT_REVIEWING, S.PR_CREATED, pr_number=pr_number, branch_name="b"
        )
        return record

    def test_due_returns_only_past_pending_ordered(self, enhancements, deployments):
        record = self._enhancement_with_pr(enhancements)
        now = utcnow()
        later = deployments.create(record.id, now - dt.timedelta(minutes=5))
        earlier = deployments.create(record.id, now - dt.timedelta(hours=1))
        deployments.create(record.id, now + dt.timedelta(hours=1))

        due = deployments.due(now)

        assert [d.id for d in due] == [earlier, later]
        assert due[0].pr_number == 7
        assert due[0].branch_name == "b"
        assert due[0].requested_by == "ana@example.com"
        assert due[0].description == "desc"

    def test_start_is_compare_and_set(self, enhancements, deployments):
        record = self._enhancement_with_pr(enhancements)
        dep = deployments.create(record.id, utcnow())

        assert deployments.start(dep) is True
        assert deployments.start(dep) is False
        assert deployments.due() == []

    def test_finish_deployed_stamps_time(self, enhancements, deployments):
        record = self._enhancement_with_pr(enhancements)
        dep = deployments.create(record.id, utcnow(), notes="original")
        deployments.start(dep)

        assert deployments.finish(dep, DeploymentStatus.DEPLOYED, "Merged PR #7")
        row = deployments.get(dep)
        assert row.status == "deployed"
        assert row.deployed_at is not None
        assert row.notes == "Merged PR #7"

    def test_finish_failed_keeps_notes_when_none(self, enhancements, deployments):
        record = self._enhancement_with_pr(enhancements)
        dep = deployments.create(record.id, utcnow(), notes="original")
        deployments.start(dep)

        deployments.finish(dep, DeploymentStatus.FAILED, None)

        row = deployments.get(dep)
        assert isinstance(row, Deployment)
        assert row.status == "failed"
        assert row.deployed_at is None
        assert row.notes == "original"

    def test_finish_requires_in_progress(self, enhancements, deployments):
        record = self._enhancement_with_pr(enhancements)
        dep = deployments.create(record.id, utcnow())

        assert deployments.finish(dep, DeploymentStatus.DEPLOYED, "x") is False
