"""
Tests for the Scheduler facade: persist, dedup, then offer to Redis.
"""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from models.base import utcnow
from models.enums import DispatchOutcome, JobStatus
from models.job import JobRecord
from scheduler.engine import Scheduler
from scheduler.exceptions import JobPersistenceError


def test_enqueue_due_job_is_dispatched_immediately(scheduler, session, queued):
    result = scheduler.enqueue("SystemAlert", {"alertType": "x"})

    assert result.success is True
    assert result.skipped is False
    assert result.dispatch == DispatchOutcome.IMMEDIATE

    record = session.get(JobRecord, uuid.UUID(result.job_id))
    assert record.status == JobStatus.PROMOTED.value
    assert record.promoted_at is not None
    assert queued(result.job_id)


def test_enqueue_far_future_job_stays_in_store(scheduler, session, queued):
    result = scheduler.enqueue(
        "refreshRecurringBuffer", {"userId": "u1"}, run_at=utcnow() + timedelta(weeks=6)
    )

    assert result.dispatch == DispatchOutcome.SCHEDULED
    assert not queued(result.job_id)
    record = session.query(JobRecord).one()
    assert record.status == JobStatus.PENDING.value


def test_enqueue_twice_yields_one_record(scheduler, session):
    """Second identical submission while the first is outstanding is skipped."""
    first = scheduler.enqueue("refreshRecurringBuffer", {"userId": "u1"})
    second = scheduler.enqueue("refreshRecurringBuffer", {"userId": "u1"})

    assert second.success is True
    assert second.skipped is True
    assert second.reason == "duplicate"
    assert second.job_id == first.job_id
    assert second.dispatch is None
    assert session.query(JobRecord).count() == 1


def test_enqueue_with_redis_down_is_deferred(scheduler, session, fake_server):
    fake_server.connected = False

    result = scheduler.enqueue("SystemAlert", {"alertType": "x"})

    assert result.success is True
    assert result.dispatch == DispatchOutcome.DEFERRED
    record = session.query(JobRecord).one()
    assert record.status == JobStatus.PENDING.value


def test_enqueue_without_promoter_is_scheduled(session_factory, session):
    result = Scheduler(session_factory).enqueue("SystemAlert", {"alertType": "x"})

    assert result.dispatch == DispatchOutcome.SCHEDULED
    assert session.query(JobRecord).one().status == JobStatus.PENDING.value


def test_enqueue_raises_when_store_unavailable():
    class BrokenSession:
        def query(self, *args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("database is down"))

        def rollback(self):
            pass

        def close(self):
            pass

    with pytest.raises(JobPersistenceError):
        Scheduler(BrokenSession).enqueue("SystemAlert", {"alertType": "x"})


def test_expedite_pulls_waiting_refresh_forward(scheduler, queued):
    result = scheduler.enqueue(
        "refreshRecurringBuffer", {"userId": "u1"}, run_at=utcnow() + timedelta(weeks=6)
    )

    dispatch = scheduler.expedite(result.job_id, priority=10)

    assert dispatch == DispatchOutcome.IMMEDIATE
    assert queued(result.job_id)


def test_expedite_promoted_job_returns_none(scheduler):
    result = scheduler.enqueue("SystemAlert", {"alertType": "x"})
    assert scheduler.expedite(result.job_id, priority=10) is None


def test_cancel_pending_job(scheduler, session):
    result = scheduler.enqueue(
        "refreshRecurringBuffer", {"userId": "u1"}, run_at=utcnow() + timedelta(weeks=6)
    )

    assert scheduler.cancel(result.job_id) is True
    assert session.query(JobRecord).one().status == JobStatus.CANCELLED.value
    assert scheduler.cancel(result.job_id) is False


def test_retry_failed_job(scheduler, store, session, dispatcher):
    result = scheduler.enqueue("SystemAlert", {"alertType": "x"})
    store.claim(session, result.job_id)
    store.mark_failed(session, result.job_id, "boom")
    dispatcher.remove(result.job_id)

    retried = scheduler.retry(result.job_id)

    assert retried.job_id == result.job_id
    assert retried.dispatch == DispatchOutcome.IMMEDIATE
    assert scheduler.retry(result.job_id) is None


def test_reschedule_waiting_moves_pending_job(scheduler, session):
    result = scheduler.enqueue(
        "refreshRecurringBuffer", {"userId": "u1"}, run_at=utcnow() + timedelta(weeks=1)
    )
    target = utcnow() + timedelta(weeks=6)

    assert scheduler.reschedule_waiting(result.job_id, target) == target
    assert session.get(JobRecord, uuid.UUID(result.job_id)).run_at == target


def test_reschedule_waiting_keeps_promoted_run_at(scheduler, session):
    result = scheduler.enqueue("refreshRecurringBuffer", {"userId": "u1"})
    record = session.get(JobRecord, uuid.UUID(result.job_id))

    moved = scheduler.reschedule_waiting(result.job_id, utcnow() + timedelta(weeks=6))

    assert moved == record.run_at


def test_reschedule_waiting_refuses_running_job(scheduler, store, session):
    result = scheduler.enqueue("refreshRecurringBuffer", {"userId": "u1"})
    store.claim(session, result.job_id)

    assert scheduler.reschedule_waiting(result.job_id, utcnow() + timedelta(weeks=6)) is None


def test_cancel_promoted_job_withdraws_it_from_redis(scheduler, queued):
    result = scheduler.enqueue("SystemAlert", {"alertType": "x"})
    assert queued(result.job_id)

    assert scheduler.cancel(result.job_id) is True
    assert not queued(result.job_id)
