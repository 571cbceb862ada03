"""
Tests for the JobExecutor: claim, run with a time limit, record the outcome.

Handlers here are tiny stand-ins registered under the real job names; the
executor only cares about the result contract.
"""

import json
import threading

import pytest

from jobs.base import AbstractJobHandler
from jobs.registry import JobRegistry
from models.enums import JobStatus
from models.job import JobRecord
from scheduler.dispatcher import FastDispatcher
from scheduler.store import as_uuid
from worker.executor import JobExecutor
from worker.pool import WorkerPool


class StubHandler(AbstractJobHandler):
    def __init__(self, name, behaviour):
        self._name = name
        self._behaviour = behaviour
        self.contexts = []

    def run(self, payload, context):
        self.contexts.append(context)
        return self._behaviour(payload)

    @property
    def job_name(self):
        return self._name


def _raise(payload):
    raise RuntimeError("calendar API returned 503")


@pytest.fixture
def make_executor(session_factory, redis_client, store):
    executors = []

    def _make(*handlers, timeout=5.0):
        executor = JobExecutor(
            session_factory, redis_client, JobRegistry(handlers), store, timeout=timeout, handler_threads=2
        )
        executors.append(executor)
        return executor

    yield _make
    for executor in executors:
        executor.shutdown()


def _job(session, store, name="SystemAlert", payload=None, max_attempts=3):
    record, _ = store.enqueue(session, name, payload or {"alertType": "x"}, max_attempts=max_attempts)
    return {"job_id": str(record.id), "job_name": name, "payload": record.payload}


def _record(session, job_data):
    session.expire_all()
    return session.get(JobRecord, as_uuid(job_data["job_id"]))


def test_successful_job_is_completed(make_executor, session, store):
    handler = StubHandler("SystemAlert", lambda p: {"success": True, "alertType": p["alertType"]})
    job_data = _job(session, store)

    outcome = make_executor(handler).execute(job_data)

    assert outcome["status"] == "completed"
    record = _record(session, job_data)
    assert record.status == JobStatus.COMPLETED.value
    assert record.attempts == 1
    assert record.result["alertType"] == "x"
    assert "execution_time_sec" in record.result


def test_handler_receives_job_context(make_executor, session, store):
    handler = StubHandler("SystemAlert", lambda p: {"success": True})
    job_data = _job(session, store)

    make_executor(handler).execute(job_data)

    context = handler.contexts[0]
    assert context.job_id == job_data["job_id"]
    assert context.job_name == "SystemAlert"
    assert context.attempt == 1


def test_fatal_result_is_dead_lettered_without_retry(make_executor, session, store, redis_client):
    handler = StubHandler("SystemAlert", lambda p: {"success": False, "error": "no_active_bookings"})
    job_data = _job(session, store)

    outcome = make_executor(handler).execute(job_data)

    assert outcome == {"status": "failed", "job_id": job_data["job_id"], "error": "no_active_bookings"}
    record = _record(session, job_data)
    assert record.status == JobStatus.FAILED.value
    assert record.attempts == 1
    assert record.result == {"success": False, "error": "no_active_bookings"}
    assert redis_client.llen(FastDispatcher.DLQ_KEY) == 1


def test_exception_is_retried(make_executor, session, store):
    job_data = _job(session, store)

    make_executor(StubHandler("SystemAlert", _raise)).execute(job_data)

    record = _record(session, job_data)
    assert record.status == JobStatus.PENDING.value
    assert record.last_error == "calendar API returned 503"


def test_exception_on_last_attempt_fails_job(make_executor, session, store, redis_client):
    job_data = _job(session, store, max_attempts=1)

    make_executor(StubHandler("SystemAlert", _raise)).execute(job_data)

    assert _record(session, job_data).status == JobStatus.FAILED.value
    entry = json.loads(redis_client.lindex(FastDispatcher.DLQ_KEY, 0))
    assert entry["error"] == "calendar API returned 503"


def test_timeout_counts_as_failed_attempt(make_executor, session, store):
    release = threading.Event()
    handler = StubHandler("SystemAlert", lambda p: release.wait(5) and {"success": True})
    job_data = _job(session, store)

    try:
        outcome = make_executor(handler, timeout=0.1).execute(job_data)
    finally:
        release.set()

    assert outcome["status"] == "failed"
    assert "Timed out" in outcome["error"]
    assert _record(session, job_data).status == JobStatus.PENDING.value


def test_unknown_job_name_is_dead_lettered(make_executor, session, store):
    job_data = _job(session, store, name="GoogleCalendarEventDeletion", payload={"googleEventId": "e1"})

    outcome = make_executor(StubHandler("SystemAlert", lambda p: {"success": True})).execute(job_data)

    assert outcome["status"] == "failed"
    record = _record(session, job_data)
    assert record.status == JobStatus.FAILED.value
    assert "Unknown job" in record.last_error


def test_cancelled_job_is_skipped(make_executor, session, store):
    handler = StubHandler("SystemAlert", lambda p: {"success": True})
    job_data = _job(session, store)
    store.cancel(session, job_data["job_id"])

    outcome = make_executor(handler).execute(job_data)

    assert outcome["status"] == "skipped"
    assert handler.contexts == []
    assert _record(session, job_data).status == JobStatus.CANCELLED.value


def test_job_runs_once_when_delivered_twice(make_executor, session, store):
    handler = StubHandler("SystemAlert", lambda p: {"success": True})
    job_data = _job(session, store)
    executor = make_executor(handler)

    executor.execute(job_data)
    second = executor.execute(job_data)

    assert second["status"] == "skipped"
    assert len(handler.contexts) == 1


def test_worker_pool_executes_dispatched_job(make_executor, scheduler, dispatcher, session):
    done = threading.Event()
    handler = StubHandler("SystemAlert", lambda p: done.set() or {"success": True})
    executor = make_executor(handler)
    pool = WorkerPool(dispatcher, executor, pool_size=1)

    result = scheduler.enqueue("SystemAlert", {"alertType": "x"})
    pool.start()
    try:
        assert done.wait(5)
    finally:
        pool.stop()

    assert _record(session, {"job_id": result.job_id}).status == JobStatus.COMPLETED.value
