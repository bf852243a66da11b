"""
Unit tests for the retry queue and audit channel.
"""

import threading
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock, patch

import requests
from sqlalchemy import select

from garagedesk.models.database import AuditLog
from garagedesk.models.domain import AuditAction
from garagedesk.services.audit import AuditEvent, AuditTrail, DatabaseAuditSink, HttpAuditSink
from garagedesk.services.retry import RetryQueue


class Flaky:
    """Callable that fails a fixed number of times."""

    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"failure {self.calls}")


def test_job_succeeds_after_retries(retry_queue):
    job = Flaky(failures=2)
    retry_queue.submit(job, name="flaky")

    assert retry_queue.drain() == 1
    assert job.calls == 3

    stats = retry_queue.get_stats()
    assert stats['succeeded'] == 1
    assert stats['retried'] == 2
    assert stats['failed'] == 0


def test_job_gives_up_after_max_attempts(retry_queue):
    job = Flaky(failures=10)
    retry_queue.submit(job, name="hopeless", max_attempts=4)

    retry_queue.drain()

    assert job.calls == 4
    assert retry_queue.get_stats()['failed'] == 1


def test_full_queue_drops_without_blocking():
    queue = RetryQueue(maxsize=1, backoff_seconds=0)

    assert queue.submit(lambda: None) is True
    assert queue.submit(lambda: None) is False

    stats = queue.get_stats()
    assert stats['dropped'] == 1
    assert stats['pending'] == 1


def test_worker_thread_runs_jobs():
    queue = RetryQueue(backoff_seconds=0)
    done = threading.Event()
    queue.start()
    try:
        queue.submit(done.set, name="signal")
        assert done.wait(timeout=5.0)
    finally:
        queue.stop()

    assert queue.get_stats()['running'] is False


def test_stop_flushes_pending_jobs():
    queue = RetryQueue(backoff_seconds=0)
    job = Mock()
    queue.submit(job)

    queue.stop()

    job.assert_called_once()


def test_audit_append_builds_event(retry_queue, clock):
    sink = Mock()
    trail = AuditTrail(sink, retry_queue, clock=clock)

    assert trail.append("op-1", AuditAction.VEHICLE_EXIT, "parking_sessions", 7,
                        amount=Decimal("3.00"), details={"plate": "ABC-123"})
    retry_queue.drain()

    event = sink.write.call_args[0][0]
    assert event.action == "vehicle_exit"
    assert event.entity_id == "7"
    assert event.ts_utc == clock()
    assert event.details == {"plate": "ABC-123"}


def test_audit_append_never_raises(clock):
    queue = Mock()
    queue.submit.side_effect = RuntimeError("boom")
    trail = AuditTrail(Mock(), queue, clock=clock)

    assert trail.append("op-1", AuditAction.SHIFT_OPENED, "shifts", 1) is False


def test_audit_sink_failure_is_swallowed(retry_queue, clock, caplog):
    sink = Mock()
    sink.write.side_effect = RuntimeError("audit store down")
    trail = AuditTrail(sink, retry_queue, clock=clock, max_attempts=2)

    trail.append("op-1", AuditAction.SHIFT_CLOSED, "shifts", 1)
    retry_queue.drain()

    assert sink.write.call_count == 2
    assert any(r.levelname == "ERROR" for r in caplog.records)


def test_database_sink_writes_row(session_factory, db, clock):
    sink = DatabaseAuditSink(session_factory)
    sink.write(AuditEvent(
        ts_utc=clock(),
        actor_id="op-1",
        action="vehicle_entry",
        entity_type="parking_sessions",
        entity_id="1",
        details={"plate": "ABC-123"},
    ))

    rows = list(db.scalars(select(AuditLog)))
    assert len(rows) == 1
    assert rows[0].action == "vehicle_entry"
    assert rows[0].details == {"plate": "ABC-123"}


@patch('requests.Session.post')
def test_http_sink_posts_event(mock_post, clock):
    mock_response = Mock()
    mock_response.raise_for_status.return_value = None
    mock_post.return_value = mock_response

    sink = HttpAuditSink("http://audit.local/api/v1/audit", api_key="test-key", timeout=2.0)
    sink.write(AuditEvent(
        ts_utc=datetime(2026, 1, 14, 10, 0, tzinfo=timezone.utc),
        actor_id="op-1",
        action="vehicle_exit",
        entity_type="parking_sessions",
        entity_id="3",
        amount=Decimal("12.75"),
    ))

    kwargs = mock_post.call_args.kwargs
    assert kwargs['json']['amount'] == "12.75"
    assert kwargs['json']['ts_utc'] == "2026-01-14T10:00:00+00:00"
    assert kwargs['headers'] == {'X-API-Key': 'test-key'}
    assert kwargs['timeout'] == 2.0


def test_http_sink_does_not_resend_posts():
    sink = HttpAuditSink("http://audit.local/api/v1/audit", api_key="test-key")

    retries = sink._session.get_adapter("http://audit.local").max_retries

    assert retries.total == 0
    assert retries.read == 0
    assert retries.status == 0
    assert not retries.is_retry("POST", 503)


@patch('requests.Session.post')
def test_http_sink_error_propagates_to_queue(mock_post, retry_queue):
    mock_post.side_effect = requests.exceptions.ConnectionError("unreachable")
    sink = HttpAuditSink("http://audit.local/api/v1/audit", api_key="test-key")
    trail = AuditTrail(sink, retry_queue, max_attempts=3)

    trail.append("op-1", AuditAction.TARIFF_MODIFIED, "tariff_rules", 2)
    retry_queue.drain()

    assert mock_post.call_count == 3
    assert retry_queue.get_stats()['failed'] == 1


def test_store_insert_audit(store):
    store.insert_audit(AuditLog(
        ts_utc=datetime(2026, 1, 14, 10, 0, tzinfo=timezone.utc),
        actor_id="op-1",
        action="shift_opened",
        entity_type="shifts",
        entity_id="1",
    ))

    assert len(list(store.db.scalars(select(AuditLog)))) == 1
