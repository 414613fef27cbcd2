"""
Audit dispatch: best-effort delivery after the state change commits.

Covers:
  - Database sink writes one AuditLog row per event
  - A failing sink never blocks or rolls back the status change
  - Queued events are re-delivered by retry_pending / the drain job
  - Events are dropped after the configured number of attempts
"""

import threading
import time

import pytest

from benefit_engine.models import db
from benefit_engine.models.audit import AuditLog
from benefit_engine.models.benefit import VALIDATED, BenefitApplication
from benefit_engine.services.audit_sink import (
    AuditDispatcher,
    AuditEvent,
    DatabaseAuditSink,
    dispatch_audit,
)
from benefit_engine.services.status_workflow import transition


class _RecordingSink:
    def __init__(self):
        self.events = []

    def append(self, actor, entity_id, action, details, **kw):
        self.events.append((actor, entity_id, action))


class _GatedSink(_RecordingSink):
    """Blocks every append until ``gate`` is set."""

    def __init__(self, gate):
        super().__init__()
        self.gate = gate

    def append(self, actor, entity_id, action, details, **kw):
        self.gate.wait(5)
        super().append(actor, entity_id, action, details, **kw)


class _FlakySink:
    """Rejects events while ``down`` is set, then writes to the database."""

    def __init__(self, down=True):
        self.down = down
        self.inner = DatabaseAuditSink()
        self.attempts = 0

    def append(self, actor, entity_id, action, details, **kw):
        self.attempts += 1
        if self.down:
            raise RuntimeError("audit store offline")
        self.inner.append(actor, entity_id, action, details, **kw)


def _event(**kw):
    return AuditEvent(
        entity_type=kw.get("entity_type", "benefit_application"),
        entity_id=kw.get("entity_id", 1),
        action=kw.get("action", "benefit_application.status_change"),
        actor=kw.get("actor", "clerk"),
        diff=kw.get("diff", {"status": {"old": "Applied", "new": "Validated"}}),
    )


class TestDatabaseSink:

    def test_dispatch_writes_row(self, dispatcher):
        assert dispatch_audit(
            entity_type="benefit_application", entity_id=7,
            action="benefit_application.create", actor="clerk",
        ) is True
        log = AuditLog.query.one()
        assert log.entity_id == "7"
        assert log.actor == "clerk"
        assert dispatcher.pending_count == 0


class TestFailingSink:

    def test_status_change_survives_sink_failure(self, app, make_beneficiary, make_application):
        sink = _FlakySink(down=True)
        app.extensions["audit_dispatcher"] = AuditDispatcher(sink, max_attempts=5)
        a = make_application(make_beneficiary())

        result = transition(a.id, VALIDATED, "clerk")
        assert result.status == VALIDATED
        db.session.expire_all()
        assert db.session.get(BenefitApplication, a.id).status == VALIDATED
        assert app.extensions["audit_dispatcher"].pending_count == 1
        assert AuditLog.query.count() == 0

    def test_retry_pending_delivers_once_sink_recovers(self):
        sink = _FlakySink(down=True)
        dispatcher = AuditDispatcher(sink, max_attempts=5)
        assert dispatcher.dispatch(_event()) is False

        assert dispatcher.retry_pending() == {"delivered": 0, "failed": 1, "pending": 1}
        sink.down = False
        assert dispatcher.retry_pending() == {"delivered": 1, "failed": 0, "pending": 0}
        assert AuditLog.query.count() == 1

    def test_dropped_after_max_attempts(self):
        sink = _FlakySink(down=True)
        dispatcher = AuditDispatcher(sink, max_attempts=3)
        dispatcher.dispatch(_event())
        dispatcher.retry_pending()
        dispatcher.retry_pending()

        assert sink.attempts == 3
        assert dispatcher.pending_count == 0
        assert dispatcher.dropped == 1
        assert dispatcher.retry_pending() == {"delivered": 0, "failed": 0, "pending": 0}

    def test_preserves_original_timestamp(self):
        sink = _FlakySink(down=True)
        dispatcher = AuditDispatcher(sink)
        event = _event()
        dispatcher.dispatch(event)
        sink.down = False
        dispatcher.retry_pending()
        stored = AuditLog.query.one().timestamp
        assert stored.replace(tzinfo=None) == event.timestamp.replace(tzinfo=None)

    @pytest.mark.parametrize("pending", [0, 2])
    def test_health_reports_queue(self, app, client, pending):
        dispatcher = AuditDispatcher(_FlakySink(down=True))
        app.extensions["audit_dispatcher"] = dispatcher
        for n in range(pending):
            dispatcher.dispatch(_event(entity_id=n))

        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        queue = res.get_json()["checks"]["audit_queue"]
        assert queue["pending"] == pending
        assert queue["status"] == ("ok" if pending == 0 else "backlog")


class TestBackgroundRetry:

    def test_thread_drains_queue(self, app):
        sink = _FlakySink(down=True)
        dispatcher = AuditDispatcher(sink, interval=0.01)
        dispatcher.dispatch(_event())
        sink.down = False

        # the thread runs in its own app context
        sink.inner = _RecordingSink()
        dispatcher.start(app)
        try:
            for _ in range(200):
                if dispatcher.pending_count == 0:
                    break
                time.sleep(0.01)
        finally:
            dispatcher.stop()
        assert dispatcher.pending_count == 0
        assert sink.inner.events

    def test_dispatch_does_not_wait_for_sink_while_worker_runs(self, app):
        gate = threading.Event()
        sink = _GatedSink(gate)
        dispatcher = AuditDispatcher(sink, interval=5)
        dispatcher.start(app)
        try:
            started = time.monotonic()
            assert dispatcher.dispatch(_event()) is False
            assert time.monotonic() - started < 1
            assert sink.events == []

            gate.set()
            for _ in range(200):
                if sink.events and dispatcher.pending_count == 0:
                    break
                time.sleep(0.01)
        finally:
            gate.set()
            dispatcher.stop()
        assert sink.events == [("clerk", 1, "benefit_application.status_change")]
        assert dispatcher.pending_count == 0

    def test_inline_delivery_without_worker(self):
        sink = _RecordingSink()
        dispatcher = AuditDispatcher(sink)
        assert dispatcher.running is False
        assert dispatcher.dispatch(_event()) is True
        assert sink.events
