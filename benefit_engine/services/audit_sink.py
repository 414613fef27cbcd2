"""
Milestone Benefit Engine
Audit dispatch: delivers lifecycle events to the audit sink.

Architecture:
    - AuditEvent:         immutable payload for one lifecycle event
    - DatabaseAuditSink:  writes AuditLog rows in their own transaction
    - AuditDispatcher:    best-effort delivery with an in-memory retry queue

Events are dispatched AFTER the state change commits.  While the
background worker runs, ``dispatch`` only enqueues and wakes it, so the
caller never waits on the sink.  Without a worker (CLI, tests) the first
delivery is attempted inline.  A failing sink never rolls back the change;
the event is queued and retried by ``retry_pending`` (background thread or
the ``audit_retry_drain`` job) until it lands or exhausts
``AUDIT_RETRY_ATTEMPTS``.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

from flask import Flask, current_app, has_app_context

from benefit_engine.models import db
from benefit_engine.models.audit import write_audit

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    entity_type: str
    entity_id: int | str
    action: str
    actor: str = "system"
    diff: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0


class DatabaseAuditSink:
    """Persist events as AuditLog rows."""

    def append(self, actor, entity_id, action, details, *, entity_type="benefit_application", timestamp=None) -> None:
        write_audit(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor=actor,
            diff=details,
            timestamp=timestamp,
        )
        db.session.commit()


class AuditDispatcher:
    """Best-effort audit delivery.

    ``dispatch`` returns True when the sink accepted the event inline and
    False when it was queued for the worker or for retry.  It never raises
    on sink failure.
    """

    def __init__(self, sink=None, *, max_attempts: int = 5, interval: float = 30.0):
        self.sink = sink or DatabaseAuditSink()
        self.max_attempts = max_attempts
        self.interval = interval
        self.dropped = 0
        self._pending: deque[AuditEvent] = deque()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _deliver(self, event: AuditEvent) -> bool:
        event.attempts += 1
        try:
            self.sink.append(
                event.actor, event.entity_id, event.action, event.diff,
                entity_type=event.entity_type, timestamp=event.timestamp,
            )
            return True
        except Exception as exc:
            if has_app_context():
                db.session.rollback()
            logger.warning(
                "Audit sink rejected %s for %s/%s (attempt %d): %s",
                event.action, event.entity_type, event.entity_id, event.attempts, exc,
                extra={"event_type": "audit_sink_failure"},
            )
            return False

    def _requeue(self, event: AuditEvent) -> None:
        if event.attempts >= self.max_attempts:
            self.dropped += 1
            logger.error(
                "Dropping audit event %s for %s/%s after %d attempts",
                event.action, event.entity_type, event.entity_id, event.attempts,
                extra={"event_type": "audit_dropped"},
            )
            return
        with self._lock:
            self._pending.append(event)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def dispatch(self, event: AuditEvent) -> bool:
        if self.running:
            with self._lock:
                self._pending.append(event)
            self._wake.set()
            return False
        if self._deliver(event):
            return True
        self._requeue(event)
        return False

    def retry_pending(self) -> dict:
        """Re-attempt every queued event once.  Returns delivery counts."""
        with self._lock:
            batch = list(self._pending)
            self._pending.clear()

        delivered = failed = 0
        for event in batch:
            if self._deliver(event):
                delivered += 1
            else:
                failed += 1
                self._requeue(event)
        if failed:
            logger.info(
                "Audit retry: %d delivered, %d still failing, %d pending",
                delivered, failed, self.pending_count,
            )
        return {"delivered": delivered, "failed": failed, "pending": self.pending_count}

    # ── Background delivery loop ───────────────────────────────────────────

    def start(self, app: Flask) -> None:
        if self.running:
            return
        self._stop.clear()

        def loop():
            while not self._stop.is_set():
                self._wake.wait(self.interval)
                self._wake.clear()
                if self._stop.is_set() or not self.pending_count:
                    continue
                with app.app_context():
                    try:
                        self.retry_pending()
                    except Exception:
                        logger.exception("Audit retry loop iteration failed")

        self._thread = threading.Thread(target=loop, name="audit-retry", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None


def init_audit_dispatcher(app: Flask) -> AuditDispatcher:
    dispatcher = AuditDispatcher(
        max_attempts=int(app.config.get("AUDIT_RETRY_ATTEMPTS", 5)),
        interval=float(app.config.get("AUDIT_RETRY_INTERVAL", 30)),
    )
    app.extensions["audit_dispatcher"] = dispatcher
    if app.config.get("AUDIT_RETRY_BACKGROUND"):
        dispatcher.start(app)
    return dispatcher


def get_dispatcher() -> AuditDispatcher:
    dispatcher = current_app.extensions.get("audit_dispatcher")
    if dispatcher is None:
        dispatcher = init_audit_dispatcher(current_app)
    return dispatcher


def dispatch_audit(**kwargs) -> bool:
    """Shortcut: build an AuditEvent from kwargs and dispatch it."""
    return get_dispatcher().dispatch(AuditEvent(**kwargs))
