"""
Audit sink for access decisions.

Provides:
- AccessDecision: structured record of one consequential decision
- LoggingAuditSink: writes to the dedicated "access.audit" logger
- DatabaseAuditSink: appends to access_decision_log
- QueuedAuditSink: background queue in front of another sink
- emit_decision(): hands a decision to a sink without ever raising

Recorded: every denial, every tenant assumption, and grants of
sensitive permissions. Sink failures are logged and swallowed so a
broken audit path can never fail the request it describes.
"""

import json
import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from queue import Empty, Full, Queue
from typing import Any, Dict, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from src.models.access_decision_log import AccessDecisionLog

logger = logging.getLogger(__name__)

# Dedicated audit logger for structured logging
audit_logger = logging.getLogger("access.audit")


class AuditEventType(str, Enum):
    IDENTITY_REJECTED = "identity.rejected"
    TENANT_DENIED = "tenant.denied"
    TENANT_ASSUMED = "tenant.assumed"
    TENANT_ASSUMPTION_ISSUED = "tenant.assumption_issued"
    STATUS_DENIED = "status.denied"
    PERMISSION_DENIED = "permission.denied"
    PERMISSION_GRANTED = "permission.granted"
    FEATURE_DENIED = "feature.denied"
    LIMIT_EXCEEDED = "limit.exceeded"


@dataclass
class AccessDecision:
    """One access decision: who, what, in which tenant, and the verdict."""

    event_type: AuditEventType
    allowed: bool
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    role: Optional[str] = None
    is_assumed: bool = False
    resource: Optional[str] = None
    action: Optional[str] = None
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class AuditSink(Protocol):
    def record(self, decision: AccessDecision) -> None:
        ...


class LoggingAuditSink:
    """Writes each decision as one structured log line."""

    def record(self, decision: AccessDecision) -> None:
        level = logging.INFO if decision.allowed else logging.WARNING
        audit_logger.log(
            level,
            decision.event_type.value,
            extra={
                "event_type": decision.event_type.value,
                "audit_data": decision.to_dict(),
            },
        )


class DatabaseAuditSink:
    """Appends decisions to access_decision_log."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def record(self, decision: AccessDecision) -> None:
        session = self._session_factory()
        try:
            session.add(AccessDecisionLog(
                id=decision.event_id,
                event_type=decision.event_type.value,
                tenant_id=decision.tenant_id,
                user_id=decision.user_id,
                role=decision.role,
                is_assumed=decision.is_assumed,
                resource=decision.resource,
                action=decision.action,
                allowed=decision.allowed,
                reason=decision.reason,
                details=decision.details or None,
            ))
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            session.close()


class QueuedAuditSink:
    """
    Fire-and-forget wrapper processed by a background thread.

    When the queue is full the decision is written synchronously to the
    logging sink instead of being dropped.
    """

    def __init__(self, inner: AuditSink, max_queue_size: int = 1000):
        self._inner = inner
        self._fallback = LoggingAuditSink()
        self._queue: Queue = Queue(maxsize=max_queue_size)
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._thread = threading.Thread(target=self._process_queue, name="access-audit", daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker after draining what is already queued."""
        with self._lock:
            self._running = False
            if self._thread:
                self._thread.join(timeout=timeout)
                self._thread = None

    def record(self, decision: AccessDecision) -> None:
        if not self._running:
            self.start()
        try:
            self._queue.put_nowait(decision)
        except Full:
            logger.warning("Audit queue full, writing synchronously", extra={"event_id": decision.event_id})
            self._fallback.record(decision)

    def flush(self, timeout: float = 5.0) -> None:
        """Block until the queue is drained (tests and shutdown)."""
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)

    def _process_queue(self) -> None:
        while self._running or not self._queue.empty():
            try:
                decision = self._queue.get(timeout=0.5)
            except Empty:
                continue
            try:
                self._inner.record(decision)
            except Exception:
                logger.exception("Audit sink write failed", extra={"event_id": decision.event_id})
                self._fallback.record(decision)
            finally:
                self._queue.task_done()


def emit_decision(sink: Optional[AuditSink], decision: AccessDecision) -> None:
    """Hand a decision to the sink; failures are logged, never raised."""
    if sink is None:
        return
    try:
        sink.record(decision)
    except Exception:
        logger.exception(
            "Audit emission failed",
            extra={"event_type": decision.event_type.value, "event_id": decision.event_id},
        )


def build_audit_sink(
    kind: str,
    session_factory: Optional[sessionmaker] = None,
    queue_size: int = 1000,
) -> AuditSink:
    """Build the configured sink: logging, database or queued (database behind a queue)."""
    if kind == "logging" or session_factory is None:
        return LoggingAuditSink()
    if kind == "database":
        return DatabaseAuditSink(session_factory)
    if kind == "queued":
        return QueuedAuditSink(DatabaseAuditSink(session_factory), max_queue_size=queue_size)
    raise ValueError(f"Unknown audit sink: {kind}")
