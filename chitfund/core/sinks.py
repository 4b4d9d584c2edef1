"""
Notification and audit sinks.

The service emits notifications and audit records as fire-and-forget side
effects. A failing sink is logged and ignored; it never changes the outcome
of the operation that triggered it.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from chitfund.utils.logger import get_logger

logger = get_logger("sinks")


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True)
class Notification:
    """A message for one or more members."""
    type: str
    recipients: Tuple[str, ...]
    group_id: str
    created_at: datetime
    auction_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditRecord:
    """An administrative action, for the audit trail."""
    action: str
    group_id: str
    created_at: datetime
    actor: Optional[str] = None
    target_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Protocols
# =============================================================================


class NotificationSink(Protocol):
    def notify(self, notification: Notification) -> None: ...


class AuditSink(Protocol):
    def record(self, record: AuditRecord) -> None: ...


# =============================================================================
# Implementations
# =============================================================================


class LoggingNotificationSink:
    """Writes notifications to the `chitfund.notifications` logger."""

    def __init__(self):
        self.logger = get_logger("notifications")

    def notify(self, notification: Notification) -> None:
        self.logger.info(
            f"[{notification.type}] group={notification.group_id} "
            f"to={','.join(notification.recipients)} {notification.payload}"
        )


class LoggingAuditSink:
    """Writes audit records to the `chitfund.audit` logger."""

    def __init__(self):
        self.logger = get_logger("audit")

    def record(self, record: AuditRecord) -> None:
        self.logger.info(
            f"{record.action} group={record.group_id} target={record.target_id} "
            f"actor={record.actor or '-'} {record.details}"
        )


class MemorySink:
    """Collects notifications and audit records in lists (tests, demo)."""

    def __init__(self):
        self._lock = threading.Lock()
        self.notifications: List[Notification] = []
        self.audit_records: List[AuditRecord] = []

    def notify(self, notification: Notification) -> None:
        with self._lock:
            self.notifications.append(notification)

    def record(self, record: AuditRecord) -> None:
        with self._lock:
            self.audit_records.append(record)

    def notifications_of(self, type_: str) -> List[Notification]:
        with self._lock:
            return [n for n in self.notifications if n.type == type_]

    def actions(self) -> List[str]:
        with self._lock:
            return [r.action for r in self.audit_records]


# =============================================================================
# Dispatch
# =============================================================================


def emit_notification(sink: Optional[NotificationSink], notification: Notification) -> bool:
    """Deliver a notification; returns False if the sink failed."""
    if sink is None:
        return False
    try:
        sink.notify(notification)
        return True
    except Exception:
        logger.exception(f"Notification sink failed for {notification.type}")
        return False


def emit_audit(sink: Optional[AuditSink], record: AuditRecord) -> bool:
    """Deliver an audit record; returns False if the sink failed."""
    if sink is None:
        return False
    try:
        sink.record(record)
        return True
    except Exception:
        logger.exception(f"Audit sink failed for {record.action}")
        return False
