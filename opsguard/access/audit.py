"""
OPSGUARD - Audit Trail

Audit entries for sensitive-action attempts and the best-effort writer that
hands them to an external sink. The core never persists, mutates or deletes
entries itself; it only guarantees that a write is attempted.
"""

import hashlib
import inspect
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable
from uuid import uuid4

from opsguard.config import settings
from opsguard.exceptions import AuditWriteError


logger = logging.getLogger(__name__)


# ============================================================
# Audit Entry Structure
# ============================================================


class AuditOutcome(str, Enum):
    """Outcome of a sensitive-action attempt."""

    SUCCESS = "success"
    DENIED = "denied"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class AuditLogEntry:
    """One sensitive-action attempt. Immutable once built."""

    action: str
    actor_id: Optional[str]
    actor_email: Optional[str]
    status: AuditOutcome
    occurred_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    entry_id: str = field(default_factory=lambda: f"aud_{uuid4().hex[:16]}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the sink's record shape."""
        return {
            "action": self.action,
            "actor_id": self.actor_id,
            "actor_email": self.actor_email,
            "status": self.status.value,
            "occurred_at": self.occurred_at.isoformat(),
            "metadata": self.metadata,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def compute_hash(self) -> str:
        """Compute SHA256 hash for integrity verification."""
        content = f"{self.entry_id}{self.occurred_at.isoformat()}{self.actor_id}{self.action}{self.status.value}"
        return hashlib.sha256(content.encode()).hexdigest()


# ============================================================
# Sinks
# ============================================================


@runtime_checkable
class AuditSink(Protocol):
    """Append-only external audit store. May be sync or async."""

    def append_audit_entry(self, entry: AuditLogEntry) -> Any:
        ...


class InMemoryAuditSink:
    """Keeps entries in a list. Useful for hosts without a backend and for tests."""

    def __init__(self):
        self.entries: List[AuditLogEntry] = []

    async def append_audit_entry(self, entry: AuditLogEntry) -> None:
        self.entries.append(entry)

    def query(
        self,
        action: Optional[str] = None,
        status: Optional[AuditOutcome] = None,
        actor_id: Optional[str] = None,
    ) -> List[AuditLogEntry]:
        """Filter stored entries."""
        return [
            e for e in self.entries
            if (action is None or e.action == action)
            and (status is None or e.status == status)
            and (actor_id is None or e.actor_id == actor_id)
        ]


# ============================================================
# Audit Logger
# ============================================================


class AuditLogger:
    """
    Best-effort audit writer.

    Sink failures are caught and logged as warnings. They never mask the
    outcome of the action being audited.
    """

    def __init__(
        self,
        sink: Optional[AuditSink] = None,
        sanitize_fields: Optional[Iterable[str]] = None,
    ):
        self.sink = sink
        fields = settings.AUDIT_SANITIZE_FIELDS if sanitize_fields is None else sanitize_fields
        self.sanitize_fields = {f.lower() for f in fields}

    def build_entry(
        self,
        action: str,
        status: AuditOutcome,
        actor_id: Optional[str] = None,
        actor_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        return AuditLogEntry(
            action=action,
            actor_id=actor_id,
            actor_email=actor_email,
            status=AuditOutcome(status),
            occurred_at=datetime.now(timezone.utc),
            metadata=sanitize_for_audit(metadata or {}, self.sanitize_fields),
        )

    async def record(
        self,
        action: str,
        status: AuditOutcome,
        actor_id: Optional[str] = None,
        actor_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLogEntry]:
        """
        Build an entry and hand it to the sink.

        Returns:
            The entry when the sink accepted it, None when the write failed
        """
        entry = self.build_entry(action, status, actor_id, actor_email, metadata)

        logger.info(
            "AUDIT",
            extra={
                "audit_event": entry.to_dict(),
                "event_hash": entry.compute_hash(),
            },
        )

        if self.sink is None:
            return entry

        try:
            await self._write(entry)
        except Exception as e:
            failure = AuditWriteError(str(e), action=action)
            logger.warning(
                "Failed to record audit log",
                extra={"action": action, "error": str(failure)},
            )
            return None
        return entry

    async def _write(self, entry: AuditLogEntry) -> None:
        result = self.sink.append_audit_entry(entry)
        if inspect.isawaitable(result):
            await result


def sanitize_for_audit(data: Any, sensitive_fields: Optional[Iterable[str]] = None) -> Any:
    """Redact sensitive keys from data before it is written to the audit trail."""
    if sensitive_fields is None:
        sensitive_fields = {f.lower() for f in settings.AUDIT_SANITIZE_FIELDS}

    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if str(k).lower() in sensitive_fields
            else sanitize_for_audit(v, sensitive_fields)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple)):
        return [sanitize_for_audit(item, sensitive_fields) for item in data]
    elif isinstance(data, (set, frozenset)):
        return sorted((sanitize_for_audit(item, sensitive_fields) for item in data), key=str)
    else:
        return data
