"""
auth/audit.py -- Audit sinks for authentication and authorization events.

Event names used by the core:
  auth.success / auth.failure       -- AuthenticationGate outcome
  authz.granted / authz.denied      -- AuthorizationGate outcome
  user.registered, user.login, user.login_failed, user.logout,
  user.password_changed, user.sessions_revoked,
  token.refreshed, token.refresh_rejected

LoggingAuditSink writes one line per event to the "authcore.audit" logger so
the records land wherever the process's logging is shipped. MemoryAuditSink
keeps events in a list for tests.

Audit must never break the request it describes: LoggingAuditSink swallows
serialization problems and reports them on the regular auth logger instead.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

audit_logger = logging.getLogger("authcore.audit")
logger = logging.getLogger("authcore.auth")

# Free-text metadata (user-agent, url) is clipped so one request cannot flood
# the audit log.
_MAX_VALUE_LENGTH = 500


def _clip(metadata: dict[str, Any] | None) -> dict[str, Any]:
    safe: dict[str, Any] = {}
    for key, value in (metadata or {}).items():
        if isinstance(value, str) and len(value) > _MAX_VALUE_LENGTH:
            value = value[:_MAX_VALUE_LENGTH]
        safe[str(key)] = value
    return safe


class LoggingAuditSink:
    """AuditSink that emits structured log lines."""

    def __init__(self, log: logging.Logger = audit_logger) -> None:
        self._log = log

    def record(self, event: str, principal_id: int | None = None, metadata: dict[str, Any] | None = None) -> None:
        try:
            payload = json.dumps(_clip(metadata), default=str, sort_keys=True)
        except (TypeError, ValueError) as exc:
            logger.warning("Could not serialize audit metadata for %s: %s", event, exc)
            payload = "{}"
        level = logging.WARNING if event.endswith(("failure", "denied", "rejected", "failed")) else logging.INFO
        self._log.log(level, "event=%s principal_id=%s metadata=%s", event, principal_id, payload)


@dataclass
class AuditEvent:
    event: str
    principal_id: int | None
    metadata: dict[str, Any]
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class MemoryAuditSink:
    """AuditSink that keeps events in memory, for tests."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def record(self, event: str, principal_id: int | None = None, metadata: dict[str, Any] | None = None) -> None:
        self.events.append(AuditEvent(event=event, principal_id=principal_id, metadata=_clip(metadata)))

    def named(self, event: str) -> list[AuditEvent]:
        return [e for e in self.events if e.event == event]
