"""Audit trail records for compliance tracking."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .entry import generate_entry_id


class AuditAction(str, Enum):
    """Administrative actions recorded in the audit trail."""
    # Consent
    CONSENT_GIVEN = "CONSENT_GIVEN"
    CONSENT_WITHDRAWN = "CONSENT_WITHDRAWN"

    # Sessions
    SESSION_REVOKED = "SESSION_REVOKED"

    # Compliance data
    DATA_EXPORT = "DATA_EXPORT"
    AUDIT_TRAIL_PRUNED = "AUDIT_TRAIL_PRUNED"
    CONFIG_CHANGE = "CONFIG_CHANGE"


def action_name(action: "AuditAction | str") -> str:
    """Plain string name of an action."""
    return action.value if isinstance(action, Enum) else str(action)


class AuditResult(str, Enum):
    """Outcome of an audited action."""
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


@dataclass
class AuditEntry:
    """
    One audit trail record.

    Args:
        id: Unique entry ID
        timestamp: When the action happened (timezone-aware)
        action: Action name, usually an ``AuditAction`` value
        user_id: ID of the user the action concerns
        resource: Resource being accessed/modified
        result: Outcome of the action
        details: Additional details
    """
    timestamp: datetime
    action: str
    id: str = field(default_factory=generate_entry_id)
    user_id: str | None = None
    resource: str | None = None
    result: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action,
            "user_id": self.user_id,
            "resource": self.resource,
            "result": self.result,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditEntry":
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            id=data.get("id") or generate_entry_id(),
            timestamp=timestamp,
            action=action_name(data["action"]),
            user_id=data.get("user_id", data.get("userId")),
            resource=data.get("resource"),
            result=data.get("result"),
            details=dict(data.get("details") or {}),
        )
