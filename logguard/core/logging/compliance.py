"""Compliance rules for log emission.

This module provides:
- Consent tracking per user (grant/revoke, persistence to a key-value store)
- Regional restriction of logging
- IPv4 anonymization in entry context and metadata
- Retention metadata stamping
- An audit trail of administrative actions with age-based pruning
- Export of all compliance data
"""

import json
import re
from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from .audit import AuditAction, AuditEntry, AuditResult, action_name
from .config import ComplianceConfig
from .entry import LogEntry, LoggingContext

logger = structlog.get_logger(__name__)

_IPV4 = re.compile(
    r"\b((?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3})"
    r"(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\b"
)


def anonymize_ip(text: str) -> str:
    """Zero the last octet of every IPv4 address in ``text``."""
    return _IPV4.sub(lambda match: f"{match.group(1)}0", text)


def _anonymize(value: Any) -> Any:
    if isinstance(value, str):
        return anonymize_ip(value)
    if isinstance(value, Mapping):
        return {key: _anonymize(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        items = [_anonymize(item) for item in value]
        return tuple(items) if isinstance(value, tuple) else items
    return value


@dataclass
class ConsentRecord:
    """A user's logging consent decision."""

    user_id: str
    granted: bool
    timestamp: datetime
    ip_address: str | None = None
    user_agent: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "granted": self.granted,
            "timestamp": self.timestamp.isoformat(),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConsentRecord":
        timestamp = data["timestamp"]
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            user_id=data["user_id"],
            granted=bool(data["granted"]),
            timestamp=timestamp,
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
        )


class ComplianceEngine:
    """Consent, region, anonymization, retention and audit trail rules."""

    def __init__(
        self,
        config: ComplianceConfig | Mapping[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the compliance engine.

        Args:
            config: Compliance configuration
            clock: Source of the current time, for tests
        """
        self.config = self._coerce(config) if config is not None else ComplianceConfig()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._consent: dict[str, ConsentRecord] = {}
        self._audit_trail: list[AuditEntry] = []
        self._denied = 0

    @staticmethod
    def _coerce(config: ComplianceConfig | Mapping[str, Any]) -> ComplianceConfig:
        if isinstance(config, ComplianceConfig):
            return config
        return ComplianceConfig.model_validate(config)

    def update_config(self, partial: ComplianceConfig | Mapping[str, Any]) -> None:
        """Merge ``partial`` into the current config."""
        updates = self._coerce(partial).model_dump(exclude_unset=True)
        self.config = ComplianceConfig.model_validate({**self.config.model_dump(), **updates})

    # Gating

    def is_logging_allowed(self, context: LoggingContext | Mapping[str, Any] | None = None) -> bool:
        """
        Check whether an entry with ``context`` may be logged.

        With compliance enabled, logging is denied when consent is required
        and the context's user has not granted it, or when the context's
        environment is a restricted region. Contexts without a user are
        not subject to consent.
        """
        if not self.config.enabled:
            return True
        ctx = LoggingContext.coerce(context)
        if ctx is None:
            return True

        if self.config.require_consent and ctx.user_id and not self.has_consent(ctx.user_id):
            self._denied += 1
            return False

        if ctx.environment and ctx.environment in self.config.restricted_regions:
            self._denied += 1
            return False

        return True

    def apply_compliance_rules(self, entry: LogEntry) -> LogEntry:
        """Anonymize IPs (when configured) and stamp retention metadata."""
        result = entry
        if self.config.anonymize_ips:
            context = None
            if entry.context is not None:
                context = LoggingContext.from_dict(_anonymize(entry.context.to_dict()))
            result = result.replace(context=context, metadata=_anonymize(entry.metadata))

        retention_date = self._clock() + timedelta(days=self.config.data_retention_days)
        return result.with_metadata(
            retentionDate=retention_date.isoformat(),
            complianceEnabled=self.config.enabled,
        )

    # Consent

    def grant_consent(
        self,
        user_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ConsentRecord:
        record = ConsentRecord(
            user_id=user_id,
            granted=True,
            timestamp=self._clock(),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._consent[user_id] = record
        self.record_action(AuditAction.CONSENT_GIVEN, user_id=user_id, details={"ip_address": ip_address})
        logger.info("Logging consent granted", user_id=user_id)
        return record

    def revoke_consent(self, user_id: str) -> ConsentRecord:
        previous = self._consent.get(user_id)
        record = ConsentRecord(
            user_id=user_id,
            granted=False,
            timestamp=self._clock(),
            ip_address=previous.ip_address if previous else None,
            user_agent=previous.user_agent if previous else None,
        )
        self._consent[user_id] = record
        self.record_action(AuditAction.CONSENT_WITHDRAWN, user_id=user_id)
        logger.info("Logging consent revoked", user_id=user_id)
        return record

    def get_consent_record(self, user_id: str) -> ConsentRecord | None:
        return self._consent.get(user_id)

    def has_consent(self, user_id: str) -> bool:
        record = self._consent.get(user_id)
        return record is not None and record.granted

    def save_consent(self, store: MutableMapping[str, str]) -> None:
        """Persist consent records under ``consent_storage_key``."""
        store[self.config.consent_storage_key] = json.dumps(
            [record.to_dict() for record in self._consent.values()]
        )

    def load_consent(self, store: Mapping[str, str]) -> int:
        """Load consent records saved by ``save_consent``; returns the count."""
        raw = store.get(self.config.consent_storage_key)
        if not raw:
            return 0
        records = [ConsentRecord.from_dict(item) for item in json.loads(raw)]
        self._consent = {record.user_id: record for record in records}
        return len(records)

    # Audit trail

    def add_audit_trail_entry(self, entry: AuditEntry) -> AuditEntry:
        """Append an entry; details are limited to ``audit_fields`` when set."""
        if self.config.audit_fields:
            entry.details = {
                key: value for key, value in entry.details.items()
                if key in self.config.audit_fields
            }
        self._audit_trail.append(entry)
        return entry

    def record_action(
        self,
        action: AuditAction | str,
        user_id: str | None = None,
        resource: str | None = None,
        result: AuditResult | str = AuditResult.SUCCESS,
        details: dict[str, Any] | None = None,
    ) -> AuditEntry | None:
        """Record an administrative action if the audit trail is enabled."""
        if not self.config.enable_audit_trail:
            return None
        return self.add_audit_trail_entry(
            AuditEntry(
                timestamp=self._clock(),
                action=action_name(action),
                user_id=user_id,
                resource=resource,
                result=result.value if isinstance(result, AuditResult) else result,
                details={key: value for key, value in (details or {}).items() if value is not None},
            )
        )

    def record_session_revocation(self, user_id: str, session_id: str) -> AuditEntry | None:
        return self.record_action(
            AuditAction.SESSION_REVOKED,
            user_id=user_id,
            resource=f"session:{session_id}",
            details={"session_id": session_id},
        )

    def get_audit_trail(self) -> list[AuditEntry]:
        return list(self._audit_trail)

    def clear_old_audit_trail(self, max_age_days: int | None = None) -> int:
        """Drop audit entries older than ``max_age_days``; returns the count."""
        days = self.config.data_retention_days if max_age_days is None else max_age_days
        cutoff = self._clock() - timedelta(days=days)
        before = len(self._audit_trail)
        self._audit_trail = [entry for entry in self._audit_trail if entry.timestamp >= cutoff]
        removed = before - len(self._audit_trail)
        if removed:
            logger.info("Pruned audit trail", removed=removed, max_age_days=days)
        return removed

    # Export

    def export_compliance_data(self) -> dict[str, Any]:
        """Snapshot of consent records, audit trail and config."""
        return {
            "consent_records": [record.to_dict() for record in self._consent.values()],
            "audit_trail": [entry.to_dict() for entry in self._audit_trail],
            "config": self.config.model_dump(by_alias=True),
            "export_timestamp": self._clock().isoformat(),
        }

    def get_statistics(self) -> dict[str, Any]:
        return {
            "enabled": self.config.enabled,
            "consent_records": len(self._consent),
            "granted_consents": sum(1 for record in self._consent.values() if record.granted),
            "audit_trail_entries": len(self._audit_trail),
            "entries_denied": self._denied,
            "restricted_regions": list(self.config.restricted_regions),
        }
