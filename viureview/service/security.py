from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from viureview.logging import get_logger
from viureview.service.errors import NotFoundError
from viureview.storage.models import (
    SecurityEvent,
    SecurityEventType,
    Severity,
    utcnow,
)

if TYPE_CHECKING:
    from viureview.service.auth import AuthStore

logger = get_logger(__name__)


@dataclass
class FailedLoginOutcome:
    locked: bool
    remaining_attempts: int = 0


def _severity_rank(value: str) -> int:
    try:
        return Severity(value).rank
    except ValueError:
        return -1


class SecurityMonitor:
    """Failed-login and failed-2FA bookkeeping plus the admin event views.

    The policy only records and reports. Callers decide whether to reject a
    request based on ``locked``.
    """

    def __init__(
        self,
        store: "AuthStore",
        *,
        failed_login_threshold: int = 5,
        failed_login_window: timedelta = timedelta(minutes=15),
        lockout_duration: timedelta = timedelta(minutes=30),
        failed_2fa_threshold: int = 3,
        failed_2fa_window: timedelta = timedelta(minutes=5),
    ) -> None:
        self.store = store
        self.failed_login_threshold = failed_login_threshold
        self.failed_login_window = failed_login_window
        self.lockout_duration = lockout_duration
        self.failed_2fa_threshold = failed_2fa_threshold
        self.failed_2fa_window = failed_2fa_window

    def log_event(
        self,
        event_type: SecurityEventType | str,
        severity: Severity | str,
        description: str,
        *,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> SecurityEvent:
        event = self.store.create_security_event(
            SecurityEventType(event_type).value,
            Severity(severity).value,
            description,
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details=details,
        )
        if event.severity == Severity.CRITICAL.value:
            self._critical_alert(event)
        return event

    def _critical_alert(self, event: SecurityEvent) -> None:
        logger.error(
            "security_critical_alert",
            event_id=event.id,
            event_type=event.event_type,
            description=event.description,
            user_id=event.user_id,
            created_at=event.created_at.isoformat(),
        )

    # lockout policy
    def track_failed_login(
        self,
        user_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> FailedLoginOutcome:
        self.log_event(
            SecurityEventType.FAILED_LOGIN,
            Severity.LOW,
            "Login attempt failed",
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        recent_failures = self.recent_failed_logins(user_id)
        if recent_failures >= self.failed_login_threshold:
            self.log_event(
                SecurityEventType.ACCOUNT_LOCKOUT,
                Severity.HIGH,
                f"Account locked after {recent_failures} failed login attempts",
                user_id=user_id,
                ip_address=ip_address,
                details={
                    "failed_attempts": recent_failures,
                    "threshold": self.failed_login_threshold,
                },
            )
            logger.warning("account_locked", user_id=user_id, failed_attempts=recent_failures)
            return FailedLoginOutcome(locked=True)
        return FailedLoginOutcome(
            locked=False,
            remaining_attempts=self.failed_login_threshold - recent_failures,
        )

    def recent_failed_logins(self, user_id: str) -> int:
        since = utcnow() - self.failed_login_window
        return self.store.count_security_events(
            user_id, SecurityEventType.FAILED_LOGIN.value, since
        )

    def is_account_locked(self, user_id: str) -> bool:
        since = utcnow() - self.lockout_duration
        return (
            self.store.count_security_events(
                user_id, SecurityEventType.ACCOUNT_LOCKOUT.value, since
            )
            > 0
        )

    def track_failed_2fa(self, user_id: str, ip_address: Optional[str] = None) -> None:
        self.log_event(
            SecurityEventType.MULTIPLE_FAILED_2FA,
            Severity.MEDIUM,
            "Two-factor verification failed",
            user_id=user_id,
            ip_address=ip_address,
        )
        since = utcnow() - self.failed_2fa_window
        recent_failures = self.store.count_security_events(
            user_id, SecurityEventType.MULTIPLE_FAILED_2FA.value, since
        )
        if recent_failures >= self.failed_2fa_threshold:
            self.log_event(
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                Severity.HIGH,
                f"Repeated two-factor failures ({recent_failures})",
                user_id=user_id,
                ip_address=ip_address,
                details={"failed_attempts": recent_failures},
            )

    def track_privilege_escalation(
        self, user_id: str, attempted_action: str, ip_address: Optional[str] = None
    ) -> SecurityEvent:
        return self.log_event(
            SecurityEventType.PRIVILEGE_ESCALATION_ATTEMPT,
            Severity.CRITICAL,
            "Privilege escalation attempt detected",
            user_id=user_id,
            ip_address=ip_address,
            details={"attempted_action": attempted_action},
        )

    # admin views
    def unresolved_events(self, severity: Optional[str] = None) -> List[SecurityEvent]:
        if severity is not None:
            severity = Severity(severity).value
        events = self.store.list_security_events(resolved=False, severity=severity)
        # newest-first from the store; stable sort keeps that within a severity
        return sorted(events, key=lambda e: _severity_rank(e.severity), reverse=True)

    def resolve_event(self, event_id: str, resolved_by: str) -> SecurityEvent:
        event = self.store.resolve_security_event(event_id, resolved_by)
        if not event:
            raise NotFoundError("security event not found", detail={"event_id": event_id})
        logger.info("security_event_resolved", event_id=event_id, resolved_by=resolved_by)
        return event

    def security_stats(
        self, start: Optional[datetime] = None, end: Optional[datetime] = None
    ) -> Dict[str, Any]:
        events = self.store.list_security_events(start=start, end=end)
        total = len(events)
        unresolved = sum(1 for e in events if not e.resolved)
        by_severity = Counter(e.severity for e in events)
        by_type = Counter(e.event_type for e in events)
        return {
            "total": total,
            "unresolved": unresolved,
            "resolved": total - unresolved,
            "by_severity": [
                {"severity": severity, "count": count}
                for severity, count in sorted(
                    by_severity.items(), key=lambda item: _severity_rank(item[0]), reverse=True
                )
            ],
            "top_event_types": [
                {"event_type": event_type, "count": count}
                for event_type, count in by_type.most_common(10)
            ],
            "failed_logins": by_type.get(SecurityEventType.FAILED_LOGIN.value, 0),
            "account_lockouts": by_type.get(SecurityEventType.ACCOUNT_LOCKOUT.value, 0),
        }

    def recent_events(self, limit: int = 20) -> List[SecurityEvent]:
        return self.store.list_security_events(limit=limit)

    def user_events(self, user_id: str, limit: int = 50) -> List[SecurityEvent]:
        return self.store.list_security_events(user_id=user_id, limit=limit)

    def dashboard(self) -> Dict[str, Any]:
        now = utcnow()
        return {
            "last_24_hours": self.security_stats(start=now - timedelta(hours=24)),
            "last_7_days": self.security_stats(start=now - timedelta(days=7)),
            "critical_events": self.unresolved_events(Severity.CRITICAL.value),
            "recent_events": self.recent_events(10),
        }

    def clean_old_resolved_events(self, days_to_keep: int = 90) -> int:
        cutoff = utcnow() - timedelta(days=days_to_keep)
        deleted = self.store.delete_resolved_security_events(cutoff)
        logger.info("security_events_pruned", deleted=deleted, days_to_keep=days_to_keep)
        return deleted
