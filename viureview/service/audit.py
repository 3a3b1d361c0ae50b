from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

from viureview.logging import get_logger
from viureview.storage.models import AuditAction, AuditLog, AuditStatus, utcnow

if TYPE_CHECKING:
    from viureview.service.auth import AuthStore

logger = get_logger(__name__)


class AuditSink(Protocol):
    def record(
        self,
        action: AuditAction | str,
        status: AuditStatus | str,
        *,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None: ...

    def success(self, action: AuditAction | str, resource: str, **kwargs: Any) -> None: ...

    def failure(
        self, action: AuditAction | str, resource: str, error_message: str, **kwargs: Any
    ) -> None: ...


class StoreAuditSink:
    """Audit trail written to the primary store.

    ``record`` never raises: a failed audit write is logged and the primary
    operation carries on.
    """

    def __init__(self, store: "AuthStore") -> None:
        self.store = store

    def record(
        self,
        action: AuditAction | str,
        status: AuditStatus | str,
        *,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> None:
        action_value = getattr(action, "value", action)
        try:
            self.store.create_audit_log(
                action_value,
                getattr(status, "value", status),
                user_id=user_id,
                resource=resource,
                resource_id=resource_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
            )
        except Exception as exc:
            logger.error(
                "audit_write_failed", action=action_value, user_id=user_id, error=str(exc)
            )

    def success(self, action: AuditAction | str, resource: str, **kwargs: Any) -> None:
        self.record(action, AuditStatus.SUCCESS, resource=resource, **kwargs)

    def failure(
        self, action: AuditAction | str, resource: str, error_message: str, **kwargs: Any
    ) -> None:
        details = dict(kwargs.pop("details", None) or {})
        details["error"] = error_message
        self.record(action, AuditStatus.FAILURE, resource=resource, details=details, **kwargs)

    # queries
    def find_logs(
        self,
        *,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        resource: Optional[str] = None,
        status: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Dict[str, Any]:
        page = max(1, page)
        limit = max(1, limit)
        logs, total = self.store.list_audit_logs(
            user_id=user_id,
            action=action,
            resource=resource,
            status=status,
            start=start,
            end=end,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return {
            "logs": logs,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": math.ceil(total / limit),
            },
        }

    def user_logs(self, user_id: str, limit: int = 50) -> Dict[str, Any]:
        return self.find_logs(user_id=user_id, limit=limit)

    def stats(
        self,
        *,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        logs, total = self.store.list_audit_logs(user_id=user_id, start=start, end=end)
        success_count = sum(1 for log in logs if log.status == AuditStatus.SUCCESS.value)
        failure_count = sum(1 for log in logs if log.status == AuditStatus.FAILURE.value)
        actions = Counter(log.action for log in logs)
        resources = Counter(log.resource for log in logs if log.resource)
        return {
            "total": total,
            "success_count": success_count,
            "failure_count": failure_count,
            "success_rate": f"{success_count / total * 100:.2f}%" if total else "0%",
            "top_actions": [
                {"action": action, "count": count} for action, count in actions.most_common(10)
            ],
            "resource_breakdown": [
                {"resource": resource, "count": count}
                for resource, count in resources.most_common()
            ],
        }

    def recent_activity(self, limit: int = 20) -> List[AuditLog]:
        logs, _ = self.store.list_audit_logs(limit=limit)
        return logs

    def clean_old_logs(self, days_to_keep: int = 90) -> int:
        deleted = self.store.delete_audit_logs_before(utcnow() - timedelta(days=days_to_keep))
        logger.info("audit_logs_pruned", deleted=deleted, days_to_keep=days_to_keep)
        return deleted
