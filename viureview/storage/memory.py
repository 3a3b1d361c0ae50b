from __future__ import annotations

import dataclasses
import json
import os
import secrets
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from viureview.logging import get_logger
from viureview.storage.common import (
    build_secret_cipher,
    decrypt_secret,
    encrypt_secret,
    ensure_aware,
)
from viureview.storage.errors import ConstraintViolation, MissingRecord
from viureview.storage.models import (
    Approval,
    Art,
    AuditLog,
    Feedback,
    Project,
    SecurityEvent,
    Session,
    Task,
    TwoFactorConfig,
    User,
    utcnow,
)

T = TypeVar("T")


class MemoryStore:
    """In-process store with a JSON snapshot on disk, for development and tests."""

    def __init__(
        self, fs_root: str = "/tmp/viureview", *, mfa_encryption_key: str | None = None
    ) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, tuple[str, str]] = {}
        self.two_factor: Dict[str, dict] = {}
        self.sessions: Dict[str, Session] = {}
        self.security_events: Dict[str, SecurityEvent] = {}
        self.audit_logs: List[AuditLog] = []
        self.projects: Dict[str, Project] = {}
        self.arts: Dict[str, Art] = {}
        self.tasks: Dict[str, Task] = {}
        self.feedback: Dict[str, Feedback] = {}
        self.approvals: Dict[str, Approval] = {}
        # RLock so helpers can nest inside public operations
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)

        key_material = mfa_encryption_key or os.getenv("MFA_SECRET_KEY")
        if not key_material:
            key_material = secrets.token_urlsafe(48)
            self.logger.warning(
                "memory_store_ephemeral_mfa_key",
                message="TOTP secrets will not survive a restart without MFA_SECRET_KEY",
            )
        self._secret_cipher = build_secret_cipher(key_material)
        self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    def close(self) -> None:
        with self._data_lock:
            self._persist_state()

    # users
    def create_user(
        self,
        email: str,
        name: Optional[str] = None,
        *,
        role: str = "DESIGNER",
        is_active: bool = True,
        meta: Optional[Dict] = None,
    ) -> User:
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(
                id=str(uuid.uuid4()),
                email=email,
                name=name,
                role=role,
                is_active=is_active,
                meta=dict(meta) if meta else {},
            )
            self.users[user.id] = user
            self._persist_state()
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def count_users(self, *, two_factor_enabled: Optional[bool] = None) -> int:
        with self._data_lock:
            if two_factor_enabled is None:
                return len(self.users)
            return sum(
                1 for u in self.users.values() if u.two_factor_enabled == two_factor_enabled
            )

    def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.role = role
            self._persist_state()
            return user

    def deactivate_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.is_active = False
            self._persist_state()
            return user

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise MissingRecord("user", user_id)
            self.credentials[user_id] = (password_hash, password_algo)
            self._persist_state()

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)

    # two-factor
    def enable_two_factor(
        self, user_id: str, secret: str, backup_code_hashes: List[str]
    ) -> None:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                raise MissingRecord("user", user_id)
            self.two_factor[user_id] = {
                "secret": encrypt_secret(self._secret_cipher, secret),
                "backup_code_hashes": list(backup_code_hashes),
                "enabled_at": utcnow().isoformat(),
            }
            user.two_factor_enabled = True
            self._persist_state()

    def get_two_factor_config(self, user_id: str) -> Optional[TwoFactorConfig]:
        with self._data_lock:
            record = self.two_factor.get(user_id)
            if not record:
                return None
            return TwoFactorConfig(
                user_id=user_id,
                secret=decrypt_secret(self._secret_cipher, record["secret"]) or "",
                backup_code_hashes=list(record["backup_code_hashes"]),
                enabled_at=datetime.fromisoformat(record["enabled_at"]),
            )

    def replace_backup_codes(self, user_id: str, backup_code_hashes: List[str]) -> None:
        with self._data_lock:
            record = self.two_factor.get(user_id)
            if not record:
                raise MissingRecord("two_factor", user_id)
            record["backup_code_hashes"] = list(backup_code_hashes)
            self._persist_state()

    def consume_backup_code(self, user_id: str, code_hash: str) -> bool:
        """Remove one stored backup-code hash; False if another request already used it."""
        with self._data_lock:
            record = self.two_factor.get(user_id)
            if not record or code_hash not in record["backup_code_hashes"]:
                return False
            record["backup_code_hashes"].remove(code_hash)
            self._persist_state()
            return True

    def disable_two_factor(self, user_id: str) -> None:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                raise MissingRecord("user", user_id)
            self.two_factor.pop(user_id, None)
            user.two_factor_enabled = False
            self._persist_state()

    # sessions
    def create_session(
        self,
        user_id: str,
        token_hash: str,
        ttl_seconds: int,
        *,
        user_agent: str | None = None,
        ip_addr: str | None = None,
    ) -> Session:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            sess = Session.new(
                user_id,
                token_hash,
                ttl_seconds,
                user_agent=user_agent,
                ip_addr=ip_addr,
            )
            self.sessions[sess.id] = sess
            self._persist_state()
            return sess

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._data_lock:
            return self.sessions.get(session_id)

    def list_sessions(self, user_id: str, *, active: Optional[bool] = None) -> List[Session]:
        with self._data_lock:
            results = [
                s
                for s in self.sessions.values()
                if s.user_id == user_id and (active is None or s.is_active == active)
            ]
            return sorted(results, key=lambda s: s.created_at, reverse=True)

    def deactivate_session(self, session_id: str) -> bool:
        with self._data_lock:
            sess = self.sessions.get(session_id)
            if not sess:
                return False
            if sess.is_active:
                sess.is_active = False
                self._persist_state()
            return True

    def deactivate_user_sessions(
        self, user_id: str, *, except_session_id: Optional[str] = None
    ) -> int:
        with self._data_lock:
            revoked = 0
            for sess in self.sessions.values():
                if sess.user_id != user_id or not sess.is_active:
                    continue
                if except_session_id and sess.id == except_session_id:
                    continue
                sess.is_active = False
                revoked += 1
            if revoked:
                self._persist_state()
            return revoked

    # security events
    def create_security_event(
        self,
        event_type: str,
        severity: str,
        description: str,
        *,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> SecurityEvent:
        with self._data_lock:
            event = SecurityEvent(
                id=str(uuid.uuid4()),
                event_type=event_type,
                severity=severity,
                description=description,
                user_id=user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
            )
            self.security_events[event.id] = event
            self._persist_state()
            return event

    def count_security_events(
        self, user_id: str, event_type: str, since: datetime
    ) -> int:
        with self._data_lock:
            return sum(
                1
                for e in self.security_events.values()
                if e.user_id == user_id
                and e.event_type == event_type
                and e.created_at >= since
            )

    def list_security_events(
        self,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        severity: Optional[str] = None,
        resolved: Optional[bool] = None,
        user_id: Optional[str] = None,
        event_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[SecurityEvent]:
        """Events matching every given filter, newest first."""
        with self._data_lock:
            results = [
                e
                for e in self.security_events.values()
                if (start is None or e.created_at >= start)
                and (end is None or e.created_at <= end)
                and (severity is None or e.severity == severity)
                and (resolved is None or e.resolved == resolved)
                and (user_id is None or e.user_id == user_id)
                and (event_type is None or e.event_type == event_type)
            ]
            results.sort(key=lambda e: e.created_at, reverse=True)
            return results[:limit] if limit is not None else results

    def get_security_event(self, event_id: str) -> Optional[SecurityEvent]:
        with self._data_lock:
            return self.security_events.get(event_id)

    def resolve_security_event(
        self, event_id: str, resolved_by: str
    ) -> Optional[SecurityEvent]:
        with self._data_lock:
            event = self.security_events.get(event_id)
            if not event:
                return None
            event.resolved = True
            event.resolved_at = utcnow()
            event.resolved_by = resolved_by
            self._persist_state()
            return event

    def delete_resolved_security_events(self, before: datetime) -> int:
        with self._data_lock:
            stale = [
                eid
                for eid, e in self.security_events.items()
                if e.resolved and e.created_at < before
            ]
            for eid in stale:
                self.security_events.pop(eid, None)
            if stale:
                self._persist_state()
            return len(stale)

    # audit
    def create_audit_log(
        self,
        action: str,
        status: str,
        *,
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditLog:
        with self._data_lock:
            entry = AuditLog(
                id=str(uuid.uuid4()),
                action=action,
                status=status,
                user_id=user_id,
                resource=resource,
                resource_id=resource_id,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
            )
            self.audit_logs.append(entry)
            self._persist_state()
            return entry

    def list_audit_logs(
        self,
        *,
        user_id: Optional[str] = None,
        action: Optional[str] = None,
        resource: Optional[str] = None,
        status: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> Tuple[List[AuditLog], int]:
        """Matching entries newest first, plus the total before paging."""
        with self._data_lock:
            results = [
                log
                for log in self.audit_logs
                if (user_id is None or log.user_id == user_id)
                and (action is None or log.action == action)
                and (resource is None or log.resource == resource)
                and (status is None or log.status == status)
                and (start is None or log.created_at >= start)
                and (end is None or log.created_at <= end)
            ]
            results.sort(key=lambda log: log.created_at, reverse=True)
            total = len(results)
            page = results[offset:]
            if limit is not None:
                page = page[:limit]
            return page, total

    def delete_audit_logs_before(self, before: datetime) -> int:
        with self._data_lock:
            kept = [log for log in self.audit_logs if log.created_at >= before]
            deleted = len(self.audit_logs) - len(kept)
            if deleted:
                self.audit_logs = kept
                self._persist_state()
            return deleted

    # review resources consulted by authorization
    def create_project(
        self, name: str, designer_id: str, client_id: Optional[str] = None
    ) -> Project:
        with self._data_lock:
            if designer_id not in self.users:
                raise ConstraintViolation("designer does not exist", {"designer_id": designer_id})
            project = Project(
                id=str(uuid.uuid4()), name=name, designer_id=designer_id, client_id=client_id
            )
            self.projects[project.id] = project
            self._persist_state()
            return project

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._data_lock:
            return self.projects.get(project_id)

    def create_art(self, project_id: str, title: str, author_id: Optional[str] = None) -> Art:
        with self._data_lock:
            if project_id not in self.projects:
                raise ConstraintViolation("project does not exist", {"project_id": project_id})
            art = Art(id=str(uuid.uuid4()), project_id=project_id, title=title, author_id=author_id)
            self.arts[art.id] = art
            self._persist_state()
            return art

    def get_art(self, art_id: str) -> Optional[Art]:
        with self._data_lock:
            return self.arts.get(art_id)

    def list_arts(self, project_id: str) -> List[Art]:
        with self._data_lock:
            return [a for a in self.arts.values() if a.project_id == project_id]

    def create_task(self, project_id: str, title: str) -> Task:
        with self._data_lock:
            if project_id not in self.projects:
                raise ConstraintViolation("project does not exist", {"project_id": project_id})
            task = Task(id=str(uuid.uuid4()), project_id=project_id, title=title)
            self.tasks[task.id] = task
            self._persist_state()
            return task

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._data_lock:
            return self.tasks.get(task_id)

    def create_feedback(self, art_id: str, author_id: str, content: str = "") -> Feedback:
        with self._data_lock:
            if art_id not in self.arts:
                raise ConstraintViolation("art does not exist", {"art_id": art_id})
            item = Feedback(
                id=str(uuid.uuid4()), art_id=art_id, author_id=author_id, content=content
            )
            self.feedback[item.id] = item
            self._persist_state()
            return item

    def get_feedback(self, feedback_id: str) -> Optional[Feedback]:
        with self._data_lock:
            return self.feedback.get(feedback_id)

    def create_approval(self, art_id: str, approver_id: str) -> Approval:
        with self._data_lock:
            if art_id not in self.arts:
                raise ConstraintViolation("art does not exist", {"art_id": art_id})
            item = Approval(id=str(uuid.uuid4()), art_id=art_id, approver_id=approver_id)
            self.approvals[item.id] = item
            self._persist_state()
            return item

    def get_approval(self, approval_id: str) -> Optional[Approval]:
        with self._data_lock:
            return self.approvals.get(approval_id)

    # snapshot
    @staticmethod
    def _serialize(obj: Any) -> dict:
        data = dataclasses.asdict(obj)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        return data

    @staticmethod
    def _deserialize(cls: Type[T], data: dict) -> T:
        values: Dict[str, Any] = {}
        for f in dataclasses.fields(cls):  # type: ignore[arg-type]
            if f.name not in data:
                continue
            raw = data[f.name]
            if isinstance(raw, str) and "datetime" in str(f.type):
                raw = ensure_aware(datetime.fromisoformat(raw))
            values[f.name] = raw
        return cls(**values)

    def _persist_state(self) -> None:
        state = {
            "users": [self._serialize(u) for u in self.users.values()],
            "credentials": [
                {"user_id": user_id, "password_hash": creds[0], "password_algo": creds[1]}
                for user_id, creds in self.credentials.items()
            ],
            "two_factor": [
                {"user_id": user_id, **record} for user_id, record in self.two_factor.items()
            ],
            "sessions": [self._serialize(s) for s in self.sessions.values()],
            "security_events": [self._serialize(e) for e in self.security_events.values()],
            "audit_logs": [self._serialize(log) for log in self.audit_logs],
            "projects": [self._serialize(p) for p in self.projects.values()],
            "arts": [self._serialize(a) for a in self.arts.values()],
            "tasks": [self._serialize(t) for t in self.tasks.values()],
            "feedback": [self._serialize(f) for f in self.feedback.values()],
            "approvals": [self._serialize(a) for a in self.approvals.values()],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {u["id"]: self._deserialize(User, u) for u in data.get("users", [])}
        self.credentials = {
            entry["user_id"]: (entry["password_hash"], entry.get("password_algo", ""))
            for entry in data.get("credentials", [])
        }
        self.two_factor = {}
        for entry in data.get("two_factor", []):
            record = dict(entry)
            self.two_factor[record.pop("user_id")] = record
        self.sessions = {
            s["id"]: self._deserialize(Session, s) for s in data.get("sessions", [])
        }
        self.security_events = {
            e["id"]: self._deserialize(SecurityEvent, e)
            for e in data.get("security_events", [])
        }
        self.audit_logs = [
            self._deserialize(AuditLog, log) for log in data.get("audit_logs", [])
        ]
        self.projects = {
            p["id"]: self._deserialize(Project, p) for p in data.get("projects", [])
        }
        self.arts = {a["id"]: self._deserialize(Art, a) for a in data.get("arts", [])}
        self.tasks = {t["id"]: self._deserialize(Task, t) for t in data.get("tasks", [])}
        self.feedback = {
            f["id"]: self._deserialize(Feedback, f) for f in data.get("feedback", [])
        }
        self.approvals = {
            a["id"]: self._deserialize(Approval, a) for a in data.get("approvals", [])
        }
        return True
