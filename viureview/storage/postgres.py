from __future__ import annotations

import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional, Tuple

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from viureview.logging import get_logger
from viureview.storage.common import (
    build_secret_cipher,
    decrypt_secret,
    encrypt_secret,
    ensure_aware,
    parse_json_meta,
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

REQUIRED_TABLES = [
    "app_user",
    "user_auth_credential",
    "user_two_factor",
    "two_factor_backup_code",
    "auth_session",
    "security_event",
    "audit_log",
    "project",
    "art",
    "task",
    "feedback",
    "approval",
]


class PostgresStore:
    """Postgres-backed store for principals, sessions and the security trail."""

    def __init__(self, dsn: str, fs_root: str, *, mfa_encryption_key: str) -> None:
        self.dsn = dsn
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self.logger = get_logger(__name__)
        self._secret_cipher = build_secret_cipher(mfa_encryption_key)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=2,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._verify_required_schema()

    def _connect(self):
        return self.pool.connection()

    def close(self) -> None:
        self.pool.close()

    def _verify_required_schema(self) -> None:
        """Ensure the auth tables exist before serving requests."""

        with self._connect() as conn:
            missing_tables = []
            for table in REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)

        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Apply scripts/schema.sql first.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    # row mapping
    @staticmethod
    def _user_from_row(row: dict) -> User:
        return User(
            id=str(row["id"]),
            email=row["email"],
            name=row.get("name"),
            role=row.get("role", "DESIGNER"),
            created_at=ensure_aware(row.get("created_at")) or utcnow(),
            is_active=row.get("is_active", True),
            two_factor_enabled=bool(row.get("two_factor_enabled", False)),
            meta=parse_json_meta(row.get("meta")),
        )

    @staticmethod
    def _session_from_row(row: dict) -> Session:
        raw_ip = row.get("ip_addr")
        return Session(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            token_hash=row["token_hash"],
            created_at=ensure_aware(row["created_at"]),
            expires_at=ensure_aware(row["expires_at"]),
            is_active=bool(row.get("is_active", True)),
            user_agent=row.get("user_agent"),
            ip_addr=str(raw_ip) if raw_ip is not None else None,
        )

    @staticmethod
    def _event_from_row(row: dict) -> SecurityEvent:
        return SecurityEvent(
            id=str(row["id"]),
            event_type=row["event_type"],
            severity=row["severity"],
            description=row["description"],
            created_at=ensure_aware(row["created_at"]),
            user_id=str(row["user_id"]) if row.get("user_id") else None,
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
            details=parse_json_meta(row.get("details")),
            resolved=bool(row.get("resolved", False)),
            resolved_at=ensure_aware(row.get("resolved_at")),
            resolved_by=str(row["resolved_by"]) if row.get("resolved_by") else None,
        )

    @staticmethod
    def _audit_from_row(row: dict) -> AuditLog:
        return AuditLog(
            id=str(row["id"]),
            action=row["action"],
            status=row["status"],
            created_at=ensure_aware(row["created_at"]),
            user_id=str(row["user_id"]) if row.get("user_id") else None,
            resource=row.get("resource"),
            resource_id=row.get("resource_id"),
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
            details=parse_json_meta(row.get("details")),
        )

    # users
    def create_user(
        self,
        email: str,
        name: Optional[str] = None,
        *,
        role: str = "DESIGNER",
        is_active: bool = True,
        meta: Optional[dict] = None,
    ) -> User:
        user_id = str(uuid.uuid4())
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO app_user (id, email, name, role, is_active, meta)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        user_id,
                        email,
                        name,
                        role,
                        is_active,
                        json.dumps(meta) if meta else None,
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return self._user_from_row(row)

    def get_user(self, user_id: str) -> Optional[User]:
        row = self._fetch_by_id("app_user", user_id)
        return self._user_from_row(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_user WHERE email = %s", (email,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def count_users(self, *, two_factor_enabled: Optional[bool] = None) -> int:
        with self._connect() as conn:
            if two_factor_enabled is None:
                row = conn.execute("SELECT count(*) AS n FROM app_user").fetchone()
            else:
                row = conn.execute(
                    "SELECT count(*) AS n FROM app_user WHERE two_factor_enabled = %s",
                    (two_factor_enabled,),
                ).fetchone()
        return int(row["n"]) if row else 0

    def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET role = %s, updated_at = now() WHERE id = %s RETURNING *",
                (role, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def deactivate_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE app_user SET is_active = FALSE, updated_at = now() WHERE id = %s RETURNING *",
                (user_id,),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO user_auth_credential (user_id, password_hash, password_algo, last_updated_at)
                    VALUES (%s, %s, %s, now())
                    ON CONFLICT (user_id) DO UPDATE
                    SET password_hash = EXCLUDED.password_hash,
                        password_algo = EXCLUDED.password_algo,
                        last_updated_at = now()
                    """,
                    (user_id, password_hash, password_algo),
                )
        except errors.ForeignKeyViolation:
            raise MissingRecord("user", user_id)

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT password_hash, password_algo FROM user_auth_credential WHERE user_id = %s",
                (user_id,),
            ).fetchone()
        if not row:
            return None
        return str(row["password_hash"]), str(row["password_algo"])

    # two-factor
    def enable_two_factor(
        self, user_id: str, secret: str, backup_code_hashes: List[str]
    ) -> None:
        encrypted = encrypt_secret(self._secret_cipher, secret)
        with self._connect() as conn:
            updated = conn.execute(
                "UPDATE app_user SET two_factor_enabled = TRUE, updated_at = now() WHERE id = %s",
                (user_id,),
            )
            if updated.rowcount == 0:
                raise MissingRecord("user", user_id)
            conn.execute(
                """
                INSERT INTO user_two_factor (user_id, secret, enabled_at)
                VALUES (%s, %s, now())
                ON CONFLICT (user_id) DO UPDATE
                SET secret = EXCLUDED.secret, enabled_at = EXCLUDED.enabled_at
                """,
                (user_id, encrypted),
            )
            conn.execute(
                "DELETE FROM two_factor_backup_code WHERE user_id = %s", (user_id,)
            )
            with conn.cursor() as cur:
                cur.executemany(
                    "INSERT INTO two_factor_backup_code (user_id, code_hash) VALUES (%s, %s)",
                    [(user_id, code_hash) for code_hash in backup_code_hashes],
                )

    def get_two_factor_config(self, user_id: str) -> Optional[TwoFactorConfig]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM user_two_factor WHERE user_id = %s", (user_id,)
            ).fetchone()
            if not row:
                return None
            codes = conn.execute(
                "SELECT code_hash FROM two_factor_backup_code WHERE user_id = %s ORDER BY id",
                (user_id,),
            ).fetchall()
        return TwoFactorConfig(
            user_id=str(row["user_id"]),
            secret=decrypt_secret(self._secret_cipher, row["secret"]) or "",
            backup_code_hashes=[c["code_hash"] for c in codes],
            enabled_at=ensure_aware(row.get("enabled_at")) or utcnow(),
        )

    def replace_backup_codes(self, user_id: str, backup_code_hashes: List[str]) -> None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 AS present FROM user_two_factor WHERE user_id = %s FOR UPDATE",
                (user_id,),
            ).fetchone()
            if not row:
                raise MissingRecord("two_factor", user_id)
            conn.execute(
                "DELETE FROM two_factor_backup_code WHERE user_id = %s", (user_id,)
            )
            with conn.cursor() as cur:
                cur.executemany(
                    "INSERT INTO two_factor_backup_code (user_id, code_hash) VALUES (%s, %s)",
                    [(user_id, code_hash) for code_hash in backup_code_hashes],
                )

    def consume_backup_code(self, user_id: str, code_hash: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                """
                DELETE FROM two_factor_backup_code
                WHERE id = (
                    SELECT id FROM two_factor_backup_code
                    WHERE user_id = %s AND code_hash = %s
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING id
                """,
                (user_id, code_hash),
            ).fetchone()
        return row is not None

    def disable_two_factor(self, user_id: str) -> None:
        with self._connect() as conn:
            updated = conn.execute(
                "UPDATE app_user SET two_factor_enabled = FALSE, updated_at = now() WHERE id = %s",
                (user_id,),
            )
            if updated.rowcount == 0:
                raise MissingRecord("user", user_id)
            conn.execute(
                "DELETE FROM two_factor_backup_code WHERE user_id = %s", (user_id,)
            )
            conn.execute("DELETE FROM user_two_factor WHERE user_id = %s", (user_id,))

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
        sess = Session.new(
            user_id, token_hash, ttl_seconds, user_agent=user_agent, ip_addr=ip_addr
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO auth_session (id, user_id, token_hash, created_at, expires_at, is_active, user_agent, ip_addr)
                    VALUES (%s, %s, %s, %s, %s, TRUE, %s, %s)
                    """,
                    (
                        sess.id,
                        sess.user_id,
                        token_hash,
                        sess.created_at,
                        sess.expires_at,
                        user_agent,
                        ip_addr,
                    ),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user does not exist", {"user_id": user_id})
        return sess

    def get_session(self, session_id: str) -> Optional[Session]:
        try:
            uuid.UUID(session_id)
        except (TypeError, ValueError):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM auth_session WHERE id = %s", (session_id,)
            ).fetchone()
        return self._session_from_row(row) if row else None

    def list_sessions(self, user_id: str, *, active: Optional[bool] = None) -> List[Session]:
        with self._connect() as conn:
            if active is None:
                rows = conn.execute(
                    "SELECT * FROM auth_session WHERE user_id = %s ORDER BY created_at DESC",
                    (user_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM auth_session WHERE user_id = %s AND is_active = %s ORDER BY created_at DESC",
                    (user_id, active),
                ).fetchall()
        return [self._session_from_row(row) for row in rows]

    def deactivate_session(self, session_id: str) -> bool:
        try:
            uuid.UUID(session_id)
        except (TypeError, ValueError):
            return False
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE auth_session SET is_active = FALSE WHERE id = %s",
                (session_id,),
            )
            return result.rowcount > 0

    def deactivate_user_sessions(
        self, user_id: str, *, except_session_id: Optional[str] = None
    ) -> int:
        with self._connect() as conn:
            if except_session_id:
                result = conn.execute(
                    "UPDATE auth_session SET is_active = FALSE WHERE user_id = %s AND is_active AND id <> %s",
                    (user_id, except_session_id),
                )
            else:
                result = conn.execute(
                    "UPDATE auth_session SET is_active = FALSE WHERE user_id = %s AND is_active",
                    (user_id,),
                )
            return result.rowcount

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
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO security_event (id, event_type, severity, description, user_id, ip_address, user_agent, details)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    str(uuid.uuid4()),
                    event_type,
                    severity,
                    description,
                    user_id,
                    ip_address,
                    user_agent,
                    json.dumps(details) if details else None,
                ),
            ).fetchone()
        return self._event_from_row(row)

    def count_security_events(
        self, user_id: str, event_type: str, since: datetime
    ) -> int:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT count(*) AS n FROM security_event
                WHERE user_id = %s AND event_type = %s AND created_at >= %s
                """,
                (user_id, event_type, since),
            ).fetchone()
        return int(row["n"]) if row else 0

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
        clauses: list[str] = []
        params: list[Any] = []
        for column, op, value in (
            ("created_at", ">=", start),
            ("created_at", "<=", end),
            ("severity", "=", severity),
            ("resolved", "=", resolved),
            ("user_id", "=", user_id),
            ("event_type", "=", event_type),
        ):
            if value is not None:
                clauses.append(f"{column} {op} %s")
                params.append(value)
        query = "SELECT * FROM security_event"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC"
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._event_from_row(row) for row in rows]

    def get_security_event(self, event_id: str) -> Optional[SecurityEvent]:
        try:
            uuid.UUID(event_id)
        except (TypeError, ValueError):
            return None
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM security_event WHERE id = %s", (event_id,)
            ).fetchone()
        return self._event_from_row(row) if row else None

    def resolve_security_event(
        self, event_id: str, resolved_by: str
    ) -> Optional[SecurityEvent]:
        try:
            uuid.UUID(event_id)
        except (TypeError, ValueError):
            return None
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE security_event
                SET resolved = TRUE, resolved_at = now(), resolved_by = %s
                WHERE id = %s
                RETURNING *
                """,
                (resolved_by, event_id),
            ).fetchone()
        return self._event_from_row(row) if row else None

    def delete_resolved_security_events(self, before: datetime) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM security_event WHERE resolved AND created_at < %s",
                (before,),
            )
            return result.rowcount

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
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO audit_log (id, action, status, user_id, resource, resource_id, ip_address, user_agent, details)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    str(uuid.uuid4()),
                    action,
                    status,
                    user_id,
                    resource,
                    resource_id,
                    ip_address,
                    user_agent,
                    json.dumps(details) if details else None,
                ),
            ).fetchone()
        return self._audit_from_row(row)

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
        clauses: list[str] = []
        params: list[Any] = []
        for column, op, value in (
            ("user_id", "=", user_id),
            ("action", "=", action),
            ("resource", "=", resource),
            ("status", "=", status),
            ("created_at", ">=", start),
            ("created_at", "<=", end),
        ):
            if value is not None:
                clauses.append(f"{column} {op} %s")
                params.append(value)
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        page_query = f"SELECT * FROM audit_log{where} ORDER BY created_at DESC OFFSET %s"
        page_params = [*params, offset]
        if limit is not None:
            page_query += " LIMIT %s"
            page_params.append(limit)
        with self._connect() as conn:
            total_row = conn.execute(
                f"SELECT count(*) AS n FROM audit_log{where}", params
            ).fetchone()
            rows = conn.execute(page_query, page_params).fetchall()
        return [self._audit_from_row(row) for row in rows], int(total_row["n"]) if total_row else 0

    def delete_audit_logs_before(self, before: datetime) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM audit_log WHERE created_at < %s", (before,)
            )
            return result.rowcount

    # review resources consulted by authorization
    def create_project(
        self, name: str, designer_id: str, client_id: Optional[str] = None
    ) -> Project:
        project = Project(
            id=str(uuid.uuid4()), name=name, designer_id=designer_id, client_id=client_id
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO project (id, name, designer_id, client_id, created_at) VALUES (%s, %s, %s, %s, %s)",
                    (project.id, name, designer_id, client_id, project.created_at),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("designer does not exist", {"designer_id": designer_id})
        return project

    def get_project(self, project_id: str) -> Optional[Project]:
        row = self._fetch_by_id("project", project_id)
        if not row:
            return None
        return Project(
            id=str(row["id"]),
            name=row["name"],
            designer_id=str(row["designer_id"]),
            client_id=str(row["client_id"]) if row.get("client_id") else None,
            created_at=ensure_aware(row["created_at"]),
        )

    def create_art(self, project_id: str, title: str, author_id: Optional[str] = None) -> Art:
        art = Art(id=str(uuid.uuid4()), project_id=project_id, title=title, author_id=author_id)
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO art (id, project_id, title, author_id, created_at) VALUES (%s, %s, %s, %s, %s)",
                    (art.id, project_id, title, author_id, art.created_at),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("project does not exist", {"project_id": project_id})
        return art

    def get_art(self, art_id: str) -> Optional[Art]:
        row = self._fetch_by_id("art", art_id)
        return self._art_from_row(row) if row else None

    def list_arts(self, project_id: str) -> List[Art]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM art WHERE project_id = %s ORDER BY created_at", (project_id,)
            ).fetchall()
        return [self._art_from_row(row) for row in rows]

    @staticmethod
    def _art_from_row(row: dict) -> Art:
        return Art(
            id=str(row["id"]),
            project_id=str(row["project_id"]),
            title=row["title"],
            author_id=str(row["author_id"]) if row.get("author_id") else None,
            created_at=ensure_aware(row["created_at"]),
        )

    def create_task(self, project_id: str, title: str) -> Task:
        task = Task(id=str(uuid.uuid4()), project_id=project_id, title=title)
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO task (id, project_id, title, created_at) VALUES (%s, %s, %s, %s)",
                    (task.id, project_id, title, task.created_at),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("project does not exist", {"project_id": project_id})
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        row = self._fetch_by_id("task", task_id)
        if not row:
            return None
        return Task(
            id=str(row["id"]),
            project_id=str(row["project_id"]),
            title=row["title"],
            created_at=ensure_aware(row["created_at"]),
        )

    def create_feedback(self, art_id: str, author_id: str, content: str = "") -> Feedback:
        item = Feedback(id=str(uuid.uuid4()), art_id=art_id, author_id=author_id, content=content)
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO feedback (id, art_id, author_id, content, created_at) VALUES (%s, %s, %s, %s, %s)",
                    (item.id, art_id, author_id, content, item.created_at),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("art does not exist", {"art_id": art_id})
        return item

    def get_feedback(self, feedback_id: str) -> Optional[Feedback]:
        row = self._fetch_by_id("feedback", feedback_id)
        if not row:
            return None
        return Feedback(
            id=str(row["id"]),
            art_id=str(row["art_id"]),
            author_id=str(row["author_id"]),
            content=row.get("content") or "",
            created_at=ensure_aware(row["created_at"]),
        )

    def create_approval(self, art_id: str, approver_id: str) -> Approval:
        item = Approval(id=str(uuid.uuid4()), art_id=art_id, approver_id=approver_id)
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO approval (id, art_id, approver_id, status, created_at) VALUES (%s, %s, %s, %s, %s)",
                    (item.id, art_id, approver_id, item.status, item.created_at),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("art does not exist", {"art_id": art_id})
        return item

    def get_approval(self, approval_id: str) -> Optional[Approval]:
        row = self._fetch_by_id("approval", approval_id)
        if not row:
            return None
        return Approval(
            id=str(row["id"]),
            art_id=str(row["art_id"]),
            approver_id=str(row["approver_id"]),
            status=row.get("status", "PENDENTE"),
            created_at=ensure_aware(row["created_at"]),
        )

    def _fetch_by_id(self, table: str, record_id: str) -> Optional[dict]:
        if table not in REQUIRED_TABLES:
            raise ValueError(f"unknown table {table}")
        try:
            uuid.UUID(record_id)
        except (TypeError, ValueError):
            return None
        with self._connect() as conn:
            return conn.execute(
                f"SELECT * FROM {table} WHERE id = %s", (record_id,)
            ).fetchone()
