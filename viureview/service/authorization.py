from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional

from viureview.logging import get_logger
from viureview.service.errors import BadRequestError, ForbiddenError, NotFoundError
from viureview.storage.models import Project, Role, User

if TYPE_CHECKING:
    from viureview.service.auth import AuthStore
    from viureview.service.security import SecurityMonitor

logger = get_logger(__name__)

OWNABLE_KINDS = ("user", "project")


def _is_admin(principal: User) -> bool:
    return principal.role == Role.ADMIN.value


def _role_value(role: Role | str) -> str:
    return role.value if isinstance(role, Role) else str(role)


class AuthorizationGate:
    """Pre-conditions evaluated after authentication and before a handler runs.

    Each check either returns or raises; none of them change resource state.
    ADMIN principals pass every ownership, project and author check.
    """

    def __init__(
        self, store: "AuthStore", security: Optional["SecurityMonitor"] = None
    ) -> None:
        self.store = store
        self.security = security

    def require_role(
        self,
        principal: User,
        allowed: Iterable[Role | str],
        *,
        action: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        allowed_values = {_role_value(role) for role in allowed}
        if principal.role in allowed_values:
            return
        logger.warning(
            "role_check_failed",
            user_id=principal.id,
            role=principal.role,
            allowed=sorted(allowed_values),
            action=action,
        )
        # reaching an admin-only operation is recorded as an escalation attempt
        if self.security and allowed_values == {Role.ADMIN.value}:
            self.security.track_privilege_escalation(
                principal.id, action or "admin_operation", ip_address
            )
        raise ForbiddenError("insufficient permissions")

    def require_ownership(self, principal: User, resource_kind: str, resource_id: str) -> None:
        if resource_kind not in OWNABLE_KINDS:
            raise ValueError(f"unsupported resource kind {resource_kind!r}")
        if _is_admin(principal):
            return
        if resource_kind == "user":
            if principal.id != resource_id:
                raise ForbiddenError("you can only access your own profile")
            return
        project = self.store.get_project(resource_id)
        if not project:
            raise NotFoundError("project not found", detail={"project_id": resource_id})
        self._check_membership(principal, project)

    def resolve_project_id(
        self,
        path_params: Mapping[str, Any],
        body: Optional[Mapping[str, Any]] = None,
    ) -> Optional[str]:
        """Project id from the path, then the body, then by walking from an art or task id."""
        if path_params.get("project_id"):
            return str(path_params["project_id"])
        if body and body.get("project_id"):
            return str(body["project_id"])
        resource_id = path_params.get("id")
        if not resource_id:
            return None
        art = self.store.get_art(str(resource_id))
        if art:
            return art.project_id
        task = self.store.get_task(str(resource_id))
        if task:
            return task.project_id
        return None

    def require_project_access(
        self,
        principal: User,
        path_params: Mapping[str, Any],
        body: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Project]:
        if _is_admin(principal):
            return None
        project_id = self.resolve_project_id(path_params, body)
        if not project_id:
            raise BadRequestError("project id not provided")
        project = self.store.get_project(project_id)
        if not project:
            raise NotFoundError("project not found", detail={"project_id": project_id})
        self._check_membership(principal, project)
        return project

    def require_author(self, principal: User, resource_id: str) -> None:
        if _is_admin(principal):
            return
        feedback = self.store.get_feedback(resource_id)
        if feedback:
            if feedback.author_id != principal.id:
                raise ForbiddenError("you are not the author of this feedback")
            return
        approval = self.store.get_approval(resource_id)
        if approval:
            if approval.approver_id != principal.id:
                raise ForbiddenError("you are not the author of this approval")
            return
        raise NotFoundError("resource not found", detail={"id": resource_id})

    @staticmethod
    def _check_membership(principal: User, project: Project) -> None:
        if principal.id not in (project.designer_id, project.client_id):
            raise ForbiddenError(
                "you do not have access to this project",
                detail={"project_id": project.id},
            )
