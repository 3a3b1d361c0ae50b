"""Tests for role, ownership, project-membership and authorship guards."""

import pytest

from viureview.service.errors import BadRequestError, ForbiddenError, NotFoundError
from viureview.storage.models import Role, SecurityEventType


@pytest.fixture
def gate(runtime):
    return runtime.authorization


@pytest.fixture
def people(make_user):
    return {
        "designer": make_user("designer@example.com", role=Role.DESIGNER.value),
        "client": make_user("client@example.com", role=Role.CLIENT.value),
        "outsider": make_user("outsider@example.com", role=Role.DESIGNER.value),
        "admin": make_user("admin@example.com", role=Role.ADMIN.value),
    }


@pytest.fixture
def project(store, people):
    return store.create_project("Label refresh", people["designer"].id, people["client"].id)


@pytest.fixture
def art(store, project, people):
    return store.create_art(project.id, "Front label v1", people["designer"].id)


class TestRequireRole:
    def test_allowed_role_passes(self, gate, people):
        gate.require_role(people["designer"], [Role.DESIGNER, Role.CLIENT])

    def test_other_role_forbidden(self, gate, people):
        with pytest.raises(ForbiddenError):
            gate.require_role(people["client"], [Role.DESIGNER])

    def test_admin_only_denial_is_recorded_as_escalation(self, gate, people, store):
        with pytest.raises(ForbiddenError):
            gate.require_role(
                people["designer"], [Role.ADMIN], action="GET /v1/security/stats", ip_address="10.1.1.1"
            )

        events = store.list_security_events(user_id=people["designer"].id)
        assert [e.event_type for e in events] == [
            SecurityEventType.PRIVILEGE_ESCALATION_ATTEMPT.value
        ]
        assert events[0].severity == "CRITICAL"
        assert events[0].details == {"attempted_action": "GET /v1/security/stats"}

    def test_non_admin_denial_is_not_escalation(self, gate, people, store):
        with pytest.raises(ForbiddenError):
            gate.require_role(people["client"], [Role.DESIGNER])

        assert store.list_security_events(user_id=people["client"].id) == []


class TestRequireOwnership:
    def test_own_profile(self, gate, people):
        gate.require_ownership(people["client"], "user", people["client"].id)

    def test_foreign_profile_forbidden(self, gate, people):
        with pytest.raises(ForbiddenError):
            gate.require_ownership(people["client"], "user", people["designer"].id)

    def test_admin_bypasses(self, gate, people, project):
        gate.require_ownership(people["admin"], "user", people["designer"].id)
        gate.require_ownership(people["admin"], "project", project.id)

    def test_project_members(self, gate, people, project):
        gate.require_ownership(people["designer"], "project", project.id)
        gate.require_ownership(people["client"], "project", project.id)

    def test_project_outsider_forbidden(self, gate, people, project):
        with pytest.raises(ForbiddenError):
            gate.require_ownership(people["outsider"], "project", project.id)

    def test_missing_project(self, gate, people):
        with pytest.raises(NotFoundError):
            gate.require_ownership(people["designer"], "project", "no-such-project")

    def test_unknown_kind_is_a_programming_error(self, gate, people):
        with pytest.raises(ValueError):
            gate.require_ownership(people["designer"], "invoice", "x")


class TestProjectAccess:
    def test_project_id_from_path(self, gate, people, project):
        found = gate.require_project_access(people["client"], {"project_id": project.id})

        assert found.id == project.id

    def test_project_id_from_body(self, gate, people, project):
        found = gate.require_project_access(
            people["designer"], {}, {"project_id": project.id}
        )

        assert found.id == project.id

    def test_project_id_via_art(self, gate, people, project, art):
        found = gate.require_project_access(people["client"], {"id": art.id})

        assert found.id == project.id

    def test_project_id_via_task(self, gate, people, project, store):
        task = store.create_task(project.id, "Export print files")

        found = gate.require_project_access(people["designer"], {"id": task.id})

        assert found.id == project.id

    def test_outsider_forbidden(self, gate, people, art):
        with pytest.raises(ForbiddenError):
            gate.require_project_access(people["outsider"], {"id": art.id})

    def test_unresolvable_id_is_bad_request(self, gate, people):
        with pytest.raises(BadRequestError):
            gate.require_project_access(people["designer"], {"id": "nothing-here"})

    def test_no_id_is_bad_request(self, gate, people):
        with pytest.raises(BadRequestError):
            gate.require_project_access(people["designer"], {}, None)

    def test_admin_bypasses(self, gate, people):
        assert gate.require_project_access(people["admin"], {}) is None


class TestRequireAuthor:
    def test_feedback_author(self, gate, store, people, art):
        feedback = store.create_feedback(art.id, people["client"].id, "Bigger logo")

        gate.require_author(people["client"], feedback.id)
        with pytest.raises(ForbiddenError):
            gate.require_author(people["designer"], feedback.id)

    def test_approval_author(self, gate, store, people, art):
        approval = store.create_approval(art.id, people["client"].id)

        gate.require_author(people["client"], approval.id)
        with pytest.raises(ForbiddenError):
            gate.require_author(people["outsider"], approval.id)

    def test_admin_bypasses(self, gate, store, people, art):
        feedback = store.create_feedback(art.id, people["client"].id, "ok")

        gate.require_author(people["admin"], feedback.id)

    def test_missing_resource(self, gate, people):
        with pytest.raises(NotFoundError):
            gate.require_author(people["designer"], "missing")
