"""Tests for role tables, parsers and entity serialization."""

from __future__ import annotations

import pytest

from taskhub_v1.core.errors import InvalidCapabilityError, InvalidRoleError, ValidationError
from taskhub_v1.core.teams.models import (
    Actor,
    Project,
    ProjectMembership,
    Task,
    Team,
    TeamMembership,
)
from taskhub_v1.core.teams.roles import (
    PROJECT_ROLE_PERMISSIONS,
    TEAM_ROLE_PERMISSIONS,
    Capability,
    GlobalRole,
    ProjectRole,
    TeamRole,
    parse_capability,
    parse_global_role,
    parse_project_role,
    parse_team_role,
    team_permissions_for,
)


class TestPermissionTables:
    def test_every_team_role_has_a_bundle(self):
        assert set(TEAM_ROLE_PERMISSIONS) == set(TeamRole)

    def test_every_project_role_has_a_bundle(self):
        assert set(PROJECT_ROLE_PERMISSIONS) == set(ProjectRole)

    def test_manager_can_invite_member_cannot(self):
        assert team_permissions_for(TeamRole.MANAGER).invite is True
        assert team_permissions_for(TeamRole.MEMBER).invite is False
        assert team_permissions_for(TeamRole.MEMBER).view_all_tasks is True

    def test_only_lead_has_project_rights(self):
        for role, perms in PROJECT_ROLE_PERMISSIONS.items():
            expected = role == ProjectRole.LEAD
            assert perms.can_edit_project is expected
            assert perms.can_invite_members is expected

    def test_membership_permissions_follow_role(self):
        rec = TeamMembership(user_id="u1", role=TeamRole.MEMBER, joined_at=1.0)
        assert rec.permissions.invite is False
        rec.role = TeamRole.MANAGER
        assert rec.permissions.invite is True


class TestParsers:
    def test_parse_is_case_insensitive(self):
        assert parse_team_role("Manager") == TeamRole.MANAGER
        assert parse_project_role(" LEAD ") == ProjectRole.LEAD
        assert parse_global_role("admin") == GlobalRole.ADMIN
        assert parse_capability("DELETE") == Capability.DELETE

    def test_enum_passthrough(self):
        assert parse_team_role(TeamRole.OWNER) is TeamRole.OWNER

    def test_invalid_role(self):
        with pytest.raises(InvalidRoleError, match="team role"):
            parse_team_role("overlord")

    def test_invalid_capability_is_validation_and_value_error(self):
        with pytest.raises(InvalidCapabilityError) as exc_info:
            parse_capability("teleport")
        assert isinstance(exc_info.value, ValidationError)
        assert isinstance(exc_info.value, ValueError)


class TestSerialization:
    def test_actor_defaults_to_employee(self):
        actor = Actor("u1")
        assert actor.global_role == GlobalRole.EMPLOYEE
        assert actor.is_admin is False
        assert actor.to_dict() == {"id": "u1", "global_role": "employee"}

    def test_team_roundtrip(self):
        team = Team(id="t1", name="Core", owner_id="u1", created_at=1000.0)
        team.members["u1"] = TeamMembership("u1", TeamRole.OWNER, 1000.0)
        team.members["u2"] = TeamMembership("u2", TeamRole.MEMBER, 1001.0, invited_by="u1")
        d = team.to_dict()
        assert [m["user_id"] for m in d["members"]] == ["u1", "u2"]
        assert d["members"][1]["permissions"]["invite"] is False
        back = Team.from_dict(d)
        assert back.owner_id == "u1"
        assert back.member_role("u2") == TeamRole.MEMBER
        assert back.members["u2"].invited_by == "u1"

    def test_project_roundtrip(self):
        project = Project(id="p1", name="API", owner_id="u1", created_at=1.0, team_id="t1")
        project.members["u3"] = ProjectMembership("u3", ProjectRole.TESTER, 2.0)
        back = Project.from_dict(project.to_dict())
        assert back.team_id == "t1"
        assert back.visibility.value == "team"
        assert back.members["u3"].role == ProjectRole.TESTER

    def test_task_roundtrip(self):
        task = Task(
            id="x1", title="Fix", created_by="u4", created_at=1.0,
            project_id="p1", assigned_to="u3", watchers=["u4", "u3"],
        )
        back = Task.from_dict(task.to_dict())
        assert back.assigned_to == "u3"
        assert back.is_watcher("u4")
        assert back.status == "todo"
