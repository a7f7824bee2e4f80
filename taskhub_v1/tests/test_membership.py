"""Tests for membership mutators and entity constructors."""

from __future__ import annotations

import pytest

from taskhub_v1.core.errors import (
    AlreadyMember,
    InvalidRoleError,
    NotAMember,
    OwnerProtected,
    ValidationError,
)
from taskhub_v1.core.teams import membership
from taskhub_v1.core.teams.models import Actor, ProjectVisibility
from taskhub_v1.core.teams.roles import ProjectRole, TeamRole


@pytest.fixture
def team():
    return membership.new_team(Actor("u1"), "  Core  ", "platform team")


@pytest.fixture
def project(team):
    return membership.new_project(Actor("u1"), "API", team=team)


class TestConstructors:
    def test_new_team_inserts_owner_record(self, team):
        assert team.name == "Core"
        assert team.owner_id == "u1"
        assert team.member_role("u1") == TeamRole.OWNER
        assert team.version == 0

    def test_new_project_inserts_creator_as_lead(self, team, project):
        assert project.owner_id == "u1"
        assert project.team_id == team.id
        assert project.member_role("u1") == ProjectRole.LEAD
        assert project.visibility == ProjectVisibility.TEAM

    def test_new_project_rejects_unknown_visibility(self):
        with pytest.raises(ValidationError, match="visibility"):
            membership.new_project(Actor("u1"), "API", visibility="galactic")

    def test_new_task_defaults_assignee_to_creator(self, project):
        task = membership.new_task(Actor("u4"), "Fix login", project=project)
        assert task.assigned_to == "u4"
        assert task.assigned_by == "u4"
        assert task.watchers == ["u4"]
        assert task.project_id == project.id
        assert task.team_id == project.team_id

    def test_new_task_assignee_joins_watchers(self):
        task = membership.new_task(Actor("u4"), "Fix", assigned_to="u3")
        assert task.assigned_to == "u3"
        assert task.watchers == ["u4", "u3"]
        assert task.project_id is None
        assert task.team_id is None

    def test_new_task_rejects_unknown_status(self):
        with pytest.raises(ValidationError, match="status"):
            membership.new_task(Actor("u4"), "Fix", status="someday")

    def test_ids_are_unique(self):
        assert len({membership.new_id() for _ in range(100)}) == 100


class TestTeamMembership:
    def test_add_member(self, team):
        rec = membership.add_team_member(team, "u2", "member", invited_by="u1")
        assert rec.role == TeamRole.MEMBER
        assert rec.invited_by == "u1"
        assert team.is_member("u2")

    def test_add_twice_raises_without_duplicating(self, team):
        membership.add_team_member(team, "u2")
        with pytest.raises(AlreadyMember):
            membership.add_team_member(team, "u2", TeamRole.MANAGER)
        assert len(team.members) == 2
        assert team.member_role("u2") == TeamRole.MEMBER

    def test_owner_role_reserved(self, team):
        with pytest.raises(InvalidRoleError):
            membership.add_team_member(team, "u2", TeamRole.OWNER)
        assert not team.is_member("u2")

    def test_remove_twice_is_noop(self, team):
        membership.add_team_member(team, "u2")
        assert membership.remove_team_member(team, "u2") is not None
        assert membership.remove_team_member(team, "u2") is None
        assert not team.is_member("u2")

    def test_remove_owner_protected(self, team):
        with pytest.raises(OwnerProtected):
            membership.remove_team_member(team, "u1")
        assert team.member_role("u1") == TeamRole.OWNER

    def test_update_owner_role_protected(self, team):
        before = team.members["u1"].permissions
        with pytest.raises(OwnerProtected):
            membership.update_team_member_role(team, "u1", "member")
        assert team.member_role("u1") == TeamRole.OWNER
        assert team.members["u1"].permissions == before

    def test_update_role_changes_bundle(self, team):
        membership.add_team_member(team, "u2")
        rec = membership.update_team_member_role(team, "u2", "manager")
        assert rec.role == TeamRole.MANAGER
        assert rec.permissions.invite is True

    def test_update_non_member(self, team):
        with pytest.raises(NotAMember):
            membership.update_team_member_role(team, "u7", "manager")

    def test_promote_to_owner_rejected(self, team):
        membership.add_team_member(team, "u2")
        with pytest.raises(InvalidRoleError):
            membership.update_team_member_role(team, "u2", "owner")

    def test_invalid_role_string(self, team):
        with pytest.raises(InvalidRoleError):
            membership.add_team_member(team, "u2", "boss")


class TestProjectMembership:
    def test_add_and_duplicate(self, project):
        membership.add_project_member(project, "u3", "tester")
        with pytest.raises(AlreadyMember):
            membership.add_project_member(project, "u3")
        assert project.member_role("u3") == ProjectRole.TESTER

    def test_owner_protected(self, project):
        with pytest.raises(OwnerProtected):
            membership.remove_project_member(project, "u1")
        with pytest.raises(OwnerProtected):
            membership.update_project_member_role(project, "u1", "client")

    def test_non_owner_lead_can_be_demoted(self, project):
        membership.add_project_member(project, "u3", ProjectRole.LEAD)
        rec = membership.update_project_member_role(project, "u3", "developer")
        assert rec.permissions.can_edit_project is False

    def test_remove_non_member_is_noop(self, project):
        assert membership.remove_project_member(project, "u8") is None

    def test_update_non_member(self, project):
        with pytest.raises(NotAMember):
            membership.update_project_member_role(project, "u8", "lead")


class TestTaskRelationships:
    def test_reassign_moves_assignee_and_keeps_watchers(self):
        task = membership.new_task(Actor("u4"), "Fix", assigned_to="u3")
        membership.assign_task(task, "u5", assigned_by="u4")
        assert task.assigned_to == "u5"
        assert task.watchers == ["u4", "u3", "u5"]

    def test_unassign(self):
        task = membership.new_task(Actor("u4"), "Fix")
        membership.unassign_task(task)
        assert task.assigned_to is None
        assert task.assigned_at is None

    def test_watchers_idempotent(self):
        task = membership.new_task(Actor("u4"), "Fix")
        membership.add_watcher(task, "u6")
        membership.add_watcher(task, "u6")
        assert task.watchers.count("u6") == 1
        membership.remove_watcher(task, "u6")
        membership.remove_watcher(task, "u6")
        assert "u6" not in task.watchers


class TestArchive:
    def test_archive_roundtrip(self, project):
        membership.archive_project(project, "u1")
        assert project.is_archived
        assert project.archived_by == "u1"
        membership.unarchive_project(project)
        assert not project.is_archived
        assert project.archived_at is None
