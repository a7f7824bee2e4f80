"""Roles, capabilities and the role -> permission lookup tables.

Permission bundles are never computed ad hoc at a mutation site: every
membership record derives its bundle from the tables below, so adding a
role is a single table edit.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Union

from taskhub_v1.core.errors import InvalidCapabilityError, InvalidRoleError


class GlobalRole(str, enum.Enum):
    """Account-wide role supplied by the identity provider."""

    ADMIN = "admin"
    TEAM_MANAGER = "team_manager"
    EMPLOYEE = "employee"
    CLIENT = "client"


class TeamRole(str, enum.Enum):
    OWNER = "owner"
    MANAGER = "manager"
    MEMBER = "member"


class ProjectRole(str, enum.Enum):
    LEAD = "lead"
    DEVELOPER = "developer"
    DESIGNER = "designer"
    TESTER = "tester"
    CLIENT = "client"


class Capability(str, enum.Enum):
    """Named access classes checked against an entity."""

    READ = "read"
    MANAGE = "manage"
    INVITE = "invite"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class TeamPermissions:
    invite: bool = False
    manage_projects: bool = False
    view_all_tasks: bool = True
    manage_tasks: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "invite": self.invite,
            "manage_projects": self.manage_projects,
            "view_all_tasks": self.view_all_tasks,
            "manage_tasks": self.manage_tasks,
        }


@dataclass(frozen=True)
class ProjectPermissions:
    can_edit_project: bool = False
    can_manage_tasks: bool = False
    can_invite_members: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {
            "can_edit_project": self.can_edit_project,
            "can_manage_tasks": self.can_manage_tasks,
            "can_invite_members": self.can_invite_members,
        }


# ── Permission matrices ──────────────────────────────────────────────

_FULL_TEAM = TeamPermissions(invite=True, manage_projects=True, view_all_tasks=True, manage_tasks=True)
_NO_PROJECT = ProjectPermissions()

TEAM_ROLE_PERMISSIONS: Dict[TeamRole, TeamPermissions] = {
    TeamRole.OWNER: _FULL_TEAM,
    TeamRole.MANAGER: _FULL_TEAM,
    TeamRole.MEMBER: TeamPermissions(
        invite=False, manage_projects=False, view_all_tasks=True, manage_tasks=False,
    ),
}

PROJECT_ROLE_PERMISSIONS: Dict[ProjectRole, ProjectPermissions] = {
    ProjectRole.LEAD: ProjectPermissions(
        can_edit_project=True, can_manage_tasks=True, can_invite_members=True,
    ),
    ProjectRole.DEVELOPER: _NO_PROJECT,
    ProjectRole.DESIGNER: _NO_PROJECT,
    ProjectRole.TESTER: _NO_PROJECT,
    ProjectRole.CLIENT: _NO_PROJECT,
}


def team_permissions_for(role: TeamRole) -> TeamPermissions:
    return TEAM_ROLE_PERMISSIONS[role]


def project_permissions_for(role: ProjectRole) -> ProjectPermissions:
    return PROJECT_ROLE_PERMISSIONS[role]


# ── Parsing ──────────────────────────────────────────────────────────

def _parse(enum_cls, value, label: str, error_cls):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        valid = sorted(m.value for m in enum_cls)
        raise error_cls(f"Invalid {label}: {value!r}. Must be one of {valid}") from None


def parse_global_role(value: Union[str, GlobalRole]) -> GlobalRole:
    return _parse(GlobalRole, value, "global role", InvalidRoleError)


def parse_team_role(value: Union[str, TeamRole]) -> TeamRole:
    return _parse(TeamRole, value, "team role", InvalidRoleError)


def parse_project_role(value: Union[str, ProjectRole]) -> ProjectRole:
    return _parse(ProjectRole, value, "project role", InvalidRoleError)


def parse_capability(value: Union[str, Capability]) -> Capability:
    return _parse(Capability, value, "capability", InvalidCapabilityError)
