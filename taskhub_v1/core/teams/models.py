"""Teams data models -- Actor, Team, Project, Task and membership records.

All models are plain dataclasses with to_dict()/from_dict() for
serialization. ``version`` is the optimistic-concurrency counter owned by
the store; callers never bump it themselves.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from taskhub_v1.core.teams.roles import (
    GlobalRole,
    ProjectPermissions,
    ProjectRole,
    TeamPermissions,
    TeamRole,
    project_permissions_for,
    team_permissions_for,
)


class EntityType(str, enum.Enum):
    TEAM = "team"
    PROJECT = "project"
    TASK = "task"


class ProjectVisibility(str, enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    TEAM = "team"


TASK_STATUSES = frozenset({"todo", "in_progress", "review", "completed", "cancelled"})


@dataclass(frozen=True)
class Actor:
    """An authenticated identity. Owned by the identity provider."""

    id: str
    global_role: GlobalRole = GlobalRole.EMPLOYEE

    @property
    def is_admin(self) -> bool:
        return self.global_role == GlobalRole.ADMIN

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "global_role": self.global_role.value}


@dataclass(frozen=True)
class EntityRef:
    """Names a target entity without loading it."""

    entity_type: EntityType
    entity_id: str


@dataclass
class TeamMembership:
    """Links a user to a team with a role. Permissions follow the role."""

    user_id: str
    role: TeamRole
    joined_at: float
    invited_by: Optional[str] = None

    @property
    def permissions(self) -> TeamPermissions:
        return team_permissions_for(self.role)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "role": self.role.value,
            "joined_at": self.joined_at,
            "invited_by": self.invited_by,
            "permissions": self.permissions.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TeamMembership":
        return cls(
            user_id=d["user_id"],
            role=TeamRole(d["role"]),
            joined_at=d["joined_at"],
            invited_by=d.get("invited_by"),
        )


@dataclass
class ProjectMembership:
    """Links a user to a project with a role. Permissions follow the role."""

    user_id: str
    role: ProjectRole
    assigned_at: float

    @property
    def permissions(self) -> ProjectPermissions:
        return project_permissions_for(self.role)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "role": self.role.value,
            "assigned_at": self.assigned_at,
            "permissions": self.permissions.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ProjectMembership":
        return cls(
            user_id=d["user_id"],
            role=ProjectRole(d["role"]),
            assigned_at=d["assigned_at"],
        )


@dataclass
class Team:
    """An organizational group.

    ``owner_id`` lives outside ``members``: it is permanent and carries
    non-revocable manage rights whether or not a record exists for it.
    """

    id: str
    name: str
    owner_id: str
    created_at: float
    members: Dict[str, TeamMembership] = field(default_factory=dict)
    description: str = ""
    is_private: bool = False
    is_active: bool = True
    version: int = 0

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def get_member(self, user_id: str) -> Optional[TeamMembership]:
        return self.members.get(user_id)

    def member_role(self, user_id: str) -> Optional[TeamRole]:
        m = self.members.get(user_id)
        return m.role if m else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "created_at": self.created_at,
            "members": [m.to_dict() for m in self.members.values()],
            "description": self.description,
            "is_private": self.is_private,
            "is_active": self.is_active,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Team":
        members = [TeamMembership.from_dict(m) for m in d.get("members", [])]
        return cls(
            id=d["id"],
            name=d["name"],
            owner_id=d["owner_id"],
            created_at=d["created_at"],
            members={m.user_id: m for m in members},
            description=d.get("description", ""),
            is_private=d.get("is_private", False),
            is_active=d.get("is_active", True),
            version=d.get("version", 0),
        )


@dataclass
class Project:
    """A unit of work, optionally attached to a team."""

    id: str
    name: str
    owner_id: str
    created_at: float
    team_id: Optional[str] = None
    members: Dict[str, ProjectMembership] = field(default_factory=dict)
    description: str = ""
    visibility: ProjectVisibility = ProjectVisibility.TEAM
    is_archived: bool = False
    archived_at: Optional[float] = None
    archived_by: Optional[str] = None
    version: int = 0

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def get_member(self, user_id: str) -> Optional[ProjectMembership]:
        return self.members.get(user_id)

    def member_role(self, user_id: str) -> Optional[ProjectRole]:
        m = self.members.get(user_id)
        return m.role if m else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "created_at": self.created_at,
            "team_id": self.team_id,
            "members": [m.to_dict() for m in self.members.values()],
            "description": self.description,
            "visibility": self.visibility.value,
            "is_archived": self.is_archived,
            "archived_at": self.archived_at,
            "archived_by": self.archived_by,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Project":
        members = [ProjectMembership.from_dict(m) for m in d.get("members", [])]
        return cls(
            id=d["id"],
            name=d["name"],
            owner_id=d["owner_id"],
            created_at=d["created_at"],
            team_id=d.get("team_id"),
            members={m.user_id: m for m in members},
            description=d.get("description", ""),
            visibility=ProjectVisibility(d.get("visibility", "team")),
            is_archived=d.get("is_archived", False),
            archived_at=d.get("archived_at"),
            archived_by=d.get("archived_by"),
            version=d.get("version", 0),
        )


@dataclass
class TaskComment:
    id: str
    user_id: str
    content: str
    created_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TaskComment":
        return cls(
            id=d["id"],
            user_id=d["user_id"],
            content=d["content"],
            created_at=d["created_at"],
        )


@dataclass
class TimeEntry:
    """Hours logged against a task by one user."""

    id: str
    user_id: str
    hours: float
    logged_at: float
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "hours": self.hours,
            "logged_at": self.logged_at,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TimeEntry":
        return cls(
            id=d["id"],
            user_id=d["user_id"],
            hours=d["hours"],
            logged_at=d["logged_at"],
            description=d.get("description", ""),
        )


@dataclass
class Task:
    """A unit of work. ``team_id`` is copied from the project at creation."""

    id: str
    title: str
    created_by: str
    created_at: float
    project_id: Optional[str] = None
    team_id: Optional[str] = None
    assigned_to: Optional[str] = None
    assigned_by: Optional[str] = None
    assigned_at: Optional[float] = None
    watchers: List[str] = field(default_factory=list)
    description: str = ""
    status: str = "todo"
    comments: List[TaskComment] = field(default_factory=list)
    time_entries: List[TimeEntry] = field(default_factory=list)
    version: int = 0

    def is_watcher(self, user_id: str) -> bool:
        return user_id in self.watchers

    @property
    def logged_hours(self) -> float:
        return sum(e.hours for e in self.time_entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "project_id": self.project_id,
            "team_id": self.team_id,
            "assigned_to": self.assigned_to,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at,
            "watchers": list(self.watchers),
            "description": self.description,
            "status": self.status,
            "comments": [c.to_dict() for c in self.comments],
            "time_entries": [e.to_dict() for e in self.time_entries],
            "logged_hours": self.logged_hours,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Task":
        return cls(
            id=d["id"],
            title=d["title"],
            created_by=d["created_by"],
            created_at=d["created_at"],
            project_id=d.get("project_id"),
            team_id=d.get("team_id"),
            assigned_to=d.get("assigned_to"),
            assigned_by=d.get("assigned_by"),
            assigned_at=d.get("assigned_at"),
            watchers=list(d.get("watchers", [])),
            description=d.get("description", ""),
            status=d.get("status", "todo"),
            comments=[TaskComment.from_dict(c) for c in d.get("comments", [])],
            time_entries=[TimeEntry.from_dict(e) for e in d.get("time_entries", [])],
            version=d.get("version", 0),
        )
