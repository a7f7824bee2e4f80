"""Membership mutators and entity constructors.

Every function here works on an already-loaded entity snapshot and
mutates it in memory; writing it back (with the version check) is the
store's job. Invariants kept here:

  - at most one membership record per (entity, user)
  - the literal owner can be neither removed nor re-roled
  - the ``owner`` team role belongs to ``team.owner_id`` only
  - the creator of a task always starts as a watcher, and whoever gets
    assigned joins the watchers
"""

from __future__ import annotations

import time
import uuid
from typing import Optional, Union

from taskhub_v1.core.errors import (
    AlreadyMember,
    InvalidRoleError,
    NotAMember,
    OwnerProtected,
    ValidationError,
)
from taskhub_v1.core.teams.models import (
    TASK_STATUSES,
    Actor,
    Project,
    ProjectMembership,
    ProjectVisibility,
    Task,
    TaskComment,
    Team,
    TeamMembership,
    TimeEntry,
)
from taskhub_v1.core.teams.roles import (
    ProjectRole,
    TeamRole,
    parse_project_role,
    parse_team_role,
)


def new_id() -> str:
    return uuid.uuid4().hex[:12]


# ── Team membership ──────────────────────────────────────────────────

def add_team_member(
    team: Team,
    user_id: str,
    role: Union[str, TeamRole] = TeamRole.MEMBER,
    invited_by: Optional[str] = None,
) -> TeamMembership:
    role = parse_team_role(role)
    if team.is_member(user_id):
        raise AlreadyMember(user_id, "team")
    if role == TeamRole.OWNER and user_id != team.owner_id:
        raise InvalidRoleError("The owner role is reserved for the team owner")
    record = TeamMembership(
        user_id=user_id, role=role, joined_at=time.time(), invited_by=invited_by,
    )
    team.members[user_id] = record
    return record


def remove_team_member(team: Team, user_id: str) -> Optional[TeamMembership]:
    """Remove a member. Removing a non-member is a no-op returning None."""
    if user_id == team.owner_id:
        raise OwnerProtected("team")
    return team.members.pop(user_id, None)


def update_team_member_role(
    team: Team, user_id: str, new_role: Union[str, TeamRole]
) -> TeamMembership:
    new_role = parse_team_role(new_role)
    if user_id == team.owner_id:
        raise OwnerProtected("team")
    record = team.get_member(user_id)
    if record is None:
        raise NotAMember(user_id, "team")
    if new_role == TeamRole.OWNER:
        raise InvalidRoleError("The owner role is reserved for the team owner")
    record.role = new_role
    return record


# ── Project membership ───────────────────────────────────────────────

def add_project_member(
    project: Project,
    user_id: str,
    role: Union[str, ProjectRole] = ProjectRole.DEVELOPER,
) -> ProjectMembership:
    role = parse_project_role(role)
    if project.is_member(user_id):
        raise AlreadyMember(user_id, "project")
    record = ProjectMembership(user_id=user_id, role=role, assigned_at=time.time())
    project.members[user_id] = record
    return record


def remove_project_member(project: Project, user_id: str) -> Optional[ProjectMembership]:
    """Remove a member. Removing a non-member is a no-op returning None."""
    if user_id == project.owner_id:
        raise OwnerProtected("project")
    return project.members.pop(user_id, None)


def update_project_member_role(
    project: Project, user_id: str, new_role: Union[str, ProjectRole]
) -> ProjectMembership:
    new_role = parse_project_role(new_role)
    if user_id == project.owner_id:
        raise OwnerProtected("project")
    record = project.get_member(user_id)
    if record is None:
        raise NotAMember(user_id, "project")
    record.role = new_role
    return record


# ── Constructors ─────────────────────────────────────────────────────

def new_team(
    creator: Actor,
    name: str,
    description: str = "",
    is_private: bool = False,
) -> Team:
    """Build a team with its creator as owner and as an ``owner`` member."""
    team = Team(
        id=new_id(),
        name=clean_name(name, "name"),
        owner_id=creator.id,
        created_at=time.time(),
        description=description.strip(),
        is_private=is_private,
    )
    add_team_member(team, creator.id, TeamRole.OWNER)
    return team


def new_project(
    creator: Actor,
    name: str,
    team: Optional[Team] = None,
    description: str = "",
    visibility: Union[str, ProjectVisibility] = ProjectVisibility.TEAM,
) -> Project:
    """Build a project owned by its creator, who is also inserted as lead."""
    try:
        visibility = ProjectVisibility(visibility)
    except ValueError:
        raise ValidationError(f"Invalid visibility: {visibility!r}") from None
    project = Project(
        id=new_id(),
        name=clean_name(name, "name"),
        owner_id=creator.id,
        created_at=time.time(),
        team_id=team.id if team is not None else None,
        description=description.strip(),
        visibility=visibility,
    )
    add_project_member(project, creator.id, ProjectRole.LEAD)
    return project


def new_task(
    creator: Actor,
    title: str,
    project: Optional[Project] = None,
    assigned_to: Optional[str] = None,
    description: str = "",
    status: str = "todo",
) -> Task:
    """Build a task. Unassigned tasks go to their creator."""
    task = Task(
        id=new_id(),
        title=clean_name(title, "title"),
        created_by=creator.id,
        created_at=time.time(),
        project_id=project.id if project is not None else None,
        team_id=project.team_id if project is not None else None,
        watchers=[creator.id],
        description=description.strip(),
        status=validate_status(status),
    )
    assign_task(task, assigned_to or creator.id, assigned_by=creator.id)
    return task


def clean_name(value: str, field_name: str = "name") -> str:
    cleaned = value.strip()
    if not cleaned:
        raise ValidationError(f"{field_name.capitalize()} cannot be blank")
    return cleaned


def validate_status(status: str) -> str:
    if status not in TASK_STATUSES:
        raise ValidationError(f"Invalid status: {status!r}. Must be one of {sorted(TASK_STATUSES)}")
    return status


# ── Task relationships ───────────────────────────────────────────────

def assign_task(task: Task, user_id: str, assigned_by: Optional[str] = None) -> Task:
    task.assigned_to = user_id
    task.assigned_by = assigned_by
    task.assigned_at = time.time()
    add_watcher(task, user_id)
    return task


def unassign_task(task: Task) -> Task:
    task.assigned_to = None
    task.assigned_by = None
    task.assigned_at = None
    return task


def add_watcher(task: Task, user_id: str) -> Task:
    if user_id not in task.watchers:
        task.watchers.append(user_id)
    return task


def remove_watcher(task: Task, user_id: str) -> Task:
    task.watchers = [w for w in task.watchers if w != user_id]
    return task


# ── Project lifecycle ────────────────────────────────────────────────

def archive_project(project: Project, archived_by: str) -> Project:
    project.is_archived = True
    project.archived_at = time.time()
    project.archived_by = archived_by
    return project


def unarchive_project(project: Project) -> Project:
    project.is_archived = False
    project.archived_at = None
    project.archived_by = None
    return project


# ── Task activity ────────────────────────────────────────────────────

MAX_COMMENT_LENGTH = 1000


def add_comment(task: Task, user_id: str, content: str) -> TaskComment:
    content = clean_name(content, "comment")
    if len(content) > MAX_COMMENT_LENGTH:
        raise ValidationError(f"Comment cannot be more than {MAX_COMMENT_LENGTH} characters")
    comment = TaskComment(id=new_id(), user_id=user_id, content=content, created_at=time.time())
    task.comments.append(comment)
    return comment


def add_time_entry(task: Task, user_id: str, hours: float, description: str = "") -> TimeEntry:
    if hours < 0:
        raise ValidationError("Hours cannot be negative")
    entry = TimeEntry(
        id=new_id(), user_id=user_id, hours=float(hours),
        logged_at=time.time(), description=description.strip(),
    )
    task.time_entries.append(entry)
    return entry
