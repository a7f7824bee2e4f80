"""Role-permission resolver: (actor, entity, capability) -> bool.

Pure functions, no I/O. Clauses are OR-ed across the team, project and
task levels and any single satisfied clause grants access. Admin is
checked first and short-circuits. Denial is a ``False`` return, never an
exception; turning it into an error is the guard's job.

Capabilities that have no meaning for an entity resolve to ``False``.
"""

from __future__ import annotations

from typing import Iterable, List, Mapping, Optional, Union

from taskhub_v1.core.teams.models import Actor, Project, Task, Team
from taskhub_v1.core.teams.roles import Capability, ProjectRole, TeamRole, parse_capability

Entity = Union[Team, Project, Task]


# ── Team ─────────────────────────────────────────────────────────────

def can_access_team(actor: Actor, team: Team, capability: Union[str, Capability]) -> bool:
    """Decide a capability on a team. The team must already be loaded."""
    capability = parse_capability(capability)
    if actor.is_admin:
        return True

    is_owner = team.owner_id == actor.id
    record = team.get_member(actor.id)

    if capability == Capability.READ:
        return is_owner or record is not None
    if capability in (Capability.MANAGE, Capability.UPDATE):
        return is_owner or (record is not None and record.role == TeamRole.MANAGER)
    if capability == Capability.INVITE:
        if can_access_team(actor, team, Capability.MANAGE):
            return True
        return record is not None and record.permissions.invite
    if capability == Capability.DELETE:
        return is_owner
    return False


# ── Project ──────────────────────────────────────────────────────────

def can_access_project(
    actor: Actor,
    project: Project,
    capability: Union[str, Capability],
    team: Optional[Team] = None,
) -> bool:
    """Decide a capability on a project, cascading through its team.

    ``team`` is the loaded parent team, if the project has one. Team-level
    read grants project read; team-level manage grants project manage,
    with or without a project membership record.
    """
    capability = parse_capability(capability)
    if actor.is_admin:
        return True

    if team is not None and project.team_id != team.id:
        team = None

    is_owner = project.owner_id == actor.id
    record = project.get_member(actor.id)

    if capability == Capability.READ:
        if is_owner or record is not None:
            return True
        return team is not None and can_access_team(actor, team, Capability.READ)

    if capability in (Capability.MANAGE, Capability.UPDATE):
        if is_owner:
            return True
        if record is not None and (
            record.role == ProjectRole.LEAD or record.permissions.can_edit_project
        ):
            return True
        return team is not None and can_access_team(actor, team, Capability.MANAGE)

    if capability == Capability.INVITE:
        if can_access_project(actor, project, Capability.MANAGE, team):
            return True
        return record is not None and record.permissions.can_invite_members

    if capability == Capability.DELETE:
        return is_owner
    return False


# ── Task ─────────────────────────────────────────────────────────────

def can_access_task(
    actor: Actor,
    task: Task,
    capability: Union[str, Capability] = Capability.READ,
    project: Optional[Project] = None,
    team: Optional[Team] = None,
) -> bool:
    """Decide a capability on a task.

    Direct relationships (assignee, creator, watcher) are always
    sufficient; otherwise the decision cascades to the loaded project.
    Delete requires the creator; the assignee alone cannot delete.
    """
    capability = parse_capability(capability)
    if actor.is_admin:
        return True

    if project is not None and task.project_id != project.id:
        project = None

    is_assignee = task.assigned_to is not None and task.assigned_to == actor.id
    is_creator = task.created_by == actor.id

    if capability == Capability.READ:
        if is_assignee or is_creator or task.is_watcher(actor.id):
            return True
        return project is not None and can_access_project(actor, project, Capability.READ, team)

    if capability in (Capability.UPDATE, Capability.MANAGE):
        if is_assignee or is_creator:
            return True
        return project is not None and can_access_project(actor, project, Capability.MANAGE, team)

    if capability == Capability.DELETE:
        if is_creator:
            return True
        return project is not None and can_access_project(actor, project, Capability.MANAGE, team)
    return False


# ── Dispatch ─────────────────────────────────────────────────────────

def resolve(
    actor: Actor,
    entity: Entity,
    capability: Union[str, Capability],
    project: Optional[Project] = None,
    team: Optional[Team] = None,
) -> bool:
    """Single entry point over already-loaded entities."""
    if isinstance(entity, Team):
        return can_access_team(actor, entity, capability)
    if isinstance(entity, Project):
        return can_access_project(actor, entity, capability, team)
    if isinstance(entity, Task):
        return can_access_task(actor, entity, capability, project, team)
    return False


def visible_teams(actor: Actor, teams: Iterable[Team]) -> List[Team]:
    return [t for t in teams if can_access_team(actor, t, Capability.READ)]


def visible_projects(
    actor: Actor, projects: Iterable[Project], teams: Mapping[str, Team]
) -> List[Project]:
    """Projects the actor may read; ``teams`` maps team id to loaded team."""
    return [
        p for p in projects
        if can_access_project(actor, p, Capability.READ, teams.get(p.team_id) if p.team_id else None)
    ]
