"""Access guard: the entry point wrapping every protected operation.

For each operation the guard loads the target and its parent chain
(task -> project -> team), lets a missing entity surface as NotFound,
asks the resolver, turns a ``False`` into AuthorizationDenied and only
then delegates to the membership mutators. Mutations run inside
``store.update`` with the check repeated on the fresh snapshot, so a
denial never leaves anything written and a retried write is re-checked.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar, Union

from taskhub_v1.core.errors import AuthorizationDenied, ValidationError
from taskhub_v1.core.security import resolver
from taskhub_v1.core.teams import membership
from taskhub_v1.core.teams.models import (
    Actor,
    EntityRef,
    EntityType,
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
    Capability,
    ProjectRole,
    TeamRole,
    parse_capability,
)
from taskhub_v1.core.teams.store import MembershipStore

logger = logging.getLogger("taskhub.authz")

T = TypeVar("T")


class MembershipOp(str, enum.Enum):
    ADD = "add"
    REMOVE = "remove"
    UPDATE_ROLE = "update_role"


class AccessGuard:
    """Authorizes and executes team, project and task operations."""

    def __init__(self, store: MembershipStore) -> None:
        self.store = store

    # ── Loading ───────────────────────────────────────────────

    def _team_of(self, project: Project) -> Optional[Team]:
        if project.team_id is None:
            return None
        return self.store.get_team(project.team_id)

    def _load_project_chain(self, project_id: str) -> Tuple[Project, Optional[Team]]:
        project = self.store.get_project(project_id)
        return project, self._team_of(project)

    def _parents_of(self, task: Task) -> Tuple[Optional[Project], Optional[Team]]:
        if task.project_id is None:
            return None, None
        project, team = self._load_project_chain(task.project_id)
        return project, team

    # ── Decisions ─────────────────────────────────────────────

    def _require(
        self,
        allowed: bool,
        actor: Actor,
        capability: Capability,
        entity_type: EntityType,
        entity_id: str,
        message: Optional[str] = None,
    ) -> None:
        if allowed:
            return
        logger.warning(
            "access_denied actor=%s role=%s capability=%s entity=%s id=%s",
            actor.id, actor.global_role.value, capability.value, entity_type.value, entity_id,
        )
        raise AuthorizationDenied(capability.value, entity_type.value, entity_id, message)

    def _check_team(self, actor: Actor, team: Team, capability: Capability) -> None:
        self._require(
            resolver.can_access_team(actor, team, capability),
            actor, capability, EntityType.TEAM, team.id,
        )

    def _check_project(
        self, actor: Actor, project: Project, team: Optional[Team], capability: Capability
    ) -> None:
        self._require(
            resolver.can_access_project(actor, project, capability, team),
            actor, capability, EntityType.PROJECT, project.id,
        )

    def _check_task(
        self,
        actor: Actor,
        task: Task,
        project: Optional[Project],
        team: Optional[Team],
        capability: Capability,
    ) -> None:
        self._require(
            resolver.can_access_task(actor, task, capability, project, team),
            actor, capability, EntityType.TASK, task.id,
        )

    # ── Guarded writes ────────────────────────────────────────

    def _update_team(
        self, actor: Actor, team_id: str, capability: Capability, apply: Callable[[Team], T]
    ) -> T:
        def fn(team: Team) -> T:
            self._check_team(actor, team, capability)
            return apply(team)

        return self.store.update(EntityType.TEAM, team_id, fn)

    def _update_project(
        self, actor: Actor, project_id: str, capability: Capability, apply: Callable[[Project], T]
    ) -> T:
        def fn(project: Project) -> T:
            self._check_project(actor, project, self._team_of(project), capability)
            return apply(project)

        return self.store.update(EntityType.PROJECT, project_id, fn)

    def _update_task(
        self, actor: Actor, task_id: str, capability: Capability, apply: Callable[[Task], T]
    ) -> T:
        def fn(task: Task) -> T:
            project, team = self._parents_of(task)
            self._check_task(actor, task, project, team, capability)
            return apply(task)

        return self.store.update(EntityType.TASK, task_id, fn)

    # ── Generic interface ─────────────────────────────────────

    def resolve(
        self, actor: Actor, ref: EntityRef, capability: Union[str, Capability]
    ) -> bool:
        """Load ``ref`` with its parents and decide. Missing entity -> NotFound."""
        capability = parse_capability(capability)
        entity_type = EntityType(ref.entity_type)
        if entity_type == EntityType.TEAM:
            return resolver.can_access_team(actor, self.store.get_team(ref.entity_id), capability)
        if entity_type == EntityType.PROJECT:
            project, team = self._load_project_chain(ref.entity_id)
            return resolver.can_access_project(actor, project, capability, team)
        task = self.store.get_task(ref.entity_id)
        project, team = self._parents_of(task)
        return resolver.can_access_task(actor, task, capability, project, team)

    def mutate_membership(
        self,
        actor: Actor,
        op: Union[str, MembershipOp],
        ref: EntityRef,
        user_id: str,
        role: Optional[str] = None,
    ) -> Optional[Union[TeamMembership, ProjectMembership]]:
        """Add, remove or re-role a member of a team or project."""
        try:
            op = MembershipOp(op)
        except ValueError:
            raise ValidationError(f"Invalid membership operation: {op!r}") from None
        entity_type = EntityType(ref.entity_type)
        if op == MembershipOp.UPDATE_ROLE and role is None:
            raise ValidationError("A role is required to update a membership")

        if entity_type == EntityType.TEAM:
            if op == MembershipOp.ADD:
                return self.add_team_member(actor, ref.entity_id, user_id, role or TeamRole.MEMBER)
            if op == MembershipOp.REMOVE:
                return self.remove_team_member(actor, ref.entity_id, user_id)
            return self.update_team_member_role(actor, ref.entity_id, user_id, role)
        if entity_type == EntityType.PROJECT:
            if op == MembershipOp.ADD:
                return self.add_project_member(
                    actor, ref.entity_id, user_id, role or ProjectRole.DEVELOPER,
                )
            if op == MembershipOp.REMOVE:
                return self.remove_project_member(actor, ref.entity_id, user_id)
            return self.update_project_member_role(actor, ref.entity_id, user_id, role)
        raise ValidationError("Tasks have no membership; use watchers or assignment")

    # ── Teams ─────────────────────────────────────────────────

    def create_team(
        self, actor: Actor, name: str, description: str = "", is_private: bool = False
    ) -> Team:
        team = self.store.insert(membership.new_team(actor, name, description, is_private))
        logger.info("team_created team=%s owner=%s", team.id, actor.id)
        return team

    def list_teams(self, actor: Actor) -> List[Team]:
        return resolver.visible_teams(actor, self.store.list_teams())

    def teams_for_actor(self, actor: Actor) -> List[Tuple[Team, TeamRole]]:
        return self.store.teams_for_user(actor.id)

    def get_team(self, actor: Actor, team_id: str) -> Team:
        team = self.store.get_team(team_id)
        self._check_team(actor, team, Capability.READ)
        return team

    def update_team(self, actor: Actor, team_id: str, **changes: Any) -> Team:
        allowed = {"name", "description", "is_private", "is_active"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Cannot update team fields: {sorted(unknown)}")

        def apply(team: Team) -> Team:
            for key, value in changes.items():
                if value is None:
                    continue
                if key == "name":
                    value = membership.clean_name(value)
                elif isinstance(value, str):
                    value = value.strip()
                setattr(team, key, value)
            return team

        return self._update_team(actor, team_id, Capability.MANAGE, apply)

    def delete_team(self, actor: Actor, team_id: str) -> Team:
        team = self.store.get_team(team_id)
        self._check_team(actor, team, Capability.DELETE)
        deleted = self.store.delete_team(team_id)
        logger.info("team_deleted team=%s by=%s", team_id, actor.id)
        return deleted

    def join_team(self, actor: Actor, team_id: str) -> TeamMembership:
        def fn(team: Team) -> TeamMembership:
            self._require(
                not team.is_private or actor.is_admin,
                actor, Capability.READ, EntityType.TEAM, team.id,
                "Cannot join a private team without an invitation",
            )
            return membership.add_team_member(team, actor.id, TeamRole.MEMBER)

        record = self.store.update(EntityType.TEAM, team_id, fn)
        logger.info("team_joined team=%s user=%s", team_id, actor.id)
        return record

    def leave_team(self, actor: Actor, team_id: str) -> Optional[TeamMembership]:
        record = self._update_team(
            actor, team_id, Capability.READ,
            lambda team: membership.remove_team_member(team, actor.id),
        )
        logger.info("team_left team=%s user=%s", team_id, actor.id)
        return record

    def add_team_member(
        self,
        actor: Actor,
        team_id: str,
        user_id: str,
        role: Union[str, TeamRole] = TeamRole.MEMBER,
    ) -> TeamMembership:
        record = self._update_team(
            actor, team_id, Capability.INVITE,
            lambda team: membership.add_team_member(team, user_id, role, invited_by=actor.id),
        )
        logger.info(
            "team_member_added team=%s user=%s role=%s by=%s",
            team_id, user_id, record.role.value, actor.id,
        )
        return record

    def remove_team_member(
        self, actor: Actor, team_id: str, user_id: str
    ) -> Optional[TeamMembership]:
        record = self._update_team(
            actor, team_id, Capability.MANAGE,
            lambda team: membership.remove_team_member(team, user_id),
        )
        if record is not None:
            logger.info("team_member_removed team=%s user=%s by=%s", team_id, user_id, actor.id)
        return record

    def update_team_member_role(
        self, actor: Actor, team_id: str, user_id: str, role: Union[str, TeamRole]
    ) -> TeamMembership:
        record = self._update_team(
            actor, team_id, Capability.MANAGE,
            lambda team: membership.update_team_member_role(team, user_id, role),
        )
        logger.info(
            "team_member_role_changed team=%s user=%s role=%s by=%s",
            team_id, user_id, record.role.value, actor.id,
        )
        return record

    def list_team_members(self, actor: Actor, team_id: str) -> List[TeamMembership]:
        return list(self.get_team(actor, team_id).members.values())

    def list_team_projects(self, actor: Actor, team_id: str) -> List[Project]:
        self.get_team(actor, team_id)
        return self.store.list_projects(team_id=team_id)

    def get_team_stats(self, actor: Actor, team_id: str) -> Dict[str, int]:
        """Project and task counts for a team, computed from the store."""
        self.get_team(actor, team_id)
        projects = self.store.list_projects(team_id=team_id)
        tasks = [t for t in self.store.list_tasks() if t.team_id == team_id]
        return {
            "total_projects": len(projects),
            "active_projects": sum(1 for p in projects if not p.is_archived),
            "archived_projects": sum(1 for p in projects if p.is_archived),
            "total_tasks": len(tasks),
            "completed_tasks": sum(1 for t in tasks if t.status == "completed"),
        }

    # ── Projects ──────────────────────────────────────────────

    def create_project(
        self,
        actor: Actor,
        name: str,
        team_id: Optional[str] = None,
        description: str = "",
        visibility: str = "team",
    ) -> Project:
        team = None
        if team_id is not None:
            team = self.store.get_team(team_id)
            self._require(
                resolver.can_access_team(actor, team, Capability.READ),
                actor, Capability.READ, EntityType.TEAM, team.id,
                "Not authorized to create projects in this team",
            )
        project = self.store.insert(
            membership.new_project(actor, name, team, description, visibility)
        )
        logger.info("project_created project=%s team=%s owner=%s", project.id, team_id, actor.id)
        return project

    def list_projects(self, actor: Actor) -> List[Project]:
        projects = self.store.list_projects()
        if actor.is_admin:
            return projects
        teams: Dict[str, Team] = {t.id: t for t in self.store.list_teams()}
        return resolver.visible_projects(actor, projects, teams)

    def get_project(self, actor: Actor, project_id: str) -> Project:
        project, team = self._load_project_chain(project_id)
        self._check_project(actor, project, team, Capability.READ)
        return project

    def update_project(self, actor: Actor, project_id: str, **changes: Any) -> Project:
        allowed = {"name", "description", "visibility"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Cannot update project fields: {sorted(unknown)}")

        def apply(project: Project) -> Project:
            if changes.get("name") is not None:
                project.name = membership.clean_name(changes["name"])
            if changes.get("description") is not None:
                project.description = changes["description"].strip()
            if changes.get("visibility") is not None:
                try:
                    project.visibility = ProjectVisibility(changes["visibility"])
                except ValueError:
                    raise ValidationError(f"Invalid visibility: {changes['visibility']!r}") from None
            return project

        return self._update_project(actor, project_id, Capability.MANAGE, apply)

    def delete_project(self, actor: Actor, project_id: str) -> Project:
        project, team = self._load_project_chain(project_id)
        self._check_project(actor, project, team, Capability.DELETE)
        deleted = self.store.delete_project(project_id)
        logger.info("project_deleted project=%s by=%s", project_id, actor.id)
        return deleted

    def add_project_member(
        self,
        actor: Actor,
        project_id: str,
        user_id: str,
        role: Union[str, ProjectRole] = ProjectRole.DEVELOPER,
    ) -> ProjectMembership:
        record = self._update_project(
            actor, project_id, Capability.INVITE,
            lambda project: membership.add_project_member(project, user_id, role),
        )
        logger.info(
            "project_member_added project=%s user=%s role=%s by=%s",
            project_id, user_id, record.role.value, actor.id,
        )
        return record

    def remove_project_member(
        self, actor: Actor, project_id: str, user_id: str
    ) -> Optional[ProjectMembership]:
        record = self._update_project(
            actor, project_id, Capability.MANAGE,
            lambda project: membership.remove_project_member(project, user_id),
        )
        if record is not None:
            logger.info(
                "project_member_removed project=%s user=%s by=%s", project_id, user_id, actor.id,
            )
        return record

    def update_project_member_role(
        self, actor: Actor, project_id: str, user_id: str, role: Union[str, ProjectRole]
    ) -> ProjectMembership:
        record = self._update_project(
            actor, project_id, Capability.MANAGE,
            lambda project: membership.update_project_member_role(project, user_id, role),
        )
        logger.info(
            "project_member_role_changed project=%s user=%s role=%s by=%s",
            project_id, user_id, record.role.value, actor.id,
        )
        return record

    def list_project_members(self, actor: Actor, project_id: str) -> List[ProjectMembership]:
        return list(self.get_project(actor, project_id).members.values())

    def list_project_tasks(self, actor: Actor, project_id: str) -> List[Task]:
        self.get_project(actor, project_id)
        return self.store.list_tasks(project_id=project_id)

    def get_project_stats(self, actor: Actor, project_id: str) -> Dict[str, Any]:
        tasks = self.list_project_tasks(actor, project_id)
        completed = sum(1 for t in tasks if t.status == "completed")
        return {
            "total_tasks": len(tasks),
            "completed_tasks": completed,
            "progress": round(completed * 100 / len(tasks)) if tasks else 0,
            "logged_hours": sum(t.logged_hours for t in tasks),
        }

    def archive_project(self, actor: Actor, project_id: str) -> Project:
        return self._update_project(
            actor, project_id, Capability.MANAGE,
            lambda project: membership.archive_project(project, actor.id),
        )

    def unarchive_project(self, actor: Actor, project_id: str) -> Project:
        return self._update_project(
            actor, project_id, Capability.MANAGE, membership.unarchive_project,
        )

    # ── Tasks ─────────────────────────────────────────────────

    def create_task(
        self,
        actor: Actor,
        title: str,
        project_id: Optional[str] = None,
        assigned_to: Optional[str] = None,
        description: str = "",
        status: str = "todo",
    ) -> Task:
        project = None
        if project_id is not None:
            project, team = self._load_project_chain(project_id)
            self._require(
                resolver.can_access_project(actor, project, Capability.READ, team),
                actor, Capability.READ, EntityType.PROJECT, project.id,
                "Not authorized to create tasks in this project",
            )
        task = self.store.insert(
            membership.new_task(actor, title, project, assigned_to, description, status)
        )
        logger.info("task_created task=%s project=%s by=%s", task.id, project_id, actor.id)
        return task

    def list_tasks(
        self,
        actor: Actor,
        project_id: Optional[str] = None,
        assigned_to: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Task]:
        """Tasks the actor created, is assigned to or watches (admin: all)."""
        tasks = self.store.list_tasks(project_id=project_id)
        if not actor.is_admin:
            tasks = [
                t for t in tasks
                if t.assigned_to == actor.id or t.created_by == actor.id or t.is_watcher(actor.id)
            ]
        if assigned_to is not None:
            tasks = [t for t in tasks if t.assigned_to == assigned_to]
        if status is not None:
            tasks = [t for t in tasks if t.status == status]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    def get_task(self, actor: Actor, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        project, team = self._parents_of(task)
        self._check_task(actor, task, project, team, Capability.READ)
        return task

    def update_task(self, actor: Actor, task_id: str, **changes: Any) -> Task:
        allowed = {"title", "description", "status"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Cannot update task fields: {sorted(unknown)}")

        def apply(task: Task) -> Task:
            if changes.get("title") is not None:
                task.title = membership.clean_name(changes["title"], "title")
            if changes.get("description") is not None:
                task.description = changes["description"].strip()
            if changes.get("status") is not None:
                task.status = membership.validate_status(changes["status"])
            return task

        return self._update_task(actor, task_id, Capability.UPDATE, apply)

    def delete_task(self, actor: Actor, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        project, team = self._parents_of(task)
        self._check_task(actor, task, project, team, Capability.DELETE)
        deleted = self.store.delete_task(task_id)
        logger.info("task_deleted task=%s by=%s", task_id, actor.id)
        return deleted

    def assign_task(self, actor: Actor, task_id: str, user_id: str) -> Task:
        task = self._update_task(
            actor, task_id, Capability.UPDATE,
            lambda t: membership.assign_task(t, user_id, assigned_by=actor.id),
        )
        logger.info("task_assigned task=%s user=%s by=%s", task_id, user_id, actor.id)
        return task

    def unassign_task(self, actor: Actor, task_id: str) -> Task:
        return self._update_task(actor, task_id, Capability.UPDATE, membership.unassign_task)

    def watch_task(self, actor: Actor, task_id: str, user_id: Optional[str] = None) -> Task:
        """Add a watcher. Watching yourself needs read; adding others needs update."""
        target = user_id or actor.id
        capability = Capability.READ if target == actor.id else Capability.UPDATE
        return self._update_task(
            actor, task_id, capability, lambda t: membership.add_watcher(t, target),
        )

    def unwatch_task(self, actor: Actor, task_id: str, user_id: Optional[str] = None) -> Task:
        target = user_id or actor.id
        capability = Capability.READ if target == actor.id else Capability.UPDATE
        return self._update_task(
            actor, task_id, capability, lambda t: membership.remove_watcher(t, target),
        )

    # ── Task activity ─────────────────────────────────────────

    def add_comment(self, actor: Actor, task_id: str, content: str) -> TaskComment:
        comment = self._update_task(
            actor, task_id, Capability.READ,
            lambda t: membership.add_comment(t, actor.id, content),
        )
        logger.info("task_commented task=%s comment=%s by=%s", task_id, comment.id, actor.id)
        return comment

    def list_comments(self, actor: Actor, task_id: str) -> List[TaskComment]:
        return self.get_task(actor, task_id).comments

    def add_time_entry(
        self, actor: Actor, task_id: str, hours: float, description: str = ""
    ) -> TimeEntry:
        entry = self._update_task(
            actor, task_id, Capability.READ,
            lambda t: membership.add_time_entry(t, actor.id, hours, description),
        )
        logger.info("time_logged task=%s hours=%s by=%s", task_id, entry.hours, actor.id)
        return entry

    def list_time_entries(self, actor: Actor, task_id: str) -> List[TimeEntry]:
        return self.get_task(actor, task_id).time_entries
