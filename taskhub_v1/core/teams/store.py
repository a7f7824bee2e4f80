"""MembershipStore -- thread-safe storage for teams, projects and tasks.

Same persistence pattern as the other stores:
  - configure_persistence(path) -> _replay(path) on boot
  - Append-only JSONL events
  - Thread-safe with threading.RLock()
  - reset() for test isolation

Concurrency model: ``load`` hands out independent snapshots and ``save``
is a compare-and-swap on ``version``. ``update`` wraps load/modify/save
and retries a bounded number of times on version conflicts before
surfacing ``ConflictError``.

The actor-side view (which teams a user belongs to) is an index derived
from saved Team entities, never a second copy callers keep in sync.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, TypeVar, Union

from taskhub_v1.core.errors import ConflictError, NotFound
from taskhub_v1.core.teams.models import EntityType, Project, Task, Team
from taskhub_v1.core.teams.roles import TeamRole

logger = logging.getLogger("taskhub.store")

DEFAULT_MAX_ATTEMPTS = 3

Entity = Union[Team, Project, Task]
T = TypeVar("T")

_MODEL_BY_TYPE = {
    EntityType.TEAM: Team,
    EntityType.PROJECT: Project,
    EntityType.TASK: Task,
}


def entity_type_of(entity: Entity) -> EntityType:
    if isinstance(entity, Team):
        return EntityType.TEAM
    if isinstance(entity, Project):
        return EntityType.PROJECT
    if isinstance(entity, Task):
        return EntityType.TASK
    raise TypeError(f"Not a storable entity: {type(entity).__name__}")


class MembershipStore:
    """Thread-safe in-memory entity store with optional JSONL persistence."""

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        self._lock = threading.RLock()
        self._tables: Dict[EntityType, Dict[str, Any]] = {t: {} for t in EntityType}
        self._user_teams: Dict[str, Set[str]] = {}
        self._persist_path: Optional[str] = None
        self._max_attempts = max(1, max_attempts)

    def configure_retries(self, max_attempts: int) -> None:
        self._max_attempts = max(1, max_attempts)

    def configure_persistence(self, path: Optional[str]) -> None:
        with self._lock:
            self._persist_path = path
        if path and Path(path).is_file():
            self._replay(path)

    def reset(self) -> None:
        with self._lock:
            for table in self._tables.values():
                table.clear()
            self._user_teams.clear()
            self._persist_path = None
            self._max_attempts = DEFAULT_MAX_ATTEMPTS

    # ── Reads ─────────────────────────────────────────────────

    def load(self, entity_type: Union[str, EntityType], entity_id: str) -> Any:
        """Return an independent snapshot of an entity or raise NotFound."""
        entity_type = EntityType(entity_type)
        with self._lock:
            stored = self._tables[entity_type].get(entity_id)
            if stored is None:
                raise NotFound(entity_type.value, entity_id)
            return copy.deepcopy(stored)

    def get_team(self, team_id: str) -> Team:
        return self.load(EntityType.TEAM, team_id)

    def get_project(self, project_id: str) -> Project:
        return self.load(EntityType.PROJECT, project_id)

    def get_task(self, task_id: str) -> Task:
        return self.load(EntityType.TASK, task_id)

    def list_teams(self) -> List[Team]:
        with self._lock:
            return [copy.deepcopy(t) for t in self._tables[EntityType.TEAM].values()]

    def list_projects(self, team_id: Optional[str] = None) -> List[Project]:
        with self._lock:
            return [
                copy.deepcopy(p) for p in self._tables[EntityType.PROJECT].values()
                if team_id is None or p.team_id == team_id
            ]

    def list_tasks(self, project_id: Optional[str] = None) -> List[Task]:
        with self._lock:
            return [
                copy.deepcopy(t) for t in self._tables[EntityType.TASK].values()
                if project_id is None or t.project_id == project_id
            ]

    def teams_for_user(self, user_id: str) -> List[Tuple[Team, TeamRole]]:
        """Actor-side membership view, derived from the team records."""
        with self._lock:
            result = []
            for team_id in sorted(self._user_teams.get(user_id, ())):
                team = self._tables[EntityType.TEAM][team_id]
                result.append((copy.deepcopy(team), team.members[user_id].role))
            return result

    # ── Writes ────────────────────────────────────────────────

    def insert(self, entity: T) -> T:
        """Store a brand-new entity (version 1).

        The parent a project or task points at must still exist when the
        insert lands; a parent deleted since the caller loaded it raises
        NotFound instead of leaving a dangling reference.
        """
        entity_type = entity_type_of(entity)
        with self._lock:
            table = self._tables[entity_type]
            if entity.id in table:
                raise ConflictError(f"{entity_type.value.capitalize()} '{entity.id}' already exists")
            self._check_parent_locked(entity)
            entity.version = 1
            self._put(entity_type, entity)
        return entity

    def save(self, entity: T) -> T:
        """Conditional update: succeeds only if nobody saved since ``load``."""
        entity_type = entity_type_of(entity)
        with self._lock:
            stored = self._tables[entity_type].get(entity.id)
            if stored is None:
                raise NotFound(entity_type.value, entity.id)
            if stored.version != entity.version:
                raise ConflictError(
                    f"{entity_type.value.capitalize()} '{entity.id}' was modified concurrently "
                    f"(expected version {entity.version}, found {stored.version})"
                )
            entity.version = stored.version + 1
            self._put(entity_type, entity)
        return entity

    def update(
        self,
        entity_type: Union[str, EntityType],
        entity_id: str,
        fn: Callable[[Any], T],
    ) -> T:
        """Load, apply ``fn`` to the snapshot, save; retry on version conflict.

        Anything ``fn`` raises propagates unchanged and nothing is written.
        """
        entity_type = EntityType(entity_type)
        for attempt in range(1, self._max_attempts + 1):
            snapshot = self.load(entity_type, entity_id)
            result = fn(snapshot)
            try:
                self.save(snapshot)
                return result
            except ConflictError:
                logger.info(
                    "store_conflict entity=%s id=%s attempt=%d/%d",
                    entity_type.value, entity_id, attempt, self._max_attempts,
                )
        raise ConflictError(
            f"Gave up updating {entity_type.value} '{entity_id}' "
            f"after {self._max_attempts} conflicting attempts"
        )

    def delete_team(self, team_id: str) -> Team:
        """Delete a team, detach its projects and tasks, purge the user index."""
        with self._lock:
            team = self._delete_team_locked(team_id)
            self._persist({"action": "team_deleted", "id": team_id})
            return team

    def delete_project(self, project_id: str) -> Project:
        """Delete a project together with all of its tasks."""
        with self._lock:
            project = self._delete_project_locked(project_id)
            self._persist({"action": "project_deleted", "id": project_id})
            return project

    def delete_task(self, task_id: str) -> Task:
        with self._lock:
            task = self._tables[EntityType.TASK].pop(task_id, None)
            if task is None:
                raise NotFound(EntityType.TASK.value, task_id)
            self._persist({"action": "task_deleted", "id": task_id})
            return task

    # ── Internals (caller holds the lock) ─────────────────────

    def _put(self, entity_type: EntityType, entity: Entity) -> None:
        stored = copy.deepcopy(entity)
        self._tables[entity_type][entity.id] = stored
        if entity_type == EntityType.TEAM:
            self._reindex_team(stored)
        self._persist({"action": f"{entity_type.value}_saved", "entity": stored.to_dict()})

    def _check_parent_locked(self, entity: Entity) -> None:
        if isinstance(entity, Project) and entity.team_id is not None:
            if entity.team_id not in self._tables[EntityType.TEAM]:
                raise NotFound(EntityType.TEAM.value, entity.team_id)
        elif isinstance(entity, Task) and entity.project_id is not None:
            project = self._tables[EntityType.PROJECT].get(entity.project_id)
            if project is None:
                raise NotFound(EntityType.PROJECT.value, entity.project_id)
            # The project may have been detached from its team meanwhile.
            entity.team_id = project.team_id

    def _reindex_team(self, team: Team) -> None:
        for user_id, team_ids in list(self._user_teams.items()):
            if team.id in team_ids and user_id not in team.members:
                team_ids.discard(team.id)
                if not team_ids:
                    del self._user_teams[user_id]
        for user_id in team.members:
            self._user_teams.setdefault(user_id, set()).add(team.id)

    def _delete_team_locked(self, team_id: str) -> Team:
        team = self._tables[EntityType.TEAM].pop(team_id, None)
        if team is None:
            raise NotFound(EntityType.TEAM.value, team_id)
        for project in self._tables[EntityType.PROJECT].values():
            if project.team_id == team_id:
                project.team_id = None
                project.version += 1
        for task in self._tables[EntityType.TASK].values():
            if task.team_id == team_id:
                task.team_id = None
                task.version += 1
        for user_id in list(self._user_teams):
            self._user_teams[user_id].discard(team_id)
            if not self._user_teams[user_id]:
                del self._user_teams[user_id]
        return team

    def _delete_project_locked(self, project_id: str) -> Project:
        project = self._tables[EntityType.PROJECT].pop(project_id, None)
        if project is None:
            raise NotFound(EntityType.PROJECT.value, project_id)
        tasks = self._tables[EntityType.TASK]
        for task_id in [tid for tid, t in tasks.items() if t.project_id == project_id]:
            del tasks[task_id]
        return project

    # ── Persistence ───────────────────────────────────────────

    def _persist(self, event: Dict[str, Any]) -> None:
        path = self._persist_path
        if not path:
            return
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event, separators=(",", ":")) + "\n")
                f.flush()
        except OSError:
            logger.warning("membership_store: persist failed", exc_info=True)

    def _replay(self, path: str) -> None:
        with self._lock:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    for line in f:
                        line = line.strip()
                        if not line:
                            continue
                        try:
                            self._apply_event(json.loads(line))
                        except (json.JSONDecodeError, KeyError, ValueError, NotFound):
                            logger.warning("membership_store: skipping corrupt event line")
            except OSError:
                logger.warning("membership_store: replay failed", exc_info=True)

    def _apply_event(self, evt: Dict[str, Any]) -> None:
        action = evt["action"]
        if action.endswith("_saved"):
            entity_type = EntityType(action[: -len("_saved")])
            entity = _MODEL_BY_TYPE[entity_type].from_dict(evt["entity"])
            self._tables[entity_type][entity.id] = entity
            if entity_type == EntityType.TEAM:
                self._reindex_team(entity)
        elif action == "team_deleted":
            self._delete_team_locked(evt["id"])
        elif action == "project_deleted":
            self._delete_project_locked(evt["id"])
        elif action == "task_deleted":
            self._tables[EntityType.TASK].pop(evt["id"], None)


membership_store = MembershipStore()
