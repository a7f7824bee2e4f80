"""TaskHub HTTP API server (FastAPI + uvicorn).

Thin transport over the access guard: handlers read the actor from
``request.state.actor`` (set by ActorAuthMiddleware), call one guard
operation and serialize the result. Status mapping lives in errors.py.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskhub_v1 import __version__
from taskhub_v1.core.api.auth import ActorAuthMiddleware
from taskhub_v1.core.api.errors import (
    generic_exception_handler,
    http_exception_handler,
    taskhub_error_handler,
    validation_exception_handler,
)
from taskhub_v1.core.api.middleware import RequestIDMiddleware
from taskhub_v1.core.api.models import (
    AccessRequest,
    AccessResponse,
    AddProjectMemberRequest,
    AssignTaskRequest,
    CommentRequest,
    CreateProjectRequest,
    CreateTaskRequest,
    CreateTeamRequest,
    HealthResponse,
    InviteMemberRequest,
    MeResponse,
    MeTeam,
    TimeEntryRequest,
    UpdateMemberRoleRequest,
    UpdateProjectRequest,
    UpdateTaskRequest,
    UpdateTeamRequest,
    WatcherRequest,
)
from taskhub_v1.core.api.settings import Settings, load_settings, validate_host
from taskhub_v1.core.errors import TaskhubError, ValidationError
from taskhub_v1.core.security.guard import AccessGuard
from taskhub_v1.core.teams.models import Actor, EntityRef, EntityType
from taskhub_v1.core.teams.roles import parse_capability
from taskhub_v1.core.teams.store import MembershipStore, membership_store

logger = logging.getLogger("taskhub.api")


def _actor(request: Request) -> Actor:
    return request.state.actor


def _entity_type(value: str) -> EntityType:
    try:
        return EntityType(value.lower())
    except ValueError:
        raise ValidationError(
            f"Invalid entity type: {value!r}. Must be one of {[t.value for t in EntityType]}"
        ) from None


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[MembershipStore] = None,
) -> FastAPI:
    """Create and return the FastAPI application."""
    if settings is None:
        settings = load_settings()

    docs_url = "/docs" if settings.enable_docs else None
    openapi_url = "/openapi.json" if settings.enable_docs else None

    app = FastAPI(
        title="TaskHub API",
        description="Teams, projects and tasks behind a three-level access resolver.",
        version=__version__,
        docs_url=docs_url,
        openapi_url=openapi_url,
        redoc_url=None,
    )

    app.state.settings = settings

    # ── Normalized error envelope (always-on) ────────────────────
    app.add_exception_handler(TaskhubError, taskhub_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # ── Middleware ────────────────────────────────────────────────
    # Starlette processes in reverse add order (last added = outermost).
    app.add_middleware(ActorAuthMiddleware, secret=settings.token_secret)
    app.add_middleware(RequestIDMiddleware, log_format=settings.log_format)

    # ── Store ─────────────────────────────────────────────────────
    if store is None:
        store = membership_store
        store.reset()
    store.configure_retries(settings.conflict_retries)
    persist_path = settings.resolved_store_path
    if persist_path:
        store.configure_persistence(persist_path)
        logger.info("store_persistence path=%s", persist_path)

    guard = AccessGuard(store)
    app.state.guard = guard

    # ── Health ────────────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(version=__version__)

    # ── Identity ──────────────────────────────────────────────────

    @app.get("/v1/me", response_model=MeResponse)
    def me(request: Request) -> MeResponse:
        actor = _actor(request)
        teams = [
            MeTeam(team_id=team.id, name=team.name, role=role.value)
            for team, role in guard.teams_for_actor(actor)
        ]
        return MeResponse(id=actor.id, global_role=actor.global_role.value, teams=teams)

    @app.post("/v1/access", response_model=AccessResponse)
    def access(req: AccessRequest, request: Request) -> AccessResponse:
        entity_type = _entity_type(req.entity_type)
        allowed = guard.resolve(
            _actor(request), EntityRef(entity_type, req.entity_id), req.capability,
        )
        return AccessResponse(
            entity_type=entity_type.value,
            entity_id=req.entity_id,
            capability=parse_capability(req.capability).value,
            allowed=allowed,
        )

    # ── Teams ─────────────────────────────────────────────────────

    @app.post("/v1/teams", status_code=201)
    def create_team(req: CreateTeamRequest, request: Request) -> Dict[str, Any]:
        team = guard.create_team(_actor(request), req.name, req.description, req.is_private)
        return team.to_dict()

    @app.get("/v1/teams")
    def list_teams(request: Request) -> Dict[str, Any]:
        return {"teams": [t.to_dict() for t in guard.list_teams(_actor(request))]}

    @app.get("/v1/teams/{team_id}")
    def get_team(team_id: str, request: Request) -> Dict[str, Any]:
        return guard.get_team(_actor(request), team_id).to_dict()

    @app.put("/v1/teams/{team_id}")
    def update_team(team_id: str, req: UpdateTeamRequest, request: Request) -> Dict[str, Any]:
        team = guard.update_team(_actor(request), team_id, **req.model_dump(exclude_none=True))
        return team.to_dict()

    @app.delete("/v1/teams/{team_id}")
    def delete_team(team_id: str, request: Request) -> Dict[str, Any]:
        guard.delete_team(_actor(request), team_id)
        return {"deleted": team_id}

    @app.post("/v1/teams/{team_id}/join", status_code=201)
    def join_team(team_id: str, request: Request) -> Dict[str, Any]:
        return guard.join_team(_actor(request), team_id).to_dict()

    @app.post("/v1/teams/{team_id}/leave")
    def leave_team(team_id: str, request: Request) -> Dict[str, Any]:
        record = guard.leave_team(_actor(request), team_id)
        return {"team_id": team_id, "left": record is not None}

    @app.post("/v1/teams/{team_id}/invite", status_code=201)
    def invite_member(team_id: str, req: InviteMemberRequest, request: Request) -> Dict[str, Any]:
        return guard.add_team_member(_actor(request), team_id, req.user_id, req.role).to_dict()

    @app.delete("/v1/teams/{team_id}/members/{user_id}")
    def remove_team_member(team_id: str, user_id: str, request: Request) -> Dict[str, Any]:
        record = guard.remove_team_member(_actor(request), team_id, user_id)
        return {"team_id": team_id, "user_id": user_id, "removed": record is not None}

    @app.put("/v1/teams/{team_id}/members/{user_id}/role")
    def update_team_member_role(
        team_id: str, user_id: str, req: UpdateMemberRoleRequest, request: Request,
    ) -> Dict[str, Any]:
        return guard.update_team_member_role(_actor(request), team_id, user_id, req.role).to_dict()

    @app.get("/v1/teams/{team_id}/members")
    def list_team_members(team_id: str, request: Request) -> Dict[str, Any]:
        members = guard.list_team_members(_actor(request), team_id)
        return {"members": [m.to_dict() for m in members]}

    @app.get("/v1/teams/{team_id}/projects")
    def list_team_projects(team_id: str, request: Request) -> Dict[str, Any]:
        projects = guard.list_team_projects(_actor(request), team_id)
        return {"projects": [p.to_dict() for p in projects]}

    @app.get("/v1/teams/{team_id}/stats")
    def team_stats(team_id: str, request: Request) -> Dict[str, Any]:
        return guard.get_team_stats(_actor(request), team_id)

    # ── Projects ──────────────────────────────────────────────────

    @app.post("/v1/projects", status_code=201)
    def create_project(req: CreateProjectRequest, request: Request) -> Dict[str, Any]:
        project = guard.create_project(
            _actor(request), req.name, req.team_id, req.description, req.visibility,
        )
        return project.to_dict()

    @app.get("/v1/projects")
    def list_projects(request: Request) -> Dict[str, Any]:
        return {"projects": [p.to_dict() for p in guard.list_projects(_actor(request))]}

    @app.get("/v1/projects/{project_id}")
    def get_project(project_id: str, request: Request) -> Dict[str, Any]:
        return guard.get_project(_actor(request), project_id).to_dict()

    @app.put("/v1/projects/{project_id}")
    def update_project(
        project_id: str, req: UpdateProjectRequest, request: Request,
    ) -> Dict[str, Any]:
        project = guard.update_project(
            _actor(request), project_id, **req.model_dump(exclude_none=True),
        )
        return project.to_dict()

    @app.delete("/v1/projects/{project_id}")
    def delete_project(project_id: str, request: Request) -> Dict[str, Any]:
        guard.delete_project(_actor(request), project_id)
        return {"deleted": project_id}

    @app.post("/v1/projects/{project_id}/members", status_code=201)
    def add_project_member(
        project_id: str, req: AddProjectMemberRequest, request: Request,
    ) -> Dict[str, Any]:
        record = guard.add_project_member(_actor(request), project_id, req.user_id, req.role)
        return record.to_dict()

    @app.delete("/v1/projects/{project_id}/members/{user_id}")
    def remove_project_member(project_id: str, user_id: str, request: Request) -> Dict[str, Any]:
        record = guard.remove_project_member(_actor(request), project_id, user_id)
        return {"project_id": project_id, "user_id": user_id, "removed": record is not None}

    @app.put("/v1/projects/{project_id}/members/{user_id}/role")
    def update_project_member_role(
        project_id: str, user_id: str, req: UpdateMemberRoleRequest, request: Request,
    ) -> Dict[str, Any]:
        record = guard.update_project_member_role(_actor(request), project_id, user_id, req.role)
        return record.to_dict()

    @app.get("/v1/projects/{project_id}/members")
    def list_project_members(project_id: str, request: Request) -> Dict[str, Any]:
        members = guard.list_project_members(_actor(request), project_id)
        return {"members": [m.to_dict() for m in members]}

    @app.get("/v1/projects/{project_id}/tasks")
    def list_project_tasks(project_id: str, request: Request) -> Dict[str, Any]:
        tasks = guard.list_project_tasks(_actor(request), project_id)
        return {"tasks": [t.to_dict() for t in tasks]}

    @app.get("/v1/projects/{project_id}/stats")
    def project_stats(project_id: str, request: Request) -> Dict[str, Any]:
        return guard.get_project_stats(_actor(request), project_id)

    @app.post("/v1/projects/{project_id}/archive")
    def archive_project(project_id: str, request: Request) -> Dict[str, Any]:
        return guard.archive_project(_actor(request), project_id).to_dict()

    @app.post("/v1/projects/{project_id}/unarchive")
    def unarchive_project(project_id: str, request: Request) -> Dict[str, Any]:
        return guard.unarchive_project(_actor(request), project_id).to_dict()

    # ── Tasks ─────────────────────────────────────────────────────

    @app.post("/v1/tasks", status_code=201)
    def create_task(req: CreateTaskRequest, request: Request) -> Dict[str, Any]:
        task = guard.create_task(
            _actor(request), req.title, req.project_id, req.assigned_to,
            req.description, req.status,
        )
        return task.to_dict()

    @app.get("/v1/tasks")
    def list_tasks(
        request: Request,
        project_id: Optional[str] = Query(None),
        assigned_to: Optional[str] = Query(None),
        status: Optional[str] = Query(None),
    ) -> Dict[str, Any]:
        tasks = guard.list_tasks(_actor(request), project_id, assigned_to, status)
        return {"tasks": [t.to_dict() for t in tasks]}

    @app.get("/v1/tasks/{task_id}")
    def get_task(task_id: str, request: Request) -> Dict[str, Any]:
        return guard.get_task(_actor(request), task_id).to_dict()

    @app.put("/v1/tasks/{task_id}")
    def update_task(task_id: str, req: UpdateTaskRequest, request: Request) -> Dict[str, Any]:
        task = guard.update_task(_actor(request), task_id, **req.model_dump(exclude_none=True))
        return task.to_dict()

    @app.delete("/v1/tasks/{task_id}")
    def delete_task(task_id: str, request: Request) -> Dict[str, Any]:
        guard.delete_task(_actor(request), task_id)
        return {"deleted": task_id}

    @app.post("/v1/tasks/{task_id}/assign")
    def assign_task(task_id: str, req: AssignTaskRequest, request: Request) -> Dict[str, Any]:
        return guard.assign_task(_actor(request), task_id, req.user_id).to_dict()

    @app.post("/v1/tasks/{task_id}/unassign")
    def unassign_task(task_id: str, request: Request) -> Dict[str, Any]:
        return guard.unassign_task(_actor(request), task_id).to_dict()

    @app.post("/v1/tasks/{task_id}/watchers")
    def add_watcher(task_id: str, req: WatcherRequest, request: Request) -> Dict[str, Any]:
        return guard.watch_task(_actor(request), task_id, req.user_id).to_dict()

    @app.delete("/v1/tasks/{task_id}/watchers/{user_id}")
    def remove_watcher(task_id: str, user_id: str, request: Request) -> Dict[str, Any]:
        return guard.unwatch_task(_actor(request), task_id, user_id).to_dict()

    @app.post("/v1/tasks/{task_id}/comments", status_code=201)
    def add_comment(task_id: str, req: CommentRequest, request: Request) -> Dict[str, Any]:
        return guard.add_comment(_actor(request), task_id, req.content).to_dict()

    @app.get("/v1/tasks/{task_id}/comments")
    def list_comments(task_id: str, request: Request) -> Dict[str, Any]:
        comments = guard.list_comments(_actor(request), task_id)
        return {"comments": [c.to_dict() for c in comments]}

    @app.post("/v1/tasks/{task_id}/time", status_code=201)
    def add_time_entry(task_id: str, req: TimeEntryRequest, request: Request) -> Dict[str, Any]:
        entry = guard.add_time_entry(_actor(request), task_id, req.hours, req.description)
        return entry.to_dict()

    @app.get("/v1/tasks/{task_id}/time")
    def list_time_entries(task_id: str, request: Request) -> Dict[str, Any]:
        entries = guard.list_time_entries(_actor(request), task_id)
        return {
            "time_entries": [e.to_dict() for e in entries],
            "logged_hours": sum(e.hours for e in entries),
        }

    return app


def start_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8080,
    allow_nonlocal: bool = False,
    settings: Optional[Settings] = None,
) -> None:
    """Validate host, create app, and start uvicorn."""
    import uvicorn

    from taskhub_v1.core.api.settings import print_startup_warnings

    validate_host(host, allow_nonlocal)

    if settings is None:
        settings = load_settings(bind=host, port=port, allow_nonlocal=allow_nonlocal)

    print_startup_warnings(settings)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    app = create_app(settings)
    uvicorn.run(app, host=host, port=port, log_level="info")
