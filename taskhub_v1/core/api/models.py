"""Pydantic request/response models for the TaskHub API."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


# ── Health ───────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str = "ok"
    version: str


# ── Teams ────────────────────────────────────────────────────────

class CreateTeamRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    is_private: bool = False


class UpdateTeamRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_private: Optional[bool] = None
    is_active: Optional[bool] = None


class InviteMemberRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: str = Field("member", description="Team role: manager or member.")


class UpdateMemberRoleRequest(BaseModel):
    role: str = Field(..., min_length=1)


# ── Projects ─────────────────────────────────────────────────────

class CreateProjectRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    team_id: Optional[str] = None
    description: str = Field("", max_length=1000)
    visibility: str = Field("team", description="public, private or team.")


class UpdateProjectRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    visibility: Optional[str] = None


class AddProjectMemberRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: str = Field(
        "developer", description="Project role: lead, developer, designer, tester or client.",
    )


# ── Tasks ────────────────────────────────────────────────────────

class CreateTaskRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    project_id: Optional[str] = None
    assigned_to: Optional[str] = None
    description: str = Field("", max_length=2000)
    status: str = "todo"


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    status: Optional[str] = None


class AssignTaskRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class WatcherRequest(BaseModel):
    user_id: Optional[str] = None


class CommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=1000)


class TimeEntryRequest(BaseModel):
    hours: float = Field(..., ge=0)
    description: str = Field("", max_length=500)


# ── Access decisions ─────────────────────────────────────────────

class AccessRequest(BaseModel):
    entity_type: str = Field(..., description="team, project or task.")
    entity_id: str = Field(..., min_length=1)
    capability: str = Field(..., description="read, manage, invite, update or delete.")


class AccessResponse(BaseModel):
    entity_type: str
    entity_id: str
    capability: str
    allowed: bool


class MeTeam(BaseModel):
    team_id: str
    name: str
    role: str


class MeResponse(BaseModel):
    id: str
    global_role: str
    teams: List[MeTeam]
