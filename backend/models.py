"""
Pydantic models for provider payloads and the projects/integrations API.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class IntegrationProvider(str, Enum):
    GITHUB = "github"
    VERCEL = "vercel"


# ----- Provider payloads (GitHub / Vercel REST) -----


class GitHubRepo(BaseModel):
    id: int
    name: str
    full_name: str
    html_url: str
    clone_url: Optional[str] = None
    private: bool = False
    default_branch: Optional[str] = None
    description: Optional[str] = None
    updated_at: Optional[str] = None


class GitHubUser(BaseModel):
    id: int
    login: str
    name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    html_url: Optional[str] = None


class VercelProject(BaseModel):
    id: str
    name: str
    framework: Optional[str] = None
    link: Optional[dict[str, Any]] = None


class VercelUser(BaseModel):
    id: Optional[str] = None
    uid: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


class VercelDeployment(BaseModel):
    project_id: str
    project_name: str
    deployment_id: str
    url: str
    inspector_url: Optional[str] = None
    settings_url: str


class VercelDeploymentStatus(BaseModel):
    state: Optional[str] = None
    url: Optional[str] = None
    status: Optional[str] = None


# ----- API models (camelCase on the wire) -----


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NewRepositoryRequest(CamelModel):
    repository_option: Literal["new"] = "new"
    repository_name: str = ""
    is_private: bool = False


class ExistingRepositoryRequest(CamelModel):
    repository_option: Literal["existing"] = "existing"
    existing_repo_full_name: str = ""
    is_private: bool = False


# Tagged union on repositoryOption
DeployRequest = Union[NewRepositoryRequest, ExistingRepositoryRequest]


class DeploymentStatusView(CamelModel):
    project_id: str
    deployment_status: str
    deployment_phase: str
    deployment_step: Optional[str] = None
    deployment_progress: int = 0
    github_repo_url: Optional[str] = None
    vercel_url: Optional[str] = None
    vercel_settings_url: Optional[str] = None
    vercel_deployment_id: Optional[str] = None
    is_terminal: bool = False
    poll_interval_ms: Optional[int] = None


class DeployAcceptedResponse(CamelModel):
    success: bool = True
    message: str = "Deployment started. Poll GET /api/projects/{id}/deployment for progress."
    attempt_id: str
    deployment: DeploymentStatusView


class HistoryEntry(CamelModel):
    version: str
    deployed_at: datetime
    status: str
    url: Optional[str] = None


class ProjectResponse(CamelModel):
    id: UUID
    name: str
    description: str
    languages: list[str] = []
    frameworks: list[str] = []
    tags: list[str] = []
    project_type: str
    deployment_type: str
    uploaded_by: UUID
    has_project_files: bool = False
    deployment_status: str
    deployment_step: Optional[str] = None
    deployment_progress: int = 0
    github_repo_url: Optional[str] = None
    vercel_url: Optional[str] = None
    vercel_settings_url: Optional[str] = None
    deployment_history: list[HistoryEntry] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProjectUpdateRequest(CamelModel):
    """Descriptive fields only; deployment columns are written by the orchestrator alone."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    languages: Optional[list[str]] = None
    frameworks: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    project_type: Optional[str] = None
    deployment_type: Optional[str] = None


class ProjectListResponse(CamelModel):
    success: bool = True
    projects: list[ProjectResponse]


class IntegrationState(CamelModel):
    connected: bool
    expiry: Optional[datetime] = None
    expired: bool = False


class IntegrationStatusResponse(CamelModel):
    success: bool = True
    integrations: dict[str, IntegrationState]


class ConnectTokenRequest(CamelModel):
    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    team_id: Optional[str] = None


class CreateRepoRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=2000)
    is_private: bool = False
