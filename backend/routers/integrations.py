"""
Integrations API: connect/disconnect GitHub and Vercel with personal access
tokens, and thin proxies to each provider for the deploy dialog.
"""
import logging
from datetime import timedelta
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from deps import get_current_user_id, get_github_factory, get_token_vault, get_vercel_factory
from errors import DecryptionError, IntegrationRequiredError
from models import (
    ConnectTokenRequest,
    CreateRepoRequest,
    IntegrationProvider,
    IntegrationStatusResponse,
)
from services.github_service import GitHubClient
from services.orchestrator import GitHubFactory, VercelFactory
from services.token_vault import TokenVault
from services.vercel_service import VercelClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/integrations", tags=["integrations"])

Vault = Annotated[TokenVault, Depends(get_token_vault)]
CurrentUser = Annotated[UUID, Depends(get_current_user_id)]
DB = Annotated[Session, Depends(get_db)]


def _token_or_raise(vault: TokenVault, db: Session, user_id: UUID, provider: IntegrationProvider) -> str:
    label = "GitHub" if provider == IntegrationProvider.GITHUB else "Vercel"
    try:
        token = vault.retrieve(db, user_id, provider)
    except DecryptionError:
        raise IntegrationRequiredError(f"Stored {label} token is unusable. Please reconnect {label}")
    if not token:
        raise IntegrationRequiredError(f"{label} not connected")
    return token


def _github(
    vault: Vault,
    db: DB,
    user_id: CurrentUser,
    factory: Annotated[GitHubFactory, Depends(get_github_factory)],
) -> GitHubClient:
    return factory(_token_or_raise(vault, db, user_id, IntegrationProvider.GITHUB))


def _vercel(
    vault: Vault,
    db: DB,
    user_id: CurrentUser,
    factory: Annotated[VercelFactory, Depends(get_vercel_factory)],
) -> VercelClient:
    token = _token_or_raise(vault, db, user_id, IntegrationProvider.VERCEL)
    return factory(token, vault.team_id(db, user_id))


@router.get("/status", response_model=IntegrationStatusResponse)
def integration_status(user_id: CurrentUser, db: DB, vault: Vault):
    """Which providers are connected. Local check only; tokens are not validated remotely."""
    return IntegrationStatusResponse(integrations=vault.status(db, user_id))


# ----- GitHub -----


@router.post("/github/connect")
def connect_github(
    req: ConnectTokenRequest,
    user_id: CurrentUser,
    db: DB,
    vault: Vault,
    factory: Annotated[GitHubFactory, Depends(get_github_factory)],
):
    """Verify a GitHub token against /user, then store it encrypted."""
    user = factory(req.access_token).get_user_info()
    vault.store(
        db,
        user_id,
        IntegrationProvider.GITHUB,
        req.access_token,
        ttl=timedelta(days=settings.token_ttl_days),
        refresh_token=req.refresh_token,
    )
    return {"success": True, "message": "GitHub connected", "account": {"login": user.login, "name": user.name}}


@router.get("/github/repos")
def list_github_repos(github: Annotated[GitHubClient, Depends(_github)]):
    repos = github.list_repositories()
    return {"success": True, "repositories": [r.model_dump() for r in repos]}


@router.post("/github/create-repo", status_code=status.HTTP_201_CREATED)
def create_github_repo(req: CreateRepoRequest, github: Annotated[GitHubClient, Depends(_github)]):
    repo = github.create_repository(req.name, req.description, req.is_private)
    return {"success": True, "repository": repo.model_dump()}


@router.delete("/github/disconnect")
def disconnect_github(user_id: CurrentUser, db: DB, vault: Vault):
    vault.clear(db, user_id, IntegrationProvider.GITHUB)
    return {"success": True, "message": "GitHub disconnected"}


# ----- Vercel -----


@router.post("/vercel/connect")
def connect_vercel(
    req: ConnectTokenRequest,
    user_id: CurrentUser,
    db: DB,
    vault: Vault,
    factory: Annotated[VercelFactory, Depends(get_vercel_factory)],
):
    """Verify a Vercel token against /v2/user, then store it (with the optional team id) encrypted."""
    user = factory(req.access_token, req.team_id).get_user_info()
    vault.store(
        db,
        user_id,
        IntegrationProvider.VERCEL,
        req.access_token,
        ttl=timedelta(days=settings.token_ttl_days),
        refresh_token=req.refresh_token,
        team_id=req.team_id,
    )
    return {"success": True, "message": "Vercel connected", "account": {"username": user.username, "email": user.email}}


@router.get("/vercel/projects")
def list_vercel_projects(vercel: Annotated[VercelClient, Depends(_vercel)]):
    projects = vercel.list_projects()
    return {"success": True, "projects": [p.model_dump() for p in projects]}


@router.get("/vercel/deployment/{deployment_id}")
def get_vercel_deployment(deployment_id: str, vercel: Annotated[VercelClient, Depends(_vercel)]):
    deployment = vercel.get_deployment_status(deployment_id)
    return {"success": True, "deployment": deployment.model_dump()}


@router.delete("/vercel/disconnect")
def disconnect_vercel(user_id: CurrentUser, db: DB, vault: Vault):
    vault.clear(db, user_id, IntegrationProvider.VERCEL)
    return {"success": True, "message": "Vercel disconnected"}
