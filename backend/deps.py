"""
FastAPI dependencies: auth, DB sessions and the deployment services.
"""
from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

import database
from auth_utils import user_id_from_token
from config import settings
from database import User, get_db
from deployment_store import SessionFactory
from services.mailer import Mailer
from services.orchestrator import (
    DeploymentOrchestrator,
    GitHubFactory,
    VercelFactory,
    github_factory_for,
    vercel_factory_for,
)
from services.token_vault import TokenVault

security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Session, Depends(get_db)],
) -> UUID:
    """Require valid JWT and return user_id. Raises 401 if not authenticated."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id = user_id_from_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if db.get(User, user_id) is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user_id


def get_session_factory() -> SessionFactory:
    """Factory for the short-lived sessions the background deployment uses."""
    if database.SessionLocal is None:
        raise RuntimeError("DATABASE_URL not set")
    return database.SessionLocal


@lru_cache
def get_token_vault() -> TokenVault:
    return TokenVault(settings.encryption_key)


def get_github_factory() -> GitHubFactory:
    return github_factory_for(settings)


def get_vercel_factory() -> VercelFactory:
    return vercel_factory_for(settings)


def get_mailer() -> Mailer:
    return Mailer(settings)


def get_orchestrator(
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
    vault: Annotated[TokenVault, Depends(get_token_vault)],
    github_factory: Annotated[GitHubFactory, Depends(get_github_factory)],
    vercel_factory: Annotated[VercelFactory, Depends(get_vercel_factory)],
    mailer: Annotated[Mailer, Depends(get_mailer)],
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(
        session_factory,
        vault,
        settings,
        github_factory=github_factory,
        vercel_factory=vercel_factory,
        mailer=mailer,
    )
