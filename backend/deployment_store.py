"""
Persistence for project deployment state.

Every write opens its own session and commits immediately, so a status poll
always sees the latest transition. The per-project guard lives in the
`deployment_attempt_id` / `deployment_started_at` columns and is taken with a
single conditional UPDATE.
"""
import logging
from datetime import timedelta
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from database import Project, utcnow
from errors import AttemptSupersededError, ProjectNotFoundError
from models import DeploymentStatusView
from services.deployment_state import (
    TERMINAL_STATUSES,
    DeployPhase,
    apply_transition,
    current_phase,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]

ACTIVE_PHASES = {DeployPhase.CHECKING, DeployPhase.PUSHING, DeployPhase.DEPLOYING}


def snapshot_of(project: Project, poll_interval_seconds: Optional[float] = None) -> DeploymentStatusView:
    terminal = project.deployment_status in TERMINAL_STATUSES
    poll_ms = None
    if poll_interval_seconds and project.deployment_status == "Pending":
        poll_ms = int(poll_interval_seconds * 1000)
    return DeploymentStatusView(
        project_id=str(project.id),
        deployment_status=project.deployment_status,
        deployment_phase=project.deployment_phase,
        deployment_step=project.deployment_step,
        deployment_progress=project.deployment_progress or 0,
        github_repo_url=project.github_repo_url,
        vercel_url=project.vercel_url,
        vercel_settings_url=project.vercel_settings_url,
        vercel_deployment_id=project.vercel_deployment_id,
        is_terminal=terminal,
        poll_interval_ms=poll_ms,
    )


def load_snapshot(
    session_factory: SessionFactory,
    project_id: UUID,
    poll_interval_seconds: Optional[float] = None,
) -> Optional[DeploymentStatusView]:
    """Current deployment state, or None if the project no longer exists."""
    db = session_factory()
    try:
        project = db.get(Project, project_id)
        return snapshot_of(project, poll_interval_seconds) if project else None
    finally:
        db.close()


def acquire_lock(
    session_factory: SessionFactory,
    project_id: UUID,
    attempt_id: str,
    stale_after_seconds: int = 900,
) -> bool:
    """
    Claim the project for one attempt. Returns False when another attempt holds
    a fresh claim. A stale claim is taken over and its attempt marked failed.
    """
    now = utcnow()
    cutoff = now - timedelta(seconds=stale_after_seconds)
    db = session_factory()
    try:
        result = db.execute(
            update(Project)
            .where(Project.id == project_id)
            .where(or_(Project.deployment_attempt_id.is_(None), Project.deployment_started_at < cutoff))
            .values(deployment_attempt_id=attempt_id, deployment_started_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            return False
        project = db.get(Project, project_id)
        if project is not None and current_phase(project) in ACTIVE_PHASES:
            logger.warning("Taking over abandoned deployment of project %s", project_id)
            apply_transition(project, DeployPhase.FAILED, "Previous deployment attempt was abandoned")
            db.commit()
        return True
    finally:
        db.close()


def release_lock(session_factory: SessionFactory, project_id: UUID, attempt_id: str) -> None:
    db = session_factory()
    try:
        db.execute(
            update(Project)
            .where(Project.id == project_id, Project.deployment_attempt_id == attempt_id)
            .values(deployment_attempt_id=None, deployment_started_at=None)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    finally:
        db.close()


def record_transition(
    session_factory: SessionFactory,
    project_id: UUID,
    phase: DeployPhase,
    label: Optional[str] = None,
    progress: Optional[int] = None,
    history_entry: Optional[dict[str, Any]] = None,
    attempt_id: Optional[str] = None,
    **fields: Any,
) -> DeploymentStatusView:
    """
    Apply one transition and commit it. Raises ProjectNotFoundError if the
    project is gone. With `attempt_id`, the write only lands while that attempt
    still holds the project claim; otherwise AttemptSupersededError.
    """
    db = session_factory()
    try:
        project = db.get(Project, project_id, with_for_update=attempt_id is not None)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} no longer exists")
        if attempt_id is not None and project.deployment_attempt_id != attempt_id:
            raise AttemptSupersededError(f"Attempt {attempt_id} no longer owns project {project_id}")
        apply_transition(project, phase, label, progress, history_entry=history_entry, **fields)
        db.commit()
        db.refresh(project)
        logger.info(
            "Project %s: %s %s%% %s",
            project_id,
            project.deployment_status,
            project.deployment_progress,
            project.deployment_step,
        )
        return snapshot_of(project)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
