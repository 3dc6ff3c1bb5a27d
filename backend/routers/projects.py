"""
Projects API: upload, listing, editing, deletion, deployment trigger and deployment progress.
"""
import json
import logging
import os
import shutil
import uuid
from functools import partial
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Body, Depends, File, Form, Request, Response, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from config import settings
from database import Project, get_db
from deployment_store import SessionFactory, load_snapshot, snapshot_of
from deps import get_current_user_id, get_orchestrator, get_session_factory
from errors import PermissionDeniedError, ProjectNotFoundError, ValidationError
from models import (
    DeployAcceptedResponse,
    DeployRequest,
    DeploymentStatusView,
    ProjectListResponse,
    ProjectResponse,
    ProjectUpdateRequest,
)
from services.orchestrator import DeploymentOrchestrator
from services.status_reporter import DeploymentStatusReporter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])

DEPLOYMENT_TYPES = ("Portfolio Only", "Portfolio + Deploy")


def _owned_project(db: Session, project_id: UUID, user_id: UUID) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise ProjectNotFoundError("Project not found")
    if project.uploaded_by != user_id:
        raise PermissionDeniedError("You do not have access to this project")
    return project


def _project_response(project: Project) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        name=project.name,
        description=project.description or "",
        languages=project.languages or [],
        frameworks=project.frameworks or [],
        tags=project.tags or [],
        project_type=project.project_type,
        deployment_type=project.deployment_type,
        uploaded_by=project.uploaded_by,
        has_project_files=bool(project.project_file_path),
        deployment_status=project.deployment_status,
        deployment_step=project.deployment_step,
        deployment_progress=project.deployment_progress or 0,
        github_repo_url=project.github_repo_url,
        vercel_url=project.vercel_url,
        vercel_settings_url=project.vercel_settings_url,
        deployment_history=project.deployment_history or [],
        created_at=project.created_at,
        updated_at=project.updated_at,
    )


def _json_list(raw: Optional[str], field: str) -> list[str]:
    """Multipart list fields arrive as JSON arrays; a bare comma list is accepted too."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = [part.strip() for part in raw.split(",")]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{field} must be a list of strings")
    return [v for v in value if v]


def _save_archive(upload: UploadFile) -> str:
    """Store the uploaded ZIP under the upload dir. Returns the path relative to it."""
    if not (upload.filename or "").lower().endswith(".zip"):
        raise ValidationError("Project files must be uploaded as a .zip archive")
    os.makedirs(settings.upload_dir, exist_ok=True)
    stored_name = f"{uuid.uuid4().hex}.zip"
    target = os.path.join(settings.upload_dir, stored_name)
    with open(target, "wb") as out:
        shutil.copyfileobj(upload.file, out)
    if os.path.getsize(target) > settings.max_upload_mb * 1024 * 1024:
        os.remove(target)
        raise ValidationError(f"Project archive exceeds {settings.max_upload_mb} MB")
    return stored_name


def _stored_archive(project: Project) -> Optional[str]:
    """Absolute path of the project's archive when it lives under the upload dir."""
    if not project.project_file_path:
        return None
    upload_root = os.path.realpath(settings.upload_dir)
    path = os.path.realpath(os.path.join(upload_root, project.project_file_path))
    if os.path.commonpath([upload_root, path]) != upload_root:
        return None
    return path


@router.post("/create", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
def create_project(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[Session, Depends(get_db)],
    name: Annotated[str, Form(min_length=1, max_length=255)],
    description: Annotated[str, Form()] = "",
    languages: Annotated[Optional[str], Form()] = None,
    frameworks: Annotated[Optional[str], Form()] = None,
    tags: Annotated[Optional[str], Form()] = None,
    project_type: Annotated[str, Form(alias="projectType")] = "Web",
    deployment_type: Annotated[str, Form(alias="deploymentType")] = "Portfolio + Deploy",
    project_files: Annotated[Optional[UploadFile], File(alias="projectFiles")] = None,
):
    """Create a project from a multipart upload (ZIP under `projectFiles`)."""
    if deployment_type not in DEPLOYMENT_TYPES:
        raise ValidationError(f"deploymentType must be one of: {', '.join(DEPLOYMENT_TYPES)}")
    project = Project(
        uploaded_by=user_id,
        name=name.strip(),
        description=description.strip(),
        languages=_json_list(languages, "languages"),
        frameworks=_json_list(frameworks, "frameworks"),
        tags=_json_list(tags, "tags"),
        project_type=project_type,
        deployment_type=deployment_type,
    )
    if project_files is not None and project_files.filename:
        project.project_file_path = _save_archive(project_files)
    db.add(project)
    db.commit()
    db.refresh(project)
    logger.info("Project %s created by %s", project.id, user_id)
    return _project_response(project)


@router.get("", response_model=ProjectListResponse)
def list_projects(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[Session, Depends(get_db)],
):
    rows = db.query(Project).filter(Project.uploaded_by == user_id).order_by(Project.created_at.desc()).all()
    return ProjectListResponse(projects=[_project_response(p) for p in rows])


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(
    project_id: UUID,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[Session, Depends(get_db)],
):
    return _project_response(_owned_project(db, project_id, user_id))


@router.put("/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: UUID,
    body: ProjectUpdateRequest,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[Session, Depends(get_db)],
):
    """Update descriptive fields. Deployment state is never touched here."""
    project = _owned_project(db, project_id, user_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "deployment_type" in changes and changes["deployment_type"] not in DEPLOYMENT_TYPES:
        raise ValidationError(f"deploymentType must be one of: {', '.join(DEPLOYMENT_TYPES)}")
    if "name" in changes:
        changes["name"] = changes["name"].strip()
    for field, value in changes.items():
        setattr(project, field, value)
    db.commit()
    db.refresh(project)
    logger.info("Project %s updated (%s)", project.id, ", ".join(sorted(changes)) or "no changes")
    return _project_response(project)


@router.delete("/{project_id}")
def delete_project(
    project_id: UUID,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Delete the project and its stored archive. A deployment still running for
    it finds the project gone at its next step and ends without a result.
    """
    project = _owned_project(db, project_id, user_id)
    archive = _stored_archive(project)
    if project.deployment_attempt_id:
        logger.warning("Project %s deleted while deployment %s is running", project.id, project.deployment_attempt_id)
    db.delete(project)
    db.commit()
    if archive and os.path.isfile(archive):
        os.remove(archive)
    logger.info("Project %s deleted by %s", project_id, user_id)
    return {"success": True, "message": "Project deleted successfully"}


@router.post("/deploy/{project_id}", response_model=DeployAcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
def deploy_project(
    project_id: UUID,
    body: Annotated[DeployRequest, Body(discriminator="repository_option")],
    background_tasks: BackgroundTasks,
    response: Response,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[Session, Depends(get_db)],
    orchestrator: Annotated[DeploymentOrchestrator, Depends(get_orchestrator)],
    wait: bool = False,
):
    """
    Start a deployment. Preconditions are checked before answering; the
    attempt itself runs after the response unless `wait=true`.
    """
    attempt = orchestrator.prepare(db, user_id, project_id, body)
    if wait:
        final = orchestrator.run(attempt)
        if final is None:
            raise ProjectNotFoundError("Project was deleted during deployment")
        response.status_code = status.HTTP_200_OK
        return DeployAcceptedResponse(
            message=final.deployment_step or final.deployment_status,
            attempt_id=attempt.attempt_id,
            deployment=final,
        )
    background_tasks.add_task(orchestrator.run, attempt)
    return DeployAcceptedResponse(attempt_id=attempt.attempt_id, deployment=attempt.initial)


@router.get("/{project_id}/deployment", response_model=DeploymentStatusView)
def get_deployment_status(
    project_id: UUID,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[Session, Depends(get_db)],
):
    """One-shot snapshot. `pollIntervalMs` is set while the deployment is pending."""
    project = _owned_project(db, project_id, user_id)
    return snapshot_of(project, settings.status_poll_interval_seconds)


@router.get("/{project_id}/deployment/stream")
async def stream_deployment_status(
    project_id: UUID,
    request: Request,
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[Session, Depends(get_db)],
    session_factory: Annotated[SessionFactory, Depends(get_session_factory)],
):
    """SSE stream of `status` events until the deployment settles, then one `done` event."""
    _owned_project(db, project_id, user_id)
    interval = settings.status_poll_interval_seconds
    reporter = DeploymentStatusReporter(partial(load_snapshot, session_factory, project_id, interval), interval=interval)

    async def event_generator():
        async for view in reporter.apoll():
            yield f"event: status\ndata: {view.model_dump_json(by_alias=True)}\n\n"
            if await request.is_disconnected():
                return
        final = reporter.last
        done = {
            "type": "done",
            "deploymentStatus": final.deployment_status if final else None,
            "refresh": ["/api/projects"],
        }
        yield f"event: done\ndata: {json.dumps(done)}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
