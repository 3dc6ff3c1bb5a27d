"""
Deployment orchestrator: push a project's archive to GitHub, then optionally
deploy the repository on Vercel.

prepare() runs inside the request and performs every check that has to pass
before the project changes state. run() executes the attempt, normally as a
background task, and always leaves the project in a terminal state.
"""
import logging
import os
import re
import time
import uuid
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from config import Settings
from database import Project, User, utcnow
from deployment_store import SessionFactory, acquire_lock, record_transition, release_lock
from errors import (
    AttemptSupersededError,
    DecryptionError,
    DeploymentError,
    DeploymentInProgressError,
    IntegrationRequiredError,
    PermissionDeniedError,
    ProjectNotFoundError,
    ValidationError,
)
from models import (
    DeployRequest,
    DeploymentStatusView,
    ExistingRepositoryRequest,
    IntegrationProvider,
    NewRepositoryRequest,
)
from services.deployment_state import PROGRESS, DeployPhase
from services.github_service import GitHubClient
from services.mailer import Mailer
from services.token_vault import TokenVault
from services.vercel_service import VercelClient
from services.workspace import attempt_workspace, extract_archive

logger = logging.getLogger(__name__)

REPO_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9._-]*$")
FULL_NAME_RE = re.compile(r"^[A-Za-z0-9-]+/[A-Za-z0-9_.-]+$")
VERCEL_DONE_STATES = {"READY", "ERROR", "CANCELED"}


def sanitize_repository_name(name: str) -> str:
    """Normalize a display name into a repository name: 'My Cool App ' -> 'my-cool-app'."""
    s = re.sub(r"\s+", "-", name.strip().lower())
    s = re.sub(r"[^a-z0-9._-]", "", s)
    return s.strip("-.")[:100]


def validate_request(request: DeployRequest) -> None:
    """Reject malformed deploy requests. Names must arrive already sanitized."""
    if isinstance(request, NewRepositoryRequest):
        name = request.repository_name
        if not name:
            raise ValidationError("Repository name is required")
        if len(name) > 100 or not REPO_NAME_RE.match(name):
            suggestion = sanitize_repository_name(name)
            hint = f" (try '{suggestion}')" if suggestion else ""
            raise ValidationError(f"Repository name must be lowercase and hyphenated{hint}")
    elif isinstance(request, ExistingRepositoryRequest):
        if not request.existing_repo_full_name:
            raise ValidationError("Select an existing repository")
        if not FULL_NAME_RE.match(request.existing_repo_full_name):
            raise ValidationError("Existing repository must be given as owner/repo")
    else:
        raise ValidationError("repositoryOption must be 'new' or 'existing'")


@dataclass
class RepositoryTarget:
    full_name: str
    html_url: str
    clone_url: str
    repo_id: Optional[int] = None


@dataclass
class DeploymentAttempt:
    attempt_id: str
    project_id: UUID
    user_id: UUID
    request: DeployRequest
    archive_path: str
    project_name: str
    description: str
    framework: Optional[str]
    github_token: str = field(repr=False)
    vercel_token: Optional[str] = field(default=None, repr=False)
    vercel_team_id: Optional[str] = None
    vercel_note: Optional[str] = None
    notify_email: Optional[str] = None
    initial: Optional[DeploymentStatusView] = None


GitHubFactory = Callable[[str], GitHubClient]
VercelFactory = Callable[[str, Optional[str]], VercelClient]


def github_factory_for(settings: Settings) -> GitHubFactory:
    def factory(token: str) -> GitHubClient:
        return GitHubClient(
            token,
            timeout=settings.http_timeout_seconds,
            api_base=settings.github_api_base,
            git_timeout=settings.git_timeout_seconds,
            git_user_name=settings.git_user_name,
            git_user_email=settings.git_user_email,
        )
    return factory


def vercel_factory_for(settings: Settings) -> VercelFactory:
    def factory(token: str, team_id: Optional[str] = None) -> VercelClient:
        return VercelClient(token, team_id=team_id, timeout=settings.http_timeout_seconds, api_base=settings.vercel_api_base)
    return factory


class DeploymentOrchestrator:
    def __init__(
        self,
        session_factory: SessionFactory,
        vault: TokenVault,
        settings: Settings,
        github_factory: Optional[GitHubFactory] = None,
        vercel_factory: Optional[VercelFactory] = None,
        mailer: Optional[Mailer] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.vault = vault
        self.settings = settings
        self.github_factory = github_factory or github_factory_for(settings)
        self.vercel_factory = vercel_factory or vercel_factory_for(settings)
        self.mailer = mailer
        self._sleep = sleep

    def _archive_path(self, project: Project) -> str:
        if not project.project_file_path:
            raise ValidationError("Project has no uploaded source archive to deploy")
        path = project.project_file_path
        if not os.path.isabs(path):
            path = os.path.join(self.settings.upload_dir, path)
        if not os.path.isfile(path):
            raise ValidationError("Project source archive is missing; upload the project files again")
        return path

    # ----- Request phase -----

    def prepare(self, db: Session, user_id: UUID, project_id: UUID, request: DeployRequest) -> DeploymentAttempt:
        """Check preconditions, claim the project and move it to `checking`."""
        project = db.get(Project, project_id)
        if project is None:
            raise ProjectNotFoundError("Project not found")
        if project.uploaded_by != user_id:
            raise PermissionDeniedError("Only the project owner can deploy it")

        status = self.vault.status(db, user_id)
        github = status[IntegrationProvider.GITHUB.value]
        if not github["connected"]:
            raise IntegrationRequiredError("Please connect your GitHub account first")
        if github["expired"]:
            raise IntegrationRequiredError("GitHub token has expired. Please reconnect GitHub")

        validate_request(request)
        archive_path = self._archive_path(project)

        try:
            github_token = self.vault.retrieve(db, user_id, IntegrationProvider.GITHUB)
        except DecryptionError:
            logger.warning("Unreadable GitHub token for user %s", user_id)
            raise IntegrationRequiredError("Stored GitHub token is unusable. Please reconnect GitHub")

        vercel_token, vercel_note = None, None
        vercel = status[IntegrationProvider.VERCEL.value]
        if not vercel["connected"]:
            vercel_note = "Vercel not connected, skipped"
        elif vercel["expired"]:
            vercel_note = "Vercel token expired, skipped"
        else:
            try:
                vercel_token = self.vault.retrieve(db, user_id, IntegrationProvider.VERCEL)
            except DecryptionError:
                logger.warning("Unreadable Vercel token for user %s", user_id)
                vercel_note = "Vercel token unusable, reconnect Vercel; skipped"

        owner = db.get(User, user_id)
        attempt = DeploymentAttempt(
            attempt_id=str(uuid.uuid4()),
            project_id=project.id,
            user_id=user_id,
            request=request,
            archive_path=archive_path,
            project_name=project.name,
            description=project.description or project.name,
            framework=(project.frameworks or [None])[0],
            github_token=github_token,
            vercel_token=vercel_token,
            vercel_team_id=self.vault.team_id(db, user_id) if vercel_token else None,
            vercel_note=vercel_note,
            notify_email=owner.email if owner else None,
        )

        if not acquire_lock(self.session_factory, project.id, attempt.attempt_id, self.settings.deployment_lock_stale_seconds):
            raise DeploymentInProgressError("A deployment is already in progress for this project")
        try:
            attempt.initial = record_transition(
                self.session_factory,
                project.id,
                DeployPhase.CHECKING,
                progress=PROGRESS["checking"],
                attempt_id=attempt.attempt_id,
            )
        except Exception:
            release_lock(self.session_factory, project.id, attempt.attempt_id)
            raise
        logger.info("Deployment %s accepted for project %s", attempt.attempt_id, project.id)
        return attempt

    # ----- Execution phase -----

    def run(self, attempt: DeploymentAttempt) -> Optional[DeploymentStatusView]:
        """Run one attempt to a terminal state. Returns the final state, or None if the project vanished or the attempt was superseded."""
        view: Optional[DeploymentStatusView] = None
        try:
            with attempt_workspace(attempt.attempt_id, self.settings.scratch_dir) as workdir:
                view = self._execute(attempt, workdir)
        except AttemptSupersededError:
            logger.warning(
                "Deployment %s of project %s was superseded; stopping without further writes",
                attempt.attempt_id,
                attempt.project_id,
            )
        except DeploymentError as e:
            logger.warning("Deployment %s of project %s failed: %s", attempt.attempt_id, attempt.project_id, e)
            view = self._fail(attempt, str(e))
        except Exception as e:
            logger.exception("Deployment %s of project %s crashed", attempt.attempt_id, attempt.project_id)
            view = self._fail(attempt, f"Unexpected error: {e}")
        finally:
            release_lock(self.session_factory, attempt.project_id, attempt.attempt_id)

        if view is not None and self.mailer is not None:
            self.mailer.notify_deployment(attempt.notify_email, attempt.project_name, view)
        return view

    def deploy(self, db: Session, user_id: UUID, project_id: UUID, request: DeployRequest) -> Optional[DeploymentStatusView]:
        """prepare() and run() in the calling thread."""
        return self.run(self.prepare(db, user_id, project_id, request))

    def _fail(self, attempt: DeploymentAttempt, message: str) -> Optional[DeploymentStatusView]:
        try:
            return record_transition(
                self.session_factory, attempt.project_id, DeployPhase.FAILED, label=message, attempt_id=attempt.attempt_id
            )
        except AttemptSupersededError:
            logger.warning("Deployment %s lost its claim on project %s", attempt.attempt_id, attempt.project_id)
            return None
        except ProjectNotFoundError:
            logger.warning("Project %s disappeared during deployment %s", attempt.project_id, attempt.attempt_id)
            return None

    def _execute(self, attempt: DeploymentAttempt, workdir: str) -> DeploymentStatusView:
        record = partial(record_transition, self.session_factory, attempt.project_id, attempt_id=attempt.attempt_id)
        github = self.github_factory(attempt.github_token)

        user = github.get_user_info()
        logger.info("GitHub token verified for %s", user.login)
        target = self._resolve_repository(attempt, github, record)

        record(DeployPhase.PUSHING, progress=PROGRESS["pushing"])
        source = extract_archive(attempt.archive_path, os.path.join(workdir, "source"))
        github.push_local_directory(
            target.clone_url,
            source,
            f"Deploy {attempt.project_name} from Student Hub",
            branch=self.settings.default_branch,
        )
        record(
            DeployPhase.PUSHING,
            "Code pushed to GitHub",
            PROGRESS["pushed"],
            github_repo_url=target.html_url,
            github_repo_id=target.repo_id,
        )

        if attempt.vercel_token is None:
            label, url, outcome = f"Deployed to GitHub ({attempt.vercel_note})", target.html_url, "Success"
        else:
            label, url, outcome = self._deploy_to_vercel(attempt, github, target, record)

        return record(
            DeployPhase.SUCCESS,
            label,
            PROGRESS["success"],
            history_entry={
                "version": attempt.attempt_id[:8],
                "deployed_at": utcnow().isoformat(),
                "status": outcome,
                "url": url,
            },
        )

    def _resolve_repository(self, attempt: DeploymentAttempt, github: GitHubClient, record) -> RepositoryTarget:
        request = attempt.request
        if isinstance(request, NewRepositoryRequest):
            record(DeployPhase.CHECKING, f"Creating GitHub repository {request.repository_name}...", PROGRESS["repository"])
            repo = github.create_repository(request.repository_name, attempt.description, request.is_private)
            return RepositoryTarget(
                full_name=repo.full_name,
                html_url=repo.html_url,
                clone_url=repo.clone_url or f"{repo.html_url}.git",
                repo_id=repo.id,
            )
        full_name = request.existing_repo_full_name
        record(DeployPhase.CHECKING, f"Using existing repository {full_name}", PROGRESS["repository"])
        return RepositoryTarget(
            full_name=full_name,
            html_url=f"https://github.com/{full_name}",
            clone_url=f"https://github.com/{full_name}.git",
        )

    def _deploy_to_vercel(
        self, attempt: DeploymentAttempt, github: GitHubClient, target: RepositoryTarget, record
    ) -> tuple[str, str, str]:
        """Returns (step label, primary url, history outcome). Vercel errors never fail the attempt."""
        record(DeployPhase.DEPLOYING, progress=PROGRESS["deploying"])
        try:
            repo_id = target.repo_id or github.get_repository(target.full_name).id
            vercel = self.vercel_factory(attempt.vercel_token, attempt.vercel_team_id)
            deployment = vercel.deploy_from_github(
                attempt.project_name,
                target.html_url,
                attempt.framework,
                repo_id,
                branch=self.settings.default_branch,
            )
        except DeploymentError as e:
            logger.warning("Vercel stage failed for project %s: %s", attempt.project_id, e)
            return f"Deployed to GitHub; Vercel deployment failed: {e}", target.html_url, "Partial"

        live_url = deployment.url if deployment.url.startswith("http") else f"https://{deployment.url}"
        record(
            DeployPhase.DEPLOYING,
            "Waiting for Vercel build...",
            PROGRESS["deployed"],
            github_repo_id=repo_id,
            vercel_url=live_url,
            vercel_settings_url=deployment.settings_url,
            vercel_project_id=deployment.project_id,
            vercel_deployment_id=deployment.deployment_id,
        )
        try:
            state = self._await_build(vercel, deployment.deployment_id)
        except DeploymentError as e:
            logger.warning("Could not read Vercel build status for project %s: %s", attempt.project_id, e)
            return "Deployed to GitHub and Vercel (build status unavailable)", live_url, "Success"

        if state in ("ERROR", "CANCELED"):
            return f"Deployed to GitHub; Vercel build {state.lower()}", live_url, "Partial"
        if state == "READY":
            return "Deployed to GitHub and Vercel", live_url, "Success"
        return "Deployed to GitHub and Vercel (build in progress)", live_url, "Success"

    def _await_build(self, vercel: VercelClient, deployment_id: str) -> Optional[str]:
        """Poll the Vercel build until it settles or the configured wait runs out."""
        wait_seconds = self.settings.vercel_build_wait_seconds
        if wait_seconds <= 0:
            return None
        deadline = time.monotonic() + wait_seconds
        while True:
            state = (vercel.get_deployment_status(deployment_id).state or "").upper()
            if state in VERCEL_DONE_STATES or time.monotonic() >= deadline:
                return state or None
            self._sleep(self.settings.vercel_build_poll_seconds)
