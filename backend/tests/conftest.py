"""
Pytest fixtures for the deployment backend tests.

Provides:
- SQLite database per test (file under tmp_path)
- Token vault, user and project-with-archive fixtures
- Fake GitHub / Vercel clients recording what the orchestrator asks of them
- TestClient with dependency overrides and auth headers
"""
import os

os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")

import zipfile
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import deps
from auth_utils import create_access_token
from config import Settings, settings
from database import Base, Project, User, get_db
from models import (
    GitHubRepo,
    GitHubUser,
    IntegrationProvider,
    VercelDeployment,
    VercelDeploymentStatus,
    VercelUser,
)
from services.mailer import Mailer
from services.orchestrator import DeploymentOrchestrator
from services.token_vault import TokenVault

TEST_KEY = "test-encryption-key"
TEST_JWT_SECRET = "test-jwt-secret"


# ============================================================
# Helpers
# ============================================================

def make_zip(path, files: dict[str, str], wrap: Optional[str] = "my-app") -> str:
    """Write a ZIP of `files`, optionally wrapped in one top-level folder."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in files.items():
            zf.writestr(f"{wrap}/{name}" if wrap else name, content)
    return str(path)


SAMPLE_FILES = {
    "package.json": '{"name": "my-cool-app", "scripts": {"build": "vite build"}}',
    "index.html": "<h1>Hello</h1>",
    "src/main.js": "console.log('hi')",
}


class FakeGitHub:
    """Stands in for GitHubClient; records calls, optional failures."""

    def __init__(self):
        self.calls = []
        self.tokens = []
        self.user_error = None
        self.create_error = None
        self.push_error = None
        self.lookup_error = None

    def __call__(self, token):
        self.tokens.append(token)
        return self

    def get_user_info(self):
        self.calls.append(("user",))
        if self.user_error:
            raise self.user_error
        return GitHubUser(id=1, login="student")

    def list_repositories(self):
        return [GitHubRepo(id=1, name="site", full_name="student/site", html_url="https://github.com/student/site")]

    def create_repository(self, name, description="", is_private=False):
        self.calls.append(("create", name, is_private))
        if self.create_error:
            raise self.create_error
        return GitHubRepo(
            id=4242,
            name=name,
            full_name=f"student/{name}",
            html_url=f"https://github.com/student/{name}",
            clone_url=f"https://github.com/student/{name}.git",
            private=is_private,
        )

    def get_repository(self, full_name):
        self.calls.append(("lookup", full_name))
        if self.lookup_error:
            raise self.lookup_error
        return GitHubRepo(
            id=777,
            name=full_name.split("/")[1],
            full_name=full_name,
            html_url=f"https://github.com/{full_name}",
        )

    def push_local_directory(self, repo_url, local_path, commit_message="", branch="main"):
        files = sorted(
            os.path.relpath(os.path.join(root, f), local_path)
            for root, _, names in os.walk(local_path)
            for f in names
        )
        self.calls.append(("push", repo_url, files, branch))
        if self.push_error:
            raise self.push_error
        return True

    def called(self, kind):
        return [c for c in self.calls if c[0] == kind]


class FakeVercel:
    """Stands in for VercelClient."""

    def __init__(self):
        self.calls = []
        self.team_ids = []
        self.user_error = None
        self.deploy_error = None
        self.status_error = None
        self.states = ["READY"]

    def __call__(self, token, team_id=None):
        self.team_ids.append(team_id)
        return self

    def get_user_info(self):
        if self.user_error:
            raise self.user_error
        return VercelUser(uid="u1", username="student", email="student@college.edu")

    def list_projects(self):
        return []

    def deploy_from_github(self, project_name, github_repo_url, framework=None, repo_id=None, branch="main"):
        self.calls.append(("deploy", project_name, github_repo_url, framework, repo_id))
        if self.deploy_error:
            raise self.deploy_error
        return VercelDeployment(
            project_id="prj_1",
            project_name="my-cool-app",
            deployment_id="dpl_1",
            url="my-cool-app.vercel.app",
            settings_url="https://vercel.com/my-cool-app/settings",
        )

    def get_deployment_status(self, deployment_id):
        self.calls.append(("status", deployment_id))
        if self.status_error:
            raise self.status_error
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        return VercelDeploymentStatus(state=state)


@pytest.fixture(name="make_zip")
def make_zip_fixture():
    return make_zip


# ============================================================
# Database
# ============================================================

@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


# ============================================================
# Domain fixtures
# ============================================================

@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        encryption_key=TEST_KEY,
        jwt_secret=TEST_JWT_SECRET,
        upload_dir=str(tmp_path / "uploads"),
        scratch_dir=str(tmp_path / "scratch"),
        vercel_build_wait_seconds=0,
        status_poll_interval_seconds=0.01,
    )


@pytest.fixture
def vault():
    return TokenVault(TEST_KEY)


@pytest.fixture
def user(db_session):
    u = User(email="student@college.edu", display_name="Student")
    db_session.add(u)
    db_session.commit()
    db_session.refresh(u)
    return u


@pytest.fixture
def other_user(db_session):
    u = User(email="other@college.edu", display_name="Other")
    db_session.add(u)
    db_session.commit()
    db_session.refresh(u)
    return u


@pytest.fixture
def project(db_session, user, test_settings):
    make_zip(os.path.join(test_settings.upload_dir, "project.zip"), SAMPLE_FILES)
    p = Project(
        uploaded_by=user.id,
        name="My Cool App",
        description="A demo project",
        languages=["JavaScript"],
        frameworks=["React"],
        tags=["demo"],
        project_type="Web",
        deployment_type="Portfolio + Deploy",
        project_file_path="project.zip",
    )
    db_session.add(p)
    db_session.commit()
    db_session.refresh(p)
    return p


@pytest.fixture
def github_connected(db_session, user, vault):
    vault.store(db_session, user.id, IntegrationProvider.GITHUB, "ghp_testtoken123")


@pytest.fixture
def vercel_connected(db_session, user, vault):
    vault.store(db_session, user.id, IntegrationProvider.VERCEL, "vercel_testtoken456", team_id="team_abc")


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def fake_vercel():
    return FakeVercel()


@pytest.fixture
def orchestrator(session_factory, vault, test_settings, fake_github, fake_vercel):
    return DeploymentOrchestrator(
        session_factory,
        vault,
        test_settings,
        github_factory=fake_github,
        vercel_factory=fake_vercel,
        sleep=lambda seconds: None,
    )


# ============================================================
# API client
# ============================================================

@pytest.fixture
def client(monkeypatch, session_factory, vault, test_settings, fake_github, fake_vercel):
    """Test client with fresh database and isolated dependency overrides."""
    from server import app

    for key in ("upload_dir", "scratch_dir", "vercel_build_wait_seconds", "status_poll_interval_seconds", "jwt_secret"):
        monkeypatch.setattr(settings, key, getattr(test_settings, key))

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_session_factory] = lambda: session_factory
    app.dependency_overrides[deps.get_token_vault] = lambda: vault
    app.dependency_overrides[deps.get_github_factory] = lambda: fake_github
    app.dependency_overrides[deps.get_vercel_factory] = lambda: fake_vercel
    app.dependency_overrides[deps.get_mailer] = lambda: Mailer(test_settings)

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user):
    token = create_access_token(user.id, user.email, secret=TEST_JWT_SECRET)
    return {"Authorization": f"Bearer {token}"}
