"""
SQLAlchemy database setup and models for PostgreSQL.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from config import settings

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_engine(url: str | None = None):
    """Create engine from DATABASE_URL. Uses sync driver for simplicity."""
    url = url or settings.database_url
    if not url:
        return None
    # Railway PostgreSQL may use postgres:// - SQLAlchemy 2 prefers postgresql://
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = get_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine) if engine else None


def get_db():
    """Dependency for FastAPI - yields a DB session."""
    if SessionLocal is None:
        raise RuntimeError("DATABASE_URL not set")
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# ----- Models -----


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, default="student")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    integration_tokens = relationship(
        "IntegrationTokens", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    projects = relationship("Project", back_populates="owner", cascade="all, delete-orphan")


class IntegrationTokens(Base):
    """One row per user. Token columns hold hex(iv):hex(ciphertext), never plaintext."""

    __tablename__ = "integration_tokens"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    github_token = Column(Text, nullable=True)
    github_refresh_token = Column(Text, nullable=True)
    github_token_expiry = Column(DateTime, nullable=True)
    vercel_token = Column(Text, nullable=True)
    vercel_refresh_token = Column(Text, nullable=True)
    vercel_token_expiry = Column(DateTime, nullable=True)
    vercel_team_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="integration_tokens")


class Project(Base):
    __tablename__ = "projects"

    id = Column(Uuid, primary_key=True, default=uuid4)
    uploaded_by = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    languages = Column(JSON, nullable=False, default=list)
    frameworks = Column(JSON, nullable=False, default=list)
    tags = Column(JSON, nullable=False, default=list)
    project_type = Column(String(50), nullable=False, default="Web")  # Web, App, AI, IOT, Research
    deployment_type = Column(String(50), nullable=False, default="Portfolio + Deploy")
    project_file_path = Column(Text, nullable=True)

    deployment_status = Column(String(50), nullable=False, default="Not Deployed")
    deployment_phase = Column(String(50), nullable=False, default="idle")
    deployment_step = Column(Text, nullable=True)
    deployment_progress = Column(Integer, nullable=False, default=0)
    github_repo_url = Column(Text, nullable=True)
    github_repo_id = Column(Integer, nullable=True)
    vercel_url = Column(Text, nullable=True)
    vercel_settings_url = Column(Text, nullable=True)
    vercel_project_id = Column(String(255), nullable=True)
    vercel_deployment_id = Column(String(255), nullable=True)
    deployment_history = Column(JSON, nullable=False, default=list)

    # Per-project deployment guard
    deployment_attempt_id = Column(String(36), nullable=True)
    deployment_started_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("User", back_populates="projects")


def init_db():
    """Create all tables. Call at startup (after engine is ready)."""
    if engine is None:
        return
    Base.metadata.create_all(bind=engine)
