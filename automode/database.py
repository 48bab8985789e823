"""
Database Models and Connection
==============================

Per-project SQLite storage for kanban features using SQLAlchemy.

Each project keeps its board in `<project>/.automaker/features.db`.
"""
from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    text,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import JSON

_logger = logging.getLogger(__name__)

# Per-project state directory
AUTOMAKER_DIR = ".automaker"
DATABASE_FILENAME = "features.db"

# ===== Feature status vocabulary =====
STATUS_BACKLOG = "backlog"
STATUS_PENDING = "pending"
STATUS_READY = "ready"
STATUS_IN_PROGRESS = "in_progress"
STATUS_WAITING_APPROVAL = "waiting_approval"
STATUS_VERIFIED = "verified"
STATUS_COMPLETED = "completed"

# Pipeline steps use dynamic statuses "pipeline_<step_id>"
PIPELINE_STATUS_PREFIX = "pipeline_"

# Statuses the scheduler may pick up
SCHEDULABLE_STATUSES = frozenset({STATUS_BACKLOG, STATUS_PENDING, STATUS_READY})

# Statuses that satisfy a dependency
DONE_STATUSES = frozenset({STATUS_COMPLETED, STATUS_VERIFIED})

DEFAULT_PRIORITY = 999


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_feature_id() -> str:
    return f"feature-{uuid.uuid4().hex[:12]}"


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


Base = declarative_base()


class Feature(Base):
    """A unit of work on the kanban board."""

    __tablename__ = "features"

    __table_args__ = (
        Index("ix_feature_status_priority", "status", "priority"),
    )

    id = Column(String(64), primary_key=True, default=_new_feature_id)
    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=True)
    status = Column(String(64), nullable=False, default=STATUS_BACKLOG, index=True)
    priority = Column(Integer, nullable=False, default=DEFAULT_PRIORITY)
    # List of feature ids that must reach verified/completed first
    dependencies = Column(JSON, nullable=True, default=None)
    branch_name = Column(String(255), nullable=True)
    skip_tests = Column(Boolean, nullable=False, default=False)
    model = Column(String(100), nullable=True)

    # Outcome of the most recent run
    error = Column(Text, nullable=True)
    error_code = Column(String(64), nullable=True)
    summary = Column(Text, nullable=True)
    session_id = Column(String(255), nullable=True)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=_utc_now)
    updated_at = Column(DateTime, nullable=False, default=_utc_now, onupdate=_utc_now)

    def to_dict(self) -> dict:
        """Convert feature to the camelCase shape the board uses."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description or "",
            "category": self.category,
            "status": self.status,
            "priority": self.priority if self.priority is not None else DEFAULT_PRIORITY,
            "dependencies": self.get_dependencies_safe(),
            "branchName": self.branch_name,
            "skipTests": bool(self.skip_tests),
            "model": self.model,
            "error": self.error,
            "errorCode": self.error_code,
            "summary": self.summary,
            "sessionId": self.session_id,
            "startedAt": _isoformat(self.started_at),
            "completedAt": _isoformat(self.completed_at),
            "createdAt": _isoformat(self.created_at),
            "updatedAt": _isoformat(self.updated_at),
        }

    def get_dependencies_safe(self) -> list[str]:
        """Dependencies as a list of ids, tolerating NULL and malformed data."""
        if isinstance(self.dependencies, list):
            return [str(d) for d in self.dependencies if isinstance(d, (str, int))]
        return []


# camelCase field -> column attribute, for partial updates coming from the API
FEATURE_FIELD_MAP: dict[str, str] = {
    "title": "title",
    "description": "description",
    "category": "category",
    "status": "status",
    "priority": "priority",
    "dependencies": "dependencies",
    "branchName": "branch_name",
    "skipTests": "skip_tests",
    "model": "model",
    "error": "error",
    "errorCode": "error_code",
    "summary": "summary",
    "sessionId": "session_id",
    "startedAt": "started_at",
    "completedAt": "completed_at",
}


def get_automaker_dir(project_dir: Path) -> Path:
    return project_dir / AUTOMAKER_DIR


def get_database_path(project_dir: Path) -> Path:
    """Return the path to the SQLite database for a project."""
    return get_automaker_dir(project_dir) / DATABASE_FILENAME


def get_database_url(project_dir: Path) -> str:
    """Return the SQLAlchemy database URL for a project.

    Uses POSIX-style paths (forward slashes) for cross-platform compatibility.
    """
    return f"sqlite:///{get_database_path(project_dir).as_posix()}"


def _is_network_path(path: Path) -> bool:
    """Detect if path is on a network filesystem.

    WAL mode is unreliable on NFS/SMB/CIFS, so those fall back to DELETE mode.
    """
    if sys.platform == "win32":
        return str(path.resolve()).startswith("\\\\")

    path_str = str(path.resolve())
    try:
        with open("/proc/mounts", "r") as f:
            mounts = f.read()
    except (FileNotFoundError, PermissionError):
        return False

    best_match = ""
    best_type = ""
    for line in mounts.splitlines():
        parts = line.split()
        if len(parts) >= 3 and path_str.startswith(parts[1]) and len(parts[1]) > len(best_match):
            best_match, best_type = parts[1], parts[2]
    return best_type in ("nfs", "nfs4", "cifs", "smbfs", "fuse.sshfs")


def create_database(project_dir: Path) -> tuple:
    """
    Create database and return engine + session maker.

    Args:
        project_dir: Project root; the database lives under its .automaker dir

    Returns:
        Tuple of (engine, SessionLocal)
    """
    get_automaker_dir(project_dir).mkdir(parents=True, exist_ok=True)

    engine = create_engine(get_database_url(project_dir), connect_args={
        "check_same_thread": False,
        "timeout": 30  # Wait up to 30s for locks
    })
    Base.metadata.create_all(bind=engine)

    journal_mode = "DELETE" if _is_network_path(project_dir) else "WAL"
    with engine.connect() as conn:
        conn.execute(text(f"PRAGMA journal_mode={journal_mode}"))
        conn.execute(text("PRAGMA busy_timeout=30000"))
        conn.commit()
    _logger.debug("Opened feature database for %s (journal_mode=%s)", project_dir, journal_mode)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    return engine, SessionLocal
