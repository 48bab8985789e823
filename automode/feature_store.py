"""
Feature Store
=============

Async facade over the per-project feature databases.

SQLAlchemy sessions are synchronous, so every operation runs in a worker
thread via asyncio.to_thread. Engines are created lazily and cached per
project path. All methods return plain camelCase dicts (Feature.to_dict()).

Partial updates accept either the camelCase API names ("branchName") or
the column names ("branch_name").
"""

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

from sqlalchemy.orm import Session, sessionmaker

from automode.database import FEATURE_FIELD_MAP, Feature, create_database

_logger = logging.getLogger(__name__)

_DATETIME_COLUMNS = frozenset({"started_at", "completed_at"})
_COLUMN_NAMES = frozenset(FEATURE_FIELD_MAP.values())


def _column_for(key: str) -> str:
    if key in FEATURE_FIELD_MAP:
        return FEATURE_FIELD_MAP[key]
    if key in _COLUMN_NAMES:
        return key
    raise ValueError(f"Unknown feature field: {key}")


def _coerce(column: str, value: Any) -> Any:
    if column in _DATETIME_COLUMNS and isinstance(value, str):
        return datetime.fromisoformat(value)
    if column == "dependencies" and value is not None:
        return [str(v) for v in value]
    return value


class FeatureStore:
    """Feature CRUD keyed by (project_path, feature_id)."""

    def __init__(self) -> None:
        self._engines: dict[str, tuple] = {}
        self._lock = threading.Lock()

    def _session_maker(self, project_path: str) -> sessionmaker:
        key = str(Path(project_path).resolve())
        with self._lock:
            if key not in self._engines:
                self._engines[key] = create_database(Path(key))
            return self._engines[key][1]

    @contextmanager
    def _session(self, project_path: str) -> Iterator[Session]:
        session = self._session_maker(project_path)()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ===== Sync implementations (run in worker threads) =====

    def _get(self, project_path: str, feature_id: str) -> Optional[dict]:
        with self._session(project_path) as session:
            feature = session.get(Feature, feature_id)
            return feature.to_dict() if feature else None

    def _get_all(self, project_path: str) -> list[dict]:
        with self._session(project_path) as session:
            features = (
                session.query(Feature)
                .order_by(Feature.priority, Feature.created_at, Feature.id)
                .all()
            )
            return [f.to_dict() for f in features]

    def _create(self, project_path: str, data: dict[str, Any]) -> dict:
        with self._session(project_path) as session:
            feature = Feature()
            if data.get("id"):
                feature.id = str(data["id"])
            for key, value in data.items():
                if key == "id":
                    continue
                column = _column_for(key)
                setattr(feature, column, _coerce(column, value))
            session.add(feature)
            session.flush()
            return feature.to_dict()

    def _update(self, project_path: str, feature_id: str, updates: dict[str, Any]) -> Optional[dict]:
        with self._session(project_path) as session:
            feature = session.get(Feature, feature_id)
            if feature is None:
                return None
            for key, value in updates.items():
                column = _column_for(key)
                setattr(feature, column, _coerce(column, value))
            session.flush()
            return feature.to_dict()

    def _delete(self, project_path: str, feature_id: str) -> bool:
        with self._session(project_path) as session:
            feature = session.get(Feature, feature_id)
            if feature is None:
                return False
            session.delete(feature)
            return True

    # ===== Async API =====

    async def get(self, project_path: str, feature_id: str) -> Optional[dict]:
        return await asyncio.to_thread(self._get, project_path, feature_id)

    async def get_all(self, project_path: str) -> list[dict]:
        """All features ordered by priority, then creation time."""
        return await asyncio.to_thread(self._get_all, project_path)

    async def create(self, project_path: str, data: dict[str, Any]) -> dict:
        """
        Insert a feature. An id is generated when data has none.

        Raises:
            ValueError: data contains an unknown field
            sqlalchemy.exc.IntegrityError: the id already exists
        """
        feature = await asyncio.to_thread(self._create, project_path, data)
        _logger.info("Created feature %s in %s", feature["id"], project_path)
        return feature

    async def update(
        self, project_path: str, feature_id: str, updates: dict[str, Any]
    ) -> Optional[dict]:
        """Apply a partial update; returns None when the feature does not exist."""
        return await asyncio.to_thread(self._update, project_path, feature_id, updates)

    async def delete(self, project_path: str, feature_id: str) -> bool:
        deleted = await asyncio.to_thread(self._delete, project_path, feature_id)
        if deleted:
            _logger.info("Deleted feature %s from %s", feature_id, project_path)
        return deleted

    def close(self) -> None:
        """Dispose every cached engine."""
        with self._lock:
            for engine, _ in self._engines.values():
                engine.dispose()
            self._engines.clear()
