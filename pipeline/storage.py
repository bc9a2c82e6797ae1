"""SQLite storage for in-progress ad projects.

One row per project holding the serialized ProjectState. Writes are
single-writer, last-write-wins; every save bumps the project's version.

Uses Python's built-in sqlite3.
"""

from __future__ import annotations

import json
import logging
import random
import sqlite3
import string
import threading
import time
from datetime import datetime

import config
from schemas.project import ProjectState

logger = logging.getLogger(__name__)

DB_PATH = config.DB_PATH

# Thread-local connections (sqlite3 objects can't be shared across threads)
_local = threading.local()


def _get_conn() -> sqlite3.Connection:
    """Get a thread-local SQLite connection."""
    if not hasattr(_local, "conn") or _local.conn is None:
        _local.conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
        _local.conn.row_factory = sqlite3.Row
        _local.conn.execute("PRAGMA journal_mode=WAL")
    return _local.conn


def reset_storage_connection_for_tests():
    """Close this thread's connection so the next call reopens DB_PATH."""
    conn = getattr(_local, "conn", None)
    if conn is not None:
        conn.close()
    _local.conn = None


def init_db():
    """Create tables if they don't exist. Call once at startup."""
    conn = _get_conn()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS projects (
            project_id      TEXT    PRIMARY KEY,
            name            TEXT    NOT NULL DEFAULT '',
            version         INTEGER NOT NULL DEFAULT 0,
            state_json      TEXT    NOT NULL DEFAULT '{}',
            created_at      TEXT    NOT NULL,
            updated_at      TEXT    NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_projects_updated
            ON projects(updated_at);
    """)
    conn.commit()
    logger.info("SQLite database initialized: %s", DB_PATH)


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


def new_project_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"proj_{int(time.time() * 1000)}_{suffix}"


def save_project(state: ProjectState) -> ProjectState:
    """Upsert a project and return the stored copy with its bumped version."""
    conn = _get_conn()
    project_id = state.project_id or new_project_id()
    row = conn.execute(
        "SELECT version, created_at FROM projects WHERE project_id=?", (project_id,)
    ).fetchone()
    now = _now()
    stored = state.model_copy(
        update={
            "project_id": project_id,
            "version": (row["version"] if row else 0) + 1,
            "created_at": row["created_at"] if row else (state.created_at or now),
            "updated_at": now,
        }
    )
    conn.execute(
        """
        INSERT INTO projects (project_id, name, version, state_json, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(project_id) DO UPDATE SET
            name=excluded.name,
            version=excluded.version,
            state_json=excluded.state_json,
            updated_at=excluded.updated_at
        """,
        (
            project_id,
            stored.name,
            stored.version,
            stored.model_dump_json(),
            stored.created_at,
            stored.updated_at,
        ),
    )
    conn.commit()
    logger.debug("Saved project %s (v%d)", project_id, stored.version)
    return stored


def get_project(project_id: str) -> ProjectState | None:
    conn = _get_conn()
    row = conn.execute("SELECT state_json FROM projects WHERE project_id=?", (project_id,)).fetchone()
    if not row:
        return None
    return ProjectState.model_validate_json(row["state_json"])


def list_projects(limit: int = 50) -> list[dict]:
    """Project summaries, most recently updated first."""
    conn = _get_conn()
    rows = conn.execute(
        """
        SELECT project_id, name, version, created_at, updated_at
        FROM projects
        ORDER BY updated_at DESC, project_id DESC
        LIMIT ?
        """,
        (limit,),
    ).fetchall()
    return [dict(row) for row in rows]


def delete_project(project_id: str) -> bool:
    """Delete a project. Returns True if found."""
    conn = _get_conn()
    cur = conn.execute("DELETE FROM projects WHERE project_id=?", (project_id,))
    conn.commit()
    return cur.rowcount > 0


def export_project(project_id: str) -> str | None:
    """Pretty JSON for a project, or None when it doesn't exist."""
    state = get_project(project_id)
    if state is None:
        return None
    return json.dumps(state.model_dump(mode="json"), indent=2)
