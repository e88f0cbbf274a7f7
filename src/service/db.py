"""SQLite persistence for sieve job history and the scenes each job kept."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, List, Optional

from .config import DATA_DIR, ensure_dirs

DB_PATH = DATA_DIR / "scenesieve.db"

JOB_COLUMNS = (
    "id",
    "created_at",
    "finished_at",
    "input_path",
    "output_dir",
    "execution",
    "phase",
    "original_frames",
    "retained_frames",
    "execution_time_ms",
    "json_path",
    "csv_path",
    "status",
    "error",
)
OPEN_STATUSES = ("pending", "running")


def init_db() -> None:
    ensure_dirs()
    with sqlite3.connect(DB_PATH) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS jobs (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                finished_at TEXT,
                input_path TEXT,
                output_dir TEXT,
                execution TEXT,
                phase TEXT,
                original_frames INTEGER,
                retained_frames INTEGER,
                execution_time_ms INTEGER,
                json_path TEXT,
                csv_path TEXT,
                status TEXT NOT NULL,
                error TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS scenes (
                job_id TEXT NOT NULL REFERENCES jobs (id) ON DELETE CASCADE,
                rank INTEGER NOT NULL,
                frame_id INTEGER NOT NULL,
                score REAL,
                output_file TEXT,
                PRIMARY KEY (job_id, rank)
            )
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs (created_at DESC)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs (status)")


@contextmanager
def _connect():
    ensure_dirs()
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def _check_columns(names: Iterable[str]) -> None:
    unknown = sorted(set(names) - set(JOB_COLUMNS))
    if unknown:
        raise ValueError(f"Unknown job column(s): {', '.join(unknown)}")


def insert_job(job: Dict[str, Any]) -> None:
    _check_columns(job.keys())
    columns = ", ".join(job.keys())
    placeholders = ", ".join(":" + key for key in job.keys())
    with _connect() as conn:
        conn.execute(f"INSERT INTO jobs ({columns}) VALUES ({placeholders})", job)


def update_job(job_id: str, **fields: Any) -> None:
    if not fields:
        return
    _check_columns(fields.keys())
    assignments = ", ".join(f"{key} = :{key}" for key in fields.keys())
    params = dict(fields, id=job_id)
    with _connect() as conn:
        conn.execute(f"UPDATE jobs SET {assignments} WHERE id = :id", params)


def get_job(job_id: str) -> Optional[Dict[str, Any]]:
    with _connect() as conn:
        row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
    return dict(row) if row else None


def list_jobs(limit: int = 50, offset: int = 0, status: Optional[str] = None) -> List[Dict[str, Any]]:
    limit = max(1, min(limit, 500))
    offset = max(0, offset)
    query = (
        "SELECT id, created_at, finished_at, input_path, execution, status, phase, "
        "original_frames, retained_frames, execution_time_ms FROM jobs"
    )
    params: List[Any] = []
    if status:
        query += " WHERE status = ?"
        params.append(status)
    query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
    params.extend([limit, offset])
    with _connect() as conn:
        rows = conn.execute(query, params).fetchall()
    return [dict(row) for row in rows]


def insert_scenes(job_id: str, scenes: Iterable[Dict[str, Any]]) -> int:
    rows = [
        (job_id, scene["rank"], scene["frame_id"], scene.get("score"), scene.get("output_file"))
        for scene in scenes
    ]
    with _connect() as conn:
        conn.execute("DELETE FROM scenes WHERE job_id = ?", (job_id,))
        conn.executemany(
            "INSERT INTO scenes (job_id, rank, frame_id, score, output_file) VALUES (?, ?, ?, ?, ?)",
            rows,
        )
    return len(rows)


def get_scenes(job_id: str) -> List[Dict[str, Any]]:
    with _connect() as conn:
        rows = conn.execute(
            "SELECT rank, frame_id, score, output_file FROM scenes WHERE job_id = ? ORDER BY rank",
            (job_id,),
        ).fetchall()
    return [dict(row) for row in rows]


def mark_interrupted(finished_at: str, reason: str = "Service restarted before the job finished") -> int:
    """Fail jobs left pending or running by a previous service process."""

    placeholders = ", ".join("?" for _ in OPEN_STATUSES)
    with _connect() as conn:
        cursor = conn.execute(
            f"UPDATE jobs SET status = 'failed', error = ?, finished_at = ? WHERE status IN ({placeholders})",
            (reason, finished_at, *OPEN_STATUSES),
        )
        return cursor.rowcount


__all__ = [
    "DB_PATH",
    "JOB_COLUMNS",
    "init_db",
    "insert_job",
    "update_job",
    "get_job",
    "list_jobs",
    "insert_scenes",
    "get_scenes",
    "mark_interrupted",
]
