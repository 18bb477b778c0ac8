"""
SQLite job store for MediaPress.
Thread-safe via check_same_thread=False + explicit locking.

The one-processing-job-per-source rule is enforced inside BEGIN IMMEDIATE
transactions (read live jobs, supersede, claim) and backed by a partial
unique index, so it also holds when several processes share the file.
Stage writes are compare-and-swap on the job's run_token.
"""

import sqlite3
import threading
import uuid
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterable
from pathlib import Path

from mediapress.core.constants import (
    DB_PATH, JobStatus, ChunkStatus, SUPERSEDED_MESSAGE, SQLITE_BUSY_TIMEOUT_SEC,
)
from mediapress.core.error_codes import ConcurrencyConflictError
from mediapress.core.models_sqlite import Job, JobChunk, ChunkSpan

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    source_ref TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'UPLOADED',
    stage TEXT,
    transcript TEXT,
    timestamps_json TEXT,
    summary TEXT,
    article TEXT,
    error_message TEXT,
    run_token TEXT,
    created_at TEXT,
    updated_at TEXT,
    deleted_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_jobs_source_ref ON jobs(source_ref);

CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_one_processing
    ON jobs(source_ref)
    WHERE status = 'PROCESSING' AND deleted_at IS NULL;

CREATE TABLE IF NOT EXISTS job_chunks (
    job_id TEXT NOT NULL,
    idx INTEGER NOT NULL,
    start_sec REAL,
    end_sec REAL,
    status TEXT DEFAULT 'pending',
    attempts INTEGER DEFAULT 0,
    error_code TEXT,
    error_message TEXT,
    PRIMARY KEY (job_id, idx),
    FOREIGN KEY (job_id) REFERENCES jobs(id)
);

CREATE INDEX IF NOT EXISTS idx_job_chunks_job_idx ON job_chunks(job_id, idx);
"""

_JOB_COLUMNS = frozenset({
    'source_ref', 'status', 'stage', 'transcript', 'timestamps_json',
    'summary', 'article', 'error_message', 'run_token',
    'created_at', 'updated_at', 'deleted_at',
})

_CHUNK_COLUMNS = frozenset({
    'start_sec', 'end_sec', 'status', 'attempts', 'error_code', 'error_message',
})

# chunk writes apply only while the run token still owns the live job
_OWNER_CLAUSE = (
    "EXISTS (SELECT 1 FROM jobs WHERE id = ? AND run_token = ? AND deleted_at IS NULL)"
)


def _check_columns(fields: Iterable[str], allowed: frozenset):
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown column(s): {', '.join(sorted(unknown))}")


def new_run_token() -> str:
    return uuid.uuid4().hex


class Database:
    """SQLite job store for MediaPress."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
        self._ensure_dirs()
        self._lock = threading.RLock()
        # autocommit mode; multi-statement work goes through _transaction()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            timeout=SQLITE_BUSY_TIMEOUT_SEC,
            isolation_level=None,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        with self._lock:
            self.conn.executescript(_CREATE_TABLES)
            self.conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )

    def close(self):
        if self.conn:
            self.conn.close()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job(**dict(row))

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> JobChunk:
        return JobChunk(**dict(row))

    @contextmanager
    def _transaction(self):
        """BEGIN IMMEDIATE … COMMIT; takes the database write lock up front."""
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")

    def _fetch_job(self, conn: sqlite3.Connection, job_id: str) -> Job | None:
        row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def _live_jobs_for_source(self, conn: sqlite3.Connection, source_ref: str) -> list[Job]:
        rows = conn.execute(
            """SELECT * FROM jobs
               WHERE source_ref = ? AND deleted_at IS NULL
               ORDER BY created_at DESC, rowid DESC""",
            (source_ref,),
        ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def _supersede(self, conn: sqlite3.Connection, job_id: str, now: str):
        conn.execute(
            """UPDATE jobs
               SET deleted_at = ?, status = ?, error_message = ?,
                   run_token = NULL, updated_at = ?
               WHERE id = ?""",
            (now, JobStatus.ERROR, SUPERSEDED_MESSAGE, now, job_id),
        )
        logger.info("Superseded job %s", job_id)

    def _insert_job(self, conn: sqlite3.Connection, source_ref: str,
                    status: str, run_token: str | None = None) -> str:
        job_id = str(uuid.uuid4())
        now = self._now()
        conn.execute(
            """INSERT INTO jobs
               (id, source_ref, status, run_token, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (job_id, source_ref, status, run_token, now, now),
        )
        return job_id

    # ── Job CRUD ──────────────────────────────────────────────────────

    def create_job(self, source_ref: str) -> Job:
        """Record an acknowledged upload. The job starts in UPLOADED."""
        with self._lock:
            job_id = self._insert_job(self.conn, source_ref, JobStatus.UPLOADED)
            return self._fetch_job(self.conn, job_id)

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            return self._fetch_job(self.conn, job_id)

    def find_live_job_by_source(self, source_ref: str) -> Job | None:
        """Newest job for source_ref that is not soft-deleted."""
        with self._lock:
            jobs = self._live_jobs_for_source(self.conn, source_ref)
        return jobs[0] if jobs else None

    def list_live_jobs(self, limit: int = 50, offset: int = 0) -> list[Job]:
        with self._lock:
            rows = self.conn.execute(
                """SELECT * FROM jobs WHERE deleted_at IS NULL
                   ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?""",
                (limit, offset),
            ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def update_job(self, job_id: str, **kwargs):
        _check_columns(kwargs, _JOB_COLUMNS)
        kwargs['updated_at'] = self._now()
        sets = ', '.join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values()) + [job_id]
        with self._lock:
            self.conn.execute(
                f"UPDATE jobs SET {sets} WHERE id = ?", vals
            )

    def update_job_if_owner(self, job_id: str, run_token: str, **kwargs) -> bool:
        """
        Compare-and-swap update: applies only while run_token still owns the
        live job. Returns False when another run has taken over.
        """
        _check_columns(kwargs, _JOB_COLUMNS)
        kwargs['updated_at'] = self._now()
        sets = ', '.join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values()) + [job_id, run_token]
        with self._lock:
            cur = self.conn.execute(
                f"""UPDATE jobs SET {sets}
                    WHERE id = ? AND run_token = ? AND deleted_at IS NULL""",
                vals,
            )
            return cur.rowcount == 1

    def soft_delete_job(self, job_id: str):
        now = self._now()
        with self._lock:
            self.conn.execute(
                "UPDATE jobs SET deleted_at = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
                (now, now, job_id),
            )

    # ── Claims (dedup rule) ───────────────────────────────────────────

    def claim_source(self, source_ref: str) -> tuple[Job, list[str]]:
        """
        Atomically take ownership of source_ref for a new run.

        Every live PROCESSING job for the source is superseded (soft-deleted,
        forced to ERROR). The newest remaining live job is reused, otherwise a
        job is created directly in PROCESSING. Returns the claimed job and the
        ids of superseded jobs.
        """
        token = new_run_token()
        try:
            with self._transaction() as conn:
                now = self._now()
                live = self._live_jobs_for_source(conn, source_ref)
                superseded = []
                for job in live:
                    if job.status == JobStatus.PROCESSING:
                        self._supersede(conn, job.id, now)
                        superseded.append(job.id)

                reusable = [j for j in live if j.status != JobStatus.PROCESSING]
                if reusable:
                    job_id = reusable[0].id
                    conn.execute(
                        """UPDATE jobs SET status = ?, error_message = NULL,
                               stage = NULL, run_token = ?, updated_at = ?
                           WHERE id = ?""",
                        (JobStatus.PROCESSING, token, now, job_id),
                    )
                else:
                    job_id = self._insert_job(conn, source_ref, JobStatus.PROCESSING, token)
                return self._fetch_job(conn, job_id), superseded
        except sqlite3.IntegrityError as e:
            raise ConcurrencyConflictError(
                f"Concurrent claim on source {source_ref}: {e}") from e

    def claim_job(self, job_id: str,
                  check: Callable[[Job, list[JobChunk]], None] | None = None,
                  ) -> tuple[Job | None, list[str]]:
        """
        Atomically take ownership of an existing live job for a new run.

        ``check`` runs inside the transaction and may raise to abort the claim
        with no state change. Other live PROCESSING jobs of the same source
        are superseded. Returns (None, []) if the job does not exist or is
        soft-deleted.
        """
        token = new_run_token()
        try:
            with self._transaction() as conn:
                job = self._fetch_job(conn, job_id)
                if job is None or not job.is_live:
                    return None, []
                if check is not None:
                    check(job, self._chunks(conn, job_id))

                now = self._now()
                superseded = []
                for other in self._live_jobs_for_source(conn, job.source_ref):
                    if other.id != job_id and other.status == JobStatus.PROCESSING:
                        self._supersede(conn, other.id, now)
                        superseded.append(other.id)

                conn.execute(
                    """UPDATE jobs SET status = ?, error_message = NULL,
                           run_token = ?, updated_at = ?
                       WHERE id = ?""",
                    (JobStatus.PROCESSING, token, now, job_id),
                )
                return self._fetch_job(conn, job_id), superseded
        except sqlite3.IntegrityError as e:
            raise ConcurrencyConflictError(
                f"Concurrent claim on job {job_id}: {e}") from e

    # ── Chunk CRUD ────────────────────────────────────────────────────

    def _chunks(self, conn: sqlite3.Connection, job_id: str) -> list[JobChunk]:
        rows = conn.execute(
            "SELECT * FROM job_chunks WHERE job_id = ? ORDER BY idx",
            (job_id,),
        ).fetchall()
        return [self._row_to_chunk(r) for r in rows]

    def replace_chunks(self, job_id: str, spans: list[ChunkSpan], run_token: str) -> bool:
        """Swap in a new chunk plan for the job if run_token still owns it."""
        with self._transaction() as conn:
            owner = conn.execute(
                "SELECT 1 FROM jobs WHERE id = ? AND run_token = ? AND deleted_at IS NULL",
                (job_id, run_token),
            ).fetchone()
            if not owner:
                return False
            conn.execute("DELETE FROM job_chunks WHERE job_id = ?", (job_id,))
            conn.executemany(
                """INSERT INTO job_chunks
                   (job_id, idx, start_sec, end_sec, status, attempts)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [(job_id, s.idx, s.start_sec, s.end_sec, ChunkStatus.PENDING, 0)
                 for s in spans],
            )
            return True

    def get_chunks(self, job_id: str) -> list[JobChunk]:
        with self._lock:
            return self._chunks(self.conn, job_id)

    def update_chunk(self, job_id: str, idx: int, run_token: str, **kwargs) -> bool:
        """Update one chunk row while run_token still owns the live job."""
        _check_columns(kwargs, _CHUNK_COLUMNS)
        sets = ', '.join(f"{k} = ?" for k in kwargs)
        vals = list(kwargs.values()) + [job_id, idx, job_id, run_token]
        with self._lock:
            cur = self.conn.execute(
                f"""UPDATE job_chunks SET {sets}
                    WHERE job_id = ? AND idx = ? AND {_OWNER_CLAUSE}""",
                vals,
            )
            return cur.rowcount == 1

    def update_chunks_status(self, job_id: str, status: str, run_token: str) -> bool:
        """Reset every chunk of the job to status; False when run_token lost the job."""
        with self._lock:
            cur = self.conn.execute(
                f"""UPDATE job_chunks SET status = ?, error_code = NULL, error_message = NULL
                    WHERE job_id = ? AND {_OWNER_CLAUSE}""",
                (status, job_id, job_id, run_token),
            )
            return cur.rowcount > 0
