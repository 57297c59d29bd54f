"""Job record storage: Postgres when configured, JSON files otherwise."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol

from mediagen.config import Settings, get_settings
from mediagen.jobs.models import HistoryPage, JobRecord, Pagination, RecordStatus
from mediagen.schemas.models import MediaKind

logger = logging.getLogger(__name__)


class JobRecordStore(Protocol):
    def create(self, record: JobRecord) -> JobRecord: ...
    def get(self, job_id: str) -> JobRecord | None: ...
    def get_by_correlation_id(self, kind: MediaKind, correlation_id: str) -> JobRecord | None: ...
    def update(self, record: JobRecord) -> None: ...
    def list(self, kind: MediaKind | None = None, page: int = 1, limit: int = 10) -> HistoryPage: ...


def _page_bounds(page: int, limit: int) -> tuple[int, int]:
    page = max(1, page)
    limit = max(1, min(limit, 100))
    return page, limit


# ---------------------------------------------------------------------------
# Postgres implementation
# ---------------------------------------------------------------------------

_COLUMNS = (
    "job_id, kind, prompt, model, sub_model, parameters, input_asset_names, "
    "result_asset_name, result_url, correlation_id, status, progress, failure_reason, "
    "materialization_warning, cancelled, created_at, updated_at"
)


class PostgresJobRecordStore:
    """Persist job records in Postgres. Survives restarts."""

    def __init__(self, database_url: str):
        self._url = database_url
        self._conn = self._connect()

    def _connect(self):
        try:
            import psycopg
        except ImportError:
            raise ImportError(
                "psycopg required for Postgres job store. pip install 'psycopg[binary]'"
            )
        conn = psycopg.connect(self._url, autocommit=True)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS mediagen_job_records (
                job_id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                prompt TEXT NOT NULL,
                model TEXT NOT NULL,
                sub_model TEXT NOT NULL,
                parameters JSONB NOT NULL DEFAULT '{}',
                input_asset_names JSONB NOT NULL DEFAULT '[]',
                result_asset_name TEXT,
                result_url TEXT,
                correlation_id TEXT NOT NULL,
                status TEXT NOT NULL,
                progress INT NOT NULL DEFAULT 0,
                failure_reason TEXT,
                materialization_warning TEXT,
                cancelled BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            )
        """)
        conn.execute(
            "ALTER TABLE mediagen_job_records ADD COLUMN IF NOT EXISTS cancelled BOOLEAN NOT NULL DEFAULT FALSE"
        )
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_mediagen_job_records_correlation
            ON mediagen_job_records (kind, correlation_id)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_mediagen_job_records_created
            ON mediagen_job_records (kind, created_at DESC)
        """)
        return conn

    def create(self, record: JobRecord) -> JobRecord:
        self._conn.execute(
            f"""
            INSERT INTO mediagen_job_records ({_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                record.job_id,
                record.kind.value,
                record.prompt,
                record.model,
                record.sub_model,
                json.dumps(record.parameters),
                json.dumps(record.input_asset_names),
                record.result_asset_name,
                record.result_url,
                record.correlation_id,
                record.status.value,
                record.progress,
                record.failure_reason,
                record.materialization_warning,
                record.cancelled,
                record.created_at,
                record.updated_at,
            ),
        )
        return record

    def get(self, job_id: str) -> JobRecord | None:
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM mediagen_job_records WHERE job_id = %s",
            (job_id,),
        ).fetchone()
        return self._row_to_record(row) if row else None

    def get_by_correlation_id(self, kind: MediaKind, correlation_id: str) -> JobRecord | None:
        row = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM mediagen_job_records
            WHERE kind = %s AND correlation_id = %s
            ORDER BY created_at DESC LIMIT 1
            """,
            (MediaKind(kind).value, correlation_id),
        ).fetchone()
        return self._row_to_record(row) if row else None

    def update(self, record: JobRecord) -> None:
        self._conn.execute(
            """
            UPDATE mediagen_job_records SET
                input_asset_names = %s::jsonb, result_asset_name = %s, result_url = %s,
                status = %s, progress = %s, failure_reason = %s,
                materialization_warning = %s, cancelled = %s, updated_at = NOW()
            WHERE job_id = %s
            """,
            (
                json.dumps(record.input_asset_names),
                record.result_asset_name,
                record.result_url,
                record.status.value,
                record.progress,
                record.failure_reason,
                record.materialization_warning,
                record.cancelled,
                record.job_id,
            ),
        )

    def list(self, kind: MediaKind | None = None, page: int = 1, limit: int = 10) -> HistoryPage:
        page, limit = _page_bounds(page, limit)
        where, params = ("WHERE kind = %s", [MediaKind(kind).value]) if kind else ("", [])
        total = self._conn.execute(
            f"SELECT COUNT(*) FROM mediagen_job_records {where}", params
        ).fetchone()[0]
        rows = self._conn.execute(
            f"""
            SELECT {_COLUMNS} FROM mediagen_job_records {where}
            ORDER BY created_at DESC LIMIT %s OFFSET %s
            """,
            [*params, limit, (page - 1) * limit],
        ).fetchall()
        return HistoryPage(
            records=[self._row_to_record(r) for r in rows],
            pagination=Pagination(page=page, limit=limit, total=total),
        )

    def _row_to_record(self, row) -> JobRecord:
        def _json(value, default):
            if value is None:
                return default
            return value if isinstance(value, (dict, list)) else json.loads(value)

        return JobRecord(
            job_id=row[0],
            kind=MediaKind(row[1]),
            prompt=row[2],
            model=row[3],
            sub_model=row[4],
            parameters=_json(row[5], {}),
            input_asset_names=_json(row[6], []),
            result_asset_name=row[7],
            result_url=row[8],
            correlation_id=row[9],
            status=RecordStatus(row[10]),
            progress=row[11],
            failure_reason=row[12],
            materialization_warning=row[13],
            cancelled=row[14],
            created_at=row[15],
            updated_at=row[16],
        )


# ---------------------------------------------------------------------------
# File-based implementation (fallback when no Postgres)
# ---------------------------------------------------------------------------

class FileJobRecordStore:
    """Persist job records as JSON files. Survives restarts within same data dir.

    Safe to call from worker threads: each record has its own file and index
    writes are serialized.
    """

    def __init__(self, jobs_dir: Path):
        self._dir = Path(jobs_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._index_path = self._dir / "index.json"
        self._index: dict[str, str] = self._load_index()

    def _load_index(self) -> dict[str, str]:
        """Maps '<kind>:<correlation_id>' -> job_id for status re-checks."""
        if self._index_path.exists():
            try:
                with open(self._index_path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Job index unreadable (%s); rebuilding from records", e)
                return self._rebuild_index()
        return {}

    def _rebuild_index(self) -> dict[str, str]:
        index: dict[str, str] = {}
        for record in self._all_records():
            index[self._index_key(record.kind, record.correlation_id)] = record.job_id
        return index

    def _save_index(self) -> None:
        with open(self._index_path, "w", encoding="utf-8") as f:
            json.dump(self._index, f, indent=2)

    @staticmethod
    def _index_key(kind: MediaKind, correlation_id: str) -> str:
        return f"{MediaKind(kind).value}:{correlation_id}"

    def _record_path(self, job_id: str) -> Path:
        return self._dir / f"{job_id}.json"

    def create(self, record: JobRecord) -> JobRecord:
        self._write_record(record)
        with self._lock:
            self._index[self._index_key(record.kind, record.correlation_id)] = record.job_id
            self._save_index()
        return record

    def get(self, job_id: str) -> JobRecord | None:
        path = self._record_path(job_id)
        if not path.exists():
            return None
        return self._read_record(path)

    def get_by_correlation_id(self, kind: MediaKind, correlation_id: str) -> JobRecord | None:
        job_id = self._index.get(self._index_key(kind, correlation_id))
        if not job_id:
            return None
        return self.get(job_id)

    def update(self, record: JobRecord) -> None:
        self._write_record(record)

    def list(self, kind: MediaKind | None = None, page: int = 1, limit: int = 10) -> HistoryPage:
        page, limit = _page_bounds(page, limit)
        records = [r for r in self._all_records() if kind is None or r.kind == MediaKind(kind)]
        records.sort(key=lambda r: r.created_at, reverse=True)
        start = (page - 1) * limit
        return HistoryPage(
            records=records[start:start + limit],
            pagination=Pagination(page=page, limit=limit, total=len(records)),
        )

    def _all_records(self) -> list[JobRecord]:
        return [
            self._read_record(path)
            for path in self._dir.glob("job_*.json")
        ]

    def _write_record(self, record: JobRecord) -> None:
        path = self._record_path(record.job_id)
        data = record.model_dump(mode="json")
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        tmp.replace(path)

    def _read_record(self, path: Path) -> JobRecord:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return JobRecord.model_validate(data)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_store: JobRecordStore | None = None


def _build_record_store(settings: Settings) -> JobRecordStore:
    if settings.mediagen_database_url:
        try:
            store = PostgresJobRecordStore(settings.mediagen_database_url)
            logger.info("Using Postgres job record store")
            return store
        except Exception as e:
            logger.warning("Postgres job record store failed (%s), falling back to file store", e)
            return FileJobRecordStore(settings.jobs_dir)
    logger.info("Using file-based job record store (%s)", settings.jobs_dir)
    return FileJobRecordStore(settings.jobs_dir)


def get_record_store(settings: Settings | None = None) -> JobRecordStore:
    """Return the record store (Postgres if configured, else file-based).

    Without explicit settings the store is a process-wide singleton.
    """
    global _store
    if settings is not None:
        return _build_record_store(settings)
    if _store is None:
        _store = _build_record_store(get_settings())
    return _store
