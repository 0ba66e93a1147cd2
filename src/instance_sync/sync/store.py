# src/instance_sync/sync/store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any

from ..errors import StorageInitError, StorageReadError, StorageWriteError
from .models import DEFAULT_HOSTNAME, HostSettings, Instance, InstanceRecord, UpsertResult

logger = logging.getLogger(__name__)

SCHEMA_DIR = Path(__file__).parent / "sql"
SCHEMA_FILES = ("create-settings.sql", "create-instances.sql")


class InstanceStore:
    """
    SQLite store for the settings singleton and the instances table.

    The schema comes from static SQL files and is created on first run:
    - CREATE TABLE IF NOT EXISTS from sql/*.sql
    - PRAGMA table_info to detect missing columns
    - ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    - the scheduler thread writes instances, the console thread only reads them
    """

    def __init__(self, db_path: str | Path = "instances.sqlite3", *, schema_dir: str | Path | None = None) -> None:
        self._db_path = Path(db_path)
        self._schema_dir = Path(schema_dir) if schema_dir is not None else SCHEMA_DIR

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _read_schema(self) -> list[str]:
        scripts: list[str] = []
        for name in SCHEMA_FILES:
            path = self._schema_dir / name
            try:
                scripts.append(path.read_text("utf-8"))
            except OSError as e:
                raise StorageInitError(f"cannot read schema file {path}: {e}") from e
        return scripts

    def initialize(self) -> None:
        """Create tables if absent and seed the default settings row. Idempotent."""
        scripts = self._read_schema()

        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._get_conn()
        except (OSError, sqlite3.Error) as e:
            raise StorageInitError(f"cannot open database {self._db_path}: {e}") from e

        try:
            cur = conn.cursor()
            for script in scripts:
                cur.executescript(script)

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(instances)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE instances ADD COLUMN {name} {decl}")
                logger.info("InstanceStore migration: added column %s", name)

            add_col("name", "TEXT")
            add_col("version", "TEXT")
            add_col("url", "TEXT")
            add_col("meta", "TEXT NOT NULL DEFAULT '{}'")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_instances_status ON instances(status)")

            if self._seed_settings(cur):
                logger.info("Initializing settings with defaults (hostname=%s)", DEFAULT_HOSTNAME)
            conn.commit()
        except sqlite3.Error as e:
            raise StorageInitError(f"cannot create schema in {self._db_path}: {e}") from e
        finally:
            conn.close()

        try:
            total = self.count_instances()
        except StorageReadError as e:
            raise StorageInitError(f"database {self._db_path} is not readable after init: {e}") from e
        logger.info("InstanceStore ready db=%s instances=%s", self._db_path, total)

    @staticmethod
    def _seed_settings(cur: sqlite3.Cursor) -> bool:
        cur.execute(
            """
            INSERT INTO settings (id, hostname, extractMsi)
            SELECT 1, ?, 0
            WHERE NOT EXISTS (SELECT 1 FROM settings)
            """,
            (DEFAULT_HOSTNAME,),
        )
        return cur.rowcount == 1

    @staticmethod
    def _meta_to_str(meta: dict[str, Any] | None) -> str:
        if not meta:
            return "{}"
        return json.dumps(meta, ensure_ascii=False, sort_keys=True)

    @staticmethod
    def _str_to_meta(s: str | None) -> dict[str, Any]:
        if not s:
            return {}
        try:
            val = json.loads(s)
        except ValueError:
            return {}
        return val if isinstance(val, dict) else {}

    def _row_to_instance(self, row: sqlite3.Row) -> Instance:
        return Instance(
            instance_id=str(row["instance_id"]),
            status=str(row["status"] or "unknown"),
            name=row["name"],
            version=row["version"],
            url=row["url"],
            meta=self._str_to_meta(row["meta"]),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    # ---- settings ----

    def get_settings(self) -> HostSettings:
        """Return the settings singleton, creating it with defaults if the table is empty."""
        try:
            conn = self._get_conn()
            try:
                cur = conn.cursor()
                cur.execute("SELECT hostname, extractMsi FROM settings WHERE id = 1")
                row = cur.fetchone()
                if row is None:
                    self._seed_settings(cur)
                    conn.commit()
                    logger.info("Settings row was missing; recreated with defaults.")
                    return HostSettings()
                return HostSettings(
                    hostname=str(row["hostname"] or DEFAULT_HOSTNAME),
                    extract_msi=bool(row["extractMsi"]),
                )
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageReadError(f"cannot read settings: {e}") from e

    def update_settings(self, *, hostname: str | None = None, extract_msi: bool | None = None) -> HostSettings:
        """Apply an explicit user change to the settings singleton."""
        if hostname is not None and not hostname.strip():
            raise ValueError("hostname must not be empty")

        current = self.get_settings()
        new = HostSettings(
            hostname=hostname.strip() if hostname is not None else current.hostname,
            extract_msi=current.extract_msi if extract_msi is None else bool(extract_msi),
        )

        try:
            conn = self._get_conn()
            try:
                conn.execute(
                    "UPDATE settings SET hostname = ?, extractMsi = ? WHERE id = 1",
                    (new.hostname, 1 if new.extract_msi else 0),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageWriteError(f"cannot update settings: {e}") from e

        logger.info("Settings updated hostname=%s extract_msi=%s", new.hostname, new.extract_msi)
        return new

    # ---- instances ----

    def count_instances(self) -> int:
        try:
            conn = self._get_conn()
            try:
                (n,) = conn.execute("SELECT COUNT(*) FROM instances").fetchone()
                return int(n)
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageReadError(f"cannot count instances: {e}") from e

    def get_instance(self, instance_id: str) -> Instance | None:
        try:
            conn = self._get_conn()
            try:
                row = conn.execute(
                    "SELECT * FROM instances WHERE instance_id = ?", (instance_id,)
                ).fetchone()
                return self._row_to_instance(row) if row else None
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageReadError(f"cannot read instance {instance_id}: {e}") from e

    def list_instances(self) -> list[Instance]:
        try:
            conn = self._get_conn()
            try:
                rows = conn.execute("SELECT * FROM instances ORDER BY instance_id ASC").fetchall()
                return [self._row_to_instance(r) for r in rows]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageReadError(f"cannot list instances: {e}") from e

    def list_instance_ids(self) -> list[str]:
        try:
            conn = self._get_conn()
            try:
                rows = conn.execute("SELECT instance_id FROM instances ORDER BY instance_id ASC").fetchall()
                return [str(r["instance_id"]) for r in rows]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageReadError(f"cannot list instance ids: {e}") from e

    def upsert_instance(self, record: InstanceRecord, *, now_ts: float | None = None) -> UpsertResult:
        """
        Insert a new instance or update the mutable fields of an existing one.

        created_at is kept from the first insert; updated_at is set to now_ts.
        """
        if now_ts is None:
            now_ts = time.time()

        params = (
            record.status,
            record.name,
            record.version,
            record.url,
            self._meta_to_str(record.meta),
        )

        try:
            conn = self._get_conn()
            try:
                cur = conn.cursor()
                cur.execute(
                    """
                    UPDATE instances
                    SET status = ?, name = ?, version = ?, url = ?, meta = ?, updated_at = ?
                    WHERE instance_id = ?
                    """,
                    (*params, float(now_ts), record.instance_id),
                )
                if cur.rowcount == 1:
                    result = UpsertResult.UPDATED
                else:
                    cur.execute(
                        """
                        INSERT INTO instances(
                            instance_id, status, name, version, url, meta, created_at, updated_at
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (record.instance_id, *params, float(now_ts), float(now_ts)),
                    )
                    result = UpsertResult.CREATED
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageWriteError(f"cannot upsert instance {record.instance_id}: {e}") from e

        logger.debug("Instance %s id=%s status=%s", result.value, record.instance_id, record.status)
        return result
