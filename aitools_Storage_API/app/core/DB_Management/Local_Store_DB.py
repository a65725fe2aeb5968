# Local_Store_DB.py
# Description: Local structured store. SQLite database holding one table per entity kind, the site settings
#              singleton and the persisted directory handle.
#
# Imports
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
from aitools_Storage_API.app.core.Storage.exceptions import (
    InputError,
    LocalStoreError,
    SchemaError,
    StorageCapacityError,
)
from aitools_Storage_API.app.core.Storage.migrations import upgrade_record, upgrade_settings
from aitools_Storage_API.app.core.Storage.models import (
    Dataset,
    EntityKind,
    SiteSettings,
    check_record_id,
    utc_now_iso,
)
#
########################################################################################################################
#
# Functions:

_SETTINGS_KEY = "siteSettings"
_HANDLE_KEY = "directoryHandle"


def _is_capacity_error(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return "database or disk is full" in message or "disk i/o error" in message


class LocalStoreDB:
    """
    SQLite-backed store for every entity kind.

    Each kind lives in its own table keyed by id. Records are kept as their camelCase JSON
    payload plus an optional blob column, so the table layout does not change when an entity
    gains a field. Rows are returned in insertion order; an upsert keeps the original position.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "local_store_schema"

    def __init__(self, db_path: Union[str, Path]):
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(db_path).resolve() if not self.is_memory_db else Path(":memory:")
        self.db_path_str = str(self.db_path) if not self.is_memory_db else ':memory:'

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise LocalStoreError(f"Failed to create database directory {self.db_path.parent}: {e}") from e

        logger.info(f"Initializing LocalStoreDB for path: {self.db_path_str}")
        self._local = threading.local()
        # Every thread-local connection, so close_all_connections() can reach worker threads
        self._connections: Set[sqlite3.Connection] = set()
        self._connections_lock = threading.Lock()
        try:
            self._initialize_schema()
        except (LocalStoreError, sqlite3.Error) as e:
            logger.critical(f"FATAL: DB Initialization failed for {self.db_path_str}: {e}")
            self.close_connection()
            if isinstance(e, LocalStoreError):
                raise
            raise LocalStoreError(f"Database initialization failed: {e}") from e

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn:
            try:
                conn.execute("SELECT 1")
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection for {self.db_path_str} became unusable. Reopening.")
                conn = None

        if not conn:
            try:
                # Autocommit; multi-statement work goes through transaction()
                conn = sqlite3.connect(self.db_path_str, check_same_thread=False, timeout=15, isolation_level=None)
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                self._local.conn = conn
                with self._connections_lock:
                    self._connections.add(conn)
                logger.debug(f"Opened SQLite connection to {self.db_path_str} for thread {threading.get_ident()}")
            except sqlite3.Error as e:
                self._local.conn = None
                raise LocalStoreError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def close_connection(self):
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        try:
            if conn.in_transaction:
                logger.warning(f"Closing {self.db_path_str} with an open transaction. Rolling back.")
                conn.rollback()
            conn.close()
            logger.debug(f"Closed connection for thread {threading.get_ident()} to {self.db_path_str}.")
        except sqlite3.Error as e:
            logger.warning(f"Error while closing SQLite connection for {self.db_path_str}: {e}")
        finally:
            self._local.conn = None
            with self._connections_lock:
                self._connections.discard(conn)

    def close_all_connections(self) -> int:
        """
        Closes the connections of every thread that used this instance.
        Returns how many of them belonged to other threads.
        """
        self.close_connection()
        with self._connections_lock:
            pending = list(self._connections)
            self._connections.clear()
        for conn in pending:
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error while closing SQLite connection for {self.db_path_str}: {e}")
        if pending:
            logger.debug(f"Closed {len(pending)} worker connection(s) to {self.db_path_str}.")
        return len(pending)

    # --- Query Execution ---
    def execute_query(self, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None, *,
                      commit: bool = False, script: bool = False) -> sqlite3.Cursor:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            if script:
                cursor.executescript(query)
            else:
                cursor.execute(query, params or ())
            if commit and not conn.in_transaction:
                conn.commit()
            return cursor
        except sqlite3.Error as e:
            if _is_capacity_error(e):
                logger.error(f"Local store is out of space: {e}")
                raise StorageCapacityError(f"Storage is full: {e}") from e
            logger.error(f"Query execution failed: {query[:300]}... Error: {e}")
            raise LocalStoreError(f"Query execution failed: {e}") from e

    def execute_many(self, query: str, params_list: List[tuple], *, commit: bool = False) -> Optional[sqlite3.Cursor]:
        if not params_list:
            return None
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            cursor.executemany(query, params_list)
            if commit and not conn.in_transaction:
                conn.commit()
            return cursor
        except sqlite3.Error as e:
            if _is_capacity_error(e):
                logger.error(f"Local store is out of space during batch write: {e}")
                raise StorageCapacityError(f"Storage is full: {e}") from e
            logger.error(f"Execute Many failed: {query[:150]}... Error: {e}")
            raise LocalStoreError(f"Execute Many failed: {e}") from e

    def transaction(self) -> 'TransactionContextManager':
        return TransactionContextManager(self)

    # --- Schema ---
    def _schema_sql(self) -> str:
        tables = "\n".join(
            f"""
CREATE TABLE IF NOT EXISTS {kind.value} (
    id TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    blob BLOB,
    last_modified TEXT NOT NULL
);"""
            for kind in EntityKind
        )
        return f"""
CREATE TABLE IF NOT EXISTS db_schema_version (
    schema_name TEXT PRIMARY KEY NOT NULL,
    version INTEGER NOT NULL
);
{tables}
CREATE TABLE IF NOT EXISTS site_settings (
    key TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    last_modified TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS directory_handles (
    key TEXT PRIMARY KEY,
    path TEXT NOT NULL,
    stored_at TEXT NOT NULL
);
INSERT OR REPLACE INTO db_schema_version (schema_name, version) VALUES ('{self._SCHEMA_NAME}', {self._CURRENT_SCHEMA_VERSION});
"""

    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            row = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ? LIMIT 1",
                               (self._SCHEMA_NAME,)).fetchone()
            return row['version'] if row else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower():
                return 0
            raise SchemaError(f"Could not determine schema version for '{self._SCHEMA_NAME}': {e}") from e

    def _initialize_schema(self):
        conn = self.get_connection()
        current_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        logger.info(f"Checking DB schema '{self._SCHEMA_NAME}'. Current version: {current_version}. "
                    f"Code supports: {target_version}")
        if current_version == target_version:
            return
        if current_version > target_version:
            raise SchemaError(f"Database schema '{self._SCHEMA_NAME}' version ({current_version}) is newer than "
                              f"supported by code ({target_version}).")
        try:
            conn.executescript(self._schema_sql())
        except sqlite3.Error as e:
            raise SchemaError(f"Schema setup failed for '{self._SCHEMA_NAME}': {e}") from e
        final_version = self._get_db_version(conn)
        if final_version != target_version:
            raise SchemaError(f"Schema setup finished at version {final_version}, expected {target_version}.")
        logger.info(f"Database schema '{self._SCHEMA_NAME}' initialized at version {final_version}.")

    # --- Entity Operations ---
    @staticmethod
    def _row_params(record) -> tuple:
        check_record_id(getattr(record, 'id', None))
        return (record.id, json.dumps(record.to_dict(), ensure_ascii=False), record.get_blob(), utc_now_iso())

    def get_all(self, kind: EntityKind) -> List[Any]:
        """Returns every record of a kind in insertion order. Rows that fail to parse are skipped."""
        cursor = self.execute_query(f"SELECT id, payload, blob FROM {kind.value} ORDER BY rowid")
        records = []
        for row in cursor.fetchall():
            try:
                blob = bytes(row['blob']) if row['blob'] is not None else None
                records.append(upgrade_record(kind, json.loads(row['payload']), blob=blob))
            except (json.JSONDecodeError, InputError) as e:
                logger.warning(f"Skipping unreadable {kind.value} row '{row['id']}': {e}")
        return records

    def get(self, kind: EntityKind, record_id: str):
        row = self.execute_query(f"SELECT payload, blob FROM {kind.value} WHERE id = ?", (record_id,)).fetchone()
        if row is None:
            return None
        blob = bytes(row['blob']) if row['blob'] is not None else None
        return upgrade_record(kind, json.loads(row['payload']), blob=blob)

    def save(self, kind: EntityKind, record) -> None:
        """Idempotent upsert by id."""
        if not isinstance(record, kind.model):
            raise InputError(f"Expected {kind.model.__name__} for {kind.value}, got {type(record).__name__}")
        self.execute_query(
            f"INSERT INTO {kind.value} (id, payload, blob, last_modified) VALUES (?, ?, ?, ?) "
            f"ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, blob = excluded.blob, "
            f"last_modified = excluded.last_modified",
            self._row_params(record), commit=True)
        logger.debug(f"Saved {kind.value} record {record.id}")

    def save_many(self, kind: EntityKind, records: Iterable[Any]) -> int:
        params = [self._row_params(r) for r in records]
        with self.transaction():
            self.execute_many(
                f"INSERT INTO {kind.value} (id, payload, blob, last_modified) VALUES (?, ?, ?, ?) "
                f"ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, blob = excluded.blob, "
                f"last_modified = excluded.last_modified",
                params)
        return len(params)

    def delete(self, kind: EntityKind, record_id: str) -> bool:
        """Removes a record. Deleting an id that is not stored is a no-op and returns False."""
        cursor = self.execute_query(f"DELETE FROM {kind.value} WHERE id = ?", (record_id,), commit=True)
        return cursor.rowcount > 0

    # --- Settings ---
    def get_settings(self) -> Optional[SiteSettings]:
        row = self.execute_query("SELECT payload FROM site_settings WHERE key = ?", (_SETTINGS_KEY,)).fetchone()
        if row is None:
            return None
        try:
            return upgrade_settings(json.loads(row['payload']))
        except (json.JSONDecodeError, InputError) as e:
            logger.warning(f"Stored site settings are unreadable, using defaults: {e}")
            return None

    def save_settings(self, settings: SiteSettings) -> None:
        self.execute_query(
            "INSERT INTO site_settings (key, payload, last_modified) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET payload = excluded.payload, last_modified = excluded.last_modified",
            (_SETTINGS_KEY, json.dumps(settings.to_dict(), ensure_ascii=False), utc_now_iso()), commit=True)

    # --- Directory handle ---
    def get_directory_handle(self) -> Optional[Path]:
        row = self.execute_query("SELECT path FROM directory_handles WHERE key = ?", (_HANDLE_KEY,)).fetchone()
        return Path(row['path']) if row else None

    def set_directory_handle(self, handle: Union[str, Path]) -> None:
        self.execute_query(
            "INSERT OR REPLACE INTO directory_handles (key, path, stored_at) VALUES (?, ?, ?)",
            (_HANDLE_KEY, str(handle), utc_now_iso()), commit=True)

    def clear_directory_handle(self) -> None:
        self.execute_query("DELETE FROM directory_handles WHERE key = ?", (_HANDLE_KEY,), commit=True)

    # --- Bulk ---
    def clear_all(self) -> None:
        """Wipes every entity table and the settings row. The directory handle is left in place."""
        with self.transaction():
            for kind in EntityKind:
                self.execute_query(f"DELETE FROM {kind.value}")
            self.execute_query("DELETE FROM site_settings")
        logger.info(f"Cleared all local data in {self.db_path_str}")

    def load_dataset(self) -> Dataset:
        dataset = Dataset(settings=self.get_settings() or SiteSettings())
        for kind in EntityKind:
            setattr(dataset, kind.value, self.get_all(kind))
        return dataset

    def replace_dataset(self, dataset: Dataset) -> None:
        """Replaces every stored record with the given dataset in a single transaction."""
        with self.transaction():
            self.clear_all()
            self.save_settings(dataset.settings)
            for kind in EntityKind:
                self.save_many(kind, dataset.collection(kind))


class TransactionContextManager:
    def __init__(self, db_instance: LocalStoreDB):
        self.db = db_instance
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.conn = self.db.get_connection()
        if not self.conn.in_transaction:
            self.conn.execute("BEGIN")
            self.is_outermost_transaction = True
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.is_outermost_transaction:
            return False
        if exc_type:
            logger.error(f"Transaction failed, rolling back: {exc_type.__name__} - {exc_val}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback FAILED: {rb_err}")
            return False
        try:
            self.conn.commit()
        except sqlite3.Error as commit_err:
            logger.error(f"Commit FAILED, attempting rollback: {commit_err}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback after failed commit also FAILED: {rb_err}")
            if _is_capacity_error(commit_err):
                raise StorageCapacityError(f"Storage is full: {commit_err}") from commit_err
            raise LocalStoreError(f"Commit failed: {commit_err}") from commit_err
        return False

#
# End of Local_Store_DB.py
########################################################################################################################
