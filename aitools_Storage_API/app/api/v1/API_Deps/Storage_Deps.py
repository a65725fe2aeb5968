# Storage_Deps.py
# Description: FastAPI dependencies for the reference sync server: bearer key verification and the server's
#              LocalStoreDB instance.
#
# Imports
import secrets
import threading
from pathlib import Path
from typing import Optional
#
# 3rd-party Libraries
from cachetools import LRUCache
from fastapi import Header, HTTPException, status
from loguru import logger
#
# Local Imports
from aitools_Storage_API.app.core.config import settings
from aitools_Storage_API.app.core.DB_Management.Local_Store_DB import LocalStoreDB
from aitools_Storage_API.app.core.Storage.exceptions import LocalStoreError
#
#######################################################################################################################
#
# Functions:

MAX_CACHED_DB_INSTANCES = 8

_server_db_instances: LRUCache = LRUCache(maxsize=MAX_CACHED_DB_INSTANCES)
_server_db_lock = threading.Lock()


async def verify_sync_api_key(authorization: Optional[str] = Header(None)) -> bool:
    """Checks the 'Authorization: Bearer <key>' header against the configured SYNC_API_KEY."""
    scheme, _, token = (authorization or "").partition(" ")
    expected = str(settings["SYNC_API_KEY"]).encode("utf-8")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip().encode("utf-8"), expected):
        logger.warning("Rejected sync request with invalid or missing API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API Key",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return True


def get_server_db(db_path: Optional[Path] = None) -> LocalStoreDB:
    """Returns the cached LocalStoreDB backing the sync server, opening it on first use."""
    path = Path(db_path or settings["SYNC_SERVER_DB_PATH"]).resolve()
    with _server_db_lock:
        db = _server_db_instances.get(path)
        if db is not None:
            return db
        try:
            db = LocalStoreDB(path)
        except LocalStoreError as e:
            logger.error(f"Failed to open sync server DB at {path}: {e}")
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                                detail="Storage database is unavailable") from e
        _server_db_instances[path] = db
        return db


def get_sync_db() -> LocalStoreDB:
    return get_server_db()


def close_server_dbs() -> None:
    with _server_db_lock:
        for db in _server_db_instances.values():
            db.close_all_connections()
        _server_db_instances.clear()

#
# End of Storage_Deps.py
#######################################################################################################################
