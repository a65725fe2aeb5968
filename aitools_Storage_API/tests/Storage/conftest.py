# tests/Storage/conftest.py
# Description: Shared fixtures for the storage layer tests.
#
# Imports
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
#
# Third-party imports
#
# Local imports
from aitools_Storage_API.app.api.v1.API_Deps.Storage_Deps import get_sync_db
from aitools_Storage_API.app.api.v1.endpoints.storage_sync import router as storage_sync_router
from aitools_Storage_API.app.core.config import settings
from aitools_Storage_API.app.core.DB_Management.Local_Store_DB import LocalStoreDB
from aitools_Storage_API.tests.test_utils import TEST_API_KEY, TEST_ENDPOINT, make_dataset
#
########################################################################################################################
#
# Functions


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "local_store.db"


@pytest.fixture
def local_db(db_path):
    db = LocalStoreDB(db_path)
    yield db
    db.close_connection()


@pytest.fixture
def sample_dataset():
    return make_dataset()


@pytest.fixture
def sync_dir(tmp_path):
    path = tmp_path / "synced_folder"
    path.mkdir()
    return path


@pytest.fixture
def server_db(tmp_path):
    # File backed: the endpoints reach the DB from worker threads
    db = LocalStoreDB(tmp_path / "sync_server.db")
    yield db
    db.close_all_connections()


@pytest.fixture
def server_client(server_db, monkeypatch):
    """TestClient for the reference sync server backed by a temporary database."""
    monkeypatch.setitem(settings, "SYNC_API_KEY", TEST_API_KEY)
    app = FastAPI()
    app.include_router(storage_sync_router, prefix="/api")
    app.dependency_overrides[get_sync_db] = lambda: server_db
    with TestClient(app, base_url=TEST_ENDPOINT) as client:
        yield client
    app.dependency_overrides.clear()
