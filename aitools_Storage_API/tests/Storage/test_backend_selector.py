# tests/Storage/test_backend_selector.py
# Description: Tests for backend switching, startup restoration and write routing.
#
# Imports
import httpx
import pytest
#
# Third-party imports
#
# Local imports
from aitools_Storage_API.app.core.Storage.Backend_Selector import (
    DirectoryPermissions,
    ReacquireResult,
    StorageBackendSelector,
)
from aitools_Storage_API.app.core.Storage.Directory_Store import DirectoryStore
from aitools_Storage_API.app.core.Storage.Remote_Store import RemoteStore
from aitools_Storage_API.app.core.Storage.exceptions import (
    BackendStateError,
    DirectoryPermissionError,
    DirectoryStoreError,
    RemoteUnauthorizedError,
)
from aitools_Storage_API.app.core.Storage.models import BackendMode, Dataset, EntityKind, SiteSettings
from aitools_Storage_API.tests.test_utils import (
    FakePermissions,
    TEST_API_KEY,
    TEST_ENDPOINT,
    make_dataset,
    make_note,
    make_photo,
)
#
########################################################################################################################
#
# Functions


def _collections(dataset: Dataset):
    return {kind: list(dataset.collection(kind)) for kind in EntityKind}


@pytest.fixture
def permissions():
    return FakePermissions()


@pytest.fixture
def remote_factory(server_client):
    return lambda endpoint, key: RemoteStore(endpoint, key, client=server_client)


@pytest.fixture
def selector(local_db, permissions, remote_factory):
    sel = StorageBackendSelector(local_db, permissions=permissions, remote_factory=remote_factory)
    sel.initialize()
    return sel


@pytest.fixture
def seeded_selector(local_db, permissions, remote_factory):
    local_db.replace_dataset(make_dataset())
    sel = StorageBackendSelector(local_db, permissions=permissions, remote_factory=remote_factory)
    sel.initialize()
    return sel


class TestDirectoryPermissions:
    def test_missing_directory_is_not_connected(self, tmp_path):
        assert DirectoryPermissions().try_reacquire(tmp_path / "gone") is ReacquireResult.NOT_CONNECTED

    def test_existing_directory_is_granted(self, tmp_path):
        assert DirectoryPermissions().try_reacquire(tmp_path) is ReacquireResult.GRANTED


class TestInitialize:
    def test_fresh_install_is_local(self, selector):
        assert selector.mode is BackendMode.LOCAL
        assert selector.dataset.is_empty()
        assert selector.pop_notices() == []

    def test_local_data_is_loaded(self, seeded_selector):
        assert seeded_selector.mode is BackendMode.LOCAL
        assert _collections(seeded_selector.dataset) == _collections(make_dataset())
        assert seeded_selector.dataset.settings.company_name == "Acme"

    def test_resumes_granted_directory(self, local_db, sync_dir, permissions, remote_factory):
        DirectoryStore(sync_dir).save_all(make_dataset(company="Folder Co"))
        local_db.set_directory_handle(sync_dir)
        sel = StorageBackendSelector(local_db, permissions=permissions, remote_factory=remote_factory)
        assert sel.initialize() is BackendMode.DIRECTORY
        assert sel.dataset.settings.company_name == "Folder Co"
        assert sel.dataset.settings.sync_mode == "directory"
        assert len(sel.dataset.photos) == 2
        assert permissions.calls == [sync_dir]

    def test_denied_directory_falls_back_and_forgets_handle(self, local_db, sync_dir, remote_factory):
        local_db.set_directory_handle(sync_dir)
        sel = StorageBackendSelector(local_db, permissions=FakePermissions(ReacquireResult.DENIED),
                                     remote_factory=remote_factory)
        assert sel.initialize() is BackendMode.LOCAL
        assert local_db.get_directory_handle() is None
        assert any("denied" in n for n in sel.pop_notices())

    def test_unavailable_directory_keeps_handle(self, local_db, sync_dir, remote_factory):
        local_db.set_directory_handle(sync_dir)
        sel = StorageBackendSelector(local_db, permissions=FakePermissions(ReacquireResult.NOT_CONNECTED),
                                     remote_factory=remote_factory)
        assert sel.initialize() is BackendMode.LOCAL
        assert local_db.get_directory_handle() == sync_dir
        assert len(sel.pop_notices()) == 1

    def test_granted_but_vanished_directory(self, local_db, tmp_path, permissions, remote_factory):
        local_db.set_directory_handle(tmp_path / "vanished")
        sel = StorageBackendSelector(local_db, permissions=permissions, remote_factory=remote_factory)
        assert sel.initialize() is BackendMode.LOCAL
        assert local_db.get_directory_handle() is None
        assert sel.pop_notices()

    def test_resumes_api(self, local_db, server_db, permissions, remote_factory):
        server_db.replace_dataset(make_dataset(company="Remote Co"))
        local_db.save_settings(SiteSettings(sync_mode="api", custom_api_endpoint=TEST_ENDPOINT,
                                            custom_api_auth_key=TEST_API_KEY))
        sel = StorageBackendSelector(local_db, permissions=permissions, remote_factory=remote_factory)
        assert sel.initialize() is BackendMode.API
        assert sel.dataset.settings.company_name == "Remote Co"
        assert sel.dataset.settings.custom_api_auth_key == TEST_API_KEY

    def test_unreachable_api_falls_back_but_keeps_credentials(self, local_db, permissions):
        def unreachable(endpoint, key):
            def handler(request):
                raise httpx.ConnectError("down", request=request)
            return RemoteStore(endpoint, key, client=httpx.Client(transport=httpx.MockTransport(handler)))

        local_db.save_settings(SiteSettings(sync_mode="api", custom_api_endpoint="http://sync.example",
                                            custom_api_auth_key="k"))
        sel = StorageBackendSelector(local_db, permissions=permissions, remote_factory=unreachable)
        assert sel.initialize() is BackendMode.LOCAL
        assert any("reconnect" in n for n in sel.pop_notices())
        stored = local_db.get_settings()
        assert stored.sync_mode == "local"
        assert stored.custom_api_endpoint == "http://sync.example"


class TestDirectoryMode:
    def test_seed_new_directory(self, local_db, sync_dir, permissions, remote_factory):
        local_db.replace_dataset(Dataset(notes=[make_note("n1"), make_note("n2"), make_note("n3")],
                                         photos=[make_photo("p1")]))
        sel = StorageBackendSelector(local_db, permissions=permissions, remote_factory=remote_factory)
        sel.initialize()
        before = _collections(sel.dataset)

        assert sel.connect_directory(sync_dir) is BackendMode.DIRECTORY
        assert sorted(p.name for p in (sync_dir / "notes").iterdir()) == ["n1.json", "n2.json", "n3.json"]
        assert sorted(p.name for p in (sync_dir / "photos" / "General").iterdir()) == ["p1.jpeg", "p1.json"]
        assert _collections(sel.dataset) == before
        assert local_db.get_directory_handle() == sync_dir

    def test_adopt_existing_directory(self, seeded_selector, local_db, sync_dir):
        DirectoryStore(sync_dir).save_all(Dataset(settings=SiteSettings(company_name="Folder Co"),
                                                  notes=[make_note("folder-note")]))
        seeded_selector.connect_directory(sync_dir)
        assert [n.id for n in seeded_selector.dataset.notes] == ["folder-note"]
        assert seeded_selector.dataset.recordings == []
        assert seeded_selector.dataset.settings.company_name == "Folder Co"
        # Local tables are left as they were
        assert len(local_db.get_all(EntityKind.RECORDINGS)) == 1

    def test_round_trip_is_non_destructive(self, seeded_selector, sync_dir):
        seeded_selector.connect_directory(sync_dir)
        before = _collections(seeded_selector.dataset)
        assert seeded_selector.disconnect_directory() is BackendMode.LOCAL
        seeded_selector.connect_directory(sync_dir)
        assert _collections(seeded_selector.dataset) == before

    def test_disconnect_reloads_local(self, seeded_selector, local_db, sync_dir):
        DirectoryStore(sync_dir).save_all(Dataset(notes=[make_note("folder-note")]))
        seeded_selector.connect_directory(sync_dir)
        seeded_selector.disconnect_directory()
        assert [n.id for n in seeded_selector.dataset.notes] == ["note-1"]
        assert local_db.get_directory_handle() is None
        assert local_db.get_settings().sync_mode == "local"

    def test_writes_go_to_local_and_directory(self, seeded_selector, local_db, sync_dir):
        seeded_selector.connect_directory(sync_dir)
        seeded_selector.save(EntityKind.NOTES, make_note("new"))
        assert (sync_dir / "notes" / "new.json").exists()
        assert local_db.get(EntityKind.NOTES, "new") is not None
        seeded_selector.delete(EntityKind.NOTES, "new")
        assert not (sync_dir / "notes" / "new.json").exists()
        assert local_db.get(EntityKind.NOTES, "new") is None
        assert seeded_selector.dataset.get(EntityKind.NOTES, "new") is None

    def test_sync_from_directory(self, seeded_selector, sync_dir):
        seeded_selector.connect_directory(sync_dir)
        DirectoryStore(sync_dir).save(EntityKind.NOTES, make_note("external"))
        seeded_selector.sync_from_directory()
        assert seeded_selector.dataset.get(EntityKind.NOTES, "external") is not None

    def test_sync_from_directory_requires_directory(self, selector):
        with pytest.raises(BackendStateError):
            selector.sync_from_directory()

    def test_denied_connect_changes_nothing(self, seeded_selector, permissions, sync_dir):
        permissions.result = ReacquireResult.DENIED
        before = _collections(seeded_selector.dataset)
        with pytest.raises(DirectoryPermissionError):
            seeded_selector.connect_directory(sync_dir)
        assert seeded_selector.mode is BackendMode.LOCAL
        assert _collections(seeded_selector.dataset) == before

    def test_unavailable_connect(self, selector, permissions, tmp_path):
        permissions.result = ReacquireResult.NOT_CONNECTED
        with pytest.raises(DirectoryStoreError, match="no longer available"):
            selector.connect_directory(tmp_path / "gone")


class TestApiMode:
    def test_connect_downloads_remote_dataset(self, seeded_selector, server_db, local_db):
        server_db.replace_dataset(Dataset(notes=[make_note("remote-note")]))
        assert seeded_selector.connect_api(TEST_ENDPOINT, TEST_API_KEY) is BackendMode.API
        assert [n.id for n in seeded_selector.dataset.notes] == ["remote-note"]
        stored = local_db.get_settings()
        assert stored.sync_mode == "api"
        assert stored.custom_api_endpoint == TEST_ENDPOINT

    def test_failed_connect_leaves_state_unchanged(self, seeded_selector, local_db):
        before = _collections(seeded_selector.dataset)
        with pytest.raises(RemoteUnauthorizedError):
            seeded_selector.connect_api(TEST_ENDPOINT, "wrong-key")
        assert seeded_selector.mode is BackendMode.LOCAL
        assert seeded_selector.remote is None
        assert _collections(seeded_selector.dataset) == before
        assert local_db.get_settings().custom_api_endpoint is None

    def test_writes_go_to_remote_only(self, seeded_selector, server_db, local_db):
        seeded_selector.connect_api(TEST_ENDPOINT, TEST_API_KEY)
        seeded_selector.save(EntityKind.NOTES, make_note("api-note"))
        assert server_db.get(EntityKind.NOTES, "api-note") is not None
        assert local_db.get(EntityKind.NOTES, "api-note") is None
        seeded_selector.delete(EntityKind.NOTES, "api-note")
        assert server_db.get(EntityKind.NOTES, "api-note") is None

    def test_disconnect_clears_credentials(self, seeded_selector, local_db):
        seeded_selector.connect_api(TEST_ENDPOINT, TEST_API_KEY)
        assert seeded_selector.disconnect_api() is BackendMode.LOCAL
        assert seeded_selector.remote is None
        assert [n.id for n in seeded_selector.dataset.notes] == ["note-1"]
        stored = local_db.get_settings()
        assert stored.custom_api_endpoint is None
        assert stored.custom_api_auth_key is None

    def test_connect_api_drops_directory(self, seeded_selector, local_db, sync_dir):
        seeded_selector.connect_directory(sync_dir)
        seeded_selector.connect_api(TEST_ENDPOINT, TEST_API_KEY)
        assert seeded_selector.directory is None
        assert local_db.get_directory_handle() is None

    def test_settings_written_to_remote(self, seeded_selector, server_db):
        seeded_selector.connect_api(TEST_ENDPOINT, TEST_API_KEY)
        settings = seeded_selector.dataset.settings
        settings.company_name = "Renamed"
        seeded_selector.save_settings(settings)
        assert server_db.get_settings().company_name == "Renamed"
        assert seeded_selector.dataset.settings.sync_mode == "api"


class TestLocalOperations:
    def test_save_settings_cannot_change_mode(self, selector, local_db):
        selector.save_settings(SiteSettings(company_name="X", sync_mode="api"))
        assert local_db.get_settings().sync_mode == "local"
        assert selector.dataset.settings.company_name == "X"

    def test_reload_local_only_in_local_mode(self, seeded_selector, sync_dir):
        assert seeded_selector.reload_local().counts() == make_dataset().counts()
        seeded_selector.connect_directory(sync_dir)
        with pytest.raises(BackendStateError):
            seeded_selector.reload_local()

    def test_replace_all_drops_directory(self, seeded_selector, local_db, sync_dir):
        seeded_selector.connect_directory(sync_dir)
        seeded_selector.replace_all(Dataset(notes=[make_note("restored")]))
        assert seeded_selector.mode is BackendMode.LOCAL
        assert local_db.get_directory_handle() is None
        assert [n.id for n in local_db.get_all(EntityKind.NOTES)] == ["restored"]
        assert local_db.get_all(EntityKind.RECORDINGS) == []

    def test_clear_local_data(self, seeded_selector, local_db):
        seeded_selector.clear_local_data()
        assert seeded_selector.dataset.is_empty()
        assert local_db.load_dataset().is_empty()

    def test_clear_local_data_in_directory_mode_keeps_memory(self, seeded_selector, local_db, sync_dir):
        seeded_selector.connect_directory(sync_dir)
        seeded_selector.clear_local_data()
        assert not seeded_selector.dataset.is_empty()
        assert local_db.get_all(EntityKind.NOTES) == []

#
# End of test_backend_selector.py
########################################################################################################################
