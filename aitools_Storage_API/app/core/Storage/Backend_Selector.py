# Backend_Selector.py
# Description: State machine choosing which backend (local DB, directory, remote API) is authoritative, owning the
#              in-memory dataset and routing every write to the active backend.
#
# Imports
import dataclasses
import os
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from aitools_Storage_API.app.core.DB_Management.Local_Store_DB import LocalStoreDB
from aitools_Storage_API.app.core.Storage.Directory_Store import DirectoryStore
from aitools_Storage_API.app.core.Storage.Remote_Store import RemoteStore
from aitools_Storage_API.app.core.Storage.exceptions import (
    BackendStateError,
    DirectoryPermissionError,
    DirectoryStoreError,
    RemoteStoreError,
)
from aitools_Storage_API.app.core.Storage.models import (
    BackendMode,
    Dataset,
    EntityKind,
    SiteSettings,
)
#
########################################################################################################################
#
# Functions:

class ReacquireResult(Enum):
    GRANTED = "granted"
    DENIED = "denied"
    NOT_CONNECTED = "not_connected"


class DirectoryPermissions:
    """
    Checks whether a previously granted directory is still usable.

    The default implementation asks the OS; callers embedding the layer in an environment with its
    own permission model (or tests) pass a replacement with the same ``try_reacquire`` method.
    """

    def try_reacquire(self, handle: Union[str, Path]) -> ReacquireResult:
        path = Path(handle)
        if not path.is_dir():
            return ReacquireResult.NOT_CONNECTED
        if os.access(path, os.R_OK | os.W_OK | os.X_OK):
            return ReacquireResult.GRANTED
        return ReacquireResult.DENIED


RemoteFactory = Callable[[str, str], RemoteStore]


def _copy_dataset(dataset: Dataset, settings: SiteSettings) -> Dataset:
    copied = Dataset(settings=settings)
    for kind in EntityKind:
        setattr(copied, kind.value, list(dataset.collection(kind)))
    return copied


class StorageBackendSelector:
    """
    Owns the active backend and the in-memory dataset.

    Exactly one of local / directory / api is active. Switching backend never merges: the backend
    being switched to either replaces the in-memory state or (an empty directory) is seeded from it.
    The previous backend is only released after the new one is fully loaded, so a failed switch
    leaves everything as it was.
    """

    def __init__(self, local_store: LocalStoreDB, permissions: Optional[DirectoryPermissions] = None,
                 remote_factory: Optional[RemoteFactory] = None):
        self.local_store = local_store
        self.permissions = permissions or DirectoryPermissions()
        self.remote_factory: RemoteFactory = remote_factory or (lambda endpoint, key: RemoteStore(endpoint, key))
        self.mode = BackendMode.LOCAL
        self.dataset = Dataset()
        self.directory: Optional[DirectoryStore] = None
        self.remote: Optional[RemoteStore] = None
        self.notices: List[str] = []

    # --- Notices ---
    def _notify(self, message: str) -> None:
        logger.warning(message)
        self.notices.append(message)

    def pop_notices(self) -> List[str]:
        notices, self.notices = self.notices, []
        return notices

    # --- Internal transitions ---
    def _release_remote(self) -> None:
        if self.remote is not None:
            self.remote.close()
            self.remote = None

    def _enter_local(self, settings: SiteSettings) -> None:
        settings = dataclasses.replace(settings, sync_mode=BackendMode.LOCAL.value)
        dataset = self.local_store.load_dataset()
        dataset.settings = settings
        self.local_store.save_settings(settings)
        self._release_remote()
        self.directory = None
        self.dataset = dataset
        self.mode = BackendMode.LOCAL
        logger.info(f"Storage backend is now local: {dataset.counts()}")

    def _open_directory(self, handle: Union[str, Path]) -> DirectoryStore:
        result = self.permissions.try_reacquire(handle)
        if result is ReacquireResult.DENIED:
            raise DirectoryPermissionError("Permission to access the folder was denied.", path=str(handle))
        if result is ReacquireResult.NOT_CONNECTED:
            raise DirectoryStoreError("The folder is no longer available.", path=str(handle))
        return DirectoryStore(handle)

    def _adopt_directory(self, store: DirectoryStore, base_settings: SiteSettings) -> Dataset:
        dataset, errors = store.load_dataset()
        if errors:
            self._notify(f"Skipped {len(errors)} unreadable entries while loading {store.root}.")
        settings = store.load_settings() or base_settings
        settings = dataclasses.replace(settings, sync_mode=BackendMode.DIRECTORY.value)
        dataset.settings = settings
        return dataset

    # --- Startup ---
    def initialize(self) -> BackendMode:
        """
        Restores the backend used in the previous session.

        A stored directory handle is re-acquired silently; otherwise stored API credentials are
        tried silently. Anything that fails falls back to local with a notice.
        """
        settings = self.local_store.get_settings() or SiteSettings()
        handle = self.local_store.get_directory_handle()
        if handle is not None:
            result = self.permissions.try_reacquire(handle)
            if result is ReacquireResult.GRANTED:
                try:
                    store = DirectoryStore(handle)
                    dataset = self._adopt_directory(store, settings)
                    self.local_store.save_settings(dataset.settings)
                    self.directory, self.dataset, self.mode = store, dataset, BackendMode.DIRECTORY
                    logger.info(f"Resumed directory backend at {handle}")
                    return self.mode
                except DirectoryStoreError as e:
                    self._notify(f"Could not load the connected folder, using local storage instead: {e}")
                    self.local_store.clear_directory_handle()
            elif result is ReacquireResult.DENIED:
                self._notify("Access to the connected folder was denied. Using local storage instead.")
                self.local_store.clear_directory_handle()
            else:
                self._notify(f"The connected folder {handle} is not available. Using local storage instead.")

        if settings.sync_mode == BackendMode.API.value and settings.has_api_credentials:
            try:
                return self.connect_api(settings.custom_api_endpoint, settings.custom_api_auth_key)
            except RemoteStoreError as e:
                self._notify(f"Could not reconnect to the API, using local storage instead: {e}")

        self._enter_local(settings)
        return self.mode

    # --- Directory mode ---
    def connect_directory(self, handle: Union[str, Path]) -> BackendMode:
        """
        Switches to a directory. A directory that already holds data replaces the in-memory state;
        an empty one is seeded with it. The local store is left untouched either way.
        """
        store = self._open_directory(handle)
        base_settings = dataclasses.replace(self.dataset.settings, custom_api_endpoint=None,
                                            custom_api_auth_key=None)
        if store.has_data():
            logger.info(f"Adopting existing data from {store.root}")
            dataset = self._adopt_directory(store, base_settings)
            store.save_settings(dataset.settings)
        else:
            logger.info(f"Seeding empty directory {store.root} with current data")
            settings = dataclasses.replace(base_settings, sync_mode=BackendMode.DIRECTORY.value)
            dataset = _copy_dataset(self.dataset, settings)
            store.save_all(dataset)

        self.local_store.set_directory_handle(store.root)
        self.local_store.save_settings(dataset.settings)
        self._release_remote()
        self.directory, self.dataset, self.mode = store, dataset, BackendMode.DIRECTORY
        return self.mode

    def disconnect_directory(self) -> BackendMode:
        self.local_store.clear_directory_handle()
        if self.mode is not BackendMode.DIRECTORY:
            logger.debug("disconnect_directory called while no directory is active")
            return self.mode
        self._enter_local(self.dataset.settings)
        return self.mode

    def sync_from_directory(self) -> Dataset:
        """Re-reads the active directory, replacing the in-memory state."""
        if self.mode is not BackendMode.DIRECTORY or self.directory is None:
            raise BackendStateError("No directory is connected.")
        self.dataset = self._adopt_directory(self.directory, self.dataset.settings)
        return self.dataset

    # --- API mode ---
    def connect_api(self, endpoint: str, api_key: str) -> BackendMode:
        """Connects and downloads the remote dataset, which replaces the in-memory state on success only."""
        remote = self.remote_factory(endpoint, api_key)
        try:
            remote.connect()
            dataset = remote.fetch_all_data()
        except RemoteStoreError:
            remote.close()
            raise
        dataset.settings = dataclasses.replace(
            dataset.settings,
            custom_api_endpoint=endpoint,
            custom_api_auth_key=api_key,
            sync_mode=BackendMode.API.value,
        )
        self.local_store.save_settings(dataset.settings)
        if self.directory is not None:
            self.local_store.clear_directory_handle()
            self.directory = None
        if self.remote is not remote:
            self._release_remote()
        self.remote, self.dataset, self.mode = remote, dataset, BackendMode.API
        logger.info(f"Storage backend is now api at {endpoint}: {dataset.counts()}")
        return self.mode

    def disconnect_api(self) -> BackendMode:
        settings = dataclasses.replace(self.dataset.settings, custom_api_endpoint=None, custom_api_auth_key=None)
        if self.mode is not BackendMode.API:
            self.dataset.settings = settings
            self.local_store.save_settings(settings)
            return self.mode
        self._enter_local(settings)
        return self.mode

    def reload_local(self) -> Dataset:
        if self.mode is not BackendMode.LOCAL:
            raise BackendStateError(f"Cannot reload local data while the {self.mode.value} backend is active.")
        self._enter_local(self.dataset.settings)
        return self.dataset

    # --- Writes ---
    def save(self, kind: EntityKind, record) -> None:
        if self.mode is BackendMode.API:
            self.remote.save(kind, record)
        else:
            self.local_store.save(kind, record)
            if self.mode is BackendMode.DIRECTORY:
                self.directory.save(kind, record)
        self.dataset.upsert(kind, record)

    def delete(self, kind: EntityKind, record_id: str) -> None:
        if self.mode is BackendMode.API:
            self.remote.delete(kind, record_id)
        else:
            self.local_store.delete(kind, record_id)
            if self.mode is BackendMode.DIRECTORY:
                self.directory.delete(kind, record_id)
        self.dataset.remove(kind, record_id)

    def save_settings(self, settings: SiteSettings) -> None:
        """Replaces the settings. The backend mode is owned by the selector and cannot be changed here."""
        settings = dataclasses.replace(settings, sync_mode=self.mode.value)
        self.local_store.save_settings(settings)
        if self.mode is BackendMode.DIRECTORY:
            self.directory.save_settings(settings)
        elif self.mode is BackendMode.API:
            self.remote.save_settings(settings)
        self.dataset.settings = settings

    # --- Restore / clear ---
    def replace_all(self, dataset: Dataset) -> None:
        """
        Destructive restore: drops any directory or API connection, replaces the local store's
        contents with ``dataset`` and makes it the in-memory state.
        """
        self.local_store.clear_directory_handle()
        self.directory = None
        self._release_remote()
        settings = dataclasses.replace(dataset.settings, sync_mode=BackendMode.LOCAL.value)
        restored = _copy_dataset(dataset, settings)
        self.local_store.replace_dataset(restored)
        self.dataset, self.mode = restored, BackendMode.LOCAL
        logger.info(f"Restored dataset into local store: {restored.counts()}")

    def clear_local_data(self) -> None:
        self.local_store.clear_all()
        if self.mode is BackendMode.LOCAL:
            self.dataset = Dataset(settings=self.dataset.settings)

#
# End of Backend_Selector.py
########################################################################################################################
