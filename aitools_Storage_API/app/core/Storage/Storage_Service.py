# Storage_Service.py
# Description: Facade used by the application layer: per-kind save/update/delete, settings, backend switching,
#              backup/restore and storage usage.
#
# Imports
from datetime import date
from pathlib import Path
from typing import BinaryIO, Optional, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from aitools_Storage_API.app.core.config import settings as app_settings
from aitools_Storage_API.app.core.DB_Management.Local_Store_DB import LocalStoreDB
from aitools_Storage_API.app.core.Storage.Archive_Codec import ArchiveCodec, ArchiveSource
from aitools_Storage_API.app.core.Storage.Backend_Selector import DirectoryPermissions, StorageBackendSelector
from aitools_Storage_API.app.core.Storage.Remote_Store import RemoteStore
from aitools_Storage_API.app.core.Storage.Directory_Store import directory_has_data
from aitools_Storage_API.app.core.Storage.Usage_Accountant import StorageUsage, calculate_storage_usage
from aitools_Storage_API.app.core.Storage.exceptions import InputError
from aitools_Storage_API.app.core.Storage.models import (
    BackendMode,
    CalendarEvent,
    Dataset,
    EntityKind,
    LogEntry,
    LogEntryType,
    Note,
    NoteRecording,
    Photo,
    Recording,
    SiteSettings,
    Template,
    generate_id,
    utc_now_iso,
)
#
########################################################################################################################
#
# Functions:

class StorageService:
    """
    Entry point for callers. Creation of notes, photos and recordings appends the matching
    activity log entry; updates do not.
    """

    def __init__(self, selector: StorageBackendSelector, codec: Optional[ArchiveCodec] = None):
        self.selector = selector
        self.codec = codec or ArchiveCodec()

    @property
    def dataset(self) -> Dataset:
        return self.selector.dataset

    @property
    def mode(self) -> BackendMode:
        return self.selector.mode

    def initialize(self) -> BackendMode:
        return self.selector.initialize()

    # --- Generic helpers ---
    def _save(self, kind: EntityKind, record, expected_type) -> None:
        if not isinstance(record, expected_type):
            raise InputError(f"Expected {expected_type.__name__}, got {type(record).__name__}")
        self.selector.save(kind, record)

    def _is_new(self, kind: EntityKind, record_id: str) -> bool:
        return self.dataset.get(kind, record_id) is None

    # --- Log entries ---
    def add_log_entry(self, entry_type: Union[LogEntryType, str], timestamp: Optional[str] = None,
                      task: Optional[str] = None, start_time: Optional[str] = None,
                      end_time: Optional[str] = None) -> LogEntry:
        entry = LogEntry(
            id=generate_id(),
            type=LogEntryType(entry_type).value,
            timestamp=timestamp or utc_now_iso(),
            task=task,
            start_time=start_time,
            end_time=end_time,
        )
        self.selector.save(EntityKind.LOG_ENTRIES, entry)
        return entry

    # --- Templates ---
    def save_template(self, template: Template) -> None:
        self._save(EntityKind.TEMPLATES, template, Template)

    def update_template(self, template: Template) -> None:
        self._save(EntityKind.TEMPLATES, template, Template)

    def delete_template(self, template_id: str) -> None:
        self.selector.delete(EntityKind.TEMPLATES, template_id)

    # --- Recordings ---
    def save_recording(self, recording: Recording) -> None:
        is_new = self._is_new(EntityKind.RECORDINGS, recording.id)
        self._save(EntityKind.RECORDINGS, recording, Recording)
        if is_new:
            self.add_log_entry(LogEntryType.RECORDING_ADDED)

    def update_recording(self, recording: Recording) -> None:
        self._save(EntityKind.RECORDINGS, recording, Recording)

    def delete_recording(self, recording_id: str) -> None:
        self.selector.delete(EntityKind.RECORDINGS, recording_id)

    # --- Photos ---
    def save_photo(self, photo: Photo) -> None:
        is_new = self._is_new(EntityKind.PHOTOS, photo.id)
        self._save(EntityKind.PHOTOS, photo, Photo)
        if is_new:
            self.add_log_entry(LogEntryType.PHOTO_ADDED)

    def update_photo(self, photo: Photo) -> None:
        self._save(EntityKind.PHOTOS, photo, Photo)

    def delete_photo(self, photo_id: str) -> None:
        self.selector.delete(EntityKind.PHOTOS, photo_id)

    # --- Notes ---
    def save_note(self, note: Note) -> None:
        is_new = self._is_new(EntityKind.NOTES, note.id)
        self._save(EntityKind.NOTES, note, Note)
        if is_new:
            self.add_log_entry(LogEntryType.NOTE_CREATED)

    def update_note(self, note: Note) -> None:
        self._save(EntityKind.NOTES, note, Note)

    def delete_note(self, note_id: str) -> None:
        # Linked note recordings are the caller's to delete
        self.selector.delete(EntityKind.NOTES, note_id)

    # --- Note recordings ---
    def save_note_recording(self, recording: NoteRecording) -> None:
        self._save(EntityKind.NOTE_RECORDINGS, recording, NoteRecording)

    def update_note_recording(self, recording: NoteRecording) -> None:
        self._save(EntityKind.NOTE_RECORDINGS, recording, NoteRecording)

    def delete_note_recording(self, recording_id: str) -> None:
        self.selector.delete(EntityKind.NOTE_RECORDINGS, recording_id)

    # --- Calendar ---
    def save_calendar_event(self, event: CalendarEvent) -> None:
        if not event.created_at:
            event.created_at = utc_now_iso()
        self._save(EntityKind.CALENDAR_EVENTS, event, CalendarEvent)

    def update_calendar_event(self, event: CalendarEvent) -> None:
        self._save(EntityKind.CALENDAR_EVENTS, event, CalendarEvent)

    def delete_calendar_event(self, event_id: str) -> None:
        self.selector.delete(EntityKind.CALENDAR_EVENTS, event_id)

    # --- Settings ---
    def save_settings(self, settings: SiteSettings) -> None:
        self.selector.save_settings(settings)

    # --- Usage ---
    def get_storage_usage(self) -> StorageUsage:
        return calculate_storage_usage(self.dataset)

    # --- Backends ---
    @staticmethod
    def directory_has_data(path: Union[str, Path]) -> bool:
        return directory_has_data(path)

    def connect_backend(self, mode: Union[BackendMode, str], *, directory: Optional[Union[str, Path]] = None,
                        endpoint: Optional[str] = None, api_key: Optional[str] = None) -> BackendMode:
        mode = BackendMode(mode)
        if mode is BackendMode.DIRECTORY:
            if directory is None:
                raise InputError("A directory is required to connect the directory backend.")
            return self.selector.connect_directory(directory)
        if mode is BackendMode.API:
            if not endpoint or not api_key:
                raise InputError("An endpoint and an API key are required to connect the API backend.")
            return self.selector.connect_api(endpoint, api_key)
        return self.disconnect_backend()

    def disconnect_backend(self) -> BackendMode:
        if self.mode is BackendMode.DIRECTORY:
            return self.selector.disconnect_directory()
        if self.mode is BackendMode.API:
            return self.selector.disconnect_api()
        return self.mode

    # --- Backup / restore ---
    def export_archive(self, destination: Optional[Union[str, Path, BinaryIO]] = None) -> Optional[bytes]:
        """
        Writes a backup of the in-memory dataset.

        Returns the archive bytes when no destination is given. A destination that is an existing
        directory receives a dated ``ai-tools-backup-YYYY-MM-DD.zip``.
        """
        if destination is None:
            return self.codec.encode(self.dataset)
        if isinstance(destination, (str, Path)) and Path(destination).is_dir():
            destination = Path(destination) / backup_filename()
        self.codec.write(self.dataset, destination)
        logger.info(f"Backup exported to {destination}")
        return None

    def export_to_backup_dir(self) -> Path:
        """Exports into the configured ARCHIVE_EXPORT_DIR and returns the archive path."""
        export_dir = Path(app_settings["ARCHIVE_EXPORT_DIR"])
        export_dir.mkdir(parents=True, exist_ok=True)
        target = export_dir / backup_filename()
        self.export_archive(target)
        return target

    def import_archive(self, source: ArchiveSource) -> Dataset:
        """
        Restores a backup. The archive is fully parsed before anything is touched; after that the
        restore is destructive: any connected directory is dropped and the local store is replaced.
        """
        dataset = self.codec.decode(source)
        logger.info(f"Restoring backup: {dataset.counts()}")
        self.selector.replace_all(dataset)
        return self.dataset

    def clear_local_data(self) -> None:
        self.selector.clear_local_data()


def backup_filename(day: Optional[date] = None) -> str:
    return f"ai-tools-backup-{(day or date.today()).isoformat()}.zip"


def create_storage_service(db_path: Optional[Union[str, Path]] = None,
                           permissions: Optional[DirectoryPermissions] = None) -> StorageService:
    """
    Builds a service wired from the application settings (LOCAL_STORE_DB_PATH, REMOTE_TIMEOUT_SECONDS).
    Call ``initialize()`` on the result to restore the previous session's backend.
    """
    local_store = LocalStoreDB(Path(db_path or app_settings["LOCAL_STORE_DB_PATH"]))
    timeout = app_settings["REMOTE_TIMEOUT_SECONDS"]
    selector = StorageBackendSelector(
        local_store,
        permissions=permissions,
        remote_factory=lambda endpoint, key: RemoteStore(endpoint, key, timeout=timeout),
    )
    return StorageService(selector)

#
# End of Storage_Service.py
########################################################################################################################
