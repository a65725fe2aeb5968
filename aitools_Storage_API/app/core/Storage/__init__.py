# Storage/__init__.py
# Multi-backend persistence for the aitools dataset: local SQLite store, mirrored directory, remote API,
# zip backups and usage accounting.
# The backend selector and service facade depend on the local DB module and are imported from their own modules.

from .exceptions import (
    StorageError,
    InputError,
    LocalStoreError,
    SchemaError,
    StorageCapacityError,
    DirectoryStoreError,
    DirectoryPermissionError,
    RemoteStoreError,
    RemoteUnauthorizedError,
    RemoteUnreachableError,
    RemoteResponseError,
    ArchiveFormatError,
    BackendStateError,
)
from .models import (
    BackendMode,
    CalendarEvent,
    CreatorDetails,
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
    extension_for_mime,
    generate_id,
)
from .Archive_Codec import ArchiveCodec
from .Directory_Store import DirectoryStore, directory_has_data
from .Remote_Store import RemoteStore
from .Usage_Accountant import StorageBreakdownItem, StorageUsage, calculate_storage_usage

__all__ = [
    'StorageError', 'InputError', 'LocalStoreError', 'SchemaError', 'StorageCapacityError',
    'DirectoryStoreError', 'DirectoryPermissionError', 'RemoteStoreError', 'RemoteUnauthorizedError',
    'RemoteUnreachableError', 'RemoteResponseError', 'ArchiveFormatError', 'BackendStateError',
    'BackendMode', 'CalendarEvent', 'CreatorDetails', 'Dataset', 'EntityKind', 'LogEntry', 'LogEntryType',
    'Note', 'NoteRecording', 'Photo', 'Recording', 'SiteSettings', 'Template', 'extension_for_mime', 'generate_id',
    'ArchiveCodec', 'DirectoryStore', 'directory_has_data', 'RemoteStore', 'StorageBreakdownItem', 'StorageUsage',
    'calculate_storage_usage',
]
