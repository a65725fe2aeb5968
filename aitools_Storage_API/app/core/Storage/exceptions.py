# exceptions.py
# Description: Error taxonomy shared by every storage backend.
#
# Imports
from typing import Any, Optional
#
# 3rd-party Libraries
#
# Local Imports
#
########################################################################################################################
#
# Functions:

class StorageError(Exception):
    """Base exception for the storage layer."""
    pass


class InputError(ValueError):
    """Raised when a caller hands the storage layer an unusable record or argument."""
    pass


# --- Local structured store ---

class LocalStoreError(StorageError):
    """Raised when the local structured store fails."""

    def __init__(self, message="Local store operation failed.", entity: Optional[str] = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.entity_id:
            details.append(f"ID: {self.entity_id}")
        return f"{base} ({', '.join(details)})" if details else base


class SchemaError(LocalStoreError):
    """Schema version mismatch or failed schema setup."""
    pass


class StorageCapacityError(LocalStoreError):
    """The device refused the write (quota exceeded or disk full)."""
    pass


# --- Directory store ---

class DirectoryStoreError(StorageError):
    """Raised when the mirrored directory cannot be read or written."""

    def __init__(self, message, path=None, *args):
        super().__init__(message, *args)
        self.path = path

    def __str__(self):
        base = super().__str__()
        return f"{base} (Path: {self.path})" if self.path else base


class DirectoryPermissionError(DirectoryStoreError):
    """Access to the chosen directory was denied or revoked."""
    pass


# --- Remote store ---

class RemoteStoreError(StorageError):
    """Represents an error during data transport to or from the remote API."""

    def __init__(self, message, status_code: Optional[int] = None, *args):
        super().__init__(message, *args)
        self.status_code = status_code

    def __str__(self):
        base = super().__str__()
        return f"{base} (HTTP {self.status_code})" if self.status_code else base


class RemoteUnauthorizedError(RemoteStoreError):
    """The remote API rejected the bearer key."""
    pass


class RemoteUnreachableError(RemoteStoreError):
    """Network failure, timeout or server-side error."""
    pass


class RemoteResponseError(RemoteStoreError):
    """The remote API answered with something that is not a valid payload."""
    pass


# --- Archive codec ---

class ArchiveFormatError(StorageError):
    """The archive is not a zip, or lacks/garbles its manifest."""
    pass


# --- Backend selector ---

class BackendStateError(StorageError):
    """An operation was requested that the current backend mode does not allow."""
    pass

#
# End of exceptions.py
########################################################################################################################
