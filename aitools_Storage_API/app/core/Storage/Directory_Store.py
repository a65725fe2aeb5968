# Directory_Store.py
# Description: Mirrors the dataset into a user-chosen directory using a fixed, tool-friendly file layout.
#
#   settings.json                 SiteSettings
#   templates.json                [Template]
#   log_entries.json              [LogEntry]
#   calendar_events.json          [CalendarEvent]
#   notes/<id>.json               Note
#   recordings/<id>.json|.webm    Recording metadata + audio
#   note_recordings/<id>.json|.webm
#   photos/<folder>/<id>.json     Photo metadata
#   photos/<folder>/<id>.<ext>    Photo image, ext derived from the mime type
#
# Imports
import contextlib
import json
import mimetypes
import os
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from aitools_Storage_API.app.core.Storage.exceptions import (
    DirectoryPermissionError,
    DirectoryStoreError,
    InputError,
)
from aitools_Storage_API.app.core.Storage.migrations import upgrade_record, upgrade_settings
from aitools_Storage_API.app.core.Storage.models import (
    DEFAULT_PHOTO_FOLDER,
    Dataset,
    EntityKind,
    SiteSettings,
    check_record_id,
    extension_for_mime,
    photo_folder_parts,
)
#
########################################################################################################################
#
# Functions:

SETTINGS_FILE = "settings.json"

# Kinds stored as a single JSON list at the directory root
COLLECTION_FILES: Dict[EntityKind, str] = {
    EntityKind.TEMPLATES: "templates.json",
    EntityKind.LOG_ENTRIES: "log_entries.json",
    EntityKind.CALENDAR_EVENTS: "calendar_events.json",
}

# Kinds stored one file (or file pair) per record
RECORD_DIRS: Dict[EntityKind, str] = {
    EntityKind.NOTES: "notes",
    EntityKind.RECORDINGS: "recordings",
    EntityKind.NOTE_RECORDINGS: "note_recordings",
    EntityKind.PHOTOS: "photos",
}


# --- Layout helpers (shared with the archive codec) ---

def blob_extension(kind: EntityKind, metadata: Dict[str, Any]) -> str:
    if kind is EntityKind.PHOTOS:
        return extension_for_mime(metadata.get("imageMimeType"))
    return "webm"


def record_paths(kind: EntityKind, record) -> Tuple[str, Optional[str]]:
    """Relative POSIX paths of a record's metadata file and (for blob kinds) its binary sibling."""
    if kind in COLLECTION_FILES:
        return COLLECTION_FILES[kind], None
    check_record_id(record.id)
    base = PurePosixPath(RECORD_DIRS[kind])
    if kind is EntityKind.PHOTOS:
        base = base.joinpath(*photo_folder_parts(record.folder))
    metadata_path = str(base / f"{record.id}.json")
    if not kind.has_blob:
        return metadata_path, None
    return metadata_path, str(base / f"{record.id}.{blob_extension(kind, record.to_dict())}")


def directory_has_data(root: Union[str, Path]) -> bool:
    """
    Probes whether a directory already holds a dataset.

    True if any fixed top-level JSON file exists and is non-empty, or any record
    subdirectory exists and contains an entry.
    """
    root = Path(root)
    try:
        for name in [SETTINGS_FILE, *COLLECTION_FILES.values()]:
            path = root / name
            if path.is_file() and path.stat().st_size > 0:
                return True
        for name in RECORD_DIRS.values():
            path = root / name
            if path.is_dir() and any(path.iterdir()):
                return True
    except PermissionError as e:
        raise DirectoryPermissionError(f"Permission denied while probing directory: {e}", path=str(root)) from e
    except OSError as e:
        raise DirectoryStoreError(f"Could not inspect directory: {e}", path=str(root)) from e
    return False


@dataclass
class DirectoryLoadResult:
    records: List[Any] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class DirectoryEntry:
    """One row of a folder listing."""
    name: str
    kind: str
    size: Optional[int] = None
    last_modified: Optional[float] = None

    @property
    def is_directory(self) -> bool:
        return self.kind == "directory"


class DirectoryStore:
    """File-per-record mirror of the dataset inside a directory the user granted access to."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        if not self.root.is_dir():
            raise DirectoryStoreError("Directory does not exist or is not a directory", path=str(self.root))
        logger.info(f"Directory store opened at {self.root}")

    # --- Low-level file access ---
    def _write_atomic(self, path: Path, data: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except PermissionError as e:
            raise DirectoryPermissionError(f"Permission denied writing {path.name}: {e}", path=str(path)) from e
        except OSError as e:
            raise DirectoryStoreError(f"Failed to write {path.name}: {e}", path=str(path)) from e

    def _write_json(self, path: Path, payload: Any) -> None:
        self._write_atomic(path, json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8"))

    def _read_json(self, path: Path) -> Any:
        """Returns the parsed file, None if absent. Raises ValueError for unparsable content."""
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except PermissionError as e:
            raise DirectoryPermissionError(f"Permission denied reading {path.name}: {e}", path=str(path)) from e
        except OSError as e:
            raise DirectoryStoreError(f"Failed to read {path.name}: {e}", path=str(path)) from e
        return json.loads(text) if text.strip() else None

    def _remove(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except PermissionError as e:
            raise DirectoryPermissionError(f"Permission denied deleting {path.name}: {e}", path=str(path)) from e
        except OSError as e:
            raise DirectoryStoreError(f"Failed to delete {path.name}: {e}", path=str(path)) from e

    def _list_dir(self, path: Path, include_hidden_dirs: bool = False) -> List[Path]:
        """Sorted entries of a directory without dot-files (temp files); an absent directory is empty."""
        if not path.exists():
            return []
        try:
            return sorted(p for p in path.iterdir()
                          if not p.name.startswith(".") or (include_hidden_dirs and p.is_dir()))
        except PermissionError as e:
            raise DirectoryPermissionError(f"Permission denied listing {path}: {e}", path=str(path)) from e
        except OSError as e:
            raise DirectoryStoreError(f"Failed to enumerate {path}: {e}", path=str(path)) from e

    # --- Settings ---
    def load_settings(self) -> Optional[SiteSettings]:
        try:
            raw = self._read_json(self.root / SETTINGS_FILE)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable {SETTINGS_FILE} in {self.root}: {e}")
            return None
        if raw is None:
            return None
        try:
            return upgrade_settings(raw)
        except InputError as e:
            logger.warning(f"Ignoring invalid {SETTINGS_FILE} in {self.root}: {e}")
            return None

    def save_settings(self, settings: SiteSettings) -> None:
        self._write_json(self.root / SETTINGS_FILE, settings.to_dict())

    # --- Collection files ---
    def _read_collection(self, kind: EntityKind) -> DirectoryLoadResult:
        result = DirectoryLoadResult()
        name = COLLECTION_FILES[kind]
        try:
            raw = self._read_json(self.root / name)
        except ValueError as e:
            result.errors.append(f"Failed to parse {name}: {e}")
            return result
        if raw is None:
            return result
        if not isinstance(raw, list):
            result.errors.append(f"{name} does not contain a list")
            return result
        seen = set()
        for index, item in enumerate(raw):
            try:
                record = upgrade_record(kind, item)
            except InputError as e:
                result.errors.append(f"Skipped entry {index} of {name}: {e}")
                continue
            if record.id in seen:
                continue
            seen.add(record.id)
            result.records.append(record)
        return result

    def _write_collection(self, kind: EntityKind, records: List[Any]) -> None:
        self._write_json(self.root / COLLECTION_FILES[kind], [r.to_dict() for r in records])

    # --- Per-record directories ---
    def _metadata_files(self, kind: EntityKind) -> List[Path]:
        base = self.root / RECORD_DIRS[kind]
        if kind is not EntityKind.PHOTOS:
            return [p for p in self._list_dir(base) if p.is_file() and p.suffix == ".json"]
        found: List[Path] = []
        pending = [base]
        while pending:
            current = pending.pop(0)
            for entry in self._list_dir(current, include_hidden_dirs=True):
                if entry.is_dir():
                    pending.append(entry)
                elif entry.suffix == ".json":
                    found.append(entry)
        return found

    def _read_record_dir(self, kind: EntityKind) -> DirectoryLoadResult:
        result = DirectoryLoadResult()
        seen = set()
        for meta_path in self._metadata_files(kind):
            rel = meta_path.relative_to(self.root).as_posix()
            try:
                raw = self._read_json(meta_path)
            except ValueError as e:
                logger.warning(f"Skipping unreadable metadata {rel}: {e}")
                result.errors.append(f"Failed to parse {rel}: {e}")
                continue
            if not isinstance(raw, dict):
                result.errors.append(f"Skipped {rel}: not an object")
                continue
            raw.setdefault("id", meta_path.stem)
            try:
                check_record_id(raw["id"])
            except InputError as e:
                logger.warning(f"Skipping {rel}: {e}")
                result.errors.append(f"Skipped {rel}: {e}")
                continue
            if kind is EntityKind.PHOTOS:
                folder_rel = meta_path.parent.relative_to(self.root / RECORD_DIRS[kind]).as_posix()
                raw["folder"] = folder_rel if folder_rel != "." else DEFAULT_PHOTO_FOLDER

            blob = None
            if kind.has_blob:
                blob_path = meta_path.with_name(f"{raw['id']}.{blob_extension(kind, raw)}")
                try:
                    blob = blob_path.read_bytes()
                except FileNotFoundError:
                    logger.warning(f"Skipping {rel}: binary {blob_path.name} is missing")
                    result.errors.append(f"Missing binary for {rel}")
                    continue
                except PermissionError as e:
                    raise DirectoryPermissionError(f"Permission denied reading {blob_path.name}: {e}",
                                                   path=str(blob_path)) from e
                except OSError as e:
                    raise DirectoryStoreError(f"Failed to read {blob_path.name}: {e}", path=str(blob_path)) from e
            try:
                record = upgrade_record(kind, raw, blob=blob)
            except InputError as e:
                result.errors.append(f"Skipped {rel}: {e}")
                continue
            if record.id in seen:
                logger.warning(f"Duplicate {kind.value} id {record.id} at {rel}, keeping the first copy")
                continue
            seen.add(record.id)
            result.records.append(record)
        return result

    def _find_photo_files(self, photo_id: str) -> List[Path]:
        matches = []
        for meta_path in self._metadata_files(EntityKind.PHOTOS):
            if meta_path.stem != photo_id:
                continue
            matches.append(meta_path)
            matches.extend(p for p in self._list_dir(meta_path.parent)
                           if p.is_file() and p.stem == photo_id and p.suffix != ".json")
        return matches

    # --- Public per-kind API ---
    def load(self, kind: EntityKind) -> DirectoryLoadResult:
        """Reads every record of a kind from disk. Corrupt or half-written records are skipped and reported."""
        if kind in COLLECTION_FILES:
            result = self._read_collection(kind)
        else:
            result = self._read_record_dir(kind)
        if result.errors:
            logger.warning(f"Loaded {len(result.records)} {kind.value} from {self.root} "
                           f"with {len(result.errors)} skipped entries")
        return result

    def save(self, kind: EntityKind, record) -> None:
        """Upserts one record. Binaries are written before their metadata."""
        if not isinstance(record, kind.model):
            raise InputError(f"Expected {kind.model.__name__} for {kind.value}, got {type(record).__name__}")
        check_record_id(record.id)
        if kind in COLLECTION_FILES:
            records = self._read_collection(kind).records
            for index, existing in enumerate(records):
                if existing.id == record.id:
                    records[index] = record
                    break
            else:
                records.append(record)
            self._write_collection(kind, records)
            return

        metadata_rel, blob_rel = record_paths(kind, record)
        if kind is EntityKind.PHOTOS:
            keep = {self.root / metadata_rel, self.root / blob_rel}
            for stale in self._find_photo_files(record.id):
                if stale not in keep:
                    self._remove(stale)
        if blob_rel is not None:
            self._write_atomic(self.root / blob_rel, record.get_blob() or b"")
        self._write_json(self.root / metadata_rel, record.to_dict())
        logger.debug(f"Wrote {kind.value} {record.id} to {metadata_rel}")

    def delete(self, kind: EntityKind, record_id: str) -> bool:
        """Removes a record and its binary. Deleting an absent id is a no-op."""
        if kind in COLLECTION_FILES:
            records = self._read_collection(kind).records
            remaining = [r for r in records if r.id != record_id]
            if len(remaining) == len(records):
                return False
            self._write_collection(kind, remaining)
            return True
        check_record_id(record_id)
        if kind is EntityKind.PHOTOS:
            removed = [self._remove(p) for p in self._find_photo_files(record_id)]
            return any(removed)
        base = self.root / RECORD_DIRS[kind]
        removed = self._remove(base / f"{record_id}.json")
        if kind.has_blob:
            removed = self._remove(base / f"{record_id}.webm") or removed
        return removed

    def load_templates(self) -> DirectoryLoadResult:
        return self.load(EntityKind.TEMPLATES)

    def load_recordings(self) -> DirectoryLoadResult:
        return self.load(EntityKind.RECORDINGS)

    def load_photos(self) -> DirectoryLoadResult:
        return self.load(EntityKind.PHOTOS)

    def load_notes(self) -> DirectoryLoadResult:
        return self.load(EntityKind.NOTES)

    def load_note_recordings(self) -> DirectoryLoadResult:
        return self.load(EntityKind.NOTE_RECORDINGS)

    def load_log_entries(self) -> DirectoryLoadResult:
        return self.load(EntityKind.LOG_ENTRIES)

    def load_calendar_events(self) -> DirectoryLoadResult:
        return self.load(EntityKind.CALENDAR_EVENTS)

    # --- File browser ---
    @staticmethod
    def _check_item_name(name: str, message: str = "Invalid item name.") -> str:
        if not name or "/" in name or "\\" in name or "\x00" in name or name in (".", ".."):
            raise InputError(message)
        return name

    def _resolve_dir(self, rel_path: Union[str, List[str], None]) -> Path:
        """Maps a '/'-separated path (or list of segments) below the root to a real path."""
        if isinstance(rel_path, (list, tuple)):
            parts = [p for p in rel_path if p]
        else:
            parts = [p for p in (rel_path or "").split("/") if p]
        for part in parts:
            self._check_item_name(part, f"Invalid path segment: {part!r}")
        return self.root.joinpath(*parts)

    def list_contents(self, rel_path: str = "") -> List[DirectoryEntry]:
        """
        Lists one folder of the mirror, folders first and then by name.

        A folder that does not exist lists as empty.
        """
        target = self._resolve_dir(rel_path)
        try:
            children = list(target.iterdir())
        except (FileNotFoundError, NotADirectoryError):
            logger.warning(f"Could not list directory contents for path '{rel_path}'")
            return []
        except PermissionError as e:
            raise DirectoryPermissionError(f"Permission denied listing {target}: {e}", path=str(target)) from e
        except OSError as e:
            raise DirectoryStoreError(f"Failed to enumerate {target}: {e}", path=str(target)) from e

        entries = []
        for child in children:
            if child.is_dir():
                entries.append(DirectoryEntry(name=child.name, kind="directory"))
                continue
            try:
                stat = child.stat()
                entries.append(DirectoryEntry(name=child.name, kind="file", size=stat.st_size,
                                              last_modified=stat.st_mtime))
            except OSError as e:
                logger.warning(f"Could not get file details for {child.name}: {e}")
                entries.append(DirectoryEntry(name=child.name, kind="file"))
        return sorted(entries, key=lambda e: (not e.is_directory, e.name.casefold(), e.name))

    def read_file(self, rel_path: str) -> Union[str, bytes]:
        """Reads a file below the root. Text and JSON come back as str, anything else as bytes."""
        parts = [p for p in (rel_path or "").split("/") if p]
        if not parts:
            raise InputError("Invalid file path")
        path = self._resolve_dir(parts[:-1]) / self._check_item_name(parts[-1], "Invalid file path")
        mime_type, _ = mimetypes.guess_type(path.name)
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise DirectoryStoreError(f"File not found: {rel_path}", path=str(path)) from e
        except PermissionError as e:
            raise DirectoryPermissionError(f"Permission denied reading {path.name}: {e}", path=str(path)) from e
        except OSError as e:
            raise DirectoryStoreError(f"Failed to read {path.name}: {e}", path=str(path)) from e
        if mime_type and (mime_type.startswith("text/") or mime_type == "application/json"):
            return data.decode("utf-8", errors="replace")
        return data

    def rename_item(self, rel_dir: Union[str, List[str]], old_name: str, new_name: str) -> None:
        """Renames a file or folder inside one folder. Never overwrites an existing entry."""
        self._check_item_name(new_name, "Invalid new name.")
        self._check_item_name(old_name)
        if new_name == old_name:
            return
        parent = self._resolve_dir(rel_dir)
        source, target = parent / old_name, parent / new_name
        if target.exists():
            raise InputError(f'An item named "{new_name}" already exists.')
        try:
            source.rename(target)
        except FileNotFoundError as e:
            raise DirectoryStoreError(f'No item named "{old_name}"', path=str(source)) from e
        except PermissionError as e:
            raise DirectoryPermissionError(f"Permission denied renaming {old_name}: {e}", path=str(source)) from e
        except OSError as e:
            raise DirectoryStoreError(f"Failed to rename {old_name}: {e}", path=str(source)) from e
        logger.info(f"Renamed {source.relative_to(self.root).as_posix()} to {new_name}")

    def delete_item(self, rel_dir: Union[str, List[str]], name: str, recursive: bool = False) -> bool:
        """
        Deletes a file or folder inside one folder. A non-empty folder needs recursive=True.
        Deleting an absent item is a no-op and returns False.
        """
        target = self._resolve_dir(rel_dir) / self._check_item_name(name)
        try:
            if target.is_dir() and not target.is_symlink():
                if recursive:
                    shutil.rmtree(target)
                else:
                    target.rmdir()
            else:
                target.unlink()
        except FileNotFoundError:
            return False
        except PermissionError as e:
            raise DirectoryPermissionError(f"Permission denied deleting {name}: {e}", path=str(target)) from e
        except OSError as e:
            raise DirectoryStoreError(f"Failed to delete {name}: {e}", path=str(target)) from e
        logger.info(f"Deleted {target.relative_to(self.root).as_posix()}")
        return True

    # --- Whole dataset ---
    def has_data(self) -> bool:
        return directory_has_data(self.root)

    def load_dataset(self) -> Tuple[Dataset, List[str]]:
        """
        Re-reads the whole directory.

        Returns the dataset plus the list of skipped entries. A failure to enumerate a directory raises
        DirectoryStoreError and nothing is returned.
        """
        errors: List[str] = []
        dataset = Dataset(settings=self.load_settings() or SiteSettings())
        for kind in EntityKind:
            result = self.load(kind)
            setattr(dataset, kind.value, result.records)
            errors.extend(result.errors)
        logger.info(f"Loaded dataset from {self.root}: {dataset.counts()}")
        return dataset, errors

    def save_all(self, dataset: Dataset) -> None:
        """Writes the whole dataset into the directory (used to seed an empty folder)."""
        self.save_settings(dataset.settings)
        for kind in EntityKind:
            records = dataset.collection(kind)
            if kind in COLLECTION_FILES:
                self._write_collection(kind, records)
            else:
                for record in records:
                    self.save(kind, record)
        logger.info(f"Wrote dataset to {self.root}: {dataset.counts()}")

#
# End of Directory_Store.py
########################################################################################################################
