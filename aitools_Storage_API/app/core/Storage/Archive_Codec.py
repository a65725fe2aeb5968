# Archive_Codec.py
# Description: Zip backup format. One metadata.json manifest for the small collections, plus the directory store's
#              file layout for everything else, so an unpacked archive can be opened as a directory store.
#
# Imports
import io
import json
import zipfile
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Dict, List, Optional, Set, Union
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from aitools_Storage_API.app.core.Storage.Directory_Store import (
    COLLECTION_FILES,
    RECORD_DIRS,
    SETTINGS_FILE,
    blob_extension,
    record_paths,
)
from aitools_Storage_API.app.core.Storage.exceptions import ArchiveFormatError, InputError
from aitools_Storage_API.app.core.Storage.migrations import upgrade_record, upgrade_settings
from aitools_Storage_API.app.core.Storage.models import (
    DEFAULT_PHOTO_FOLDER,
    Dataset,
    EntityKind,
    check_record_id,
    utc_now_iso,
)
#
########################################################################################################################
#
# Functions:

MANIFEST_NAME = "metadata.json"
ARCHIVE_FORMAT_VERSION = 1

# Archives written by older clients keep the blob trees under this prefix
LEGACY_ASSET_PREFIX = "assets/"

# Kinds carried inside the manifest document
MANIFEST_KINDS = (
    EntityKind.TEMPLATES,
    EntityKind.NOTES,
    EntityKind.LOG_ENTRIES,
    EntityKind.CALENDAR_EVENTS,
)

ArchiveSource = Union[bytes, str, Path, BinaryIO]


def _json_bytes(payload) -> bytes:
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


class ArchiveCodec:
    """Encodes a Dataset to a zip archive and decodes one back. Decoding never touches any store."""

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED):
        self.compression = compression

    # --- Encoding ---
    def build_manifest(self, dataset: Dataset) -> Dict:
        manifest = {
            "formatVersion": ARCHIVE_FORMAT_VERSION,
            "exportedAt": utc_now_iso(),
            "siteSettings": dataset.settings.to_dict(),
        }
        for kind in MANIFEST_KINDS:
            manifest[kind.wire_name] = [r.to_dict() for r in dataset.collection(kind)]
        return manifest

    def write(self, dataset: Dataset, destination: Union[str, Path, BinaryIO]) -> None:
        with zipfile.ZipFile(destination, "w", compression=self.compression) as zf:
            zf.writestr(MANIFEST_NAME, _json_bytes(self.build_manifest(dataset)))
            zf.writestr(SETTINGS_FILE, _json_bytes(dataset.settings.to_dict()))
            for kind, name in COLLECTION_FILES.items():
                zf.writestr(name, _json_bytes([r.to_dict() for r in dataset.collection(kind)]))
            for kind in RECORD_DIRS:
                for record in dataset.collection(kind):
                    metadata_path, blob_path = record_paths(kind, record)
                    if blob_path is not None:
                        zf.writestr(blob_path, record.get_blob() or b"")
                    zf.writestr(metadata_path, _json_bytes(record.to_dict()))
        logger.info(f"Archive written: {dataset.counts()}")

    def encode(self, dataset: Dataset) -> bytes:
        buffer = io.BytesIO()
        self.write(dataset, buffer)
        return buffer.getvalue()

    # --- Decoding ---
    @staticmethod
    def _open(source: ArchiveSource) -> zipfile.ZipFile:
        if isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(source)
        try:
            return zipfile.ZipFile(source, "r")
        except zipfile.BadZipFile as e:
            raise ArchiveFormatError(f"Invalid backup: not a zip archive ({e})") from e
        except OSError as e:
            raise ArchiveFormatError(f"Invalid backup: could not open archive ({e})") from e

    @staticmethod
    def _read_manifest(zf: zipfile.ZipFile) -> Dict:
        try:
            raw = zf.read(MANIFEST_NAME)
        except KeyError as e:
            raise ArchiveFormatError(f"Invalid backup: {MANIFEST_NAME} not found.") from e
        try:
            manifest = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ArchiveFormatError(f"Invalid backup: {MANIFEST_NAME} is not valid JSON ({e})") from e
        if not isinstance(manifest, dict):
            raise ArchiveFormatError(f"Invalid backup: {MANIFEST_NAME} must contain an object")
        version = manifest.get("formatVersion", ARCHIVE_FORMAT_VERSION)
        if isinstance(version, int) and version > ARCHIVE_FORMAT_VERSION:
            raise ArchiveFormatError(f"Backup format version {version} is newer than supported "
                                     f"({ARCHIVE_FORMAT_VERSION})")
        return manifest

    @staticmethod
    def _manifest_records(manifest: Dict, kind: EntityKind) -> List:
        items = manifest.get(kind.wire_name) or []
        if not isinstance(items, list):
            logger.warning(f"Archive manifest field '{kind.wire_name}' is not a list, ignoring it")
            return []
        records, seen = [], set()
        for index, item in enumerate(items):
            try:
                record = upgrade_record(kind, item)
            except InputError as e:
                logger.warning(f"Skipping {kind.value} entry {index} in archive manifest: {e}")
                continue
            if record.id not in seen:
                seen.add(record.id)
                records.append(record)
        return records

    def _blob_records(self, zf: zipfile.ZipFile, names: Set[str], kind: EntityKind) -> List:
        """Pairs each metadata file with its binary sibling. Unpaired or unreadable entries are dropped."""
        records, seen = [], set()
        for prefix in ("", LEGACY_ASSET_PREFIX):
            root = f"{prefix}{RECORD_DIRS[kind]}/"
            for name in sorted(n for n in names if n.startswith(root) and n.endswith(".json")):
                path = PurePosixPath(name)
                try:
                    raw = json.loads(zf.read(name).decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError) as e:
                    logger.warning(f"Skipping unreadable archive entry {name}: {e}")
                    continue
                if not isinstance(raw, dict):
                    continue
                raw.setdefault("id", path.stem)
                try:
                    check_record_id(raw["id"])
                except InputError as e:
                    logger.warning(f"Skipping archive entry {name}: {e}")
                    continue
                if kind is EntityKind.PHOTOS:
                    folder = str(path.parent)[len(root):]
                    raw["folder"] = folder or DEFAULT_PHOTO_FOLDER
                blob_name = str(path.with_name(f"{raw['id']}.{blob_extension(kind, raw)}"))
                if blob_name not in names:
                    logger.debug(f"Dropping {name}: no binary {blob_name} in archive")
                    continue
                try:
                    record = upgrade_record(kind, raw, blob=zf.read(blob_name))
                except InputError as e:
                    logger.warning(f"Skipping archive entry {name}: {e}")
                    continue
                if record.id not in seen:
                    seen.add(record.id)
                    records.append(record)
        return records

    def decode(self, source: ArchiveSource) -> Dataset:
        """
        Parses an archive into a Dataset.

        Raises ArchiveFormatError for a non-zip file or a missing/garbled manifest. Individual records
        that cannot be paired or parsed are dropped.
        """
        with self._open(source) as zf:
            manifest = self._read_manifest(zf)
            names = {n for n in zf.namelist() if not n.endswith("/")}
            settings_raw = manifest.get("siteSettings")
            try:
                settings = upgrade_settings(settings_raw if isinstance(settings_raw, dict) else None)
            except InputError as e:
                raise ArchiveFormatError(f"Invalid backup: bad siteSettings ({e})") from e
            dataset = Dataset(settings=settings)
            for kind in MANIFEST_KINDS:
                setattr(dataset, kind.value, self._manifest_records(manifest, kind))
            for kind in (EntityKind.RECORDINGS, EntityKind.NOTE_RECORDINGS, EntityKind.PHOTOS):
                setattr(dataset, kind.value, self._blob_records(zf, names, kind))
        logger.info(f"Archive decoded: {dataset.counts()}")
        return dataset


def export_archive(dataset: Dataset, destination: Optional[Union[str, Path, BinaryIO]] = None) -> Optional[bytes]:
    codec = ArchiveCodec()
    if destination is None:
        return codec.encode(dataset)
    codec.write(dataset, destination)
    return None


def import_archive(source: ArchiveSource) -> Dataset:
    return ArchiveCodec().decode(source)

#
# End of Archive_Codec.py
########################################################################################################################
