# models.py
# Description: Entity model for the storage layer: dataclasses for every persisted kind, the kind registry,
#              the backend mode enum and the mime -> file extension mapping.
#
# Imports
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type
#
# 3rd-party Libraries
#
# Local Imports
from aitools_Storage_API.app.core.Storage.exceptions import InputError
#
########################################################################################################################
#
# Functions:

DEFAULT_AUDIO_MIME_TYPE = "audio/webm"
DEFAULT_IMAGE_EXTENSION = "png"
DEFAULT_PHOTO_FOLDER = "General"


def generate_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def extension_for_mime(mime_type: Optional[str]) -> str:
    """
    Maps a mime type to the file extension used for its binary on disk and in archives.

    Audio is always stored as ``webm``. Anything else uses the mime subtype, and a missing or
    malformed mime type falls back to ``png``. ``json`` also falls back, since it would collide
    with the metadata file.
    """
    if not mime_type:
        return DEFAULT_IMAGE_EXTENSION
    base = mime_type.split(';', 1)[0].strip().lower()
    major, _, subtype = base.partition('/')
    if major == 'audio':
        return 'webm'
    subtype = subtype.strip()
    if not subtype or '/' in subtype or '\\' in subtype or subtype in ('.', '..', 'json'):
        return DEFAULT_IMAGE_EXTENSION
    return subtype


def check_record_id(record_id: Any) -> str:
    """
    Returns the id if it can name a file inside a record directory.

    Raises InputError for an empty id, a path separator, a NUL byte, or '.'/'..'.
    """
    if not isinstance(record_id, str) or not record_id:
        raise InputError("record has no id")
    if '/' in record_id or '\\' in record_id or '\x00' in record_id or record_id in ('.', '..'):
        raise InputError(f"Invalid record id: {record_id!r}")
    return record_id


def photo_folder_parts(folder: Optional[str]) -> List[str]:
    """Splits a photo folder into safe path segments. Empty, '.' and '..' segments are dropped."""
    parts = [p.strip() for p in (folder or "").replace("\\", "/").split("/")]
    parts = [p for p in parts if p and p not in (".", "..") and "\x00" not in p]
    return parts or [DEFAULT_PHOTO_FOLDER]


def normalize_photo_folder(folder: Optional[str]) -> str:
    return "/".join(photo_folder_parts(folder))


def _to_camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part[:1].upper() + part[1:] for part in rest)


class BackendMode(str, Enum):
    LOCAL = "local"
    DIRECTORY = "directory"
    API = "api"


class LogEntryType(str, Enum):
    CLOCK_IN = "Clock In"
    CLOCK_OUT = "Clock Out"
    NOTE_CREATED = "Note Created"
    PHOTO_ADDED = "Photo Added"
    RECORDING_ADDED = "Recording Added"
    MANUAL_TASK = "Manual Task"


class _JsonRecord:
    """
    Mixin giving the entity dataclasses a camelCase JSON representation.

    The blob field (if the kind has one) never appears in the JSON form; it travels next to the
    metadata as a separate file, zip member or base64 field.
    """
    _BLOB_FIELD: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for f in fields(self):
            if f.name == self._BLOB_FIELD:
                continue
            value = getattr(self, f.name)
            if isinstance(value, _JsonRecord):
                value = value.to_dict()
            elif isinstance(value, Enum):
                value = value.value
            elif isinstance(value, list):
                value = list(value)
            data[_to_camel(f.name)] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], blob: Optional[bytes] = None):
        if not isinstance(data, dict):
            raise InputError(f"{cls.__name__} data must be an object, got {type(data).__name__}")
        known = {_to_camel(f.name): f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = known.get(key)
            if name is None or name == cls._BLOB_FIELD:
                continue
            kwargs[name] = value
        if cls._BLOB_FIELD is not None and blob is not None:
            kwargs[cls._BLOB_FIELD] = blob
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise InputError(f"Invalid {cls.__name__} record: {e}") from e

    def get_blob(self) -> Optional[bytes]:
        return getattr(self, self._BLOB_FIELD) if self._BLOB_FIELD else None


# --- Settings ---

@dataclass
class CreatorDetails(_JsonRecord):
    name: str = ""
    slogan: str = ""
    logo_src: str = ""
    tel: str = ""
    email: str = ""
    whatsapp: str = ""
    whatsapp2: str = ""


@dataclass
class SiteSettings(_JsonRecord):
    company_name: str = "JSTYP.me Ai tools"
    slogan: str = ""
    logo_src: str = "/logo.png"
    hero_image_src: str = ""
    background_image_src: str = "/background.jpg"
    tel: str = ""
    email: str = ""
    website: str = ""
    creator: CreatorDetails = field(default_factory=CreatorDetails)
    custom_api_endpoint: Optional[str] = None
    custom_api_auth_key: Optional[str] = None
    sync_mode: str = BackendMode.LOCAL.value
    user_pin: str = ""
    pin_is_set: bool = False
    onboarding_completed: bool = False
    user_name: str = "User"

    def __post_init__(self):
        if isinstance(self.creator, dict):
            self.creator = CreatorDetails.from_dict(self.creator)
        if isinstance(self.sync_mode, BackendMode):
            self.sync_mode = self.sync_mode.value

    @property
    def has_api_credentials(self) -> bool:
        return bool(self.custom_api_endpoint and self.custom_api_auth_key)


# --- Entities ---

@dataclass
class Template(_JsonRecord):
    id: str
    name: str = ""
    prompt: str = ""
    category: str = "General"


@dataclass
class Recording(_JsonRecord):
    _BLOB_FIELD = "audio_blob"

    id: str
    name: str = ""
    date: str = ""
    transcript: str = ""
    notes: str = ""
    audio_blob: bytes = field(default=b"", repr=False)
    audio_mime_type: str = DEFAULT_AUDIO_MIME_TYPE
    tags: List[str] = field(default_factory=list)
    photo_ids: List[str] = field(default_factory=list)


@dataclass
class Photo(_JsonRecord):
    _BLOB_FIELD = "image_blob"

    id: str
    name: str = ""
    notes: str = ""
    date: str = ""
    folder: str = DEFAULT_PHOTO_FOLDER
    image_blob: bytes = field(default=b"", repr=False)
    image_mime_type: str = "image/png"
    tags: List[str] = field(default_factory=list)
    width: Optional[int] = None
    height: Optional[int] = None

    def __post_init__(self):
        # Stored folder always matches the on-disk path segments
        self.folder = normalize_photo_folder(self.folder)


@dataclass
class NoteRecording(_JsonRecord):
    _BLOB_FIELD = "audio_blob"

    id: str
    note_id: str = ""
    name: str = ""
    date: str = ""
    audio_blob: bytes = field(default=b"", repr=False)


@dataclass
class Note(_JsonRecord):
    id: str
    title: str = "Untitled"
    content: str = ""
    category: str = "General"
    tags: List[str] = field(default_factory=list)
    date: str = ""
    color: str = "sky"
    is_locked: bool = False
    hero_image: Optional[str] = None
    paper_style: str = "paper-dark"
    font_style: str = "font-sans"
    due_date: Optional[str] = None
    reminder_date: Optional[str] = None
    reminder_fired: bool = False
    recording_ids: List[str] = field(default_factory=list)
    photo_ids: List[str] = field(default_factory=list)


@dataclass
class LogEntry(_JsonRecord):
    id: str
    type: str = LogEntryType.MANUAL_TASK.value
    timestamp: str = ""
    task: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.type, LogEntryType):
            self.type = self.type.value


@dataclass
class CalendarEvent(_JsonRecord):
    id: str
    start_date_time: str = ""
    end_date_time: str = ""
    title: str = ""
    notes: str = ""
    photo_id: Optional[str] = None
    recording_ids: List[str] = field(default_factory=list)
    color: str = "sky"
    reminder_offset: int = -1
    reminder_fired: bool = False
    created_at: str = ""


# --- Kind registry ---

class EntityKind(str, Enum):
    TEMPLATES = "templates"
    RECORDINGS = "recordings"
    PHOTOS = "photos"
    NOTES = "notes"
    NOTE_RECORDINGS = "note_recordings"
    LOG_ENTRIES = "log_entries"
    CALENDAR_EVENTS = "calendar_events"

    @property
    def model(self) -> Type[_JsonRecord]:
        return _KIND_MODELS[self]

    @property
    def blob_field(self) -> Optional[str]:
        return self.model._BLOB_FIELD

    @property
    def has_blob(self) -> bool:
        return self.blob_field is not None

    @property
    def wire_name(self) -> str:
        """Collection key used by the remote API and the archive manifest."""
        return _to_camel(self.value)

    @classmethod
    def from_wire_name(cls, name: str) -> "EntityKind":
        for kind in cls:
            if kind.wire_name == name or kind.value == name:
                return kind
        raise InputError(f"Unknown collection: {name}")


_KIND_MODELS: Dict[EntityKind, Type[_JsonRecord]] = {
    EntityKind.TEMPLATES: Template,
    EntityKind.RECORDINGS: Recording,
    EntityKind.PHOTOS: Photo,
    EntityKind.NOTES: Note,
    EntityKind.NOTE_RECORDINGS: NoteRecording,
    EntityKind.LOG_ENTRIES: LogEntry,
    EntityKind.CALENDAR_EVENTS: CalendarEvent,
}


def kind_of(record: _JsonRecord) -> EntityKind:
    for kind, model in _KIND_MODELS.items():
        if type(record) is model:
            return kind
    raise InputError(f"Not a storable entity: {type(record).__name__}")


@dataclass
class Dataset:
    """The complete application state held by whichever backend is active."""
    settings: SiteSettings = field(default_factory=SiteSettings)
    templates: List[Template] = field(default_factory=list)
    recordings: List[Recording] = field(default_factory=list)
    photos: List[Photo] = field(default_factory=list)
    notes: List[Note] = field(default_factory=list)
    note_recordings: List[NoteRecording] = field(default_factory=list)
    log_entries: List[LogEntry] = field(default_factory=list)
    calendar_events: List[CalendarEvent] = field(default_factory=list)

    def collection(self, kind: EntityKind) -> list:
        return getattr(self, kind.value)

    def get(self, kind: EntityKind, record_id: str):
        for record in self.collection(kind):
            if record.id == record_id:
                return record
        return None

    def upsert(self, kind: EntityKind, record) -> None:
        items = self.collection(kind)
        for index, existing in enumerate(items):
            if existing.id == record.id:
                items[index] = record
                return
        items.append(record)

    def remove(self, kind: EntityKind, record_id: str) -> None:
        setattr(self, kind.value, [r for r in self.collection(kind) if r.id != record_id])

    def is_empty(self) -> bool:
        return not any(self.collection(kind) for kind in EntityKind)

    def counts(self) -> Dict[str, int]:
        return {kind.value: len(self.collection(kind)) for kind in EntityKind}

#
# End of models.py
########################################################################################################################
