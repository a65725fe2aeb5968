# migrations.py
# Description: Upgrades raw records read from any backend (local DB, directory, remote API, archive) to the current
#              record shape. Applied exactly once, at load time.
#
# Imports
import copy
from typing import Any, Dict, Optional
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
from aitools_Storage_API.app.core.Storage.exceptions import InputError
from aitools_Storage_API.app.core.Storage.models import (
    BackendMode,
    DEFAULT_AUDIO_MIME_TYPE,
    DEFAULT_PHOTO_FOLDER,
    EntityKind,
    SiteSettings,
    check_record_id,
    generate_id,
    utc_now_iso,
)
#
########################################################################################################################
#
# Functions:

NOTE_COLORS = ('sky', 'purple', 'emerald', 'amber', 'pink', 'cyan')

# Keys only ever held in memory by older clients
_TRANSIENT_KEYS = ('isTranscribing', 'audioBlob', 'imageBlob', 'audioBase64', 'imageBase64')

_LEGACY_SYNC_MODES = {
    'folder': BackendMode.DIRECTORY.value,
    'ftp': BackendMode.LOCAL.value,
}


def _note_color_for(note_id: str) -> str:
    return NOTE_COLORS[sum(ord(ch) for ch in note_id) % len(NOTE_COLORS)]


def _canvas_to_html(content: Dict[str, Any]) -> str:
    for element in content.get('elements') or []:
        if isinstance(element, dict) and element.get('type') == 'text':
            return element.get('html') or '<p></p>'
    return '<p></p>'


def _is_legacy_note(raw: Dict[str, Any]) -> bool:
    # Notes written before paperStyle existed stored canvas objects or bare text
    return 'paperStyle' not in raw or not isinstance(raw.get('content'), (str, type(None)))


def _note_content(raw: Dict[str, Any], legacy: bool) -> str:
    content = raw.get('content')
    if isinstance(content, dict):
        return _canvas_to_html(content) if isinstance(content.get('elements'), list) else '<p></p>'
    if content is None:
        return '<p></p>' if legacy else ''
    if not isinstance(content, str):
        return '<p></p>'
    if legacy and not content.strip().startswith('<'):
        return f"<p>{content}</p>"
    return content


def _default(raw: Dict[str, Any], key: str, fallback: Any) -> Any:
    value = raw.get(key)
    return fallback if value is None else value


def migrate_note(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Brings a note to the current shape. Only missing or null keys are filled; values that are
    already present are kept as they are, except legacy content (canvas objects, bare text).
    """
    note_id = raw.get('id') or generate_id()
    legacy = _is_legacy_note(raw)
    return {
        'id': note_id,
        'title': _default(raw, 'title', 'Untitled'),
        'content': _note_content(raw, legacy),
        'category': _default(raw, 'category', 'General'),
        'tags': _default(raw, 'tags', []),
        'date': _default(raw, 'date', utc_now_iso()),
        'color': _default(raw, 'color', _note_color_for(note_id)),
        'isLocked': bool(raw.get('isLocked', False)),
        'heroImage': raw.get('heroImage'),
        'paperStyle': _default(raw, 'paperStyle', 'paper-dark'),
        'fontStyle': _default(raw, 'fontStyle', 'font-sans'),
        'dueDate': raw.get('dueDate'),
        'reminderDate': raw.get('reminderDate'),
        'reminderFired': bool(raw.get('reminderFired', False)),
        'recordingIds': _default(raw, 'recordingIds', []),
        'photoIds': _default(raw, 'photoIds', []),
    }


def migrate_settings(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    defaults = SiteSettings().to_dict()
    if not raw:
        return defaults
    merged = dict(defaults)
    merged.update({k: v for k, v in raw.items() if k in defaults})

    creator = dict(defaults['creator'])
    if isinstance(raw.get('creator'), dict):
        creator.update({k: v for k, v in raw['creator'].items() if k in creator})
    merged['creator'] = creator

    mode = merged.get('syncMode')
    if mode in _LEGACY_SYNC_MODES:
        logger.info(f"Upgrading legacy syncMode '{mode}' to '{_LEGACY_SYNC_MODES[mode]}'")
        merged['syncMode'] = _LEGACY_SYNC_MODES[mode]
    elif mode not in {m.value for m in BackendMode}:
        logger.warning(f"Unknown syncMode '{mode}' in stored settings, using local")
        merged['syncMode'] = BackendMode.LOCAL.value
    return merged


def _fill_defaults(kind: EntityKind, raw: Dict[str, Any]) -> Dict[str, Any]:
    data = {k: v for k, v in raw.items() if k not in _TRANSIENT_KEYS}
    if kind is EntityKind.RECORDINGS:
        data['tags'] = _default(data, 'tags', [])
        data['photoIds'] = _default(data, 'photoIds', [])
        data['audioMimeType'] = _default(data, 'audioMimeType', DEFAULT_AUDIO_MIME_TYPE)
    elif kind is EntityKind.PHOTOS:
        data['tags'] = _default(data, 'tags', [])
        data['folder'] = _default(data, 'folder', DEFAULT_PHOTO_FOLDER)
        data['imageMimeType'] = _default(data, 'imageMimeType', 'image/png')
    elif kind is EntityKind.CALENDAR_EVENTS:
        data['recordingIds'] = _default(data, 'recordingIds', [])
        data['reminderOffset'] = _default(data, 'reminderOffset', -1)
    elif kind is EntityKind.TEMPLATES:
        data['category'] = _default(data, 'category', 'General')
    return data


def upgrade_record(kind: EntityKind, raw: Dict[str, Any], blob: Optional[bytes] = None):
    """
    Turns a raw JSON record of the given kind into its current dataclass.

    Raises InputError when the record cannot be salvaged (not an object, no id on a kind
    that cannot invent one, or an id that cannot name a file).
    """
    if not isinstance(raw, dict):
        raise InputError(f"{kind.value} record must be an object, got {type(raw).__name__}")
    raw = copy.deepcopy(raw)
    if kind is EntityKind.NOTES:
        data = migrate_note(raw)
    else:
        if not raw.get('id'):
            raise InputError(f"{kind.value} record has no id")
        data = _fill_defaults(kind, raw)
    check_record_id(data['id'])
    return kind.model.from_dict(data, blob=blob)


def upgrade_settings(raw: Optional[Dict[str, Any]]) -> SiteSettings:
    if raw is not None and not isinstance(raw, dict):
        raise InputError(f"Settings must be an object, got {type(raw).__name__}")
    return SiteSettings.from_dict(migrate_settings(raw))

#
# End of migrations.py
########################################################################################################################
