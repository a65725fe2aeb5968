# storage_schemas.py
# Description: Wire models for the remote storage API (/api/health, /api/data). Field names are camelCase so
#              payloads interoperate with existing clients; unknown fields are carried through untouched.
#
# Imports
from typing import Any, Dict, List, Optional
#
# 3rd-party Libraries
from pydantic import BaseModel, ConfigDict, Field
#
# Local Imports
#
########################################################################################################################
#
# Functions:

class HealthResponse(BaseModel):
    status: str = Field("ok", description="Always 'ok' when the server is able to serve data.")
    version: Optional[str] = Field(None, description="Server version string.")


class WireRecord(BaseModel):
    """A record as JSON metadata. Every entity kind carries at least an id."""
    id: str = Field(..., min_length=1)

    model_config = ConfigDict(extra='allow')


class WireNote(BaseModel):
    """Notes from older clients may lack an id; one is assigned when the note is upgraded."""
    id: Optional[str] = None

    model_config = ConfigDict(extra='allow')


class WireAudioRecord(WireRecord):
    audioBase64: str = Field(..., description="Audio payload, base64 encoded.")
    audioMimeType: Optional[str] = Field(None, description="Mime type of the decoded audio.")


class WirePhoto(WireRecord):
    imageBase64: str = Field(..., description="Image payload, base64 encoded.")
    imageMimeType: Optional[str] = Field(None, description="Mime type of the decoded image.")


class RemoteDataset(BaseModel):
    """
    The whole dataset in one document. Returned by GET /api/data and accepted by POST /api/data.
    """
    siteSettings: Optional[Dict[str, Any]] = None
    templates: List[WireRecord] = Field(default_factory=list)
    recordings: List[WireAudioRecord] = Field(default_factory=list)
    photos: List[WirePhoto] = Field(default_factory=list)
    notes: List[WireNote] = Field(default_factory=list)
    noteRecordings: List[WireAudioRecord] = Field(default_factory=list)
    logEntries: List[WireRecord] = Field(default_factory=list)
    calendarEvents: List[WireRecord] = Field(default_factory=list)

    model_config = ConfigDict(
        extra='ignore',
        json_schema_extra={
            "example": {
                "siteSettings": {"companyName": "Acme", "syncMode": "api"},
                "templates": [{"id": "t1", "name": "Summary", "prompt": "Summarize:", "category": "General"}],
                "recordings": [{"id": "r1", "name": "Standup", "audioBase64": "AAEC", "audioMimeType": "audio/webm"}],
                "photos": [{"id": "p1", "folder": "General", "imageBase64": "iVBORw0K", "imageMimeType": "image/png"}],
                "notes": [{"id": "n1", "title": "Todo", "content": "<p>Buy milk</p>"}],
                "noteRecordings": [],
                "logEntries": [{"id": "l1", "type": "Clock In", "timestamp": "2024-01-01T08:00:00.000Z"}],
                "calendarEvents": [],
            }
        }
    )


class SaveResponse(BaseModel):
    status: str = "success"
    counts: Dict[str, int] = Field(default_factory=dict)

#
# End of storage_schemas.py
########################################################################################################################
