# Remote_Store.py
# Description: HTTP client for a remote storage API. Fetches the whole dataset in one call and writes individual
#              records through as they change. Binary fields travel as base64 inside JSON.
#
# Imports
import base64
import binascii
from typing import Any, Dict, Optional
from urllib.parse import quote
#
# 3rd-party Libraries
import httpx
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from aitools_Storage_API.app.api.v1.schemas.storage_schemas import RemoteDataset
from aitools_Storage_API.app.core.Storage.exceptions import (
    InputError,
    RemoteResponseError,
    RemoteUnauthorizedError,
    RemoteUnreachableError,
)
from aitools_Storage_API.app.core.Storage.migrations import upgrade_record, upgrade_settings
from aitools_Storage_API.app.core.Storage.models import (
    DEFAULT_AUDIO_MIME_TYPE,
    Dataset,
    EntityKind,
    SiteSettings,
    check_record_id,
)
#
########################################################################################################################
#
# Functions:

DEFAULT_TIMEOUT_SECONDS = 30.0


# --- Wire encoding ---

def _blob_keys(kind: EntityKind):
    if kind is EntityKind.PHOTOS:
        return "imageBase64", "imageMimeType"
    return "audioBase64", "audioMimeType"


def decode_base64(value: str) -> bytes:
    if not isinstance(value, str):
        raise InputError("base64 payload must be a string")
    # Accept data URIs as produced by FileReader.readAsDataURL
    if value.startswith("data:") and "," in value:
        value = value.split(",", 1)[1]
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InputError(f"Invalid base64 payload: {e}") from e


def encode_record(kind: EntityKind, record) -> Dict[str, Any]:
    data = record.to_dict()
    if kind.has_blob:
        data_key, mime_key = _blob_keys(kind)
        data[data_key] = base64.b64encode(record.get_blob() or b"").decode("ascii")
        if kind is not EntityKind.PHOTOS:
            data[mime_key] = getattr(record, "audio_mime_type", DEFAULT_AUDIO_MIME_TYPE)
    return data


def decode_record(kind: EntityKind, data: Dict[str, Any]):
    data = dict(data)
    blob = None
    if kind.has_blob:
        data_key, _ = _blob_keys(kind)
        if data.get(data_key) is None:
            raise InputError(f"{kind.value} record '{data.get('id')}' has no {data_key}")
        blob = decode_base64(data.pop(data_key))
    return upgrade_record(kind, data, blob=blob)


def dataset_to_wire(dataset: Dataset) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"siteSettings": dataset.settings.to_dict()}
    for kind in EntityKind:
        payload[kind.wire_name] = [encode_record(kind, r) for r in dataset.collection(kind)]
    return payload


def dataset_from_wire(payload: RemoteDataset) -> Dataset:
    """Decodes a validated payload. Raises InputError on the first record that cannot be decoded."""
    dataset = Dataset(settings=upgrade_settings(payload.siteSettings))
    for kind in EntityKind:
        items = getattr(payload, kind.wire_name)
        setattr(dataset, kind.value, [decode_record(kind, item.model_dump()) for item in items])
    return dataset


class RemoteStore:
    """
    Client for the remote storage API.

    Endpoints used:
        GET    {endpoint}/api/health
        GET    {endpoint}/api/data
        POST   {endpoint}/api/data
        PUT    {endpoint}/api/data/siteSettings
        PUT    {endpoint}/api/data/{collection}/{id}
        DELETE {endpoint}/api/data/{collection}/{id}

    An ``httpx.Client`` may be injected (tests pass a FastAPI TestClient or a client with a
    MockTransport); otherwise one is created and owned by this instance.
    """

    def __init__(self, endpoint: str, api_key: str, client: Optional[httpx.Client] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        if not endpoint:
            raise InputError("Remote endpoint cannot be empty.")
        if not api_key:
            raise InputError("Remote API key cannot be empty.")
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self._owns_client = client is None
        self.client = client if client is not None else httpx.Client(timeout=timeout)
        logger.info(f"Remote store initialized for URL: {self.endpoint}")

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("error") or body.get("detail")
            if isinstance(message, str) and message:
                return message
        return f"HTTP error! status: {response.status_code}"

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> httpx.Response:
        url = f"{self.endpoint}{path}"
        logger.debug(f"{method} {url}")
        try:
            response = self.client.request(method, url, headers=self._get_headers(), json=payload)
        except httpx.RequestError as e:
            logger.error(f"Network error during {method} {url}: {e}")
            raise RemoteUnreachableError(f"Could not reach {self.endpoint}: {e}") from e

        status_code = response.status_code
        if status_code in (401, 403):
            logger.warning(f"{method} {url} rejected the API key (HTTP {status_code})")
            raise RemoteUnauthorizedError(self._error_message(response), status_code=status_code)
        if status_code >= 500:
            logger.error(f"{method} {url} failed with server error (HTTP {status_code})")
            raise RemoteUnreachableError(self._error_message(response), status_code=status_code)
        return response

    def _json_body(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RemoteResponseError(f"Response is not valid JSON: {e}", status_code=response.status_code) from e

    def _ensure_success(self, response: httpx.Response) -> None:
        if not response.is_success:
            raise RemoteResponseError(self._error_message(response), status_code=response.status_code)

    # --- Connection ---
    def connect(self) -> bool:
        """Health check. Returns True or raises a typed RemoteStoreError."""
        response = self._request("GET", "/api/health")
        self._ensure_success(response)
        logger.info(f"Connected to remote store at {self.endpoint}")
        return True

    def fetch_all_data(self) -> Dataset:
        """
        Downloads and decodes the whole dataset.

        Blobs are decoded immediately; a single undecodable record fails the whole fetch with
        RemoteResponseError so callers never see a partial dataset.
        """
        response = self._request("GET", "/api/data")
        self._ensure_success(response)
        body = self._json_body(response)
        try:
            payload = RemoteDataset.model_validate(body)
        except ValidationError as e:
            logger.error(f"Remote dataset failed validation: {e}")
            raise RemoteResponseError(f"Malformed dataset from server: {e}") from e
        try:
            dataset = dataset_from_wire(payload)
        except InputError as e:
            logger.error(f"Remote dataset could not be decoded: {e}")
            raise RemoteResponseError(f"Malformed dataset from server: {e}") from e
        logger.info(f"Fetched remote dataset: {dataset.counts()}")
        return dataset

    # --- Writes ---
    def push_all(self, dataset: Dataset) -> None:
        response = self._request("POST", "/api/data", dataset_to_wire(dataset))
        self._ensure_success(response)
        logger.info(f"Pushed full dataset to {self.endpoint}")

    def save_settings(self, settings: SiteSettings) -> None:
        response = self._request("PUT", "/api/data/siteSettings", settings.to_dict())
        self._ensure_success(response)

    def save(self, kind: EntityKind, record) -> None:
        check_record_id(record.id)
        path = f"/api/data/{kind.wire_name}/{quote(record.id, safe='')}"
        response = self._request("PUT", path, encode_record(kind, record))
        self._ensure_success(response)

    def delete(self, kind: EntityKind, record_id: str) -> bool:
        """Deletes a record remotely. A 404 means it was already gone and is not an error."""
        check_record_id(record_id)
        path = f"/api/data/{kind.wire_name}/{quote(record_id, safe='')}"
        response = self._request("DELETE", path)
        if response.status_code == 404:
            return False
        self._ensure_success(response)
        try:
            body = response.json()
        except ValueError:
            return True
        if isinstance(body, dict) and "deleted" in body:
            return bool(body["deleted"])
        return True

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

#
# End of Remote_Store.py
########################################################################################################################
