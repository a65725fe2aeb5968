# storage_sync.py
# Description: Reference implementation of the remote storage API that RemoteStore talks to. Mounted under /api.
#
# Imports
import asyncio
from typing import Any, Dict
#
# 3rd-party imports
from fastapi import APIRouter, Body, Depends, HTTPException, status
from loguru import logger
#
# Local Imports
from aitools_Storage_API.app.api.v1.API_Deps.Storage_Deps import get_sync_db, verify_sync_api_key
from aitools_Storage_API.app.api.v1.schemas.storage_schemas import HealthResponse, RemoteDataset, SaveResponse
from aitools_Storage_API.app.core.DB_Management.Local_Store_DB import LocalStoreDB
from aitools_Storage_API.app.core.Storage.Remote_Store import dataset_from_wire, dataset_to_wire, decode_record
from aitools_Storage_API.app.core.Storage.exceptions import InputError, LocalStoreError, StorageCapacityError
from aitools_Storage_API.app.core.Storage.migrations import upgrade_settings
from aitools_Storage_API.app.core.Storage.models import EntityKind
#
#
#######################################################################################################################
#
# Functions:

router = APIRouter()

SERVER_VERSION = "1.0.0"


def _raise_for_store_error(e: LocalStoreError, action: str):
    if isinstance(e, StorageCapacityError):
        logger.error(f"Sync server out of space while trying to {action}: {e}")
        raise HTTPException(status_code=status.HTTP_507_INSUFFICIENT_STORAGE, detail="Server storage is full") from e
    logger.error(f"Sync server failed to {action}: {e}")
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to {action}") from e


def _kind_for(collection: str) -> EntityKind:
    try:
        return EntityKind.from_wire_name(collection)
    except InputError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown collection '{collection}'") from e


@router.get("/health", response_model=HealthResponse, summary="Authenticated health check")
async def health(_: bool = Depends(verify_sync_api_key)):
    return HealthResponse(status="ok", version=SERVER_VERSION)


@router.get("/data", summary="Download the whole dataset")
async def get_all_data(
    _: bool = Depends(verify_sync_api_key),
    db: LocalStoreDB = Depends(get_sync_db),
) -> Dict[str, Any]:
    try:
        dataset = await asyncio.to_thread(db.load_dataset)
    except LocalStoreError as e:
        _raise_for_store_error(e, "load data")
    logger.info(f"Serving dataset: {dataset.counts()}")
    return dataset_to_wire(dataset)


@router.post("/data", response_model=SaveResponse, summary="Replace the whole dataset")
async def replace_all_data(
    payload: RemoteDataset,
    _: bool = Depends(verify_sync_api_key),
    db: LocalStoreDB = Depends(get_sync_db),
):
    try:
        dataset = dataset_from_wire(payload)
    except InputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    try:
        await asyncio.to_thread(db.replace_dataset, dataset)
    except LocalStoreError as e:
        _raise_for_store_error(e, "replace data")
    logger.info(f"Replaced dataset: {dataset.counts()}")
    return SaveResponse(status="success", counts=dataset.counts())


@router.put("/data/siteSettings", summary="Replace the site settings")
async def put_site_settings(
    payload: Dict[str, Any] = Body(...),
    _: bool = Depends(verify_sync_api_key),
    db: LocalStoreDB = Depends(get_sync_db),
):
    try:
        site_settings = upgrade_settings(payload)
    except InputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    try:
        await asyncio.to_thread(db.save_settings, site_settings)
    except LocalStoreError as e:
        _raise_for_store_error(e, "save settings")
    return {"status": "success"}


@router.put("/data/{collection}/{entity_id}", summary="Create or replace one record")
async def put_record(
    collection: str,
    entity_id: str,
    payload: Dict[str, Any] = Body(...),
    _: bool = Depends(verify_sync_api_key),
    db: LocalStoreDB = Depends(get_sync_db),
):
    kind = _kind_for(collection)
    body_id = payload.get("id")
    if body_id is not None and body_id != entity_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Record id '{body_id}' does not match path id '{entity_id}'")
    try:
        record = decode_record(kind, {**payload, "id": entity_id})
    except InputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    try:
        await asyncio.to_thread(db.save, kind, record)
    except LocalStoreError as e:
        _raise_for_store_error(e, f"save {kind.value} record")
    logger.debug(f"Stored {kind.value} {entity_id}")
    return {"status": "success", "id": entity_id}


@router.delete("/data/{collection}/{entity_id}", summary="Delete one record")
async def delete_record(
    collection: str,
    entity_id: str,
    _: bool = Depends(verify_sync_api_key),
    db: LocalStoreDB = Depends(get_sync_db),
):
    kind = _kind_for(collection)
    try:
        deleted = await asyncio.to_thread(db.delete, kind, entity_id)
    except LocalStoreError as e:
        _raise_for_store_error(e, f"delete {kind.value} record")
    return {"status": "success", "deleted": deleted}

#
# End of storage_sync.py
#######################################################################################################################
