"""
Model record endpoints.

Writes go through the process model store, so a server relay observing
the model broadcasts them. The acting user is the one bound by the actor
middleware from the request.
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, status

from app.api.dependencies import get_model_store
from app.api.models import DeleteResponse, RecordListResponse
from infrastructure.repositories.model_store import (
    ModelCollection,
    ModelStore,
    RecordNotFoundError,
)

router = APIRouter(prefix="/v1/models", tags=["models"])


def _collection(store: ModelStore, model_name: str) -> ModelCollection:
    collection = store.models.get(model_name)
    if collection is None:
        raise RecordNotFoundError(f"Model {model_name} not found")
    return collection


@router.get("/{model_name}", response_model=RecordListResponse)
async def list_records(
    model_name: str,
    store: ModelStore = Depends(get_model_store),
) -> RecordListResponse:
    """List every record of a model."""
    records = await _collection(store, model_name).find()
    return RecordListResponse(model_name=model_name, records=records, total=len(records))


@router.post(
    "/{model_name}",
    response_model=Dict[str, Any],
    status_code=status.HTTP_201_CREATED,
)
async def create_record(
    model_name: str,
    data: Dict[str, Any] = Body(...),
    store: ModelStore = Depends(get_model_store),
) -> Dict[str, Any]:
    """
    Create a record.

    Raises:
        RecordNotFoundError: Unknown model; mapped to 404 by the application.
    """
    return await _collection(store, model_name).create(data)


@router.patch("/{model_name}/{record_id}", response_model=Dict[str, Any])
async def update_record(
    model_name: str,
    record_id: str,
    patch: Dict[str, Any] = Body(...),
    store: ModelStore = Depends(get_model_store),
) -> Dict[str, Any]:
    """Apply a partial update to one record."""
    return await _collection(store, model_name).update(record_id, patch)


@router.delete("/{model_name}/{record_id}", response_model=DeleteResponse)
async def delete_record(
    model_name: str,
    record_id: str,
    store: ModelStore = Depends(get_model_store),
) -> DeleteResponse:
    """Delete one record; 404 when it does not exist."""
    deleted = await _collection(store, model_name).delete(record_id)
    if not deleted:
        raise RecordNotFoundError(f"{model_name} {record_id} not found")
    return DeleteResponse(model_name=model_name, id=record_id, deleted=True)
