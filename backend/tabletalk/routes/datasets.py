"""Dataset metadata lookup."""

from fastapi import APIRouter, Depends, HTTPException

from tabletalk.services.datasets.models import DatasetMetadata
from tabletalk.services.datasets.registry import DatasetRegistry

from .deps import get_registry

router = APIRouter()


@router.get("/datasets/{dataset_id}", response_model=DatasetMetadata)
async def get_dataset(dataset_id: str, registry: DatasetRegistry = Depends(get_registry)):
    metadata = await registry.get_metadata(dataset_id)
    if metadata is None:
        raise HTTPException(status_code=404, detail="Dataset not found or expired")
    return metadata
