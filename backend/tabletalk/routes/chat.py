"""Chat route — answers a question about an uploaded dataset.

Runs the full analysis pipeline once per message. Pipeline failures are not
HTTP errors: they come back as a 200 envelope with ``success=false``, the
generated code and a categorized diagnostic.
"""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from tabletalk.services.analysis.orchestrator import AnalysisPipeline
from tabletalk.services.analysis.schemas import AnalysisResponse
from tabletalk.services.datasets.registry import DatasetNotFoundError, DatasetRegistry

from .deps import get_pipeline, get_registry

logger = logging.getLogger(__name__)
router = APIRouter()


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)
    dataset_id: str = Field(..., min_length=1)


@router.post("/chat", response_model=AnalysisResponse)
async def chat_endpoint(
    request: ChatRequest,
    registry: DatasetRegistry = Depends(get_registry),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    start_time = time.time()

    try:
        metadata = await registry.require_metadata(request.dataset_id)
    except DatasetNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    response = await pipeline.run(request.message, metadata)

    logger.info(
        f"Chat answered for dataset {request.dataset_id}: success={response.success} "
        f"({time.time() - start_time:.2f}s)"
    )
    return response
