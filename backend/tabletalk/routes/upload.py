import asyncio
import logging
import os
import shutil
import tempfile
import time
from typing import Any, List, Optional

from fastapi import APIRouter, Depends, HTTPException, UploadFile
from fastapi.responses import JSONResponse

from tabletalk.core.config import Settings
from tabletalk.services.datasets.profiler import DatasetProfileError, make_dataset_id, profile_csv
from tabletalk.services.datasets.registry import DatasetRegistry
from tabletalk.services.llm_service.suggestions import suggest_questions

from .deps import get_config, get_registry, get_suggestion_llm

logger = logging.getLogger(__name__)
router = APIRouter()

ALLOWED_EXTENSIONS = {".csv"}
NO_LLM_MESSAGE = "No LLM found to analyse"


async def _stream_to_temp(file: UploadFile, max_bytes: int) -> str:
    """Write the upload to a temp file in 1 MiB chunks; 413 once it exceeds *max_bytes*."""
    written = 0
    loop = asyncio.get_running_loop()
    with tempfile.NamedTemporaryFile(delete=False, suffix=".csv") as tmp:
        temp_path = tmp.name
        while chunk := await file.read(1024 * 1024):
            written += len(chunk)
            if written > max_bytes:
                tmp.close()
                os.remove(temp_path)
                raise HTTPException(
                    status_code=413,
                    detail=f"File exceeds the {max_bytes // (1024 * 1024)} MB upload limit",
                )
            await loop.run_in_executor(None, tmp.write, chunk)
    return temp_path


async def _suggestions(llm: Any, metadata) -> tuple[List[str], Optional[str]]:
    """Best-effort suggested questions: (questions, processing_error)."""
    if llm is None:
        return [], NO_LLM_MESSAGE
    try:
        return await suggest_questions(llm, metadata), None
    except Exception as e:
        logger.warning("[UPLOAD] suggested questions failed: %s", e)
        return [], NO_LLM_MESSAGE


@router.post("/upload")
async def upload_dataset(
    file: UploadFile,
    config: Settings = Depends(get_config),
    registry: DatasetRegistry = Depends(get_registry),
    llm: Any = Depends(get_suggestion_llm),
):
    """Accept a CSV upload, profile it, register it and suggest questions."""
    filename = file.filename or "upload.csv"
    if os.path.splitext(filename)[1].lower() not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Only CSV files are supported")

    _t_total = time.perf_counter()
    logger.info("[UPLOAD] START  file=%s", filename)

    temp_path = await _stream_to_temp(file, config.MAX_UPLOAD_SIZE_MB * 1024 * 1024)
    dataset_id = make_dataset_id(filename)
    final_path = registry.dataset_file_path(dataset_id)
    try:
        os.makedirs(os.path.dirname(final_path), exist_ok=True)
        shutil.move(temp_path, final_path)
        metadata = await asyncio.to_thread(
            profile_csv,
            final_path,
            filename,
            dataset_id,
            config.DATASET_PREVIEW_ROWS,
        )
    except DatasetProfileError as e:
        logger.warning("[UPLOAD] rejected  file=%s  reason=%s", filename, e)
        for path in (temp_path, final_path):
            if os.path.exists(path):
                os.remove(path)
        raise HTTPException(status_code=400, detail=str(e))

    await registry.register(metadata)
    questions, processing_error = await _suggestions(llm, metadata)

    logger.info(
        "[UPLOAD] DONE  dataset=%s  rows=%d  cols=%d  total=%.1fms",
        dataset_id, metadata.row_count_estimate, metadata.column_count,
        (time.perf_counter() - _t_total) * 1000,
    )

    file_info = {
        "name": filename,
        "dataset_id": dataset_id,
        "metadata": metadata.model_dump(),
        "questions": questions,
    }
    if processing_error:
        file_info["processing_error"] = processing_error
    return JSONResponse(content={"success": True, "file_info": file_info})
