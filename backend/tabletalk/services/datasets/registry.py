"""Dataset registry — a JSON file mapping dataset ids to their metadata.

Written only by the upload route; the analysis pipeline only ever reads it.
Writes are serialized with an asyncio lock and land atomically (temp file +
rename) so a concurrent reader never sees a half-written registry.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
from typing import Dict, Optional

from pydantic import ValidationError

from tabletalk.services.datasets.models import DatasetMetadata

logger = logging.getLogger(__name__)

# 16 lowercase hex chars, as produced by make_dataset_id
_DATASET_ID_RE = re.compile(r"^[0-9a-f]{16}$")


class DatasetNotFoundError(LookupError):
    """No dataset is registered under the requested id."""

    def __init__(self, dataset_id: str):
        super().__init__(f"Dataset not found or expired: {dataset_id}")
        self.dataset_id = dataset_id


def is_valid_dataset_id(dataset_id: str) -> bool:
    return bool(dataset_id) and bool(_DATASET_ID_RE.match(dataset_id))


class DatasetRegistry:
    """JSON-file backed registry of uploaded datasets."""

    def __init__(self, registry_path: str, upload_dir: str):
        self.registry_path = registry_path
        self.upload_dir = upload_dir
        self._lock = asyncio.Lock()

    def dataset_file_path(self, dataset_id: str) -> str:
        """Where the CSV for *dataset_id* is stored."""
        if not is_valid_dataset_id(dataset_id):
            raise ValueError(f"Invalid dataset_id format: {dataset_id!r}")
        return os.path.join(self.upload_dir, f"{dataset_id}.csv")

    def _read_all(self) -> Dict[str, dict]:
        try:
            with open(self.registry_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as e:
            logger.error(f"Dataset registry {self.registry_path} is corrupt: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Dict[str, dict]) -> None:
        directory = os.path.dirname(self.registry_path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".registry-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.registry_path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def get_metadata(self, dataset_id: str) -> Optional[DatasetMetadata]:
        """Return the metadata for *dataset_id*, or None if it is unknown."""
        if not is_valid_dataset_id(dataset_id):
            return None
        data = await asyncio.to_thread(self._read_all)
        entry = data.get(dataset_id)
        if entry is None:
            return None
        try:
            return DatasetMetadata.model_validate(entry)
        except ValidationError as e:
            logger.error(f"Registry entry for {dataset_id} is invalid: {e}")
            return None

    async def require_metadata(self, dataset_id: str) -> DatasetMetadata:
        """Like get_metadata, but raises DatasetNotFoundError."""
        metadata = await self.get_metadata(dataset_id)
        if metadata is None:
            raise DatasetNotFoundError(dataset_id)
        return metadata

    async def register(self, metadata: DatasetMetadata) -> None:
        """Add (or replace) one dataset entry."""
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            data[metadata.dataset_id] = metadata.model_dump()
            await asyncio.to_thread(self._write_all, data)
        logger.info(f"Registered dataset {metadata.dataset_id} ({metadata.file_name})")
