"""Pydantic models describing an uploaded dataset."""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ColumnType = Literal["string", "number", "boolean", "date"]


class ColumnMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: ColumnType
    nullable: bool
    distinct_count: int
    min: Optional[float] = None
    max: Optional[float] = None


class DatasetMetadata(BaseModel):
    """Immutable description of one uploaded dataset. Created once at upload time."""
    model_config = ConfigDict(frozen=True)

    dataset_id: str
    file_name: str
    file_size_bytes: int
    row_count_estimate: int
    column_count: int
    columns: List[ColumnMetadata]
    sample_rows: List[List[str]] = Field(default_factory=list)
    created_at: str
    file_path: str

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]
