from datetime import datetime
from typing import Annotated

from pydantic import BaseModel, Field, StringConstraints

from ..rbac_module.schemas import EntityId, ORMModel

MimeType = Annotated[str, StringConstraints(strip_whitespace=True, to_lower=True, pattern=r"^[\w.+-]+/[\w.+-]+$")]


class UploadCreateRequest(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    original_name: str = Field(min_length=1, max_length=255)
    mime_type: MimeType
    size: int = Field(ge=0)
    url: str = Field(min_length=1, max_length=500)
    path: str = Field(min_length=1, max_length=500)
    school_id: EntityId | None = None


class UploaderOut(ORMModel):
    id: str
    first_name: str
    last_name: str


class UploadOut(ORMModel):
    id: str
    school_id: str
    uploaded_by_id: str
    file_name: str
    original_name: str
    mime_type: str
    size: int
    url: str
    path: str
    created_at: datetime
    uploaded_by: UploaderOut


class StorageByType(BaseModel):
    type: str
    files: int
    size: int


class StorageStatsOut(BaseModel):
    total_files: int
    total_size: int
    total_size_mb: float
    by_type: list[StorageByType]
