"""Request/response models for the upload endpoints."""
from typing import Optional

from pydantic import BaseModel, Field


class TempUploadRequest(BaseModel):
    """Body of ``POST /uploads/tmp``."""
    source: str = Field(..., description="http(s) URL or data: payload")
    name: Optional[str] = Field(None, description="File name; required for data: payloads")
    formats: str = Field("*", description="Extensions or groups permitted")
    dimension: Optional[str] = Field(None, description="Resize token, e.g. 300x300?")


class TempUploadResponse(BaseModel):
    path: str
    origin: str


# Error kind → HTTP status code
STATUS_BY_KIND = {
    "empty_input": 400,
    "path_traversal": 400,
    "format": 415,
    "size": 413,
    "transform": 422,
    "unsafe_content": 422,
    "materialization": 502,
    "name_conflict": 409,
    "storage": 500,
}
