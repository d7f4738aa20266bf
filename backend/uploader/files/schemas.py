"""Pydantic schemas for the upload pipeline.

This module defines the data models shared by the storage backends, the
temp materializer and the upload orchestrator:
- FileKind: Enum for categorizing files (image, video, audio, document, ...)
- StoredFile: A file persisted by a storage backend
- UploadOptions: Per-call options for ``UploadOrchestrator.upload_file``
- UploadResult: What an upload returns, successful or not
- TempFile: A locally materialized temporary file

Files are classified by extension using the same groups the format
allow-list understands (``images``, ``videos``, ``audios``, ``documents``,
``compress``).
"""
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Dict, FrozenSet, List, Literal, Optional

from pydantic import BaseModel, Field

from .errors import UploadError


class FileKind(str, Enum):
    """Supported file type categories."""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    COMPRESS = "compress"
    OTHER = "other"


# Extensions by category
FORMAT_GROUPS: Dict[FileKind, FrozenSet[str]] = {
    FileKind.IMAGE: frozenset({"jpg", "jpeg", "png", "gif", "bmp", "ico", "svg", "webp"}),
    FileKind.VIDEO: frozenset({"flv", "webm", "wmv", "avi", "swf", "mp4", "mov", "mpg"}),
    FileKind.AUDIO: frozenset({"mp3", "ogg", "wav", "m4a", "flac"}),
    FileKind.DOCUMENT: frozenset({
        "pdf", "xls", "xlsx", "doc", "docx", "ppt", "pptx",
        "html", "htm", "txt", "json", "xml", "md", "csv",
    }),
    FileKind.COMPRESS: frozenset({"zip", "7z", "rar", "tar", "bz2", "gz"}),
}

# Names accepted in a ``formats`` allow-list for each group
GROUP_ALIASES: Dict[str, FileKind] = {
    "image": FileKind.IMAGE,
    "images": FileKind.IMAGE,
    "video": FileKind.VIDEO,
    "videos": FileKind.VIDEO,
    "audio": FileKind.AUDIO,
    "audios": FileKind.AUDIO,
    "document": FileKind.DOCUMENT,
    "documents": FileKind.DOCUMENT,
    "compress": FileKind.COMPRESS,
}


def file_extension(name: str) -> str:
    """Return the lowercased extension of a path, file name or URL, without the dot.

    Query strings and fragments are ignored, so
    ``https://x.test/a/logo.PNG?v=2`` yields ``"png"``.
    """
    name = str(name).split("?", 1)[0].split("#", 1)[0]
    return PurePosixPath(name.replace("\\", "/")).suffix.lstrip(".").lower()


def get_file_kind(name: str) -> FileKind:
    """Determine the file category from its extension.

    Examples:
        >>> get_file_kind("photo.JPG")
        <FileKind.IMAGE: 'image'>
        >>> get_file_kind("notes.bin")
        <FileKind.OTHER: 'other'>
    """
    ext = file_extension(name)
    for kind, extensions in FORMAT_GROUPS.items():
        if ext in extensions:
            return kind
    return FileKind.OTHER


class StoredFile(BaseModel):
    """A file persisted by a storage backend.

    ``thumb`` is the key reserved for the thumbnail of this file; it is only
    set for images that are not themselves thumbnails or versions.
    """
    key: str = Field(..., description="Storage-relative key")
    name: str = Field(..., description="Base file name")
    url: str = Field(..., description="Public URL of the file")
    file_type: FileKind = Field(..., description="File type category")
    size: int = Field(0, description="File size in bytes")
    thumb: Optional[str] = Field(None, description="Thumbnail key, if applicable")
    created_at: float = Field(default_factory=time.time, description="Persist timestamp")


class UploadOptions(BaseModel):
    """Options recognized by ``UploadOrchestrator.upload_file``.

    ``maximum`` falls back to the configured ``uploads.max_size_mb`` and
    ``thumb_size`` to the backend's thumbnail size.
    """
    folder: str = Field(default="", description="Target folder inside storage")
    filename: Optional[str] = Field(default=None, description="Target file name")
    maximum: Optional[int] = Field(default=None, ge=0, description="Maximum size in bytes")
    file_size: Optional[int] = Field(default=None, ge=0, description="Declared size in bytes")
    formats: str = Field(default="*", description="Extensions or groups permitted")
    generate_thumb: bool = Field(default=True)
    thumb_size: Optional[str] = Field(default=None, description="Thumbnail size, e.g. 100x100")
    same_name: bool = Field(default=False, description="Overwrite an existing key")
    remove_source: bool = Field(default=False, description="Delete the local source afterwards")
    versions: str = Field(default="", description="Extra versions, e.g. 300x300,505x350")
    dimension: Optional[str] = Field(default=None, description="Resize before storing, e.g. 300x300?")
    temporal_time: float = Field(default=0, ge=0, description="Seconds until the file is deleted")


class UploadResult(BaseModel):
    """Outcome of an upload.

    On failure only ``error`` and ``error_kind`` are set and nothing was
    persisted.  Version and thumbnail failures do not fail the upload; they
    are reported in ``warnings``.
    """
    file: Optional[StoredFile] = None
    versions: List[StoredFile] = Field(default_factory=list)
    thumb: Optional[StoredFile] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    scheduled_deletion: Optional[float] = Field(
        default=None, description="Unix time the file is scheduled for deletion"
    )

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, error: UploadError) -> "UploadResult":
        return cls(error=error.message, error_kind=error.kind)


TempOrigin = Literal["remote", "inline", "local"]


@dataclass
class TempFile:
    """A materialized local file.

    Temp files are never deleted automatically unless ``transient`` is set;
    callers must check ``error`` before using ``path``.
    """
    path: Optional[str] = None
    origin: Optional[TempOrigin] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    transient: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and self.path is not None

    @classmethod
    def failure(cls, error: UploadError) -> "TempFile":
        return cls(error=error.message, error_kind=error.kind)
