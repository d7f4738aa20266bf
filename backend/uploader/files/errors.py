"""Error taxonomy for the upload pipeline.

Every error carries a human-readable ``message`` and the HTTP ``status_code``
the router answers with.  The orchestrator and the temp materializer never
let these escape: they are converted into result objects carrying the
message, so callers always receive data they must inspect.
"""
from typing import Optional


def format_size(num_bytes: float) -> str:
    """Render a byte count as a human-readable size.

    Examples:
        >>> format_size(1)
        '1 Byte'
        >>> format_size(100 * 1024 * 1024)
        '100 MB'
        >>> format_size(1536)
        '1.5 KB'
    """
    num_bytes = float(num_bytes)
    if num_bytes < 1024:
        count = int(num_bytes)
        return f"{count} Byte" if count == 1 else f"{count} Bytes"

    value = num_bytes
    for unit in ("KB", "MB", "GB", "TB"):
        value /= 1024.0
        if value < 1024 or unit == "TB":
            return f"{value:.3g} {unit}"
    return f"{value:.3g} TB"


class UploadError(Exception):
    """Base exception for upload pipeline errors."""

    kind = "upload_error"

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class EmptyInputError(UploadError):
    """Raised when the upload source is missing or empty."""

    kind = "empty_input"

    def __init__(self, message: str = "File is empty"):
        super().__init__(message, status_code=400)


class PathTraversalError(UploadError):
    """Raised when a folder path tries to escape the storage root."""

    kind = "path_traversal"

    def __init__(self, path: str):
        self.path = path
        super().__init__("Invalid file path", status_code=400)


class FormatError(UploadError):
    """Raised when a file extension is not in the allowed set."""

    kind = "format"

    def __init__(self, file_format: str, allowed: str):
        self.file_format = file_format
        self.allowed = allowed
        super().__init__(f"Invalid file format ({allowed})", status_code=415)


class SizeError(UploadError):
    """Raised when a file is larger than the configured ceiling."""

    kind = "size"

    def __init__(self, size: int, maximum: int):
        self.size = size
        self.maximum = maximum
        super().__init__(f"File size exceeded ({format_size(maximum)})", status_code=413)


class TransformError(UploadError):
    """Raised when an image cannot be decoded, resized, cropped or written."""

    kind = "transform"

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message, status_code=422)


class MaterializationError(UploadError):
    """Raised when a temporary file cannot be fetched or decoded."""

    kind = "materialization"

    def __init__(self, message: str):
        super().__init__(message, status_code=502)


class NameResolutionConflict(UploadError):
    """Raised when the backend reports that a resolved key was created concurrently."""

    kind = "name_conflict"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"File already exists: {key}", status_code=409)


class UnsafeContentError(UploadError):
    """Raised when the content scanner finds script-like content."""

    kind = "unsafe_content"

    def __init__(self, pattern: str):
        self.pattern = pattern
        super().__init__("Potentially malicious content found!", status_code=422)


class StorageError(UploadError):
    """Raised when the storage backend fails to persist or delete a file."""

    kind = "storage"

    def __init__(self, message: str):
        super().__init__(message, status_code=500)
