"""Extension points fired by the upload pipeline."""
from .registry import (
    AfterUploadContext,
    BeforeUploadContext,
    CropContext,
    HookEvent,
    HookRegistry,
    ResizeCropContext,
    ResizeUploadContext,
    UploaderContext,
)

__all__ = [
    "AfterUploadContext",
    "BeforeUploadContext",
    "CropContext",
    "HookEvent",
    "HookRegistry",
    "ResizeCropContext",
    "ResizeUploadContext",
    "UploaderContext",
]
