"""Typed extension points for the upload pipeline.

Each event carries one fixed, mutable context dataclass.  Observers may
change context fields and the pipeline reads them back after the event,
e.g. an ``on_uploader`` observer can inject a custom storage backend and a
``before_resize_crop`` observer can override the gravity.

An empty registry is a no-op pass-through.

Usage:
    hooks = HookRegistry()

    @hooks.on(HookEvent.BEFORE_UPLOAD)
    def force_folder(ctx: BeforeUploadContext) -> None:
        ctx.options.folder = "incoming"
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class HookEvent(str, Enum):
    """Named extension points."""
    BEFORE_UPLOAD = "before_upload"
    AFTER_UPLOAD = "after_upload"
    BEFORE_CROP_IMAGE = "before_crop_image"
    BEFORE_RESIZE_CROP = "before_resize_crop"
    ON_UPLOADER = "on_uploader"
    ON_UPLOADER_RESIZE = "on_uploader_resize"


@dataclass
class BeforeUploadContext:
    options: Any  # UploadOptions
    source_path: str


@dataclass
class AfterUploadContext:
    options: Any  # UploadOptions
    source_path: str
    result: Any  # UploadResult


@dataclass
class CropContext:
    image: Any  # PIL.Image.Image
    width: Optional[int]
    height: Optional[int]
    w_offset: int
    h_offset: int
    resize: bool
    replace: bool


@dataclass
class ResizeCropContext:
    image: Any  # PIL.Image.Image, already resized
    width: int
    height: int
    w_offset: int
    h_offset: int
    plan: Any  # ResizePlan
    gravity: Any  # Gravity


@dataclass
class UploaderContext:
    server: str
    thumb: Tuple[int, int]
    settings: Dict[str, Any] = field(default_factory=dict)
    custom_backend: Any = None  # StorageBackend


@dataclass
class ResizeUploadContext:
    file: str
    width: Optional[str]
    height: Optional[str]
    w_offset: int
    h_offset: int
    resize: bool
    replace: bool
    gravity: Any  # Gravity


EVENT_CONTEXTS: Dict[HookEvent, Type] = {
    HookEvent.BEFORE_UPLOAD: BeforeUploadContext,
    HookEvent.AFTER_UPLOAD: AfterUploadContext,
    HookEvent.BEFORE_CROP_IMAGE: CropContext,
    HookEvent.BEFORE_RESIZE_CROP: ResizeCropContext,
    HookEvent.ON_UPLOADER: UploaderContext,
    HookEvent.ON_UPLOADER_RESIZE: ResizeUploadContext,
}

HookCallback = Callable[[Any], None]


class HookRegistry:
    """Registry of observers keyed by :class:`HookEvent`.

    Observers run in registration order on the calling thread.  Exceptions
    raised by an observer propagate to the pipeline step that fired it.
    """

    def __init__(self) -> None:
        self._observers: Dict[HookEvent, List[HookCallback]] = {}

    def register(self, event: HookEvent, callback: HookCallback) -> None:
        """Add *callback* as an observer of *event*."""
        event = HookEvent(event)
        self._observers.setdefault(event, []).append(callback)
        logger.debug("Registered hook %s for %s", getattr(callback, "__name__", callback), event.value)

    def on(self, event: HookEvent) -> Callable[[HookCallback], HookCallback]:
        """Decorator form of :meth:`register`."""
        def decorator(callback: HookCallback) -> HookCallback:
            self.register(event, callback)
            return callback
        return decorator

    def unregister(self, event: HookEvent, callback: HookCallback) -> None:
        observers = self._observers.get(HookEvent(event), [])
        if callback in observers:
            observers.remove(callback)

    def has_observers(self, event: HookEvent) -> bool:
        return bool(self._observers.get(HookEvent(event)))

    def run(self, event: HookEvent, context: Any) -> Any:
        """Fire *event* with *context* and return the (possibly mutated) context.

        Raises:
            TypeError: If *context* is not the context type bound to *event*.
        """
        event = HookEvent(event)
        expected = EVENT_CONTEXTS[event]
        if not isinstance(context, expected):
            raise TypeError(
                f"Hook {event.value} expects {expected.__name__}, got {type(context).__name__}"
            )
        for callback in list(self._observers.get(event, [])):
            callback(context)
        return context
