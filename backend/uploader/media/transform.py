"""Image transform service: resize-and-crop, plain crop/resize, thumbnails.

Resize always happens before the crop, and crop offsets are computed on the
resized canvas, never on the original.

Usage:
    service = ImageTransformService(HookRegistry())
    path = service.resize_and_crop("/tmp/photo.png", "200", "200",
                                   gravity=Gravity.CENTER,
                                   output_mode=OutputMode.AUTO)
    # → /tmp/crop_photo.png
"""
import logging
import os
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Tuple, Union

from PIL import Image

from uploader.files.errors import TransformError
from uploader.files.naming import add_postfix, unique_path
from uploader.files.validation import validate_format
from uploader.hooks.registry import (
    CropContext,
    HookEvent,
    HookRegistry,
    ResizeCropContext,
    ResizeUploadContext,
)

from .codec import open_image, save_image
from .geometry import (
    Gravity,
    Length,
    compute_crop_offset,
    compute_proportional_resize,
    format_normalize,
    has_cap,
    parse_dimension,
    resolve_relative_dimension,
)

if TYPE_CHECKING:
    from uploader.files.schemas import StoredFile
    from uploader.storage.base import StorageBackend

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class OutputMode(str, Enum):
    """Where a transform writes its result."""
    OVERWRITE = "overwrite"  # replace the source (vector sources get a raster sibling)
    EXPLICIT = "explicit"    # write to the caller's output_path
    AUTO = "auto"            # collision-free "crop_" name beside the source


class ImageTransformService:
    """Applies geometry plans to image files.

    Args:
        hooks: Registry fired with ``before_resize_crop``,
               ``before_crop_image`` and ``on_uploader_resize``.
        default_gravity: Gravity used when a call does not pass one.
    """

    def __init__(
        self,
        hooks: Optional[HookRegistry] = None,
        default_gravity: Union[Gravity, str] = Gravity.NORTH_EAST,
    ) -> None:
        self.hooks = hooks or HookRegistry()
        self.default_gravity = Gravity.parse(default_gravity)

    # ------------------------------------------------------------------
    # Resize + crop
    # ------------------------------------------------------------------

    def resize_and_crop(
        self,
        source_path: PathLike,
        width: Length,
        height: Length,
        gravity: Union[Gravity, str, None] = None,
        output_mode: OutputMode = OutputMode.OVERWRITE,
        output_path: Optional[PathLike] = None,
    ) -> str:
        """Scale the source to cover ``width × height``, then crop to exactly that size.

        Args:
            source_path: Image to transform.  SVG sources are rasterised and
                         written with a ``.jpg`` extension.
            width: Target width; ``"N?"`` caps it at the source width.
            height: Target height; ``"N?"`` caps it at the source height.
            gravity: Part of the resized image to keep.
            output_mode: See :class:`OutputMode`.
            output_path: Destination for ``OutputMode.EXPLICIT``.

        Returns:
            Path of the written image.

        Raises:
            TransformError: If the source cannot be decoded, a dimension is
                missing or non-positive, or the result cannot be written.
        """
        source_path = str(source_path)
        gravity = Gravity.parse(gravity or self.default_gravity)

        with open_image(source_path) as image:
            w_original, h_original = image.size
            w = resolve_relative_dimension(w_original, width)
            h = resolve_relative_dimension(h_original, height)
            if w is None or h is None:
                raise TransformError(
                    f"Resize and crop needs both width and height (got {width}x{height})",
                    path=source_path,
                )
            if w <= 0 or h <= 0:
                raise TransformError(f"Invalid dimensions {w}x{h}", path=source_path)

            plan = compute_proportional_resize(w_original, h_original, w, h)
            resized = image.resize(plan.rounded(), Image.LANCZOS)

        w_offset, h_offset = compute_crop_offset(gravity, resized.size, (w, h))
        ctx = self.hooks.run(
            HookEvent.BEFORE_RESIZE_CROP,
            ResizeCropContext(
                image=resized, width=w, height=h,
                w_offset=w_offset, h_offset=h_offset,
                plan=plan, gravity=gravity,
            ),
        )
        cropped = ctx.image.crop(
            (ctx.w_offset, ctx.h_offset, ctx.w_offset + ctx.width, ctx.h_offset + ctx.height)
        )

        destination = self._destination(source_path, output_mode, output_path)
        logger.debug(
            "Resize %s %dx%d → %s, crop %dx%d+%d+%d (%s) → %s",
            source_path, w_original, h_original, plan.geometry,
            ctx.width, ctx.height, ctx.w_offset, ctx.h_offset, gravity.value, destination,
        )
        return save_image(cropped, destination)

    def _destination(
        self,
        source_path: str,
        output_mode: OutputMode,
        output_path: Optional[PathLike],
    ) -> str:
        normalized = format_normalize(source_path)
        mode = OutputMode(output_mode)
        if mode == OutputMode.OVERWRITE:
            return normalized
        if mode == OutputMode.EXPLICIT:
            if not output_path:
                raise TransformError("An explicit output path is required", path=source_path)
            return format_normalize(str(output_path))
        return unique_path(Path(normalized).parent / f"crop_{Path(normalized).name}")

    # ------------------------------------------------------------------
    # Plain crop or resize
    # ------------------------------------------------------------------

    def crop_or_resize(
        self,
        source_path: PathLike,
        width: Length = None,
        height: Length = None,
        w_offset: int = 0,
        h_offset: int = 0,
        resize: bool = False,
        replace: bool = True,
        output_path: Optional[PathLike] = None,
    ) -> str:
        """Crop at fixed offsets, or resize, without any proportional fit-and-crop.

        When both sides are literal the result is exactly ``width × height``;
        otherwise cap markers are resolved against the source and a resize
        keeps the aspect ratio.  A crop with a missing side extends to the
        image edge.

        Returns:
            The source path (``replace=True``), *output_path*, or the
            ``_crop`` suffixed sibling of the source.
        """
        source_path = str(source_path)
        forced = (
            bool(width) and bool(height)
            and not has_cap(width) and not has_cap(height)
        )

        with open_image(source_path) as image:
            w_original, h_original = image.size
            w = resolve_relative_dimension(w_original, width)
            h = resolve_relative_dimension(h_original, height)
            if w is None and h is None:
                raise TransformError("Crop or resize needs a width or a height", path=source_path)
            if (w is not None and w <= 0) or (h is not None and h <= 0):
                raise TransformError(f"Invalid dimensions {w}x{h}", path=source_path)

            ctx = self.hooks.run(
                HookEvent.BEFORE_CROP_IMAGE,
                CropContext(
                    image=image, width=w, height=h,
                    w_offset=int(w_offset), h_offset=int(h_offset),
                    resize=resize, replace=replace,
                ),
            )
            if ctx.resize:
                size = _fit_size(w_original, h_original, ctx.width, ctx.height, forced)
                result = ctx.image.resize(size, Image.LANCZOS)
            else:
                result = ctx.image.crop(
                    _crop_box(w_original, h_original, ctx.width, ctx.height, ctx.w_offset, ctx.h_offset)
                )

        if ctx.replace:
            destination = format_normalize(source_path)
        elif output_path:
            destination = format_normalize(str(output_path))
        else:
            destination = add_postfix(format_normalize(source_path), "_crop")
        return save_image(result, destination)

    # ------------------------------------------------------------------
    # Dimension tokens
    # ------------------------------------------------------------------

    def resize_upload(
        self,
        image_path: PathLike,
        dimension: Optional[str],
        replace: bool = True,
        gravity: Union[Gravity, str, None] = None,
        output_path: Optional[PathLike] = None,
    ) -> str:
        """Apply a dimension token such as ``"300x300"``, ``"x30"`` or ``"300?x200?"``.

        Non-image files and empty tokens are returned untouched.  With both
        sides present the image is resized and cropped; with one side it is
        resized (or cropped for a ``WxHxcrop`` token) by :meth:`crop_or_resize`.
        """
        image_path = str(image_path)
        if not dimension or not validate_format(image_path, "images"):
            return image_path
        try:
            spec = parse_dimension(dimension)
        except ValueError as exc:
            raise TransformError(str(exc), path=image_path) from exc

        ctx = self.hooks.run(
            HookEvent.ON_UPLOADER_RESIZE,
            ResizeUploadContext(
                file=image_path, width=spec.width, height=spec.height,
                w_offset=0, h_offset=0, resize=spec.resize, replace=replace,
                gravity=Gravity.parse(gravity or self.default_gravity),
            ),
        )
        if ctx.width and ctx.height:
            if ctx.replace:
                mode = OutputMode.OVERWRITE
            elif output_path:
                mode = OutputMode.EXPLICIT
            else:
                mode = OutputMode.AUTO
            return self.resize_and_crop(
                ctx.file, ctx.width, ctx.height,
                gravity=ctx.gravity, output_mode=mode, output_path=output_path,
            )
        return self.crop_or_resize(
            ctx.file, ctx.width, ctx.height, ctx.w_offset, ctx.h_offset,
            resize=ctx.resize, replace=ctx.replace, output_path=output_path,
        )

    # ------------------------------------------------------------------
    # Thumbnails
    # ------------------------------------------------------------------

    def generate_thumbnail(
        self,
        source_path: PathLike,
        key: str,
        thumb_dims: Tuple[Length, Length],
        storage: "StorageBackend",
        work_dir: Optional[PathLike] = None,
    ) -> "StoredFile":
        """Render and store the thumbnail of an already stored image.

        ``photos/my-img.png`` gets its thumbnail at ``photos/thumb/my-img-png.png``;
        SVG keys get a ``.jpg`` thumbnail.  The source file is left intact.
        """
        width, height = thumb_dims
        thumb_key = format_normalize(storage.version_path(key))
        work_dir = Path(work_dir) if work_dir else Path(source_path).parent
        work_path = unique_path(work_dir / f"thumb_{Path(thumb_key).name}")

        rendered = self.resize_and_crop(
            source_path, _as_length(width), _as_length(height),
            gravity=self.default_gravity,
            output_mode=OutputMode.EXPLICIT,
            output_path=work_path,
        )
        try:
            stored = storage.add_file(rendered, thumb_key, is_thumb=True, same_name=True)
        finally:
            if os.path.exists(rendered):
                os.remove(rendered)
        logger.info("Generated thumbnail %s for %s", stored.key, key)
        return stored


def _as_length(value: Length) -> Length:
    return str(value) if isinstance(value, int) else value


def _fit_size(
    w_original: int,
    h_original: int,
    w: Optional[int],
    h: Optional[int],
    forced: bool,
) -> Tuple[int, int]:
    if forced and w and h:
        return w, h
    if w and h:
        scale = min(w / w_original, h / h_original)
    elif w:
        scale = w / w_original
    else:
        scale = h / h_original
    return max(1, int(round(w_original * scale))), max(1, int(round(h_original * scale)))


def _crop_box(
    w_original: int,
    h_original: int,
    w: Optional[int],
    h: Optional[int],
    x: int,
    y: int,
) -> Tuple[int, int, int, int]:
    x = min(max(0, x), w_original)
    y = min(max(0, y), h_original)
    right = min(w_original, x + w) if w else w_original
    bottom = min(h_original, y + h) if h else h_original
    if right <= x or bottom <= y:
        raise TransformError(f"Crop {w}x{h}+{x}+{y} is outside a {w_original}x{h_original} image")
    return x, y, right, bottom
