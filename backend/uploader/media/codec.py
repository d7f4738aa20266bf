"""Image decode/encode on top of Pillow.

SVG sources are rasterised with cairosvg first; Pillow cannot read vectors.
Every codec failure is raised as ``TransformError``.
"""
import io
import logging
from pathlib import Path
from typing import Union

from PIL import Image, ImageFile, UnidentifiedImageError

from uploader.files.errors import TransformError

from .geometry import is_vector

logger = logging.getLogger(__name__)

# Reject truncated files instead of padding them with black bands.
ImageFile.LOAD_TRUNCATED_IMAGES = False

_OPAQUE_FORMATS = {"JPEG", "BMP"}


def rasterize_svg(path: Union[str, Path]) -> bytes:
    """Render an SVG file to PNG bytes."""
    try:
        import cairosvg  # lazy import: only needed for vector sources
    except (ImportError, OSError) as exc:
        raise TransformError(
            "cairosvg is required to process SVG images. "
            "Install it with: pip install cairosvg",
            path=str(path),
        ) from exc

    try:
        return cairosvg.svg2png(url=str(path))
    except Exception as exc:
        raise TransformError(f"Cannot rasterize SVG {path}: {exc}", path=str(path)) from exc


def open_image(path: Union[str, Path]) -> Image.Image:
    """Decode *path* into a fully loaded Pillow image."""
    try:
        if is_vector(str(path)):
            image = Image.open(io.BytesIO(rasterize_svg(path)))
        else:
            image = Image.open(path)
        image.load()
    except TransformError:
        raise
    except (OSError, UnidentifiedImageError, Image.DecompressionBombError, ValueError) as exc:
        raise TransformError(f"Cannot decode image {path}: {exc}", path=str(path)) from exc
    return image


def output_format(path: Union[str, Path]) -> str:
    """Pillow format name for the extension of *path* (``.jpg`` → ``JPEG``)."""
    ext = Path(path).suffix.lower()
    fmt = Image.registered_extensions().get(ext)
    if fmt is None:
        raise TransformError(f"Unsupported output format: {ext or path}", path=str(path))
    return fmt


def _flatten(image: Image.Image) -> Image.Image:
    """Composite transparency onto white for formats without alpha."""
    if image.mode in ("RGB", "L"):
        return image
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[3])
        return background
    return image.convert("RGB")


def save_image(image: Image.Image, path: Union[str, Path]) -> str:
    """Encode *image* to *path*, the format chosen by its extension."""
    fmt = output_format(path)
    if fmt in _OPAQUE_FORMATS:
        image = _flatten(image)
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        image.save(path, format=fmt)
    except (OSError, ValueError) as exc:
        raise TransformError(f"Cannot write image {path}: {exc}", path=str(path)) from exc
    logger.debug("Wrote %s image %s (%dx%d)", fmt, path, image.width, image.height)
    return str(path)
