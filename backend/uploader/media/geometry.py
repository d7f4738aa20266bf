"""Pure geometry for resize and crop plans.

Nothing here touches the filesystem or decodes images; the transform
service feeds real image sizes in and applies the resulting plans.

Dimension tokens
----------------
::

    "300x200"       both sides literal → exact size
    "300?x200?"     cap markers → at most 300×200, never upscaled
    "x30" / "30x"   one side absent → derived proportionally
    "300x200xcrop"  third token selects crop instead of resize

Version lists are comma-separated tokens: ``"300x300, 505x350"``.
"""
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import List, Optional, Tuple, Union

CAP_MARKER = "?"
VECTOR_EXTENSIONS = frozenset({".svg"})
RASTER_EXTENSION = ".jpg"

Length = Union[int, str, None]


class Gravity(str, Enum):
    """Anchor point preserved when cropping a resized image."""
    NORTH_WEST = "north_west"
    NORTH = "north"
    NORTH_EAST = "north_east"
    WEST = "west"
    CENTER = "center"
    EAST = "east"
    SOUTH_WEST = "south_west"
    SOUTH = "south"
    SOUTH_EAST = "south_east"

    @classmethod
    def parse(cls, value: Union["Gravity", str]) -> "Gravity":
        """Accept a Gravity or its name (``"north_east"``, ``"NORTH_EAST"``)."""
        if isinstance(value, Gravity):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown gravity: {value!r}") from None

    @property
    def horizontal(self) -> str:
        """``"west"``, ``"center"`` or ``"east"``."""
        if self in (Gravity.NORTH_WEST, Gravity.WEST, Gravity.SOUTH_WEST):
            return "west"
        if self in (Gravity.NORTH_EAST, Gravity.EAST, Gravity.SOUTH_EAST):
            return "east"
        return "center"

    @property
    def vertical(self) -> str:
        """``"north"``, ``"center"`` or ``"south"``."""
        if self in (Gravity.NORTH_WEST, Gravity.NORTH, Gravity.NORTH_EAST):
            return "north"
        if self in (Gravity.SOUTH_WEST, Gravity.SOUTH, Gravity.SOUTH_EAST):
            return "south"
        return "center"


@dataclass(frozen=True)
class ResizePlan:
    """Result of :func:`compute_proportional_resize`.

    ``binding`` is the side scaled to exactly its target; the other side is
    at least its target and may be fractional.
    """
    binding: str  # width | height
    width: float
    height: float

    @property
    def geometry(self) -> str:
        """Resize geometry string: ``"200x"`` (width binds) or ``"x200"``."""
        if self.binding == "width":
            return f"{int(self.width)}x"
        return f"x{int(self.height)}"

    def rounded(self) -> Tuple[int, int]:
        """Integer canvas size, never below 1 pixel on either side."""
        return max(1, int(round(self.width))), max(1, int(round(self.height)))


@dataclass(frozen=True)
class VersionSpec:
    """One parsed dimension token."""
    width: Optional[str]
    height: Optional[str]
    mode: str = "resize"  # resize | crop
    token: str = ""

    @property
    def resize(self) -> bool:
        return self.mode == "resize"

    @property
    def forced(self) -> bool:
        """True when both sides are literal integers (exact, non-proportional size)."""
        return (
            bool(self.width) and bool(self.height)
            and not has_cap(self.width) and not has_cap(self.height)
        )


def has_cap(value: Length) -> bool:
    return isinstance(value, str) and value.endswith(CAP_MARKER)


def resolve_relative_dimension(original: float, requested: Length) -> Optional[int]:
    """Resolve a requested length against the original one.

    ``"300?"`` means "300 unless the original is smaller": it resolves to
    ``min(original, 300)``.  Literal values come back as ints and an absent
    value stays ``None``.
    """
    if requested is None or requested == "":
        return None
    if has_cap(requested):
        return int(min(float(original), float(int(requested[: -len(CAP_MARKER)]))))
    return int(requested)


def compute_proportional_resize(
    original_w: float,
    original_h: float,
    target_w: float,
    target_h: float,
) -> ResizePlan:
    """Pick the side that must be scaled exactly so the image covers the target box.

    ``original_w * target_h < original_h * target_w`` means the source is
    relatively taller than the box: scaling to the target width leaves a
    height of at least ``target_h``.  Otherwise the height binds.
    """
    if original_w <= 0 or original_h <= 0:
        raise ValueError(f"Invalid original size: {original_w}x{original_h}")
    if target_w <= 0 or target_h <= 0:
        raise ValueError(f"Invalid target size: {target_w}x{target_h}")

    if original_w * target_h < original_h * target_w:
        return ResizePlan("width", float(target_w), original_h * target_w / original_w)
    return ResizePlan("height", original_w * target_h / original_h, float(target_h))


def compute_crop_offset(
    gravity: Union[Gravity, str],
    scaled_dims: Tuple[float, float],
    target_dims: Tuple[float, float],
) -> Tuple[int, int]:
    """Return ``(x_offset, y_offset)`` of a ``target_dims`` box inside ``scaled_dims``.

    Offsets stay within ``[0, scaled - target]`` on both axes.
    """
    gravity = Gravity.parse(gravity)
    scaled_w, scaled_h = scaled_dims
    target_w, target_h = target_dims

    return (
        _axis_offset(gravity.horizontal, "west", "east", scaled_w, target_w),
        _axis_offset(gravity.vertical, "north", "south", scaled_h, target_h),
    )


def _axis_offset(anchor: str, start: str, end: str, scaled: float, target: float) -> int:
    if anchor == start:
        return 0
    if anchor == end:
        return max(0, int(scaled - target))
    return max(0, int((scaled - target) / 2.0))


def is_vector(path: str) -> bool:
    return PurePosixPath(str(path)).suffix.lower() in VECTOR_EXTENSIONS


def format_normalize(path: str) -> str:
    """Swap a vector extension for a raster one: ``logo.svg`` → ``logo.jpg``."""
    path = str(path)
    if not is_vector(path):
        return path
    suffix = PurePosixPath(path).suffix
    return path[: len(path) - len(suffix)] + RASTER_EXTENSION


def parse_dimension(token: str) -> VersionSpec:
    """Parse ``W``, ``xH``, ``WxH`` or ``WxHxMODE``.

    Raises:
        ValueError: If a side is neither empty, an integer, nor ``N?``.
    """
    token = str(token).replace(" ", "")
    parts = token.split("x")
    width = parts[0] if parts else ""
    height = parts[1] if len(parts) > 1 else ""
    mode = "resize" if len(parts) < 3 or parts[2] in ("", "resize") else "crop"

    for side in (width, height):
        _check_length(side, token)

    return VersionSpec(width=width or None, height=height or None, mode=mode, token=token)


def _check_length(value: str, token: str) -> None:
    digits = value[: -len(CAP_MARKER)] if value.endswith(CAP_MARKER) else value
    if value and (not digits.isdigit()):
        raise ValueError(f"Invalid dimension token: {token!r}")


def parse_versions(text: Optional[str]) -> List[VersionSpec]:
    """Parse a comma-separated version list, skipping blanks."""
    if not text:
        return []
    return [parse_dimension(t) for t in str(text).replace(" ", "").split(",") if t]


def parse_size(value: str) -> Tuple[Optional[str], Optional[str]]:
    """Split a ``"WxH"`` thumbnail size into its two sides."""
    spec = parse_dimension(value)
    return spec.width, spec.height
