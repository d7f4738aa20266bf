"""Path and file-name helpers.

``sanitize_folder`` is the security boundary for folder paths and must run
before anything is written.  ``fix_filename`` and the slug helpers are
cosmetic normalization only.

``resolve_unique_name`` reads the directory listing and returns a free
name; it does not reserve it.  Two concurrent uploads of the same name into
the same directory can both see the name as free.  The storage backends
create files exclusively and report a lost race as
``NameResolutionConflict`` instead of overwriting.
"""
import logging
import os
import re
from pathlib import Path, PurePosixPath
from typing import Iterable, Optional, Union

from .errors import PathTraversalError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-z0-9_\-]+")
_DASH_RUNS = re.compile(r"-{2,}")
_SLASH_RUNS = re.compile(r"/{2,}")
_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def parameterize(value: str, separator: str = "-") -> str:
    """Lowercase *value* and replace every run of unsafe characters with *separator*."""
    value = _UNSAFE_CHARS.sub(separator, value.strip().lower())
    value = _DASH_RUNS.sub(separator, value)
    return value.strip(separator)


def split_ext(name: str) -> tuple:
    """Split ``photo.tar.gz`` into ``("photo.tar", ".gz")``; dotfiles have no extension."""
    path = PurePosixPath(name)
    return name[: len(name) - len(path.suffix)], path.suffix


def fix_filename(name: str) -> str:
    """Normalize a file name for storage.

    The stem is parameterized and the extension lowercased:
    ``"My Photo (1).JPG"`` becomes ``"my-photo-1.jpg"``.
    """
    base = os.path.basename(str(name).replace("\\", "/"))
    stem, ext = split_ext(base)
    stem = parameterize(stem) or "file"
    ext = "." + parameterize(ext.lstrip(".")) if ext else ""
    return f"{stem}{ext}" if ext != "." else stem


def fix_slash(path: str) -> str:
    """Collapse repeated slashes: ``"a//b///c"`` → ``"a/b/c"``."""
    return _SLASH_RUNS.sub("/", str(path).replace("\\", "/"))


def slugify(value: str) -> str:
    return re.sub(r"[^\w-]", "", str(value).lower().strip().replace(" ", "-"))


def slugify_folder(path: str) -> str:
    """Slugify only the last segment of a folder path."""
    segments = str(path).split("/")
    segments[-1] = slugify(segments[-1])
    return "/".join(segments)


def add_postfix(name: str, postfix: str) -> str:
    """Insert *postfix* before the extension: ``add_postfix("a/b.png", "_1")`` → ``"a/b_1.png"``."""
    stem, ext = split_ext(name)
    return f"{stem}{postfix}{ext}"


def sanitize_folder(path: Optional[str]) -> str:
    """Validate and normalize a storage folder.

    ``""`` (the storage root) is accepted.  Backslashes become slashes,
    duplicate slashes collapse and ``.`` segments are dropped.

    Raises:
        PathTraversalError: For ``..`` segments, absolute paths, drive
            letters or control characters.
    """
    if path is None:
        return ""
    raw = str(path)
    if _CONTROL_CHARS.search(raw):
        raise PathTraversalError(raw)

    normalized = fix_slash(raw.strip())
    if normalized.startswith("/") or _DRIVE_LETTER.match(normalized):
        raise PathTraversalError(raw)

    segments = [s for s in normalized.split("/") if s not in ("", ".")]
    if any(s == ".." for s in segments):
        logger.warning("Rejected folder path with traversal segment: %r", raw)
        raise PathTraversalError(raw)
    return "/".join(segments)


def resolve_unique_name(
    directory: Union[str, Path],
    desired_filename: str,
    existing: Optional[Iterable[str]] = None,
) -> str:
    """Return *desired_filename*, or the first free ``name_N.ext`` variant.

    Args:
        directory: Directory whose entries are checked.  A missing directory
                   has no entries.
        desired_filename: Preferred file name.
        existing: Entry names to check instead of listing *directory*
                  (used by object-storage backends).

    Returns:
        A file name (not a path) that does not collide with any entry.
    """
    if existing is None:
        try:
            existing = os.listdir(directory)
        except FileNotFoundError:
            existing = []
    taken = set(existing)
    if desired_filename not in taken:
        return desired_filename

    stem, ext = split_ext(desired_filename)
    i = 1
    candidate = f"{stem}_{i}{ext}"
    while candidate in taken:
        i += 1
        candidate = f"{stem}_{i}{ext}"
    return candidate


def unique_path(path: Union[str, Path]) -> str:
    """Full-path variant of :func:`resolve_unique_name`."""
    path = Path(path)
    return str(path.parent / resolve_unique_name(path.parent, path.name))
