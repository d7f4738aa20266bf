"""Format, size and content validation for uploads.

Format allow-lists are either ``"*"`` (everything), or a comma-separated list
whose items are extensions (``"jpg,png"``) or group names (``"images"``,
``"documents"``, ...).  Items may be mixed: ``"images,pdf"``.
"""
import logging
import re
from typing import Optional, Set

from .errors import FormatError, SizeError
from .schemas import FORMAT_GROUPS, GROUP_ALIASES, file_extension

logger = logging.getLogger(__name__)

_UNSAFE_EVENT_HANDLERS = (
    "onabort onafter onbefore onblur oncanplay onchange onclick oncontextmenu oncopy "
    "oncuechange oncut ondblclick ondrag ondrop ondurationchange onended onerror onfocus "
    "onhashchange oninvalid oninput onkey onload onmessage onmouse ononline onoffline "
    "onpagehide onpageshow onpage onpaste onpause onplay onpopstate onprogress "
    "onpropertychange onratechange onreadystatechange onreset onresize onscroll onsearch "
    "onseek onselect onshow onstalled onstorage onsuspend ontimeupdate ontoggle onunload "
    "onsubmit onvolumechange onwaiting onwheel"
).split()

SUSPICIOUS_PATTERNS = tuple(
    re.compile(rf"{name}\w*\s*=".encode(), re.IGNORECASE) for name in _UNSAFE_EVENT_HANDLERS
) + tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        rb"<script[\s>]",
        rb"javascript:",
        rb"<iframe[\s>]",
        rb"<object[\s>]",
        rb"<embed[\s>]",
        rb"<base[\s>]",
        rb"data:",
    )
)


def allowed_extensions(allowed: str) -> Optional[Set[str]]:
    """Expand an allow-list into a set of extensions; ``None`` means everything."""
    if allowed is None:
        return None
    allowed = str(allowed).replace(" ", "").lower()
    if allowed in ("", "*"):
        return None

    extensions: Set[str] = set()
    for item in allowed.split(","):
        if not item:
            continue
        if item == "*":
            return None
        kind = GROUP_ALIASES.get(item)
        if kind is not None:
            extensions |= FORMAT_GROUPS[kind]
        else:
            extensions.add(item.lstrip("."))
    return extensions


def validate_format(path_or_name: str, allowed: str = "*") -> bool:
    """Return True if the extension of *path_or_name* is permitted by *allowed*.

    Matching is case-insensitive and ignores URL query strings.
    """
    extensions = allowed_extensions(allowed)
    if extensions is None:
        return True
    return file_extension(path_or_name) in extensions


def ensure_format(path_or_name: str, allowed: str = "*") -> None:
    """Raise :class:`FormatError` unless *path_or_name* passes :func:`validate_format`."""
    if not validate_format(path_or_name, allowed):
        ext = file_extension(path_or_name)
        logger.info("Rejected format %r (allowed: %s)", ext, allowed)
        raise FormatError(ext, allowed)


def validate_size(byte_size: int, maximum: Optional[int]) -> None:
    """Raise :class:`SizeError` when *byte_size* exceeds *maximum*."""
    if maximum is not None and byte_size > maximum:
        logger.info("Rejected size %d bytes (maximum %d)", byte_size, maximum)
        raise SizeError(byte_size, maximum)


def find_unsafe_content(data: bytes) -> Optional[str]:
    """Return the first suspicious pattern found in *data*, or None.

    Looks for inline event handlers, script/iframe/object/embed/base tags,
    ``javascript:`` and ``data:`` URLs.
    """
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(data):
            logger.info("Potentially malicious content found: %r", pattern.pattern)
            return pattern.pattern.decode()
    return None
