"""Abstract StorageBackend interface.

Every storage back-end (local disk, S3, a custom one injected through the
``on_uploader`` hook) must implement this interface so the upload pipeline
stays backend-agnostic.
"""
import io
import logging
import posixpath
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Tuple, Union

from uploader.files.errors import PathTraversalError, StorageError
from uploader.files.naming import add_postfix, parameterize, sanitize_folder
from uploader.files.schemas import FileKind, StoredFile, get_file_kind

logger = logging.getLogger(__name__)

FileSource = Union[str, Path, bytes, BinaryIO]


@contextmanager
def open_source(source: FileSource) -> Iterator[BinaryIO]:
    """Yield a readable binary stream for a path, bytes, or an open file.

    Open files are rewound when possible and left open for their owner.
    """
    if isinstance(source, (bytes, bytearray)):
        yield io.BytesIO(source)
    elif isinstance(source, (str, Path)):
        with open(source, "rb") as fh:
            yield fh
    else:
        if hasattr(source, "seek"):
            source.seek(0)
        yield source


class StorageBackend(ABC):
    """Abstract base class for storage backends.

    Args:
        thumb: Default thumbnail size ``(width, height)``.
    """

    thumb_folder_name = "thumb"

    def __init__(self, thumb: Tuple[int, int] = (100, 100)) -> None:
        self._thumb = thumb

    @property
    def thumb(self) -> Tuple[int, int]:
        """Default thumbnail ``(width, height)``."""
        return self._thumb

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier used in logs (``local``, ``s3``, ...)."""

    @abstractmethod
    def add_file(
        self,
        source: FileSource,
        key: str,
        same_name: bool = False,
        is_thumb: bool = False,
    ) -> StoredFile:
        """Persist *source* under *key*.

        Args:
            source: Local path, bytes or an open binary file.
            key: Storage-relative key, e.g. ``"photos/cat.png"``.
            same_name: Overwrite an existing key instead of picking a free
                       ``name_N.ext`` variant.
            is_thumb: The file is a thumbnail or version; it gets no
                      thumbnail slot of its own.

        Returns:
            The stored file.  Its key differs from *key* when a collision
            was resolved.

        Raises:
            PathTraversalError: If the key's folder escapes the storage root.
            NameResolutionConflict: If another writer created the resolved
                key between name resolution and the write.
            StorageError: On any other backend failure.
        """

    @abstractmethod
    def delete_file(self, key: str) -> None:
        """Delete *key*; deleting a missing key is a no-op."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return True if *key* is stored."""

    @abstractmethod
    def url_for(self, key: str) -> str:
        """Public URL of *key*."""

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def version_path(self, key: str, version: Optional[str] = None) -> str:
        """Key of a derived image stored beside *key*.

        ``version_path("photos/test.png")`` → ``"photos/thumb/test-png.png"``
        ``version_path("photos/test.png", "200x200")`` → ``"photos/thumb/test-png_200x200.png"``
        """
        folder, name = posixpath.split(key)
        ext = posixpath.splitext(name)[1]
        derived = f"{parameterize(name)}{ext}"
        if version:
            derived = add_postfix(derived, f"_{version.replace('?', '')}")
        return posixpath.join(folder, self.thumb_folder_name, derived)

    def valid_folder_path(self, path: Optional[str]) -> bool:
        """Return True if *path* stays inside the storage root."""
        try:
            sanitize_folder(path)
        except PathTraversalError:
            return False
        return True

    def _normalize_key(self, key: str) -> str:
        folder, name = posixpath.split(str(key).replace("\\", "/"))
        if not name or name in (".", ".."):
            raise StorageError(f"Invalid key: {key!r}")
        folder = sanitize_folder(folder)
        return posixpath.join(folder, name) if folder else name

    def _stored_file(self, key: str, size: int, is_thumb: bool) -> StoredFile:
        file_type = get_file_kind(key)
        thumb = None
        if file_type == FileKind.IMAGE and not is_thumb:
            thumb = self.version_path(key)
        return StoredFile(
            key=key,
            name=posixpath.basename(key),
            url=self.url_for(key),
            file_type=file_type,
            size=size,
            thumb=thumb,
        )
