"""Local disk storage backend.

Files are stored under the configured root: ``{root}/{folder}/{name}``.
New files are created exclusively, so two uploads that resolved the same
free name cannot silently overwrite each other: the loser gets a
``NameResolutionConflict``.
"""
import logging
import posixpath
import shutil
from pathlib import Path
from typing import Tuple, Union

from uploader.files.errors import NameResolutionConflict, StorageError
from uploader.files.naming import resolve_unique_name
from uploader.files.schemas import StoredFile

from .base import FileSource, StorageBackend, open_source

logger = logging.getLogger(__name__)


class LocalStorageBackend(StorageBackend):
    """Stores files on the local filesystem.

    Args:
        root: Directory that holds every stored key.
        base_url: Public URL prefix the root is served under.
        thumb: Default thumbnail size.
    """

    def __init__(
        self,
        root: Union[str, Path],
        base_url: str = "",
        thumb: Tuple[int, int] = (100, 100),
    ) -> None:
        super().__init__(thumb)
        self._root = Path(root)
        self._base_url = base_url.rstrip("/")
        self._ensure_root()

    @property
    def name(self) -> str:
        return "local"

    @property
    def root(self) -> Path:
        return self._root

    def _ensure_root(self) -> None:
        """Ensure the storage root exists."""
        self._root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        """Filesystem path of *key*."""
        return self._root / self._normalize_key(key)

    def add_file(
        self,
        source: FileSource,
        key: str,
        same_name: bool = False,
        is_thumb: bool = False,
    ) -> StoredFile:
        key = self._normalize_key(key)
        folder, name = posixpath.split(key)
        directory = self._root / folder
        directory.mkdir(parents=True, exist_ok=True)

        if not same_name:
            name = resolve_unique_name(directory, name)
            key = posixpath.join(folder, name) if folder else name

        file_path = directory / name
        try:
            with open_source(source) as src, open(file_path, "wb" if same_name else "xb") as dst:
                shutil.copyfileobj(src, dst)
        except FileExistsError:
            logger.warning("Lost name race for %s", key)
            raise NameResolutionConflict(key) from None
        except OSError as exc:
            raise StorageError(f"Failed to save {key}: {exc}") from exc

        size = file_path.stat().st_size
        logger.info(f"Saved file: {file_path} ({size} bytes)")
        return self._stored_file(key, size, is_thumb)

    def delete_file(self, key: str) -> None:
        file_path = self.path_for(key)
        try:
            file_path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete {key}: {exc}") from exc
        logger.info(f"Deleted file: {file_path}")

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def url_for(self, key: str) -> str:
        return f"{self._base_url}/{key}" if self._base_url else key
