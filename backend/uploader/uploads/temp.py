"""Temporary-file materialization.

Turns one of three input shapes into a local file under the temp directory:

1. Inline payload — ``data:image/png;base64,iVBOR...`` (needs a ``name``)
2. Remote URL     — ``https://cdn.example.com/logo.png``
3. Local file     — a path, raw bytes, or an open binary stream

Every shape goes through the same format and size checks, and an optional
``dimension`` resize afterwards.  :meth:`TempMaterializer.materialize`
never raises: failures come back as a ``TempFile`` whose ``error`` is set.

Usage:
    materializer = TempMaterializer("/var/app/tmp")
    temp = materializer.materialize("https://cdn.example.com/logo.png", formats="images")
    if temp.error:
        ...
"""
import base64
import binascii
import io
import logging
import mimetypes
import os
import posixpath
import shutil
import stat
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Union
from urllib.parse import unquote, urlparse

import httpx

from uploader.files.errors import (
    EmptyInputError,
    MaterializationError,
    SizeError,
    UploadError,
)
from uploader.files.naming import fix_filename, sanitize_folder, unique_path
from uploader.files.schemas import TempFile, file_extension
from uploader.files.validation import ensure_format, validate_size
from uploader.media.transform import ImageTransformService

logger = logging.getLogger(__name__)

TempSource = Union[str, Path, bytes, BinaryIO]

_CHUNK_SIZE = 64 * 1024


def is_inline_payload(source) -> bool:
    return isinstance(source, str) and source.startswith("data:")


def is_remote_url(source) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


def stream_name(stream) -> Optional[str]:
    """Best-effort original name of an open stream (upload objects carry ``filename``)."""
    name = getattr(stream, "filename", None) or getattr(stream, "name", None)
    if isinstance(name, str) and name:
        return os.path.basename(name)
    return None


def is_seekable(stream) -> bool:
    seekable = getattr(stream, "seekable", None)
    if seekable is not None:
        return bool(seekable())
    return hasattr(stream, "seek")


def stream_size(stream: BinaryIO) -> Optional[int]:
    """Size in bytes of an open stream, without consuming it.

    Returns None for pipes and other streams that cannot be measured
    up front; those are measured while they are copied.
    """
    try:
        st = os.fstat(stream.fileno())
        if stat.S_ISREG(st.st_mode):
            return st.st_size
    except (AttributeError, OSError):
        pass
    if not is_seekable(stream):
        return None
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


class TempMaterializer:
    """Produces local temp files from remote, inline or local sources.

    Args:
        tmp_dir: Directory temp files are written to.
        public_url: Public URL of this system's own storage; matching URLs
                    are copied from ``storage_root`` instead of fetched.
        storage_root: Local directory behind ``public_url``.
        http_client: Client used for remote fetches.  A short-lived client
                     is created per fetch when omitted.
        timeout: Remote fetch timeout in seconds.
        transform: Service applying the optional ``dimension`` resize.
    """

    def __init__(
        self,
        tmp_dir: Union[str, Path],
        public_url: Optional[str] = None,
        storage_root: Union[str, Path, None] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
        transform: Optional[ImageTransformService] = None,
    ) -> None:
        self.tmp_dir = Path(tmp_dir)
        self.public_url = public_url.rstrip("/") if public_url else None
        self.storage_root = Path(storage_root) if storage_root else None
        self.timeout = timeout
        self.transform = transform or ImageTransformService()
        self._http_client = http_client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def materialize(
        self,
        source: TempSource,
        name: Optional[str] = None,
        formats: str = "*",
        maximum: Optional[int] = None,
        dimension: Optional[str] = None,
        path: Union[str, Path, None] = None,
        transient: bool = False,
    ) -> TempFile:
        """Materialize *source* as a local file.

        Args:
            source: ``data:`` payload, ``http(s)://`` URL, local path, bytes or
                    open binary stream.
            name: File name to use; required for inline payloads and bytes.
            formats: Allowed extensions or groups (see ``validate_format``).
            maximum: Maximum size in bytes.
            dimension: Optional resize token applied to images, e.g. ``"20x30"``.
            path: Directory to write into instead of the default temp dir.
            transient: Mark the result for deletion by its consumer.

        Returns:
            A ``TempFile``; check ``error`` before using ``path``.
        """
        try:
            return self.materialize_or_raise(
                source, name=name, formats=formats, maximum=maximum,
                dimension=dimension, path=path, transient=transient,
            )
        except UploadError as exc:
            logger.warning("Temp upload failed (%s): %s", exc.kind, exc.message)
            return TempFile.failure(exc)

    def materialize_or_raise(
        self,
        source: TempSource,
        name: Optional[str] = None,
        formats: str = "*",
        maximum: Optional[int] = None,
        dimension: Optional[str] = None,
        path: Union[str, Path, None] = None,
        transient: bool = False,
    ) -> TempFile:
        """Same as :meth:`materialize` but raises ``UploadError`` subclasses."""
        if source is None or (isinstance(source, (str, bytes)) and not source):
            raise EmptyInputError()

        tmp_dir = Path(path) if path else self.tmp_dir
        tmp_dir.mkdir(parents=True, exist_ok=True)

        if is_inline_payload(source):
            temp = self._from_inline(source, name, formats, maximum, tmp_dir)
        elif is_remote_url(source):
            temp = self._from_url(source, name, formats, maximum, tmp_dir)
        else:
            temp = self._from_local(source, name, formats, maximum, tmp_dir)
        temp.transient = transient

        if dimension:
            try:
                resized = self.transform.resize_upload(temp.path, dimension)
            except UploadError:
                os.remove(temp.path)
                raise
            if resized != temp.path:
                # vector sources are rasterised to a new file
                os.remove(temp.path)
                temp.path = resized
        logger.info("Materialized %s file %s", temp.origin, temp.path)
        return temp

    # ------------------------------------------------------------------
    # Input shapes
    # ------------------------------------------------------------------

    def _from_inline(
        self,
        payload: str,
        name: Optional[str],
        formats: str,
        maximum: Optional[int],
        tmp_dir: Path,
    ) -> TempFile:
        if not name:
            raise MaterializationError("Name is required")
        ensure_format(name, formats)

        _, sep, body = payload.partition(";base64,")
        if not sep:
            raise MaterializationError("Inline payload must be base64 encoded")
        try:
            data = base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MaterializationError(f"Invalid base64 payload: {exc}") from exc

        validate_size(len(data), maximum)
        destination = unique_path(tmp_dir / fix_filename(name))
        with open(destination, "wb") as fh:
            fh.write(data)
        return TempFile(path=destination, origin="inline")

    def _from_url(
        self,
        url: str,
        name: Optional[str],
        formats: str,
        maximum: Optional[int],
        tmp_dir: Path,
    ) -> TempFile:
        url_name = unquote(posixpath.basename(urlparse(url).path))

        # Reject before any transfer when the URL already tells the format.
        if file_extension(url_name):
            ensure_format(url_name, formats)

        own_file = self._own_storage_path(url)
        if own_file is not None:
            logger.debug("URL %s points into local storage: %s", url, own_file)
            return self._from_local(own_file, name or url_name, formats, maximum, tmp_dir)

        try:
            with self._client() as client:
                with client.stream("GET", url, timeout=self.timeout, follow_redirects=True) as response:
                    response.raise_for_status()
                    declared = response.headers.get("content-length")
                    if declared and declared.isdigit():
                        validate_size(int(declared), maximum)

                    final_name = name or url_name
                    if not file_extension(final_name):
                        content_type = response.headers.get("content-type", "").split(";")[0].strip()
                        final_name = (final_name or "download") + (mimetypes.guess_extension(content_type) or "")
                    ensure_format(final_name, formats)

                    destination = unique_path(tmp_dir / fix_filename(final_name))
                    self._write_stream(response.iter_bytes(_CHUNK_SIZE), destination, maximum)
        except httpx.TimeoutException as exc:
            raise MaterializationError(f"Timed out fetching {url}") from exc
        except httpx.HTTPStatusError as exc:
            raise MaterializationError(
                f"Failed to fetch {url}: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise MaterializationError(f"Failed to fetch {url}: {exc}") from exc

        return TempFile(path=destination, origin="remote")

    def _from_local(
        self,
        source: Union[str, Path, bytes, BinaryIO],
        name: Optional[str],
        formats: str,
        maximum: Optional[int],
        tmp_dir: Path,
    ) -> TempFile:
        if isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(source)

        if isinstance(source, (str, Path)):
            source = Path(source)
            if not source.is_file():
                raise MaterializationError(f"File not found: {source.name}")
            final_name = name or source.name
            size = source.stat().st_size
        else:
            final_name = name or stream_name(source)
            size = stream_size(source)

        if not final_name:
            raise MaterializationError("Name is required")
        ensure_format(final_name, formats)
        if size is not None:
            validate_size(size, maximum)

        destination = unique_path(tmp_dir / fix_filename(final_name))
        try:
            if isinstance(source, Path):
                shutil.copyfile(source, destination)
            else:
                if is_seekable(source):
                    source.seek(0)
                # unknown sizes are enforced while copying
                self._write_stream(iter(lambda: source.read(_CHUNK_SIZE), b""), destination, maximum)
        except OSError as exc:
            raise MaterializationError(f"Cannot read {final_name}: {exc}") from exc
        return TempFile(path=destination, origin="local")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _client(self) -> Iterator[httpx.Client]:
        if self._http_client is not None:
            yield self._http_client
        else:
            with httpx.Client(timeout=self.timeout) as client:
                yield client

    def _own_storage_path(self, url: str) -> Optional[Path]:
        """Local path of a URL served from this system's storage, else None."""
        if not self.public_url or self.storage_root is None:
            return None
        if not url.startswith(self.public_url + "/"):
            return None
        relative = unquote(urlparse(url[len(self.public_url):]).path).lstrip("/")
        folder, filename = posixpath.split(relative)
        return self.storage_root / sanitize_folder(folder) / filename

    @staticmethod
    def _write_stream(chunks, destination: str, maximum: Optional[int]) -> None:
        written = 0
        try:
            with open(destination, "wb") as fh:
                for chunk in chunks:
                    written += len(chunk)
                    if maximum is not None and written > maximum:
                        raise SizeError(written, maximum)
                    fh.write(chunk)
        except (UploadError, httpx.HTTPError, OSError):
            Path(destination).unlink(missing_ok=True)
            raise
