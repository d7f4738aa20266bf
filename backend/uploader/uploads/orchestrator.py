"""Upload orchestrator: normalize → validate → persist → derive → clean up.

``UploadOrchestrator.upload_file`` is the single entry point of the upload
pipeline.  It always returns an ``UploadResult``:

- validation failures return before anything is persisted;
- once the primary file is stored, version and thumbnail failures are
  recorded as warnings and the upload still succeeds;
- temporary files created along the way are removed before returning,
  and the caller's own source only when ``remove_source`` is set.

Versions are rendered in parallel by a bounded thread pool into a private
work directory, so no version ever rewrites the source or another version.
"""
import logging
import os
import posixpath
import shutil
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import BinaryIO, List, Optional, Protocol, Tuple, Union

import httpx

from uploader.config import UploaderConfig, UploadSettings
from uploader.files.errors import (
    EmptyInputError,
    MaterializationError,
    StorageError,
    UnsafeContentError,
    UploadError,
)
from uploader.files.naming import fix_filename, fix_slash, sanitize_folder, unique_path
from uploader.files.schemas import (
    FileKind,
    StoredFile,
    UploadOptions,
    UploadResult,
    file_extension,
)
from uploader.files.validation import ensure_format, find_unsafe_content, validate_size
from uploader.hooks.registry import (
    AfterUploadContext,
    BeforeUploadContext,
    HookEvent,
    HookRegistry,
)
from uploader.media.geometry import format_normalize, is_vector, parse_size
from uploader.media.transform import ImageTransformService
from uploader.storage.base import StorageBackend
from uploader.storage.factory import build_storage_backend
from uploader.storage.local import LocalStorageBackend

from .temp import TempMaterializer, is_inline_payload, is_remote_url, is_seekable, stream_name

logger = logging.getLogger(__name__)

UploadSource = Union[str, Path, bytes, BinaryIO]


class DeletionScheduler(Protocol):
    """Anything that can schedule a stored key for later deletion."""

    def schedule(self, key: str, delay_seconds: float, backend: str = "local"): ...


class UploadOrchestrator:
    """Runs uploads through the pipeline.

    Args:
        storage: Backend the primary file and its derivatives are stored in.
        transform: Image transform service.
        materializer: Temp materializer for URLs and inline payloads; its
                      ``tmp_dir`` also holds spooled streams and work files.
        settings: Upload defaults (size limit, worker count, scanning).
        hooks: Registry fired with ``before_upload`` and ``after_upload``.
        scheduler: Deletion scheduler for temporal uploads.
    """

    def __init__(
        self,
        storage: StorageBackend,
        transform: ImageTransformService,
        materializer: TempMaterializer,
        settings: Optional[UploadSettings] = None,
        hooks: Optional[HookRegistry] = None,
        scheduler: Optional[DeletionScheduler] = None,
    ) -> None:
        self.storage = storage
        self.transform = transform
        self.materializer = materializer
        self.settings = settings or UploadSettings()
        self.hooks = hooks or HookRegistry()
        self.scheduler = scheduler

    @property
    def tmp_dir(self) -> Path:
        return self.materializer.tmp_dir

    def upload_file(
        self,
        source: UploadSource,
        options: Optional[UploadOptions] = None,
    ) -> UploadResult:
        """Upload *source* and generate its derivatives.

        Args:
            source: Local path, ``http(s)://`` URL, ``data:`` payload, bytes
                    or an open binary stream.
            options: Per-call options; the caller's object is not modified.

        Returns:
            An ``UploadResult``.  Check ``error`` (or ``ok``) first.
        """
        options = options.model_copy() if options else UploadOptions()
        transient: List[str] = []
        try:
            return self._run(source, options, transient)
        except UploadError as exc:
            logger.info("Upload failed (%s): %s", exc.kind, exc.message)
            return UploadResult.failure(exc)
        finally:
            _remove_files(transient)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _run(self, source: UploadSource, options: UploadOptions, transient: List[str]) -> UploadResult:
        maximum = options.maximum if options.maximum is not None else self.settings.max_size_bytes

        # NORMALIZE_INPUT
        source_path, source_name, caller_path = self._normalize_input(source, options, maximum, transient)
        if options.dimension:
            source_path = self._resize_source(source_path, options.dimension, transient)

        ctx = self.hooks.run(
            HookEvent.BEFORE_UPLOAD,
            BeforeUploadContext(options=options, source_path=source_path),
        )
        source_path = ctx.source_path
        filename = fix_filename(options.filename or source_name)
        if is_vector(filename) and not is_vector(source_path):
            filename = format_normalize(filename)

        # VALIDATE_PATH
        folder = sanitize_folder(options.folder)

        # VALIDATE_FORMAT
        ensure_format(filename, options.formats)
        if file_extension(source_path) != file_extension(filename):
            ensure_format(source_path, options.formats)

        # VALIDATE_SIZE
        measured = os.path.getsize(source_path)
        validate_size(max(measured, options.file_size or 0), maximum)

        if self.settings.scan_content:
            self._scan(source_path)

        # PERSIST_PRIMARY
        key = fix_slash(posixpath.join(folder, filename))
        stored = self._persist(source_path, key, options.same_name)
        result = UploadResult(file=stored)
        logger.info("Uploaded %s (%d bytes)", stored.key, stored.size)

        # GENERATE_VERSIONS / GENERATE_THUMBNAIL
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix="derived-", dir=self.tmp_dir))
        try:
            if stored.file_type == FileKind.IMAGE and options.versions:
                self._generate_versions(source_path, stored, options.versions, work_dir, result)
            if options.generate_thumb and stored.thumb:
                self._generate_thumbnail(source_path, stored, options.thumb_size, work_dir, result)
        finally:
            # CLEANUP
            shutil.rmtree(work_dir, ignore_errors=True)

        if options.remove_source and caller_path and os.path.exists(caller_path):
            os.remove(caller_path)
            logger.debug("Removed source file %s", caller_path)

        if options.temporal_time > 0:
            self._schedule_deletion(stored.key, options.temporal_time, result)

        self.hooks.run(
            HookEvent.AFTER_UPLOAD,
            AfterUploadContext(options=options, source_path=source_path, result=result),
        )
        return result

    def _normalize_input(
        self,
        source: UploadSource,
        options: UploadOptions,
        maximum: int,
        transient: List[str],
    ) -> Tuple[str, str, Optional[str]]:
        """Return ``(local path, original name, caller-owned path or None)``."""
        if source is None or (isinstance(source, str) and not source.strip()):
            raise EmptyInputError()
        if isinstance(source, (bytes, bytearray)) and not source:
            raise EmptyInputError()

        if is_inline_payload(source) or is_remote_url(source):
            temp = self.materializer.materialize_or_raise(
                source, name=options.filename, formats=options.formats,
                maximum=maximum, transient=True,
            )
            transient.append(temp.path)
            return temp.path, os.path.basename(temp.path), None

        if isinstance(source, (str, Path)):
            path = str(source)
            if not os.path.isfile(path):
                raise EmptyInputError(f"File not found: {os.path.basename(path)}")
            if os.path.getsize(path) == 0:
                raise EmptyInputError()
            return path, os.path.basename(path), path

        if isinstance(source, (bytes, bytearray)):
            name = options.filename or "file"
        elif hasattr(source, "read"):
            name = options.filename or stream_name(source) or "file"
        else:
            raise EmptyInputError(f"Unsupported upload source: {type(source).__name__}")

        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        spooled = unique_path(self.tmp_dir / fix_filename(name))
        transient.append(spooled)
        try:
            with open(spooled, "wb") as fh:
                if isinstance(source, (bytes, bytearray)):
                    fh.write(source)
                else:
                    if is_seekable(source):
                        source.seek(0)
                    shutil.copyfileobj(source, fh)
        except OSError as exc:
            raise MaterializationError(f"Cannot read upload {name}: {exc}") from exc
        if os.path.getsize(spooled) == 0:
            raise EmptyInputError()
        return spooled, name, None

    def _resize_source(self, source_path: str, dimension: str, transient: List[str]) -> str:
        """Apply the ``dimension`` resize to a transient copy of the source."""
        self.tmp_dir.mkdir(parents=True, exist_ok=True)
        copy = unique_path(self.tmp_dir / f"resized_{os.path.basename(source_path)}")
        shutil.copyfile(source_path, copy)
        transient.append(copy)
        resized = self.transform.resize_upload(copy, dimension, replace=True)
        if resized != copy:
            transient.append(resized)
        return resized

    def _scan(self, source_path: str) -> None:
        with open(source_path, "rb") as fh:
            pattern = find_unsafe_content(fh.read())
        if pattern:
            logger.warning("Unsafe content %s in %s", pattern, source_path)
            raise UnsafeContentError(pattern)

    def _persist(self, source_path: str, key: str, same_name: bool) -> StoredFile:
        try:
            return self.storage.add_file(source_path, key, same_name=same_name)
        except UploadError:
            raise
        except OSError as exc:
            raise StorageError(f"Failed to store {key}: {exc}") from exc

    # ------------------------------------------------------------------
    # Derived images
    # ------------------------------------------------------------------

    def _generate_versions(
        self,
        source_path: str,
        stored: StoredFile,
        versions: str,
        work_dir: Path,
        result: UploadResult,
    ) -> None:
        # Tokens that map to the same version key are rendered once so no
        # two workers write the same stored file.
        by_key = {}
        for token in versions.replace(" ", "").split(","):
            if token:
                by_key.setdefault(self.storage.version_path(stored.key, token), token)
        tokens = list(by_key.values())
        if not tokens:
            return
        workers = min(self.settings.version_workers, len(tokens))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="version") as pool:
            futures = [
                (token, pool.submit(self._render_version, source_path, stored.key, token, work_dir / str(i)))
                for i, token in enumerate(tokens)
            ]
            for token, future in futures:
                try:
                    result.versions.append(future.result())
                except UploadError as exc:
                    logger.warning("Version %s of %s failed: %s", token, stored.key, exc.message)
                    result.warnings.append(f"Version {token} failed: {exc.message}")

    def _render_version(self, source_path: str, key: str, token: str, work_dir: Path) -> StoredFile:
        work_dir.mkdir(parents=True, exist_ok=True)
        output = work_dir / os.path.basename(format_normalize(source_path))
        rendered = self.transform.resize_upload(source_path, token, replace=False, output_path=output)
        version_key = format_normalize(self.storage.version_path(key, token))
        stored = self.storage.add_file(rendered, version_key, is_thumb=True, same_name=True)
        logger.debug("Stored version %s", stored.key)
        return stored

    def _generate_thumbnail(
        self,
        source_path: str,
        stored: StoredFile,
        thumb_size: Optional[str],
        work_dir: Path,
        result: UploadResult,
    ) -> None:
        try:
            dims = parse_size(thumb_size) if thumb_size else self.storage.thumb
            result.thumb = self.transform.generate_thumbnail(
                source_path, stored.key, dims, self.storage, work_dir=work_dir,
            )
        except ValueError as exc:
            logger.warning("Invalid thumbnail size %r: %s", thumb_size, exc)
            result.warnings.append(f"Thumbnail failed: {exc}")
        except UploadError as exc:
            logger.warning("Thumbnail of %s failed: %s", stored.key, exc.message)
            result.warnings.append(f"Thumbnail failed: {exc.message}")

    def _schedule_deletion(self, key: str, seconds: float, result: UploadResult) -> None:
        if self.scheduler is None:
            logger.warning("No deletion scheduler configured; %s will not expire", key)
            result.warnings.append("Temporal upload requested but no scheduler is configured")
            return
        try:
            self.scheduler.schedule(key, seconds, backend=self.storage.name)
        except Exception as exc:
            # The primary file is already stored; report instead of failing.
            logger.warning("Failed to schedule deletion of %s: %s", key, exc)
            result.warnings.append(f"Scheduling deletion failed: {exc}")
            return
        result.scheduled_deletion = time.time() + seconds


def create_orchestrator(
    config: UploaderConfig,
    hooks: Optional[HookRegistry] = None,
    scheduler: Optional[DeletionScheduler] = None,
    http_client: Optional[httpx.Client] = None,
) -> UploadOrchestrator:
    """Wire backend, transform service and materializer from *config*."""
    hooks = hooks or HookRegistry()
    storage = build_storage_backend(config, hooks)
    transform = ImageTransformService(hooks, default_gravity=config.uploads.default_gravity)
    materializer = TempMaterializer(
        config.uploads.tmp_dir,
        public_url=config.storage.base_url if isinstance(storage, LocalStorageBackend) else None,
        storage_root=config.storage.root if isinstance(storage, LocalStorageBackend) else None,
        http_client=http_client,
        timeout=config.uploads.fetch_timeout_seconds,
        transform=transform,
    )
    return UploadOrchestrator(
        storage, transform, materializer,
        settings=config.uploads, hooks=hooks, scheduler=scheduler,
    )


def _remove_files(paths: List[str]) -> None:
    for path in paths:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove temp file %s: %s", path, exc)
