"""End-to-end tests for UploadOrchestrator.upload_file."""
import base64
import io
import threading
from unittest.mock import MagicMock

import pytest
from PIL import Image

from uploader.config import UploadSettings, UploaderConfig
from uploader.files.errors import NameResolutionConflict
from uploader.files.schemas import FileKind, UploadOptions
from uploader.hooks.registry import HookEvent
from uploader.media import codec
from uploader.storage.local import LocalStorageBackend
from uploader.uploads.orchestrator import UploadOrchestrator, create_orchestrator

from conftest import SVG, NonSeekableStream, make_png


def _files(root):
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def _size(path):
    with Image.open(path) as image:
        return image.size


class TestUploadFile:
    """Happy paths."""

    def test_image_with_versions_and_thumbnail(self, orchestrator, storage, png_file):
        result = orchestrator.upload_file(
            str(png_file), UploadOptions(folder="photos", versions="20x20,10x10"),
        )
        assert result.ok, result.error
        assert result.file.key == "photos/photo.png"
        assert result.file.file_type == FileKind.IMAGE
        assert [v.key for v in result.versions] == [
            "photos/thumb/photo-png_20x20.png",
            "photos/thumb/photo-png_10x10.png",
        ]
        assert result.thumb.key == "photos/thumb/photo-png.png"
        assert result.warnings == []

        assert _size(storage.path_for("photos/photo.png")) == (50, 50)
        assert _size(storage.path_for("photos/thumb/photo-png_20x20.png")) == (20, 20)
        assert _size(storage.path_for("photos/thumb/photo-png_10x10.png")) == (10, 10)
        assert _size(storage.path_for("photos/thumb/photo-png.png")) == (100, 100)
        assert len(_files(storage.root)) == 4

    def test_source_kept_by_default(self, orchestrator, png_file):
        orchestrator.upload_file(str(png_file))
        assert png_file.exists()

    def test_remove_source(self, orchestrator, png_file):
        result = orchestrator.upload_file(str(png_file), UploadOptions(remove_source=True))
        assert result.ok
        assert not png_file.exists()

    def test_temp_files_cleaned_up(self, orchestrator, tmp_path, png_file):
        orchestrator.upload_file(png_file.read_bytes(), UploadOptions(filename="a.png", versions="20x20"))
        assert _files(tmp_path / "tmp") == []

    def test_name_collision_gets_counter(self, orchestrator, png_file):
        first = orchestrator.upload_file(str(png_file))
        second = orchestrator.upload_file(str(png_file))
        assert first.file.key == "photo.png"
        assert second.file.key == "photo_1.png"

    def test_same_name_overwrites(self, orchestrator, png_file):
        orchestrator.upload_file(str(png_file))
        result = orchestrator.upload_file(str(png_file), UploadOptions(same_name=True))
        assert result.file.key == "photo.png"

    def test_filename_option_is_normalized(self, orchestrator, png_file):
        result = orchestrator.upload_file(str(png_file), UploadOptions(filename="My Photo.PNG"))
        assert result.file.key == "my-photo.png"

    def test_stream_source(self, orchestrator):
        stream = io.BytesIO(b"hello world")
        result = orchestrator.upload_file(stream, UploadOptions(filename="notes.txt", folder="docs"))
        assert result.ok
        assert result.file.key == "docs/notes.txt"
        assert result.file.file_type == FileKind.DOCUMENT
        assert result.thumb is None

    def test_inline_payload(self, orchestrator):
        payload = "data:image/png;base64," + base64.b64encode(make_png(12, 12)).decode()
        result = orchestrator.upload_file(payload, UploadOptions(filename="pixel.png", generate_thumb=False))
        assert result.ok
        assert result.file.key == "pixel.png"

    def test_dimension_resizes_copy_only(self, orchestrator, storage, png_file):
        result = orchestrator.upload_file(str(png_file), UploadOptions(dimension="30x20", generate_thumb=False))
        assert _size(storage.path_for(result.file.key)) == (30, 20)
        assert _size(png_file) == (50, 50)

    def test_custom_thumb_size(self, orchestrator, storage, png_file):
        result = orchestrator.upload_file(str(png_file), UploadOptions(thumb_size="16x12"))
        assert _size(storage.path_for(result.thumb.key)) == (16, 12)

    def test_svg_upload_stores_jpg_derivatives(self, orchestrator, tmp_path, monkeypatch):
        monkeypatch.setattr(codec, "rasterize_svg", lambda path: make_png(40, 20))
        src = tmp_path / "logo.svg"
        src.write_bytes(SVG)
        result = orchestrator.upload_file(str(src), UploadOptions(versions="20x10"))
        assert result.file.key == "logo.svg"
        assert result.versions[0].key == "thumb/logo-svg_20x10.jpg"
        assert result.thumb.key == "thumb/logo-svg.jpg"

    def test_non_seekable_stream(self, orchestrator, storage):
        stream = NonSeekableStream(make_png(10, 10))
        result = orchestrator.upload_file(stream, UploadOptions(filename="pipe.png", generate_thumb=False))
        assert result.ok, result.error
        assert _size(storage.path_for(result.file.key)) == (10, 10)

    def test_versions_sharing_a_key_render_once(self, orchestrator, storage, png_file):
        result = orchestrator.upload_file(
            str(png_file), UploadOptions(versions="20x20,20?x20?", generate_thumb=False),
        )
        assert [v.key for v in result.versions] == ["thumb/photo-png_20x20.png"]
        assert result.warnings == []
        assert _size(storage.path_for("thumb/photo-png_20x20.png")) == (20, 20)


class TestRejections:
    """Validation failures persist nothing."""

    def test_size_rejection_persists_nothing(self, orchestrator, storage, png_file):
        result = orchestrator.upload_file(str(png_file), UploadOptions(maximum=10, versions="20x20"))
        assert not result.ok
        assert result.error_kind == "size"
        assert result.file is None
        assert _files(storage.root) == []

    def test_declared_size_counts(self, orchestrator, storage, png_file):
        result = orchestrator.upload_file(str(png_file), UploadOptions(maximum=10_000, file_size=20_000))
        assert result.error_kind == "size"
        assert _files(storage.root) == []

    def test_default_maximum_from_settings(self, storage, transform, materializer, png_file):
        orchestrator = UploadOrchestrator(
            storage, transform, materializer, settings=UploadSettings(max_size_mb=0.00001),
        )
        assert orchestrator.upload_file(str(png_file)).error_kind == "size"

    def test_format_rejection(self, orchestrator, storage, png_file):
        result = orchestrator.upload_file(str(png_file), UploadOptions(formats="documents"))
        assert result.error_kind == "format"
        assert result.error == "Invalid file format (documents)"
        assert _files(storage.root) == []

    def test_path_traversal(self, orchestrator, storage, png_file):
        result = orchestrator.upload_file(str(png_file), UploadOptions(folder="../../etc"))
        assert result.error_kind == "path_traversal"
        assert _files(storage.root) == []

    @pytest.mark.parametrize("source", [None, "", "   ", b""])
    def test_empty_input(self, orchestrator, source):
        result = orchestrator.upload_file(source)
        assert result.error == "File is empty"
        assert result.error_kind == "empty_input"

    def test_empty_stream(self, orchestrator):
        result = orchestrator.upload_file(io.BytesIO(b""), UploadOptions(filename="a.txt"))
        assert result.error_kind == "empty_input"

    def test_unreadable_stream(self, orchestrator, storage):
        stream = NonSeekableStream(error=OSError("broken pipe"))
        result = orchestrator.upload_file(stream, UploadOptions(filename="a.txt"))
        assert result.error_kind == "materialization"
        assert _files(storage.root) == []

    def test_invalid_dimension_aborts(self, orchestrator, storage, png_file):
        result = orchestrator.upload_file(str(png_file), UploadOptions(dimension="axb"))
        assert result.error_kind == "transform"
        assert _files(storage.root) == []

    def test_unsafe_content_when_scanning(self, storage, transform, materializer):
        orchestrator = UploadOrchestrator(
            storage, transform, materializer, settings=UploadSettings(scan_content=True),
        )
        result = orchestrator.upload_file(b"<svg onload='x()'></svg>", UploadOptions(filename="a.txt"))
        assert result.error_kind == "unsafe_content"
        assert _files(storage.root) == []

    def test_caller_options_not_mutated(self, orchestrator, hooks, png_file):
        hooks.register(HookEvent.BEFORE_UPLOAD, lambda ctx: setattr(ctx.options, "folder", "forced"))
        options = UploadOptions(folder="mine")
        result = orchestrator.upload_file(str(png_file), options)
        assert result.file.key == "forced/photo.png"
        assert options.folder == "mine"


class TestSecondaryFailures:
    """Version and thumbnail failures do not fail the upload."""

    def test_bad_version_token_is_a_warning(self, orchestrator, png_file):
        result = orchestrator.upload_file(str(png_file), UploadOptions(versions="20x20,axb"))
        assert result.ok
        assert [v.key for v in result.versions] == ["thumb/photo-png_20x20.png"]
        assert len(result.warnings) == 1
        assert "axb" in result.warnings[0]

    def test_undecodable_image_keeps_primary(self, orchestrator, storage, tmp_path):
        src = tmp_path / "broken.png"
        src.write_bytes(b"\x89PNG\r\n\x1a\nnot an image")
        result = orchestrator.upload_file(str(src), UploadOptions(versions="20x20"))
        assert result.ok
        assert result.file.key == "broken.png"
        assert result.versions == []
        assert result.thumb is None
        assert len(result.warnings) == 2
        assert storage.exists("broken.png")


class TestTemporalUploads:
    def test_scheduled(self, storage, transform, materializer, png_file):
        scheduler = MagicMock()
        orchestrator = UploadOrchestrator(storage, transform, materializer, scheduler=scheduler)
        result = orchestrator.upload_file(str(png_file), UploadOptions(temporal_time=60, generate_thumb=False))
        scheduler.schedule.assert_called_once_with("photo.png", 60, backend="local")
        assert result.scheduled_deletion is not None

    def test_without_scheduler_is_a_warning(self, orchestrator, png_file):
        result = orchestrator.upload_file(str(png_file), UploadOptions(temporal_time=60))
        assert result.ok
        assert result.scheduled_deletion is None
        assert any("scheduler" in w for w in result.warnings)

    def test_scheduler_failure_is_a_warning(self, storage, transform, materializer, png_file):
        scheduler = MagicMock()
        scheduler.schedule.side_effect = RuntimeError("db locked")
        orchestrator = UploadOrchestrator(storage, transform, materializer, scheduler=scheduler)
        result = orchestrator.upload_file(str(png_file), UploadOptions(temporal_time=5, generate_thumb=False))
        assert result.ok
        assert result.file.key == "photo.png"
        assert result.scheduled_deletion is None
        assert any("db locked" in w for w in result.warnings)
        assert storage.exists("photo.png")


class TestHooks:
    def test_after_upload_sees_result(self, orchestrator, hooks, png_file):
        seen = []
        hooks.register(HookEvent.AFTER_UPLOAD, lambda ctx: seen.append(ctx.result.file.key))
        orchestrator.upload_file(str(png_file), UploadOptions(generate_thumb=False))
        assert seen == ["photo.png"]


class TestNameRace:
    """resolve_unique_name is read-then-write.

    Two uploads can resolve the same free name.  Exclusive creation in the
    backend makes the loser fail with NameResolutionConflict instead of
    overwriting the winner.
    """

    def test_lost_race_is_reported_not_overwritten(self, storage, transform, materializer, png_file, monkeypatch):
        orchestrator = UploadOrchestrator(storage, transform, materializer)
        orchestrator.upload_file(str(png_file), UploadOptions(generate_thumb=False))
        original = storage.path_for("photo.png").read_bytes()

        # Simulate the other writer winning between name resolution and write.
        monkeypatch.setattr("uploader.storage.local.resolve_unique_name", lambda directory, name: name)
        other = png_file.with_name("other.png")
        other.write_bytes(make_png(10, 10))
        result = orchestrator.upload_file(str(other), UploadOptions(filename="photo.png"))

        assert result.error_kind == NameResolutionConflict.kind
        assert storage.path_for("photo.png").read_bytes() == original

    def test_concurrent_uploads_never_share_a_key(self, storage, transform, materializer, png_file):
        orchestrator = UploadOrchestrator(storage, transform, materializer)
        results = []
        lock = threading.Lock()

        def worker():
            result = orchestrator.upload_file(str(png_file), UploadOptions(generate_thumb=False))
            with lock:
                results.append(result)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        keys = [r.file.key for r in results if r.ok]
        assert len(keys) == len(set(keys))
        assert all(r.ok or r.error_kind == "name_conflict" for r in results)


class TestCreateOrchestrator:
    def test_wires_local_backend(self, tmp_path):
        config = UploaderConfig()
        config.storage.root = str(tmp_path / "media")
        config.uploads.tmp_dir = str(tmp_path / "tmp")
        orchestrator = create_orchestrator(config)
        assert isinstance(orchestrator.storage, LocalStorageBackend)
        assert orchestrator.materializer.storage_root == tmp_path / "media"
        assert orchestrator.settings is config.uploads
