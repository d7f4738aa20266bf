"""Tests for the temp materializer.

Remote fetches go through httpx.MockTransport; no network is used.
"""
import base64
import io
import os

import httpx
import pytest
from PIL import Image

from uploader.media import codec
from uploader.uploads.temp import TempMaterializer

from conftest import SVG, NonSeekableStream, make_png


def _client(handler, calls=None):
    def wrapped(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(str(request.url))
        return handler(request)
    return httpx.Client(transport=httpx.MockTransport(wrapped))


def _png_response(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=make_png(30, 30), headers={"content-type": "image/png"})


@pytest.fixture
def remote(tmp_path, transform):
    """Materializer whose http client is a MockTransport serving a PNG."""
    calls = []
    materializer = TempMaterializer(
        tmp_path / "tmp",
        public_url="http://testserver/media",
        storage_root=tmp_path / "media",
        http_client=_client(_png_response, calls),
        transform=transform,
    )
    materializer.calls = calls
    return materializer


class TestInlinePayload:
    def test_decodes_payload(self, materializer):
        payload = "data:image/png;base64," + base64.b64encode(make_png(5, 5)).decode()
        temp = materializer.materialize(payload, name="Pixel.PNG")
        assert temp.ok
        assert temp.origin == "inline"
        assert temp.path.endswith("pixel.png")
        with Image.open(temp.path) as image:
            assert image.size == (5, 5)

    def test_name_required(self, materializer):
        temp = materializer.materialize("data:image/png;base64,AAAA")
        assert temp.error == "Name is required"
        assert temp.error_kind == "materialization"
        assert temp.path is None

    def test_invalid_base64(self, materializer):
        temp = materializer.materialize("data:image/png;base64,@@@", name="a.png")
        assert temp.error_kind == "materialization"

    def test_format_checked(self, materializer):
        temp = materializer.materialize("data:text/plain;base64,aGVsbG8=", name="a.txt", formats="images")
        assert temp.error_kind == "format"

    def test_size_checked(self, materializer):
        payload = "data:image/png;base64," + base64.b64encode(make_png(5, 5)).decode()
        temp = materializer.materialize(payload, name="a.png", maximum=10)
        assert temp.error_kind == "size"


class TestRemoteUrl:
    def test_fetch(self, remote):
        temp = remote.materialize("https://cdn.test/img/Logo.png?v=1", formats="images")
        assert temp.ok
        assert temp.origin == "remote"
        assert temp.path.endswith("logo.png")
        assert remote.calls == ["https://cdn.test/img/Logo.png?v=1"]

    def test_format_rejected_before_fetch(self, remote):
        temp = remote.materialize("https://cdn.test/evil.exe", formats="images")
        assert temp.error_kind == "format"
        assert remote.calls == []

    def test_name_from_content_type(self, remote):
        temp = remote.materialize("https://cdn.test/download", formats="images")
        assert temp.ok
        assert temp.path.endswith("download.png")

    def test_declared_length_exceeds_maximum(self, remote, tmp_path):
        temp = remote.materialize("https://cdn.test/a.png", maximum=10)
        assert temp.error_kind == "size"
        assert not list((tmp_path / "tmp").iterdir())

    def test_streamed_size_exceeds_maximum(self, tmp_path):
        def chunked(request):
            return httpx.Response(200, content=iter([b"x" * 8, b"x" * 8]))

        materializer = TempMaterializer(tmp_path / "tmp", http_client=_client(chunked))
        temp = materializer.materialize("https://cdn.test/blob.bin", maximum=10)
        assert temp.error_kind == "size"
        assert not list((tmp_path / "tmp").iterdir())

    def test_http_error(self, tmp_path):
        materializer = TempMaterializer(
            tmp_path / "tmp", http_client=_client(lambda request: httpx.Response(404)),
        )
        temp = materializer.materialize("https://cdn.test/missing.png")
        assert temp.error_kind == "materialization"
        assert "404" in temp.error

    def test_timeout(self, tmp_path):
        def slow(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        materializer = TempMaterializer(tmp_path / "tmp", http_client=_client(slow))
        temp = materializer.materialize("https://cdn.test/slow.png")
        assert temp.error_kind == "materialization"
        assert "Timed out" in temp.error

    def test_own_storage_url_is_copied(self, remote, tmp_path):
        stored = tmp_path / "media" / "photos" / "a.png"
        stored.parent.mkdir(parents=True)
        stored.write_bytes(make_png(8, 8))
        temp = remote.materialize("http://testserver/media/photos/a.png")
        assert temp.ok
        assert temp.origin == "local"
        assert remote.calls == []
        assert stored.exists()

    def test_own_storage_url_traversal(self, remote):
        temp = remote.materialize("http://testserver/media/../secret.png")
        assert temp.error_kind == "path_traversal"

    def test_dimension_applied(self, remote):
        temp = remote.materialize("https://cdn.test/a.png", dimension="10x10")
        with Image.open(temp.path) as image:
            assert image.size == (10, 10)


class TestLocalSource:
    def test_copy_of_path(self, materializer, png_file):
        temp = materializer.materialize(str(png_file))
        assert temp.ok
        assert temp.origin == "local"
        assert temp.path != str(png_file)
        assert png_file.exists()

    def test_stream_needs_name(self, materializer):
        temp = materializer.materialize(io.BytesIO(b"hello"))
        assert temp.error == "Name is required"

    def test_stream_with_name(self, materializer, tmp_path):
        temp = materializer.materialize(io.BytesIO(b"hello"), name="notes.txt", path=tmp_path / "other")
        assert temp.ok
        assert temp.path == str(tmp_path / "other" / "notes.txt")

    def test_missing_path(self, materializer, tmp_path):
        temp = materializer.materialize(str(tmp_path / "nope.png"))
        assert temp.error_kind == "materialization"

    def test_empty_source(self, materializer):
        assert materializer.materialize("").error_kind == "empty_input"

    def test_unique_destination(self, materializer, png_file):
        first = materializer.materialize(str(png_file))
        second = materializer.materialize(str(png_file))
        assert first.path != second.path

    def test_non_seekable_stream(self, materializer):
        temp = materializer.materialize(NonSeekableStream(b"hello"), name="notes.txt")
        assert temp.ok, temp.error
        with open(temp.path, "rb") as fh:
            assert fh.read() == b"hello"

    def test_non_seekable_stream_over_limit(self, materializer):
        temp = materializer.materialize(NonSeekableStream(b"x" * 100), name="notes.txt", maximum=10)
        assert temp.error_kind == "size"
        assert list(materializer.tmp_dir.iterdir()) == []

    def test_unreadable_stream(self, materializer):
        stream = NonSeekableStream(error=OSError("broken pipe"))
        temp = materializer.materialize(stream, name="notes.txt")
        assert temp.error_kind == "materialization"
        assert list(materializer.tmp_dir.iterdir()) == []

    def test_svg_dimension_leaves_only_raster(self, materializer, tmp_path, monkeypatch):
        monkeypatch.setattr(codec, "rasterize_svg", lambda path: make_png(40, 20))
        src = tmp_path / "logo.svg"
        src.write_bytes(SVG)
        temp = materializer.materialize(str(src), dimension="20x10")
        assert temp.ok, temp.error
        assert temp.path.endswith(".jpg")
        assert [p.name for p in materializer.tmp_dir.iterdir()] == [os.path.basename(temp.path)]
