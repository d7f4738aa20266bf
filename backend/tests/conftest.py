"""Shared test fixtures and configuration for backend tests."""
import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from uploader.config import UploadSettings
from uploader.hooks.registry import HookRegistry
from uploader.main import app
from uploader.media.transform import ImageTransformService
from uploader.storage.local import LocalStorageBackend
from uploader.uploads.orchestrator import UploadOrchestrator
from uploader.uploads.temp import TempMaterializer


def make_png(width: int = 50, height: int = 50, color=(200, 30, 30)) -> bytes:
    """Encode a solid-colour PNG."""
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def cairosvg_available() -> bool:
    try:
        import cairosvg  # noqa: F401
    except (ImportError, OSError):
        return False
    return True


requires_cairosvg = pytest.mark.skipif(
    not cairosvg_available(), reason="cairosvg (and libcairo) not installed"
)

SVG = (
    b'<svg xmlns="http://www.w3.org/2000/svg" width="40" height="20">'
    b'<rect width="40" height="20" fill="#1e90ff"/></svg>'
)


@pytest.fixture
def png_file(tmp_path):
    """A 50x50 PNG on disk."""
    path = tmp_path / "src" / "photo.png"
    path.parent.mkdir()
    path.write_bytes(make_png())
    return path


@pytest.fixture
def hooks():
    return HookRegistry()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageBackend(tmp_path / "media", base_url="http://testserver/media")


@pytest.fixture
def transform(hooks):
    return ImageTransformService(hooks)


@pytest.fixture
def materializer(tmp_path, storage, transform):
    return TempMaterializer(
        tmp_path / "tmp",
        public_url="http://testserver/media",
        storage_root=storage.root,
        transform=transform,
    )


@pytest.fixture
def orchestrator(storage, transform, materializer, hooks):
    return UploadOrchestrator(
        storage, transform, materializer,
        settings=UploadSettings(version_workers=2),
        hooks=hooks,
    )


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app (lifespan not started)."""
    return TestClient(app)


class NonSeekableStream(io.RawIOBase):
    """Read-only stream that cannot seek or report its size, like a pipe."""

    def __init__(self, data: bytes = b"", error: Exception = None):
        self._buffer = io.BytesIO(data)
        self._error = error

    def readable(self):
        return True

    def seekable(self):
        return False

    def readinto(self, b):
        if self._error is not None:
            raise self._error
        chunk = self._buffer.read(len(b))
        b[:len(chunk)] = chunk
        return len(chunk)
