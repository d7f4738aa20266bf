"""Tests for format, size and content validation."""
import pytest

from uploader.files.errors import FormatError, SizeError, format_size
from uploader.files.schemas import FileKind, file_extension, get_file_kind
from uploader.files.validation import (
    allowed_extensions,
    ensure_format,
    find_unsafe_content,
    validate_format,
    validate_size,
)


class TestFormat:
    def test_wildcard_allows_everything(self):
        assert validate_format("anything.exe", "*")
        assert validate_format("no-extension", "")

    def test_case_insensitive(self):
        assert validate_format("PHOTO.JPG", "jpg")
        assert validate_format("photo.jpg", "JPG,png")

    def test_groups(self):
        assert validate_format("clip.mp4", "videos")
        assert validate_format("logo.svg", "image")
        assert not validate_format("report.pdf", "images")

    def test_mixed_groups_and_extensions(self):
        assert validate_format("report.pdf", "images, pdf")
        assert validate_format("photo.webp", "images,pdf")
        assert not validate_format("archive.zip", "images,pdf")

    def test_query_string_ignored(self):
        assert validate_format("https://cdn.test/a/logo.PNG?v=2#top", "images")

    def test_allowed_extensions(self):
        assert allowed_extensions("*") is None
        assert allowed_extensions("jpg,.png") == {"jpg", "png"}

    def test_ensure_format_raises(self):
        with pytest.raises(FormatError) as exc_info:
            ensure_format("evil.exe", "images")
        assert exc_info.value.status_code == 415
        assert exc_info.value.message == "Invalid file format (images)"


class TestSize:
    def test_within_limit(self):
        validate_size(100, 100)
        validate_size(10 ** 12, None)

    def test_exceeds_limit(self):
        with pytest.raises(SizeError) as exc_info:
            validate_size(101, 100)
        assert exc_info.value.status_code == 413
        assert exc_info.value.message == "File size exceeded (100 Bytes)"

    @pytest.mark.parametrize("num_bytes,expected", [
        (0, "0 Bytes"),
        (1, "1 Byte"),
        (1536, "1.5 KB"),
        (100 * 1024 * 1024, "100 MB"),
        (3 * 1024 ** 3, "3 GB"),
    ])
    def test_format_size(self, num_bytes, expected):
        assert format_size(num_bytes) == expected


class TestFileKind:
    def test_kinds(self):
        assert get_file_kind("a.JPG") == FileKind.IMAGE
        assert get_file_kind("a.mp3") == FileKind.AUDIO
        assert get_file_kind("a.docx") == FileKind.DOCUMENT
        assert get_file_kind("a.7z") == FileKind.COMPRESS
        assert get_file_kind("a.bin") == FileKind.OTHER

    def test_file_extension(self):
        assert file_extension("a/b/c.Tar.GZ") == "gz"
        assert file_extension("noext") == ""


class TestUnsafeContent:
    def test_clean_image(self):
        assert find_unsafe_content(b"\x89PNG\r\n\x1a\n plain pixels") is None

    @pytest.mark.parametrize("payload", [
        b'<svg onload="alert(1)">',
        b"<SCRIPT>alert(1)</SCRIPT>",
        b'<a href="javascript:alert(1)">',
        b'<iframe src="x">',
        b'<img src="data:text/html;base64,AAAA">',
    ])
    def test_suspicious(self, payload):
        assert find_unsafe_content(payload) is not None
