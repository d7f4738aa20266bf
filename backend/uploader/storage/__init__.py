"""Storage backends: local disk and S3, interchangeable behind StorageBackend."""
from .base import StorageBackend
from .local import LocalStorageBackend
from .s3 import S3StorageBackend

__all__ = ["StorageBackend", "LocalStorageBackend", "S3StorageBackend"]
