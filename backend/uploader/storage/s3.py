"""Amazon S3 storage backend.

Keys map to objects ``{prefix}/{key}`` in one bucket.  Public URLs go
through CloudFront when a distribution is configured, otherwise the
bucket's virtual-hosted URL is used.

New objects are written with ``IfNoneMatch="*"`` (S3 conditional writes),
so a concurrent upload that resolved the same free name fails with
``NameResolutionConflict`` instead of replacing the other object.
"""
import logging
import mimetypes
import posixpath
from typing import List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from uploader.files.errors import NameResolutionConflict, StorageError
from uploader.files.naming import resolve_unique_name
from uploader.files.schemas import StoredFile

from .base import FileSource, StorageBackend, open_source

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-west-2"

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
_CONFLICT_CODES = {"PreconditionFailed", "ConditionalRequestConflict"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3StorageBackend(StorageBackend):
    """Storage backend backed by an S3 bucket.

    Args:
        bucket:                S3 bucket name.
        region_name:           AWS region.  Defaults to ``us-west-2``.
        aws_access_key_id:     AWS access key.  ``None`` → default credential chain.
        aws_secret_access_key: AWS secret access key.
        aws_session_token:     Optional temporary-credential session token.
        cloudfront:            Optional CloudFront base URL for public links.
        prefix:                Optional key prefix inside the bucket.
        thumb:                 Default thumbnail size.
    """

    def __init__(
        self,
        bucket: str,
        region_name: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        aws_session_token: Optional[str] = None,
        cloudfront: Optional[str] = None,
        prefix: str = "",
        thumb: Tuple[int, int] = (100, 100),
    ) -> None:
        super().__init__(thumb)
        if not bucket:
            raise ValueError("S3StorageBackend requires a bucket name")
        self._bucket     = bucket
        self._region     = region_name or DEFAULT_REGION
        self._access_key = aws_access_key_id
        self._secret_key = aws_secret_access_key
        self._session_token = aws_session_token
        self._cloudfront = cloudfront.rstrip("/") if cloudfront else None
        self._prefix     = prefix.strip("/")
        self._client: Optional[object] = None

    @property
    def name(self) -> str:
        return "s3"

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _get_client(self) -> object:
        """Return a cached boto3 s3 client."""
        if self._client is None:
            try:
                import boto3  # lazy import: not required when mocked in tests
            except ImportError as exc:
                raise ImportError(
                    "boto3 is required for S3StorageBackend. "
                    "Install it with: pip install boto3"
                ) from exc

            kwargs: dict = {"region_name": self._region}
            if self._access_key and self._secret_key:
                kwargs["aws_access_key_id"]     = self._access_key
                kwargs["aws_secret_access_key"] = self._secret_key
            if self._session_token:
                kwargs["aws_session_token"] = self._session_token

            self._client = boto3.client("s3", **kwargs)

        return self._client

    def _object_key(self, key: str) -> str:
        return posixpath.join(self._prefix, key) if self._prefix else key

    def _list_names(self, folder: str) -> List[str]:
        """Names of the objects directly inside *folder*."""
        client = self._get_client()
        prefix = self._object_key(folder)
        prefix = f"{prefix}/" if prefix else ""
        names: List[str] = []
        kwargs = {"Bucket": self._bucket, "Prefix": prefix, "Delimiter": "/"}
        while True:
            response = client.list_objects_v2(**kwargs)
            for obj in response.get("Contents", []):
                names.append(posixpath.basename(obj["Key"]))
            if not response.get("IsTruncated"):
                return names
            kwargs["ContinuationToken"] = response["NextContinuationToken"]

    # -----------------------------------------------------------------------
    # StorageBackend implementation
    # -----------------------------------------------------------------------

    def add_file(
        self,
        source: FileSource,
        key: str,
        same_name: bool = False,
        is_thumb: bool = False,
    ) -> StoredFile:
        key = self._normalize_key(key)
        folder, name = posixpath.split(key)
        client = self._get_client()

        try:
            if not same_name:
                name = resolve_unique_name(folder, name, existing=self._list_names(folder))
                key = posixpath.join(folder, name) if folder else name

            with open_source(source) as src:
                data = src.read()

            request = {
                "Bucket":      self._bucket,
                "Key":         self._object_key(key),
                "Body":        data,
                "ContentType": mimetypes.guess_type(name)[0] or "application/octet-stream",
            }
            if not same_name:
                request["IfNoneMatch"] = "*"

            logger.debug("[storage/s3] put_object bucket=%s key=%s", self._bucket, request["Key"])
            client.put_object(**request)
        except ClientError as exc:
            if _error_code(exc) in _CONFLICT_CODES:
                logger.warning("[storage/s3] Lost name race for %s", key)
                raise NameResolutionConflict(key) from None
            raise StorageError(f"Failed to upload {key} to s3://{self._bucket}: {exc}") from exc
        except (BotoCoreError, OSError) as exc:
            raise StorageError(f"Failed to upload {key} to s3://{self._bucket}: {exc}") from exc

        logger.info("Uploaded file to s3://%s/%s (%d bytes)", self._bucket, request["Key"], len(data))
        return self._stored_file(key, len(data), is_thumb)

    def delete_file(self, key: str) -> None:
        key = self._normalize_key(key)
        try:
            self._get_client().delete_object(Bucket=self._bucket, Key=self._object_key(key))
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Failed to delete {key} from s3://{self._bucket}: {exc}") from exc
        logger.info("Deleted s3://%s/%s", self._bucket, self._object_key(key))

    def exists(self, key: str) -> bool:
        key = self._normalize_key(key)
        try:
            self._get_client().head_object(Bucket=self._bucket, Key=self._object_key(key))
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                return False
            raise StorageError(f"Failed to stat {key} in s3://{self._bucket}: {exc}") from exc
        return True

    def url_for(self, key: str) -> str:
        object_key = self._object_key(key)
        if self._cloudfront:
            return f"{self._cloudfront}/{object_key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{object_key}"
