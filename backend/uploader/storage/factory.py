"""Storage backend selection.

The backend is chosen once, at configuration time.  Observers of the
``on_uploader`` hook may change the server type, the thumbnail size or the
backend settings, or inject a ready-made backend through
``custom_backend``.
"""
import logging
from typing import Optional

from uploader.config import UploaderConfig
from uploader.hooks.registry import HookEvent, HookRegistry, UploaderContext

from .base import StorageBackend
from .local import LocalStorageBackend
from .s3 import S3StorageBackend

logger = logging.getLogger(__name__)


def build_storage_backend(
    config: UploaderConfig,
    hooks: Optional[HookRegistry] = None,
) -> StorageBackend:
    """Build the storage backend described by *config*."""
    hooks = hooks or HookRegistry()
    aws = config.secrets.aws
    ctx = hooks.run(
        HookEvent.ON_UPLOADER,
        UploaderContext(
            server=config.storage.backend.lower(),
            thumb=config.uploads.thumb_dims,
            settings={
                "root": config.storage.root,
                "base_url": config.storage.base_url,
                "bucket": config.s3.bucket,
                "region": config.s3.region,
                "cloudfront": config.s3.cloudfront,
                "prefix": config.s3.prefix,
                "access_key": aws.access_key_id,
                "secret_key": aws.secret_access_key,
                "session_token": aws.session_token,
            },
        ),
    )

    if ctx.custom_backend is not None:
        logger.info("Using custom storage backend: %s", type(ctx.custom_backend).__name__)
        return ctx.custom_backend

    settings = ctx.settings
    if ctx.server in ("s3", "aws"):
        logger.info("Using S3 storage backend (bucket=%s)", settings["bucket"])
        return S3StorageBackend(
            bucket=settings["bucket"],
            region_name=settings["region"],
            aws_access_key_id=settings["access_key"],
            aws_secret_access_key=settings["secret_key"],
            aws_session_token=settings["session_token"],
            cloudfront=settings["cloudfront"],
            prefix=settings["prefix"] or "",
            thumb=ctx.thumb,
        )

    logger.info("Using local storage backend (root=%s)", settings["root"])
    return LocalStorageBackend(
        root=settings["root"],
        base_url=settings["base_url"],
        thumb=ctx.thumb,
    )
