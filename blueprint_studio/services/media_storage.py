from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import unquote, urlsplit

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from blueprint_studio.config import settings
from blueprint_studio.errors import AssetDeleteFailedError, ServiceConfigError

logger = logging.getLogger(__name__)

_MISSING_CODES = ("404", "NoSuchKey", "NotFound")


class MediaStorage:
    """
    Thin wrapper around S3-compatible storage for removing uploaded site assets.

    Public asset URLs embed the object key after the public bucket segment:
    `https://<host>/.../<ASSET_PUBLIC_BUCKET>/<key>`.
    """

    def __init__(self, *, public_bucket: Optional[str] = None) -> None:
        if not settings.MEDIA_STORAGE_BUCKET:
            raise ServiceConfigError("MEDIA_STORAGE_BUCKET is required")
        if not settings.MEDIA_STORAGE_ENDPOINT:
            raise ServiceConfigError("MEDIA_STORAGE_ENDPOINT is required")
        if not settings.MEDIA_STORAGE_ACCESS_KEY or not settings.MEDIA_STORAGE_SECRET_KEY:
            raise ServiceConfigError("MEDIA_STORAGE_ACCESS_KEY and MEDIA_STORAGE_SECRET_KEY are required")

        addressing_style = "path" if settings.MEDIA_STORAGE_FORCE_PATH_STYLE else "auto"
        self.bucket = settings.MEDIA_STORAGE_BUCKET
        self.public_bucket = public_bucket or settings.ASSET_PUBLIC_BUCKET

        session = boto3.session.Session()
        self.client = session.client(
            "s3",
            endpoint_url=settings.MEDIA_STORAGE_ENDPOINT,
            aws_access_key_id=settings.MEDIA_STORAGE_ACCESS_KEY,
            aws_secret_access_key=settings.MEDIA_STORAGE_SECRET_KEY,
            region_name=settings.MEDIA_STORAGE_REGION or "us-east-1",
            use_ssl=bool(settings.MEDIA_STORAGE_USE_SSL),
            config=Config(
                s3={"addressing_style": addressing_style},
                signature_version="s3v4",
            ),
        )

    def key_for_url(self, url: str) -> Optional[str]:
        path = unquote(urlsplit(url).path)
        marker = f"/{self.public_bucket}/"
        if marker not in path:
            return None
        key = path.split(marker, 1)[1].strip("/")
        return key or None

    async def delete(self, url: str) -> None:
        key = self.key_for_url(url)
        if key is None:
            raise AssetDeleteFailedError(url, "URL does not point into the asset bucket")
        await asyncio.to_thread(self._delete_key, url, key)

    def _delete_key(self, url: str, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code") if hasattr(exc, "response") else None
            if code in _MISSING_CODES:
                logger.info("media_storage.delete_missing", extra={"bucket": self.bucket, "key": key})
                return
            raise AssetDeleteFailedError(url, f"{code or 'ClientError'}: {exc}") from exc
        except BotoCoreError as exc:
            raise AssetDeleteFailedError(url, str(exc)) from exc
