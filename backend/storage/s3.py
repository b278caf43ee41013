"""S3-compatible object store (AWS S3, Cloudflare R2, MinIO)."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, BinaryIO

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from backend.exceptions import StoreError
from backend.storage.base import StoredObject

if TYPE_CHECKING:
    from backend.config import Settings

logger = logging.getLogger(__name__)

_MISSING_KEY_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


class S3ObjectStore:
    """Bucket-backed object store. Blocking boto3 calls run in a worker thread."""

    def __init__(
        self,
        bucket_name: str,
        region: str = "auto",
        endpoint_url: str | None = None,
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
        client: Any | None = None,
    ) -> None:
        self._bucket = bucket_name
        if client is not None:
            self._client = client
            return

        kwargs: dict[str, Any] = {
            "config": Config(
                region_name=region,
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        }
        if aws_access_key_id and aws_secret_access_key:
            kwargs["aws_access_key_id"] = aws_access_key_id
            kwargs["aws_secret_access_key"] = aws_secret_access_key
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url

        self._client = boto3.client("s3", **kwargs)

    @classmethod
    def from_settings(cls, settings: Settings) -> S3ObjectStore:
        return cls(
            bucket_name=settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
        )

    async def list_objects(self, prefix: str = "") -> list[StoredObject]:
        try:
            return await asyncio.to_thread(self._list, prefix)
        except (BotoCoreError, ClientError) as exc:
            raise StoreError(f"Failed to list objects under {prefix!r}: {exc}") from exc

    def _list(self, prefix: str) -> list[StoredObject]:
        result: list[StoredObject] = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                result.append(StoredObject(key=obj["Key"], size=obj.get("Size", 0)))
        return result

    async def get_object(self, key: str) -> bytes | None:
        try:
            return await asyncio.to_thread(self._get, key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_KEY_CODES:
                return None
            raise StoreError(f"Failed to read {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StoreError(f"Failed to read {key}: {exc}") from exc

    def _get(self, key: str) -> bytes:
        response = self._client.get_object(Bucket=self._bucket, Key=key)
        body: bytes = response["Body"].read()
        return body

    async def put_object(self, key: str, body: bytes | BinaryIO) -> None:
        try:
            if isinstance(body, bytes):
                await asyncio.to_thread(
                    self._client.put_object, Bucket=self._bucket, Key=key, Body=body
                )
            else:
                await asyncio.to_thread(self._client.upload_fileobj, body, self._bucket, key)
        except (BotoCoreError, ClientError) as exc:
            raise StoreError(f"Failed to write {key}: {exc}") from exc

    async def delete_object(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StoreError(f"Failed to delete {key}: {exc}") from exc
