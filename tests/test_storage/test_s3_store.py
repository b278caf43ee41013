"""Tests for the S3 object store against a mocked boto3 client."""

from __future__ import annotations

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from backend.exceptions import StoreError
from backend.storage.base import StoredObject
from backend.storage.s3 import S3ObjectStore


def _client_error(code: str, operation: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def store(client: MagicMock) -> S3ObjectStore:
    return S3ObjectStore("mirror-bucket", client=client)


class TestS3ObjectStore:
    async def test_list_paginates(self, store: S3ObjectStore, client: MagicMock) -> None:
        client.get_paginator.return_value.paginate.return_value = [
            {"Contents": [{"Key": "downloads/a.apk", "Size": 3}]},
            {"Contents": [{"Key": "downloads/b.exe", "Size": 5}]},
            {},
        ]

        objects = await store.list_objects("downloads/")

        assert objects == [
            StoredObject(key="downloads/a.apk", size=3),
            StoredObject(key="downloads/b.exe", size=5),
        ]
        client.get_paginator.assert_called_once_with("list_objects_v2")
        client.get_paginator.return_value.paginate.assert_called_once_with(
            Bucket="mirror-bucket", Prefix="downloads/"
        )

    async def test_list_failure(self, store: S3ObjectStore, client: MagicMock) -> None:
        client.get_paginator.return_value.paginate.side_effect = _client_error(
            "AccessDenied", "ListObjectsV2"
        )
        with pytest.raises(StoreError, match="Failed to list"):
            await store.list_objects()

    async def test_get(self, store: S3ObjectStore, client: MagicMock) -> None:
        client.get_object.return_value = {"Body": io.BytesIO(b"data")}
        assert await store.get_object("downloads/a.apk") == b"data"
        client.get_object.assert_called_once_with(Bucket="mirror-bucket", Key="downloads/a.apk")

    async def test_get_missing(self, store: S3ObjectStore, client: MagicMock) -> None:
        client.get_object.side_effect = _client_error("NoSuchKey")
        assert await store.get_object("downloads/a.apk") is None

    async def test_get_failure(self, store: S3ObjectStore, client: MagicMock) -> None:
        client.get_object.side_effect = _client_error("InternalError")
        with pytest.raises(StoreError):
            await store.get_object("downloads/a.apk")

    async def test_put_bytes(self, store: S3ObjectStore, client: MagicMock) -> None:
        await store.put_object("downloads/a.apk", b"data")
        client.put_object.assert_called_once_with(
            Bucket="mirror-bucket", Key="downloads/a.apk", Body=b"data"
        )

    async def test_put_file_object_streams(self, store: S3ObjectStore, client: MagicMock) -> None:
        body = io.BytesIO(b"data")
        await store.put_object("downloads/a.apk", body)
        client.upload_fileobj.assert_called_once_with(body, "mirror-bucket", "downloads/a.apk")

    async def test_put_failure(self, store: S3ObjectStore, client: MagicMock) -> None:
        client.put_object.side_effect = _client_error("AccessDenied", "PutObject")
        with pytest.raises(StoreError, match="Failed to write"):
            await store.put_object("downloads/a.apk", b"data")

    async def test_delete(self, store: S3ObjectStore, client: MagicMock) -> None:
        await store.delete_object("downloads/a.apk")
        client.delete_object.assert_called_once_with(Bucket="mirror-bucket", Key="downloads/a.apk")

    async def test_delete_failure(self, store: S3ObjectStore, client: MagicMock) -> None:
        client.delete_object.side_effect = _client_error("AccessDenied", "DeleteObject")
        with pytest.raises(StoreError):
            await store.delete_object("downloads/a.apk")
