# tests/conftest.py
"""
Pytest configuration and fixtures.
"""

import copy
import io
import os
import time
from typing import Any, Dict, Optional

import pytest
from botocore.exceptions import ClientError

# Set test environment
os.environ.setdefault("DATA_STORE", "filesystem")
os.environ.setdefault("LOG_JSON", "false")

from cryptbin.storage.database_provider import DatabaseStore  # noqa: E402
from cryptbin.storage.filesystem_provider import FilesystemStore  # noqa: E402
from cryptbin.storage.s3_provider import S3Store  # noqa: E402

PASTE_ID = "5b65a01b43987bc2"
COMMENT_ID = "5a52eebf11c4c94b"
OTHER_COMMENT_ID = "6a52eebf11c4c94c"

# Well-formed v2 envelope as sent by a client
PASTE_POST = {
    "v": 2,
    "adata": [
        ["gMSNoLOk4z0RnmsYwXZ8mw==", "TZO+JWuIuxs=", 100000, 256, 128, "aes", "gcm", "zlib"],
        "plaintext",
        1,
        0,
    ],
    "ct": "ME5JF/YBEijp2uYMzLZozbKtWc5wfy6R59NBb7SmRig=",
    "meta": {"expire": "5min"},
}

LOW_ENTROPY_CT = "bm9kYXRhbm9kYXRhbm9kYXRhbm9kYXRhbm9kYXRhCg=="


def paste_post(**overrides: Any) -> Dict[str, Any]:
    post = copy.deepcopy(PASTE_POST)
    post.update(overrides)
    return post


def comment_post(paste_id: str = PASTE_ID, parent_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "v": 2,
        "adata": copy.deepcopy(PASTE_POST["adata"][0]),
        "ct": PASTE_POST["ct"],
        "pasteid": paste_id,
        "parentid": parent_id or paste_id,
    }


def paste_record(expire_date: Optional[int] = None, created: Optional[int] = None, **meta: Any) -> Dict[str, Any]:
    """A paste as the service stores it."""
    record = {
        "v": 2,
        "adata": copy.deepcopy(PASTE_POST["adata"]),
        "ct": PASTE_POST["ct"],
        "meta": {"created": created or int(time.time()), "salt": "d0c2ffc9e4e4c8d6"},
    }
    if expire_date is not None:
        record["meta"]["expire_date"] = expire_date
    record["meta"].update(meta)
    return record


def comment_record(created: Optional[int] = None) -> Dict[str, Any]:
    """A comment as the service stores it."""
    return {
        "v": 2,
        "adata": copy.deepcopy(PASTE_POST["adata"][0]),
        "ct": PASTE_POST["ct"],
        "meta": {"created": created or int(time.time())},
    }


# -----------------------------------------------------------------------------
# Fake S3
# -----------------------------------------------------------------------------


class _FakePaginator:
    def __init__(self, client: "FakeS3Client"):
        self._client = client

    def paginate(self, Bucket: str, Prefix: str = ""):
        self._client.calls.append(("list_objects_v2", Prefix))
        keys = sorted(k for k in self._client.objects if k.startswith(Prefix))
        if not keys:
            yield {"KeyCount": 0}
            return
        size = self._client.page_size
        for start in range(0, len(keys), size):
            yield {"Contents": [{"Key": key} for key in keys[start:start + size]]}


class FakeS3Client:
    """
    In-memory stand-in for a boto3 S3 client.

    Listings come back in pages of page_size keys so callers must drain
    every page. Setting fail_code makes every call raise that ClientError.
    """

    def __init__(self, page_size: int = 2):
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.page_size = page_size
        self.fail_code: Optional[str] = None
        self.calls: list = []

    def _error(self, code: str, operation: str) -> ClientError:
        return ClientError({"Error": {"Code": code, "Message": code}}, operation)

    def _check(self, operation: str) -> None:
        self.calls.append((operation,))
        if self.fail_code:
            raise self._error(self.fail_code, operation)

    def put_object(self, Bucket, Key, Body, ContentType=None, Metadata=None):
        self._check("PutObject")
        self.objects[Key] = {"Body": bytes(Body), "Metadata": dict(Metadata or {})}
        return {}

    def get_object(self, Bucket, Key):
        self._check("GetObject")
        if Key not in self.objects:
            raise self._error("NoSuchKey", "GetObject")
        return {"Body": io.BytesIO(self.objects[Key]["Body"])}

    def head_object(self, Bucket, Key):
        self._check("HeadObject")
        if Key not in self.objects:
            raise self._error("404", "HeadObject")
        return {"Metadata": dict(self.objects[Key]["Metadata"])}

    def delete_object(self, Bucket, Key):
        self._check("DeleteObject")
        self.objects.pop(Key, None)
        return {}

    def get_paginator(self, operation_name: str):
        self._check("GetPaginator")
        assert operation_name == "list_objects_v2"
        return _FakePaginator(self)


# -----------------------------------------------------------------------------
# Stores
# -----------------------------------------------------------------------------


@pytest.fixture
def fs_store(tmp_path):
    return FilesystemStore(base_path=str(tmp_path / "data"))


@pytest.fixture
def db_store(tmp_path):
    return DatabaseStore(database_url=f"sqlite:///{tmp_path / 'cryptbin.sqlite3'}", table_prefix="")


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def s3_store(s3_client):
    return S3Store(bucket="cryptbin-test", prefix="pastes", client=s3_client)


@pytest.fixture(params=["filesystem", "database", "s3"])
def store(request, tmp_path):
    """Every backend behind the same contract."""
    if request.param == "filesystem":
        return FilesystemStore(base_path=str(tmp_path / "data"))
    if request.param == "database":
        return DatabaseStore(database_url=f"sqlite:///{tmp_path / 'cryptbin.sqlite3'}", table_prefix="")
    return S3Store(bucket="cryptbin-test", prefix="pastes", client=FakeS3Client())
