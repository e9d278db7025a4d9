"""Tests for S3Store key layout, metadata mirroring and pagination."""

import json
import time

import pytest

from cryptbin.exceptions import BackendUnavailable
from cryptbin.storage.s3_provider import S3Store
from tests.conftest import COMMENT_ID, PASTE_ID, FakeS3Client, comment_record, paste_record


class TestKeyLayout:
    """Object keys are part of the operator contract."""

    def test_paste_key(self, s3_store, s3_client):
        s3_store.create(PASTE_ID, paste_record())
        assert f"pastes/{PASTE_ID}" in s3_client.objects

    def test_comment_key(self, s3_store, s3_client):
        s3_store.create(PASTE_ID, paste_record())
        s3_store.create_comment(PASTE_ID, PASTE_ID, COMMENT_ID, comment_record())
        assert f"pastes/{PASTE_ID}/discussion/{PASTE_ID}/{COMMENT_ID}" in s3_client.objects

    def test_config_keys(self, s3_store, s3_client):
        s3_store.set_value("salty", "salt")
        s3_store.set_value("100", "traffic_limiter", "abc")
        assert "pastes/config/salt" in s3_client.objects
        assert "pastes/config/traffic_limiter/abc" in s3_client.objects

    def test_without_prefix(self, s3_client):
        store = S3Store(bucket="cryptbin-test", prefix="", client=s3_client)
        store.create(PASTE_ID, paste_record())
        assert PASTE_ID in s3_client.objects
        assert store.get_all_paste_ids() == [PASTE_ID]

    def test_bucket_required(self, monkeypatch):
        monkeypatch.delenv("S3_BUCKET", raising=False)
        with pytest.raises(ValueError, match="S3 bucket required"):
            S3Store(client=FakeS3Client())


class TestMetadataMirror:
    """Meta is mirrored into object metadata, minus secrets and attachments."""

    def test_paste_metadata(self, s3_store, s3_client):
        record = paste_record(expire_date=1234567890, attachment="ZGF0YQ==", attachmentname="bmFtZQ==")
        s3_store.create(PASTE_ID, record)

        metadata = s3_client.objects[f"pastes/{PASTE_ID}"]["Metadata"]
        assert metadata["expire_date"] == "1234567890"
        assert metadata["created"] == str(record["meta"]["created"])
        assert "salt" not in metadata
        assert "attachment" not in metadata
        assert "attachmentname" not in metadata

    def test_body_keeps_full_record(self, s3_store, s3_client):
        record = paste_record(expire_date=1234567890)
        s3_store.create(PASTE_ID, record)
        assert json.loads(s3_client.objects[f"pastes/{PASTE_ID}"]["Body"]) == record

    def test_config_value_mirrored_except_salt(self, s3_store, s3_client):
        s3_store.set_value("salty", "salt")
        s3_store.set_value("100", "traffic_limiter", "abc")

        assert "value" not in s3_client.objects["pastes/config/salt"]["Metadata"]
        assert s3_client.objects["pastes/config/traffic_limiter/abc"]["Metadata"]["value"] == "100"

    def test_expiry_scan_uses_head_only(self, s3_store, s3_client):
        s3_store.create(PASTE_ID, paste_record(expire_date=int(time.time()) - 10))
        s3_client.calls.clear()

        assert s3_store.purge_expired(10) == [PASTE_ID]
        assert ("GetObject",) not in s3_client.calls

    def test_purge_values_ignores_similar_namespace_prefix(self, s3_store, s3_client):
        s3_client.objects["pastes/config/traffic_limiter_backup"] = {"Body": b"1", "Metadata": {"value": "1"}}
        s3_store.set_value("1", "traffic_limiter", "abc")

        s3_store.purge_values("traffic_limiter", 100)

        assert "pastes/config/traffic_limiter_backup" in s3_client.objects
        assert "pastes/config/traffic_limiter/abc" not in s3_client.objects


class TestPagination:
    """Listings must drain every page."""

    def test_lists_all_pages(self, s3_store):
        ids = [f"{n:016x}" for n in range(1, 8)]
        for paste_id in ids:
            s3_store.create(paste_id, paste_record())
        assert sorted(s3_store.get_all_paste_ids()) == ids

    def test_delete_removes_every_comment_page(self, s3_store, s3_client):
        s3_store.create(PASTE_ID, paste_record())
        for n in range(5):
            s3_store.create_comment(PASTE_ID, PASTE_ID, f"{n + 1:016x}", comment_record(created=1000 + n))
        assert len(s3_store.read_comments(PASTE_ID)) == 5

        s3_store.delete(PASTE_ID)

        assert not [key for key in s3_client.objects if key.startswith(f"pastes/{PASTE_ID}")]


class TestErrors:
    """Only missing objects are expected; everything else is a medium failure."""

    def test_access_denied_raises_backend_unavailable(self, s3_store, s3_client):
        s3_client.fail_code = "AccessDenied"
        with pytest.raises(BackendUnavailable):
            s3_store.read(PASTE_ID)

    def test_server_error_on_create(self, s3_store, s3_client):
        s3_client.fail_code = "InternalError"
        with pytest.raises(BackendUnavailable) as exc_info:
            s3_store.create(PASTE_ID, paste_record())
        assert "InternalError" not in exc_info.value.message
        assert exc_info.value.status_code == 503

    def test_missing_objects_are_not_errors(self, s3_store):
        assert s3_store.read(PASTE_ID) is None
        assert s3_store.exists(PASTE_ID) is False
        assert s3_store.get_value("purge_limiter") == ""
        assert s3_store.read_comments(PASTE_ID) == []
