"""Tests for FilesystemStore layout, legacy conversion and path safety."""

import fcntl
import json
import os
import tempfile
import threading

import pytest

from cryptbin.exceptions import BackendUnavailable
from cryptbin.storage.filesystem_provider import HTACCESS_LINE, PROTECTION_LINE, FilesystemStore
from tests.conftest import COMMENT_ID, PASTE_ID, comment_record, paste_record


class TestLayout:
    """On-disk layout is part of the operator contract."""

    def test_paste_path_is_split_in_two_levels(self, fs_store):
        fs_store.create(PASTE_ID, paste_record())
        path = fs_store.base_path / PASTE_ID[:2] / PASTE_ID[2:4] / f"{PASTE_ID}.php"
        assert path.is_file()

    def test_record_starts_with_protection_line(self, fs_store):
        record = paste_record()
        fs_store.create(PASTE_ID, record)

        content = (fs_store.base_path / "5b" / "65" / f"{PASTE_ID}.php").read_text()
        first_line, _, body = content.partition("\n")
        assert first_line == PROTECTION_LINE
        assert json.loads(body) == record

    def test_htaccess_written_on_first_write(self, fs_store):
        htaccess = fs_store.base_path / ".htaccess"
        assert not htaccess.exists()

        fs_store.create(PASTE_ID, paste_record())

        assert htaccess.read_text().strip() == HTACCESS_LINE

    def test_comment_path(self, fs_store):
        fs_store.create(PASTE_ID, paste_record())
        fs_store.create_comment(PASTE_ID, PASTE_ID, COMMENT_ID, comment_record())

        path = (
            fs_store.base_path / "5b" / "65" / f"{PASTE_ID}.discussion" / f"{PASTE_ID}.{COMMENT_ID}.{PASTE_ID}.php"
        )
        assert path.is_file()
        assert path.read_text().startswith(PROTECTION_LINE)

    def test_config_file_is_protected(self, fs_store):
        fs_store.set_value("2000", "traffic_limiter", "somehash")

        content = (fs_store.base_path / "traffic_limiter.php").read_text()
        first_line, _, body = content.partition("\n")
        assert first_line == PROTECTION_LINE
        assert json.loads(body) == {"somehash": "2000"}

    def test_config_rewrite_leaves_no_temp_files(self, fs_store):
        fs_store.set_value("1", "purge_limiter")
        fs_store.set_value("2", "purge_limiter")
        assert not list(fs_store.base_path.glob("*.tmp"))

    def test_corrupt_record_reads_as_absent(self, fs_store):
        fs_store.create(PASTE_ID, paste_record())
        path = fs_store.base_path / "5b" / "65" / f"{PASTE_ID}.php"
        path.write_text(PROTECTION_LINE + "\n{not json")

        assert fs_store.read(PASTE_ID) is None


class TestLegacyConversion:
    """Files from older deployments gain the protection line on exists()."""

    def _write_legacy_paste(self, store, record):
        paste_dir = store.base_path / PASTE_ID[:2] / PASTE_ID[2:4]
        paste_dir.mkdir(parents=True)
        (paste_dir / PASTE_ID).write_text(json.dumps(record))
        return paste_dir

    def test_exists_converts_paste(self, fs_store):
        record = paste_record()
        paste_dir = self._write_legacy_paste(fs_store, record)

        assert fs_store.exists(PASTE_ID) is True

        assert not (paste_dir / PASTE_ID).exists()
        converted = (paste_dir / f"{PASTE_ID}.php").read_text()
        assert converted.startswith(PROTECTION_LINE + "\n")
        assert fs_store.read(PASTE_ID) == record

    def test_exists_converts_comments(self, fs_store):
        paste_dir = self._write_legacy_paste(fs_store, paste_record())
        discussion = paste_dir / f"{PASTE_ID}.discussion"
        discussion.mkdir()
        legacy_comment = discussion / f"{PASTE_ID}.{COMMENT_ID}.{PASTE_ID}"
        legacy_comment.write_text(json.dumps(comment_record(created=1000)))

        fs_store.exists(PASTE_ID)

        assert not legacy_comment.exists()
        assert fs_store.exists_comment(PASTE_ID, PASTE_ID, COMMENT_ID) is True
        comments = fs_store.read_comments(PASTE_ID)
        assert comments[0]["id"] == COMMENT_ID
        assert comments[0]["meta"]["created"] == 1000

    def test_conversion_is_idempotent(self, fs_store):
        self._write_legacy_paste(fs_store, paste_record())
        fs_store.exists(PASTE_ID)
        path = fs_store.base_path / "5b" / "65" / f"{PASTE_ID}.php"
        before = path.read_text()

        fs_store.exists(PASTE_ID)

        assert path.read_text() == before
        assert before.count(PROTECTION_LINE) == 1

    def test_legacy_paste_listed_for_purge(self, fs_store):
        self._write_legacy_paste(fs_store, paste_record(expire_date=1))
        assert fs_store.get_all_paste_ids() == [PASTE_ID]
        assert fs_store.purge_expired(10) == [PASTE_ID]
        assert fs_store.exists(PASTE_ID) is False

    def test_legacy_salt_file(self, fs_store):
        (fs_store.base_path / "salt.php").write_text("<?php # |0123456789abcdef|\n")
        assert fs_store.get_value("salt") == "0123456789abcdef"


class TestPathTraversal:
    """Verify ids and paths cannot escape the data directory."""

    def setup_method(self):
        self.tmpdir = os.path.realpath(tempfile.mkdtemp())
        self.store = FilesystemStore(base_path=self.tmpdir)

    def test_traversal_with_dotdot(self):
        with pytest.raises(ValueError, match="Path traversal detected"):
            self.store._get_path("../../../etc/passwd")

    def test_traversal_with_absolute(self):
        with pytest.raises(ValueError, match="Path traversal detected"):
            self.store._get_path("/etc/passwd")

    def test_normal_path_succeeds(self):
        path = self.store._get_path("ab", "cd")
        assert str(path).startswith(self.tmpdir)

    def test_invalid_paste_id_rejected(self):
        with pytest.raises(ValueError, match="Invalid paste id"):
            self.store.exists("../../etc/passwd")

    def test_invalid_comment_id_rejected(self):
        with pytest.raises(ValueError, match="Invalid comment id"):
            self.store.exists_comment(PASTE_ID, PASTE_ID, "../x")


class TestMediumErrors:
    """I/O failures surface as BackendUnavailable."""

    def test_unwritable_directory(self, fs_store, monkeypatch):
        def broken_open(*args, **kwargs):
            raise PermissionError("read-only file system")

        monkeypatch.setattr(os, "open", broken_open)

        with pytest.raises(BackendUnavailable):
            fs_store.create(PASTE_ID, paste_record())


class TestConfigLocking:
    """Config rewrites are serialized per namespace with a lock file."""

    def test_rewrite_holds_exclusive_lock(self, fs_store, monkeypatch):
        calls = []
        real_flock = fcntl.flock
        real_read = FilesystemStore._read_values

        def recording_flock(fd, operation):
            calls.append(operation)
            real_flock(fd, operation)

        def recording_read(store, namespace):
            calls.append("read")
            return real_read(store, namespace)

        monkeypatch.setattr(fcntl, "flock", recording_flock)
        monkeypatch.setattr(FilesystemStore, "_read_values", recording_read)

        fs_store.set_value("1000", "traffic_limiter", "somehash")

        assert calls == [fcntl.LOCK_EX, "read", fcntl.LOCK_UN]
        assert (fs_store.base_path / ".traffic_limiter.lock").is_file()

    def test_purge_holds_exclusive_lock(self, fs_store, monkeypatch):
        fs_store.set_value("1000", "traffic_limiter", "old")
        calls = []
        real_flock = fcntl.flock

        def recording_flock(fd, operation):
            calls.append(operation)
            real_flock(fd, operation)

        monkeypatch.setattr(fcntl, "flock", recording_flock)

        fs_store.purge_values("traffic_limiter", 2000)

        assert calls == [fcntl.LOCK_EX, fcntl.LOCK_UN]
        assert fs_store.get_value("traffic_limiter", "old") == ""

    def test_concurrent_writers_keep_every_key(self, fs_store):
        keys = [f"client{i}" for i in range(20)]
        threads = [threading.Thread(target=fs_store.set_value, args=("1000", "traffic_limiter", key)) for key in keys]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        for key in keys:
            assert fs_store.get_value("traffic_limiter", key) == "1000"
