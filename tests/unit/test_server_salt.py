"""Tests for ServerSalt."""

from unittest.mock import MagicMock

import pytest

from cryptbin.persistence.server_salt import ServerSalt


class TestServerSalt:
    def test_generated_on_first_access(self, store):
        assert store.get_value("salt") == ""

        salt = ServerSalt(store).get()

        assert salt
        assert store.get_value("salt") == salt

    def test_same_value_on_later_access(self, store):
        first = ServerSalt(store).get()
        assert ServerSalt(store).get() == first

    def test_cached_per_instance(self):
        store = MagicMock()
        store.get_value.return_value = "persisted"
        salt = ServerSalt(store)

        assert salt.get() == "persisted"
        assert salt.get() == "persisted"
        store.get_value.assert_called_once()

    def test_generate_is_random_hex(self):
        first, second = ServerSalt.generate(), ServerSalt.generate()
        assert first != second
        int(first, 16)

    def test_persist_failure_raises(self):
        store = MagicMock()
        store.get_value.return_value = ""
        store.set_value.return_value = False
        with pytest.raises(RuntimeError):
            ServerSalt(store).get()

    def test_survives_backend_migration(self, fs_store, db_store, s3_store):
        salt = ServerSalt(fs_store).get()

        # operator migration copies config values between backends
        for target in (db_store, s3_store):
            target.set_value(fs_store.get_value("salt"), "salt")
            assert ServerSalt(target).get() == salt
