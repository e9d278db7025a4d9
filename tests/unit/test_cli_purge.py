"""Tests for the purge CLI."""

import time
from unittest.mock import patch

import pytest

from cryptbin.cli.purge import main
from cryptbin.exceptions import BackendUnavailable
from cryptbin.storage.factory import reset_data_store, set_data_store
from tests.conftest import paste_record


@pytest.fixture(autouse=True)
def configured_store(fs_store):
    set_data_store(fs_store)
    yield fs_store
    reset_data_store()


def _expired(store, count):
    for n in range(1, count + 1):
        store.create(f"{n:016x}", paste_record(expire_date=int(time.time()) - 100))


class TestStatus:
    def test_shows_store_and_schedule(self, configured_store, capsys):
        _expired(configured_store, 2)

        main(["status"])

        out = capsys.readouterr().out
        assert "Data store: filesystem" in out
        assert "Stored pastes: 2" in out
        assert "Next sweep allowed: now" in out


class TestRun:
    def test_removes_expired(self, configured_store, capsys):
        _expired(configured_store, 2)

        main(["run"])

        out = capsys.readouterr().out
        assert "Removed: 2" in out
        assert configured_store.get_all_paste_ids() == []

    def test_throttled_without_force(self, configured_store, capsys):
        main(["run"])
        _expired(configured_store, 1)
        capsys.readouterr()

        main(["run"])

        assert "Skipped" in capsys.readouterr().out
        assert len(configured_store.get_all_paste_ids()) == 1

        main(["run", "--force", "--batch-size", "5"])
        assert configured_store.get_all_paste_ids() == []

    def test_failure_exits_nonzero(self, configured_store, capsys):
        with patch.object(configured_store, "purge_expired", side_effect=BackendUnavailable("disk gone")):
            with pytest.raises(SystemExit) as exc_info:
                main(["run", "--force"])

        assert exc_info.value.code == 1
        assert "disk gone" in capsys.readouterr().out

    def test_command_required(self):
        with pytest.raises(SystemExit):
            main([])
