"""Tests for configuration and the synced printer store."""

import json
import stat
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from printbridge.config import BridgeConfig, SharedConfig
from printbridge.storage import PrinterStore, printers_have_changed


class TestBridgeConfig:
    """Tests for BridgeConfig."""

    def test_defaults(self):
        config = BridgeConfig()
        assert config.api_prefix == "/api"
        assert config.printer_check_interval == 300
        assert config.job_check_interval == 120
        assert config.status_check_interval == 15
        assert config.job_timeout == 300
        assert config.push_reconnect_delay == 5

    @pytest.mark.parametrize(
        "server_url, prefix, expected",
        [
            ("http://print.test", "/api", "http://print.test/api/printers"),
            ("http://print.test/", "api/", "http://print.test/api/printers"),
            ("http://print.test", "", "http://print.test/printers"),
        ],
    )
    def test_api_url(self, server_url, prefix, expected):
        config = BridgeConfig(server_url=server_url, api_prefix=prefix)
        assert config.api_url("/printers") == expected

    def test_push_channel(self):
        assert BridgeConfig(instance_name="lab").push_channel == "private-print_job.lab"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("PRINTBRIDGE_INSTANCE_NAME", "from-env")
        monkeypatch.setenv("PRINTBRIDGE_PUSH_ENABLED", "false")
        config = BridgeConfig()
        assert config.instance_name == "from-env"
        assert config.push_enabled is False

    def test_config_is_immutable(self):
        config = BridgeConfig()
        with pytest.raises(ValidationError):
            config.instance_name = "changed"

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "config.json"
        BridgeConfig(instance_name="lab", api_token="secret").save(path)

        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        loaded = BridgeConfig.load(path)
        assert loaded.instance_name == "lab"
        assert loaded.api_token == "secret"

    def test_load_missing_file_uses_defaults(self, tmp_path):
        assert BridgeConfig.load(tmp_path / "missing.json").instance_name == "default-instance"

    def test_load_invalid_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert BridgeConfig.load(path).instance_name == "default-instance"


class TestSharedConfig:
    """Tests for the shared config token writer."""

    def test_update_token(self, bridge_config):
        shared = SharedConfig(bridge_config)
        before = shared.snapshot()

        assert shared.update_token("token-2", previous="token-1") is True
        assert shared.token == "token-2"
        # Earlier snapshots are unaffected
        assert before.api_token == "token-1"

    def test_stale_writer_is_rejected(self, bridge_config):
        shared = SharedConfig(bridge_config)
        shared.update_token("token-2", previous="token-1")

        assert shared.update_token("token-stale", previous="token-1") is False
        assert shared.token == "token-2"


class TestPrinterStore:
    """Tests for the synced printer map persistence."""

    def test_missing_file_is_empty(self, store):
        assert store.load() == {}

    def test_save_and_load(self, store, printer_factory):
        printers = {"A": printer_factory("A", remote_id=1, location="Room 1")}
        store.save(printers)
        assert store.load() == printers

    def test_corrupt_file_is_empty(self, store):
        store.path.write_text("[]")
        assert store.load() == {}
        store.path.write_text("{oops")
        assert PrinterStore(store.path).load() == {}

    def test_file_is_read_once(self, store, printer_factory):
        PrinterStore(store.path).save({"A": printer_factory("A", remote_id=1)})

        with patch("printbridge.storage.json.load", wraps=json.load) as read:
            assert store.load()["A"].remote_id == 1
            assert store.load()["A"].remote_id == 1
            store.save({"B": printer_factory("B", remote_id=2)})
            assert list(store.load()) == ["B"]

        assert read.call_count == 1

    def test_load_returns_a_copy(self, store, printer_factory):
        store.save({"A": printer_factory("A")})
        store.load().pop("A")
        assert list(store.load()) == ["A"]

    def test_save_if_changed(self, store, printer_factory):
        saved = {"A": printer_factory("A", remote_id=1)}
        assert store.save_if_changed(dict(saved), saved) is False
        assert not store.path.exists()

        changed = {"A": printer_factory("A", remote_id=2)}
        assert store.save_if_changed(changed, saved) is True
        assert store.load()["A"].remote_id == 2

    def test_printers_have_changed(self, printer_factory):
        a = {"A": printer_factory("A")}
        assert printers_have_changed(a, {"A": printer_factory("A")}) is False
        assert printers_have_changed(a, {}) is True
        assert printers_have_changed(a, {"A": printer_factory("A", media_sizes=["A3"])}) is True

    def test_save_leaves_no_temp_file(self, tmp_path, printer_factory):
        store = PrinterStore(tmp_path / "nested" / "printers.json")
        store.save({"A": printer_factory("A")})
        assert list(store.path.parent.iterdir()) == [store.path]
