"""Tests for Config environment parsing and the server's argument overrides."""

import pytest

from orbminer.config import DEFAULT_RPC_URL, Config
from orbminer.server import parse_args


class TestFromEnv:

    def test_defaults(self):
        config = Config.from_env({})
        assert config.rpc_url == DEFAULT_RPC_URL
        assert config.poll_interval_sec == 15.0
        assert config.max_workers == 1
        assert config.simulate is False

    def test_typed_overrides(self):
        config = Config.from_env({
            "ORB_RPC_URL": "http://127.0.0.1:8899",
            "ORB_API_PORT": "9090",
            "ORB_POLL_INTERVAL_SEC": "2.5",
            "ORB_MAX_WORKERS": "4",
            "ORB_SIMULATE": "yes",
        })
        assert config.rpc_url == "http://127.0.0.1:8899"
        assert config.api_port == 9090
        assert config.poll_interval_sec == 2.5
        assert config.max_workers == 4
        assert config.simulate is True

    def test_empty_values_ignored(self):
        config = Config.from_env({"ORB_API_PORT": "", "ORB_SIMULATE": "off"})
        assert config.api_port == 8080
        assert config.simulate is False

    def test_bad_number_raises(self):
        with pytest.raises(ValueError):
            Config.from_env({"ORB_MAX_WORKERS": "many"})

    def test_to_dict_masks_key(self):
        assert Config(encryption_key="secret").to_dict()["encryption_key"] == "***"
        assert Config().to_dict()["encryption_key"] == ""


class TestParseArgs:

    def test_flags_override_env(self, monkeypatch):
        monkeypatch.setenv("ORB_API_PORT", "9000")
        monkeypatch.setenv("ORB_MAX_WORKERS", "2")
        config = parse_args(["--workers", "3", "--simulate", "--db-path", "/tmp/x.db"])
        assert config.api_port == 9000
        assert config.max_workers == 3
        assert config.simulate is True
        assert config.db_path == "/tmp/x.db"
