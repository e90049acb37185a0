"""Unit tests for server configuration loading."""

from __future__ import annotations

import pytest

from bidfeed.config import get_server_config, parse_server_config


class TestParseServerConfig:
    """YAML sections and environment overrides."""

    def test_defaults(self):
        """Test defaults for an empty document."""
        config = parse_server_config({}, env={})
        assert config.broadcast.keepalive_seconds == 25.0
        assert config.broadcast.max_pending_frames == 32
        assert config.client.primary_transport == "duplex-socket"
        assert config.client.max_retries == 5
        assert config.client.stable_seconds == 10.0
        assert config.graph.access_token is None
        assert config.log_level == "INFO"

    def test_env_overrides(self):
        """Test that secrets and log level come from the environment."""
        config = parse_server_config(
            {"graph": {"access_token": "from-file"}, "logging": {"level": "info"}},
            env={
                "FACEBOOK_ACCESS_TOKEN": "from-env",
                "FACEBOOK_WEBHOOK_VERIFY_TOKEN": "hub",
                "BIDFEED_LOG_LEVEL": "debug",
            },
        )
        assert config.graph.access_token == "from-env"
        assert config.webhook.verify_token == "hub"
        assert config.log_level == "DEBUG"

    def test_allowed_origins_tuple(self):
        """Test that origin lists are frozen."""
        config = parse_server_config({"broadcast": {"allowed_origins": ["https://a.example"]}}, env={})
        assert config.broadcast.allowed_origins == ("https://a.example",)


class TestGetServerConfig:
    """File loading."""

    def test_packaged_defaults(self, monkeypatch):
        """Test that the bundled server.yaml loads."""
        monkeypatch.delenv("BIDFEED_CONFIG_PATH", raising=False)
        get_server_config.cache_clear()
        try:
            config = get_server_config()
        finally:
            get_server_config.cache_clear()
        assert config.listen["port"] == 4000
        assert config.auction.store == "in_memory"
        assert config.graph.poll_interval_seconds == 15.0

    def test_missing_file(self, monkeypatch, tmp_path):
        """Test that a bad config path fails loudly."""
        monkeypatch.setenv("BIDFEED_CONFIG_PATH", str(tmp_path / "missing.yaml"))
        get_server_config.cache_clear()
        try:
            with pytest.raises(FileNotFoundError):
                get_server_config()
        finally:
            get_server_config.cache_clear()
