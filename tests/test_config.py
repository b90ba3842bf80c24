"""Tests for configuration loading."""

import json
import tempfile
from pathlib import Path

from chronometry.config import MIN_SYNC_INTERVAL, Config, ServerSettings


class TestConfig:
    def setup_method(self):
        self.config_file = Path(tempfile.mkdtemp()) / "config.json"

    def test_defaults_when_missing(self):
        config = Config.load(self.config_file)

        assert config.api_url == Config().api_url
        assert config.sync.timeout == 30

    def test_save_and_load(self):
        config = Config(api_url="http://server:8080", debug_mode=True)
        config.photos.jpeg_quality = 60
        config.save(self.config_file)

        loaded = Config.load(self.config_file)

        assert loaded.api_url == "http://server:8080"
        assert loaded.debug_mode is True
        assert loaded.photos.jpeg_quality == 60

    def test_corrupt_file_falls_back_to_defaults(self):
        self.config_file.write_text("{not json")

        assert Config.load(self.config_file) == Config()

    def test_sync_interval_has_minimum(self):
        self.config_file.write_text(json.dumps({"sync": {"interval_seconds": 1}}))

        assert Config.load(self.config_file).sync.interval_seconds == MIN_SYNC_INTERVAL

    def test_unknown_keys_ignored(self):
        self.config_file.write_text(json.dumps({"api_url": "http://x", "legacy": 1}))

        assert Config.load(self.config_file).api_url == "http://x"


class TestServerSettings:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PORT", "8123")
        monkeypatch.setenv("DB_PATH", "/tmp/chrono.db")
        monkeypatch.setenv("CHRONOMETRY_DEBUG", "true")

        settings = ServerSettings.from_env()

        assert settings.port == 8123
        assert settings.db_path == Path("/tmp/chrono.db")
        assert settings.debug is True

    def test_defaults(self, monkeypatch):
        for name in ("PORT", "DB_PATH", "CHRONOMETRY_HOST", "CHRONOMETRY_DEBUG"):
            monkeypatch.delenv(name, raising=False)

        settings = ServerSettings.from_env()

        assert settings.port == 5000
        assert settings.host == "0.0.0.0"
