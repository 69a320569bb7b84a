"""
Unit tests for the configuration system.
"""

import json
from unittest.mock import patch

import pytest

from cursor_kit.config import Config, EXAMPLE_CONFIG, load_config
from cursor_kit.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """No CURSOR_KIT_* variables and no .env loading."""
    import os

    for key in list(os.environ):
        if key.startswith("CURSOR_KIT_"):
            monkeypatch.delenv(key)
    with patch("cursor_kit.config.load_dotenv"):
        yield


class TestDefaults:

    def test_default_values(self):
        config = Config()
        assert config.host == "0.0.0.0"
        assert config.port == 8080
        assert config.max_port_retries == 10
        assert config.confirm_timeout == 30.0
        assert config.connect_timeout == 30.0
        assert config.confirm_request_timeout == 5.0
        assert config.tunnel_provider == "localtunnel"
        assert config.compression_level == 6
        assert config.chunk_size == 64 * 1024

    def test_defaults_are_valid(self):
        assert Config().validate() is not None

    def test_example_config_parses(self):
        data = json.loads(EXAMPLE_CONFIG)
        assert data["port"] == 8080


class TestFromEnv:

    def test_reads_variables(self, monkeypatch):
        monkeypatch.setenv("CURSOR_KIT_PORT", "9090")
        monkeypatch.setenv("CURSOR_KIT_CONFIRM_TIMEOUT", "2.5")
        monkeypatch.setenv("CURSOR_KIT_TUNNEL", "ngrok")
        monkeypatch.setenv("CURSOR_KIT_CHUNK_SIZE", "4096")

        config = Config.from_env()

        assert config.port == 9090
        assert config.confirm_timeout == 2.5
        assert config.tunnel_provider == "ngrok"
        assert config.chunk_size == 4096

    def test_non_numeric_value(self, monkeypatch):
        monkeypatch.setenv("CURSOR_KIT_PORT", "eighty")
        with pytest.raises(ConfigurationError):
            Config.from_env()


class TestFromFile:

    def test_missing_file_gives_defaults(self, tmp_path):
        assert Config.from_file(tmp_path / "none.json") == Config()

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "cursor-kit.json"
        original = Config(port=9100, confirm_timeout=10.0, compression_level=3)
        original.save(path)

        assert Config.from_file(path) == original

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{port: 1")
        with pytest.raises(ConfigurationError):
            Config.from_file(path)

    def test_numeric_strings_are_converted(self, tmp_path):
        path = tmp_path / "cursor-kit.json"
        path.write_text(json.dumps({"port": "9000", "confirm_timeout": "12.5"}))

        config = Config.from_file(path)

        assert config.port == 9000
        assert config.confirm_timeout == 12.5

    @pytest.mark.parametrize("data", [
        {"port": "nine thousand"},
        {"port": True},
        {"port": 80.5},
        {"chunk_size": None},
        {"host": 1234},
        ["port", 9000],
    ])
    def test_wrong_types_rejected(self, tmp_path, data):
        path = tmp_path / "cursor-kit.json"
        path.write_text(json.dumps(data))
        with pytest.raises(ConfigurationError):
            Config.from_file(path)

    def test_unknown_keys_ignored(self, tmp_path):
        path = tmp_path / "cursor-kit.json"
        path.write_text(json.dumps({"port": 9100, "theme": "dark"}))
        assert Config.from_file(path).port == 9100

    def test_unreadable_file(self, tmp_path):
        # A directory exists but cannot be opened as a file
        with pytest.raises(ConfigurationError, match="Could not read"):
            Config.from_file(tmp_path)


class TestValidate:

    @pytest.mark.parametrize("field,value", [
        ("port", 0),
        ("port", 70000),
        ("max_port_retries", 0),
        ("compression_level", 10),
        ("chunk_size", 0),
        ("confirm_timeout", 0),
        ("connect_timeout", -1),
        ("tunnel_provider", "cloudflared"),
    ])
    def test_rejects(self, field, value):
        config = Config(**{field: value})
        with pytest.raises(ConfigurationError):
            config.validate()

    def test_port_message(self):
        with pytest.raises(ConfigurationError, match="between 1 and 65535"):
            Config(port=0).validate()


class TestLoadConfig:

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "cursor-kit.json"
        path.write_text(json.dumps({"port": 9100, "compression_level": 3}))
        monkeypatch.setenv("CURSOR_KIT_PORT", "9200")

        config = load_config(path)

        assert config.port == 9200
        assert config.compression_level == 3

    def test_env_equal_to_default_still_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "cursor-kit.json"
        path.write_text(json.dumps({"port": 9000, "tunnel_provider": "ngrok"}))
        monkeypatch.setenv("CURSOR_KIT_PORT", "8080")
        monkeypatch.setenv("CURSOR_KIT_TUNNEL", "localtunnel")

        config = load_config(path)

        assert config.port == 8080
        assert config.tunnel_provider == "localtunnel"

    def test_string_port_in_file(self, tmp_path):
        path = tmp_path / "cursor-kit.json"
        path.write_text(json.dumps({"port": "9000"}))
        assert load_config(path).port == 9000

    def test_wrong_type_is_configuration_error(self, tmp_path):
        path = tmp_path / "cursor-kit.json"
        path.write_text(json.dumps({"port": [9000]}))
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_no_file(self):
        assert load_config(None) == Config()

    def test_invalid_values_rejected(self, tmp_path):
        path = tmp_path / "cursor-kit.json"
        path.write_text(json.dumps({"port": 0}))
        with pytest.raises(ConfigurationError):
            load_config(path)
