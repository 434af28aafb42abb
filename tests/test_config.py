"""Tests for the alias store and environment overrides."""

import json
import stat

import pytest

from pys4.config import AliasConfig, Config
from pys4.exceptions import S4ConfigError
from pys4.utils import DEFAULT_WATCH_INTERVAL


@pytest.fixture
def cfg(tmp_path):
    return Config(tmp_path / "s4")


@pytest.fixture
def minio():
    return AliasConfig(
        endpoint="http://localhost:9000",
        access_key="minioadmin",
        secret_key="secret",
        path_style=True,
    )


class TestConfigDir:
    """Tests for config directory resolution."""

    def test_explicit_dir(self, tmp_path):
        assert Config(tmp_path).config_dir == tmp_path

    def test_env_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("S4_CONFIG_DIR", str(tmp_path / "env"))
        assert Config().config_dir == tmp_path / "env"

    def test_default_dir(self, monkeypatch):
        monkeypatch.delenv("S4_CONFIG_DIR", raising=False)
        assert Config().config_dir.parts[-2:] == (".config", "s4")

    def test_setter(self, tmp_path):
        cfg = Config()
        cfg.config_dir = tmp_path
        assert cfg.config_file == tmp_path / "config.json"


class TestAliases:
    """Tests for alias persistence."""

    def test_empty_store(self, cfg):
        assert cfg.load_aliases() == {}

    def test_save_and_load(self, cfg, minio):
        cfg.save_alias("minio", minio)
        aliases = cfg.load_aliases()
        assert list(aliases) == ["minio"]
        assert aliases["minio"] == minio
        assert cfg.get_alias("minio").path_style is True

    def test_file_is_private(self, cfg, minio):
        """Test that the secrets file is only readable by the owner."""
        cfg.save_alias("minio", minio)
        mode = stat.S_IMODE(cfg.config_file.stat().st_mode)
        assert mode == 0o600

    def test_aliases_sorted(self, cfg, minio):
        cfg.save_alias("zeta", minio)
        cfg.save_alias("alpha", minio)
        assert list(cfg.load_aliases()) == ["alpha", "zeta"]

    def test_unknown_alias(self, cfg):
        with pytest.raises(S4ConfigError, match="Unknown alias: nope"):
            cfg.get_alias("nope")

    def test_remove_alias(self, cfg, minio):
        cfg.save_alias("minio", minio)
        assert cfg.remove_alias("minio") is True
        assert cfg.remove_alias("minio") is False
        assert cfg.load_aliases() == {}

    @pytest.mark.parametrize("name", ["", "a/b"])
    def test_invalid_alias_name(self, cfg, minio, name):
        with pytest.raises(S4ConfigError, match="Invalid alias name"):
            cfg.save_alias(name, minio)

    def test_region_defaults(self, cfg):
        cfg.config_dir.mkdir(parents=True)
        cfg.config_file.write_text(
            json.dumps(
                {"aliases": {"s3": {"endpoint": "s3.example.com", "access_key": "a", "secret_key": "b"}}}
            )
        )
        alias = cfg.get_alias("s3")
        assert alias.region == "us-east-1"
        assert alias.path_style is False

    def test_missing_field(self, cfg):
        cfg.config_dir.mkdir(parents=True)
        cfg.config_file.write_text(json.dumps({"aliases": {"s3": {"endpoint": "x"}}}))
        with pytest.raises(S4ConfigError, match="missing field"):
            cfg.load_aliases()

    def test_corrupt_file(self, cfg):
        cfg.config_dir.mkdir(parents=True)
        cfg.config_file.write_text("{not json")
        with pytest.raises(S4ConfigError, match="Invalid config file"):
            cfg.load_aliases()


class TestWatchInterval:
    """Tests for the S4_SYNC_WATCH_INTERVAL_SEC override."""

    def test_default(self, cfg, monkeypatch):
        monkeypatch.delenv("S4_SYNC_WATCH_INTERVAL_SEC", raising=False)
        assert cfg.watch_interval == DEFAULT_WATCH_INTERVAL

    def test_override(self, cfg, monkeypatch):
        monkeypatch.setenv("S4_SYNC_WATCH_INTERVAL_SEC", "0.5")
        assert cfg.watch_interval == 0.5

    @pytest.mark.parametrize("value", ["abc", "0", "-3"])
    def test_invalid(self, cfg, monkeypatch, value):
        monkeypatch.setenv("S4_SYNC_WATCH_INTERVAL_SEC", value)
        with pytest.raises(S4ConfigError, match="S4_SYNC_WATCH_INTERVAL_SEC"):
            cfg.watch_interval
