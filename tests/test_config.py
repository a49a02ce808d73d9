"""Tests for configuration loading."""

from pathlib import Path

import pytest

from jsonnet_lsp.config import (
    PROJECT_CONFIG_NAME,
    ConfigError,
    ServerConfig,
    load_all_configs,
    load_config,
    parse_log_level,
)


@pytest.fixture
def user_config(tmp_path):
    path = tmp_path / "user" / "config.toml"
    path.parent.mkdir()
    return path


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


class TestServerConfig:
    """Tests for ServerConfig.from_dict."""

    def test_defaults(self):
        config = ServerConfig()
        assert config.evaluate is True
        assert config.publish_evaluation_errors is False
        assert config.formatting_placeholder == "TODO: test"
        assert config.shutdown_timeout == 30.0
        assert config.log_level == "WARNING"
        assert config.log_file is None

    def test_overrides(self):
        config = ServerConfig.from_dict(
            {"evaluate": False, "shutdown_timeout": 5, "log_level": "debug", "log_file": "/tmp/x.log"}
        )
        assert config.evaluate is False
        assert config.shutdown_timeout == 5.0
        assert config.log_level == "DEBUG"
        assert config.log_file == Path("/tmp/x.log")

    def test_base_is_kept(self):
        base = ServerConfig(formatting_placeholder="keep")
        assert ServerConfig.from_dict({"evaluate": False}, base).formatting_placeholder == "keep"

    @pytest.mark.parametrize(
        "data",
        [
            {"unknown": 1},
            {"evaluate": "yes"},
            {"shutdown_timeout": 0},
            {"shutdown_timeout": True},
            {"log_level": "LOUD"},
            {"formatting_placeholder": 3},
        ],
    )
    def test_invalid(self, data):
        with pytest.raises(ConfigError):
            ServerConfig.from_dict(data)


class TestLoadConfig:
    """Tests for explicitly named config files."""

    def test_reads_server_table(self, tmp_path):
        path = tmp_path / "c.toml"
        path.write_text('[server]\nformatting_placeholder = "x"\n')
        assert load_config(path).formatting_placeholder == "x"

    def test_missing_table_gives_defaults(self, tmp_path):
        path = tmp_path / "c.toml"
        path.write_text("[other]\na = 1\n")
        assert load_config(path) == ServerConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "absent.toml")

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "c.toml"
        path.write_text("[server\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_invalid_value_names_file(self, tmp_path):
        path = tmp_path / "c.toml"
        path.write_text("[server]\nevaluate = 1\n")
        with pytest.raises(ConfigError, match="c.toml"):
            load_config(path)


class TestLoadAllConfigs:
    """Tests for user + project discovery."""

    def test_no_files(self, project, user_config):
        assert load_all_configs(project, user_config) == ServerConfig()

    def test_project_wins(self, project, user_config):
        user_config.write_text('[server]\nformatting_placeholder = "user"\nevaluate = false\n')
        (project / PROJECT_CONFIG_NAME).write_text('[server]\nformatting_placeholder = "project"\n')
        config = load_all_configs(project, user_config)
        assert config.formatting_placeholder == "project"
        assert config.evaluate is False

    def test_broken_file_is_skipped(self, project, user_config, caplog):
        user_config.write_text('[server]\nformatting_placeholder = "user"\n')
        (project / PROJECT_CONFIG_NAME).write_text("not toml [")
        config = load_all_configs(project, user_config)
        assert config.formatting_placeholder == "user"
        assert "Ignoring config file" in caplog.text


class TestParseLogLevel:
    """Tests for parse_log_level."""

    def test_case_insensitive(self):
        assert parse_log_level("info") == "INFO"

    def test_invalid(self):
        with pytest.raises(ConfigError):
            parse_log_level("verbose")
