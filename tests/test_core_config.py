"""Tests for autoagent/core/config.py: YAML cascade config loader."""

from pathlib import Path

import pytest
import yaml

from autoagent.core.config import (
    AgentConfig,
    AppConfig,
    CriticalActions,
    DatabaseConfig,
    LLMConfig,
    PolicyConfig,
    PromptLoader,
    _deep_merge,
    load_config,
)
from autoagent.core.exceptions import ConfigError


class TestDatabaseConfig:
    def test_defaults(self):
        c = DatabaseConfig()
        assert c.backend == "memory"
        assert c.port == 5432
        assert c.dbname == "autoagent"

    def test_connection_string(self):
        c = DatabaseConfig(user="test", password="pw", host="db.local", port=5433, dbname="mydb")
        assert c.connection_string == "postgresql://test:pw@db.local:5433/mydb"


class TestLLMConfig:
    def test_defaults_target_local_ollama(self):
        c = LLMConfig()
        assert c.provider == "ollama"
        assert c.base_url == "http://localhost:11434/v1"
        assert c.model == "phi3:mini"
        assert c.api_key is None
        assert c.default_temperature == 0.7
        assert c.analysis_temperature == 0.3


class TestAgentConfig:
    def test_rejects_zero_iterations(self):
        with pytest.raises(ValueError):
            AgentConfig(max_iterations=0)

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            AgentConfig(approval_timeout_seconds=0)


class TestPolicyConfig:
    def test_is_frozen(self):
        c = PolicyConfig()
        with pytest.raises(ValueError):
            c.max_file_size_mb = 99

    def test_max_file_size_bytes(self):
        assert PolicyConfig(max_file_size_mb=2).max_file_size_bytes == 2 * 1024 * 1024

    def test_critical_actions_accept_camel_case(self):
        c = CriticalActions.model_validate({"apiCall": True, "gitPush": False})
        assert c.api_call is True
        assert c.git_push is False
        assert c.install_package is True

    def test_default_deny_list_covers_system_dirs(self):
        c = PolicyConfig()
        for path in ("/etc", "/usr", "~/.ssh"):
            assert path in c.denied_paths


class TestDeepMerge:
    def test_nested_merge(self):
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        override = {"a": {"b": 10}, "e": 5}
        result = _deep_merge(base, override)
        assert result == {"a": {"b": 10, "c": 2}, "d": 3, "e": 5}

    def test_does_not_mutate_base(self):
        base = {"a": {"b": 1}}
        _deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}


class TestLoadConfig:
    def test_loads_repo_default(self, app_config: AppConfig):
        assert app_config.database.backend == "memory"
        assert app_config.agent.max_iterations == 50
        assert app_config.permissions.critical_actions.delete is True
        assert "git" in app_config.permissions.allowed_commands

    def test_missing_dir_gives_defaults(self, tmp_path: Path, clean_env):
        config = load_config(config_dir=tmp_path)
        assert config == AppConfig()

    def test_env_overlay(self, tmp_path: Path, clean_env):
        (tmp_path / "default.yaml").write_text(yaml.dump({"agent": {"max_iterations": 20}}))
        (tmp_path / "test.yaml").write_text(yaml.dump({"agent": {"max_iterations": 5}}))
        config = load_config(config_dir=tmp_path, env="test")
        assert config.agent.max_iterations == 5

    def test_env_var_overrides(self, tmp_path: Path, clean_env):
        clean_env.setenv("WORKSPACE_PATH", "/tmp/ws")
        clean_env.setenv("ENABLE_COMMAND_EXECUTION", "false")
        clean_env.setenv("REQUIRE_APPROVAL_FOR_API", "1")
        clean_env.setenv("LLM_MODEL", "llama3")
        config = load_config(config_dir=tmp_path)
        assert config.agent.workspace_path == "/tmp/ws"
        assert config.permissions.enable_command_execution is False
        assert config.permissions.require_approval_for_api is True
        assert config.llm.model == "llama3"

    def test_database_url_switches_backend(self, tmp_path: Path, clean_env):
        clean_env.setenv("DATABASE_URL", "postgresql://u:p@dbhost:6543/agentdb")
        config = load_config(config_dir=tmp_path)
        assert config.database.backend == "postgresql"
        assert config.database.host == "dbhost"
        assert config.database.port == 6543
        assert config.database.user == "u"
        assert config.database.dbname == "agentdb"

    def test_invalid_yaml_raises(self, tmp_path: Path, clean_env):
        (tmp_path / "default.yaml").write_text("agent: [unclosed")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(config_dir=tmp_path)

    def test_invalid_values_raise(self, tmp_path: Path, clean_env):
        (tmp_path / "default.yaml").write_text(yaml.dump({"agent": {"max_iterations": 0}}))
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(config_dir=tmp_path)


class TestPromptLoader:
    def test_falls_back_to_default(self, tmp_path: Path):
        loader = PromptLoader(tmp_path)
        assert loader.load("missing.txt", "fallback") == "fallback"

    def test_reads_file(self, tmp_path: Path):
        (tmp_path / "system.txt").write_text("  custom prompt \n")
        assert PromptLoader(tmp_path).load("system.txt", "fallback") == "custom prompt"
