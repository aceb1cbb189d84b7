"""Tests for hub config — env-driven settings and address parsing."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from jobhub.config import HubConfig, parse_socket_address


class TestHubConfig:
    def test_defaults(self):
        config = HubConfig(_env_file=None)
        assert config.environment == "development"
        assert config.log_level == "INFO"
        assert config.max_concurrent_runs_per_project == 1
        assert config.admission_policy == "reject"
        assert config.termination_grace_seconds == 5.0
        assert config.read_chunk_size == 256

    def test_default_paths(self):
        config = HubConfig(_env_file=None)
        assert config.projects_dir == Path("projects")
        assert config.default_entrypoint == ["python3", "main.py"]

    def test_log_level_is_normalized(self):
        assert HubConfig(log_level="debug", _env_file=None).log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            HubConfig(log_level="FOO", _env_file=None)

    def test_is_production_when_set(self):
        assert HubConfig(_env_file=None).is_production is False
        assert HubConfig(environment="production", _env_file=None).is_production is True

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("JOBHUB_MAX_CONCURRENT_RUNS_PER_PROJECT", "3")
        monkeypatch.setenv("JOBHUB_ADMISSION_POLICY", "queue")
        config = HubConfig(_env_file=None)
        assert config.max_concurrent_runs_per_project == 3
        assert config.admission_policy == "queue"

    def test_zero_timeout_disables(self):
        assert HubConfig(run_timeout_seconds=0, _env_file=None).run_timeout_seconds is None
        assert HubConfig(run_timeout_seconds=-1, _env_file=None).run_timeout_seconds is None
        assert HubConfig(run_timeout_seconds=2.5, _env_file=None).run_timeout_seconds == 2.5

    def test_limit_must_be_positive(self):
        with pytest.raises(ValidationError):
            HubConfig(max_concurrent_runs_per_project=0, _env_file=None)

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValidationError):
            HubConfig(admission_policy="drop", _env_file=None)

    def test_socket_address(self):
        config = HubConfig(host="0.0.0.0", port=8080, _env_file=None)
        assert config.socket_address == "0.0.0.0:8080"


class TestApiToken:
    def test_token_is_secret(self):
        config = HubConfig(api_token="s3cret", _env_file=None)
        assert "s3cret" not in repr(config)

    def test_matching_token_valid(self):
        config = HubConfig(api_token="s3cret", _env_file=None)
        assert config.api_token_valid("s3cret") is True
        assert config.api_token_valid("s3cret ") is False
        assert config.api_token_valid("") is False

    def test_empty_configured_token_never_valid(self):
        config = HubConfig(api_token="", _env_file=None)
        assert config.api_token_valid("") is False


class TestParseSocketAddress:
    def test_host_and_port(self):
        assert parse_socket_address("127.0.0.1:3000") == ("127.0.0.1", 3000)

    def test_bracketed_ipv6(self):
        assert parse_socket_address("[::1]:8080") == ("::1", 8080)

    @pytest.mark.parametrize("value", ["localhost", ":3000", "host:http", "host:0", "host:70000"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_socket_address(value)
