"""Tests for settings loading and normalization."""

import pytest
from pydantic import ValidationError

from canvas_ask.config import DEFAULT_BASE_URL, Settings, get_settings, normalize_base_url, reload_settings
from canvas_ask.core.prompts import DEFAULT_SYSTEM_PROMPT


def test_defaults():
    """Test default values without any environment."""
    settings = reload_settings()
    assert settings.allow_api_calls is False
    assert settings.openai_api_key is None
    assert settings.openai_base_url == DEFAULT_BASE_URL
    assert settings.top_related_results == 8
    assert settings.ask_hop_limit == 3
    assert settings.export_hop_limit == 10
    assert settings.output_folder == "Ask Canvas"
    assert settings.system_prompt == DEFAULT_SYSTEM_PROMPT
    assert settings.is_api_configured is False


def test_env_overrides(monkeypatch, tmp_path):
    """Test loading from CANVAS_ASK_ variables."""
    monkeypatch.setenv("CANVAS_ASK_VAULT_PATH", str(tmp_path))
    monkeypatch.setenv("CANVAS_ASK_ALLOW_API_CALLS", "true")
    monkeypatch.setenv("CANVAS_ASK_OPENAI_API_KEY", "  sk-abc  ")
    monkeypatch.setenv("CANVAS_ASK_OUTPUT_FOLDER", "/Answers/")

    settings = reload_settings()
    assert settings.vault_path == tmp_path.resolve()
    assert settings.openai_api_key == "sk-abc"
    assert settings.output_folder == "Answers"
    assert settings.is_api_configured is True


def test_get_settings_is_cached(monkeypatch):
    """Test that get_settings returns one instance until reloaded."""
    first = get_settings()
    assert get_settings() is first
    monkeypatch.setenv("CANVAS_ASK_MAX_TOKENS", "500")
    assert get_settings().max_tokens != 500
    assert reload_settings().max_tokens == 500


def test_clamping():
    """Test result count and hop limit clamping."""
    settings = Settings(top_related_results=50, ask_hop_limit=99, export_hop_limit=-3)
    assert settings.top_related_results == 12
    assert settings.ask_hop_limit == 12
    assert settings.export_hop_limit == 0
    assert Settings(top_related_results=1).top_related_results == 3


def test_blank_model_falls_back():
    """Test that an empty model name uses the default."""
    assert Settings(openai_model="  ").openai_model == "gpt-4o-mini"


def test_normalize_base_url():
    """Test origin extraction and scheme handling."""
    assert normalize_base_url("") == DEFAULT_BASE_URL
    assert normalize_base_url("api.example.com/v1/") == "https://api.example.com"
    assert normalize_base_url("http://localhost:8080/path") == "http://localhost:8080"
    with pytest.raises(ValueError):
        normalize_base_url("ftp://example.com")


def test_invalid_base_url_rejected():
    """Test that settings refuse an unusable endpoint."""
    with pytest.raises(ValidationError):
        Settings(openai_base_url="ftp://example.com")


def test_retry_policy_from_settings():
    """Test the derived retry policy."""
    policy = Settings(max_attempts=5, request_timeout=7, retry_max_delay=3).retry_policy()
    assert policy.max_attempts == 5
    assert policy.timeout == 7
    assert policy.max_delay == 3
    assert policy.base_delay == 0.8


def test_retry_settings_bounds():
    """Test that attempt counts, timeouts and delays are validated."""
    with pytest.raises(ValidationError):
        Settings(max_attempts=0)
    with pytest.raises(ValidationError):
        Settings(request_timeout=0)
    with pytest.raises(ValidationError):
        Settings(retry_base_delay=-1)


def test_zero_attempts_env_rejected(monkeypatch):
    """Test that CANVAS_ASK_MAX_ATTEMPTS=0 fails at load time."""
    monkeypatch.setenv("CANVAS_ASK_MAX_ATTEMPTS", "0")
    with pytest.raises(ValidationError):
        reload_settings()
