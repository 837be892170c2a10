"""Tests for Settings configuration model."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from zaya.config import Settings


class TestGetStopSequences:
    def test_parses_comma_separated(self):
        s = Settings(stop_sequences="User:,</s>")
        assert s.get_stop_sequences() == ["User:", "</s>"]

    def test_handles_spaces(self):
        s = Settings(stop_sequences=" User: , </s> ")
        assert s.get_stop_sequences() == ["User:", "</s>"]

    def test_empty_string_returns_empty_list(self):
        s = Settings(stop_sequences="")
        assert s.get_stop_sequences() == []


class TestMaxContextCost:
    def test_reserves_reply_tokens(self):
        s = Settings(context_size=8192, max_reply_tokens=512)
        assert s.max_context_cost == 7680

    def test_never_negative(self):
        s = Settings(context_size=100, max_reply_tokens=512)
        assert s.max_context_cost == 0


class TestDefaults:
    def test_default_provider(self):
        s = Settings()
        assert s.completion_provider == "openai"

    def test_default_alt_model_empty(self):
        s = Settings()
        assert s.completion_alt_model == ""

    def test_default_database_path(self):
        s = Settings()
        assert s.database_path == Path("data/zaya.db")

    def test_default_session_durations(self):
        s = Settings()
        assert s.memory_duration_seconds == 3600
        assert s.session_ttl_seconds == 7 * 24 * 3600


class TestValidation:
    def test_unknown_provider_raises(self):
        with pytest.raises(ValidationError):
            Settings(completion_provider="cohere")

    def test_unknown_env_var_raises(self):
        with pytest.raises(ValueError, match="extra_forbidden"):
            Settings(**{"nonexistent_field": "value"})
