"""Tests for settings loaded from the environment."""
import logging

import pytest

from mentor_matching.config import DEFAULT_EMBEDDING_MODEL, EngineSettings, ScoreWeights

ENV_VARS = [
    "OPENAI_API_KEY",
    "OPENAI_EMBEDDING_MODEL",
    "OPENAI_MODEL",
    "MATCHING_EMBEDDING_TIMEOUT",
    "MATCHING_EXPLANATION_TIMEOUT",
    "MATCHING_EXPLANATION_CONCURRENCY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start every test without any matching-related environment variables."""
    for name in ENV_VARS:
        # setenv first so teardown also removes values loaded from a .env file
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


class TestEngineSettings:
    def test_defaults(self):
        settings = EngineSettings.from_env(dotenv=False)
        assert settings.openai_api_key is None
        assert not settings.embeddings_configured
        assert settings.embedding_model == DEFAULT_EMBEDDING_MODEL
        assert settings.embedding_timeout == 20.0
        assert settings.explanation_timeout == 30.0
        assert settings.explanation_concurrency == 3

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setenv("OPENAI_MODEL", "gpt-test")
        monkeypatch.setenv("MATCHING_EMBEDDING_TIMEOUT", "2.5")
        monkeypatch.setenv("MATCHING_EXPLANATION_CONCURRENCY", "7")
        settings = EngineSettings.from_env(dotenv=False)
        assert settings.embeddings_configured
        assert settings.explanation_model == "gpt-test"
        assert settings.embedding_timeout == 2.5
        assert settings.explanation_concurrency == 7

    def test_invalid_values_fall_back(self, monkeypatch, caplog):
        monkeypatch.setenv("MATCHING_EXPLANATION_TIMEOUT", "soon")
        monkeypatch.setenv("MATCHING_EXPLANATION_CONCURRENCY", "many")
        with caplog.at_level(logging.WARNING, logger="mentor_matching.config"):
            settings = EngineSettings.from_env(dotenv=False)
        assert settings.explanation_timeout == 30.0
        assert settings.explanation_concurrency == 3
        assert "MATCHING_EXPLANATION_TIMEOUT" in caplog.text

    def test_concurrency_at_least_one(self, monkeypatch):
        monkeypatch.setenv("MATCHING_EXPLANATION_CONCURRENCY", "0")
        assert EngineSettings.from_env(dotenv=False).explanation_concurrency == 1

    def test_blank_api_key_is_unset(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "")
        assert EngineSettings.from_env(dotenv=False).openai_api_key is None

    def test_dotenv_file(self, monkeypatch, tmp_path):
        (tmp_path / ".env").write_text("OPENAI_API_KEY=sk-from-file\n", encoding="utf-8")
        monkeypatch.chdir(tmp_path)
        assert EngineSettings.from_env().openai_api_key == "sk-from-file"


def test_default_weights():
    assert ScoreWeights().as_dict() == {
        "topic_overlap": 35.0,
        "seniority_fit": 20.0,
        "timezone_fit": 15.0,
        "cadence_fit": 10.0,
        "style_fit": 10.0,
        "level_preference": 5.0,
        "semantic_similarity": 20.0,
    }
