from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreWeights:
    """Relative weight of each sub-score. Only sub-scores with signal are weighed."""

    w_topics: float = 35.0
    w_seniority: float = 20.0
    w_timezone: float = 15.0
    w_cadence: float = 10.0
    w_semantic: float = 20.0
    w_style: float = 10.0
    w_level_preference: float = 5.0

    def as_dict(self) -> Dict[str, float]:
        return {
            "topic_overlap": self.w_topics,
            "seniority_fit": self.w_seniority,
            "timezone_fit": self.w_timezone,
            "cadence_fit": self.w_cadence,
            "style_fit": self.w_style,
            "level_preference": self.w_level_preference,
            "semantic_similarity": self.w_semantic,
        }


@dataclass(frozen=True)
class ScoreThresholds:
    # sub-score >= reason -> listed in reasons; sub-score < risk -> listed in risks
    reason: float = 70.0
    risk: float = 40.0


DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EXPLANATION_MODEL = "gpt-4o-mini"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class EngineSettings:
    """Provider settings for similarity and explanation generation.

    Values come from the environment (and a `.env` file, if present) via
    `from_env`. A missing `openai_api_key` means the embedding path is
    unavailable and matching silently uses keyword similarity.
    """

    openai_api_key: Optional[str] = None
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    explanation_model: str = DEFAULT_EXPLANATION_MODEL
    embedding_timeout: float = 20.0
    explanation_timeout: float = 30.0
    explanation_concurrency: int = 3
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    thresholds: ScoreThresholds = field(default_factory=ScoreThresholds)

    @property
    def embeddings_configured(self) -> bool:
        return bool(self.openai_api_key)

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "EngineSettings":
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))
        concurrency = _env_int("MATCHING_EXPLANATION_CONCURRENCY", 3)
        if concurrency < 1:
            logger.warning("MATCHING_EXPLANATION_CONCURRENCY must be >= 1, using 1")
            concurrency = 1
        return cls(
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            embedding_model=os.environ.get("OPENAI_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            explanation_model=os.environ.get("OPENAI_MODEL", DEFAULT_EXPLANATION_MODEL),
            embedding_timeout=_env_float("MATCHING_EMBEDDING_TIMEOUT", 20.0),
            explanation_timeout=_env_float("MATCHING_EXPLANATION_TIMEOUT", 30.0),
            explanation_concurrency=concurrency,
        )
