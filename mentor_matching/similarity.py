"""Semantic similarity between mentee and mentor profiles.

Two providers share one contract, `compute_similarity(cohort_id, participants)`:

- `EmbeddingSimilarityProvider`: OpenAI embeddings, cached per
  (cohort, participant, model), compared by cosine similarity.
- `KeywordSimilarityProvider`: TF-IDF over the same profile text. Always
  available, never raises.

`FallbackSimilarityProvider` tries embeddings first and degrades to keywords
on any error, timeout or missing configuration, reporting which path was used
through `SimilarityResult.used_embeddings`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np
from openai import AsyncOpenAI, OpenAIError
from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from .config import DEFAULT_EMBEDDING_MODEL, EngineSettings
from .data_models import Mentee, Mentor
from .errors import ProviderError
from .feature_engineering import build_profile_text
from .matching_models import pair_key

logger = logging.getLogger(__name__)

ParticipantKey = Tuple[str, str]  # (kind, participant_id)


@dataclass(frozen=True)
class SimilarityResult:
    scores: Dict[str, float] = field(default_factory=dict)
    used_embeddings: bool = False


class SimilarityProvider(Protocol):
    async def compute_similarity(
        self, cohort_id: Optional[str], participants: Sequence[Union[Mentee, Mentor]]
    ) -> SimilarityResult: ...


def split_participants(
    participants: Sequence[Union[Mentee, Mentor]],
) -> Tuple[List[Mentee], List[Mentor]]:
    mentees = [p for p in participants if isinstance(p, Mentee)]
    mentors = [p for p in participants if isinstance(p, Mentor)]
    return mentees, mentors


def _similarity_to_score(sim: float) -> float:
    # negative cosine carries no useful "closeness" signal
    return round(max(0.0, min(1.0, float(sim))) * 100.0, 4)


class KeywordSimilarityProvider:
    """TF-IDF cosine similarity over profile text; the deterministic fallback."""

    def __init__(self, max_features: int = 2048):
        self.max_features = max_features

    def compute(self, participants: Sequence[Union[Mentee, Mentor]]) -> SimilarityResult:
        mentees, mentors = split_participants(participants)
        mentee_texts = [(m.id, build_profile_text(m)) for m in mentees]
        mentor_texts = [(m.id, build_profile_text(m)) for m in mentors]
        mentee_texts = [(i, t) for i, t in mentee_texts if t.strip()]
        mentor_texts = [(i, t) for i, t in mentor_texts if t.strip()]
        if not mentee_texts or not mentor_texts:
            return SimilarityResult({}, used_embeddings=False)

        corpus = [t for _, t in mentee_texts] + [t for _, t in mentor_texts]
        vec = TfidfVectorizer(max_features=self.max_features, stop_words="english", sublinear_tf=True)
        try:
            matrix = vec.fit_transform(corpus)
        except ValueError:
            # empty vocabulary: every text was stop words or punctuation
            return SimilarityResult({}, used_embeddings=False)

        split = len(mentee_texts)
        sims = cosine_similarity(matrix[:split], matrix[split:])
        scores: Dict[str, float] = {}
        for i, (mentee_id, _) in enumerate(mentee_texts):
            for j, (mentor_id, _) in enumerate(mentor_texts):
                scores[pair_key(mentee_id, mentor_id)] = _similarity_to_score(sims[i, j])
        return SimilarityResult(scores, used_embeddings=False)

    async def compute_similarity(
        self, cohort_id: Optional[str], participants: Sequence[Union[Mentee, Mentor]]
    ) -> SimilarityResult:
        return await asyncio.to_thread(self.compute, participants)


class EmbeddingCache(Protocol):
    def get_many(
        self, cohort_id: str, model: str, keys: Sequence[ParticipantKey]
    ) -> Dict[ParticipantKey, List[float]]: ...

    def set_many(self, cohort_id: str, model: str, vectors: Dict[ParticipantKey, List[float]]) -> None: ...


class InMemoryEmbeddingCache:
    """Embedding vectors keyed by (cohort, model, kind, participant id)."""

    def __init__(self) -> None:
        self._vectors: Dict[Tuple[str, str, str, str], List[float]] = {}

    def get_many(
        self, cohort_id: str, model: str, keys: Sequence[ParticipantKey]
    ) -> Dict[ParticipantKey, List[float]]:
        found = {}
        for kind, participant_id in keys:
            vec = self._vectors.get((cohort_id, model, kind, participant_id))
            if vec is not None:
                found[(kind, participant_id)] = vec
        return found

    def set_many(self, cohort_id: str, model: str, vectors: Dict[ParticipantKey, List[float]]) -> None:
        for (kind, participant_id), vec in vectors.items():
            self._vectors[(cohort_id, model, kind, participant_id)] = list(vec)

    def __len__(self) -> int:
        return len(self._vectors)


class OpenAIEmbeddingClient:
    """Thin async wrapper over the OpenAI embeddings endpoint."""

    def __init__(
        self,
        model: str = DEFAULT_EMBEDDING_MODEL,
        client: Optional[AsyncOpenAI] = None,
        api_key: Optional[str] = None,
        batch_size: int = 100,
    ):
        self.model = model
        self.batch_size = batch_size
        self._client = client
        self._api_key = api_key

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            try:
                self._client = AsyncOpenAI(api_key=self._api_key) if self._api_key else AsyncOpenAI()
            except OpenAIError as e:
                raise ProviderError(f"OpenAI client init failed: {e}") from e
        return self._client

    async def embed(self, texts: List[str]) -> List[List[float]]:
        client = self._get_client()
        embeddings: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            try:
                resp = await client.embeddings.create(model=self.model, input=batch)
            except OpenAIError as e:
                raise ProviderError(f"OpenAI embeddings failed: {e}") from e
            items = sorted(resp.data, key=lambda item: item.index)
            embeddings.extend(list(item.embedding) for item in items)
        if len(embeddings) != len(texts):
            raise ProviderError(f"Expected {len(texts)} embeddings, got {len(embeddings)}")
        return embeddings


class EmbeddingSimilarityProvider:
    """Cosine similarity between cached or freshly requested profile embeddings."""

    def __init__(self, client: OpenAIEmbeddingClient, cache: Optional[EmbeddingCache] = None):
        self.client = client
        self.cache = cache if cache is not None else InMemoryEmbeddingCache()

    @property
    def model(self) -> str:
        return self.client.model

    async def compute_similarity(
        self, cohort_id: Optional[str], participants: Sequence[Union[Mentee, Mentor]]
    ) -> SimilarityResult:
        if not cohort_id:
            raise ProviderError("Embedding similarity requires a cohort id")

        mentees, mentors = split_participants(participants)
        texts: Dict[ParticipantKey, str] = {}
        for p in list(mentees) + list(mentors):
            text = build_profile_text(p)
            # empty profiles carry no semantic signal; leave them to the engine's fallback
            if text.strip():
                texts[(p.kind, p.id)] = text

        vectors = self.cache.get_many(cohort_id, self.model, list(texts))
        missing = [key for key in texts if key not in vectors]
        if missing:
            logger.info("Requesting %d embeddings for cohort %s (%d cached)", len(missing), cohort_id, len(vectors))
            fresh = await self.client.embed([texts[key] for key in missing])
            new_vectors = dict(zip(missing, fresh))
            self.cache.set_many(cohort_id, self.model, new_vectors)
            vectors.update(new_vectors)

        mentee_ids = [m.id for m in mentees if ("mentee", m.id) in vectors]
        mentor_ids = [m.id for m in mentors if ("mentor", m.id) in vectors]
        if not mentee_ids or not mentor_ids:
            return SimilarityResult({}, used_embeddings=True)

        a = np.asarray([vectors[("mentee", i)] for i in mentee_ids], dtype=float)
        b = np.asarray([vectors[("mentor", i)] for i in mentor_ids], dtype=float)
        if a.ndim != 2 or b.ndim != 2 or a.shape[1] != b.shape[1]:
            raise ProviderError("Embedding dimensions do not match")

        sims = cosine_similarity(a, b)
        scores = {
            pair_key(mentee_id, mentor_id): _similarity_to_score(sims[i, j])
            for i, mentee_id in enumerate(mentee_ids)
            for j, mentor_id in enumerate(mentor_ids)
        }
        return SimilarityResult(scores, used_embeddings=True)


class FallbackSimilarityProvider:
    """Embeddings first, keyword similarity on any failure, timeout or missing cohort id."""

    def __init__(
        self,
        primary: Optional[SimilarityProvider] = None,
        fallback: Optional[KeywordSimilarityProvider] = None,
        timeout: float = 20.0,
    ):
        self.primary = primary
        self.fallback = fallback or KeywordSimilarityProvider()
        self.timeout = timeout

    async def compute_similarity(
        self, cohort_id: Optional[str], participants: Sequence[Union[Mentee, Mentor]]
    ) -> SimilarityResult:
        if self.primary is not None and cohort_id:
            try:
                result = await asyncio.wait_for(
                    self.primary.compute_similarity(cohort_id, participants), timeout=self.timeout
                )
                return SimilarityResult(result.scores, used_embeddings=True)
            except asyncio.TimeoutError:
                logger.warning("Embedding similarity timed out after %.1fs; using keyword fallback", self.timeout)
            except Exception as e:
                logger.warning("Embedding similarity unavailable (%s); using keyword fallback", e)
        elif self.primary is None:
            logger.info("No embedding provider configured; using keyword similarity")
        else:
            logger.info("No cohort id given; using keyword similarity")

        result = await self.fallback.compute_similarity(cohort_id, participants)
        return SimilarityResult(result.scores, used_embeddings=False)


def build_similarity_provider(
    settings: Optional[EngineSettings] = None, cache: Optional[EmbeddingCache] = None
) -> FallbackSimilarityProvider:
    """Wire the default provider chain from settings. Without an API key only keywords are used."""
    settings = settings or EngineSettings.from_env()
    primary: Optional[SimilarityProvider] = None
    if settings.embeddings_configured:
        client = OpenAIEmbeddingClient(model=settings.embedding_model, api_key=settings.openai_api_key)
        primary = EmbeddingSimilarityProvider(client, cache=cache)
    return FallbackSimilarityProvider(primary=primary, timeout=settings.embedding_timeout)
