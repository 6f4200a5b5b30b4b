from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from .data_models import FeatureSet, Mentee, Mentor
from .feature_engineering import normalize
from .matching_models import (
    MatchingOutput,
    MatchingResult,
    MatchingStats,
    MatchRecommendation,
    MatchScore,
    ProposedAssignment,
    pair_key,
)
from .scoring import ScoringEngine, is_eligible
from .similarity import (
    FallbackSimilarityProvider,
    SimilarityProvider,
    SimilarityResult,
    build_similarity_provider,
)

logger = logging.getLogger(__name__)

TOP_K = 3

P = TypeVar("P", Mentee, Mentor)


@dataclass(frozen=True)
class ScoredPair:
    mentee_id: str
    mentor_id: str
    score: MatchScore

    @property
    def total_score(self) -> float:
        return self.score.total_score


@dataclass
class ScoreMatrix:
    """Scores for every eligible (mentee, mentor) pair of one run."""

    mentees: List[Mentee]
    mentors: List[Mentor]
    pairs: List[ScoredPair] = field(default_factory=list)
    pairs_evaluated: int = 0

    @property
    def after_filters(self) -> int:
        return len(self.pairs)

    def by_mentee(self) -> Dict[str, List[ScoredPair]]:
        grouped: Dict[str, List[ScoredPair]] = {m.id: [] for m in self.mentees}
        for pair in self.pairs:
            grouped[pair.mentee_id].append(pair)
        return grouped

    def stats(self) -> MatchingStats:
        return MatchingStats(
            mentees_total=len(self.mentees),
            mentors_total=len(self.mentors),
            pairs_evaluated=self.pairs_evaluated,
            after_filters=self.after_filters,
        )


def _dedupe(participants: Sequence[P], label: str) -> List[P]:
    seen = set()
    unique: List[P] = []
    for p in participants:
        if p.id in seen:
            logger.warning("Dropping duplicate %s id %s", label, p.id)
            continue
        seen.add(p.id)
        unique.append(p)
    return unique


def build_score_matrix(
    mentees: Sequence[Mentee],
    mentors: Sequence[Mentor],
    similarity: Optional[SimilarityResult] = None,
    engine: Optional[ScoringEngine] = None,
) -> ScoreMatrix:
    """Enumerate all pairs, drop ineligible ones, score the rest.

    Args:
        mentees: Mentees in input order.
        mentors: Mentors in input order.
        similarity: Semantic scores keyed by `pair_key`; pairs missing from it
            fall back to keyword overlap inside the scoring engine.
        engine: Scoring engine; defaults to the standard weights.

    Returns:
        ScoreMatrix with `pairs_evaluated` = |mentees| x |mentors| and one
        ScoredPair per eligible pair.
    """
    engine = engine or ScoringEngine()
    mentees = _dedupe(mentees, "mentee")
    mentors = _dedupe(mentors, "mentor")
    semantic_scores = similarity.scores if similarity is not None else {}
    embedding_based = similarity.used_embeddings if similarity is not None else False

    mentee_features: Dict[str, FeatureSet] = {m.id: normalize(m) for m in mentees}
    mentor_features: Dict[str, FeatureSet] = {m.id: normalize(m) for m in mentors}

    matrix = ScoreMatrix(mentees=list(mentees), mentors=list(mentors))
    for mentee in mentees:
        a = mentee_features[mentee.id]
        for mentor in mentors:
            matrix.pairs_evaluated += 1
            b = mentor_features[mentor.id]
            if not is_eligible(a, b):
                continue
            score = engine.score(
                a,
                b,
                semantic=semantic_scores.get(pair_key(mentee.id, mentor.id)),
                embedding_based=embedding_based,
            )
            matrix.pairs.append(ScoredPair(mentee.id, mentor.id, score))
    logger.debug("Scored %d of %d pairs", matrix.after_filters, matrix.pairs_evaluated)
    return matrix


def rank_pairs(pairs: Iterable[ScoredPair]) -> List[ScoredPair]:
    """Descending score, ties broken by mentor id ascending."""
    return sorted(pairs, key=lambda p: (-p.total_score, p.mentor_id))


def top_k_recommendations(
    pairs: Iterable[ScoredPair], mentors: Mapping[str, Mentor], k: int = TOP_K
) -> List[MatchRecommendation]:
    recs = []
    for pair in rank_pairs(pairs)[:k]:
        mentor = mentors[pair.mentor_id]
        recs.append(
            MatchRecommendation(
                mentor_id=mentor.id,
                mentor_name=mentor.display_name,
                mentor_role=mentor.role,
                score=pair.score,
            )
        )
    return recs


def assign_greedy(
    edges: Iterable[Tuple[str, str, float]], capacities: Mapping[str, int]
) -> Dict[str, str]:
    """Greedy capacitated assignment over (mentee_id, mentor_id, score) edges.

    Edges are taken by score descending, ties by (mentee_id, mentor_id)
    ascending. An edge is taken when its mentee is still unassigned and its
    mentor has capacity left. This is a deterministic heuristic, not an
    optimal maximum-weight matching.

    Returns:
        Mapping mentee_id -> mentor_id for assigned mentees.
    """
    remaining = {mentor_id: max(int(cap), 0) for mentor_id, cap in capacities.items()}
    ordered = sorted(edges, key=lambda e: (-e[2], e[0], e[1]))
    assignment: Dict[str, str] = {}
    for mentee_id, mentor_id, _ in ordered:
        if mentee_id in assignment:
            continue
        if remaining.get(mentor_id, 0) <= 0:
            continue
        assignment[mentee_id] = mentor_id
        remaining[mentor_id] -= 1
    return assignment


def solve_batch(matrix: ScoreMatrix, k: int = TOP_K) -> MatchingOutput:
    mentors_by_id = {m.id: m for m in matrix.mentors}
    capacities = {m.id: m.capacity_remaining for m in matrix.mentors}
    assignment = assign_greedy(
        ((p.mentee_id, p.mentor_id, p.total_score) for p in matrix.pairs), capacities
    )

    grouped = matrix.by_mentee()
    results = []
    for mentee in matrix.mentees:
        proposed = None
        mentor_id = assignment.get(mentee.id)
        if mentor_id is not None:
            proposed = ProposedAssignment(mentor_id=mentor_id, mentor_name=mentors_by_id[mentor_id].display_name)
        results.append(
            MatchingResult(
                mentee_id=mentee.id,
                mentee_name=mentee.display_name,
                recommendations=top_k_recommendations(grouped[mentee.id], mentors_by_id, k),
                proposed_assignment=proposed,
            )
        )

    unmatched = sum(1 for r in results if r.proposed_assignment is None)
    if unmatched:
        logger.info("Batch matching left %d of %d mentees without a mentor", unmatched, len(results))
    return MatchingOutput(mode="batch", results=results, stats=matrix.stats())


def solve_top3(matrix: ScoreMatrix, k: int = TOP_K) -> MatchingOutput:
    mentors_by_id = {m.id: m for m in matrix.mentors}
    grouped = matrix.by_mentee()
    results = [
        MatchingResult(
            mentee_id=mentee.id,
            mentee_name=mentee.display_name,
            recommendations=top_k_recommendations(grouped[mentee.id], mentors_by_id, k),
        )
        for mentee in matrix.mentees
    ]
    return MatchingOutput(mode="top3_per_mentee", results=results, stats=matrix.stats())


def run_batch_matching(
    mentees: Sequence[Mentee],
    mentors: Sequence[Mentor],
    similarity: Optional[SimilarityResult] = None,
    engine: Optional[ScoringEngine] = None,
) -> MatchingOutput:
    """One mentor per mentee under mentor capacity, plus top-3 recommendations for review."""
    return solve_batch(build_score_matrix(mentees, mentors, similarity, engine))


def run_top3_matching(
    mentees: Sequence[Mentee],
    mentors: Sequence[Mentor],
    similarity: Optional[SimilarityResult] = None,
    engine: Optional[ScoringEngine] = None,
) -> MatchingOutput:
    """Independent top-3 shortlist per mentee. No capacity is consumed."""
    return solve_top3(build_score_matrix(mentees, mentors, similarity, engine))


async def _similarity_for(
    mentees: Sequence[Mentee],
    mentors: Sequence[Mentor],
    cohort_id: Optional[str],
    provider: Optional[SimilarityProvider],
) -> SimilarityResult:
    if provider is None:
        # embeddings need a cohort id to scope their cache
        provider = build_similarity_provider() if cohort_id else FallbackSimilarityProvider()
    return await provider.compute_similarity(cohort_id, [*mentees, *mentors])


async def run_batch_matching_async(
    mentees: Sequence[Mentee],
    mentors: Sequence[Mentor],
    cohort_id: Optional[str] = None,
    provider: Optional[SimilarityProvider] = None,
    engine: Optional[ScoringEngine] = None,
) -> Tuple[MatchingOutput, bool]:
    """Embedding-aware batch matching.

    Without a provider, one is built from the environment (`OPENAI_API_KEY`
    and friends), so embeddings are tried whenever a cohort id is given and
    a key is configured. Otherwise keyword similarity is used.

    Returns:
        (output, used_embeddings) so callers can disclose degraded quality.
    """
    similarity = await _similarity_for(mentees, mentors, cohort_id, provider)
    output = await asyncio.to_thread(run_batch_matching, mentees, mentors, similarity, engine)
    return output, similarity.used_embeddings


async def run_top3_matching_async(
    mentees: Sequence[Mentee],
    mentors: Sequence[Mentor],
    cohort_id: Optional[str] = None,
    provider: Optional[SimilarityProvider] = None,
    engine: Optional[ScoringEngine] = None,
) -> Tuple[MatchingOutput, bool]:
    similarity = await _similarity_for(mentees, mentors, cohort_id, provider)
    output = await asyncio.to_thread(run_top3_matching, mentees, mentors, similarity, engine)
    return output, similarity.used_embeddings
