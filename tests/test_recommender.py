"""Tests for score matrix, greedy assignment and the batch/top-3 runs."""
import asyncio
import logging

from mentor_matching.errors import ProviderError
from mentor_matching.matching_models import pair_key
from mentor_matching.recommender import (
    assign_greedy,
    build_score_matrix,
    run_batch_matching,
    run_batch_matching_async,
    run_top3_matching,
    run_top3_matching_async,
)
from mentor_matching.similarity import FallbackSimilarityProvider, OpenAIEmbeddingClient, SimilarityResult


def _without_timestamp(output):
    data = output.model_dump(mode="json")
    data.pop("timestamp")
    return data


class TestAssignGreedy:
    def test_hand_computed_matrix(self):
        edges = [
            ("M1", "A", 90), ("M1", "B", 80),
            ("M2", "A", 85), ("M2", "B", 70),
            ("M3", "A", 60), ("M3", "B", 75),
        ]
        capacities = {"A": 1, "B": 2}
        assert assign_greedy(edges, capacities) == {"M1": "A", "M3": "B", "M2": "B"}
        assert capacities == {"A": 1, "B": 2}

    def test_capacity_runs_out(self):
        edges = [("M1", "A", 90), ("M2", "A", 80), ("M3", "A", 70)]
        assert assign_greedy(edges, {"A": 2}) == {"M1": "A", "M2": "A"}

    def test_ties_break_on_ids(self):
        edges = [("M2", "A", 50), ("M2", "B", 50), ("M1", "B", 50), ("M1", "A", 50)]
        assert assign_greedy(edges, {"A": 1, "B": 1}) == {"M1": "A", "M2": "B"}

    def test_unknown_or_empty_mentor_gets_nobody(self):
        assert assign_greedy([("M1", "A", 99), ("M1", "Z", 98)], {"A": 0}) == {}


class TestScoreMatrix:
    def test_stats_and_zero_capacity_filter(self, make_mentee, make_mentor):
        mentees = [make_mentee("e1"), make_mentee("e2")]
        mentors = [make_mentor("m1"), make_mentor("m0", capacity_remaining=0)]
        matrix = build_score_matrix(mentees, mentors)
        assert matrix.pairs_evaluated == 4
        assert matrix.after_filters == 2
        assert {p.mentor_id for p in matrix.pairs} == {"m1"}

    def test_similarity_scores_feed_semantic_subscore(self, make_mentee, make_mentor):
        similarity = SimilarityResult({pair_key("e1", "m1"): 12.5}, used_embeddings=True)
        matrix = build_score_matrix([make_mentee("e1")], [make_mentor("m1")], similarity)
        score = matrix.pairs[0].score
        assert score.sub_scores["semantic_similarity"] == 12.5
        assert score.is_embedding_based

    def test_duplicate_ids_keep_first(self, make_mentee, make_mentor, caplog):
        mentees = [make_mentee("e1", name="First"), make_mentee("e1", name="Second")]
        with caplog.at_level(logging.WARNING, logger="mentor_matching.recommender"):
            matrix = build_score_matrix(mentees, [make_mentor("m1")])
        assert [m.name for m in matrix.mentees] == ["First"]
        assert "duplicate mentee id e1" in caplog.text


class TestBatchMatching:
    def test_single_perfect_pair(self, make_mentee, make_mentor):
        output = run_batch_matching([make_mentee("e1")], [make_mentor("m1")])
        result = output.results[0]
        assert output.mode == "batch"
        assert result.proposed_assignment.mentor_id == "m1"
        assert result.recommendations[0].score.total_score >= 80
        assert result.recommendations[0].score.risks == []

    def test_capacity_is_respected(self, cohort):
        mentees, mentors = cohort
        output = run_batch_matching(mentees, mentors)
        capacity = {m.id: m.capacity_remaining for m in mentors}

        assigned = [r.proposed_assignment.mentor_id for r in output.results if r.proposed_assignment]
        assert len(assigned) <= sum(capacity.values())
        for mentor_id in set(assigned):
            assert assigned.count(mentor_id) <= capacity[mentor_id]
        assert "mr-d" not in assigned
        # six seats for eight mentees
        assert len(assigned) == 6
        assert sum(1 for r in output.results if r.proposed_assignment is None) == 2

    def test_zero_capacity_mentor_never_recommended(self, cohort):
        mentees, mentors = cohort
        output = run_batch_matching(mentees, mentors)
        for result in output.results:
            assert all(rec.mentor_id != "mr-d" for rec in result.recommendations)
        assert output.stats.pairs_evaluated == 32
        assert output.stats.after_filters == 24

    def test_repeated_runs_are_identical(self, cohort):
        mentees, mentors = cohort
        first = run_batch_matching(mentees, mentors)
        second = run_batch_matching(mentees, mentors)
        assert _without_timestamp(first) == _without_timestamp(second)

    def test_results_follow_input_order(self, cohort):
        mentees, mentors = cohort
        output = run_batch_matching(mentees, mentors)
        assert [r.mentee_id for r in output.results] == [m.id for m in mentees]

    def test_empty_inputs(self, make_mentor):
        output = run_batch_matching([], [make_mentor("m1")])
        assert output.results == []
        assert output.stats.mentors_total == 1
        assert output.stats.pairs_evaluated == 0

    def test_no_eligible_mentor_is_reported_not_raised(self, make_mentee, make_mentor):
        output = run_batch_matching([make_mentee("e1")], [make_mentor("m1", capacity_remaining=0)])
        assert output.results[0].proposed_assignment is None
        assert output.results[0].recommendations == []


class TestTop3Matching:
    def test_shortlists(self, cohort):
        mentees, mentors = cohort
        output = run_top3_matching(mentees, mentors)
        assert output.mode == "top3_per_mentee"
        for result in output.results:
            assert len(result.recommendations) <= 3
            assert result.proposed_assignment is None
            scores = [r.score.total_score for r in result.recommendations]
            assert scores == sorted(scores, reverse=True)
        assert [m.capacity_remaining for m in mentors] == [1, 2, 3, 0]

    def test_equal_scores_rank_by_mentor_id(self, make_mentee, make_mentor):
        output = run_top3_matching([make_mentee("e1")], [make_mentor("m-b"), make_mentor("m-a"), make_mentor("m-c")])
        assert [r.mentor_id for r in output.results[0].recommendations] == ["m-a", "m-b", "m-c"]

    def test_keeps_only_three(self, make_mentee, make_mentor):
        mentors = [make_mentor(f"m{i}") for i in range(5)]
        output = run_top3_matching([make_mentee("e1")], mentors)
        assert len(output.results[0].recommendations) == 3


class BrokenEmbeddings:
    async def compute_similarity(self, cohort_id, participants):
        raise ProviderError("embedding service unavailable")


class TestAsyncVariants:
    def test_embedding_failure_degrades_to_keywords(self, cohort):
        mentees, mentors = cohort
        provider = FallbackSimilarityProvider(primary=BrokenEmbeddings())
        output, used_embeddings = asyncio.run(
            run_batch_matching_async(mentees, mentors, cohort_id="cohort-1", provider=provider)
        )
        assert used_embeddings is False
        for result in output.results:
            for rec in result.recommendations:
                assert 0 <= rec.score.total_score <= 100
                assert not rec.score.is_embedding_based

    def test_without_cohort_uses_keywords(self, cohort):
        mentees, mentors = cohort
        output, used_embeddings = asyncio.run(run_top3_matching_async(mentees, mentors))
        assert used_embeddings is False
        assert output.mode == "top3_per_mentee"
        assert len(output.results) == len(mentees)

    def test_default_provider_tries_configured_embeddings(self, cohort, monkeypatch, tmp_path):
        async def fake_embed(self, texts):
            return [[1.0, float(i % 3)] for i in range(len(texts))]

        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        monkeypatch.setattr(OpenAIEmbeddingClient, "embed", fake_embed)
        mentees, mentors = cohort
        output, used_embeddings = asyncio.run(run_batch_matching_async(mentees, mentors, cohort_id="cohort-1"))
        assert used_embeddings is True
        assert any(rec.score.is_embedding_based for r in output.results for rec in r.recommendations)

    def test_default_provider_without_key_uses_keywords(self, cohort, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        mentees, mentors = cohort
        _, used_embeddings = asyncio.run(run_top3_matching_async(mentees, mentors, cohort_id="cohort-1"))
        assert used_embeddings is False
