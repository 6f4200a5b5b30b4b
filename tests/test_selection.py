"""Tests for the mentor-centric view, manual selections and history summaries."""
import pytest

from mentor_matching.errors import CapacityExceededError, SelectionError
from mentor_matching.matching_models import (
    MatchingOutput,
    MatchingResult,
    MatchingStats,
    MatchRecommendation,
    MatchScore,
    ProposedAssignment,
)
from mentor_matching.recommender import run_batch_matching
from mentor_matching.selection import SelectionIndex, summarize_for_history, to_mentor_centric


def rec(mentor_id, score, name=None):
    return MatchRecommendation(mentor_id=mentor_id, mentor_name=name or mentor_id.upper(), score=MatchScore(total_score=score))


@pytest.fixture
def output():
    """Two mentees; mentor a is everyone's favourite, mentor z is not on the roster."""
    return MatchingOutput(
        mode="top3_per_mentee",
        results=[
            MatchingResult(mentee_id="e1", mentee_name="Eve", recommendations=[rec("a", 90), rec("b", 70)]),
            MatchingResult(mentee_id="e2", mentee_name="Dan", recommendations=[rec("a", 95), rec("z", 60, name="Zed")]),
            MatchingResult(mentee_id="e3", mentee_name="Lee", recommendations=[]),
        ],
        stats=MatchingStats(mentees_total=3, mentors_total=3, pairs_evaluated=9, after_filters=4),
    )


class TestMentorCentric:
    def test_pivot(self, output, make_mentor):
        mentors = [make_mentor("a", name="Ada"), make_mentor("b", name="Bob"), make_mentor("c", name="Cy")]
        view = to_mentor_centric(output, mentors)

        assert [m.mentor_id for m in view] == ["a", "b", "z", "c"]
        ada = view[0]
        assert [p.mentee_id for p in ada.potential_mentees] == ["e2", "e1"]
        assert [p.rank_for_this_mentee for p in ada.potential_mentees] == [1, 1]
        assert ada.capacity_remaining == 2

        bob = view[1]
        assert bob.potential_mentees[0].rank_for_this_mentee == 2

        zed = view[2]
        assert zed.mentor_name == "Zed"
        assert zed.capacity_remaining == 0

        assert view[3].potential_mentees == []

    def test_every_recommendation_appears_once(self, cohort):
        mentees, mentors = cohort
        out = run_batch_matching(mentees, mentors)
        view = to_mentor_centric(out, mentors)
        total = sum(len(m.potential_mentees) for m in view)
        assert total == sum(len(r.recommendations) for r in out.results)
        assert {m.mentor_id for m in view} == {m.id for m in mentors}


class TestSelectionIndex:
    def test_select_and_reverse_index(self):
        index = SelectionIndex({"a": 2, "b": 1})
        index.select("e1", "a")
        index.select("e2", "a")
        assert index.mentor_of("e1") == "a"
        assert index.mentees_of("a") == frozenset({"e1", "e2"})
        assert index.remaining_capacity("a") == 0
        assert len(index) == 2
        assert "e1" in index

    def test_capacity_is_enforced(self):
        index = SelectionIndex({"a": 1})
        index.select("e1", "a")
        with pytest.raises(CapacityExceededError) as exc:
            index.select("e2", "a")
        assert exc.value.mentor_id == "a"
        assert index.assignments() == {"e1": "a"}

    def test_reselecting_same_pair_is_a_no_op(self):
        index = SelectionIndex({"a": 1})
        index.select("e1", "a")
        index.select("e1", "a")
        assert index.remaining_capacity("a") == 0

    def test_moving_a_mentee_frees_the_old_mentor(self):
        index = SelectionIndex({"a": 1, "b": 1})
        index.select("e1", "a")
        index.select("e1", "b")
        assert index.mentees_of("a") == frozenset()
        assert index.remaining_capacity("a") == 1
        assert index.mentor_of("e1") == "b"

    def test_failed_move_keeps_previous_selection(self):
        index = SelectionIndex({"a": 1, "b": 1})
        index.select("e1", "a")
        index.select("e2", "b")
        with pytest.raises(CapacityExceededError):
            index.select("e1", "b")
        assert index.assignments() == {"e1": "a", "e2": "b"}

    def test_toggle_and_deselect(self):
        index = SelectionIndex({"a": 1})
        assert index.toggle("e1", "a") is True
        assert index.toggle("e1", "a") is False
        assert index.mentor_of("e1") is None
        assert index.deselect("e1") is None
        index.select("e1", "a")
        assert index.deselect("e1") == "a"
        assert index.remaining_capacity("a") == 1

    def test_unknown_ids(self):
        index = SelectionIndex({"a": 1}, mentee_ids=["e1"])
        with pytest.raises(SelectionError):
            index.select("e1", "nobody")
        with pytest.raises(SelectionError):
            index.select("stranger", "a")
        with pytest.raises(SelectionError):
            index.remaining_capacity("nobody")

    def test_from_batch_output(self, cohort):
        mentees, mentors = cohort
        out = run_batch_matching(mentees, mentors)
        index = SelectionIndex.from_output(out, mentors)
        proposed = {r.mentee_id: r.proposed_assignment.mentor_id for r in out.results if r.proposed_assignment}
        assert index.assignments() == dict(sorted(proposed.items()))
        for mentor in mentors:
            assert index.remaining_capacity(mentor.id) >= 0


class TestHistory:
    def test_summary(self, output):
        entry = summarize_for_history(output, launched=True)
        assert entry.mode == "top3_per_mentee"
        assert entry.launched
        assert entry.matches_count == 3
        assert entry.average_score == 92.5
        assert entry.timestamp == output.timestamp
        assert entry.stats.after_filters == 4

    def test_empty_run(self):
        entry = summarize_for_history(MatchingOutput(mode="batch"))
        assert entry.average_score == 0.0
        assert entry.matches_count == 0

    def test_assignment_in_batch_output(self):
        out = MatchingOutput(
            mode="batch",
            results=[
                MatchingResult(
                    mentee_id="e1",
                    mentee_name="Eve",
                    recommendations=[rec("a", 81.239)],
                    proposed_assignment=ProposedAssignment(mentor_id="a", mentor_name="A"),
                )
            ],
        )
        assert summarize_for_history(out).average_score == 81.24
