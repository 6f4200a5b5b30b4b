"""Tests for the flat and Markdown renderings of a run."""
from mentor_matching.matching_models import (
    MatchingOutput,
    MatchingResult,
    MatchRecommendation,
    MatchScore,
    ProposedAssignment,
    pair_key,
)
from mentor_matching.recommender import run_batch_matching
from mentor_matching.report import build_markdown, output_to_frame, render_markdown


def _output():
    score = MatchScore(
        total_score=77.5,
        reasons=["2 shared development areas (A, B)"],
        risks=["Timezone difference of 7h"],
        sub_scores={"topic_overlap": 100.0, "timezone_fit": 10.0},
        shared_topics=["A", "B"],
        icebreaker="Discuss shared interest in A",
    )
    return MatchingOutput(
        mode="batch",
        results=[
            MatchingResult(
                mentee_id="e1",
                mentee_name="Eve",
                recommendations=[MatchRecommendation(mentor_id="m1", mentor_name="Mia", mentor_role="EM", score=score)],
                proposed_assignment=ProposedAssignment(mentor_id="m1", mentor_name="Mia"),
            ),
            MatchingResult(mentee_id="e2", mentee_name="Dan"),
            MatchingResult(
                mentee_id="e3",
                mentee_name="Lee",
                recommendations=[MatchRecommendation(mentor_id="m1", mentor_name="Mia", score=score)],
                proposed_assignment=ProposedAssignment(mentor_id="m9", mentor_name="Max"),
            ),
        ],
    )


class TestOutputToFrame:
    def test_rows(self):
        df = output_to_frame(_output())
        assert len(df) == 2
        first = df.iloc[0]
        assert first["mentee_id"] == "e1"
        assert first["rank"] == 1
        assert bool(first["proposed"]) is True
        assert first["shared_topics"] == "A | B"
        assert bool(df.iloc[1]["proposed"]) is False

    def test_empty_output_keeps_columns(self):
        df = output_to_frame(MatchingOutput(mode="top3_per_mentee"))
        assert df.empty
        assert "total_score" in df.columns

    def test_one_row_per_recommendation(self, cohort):
        mentees, mentors = cohort
        output = run_batch_matching(mentees, mentors)
        assert len(output_to_frame(output)) == sum(len(r.recommendations) for r in output.results)


class TestMarkdown:
    def test_sections(self):
        text = build_markdown(_output(), used_embeddings=False)
        assert text.startswith("# Mentoring Matches Report")
        assert "keyword fallback" in text
        assert "## Eve (e1)" in text
        assert "Proposed mentor: **Mia**" in text
        assert "### 1. Mia | EM | Score: 77.50" in text
        assert "- Timezone difference of 7h" in text
        assert "Icebreaker: Discuss shared interest in A" in text
        assert "no eligible mentor with capacity" in text
        assert "No eligible mentors." in text

    def test_explanations_are_quoted(self):
        explanations = {
            pair_key("e1", "m1"): "Both care about leadership.\nMeet monthly.",
            pair_key("e3", "m9"): "Max covers the same topics.",
        }
        text = build_markdown(_output(), explanations=explanations)
        assert "> Both care about leadership.\n> Meet monthly." in text
        assert "> Max covers the same topics." in text
        assert "keyword fallback" not in text

    def test_long_explanations_are_truncated(self):
        text = build_markdown(_output(), explanations={pair_key("e1", "m1"): "x" * 2000})
        assert "x" * 799 + "…" in text
        assert "x" * 800 not in text

    def test_render_writes_file(self, tmp_path):
        path = tmp_path / "reports" / "matches.md"
        render_markdown(_output(), path)
        assert path.read_text(encoding="utf-8").startswith("# Mentoring Matches Report")
