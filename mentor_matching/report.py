"""Flat and Markdown renderings of a matching run for human review.

Nothing here calls an LLM; explanations are only included when the caller
already has them (e.g. from the explanation cache).
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd

from .matching_models import MatchingOutput, pair_key


def output_to_frame(output: MatchingOutput) -> pd.DataFrame:
    """One row per (mentee, recommended mentor), in result order.

    Args:
        output: Result of a batch or top-3 run.

    Returns:
        DataFrame with mentee/mentor ids and names, rank, total score, a
        `proposed` flag (batch mode) and the joined topics, reasons and risks.
    """
    rows: List[Dict[str, Any]] = []
    for result in output.results:
        proposed_id = result.proposed_assignment.mentor_id if result.proposed_assignment else None
        for rank, rec in enumerate(result.recommendations, start=1):
            rows.append({
                "mentee_id": result.mentee_id,
                "mentee_name": result.mentee_name,
                "rank": rank,
                "mentor_id": rec.mentor_id,
                "mentor_name": rec.mentor_name,
                "mentor_role": rec.mentor_role or "",
                "total_score": rec.score.total_score,
                "proposed": rec.mentor_id == proposed_id,
                "shared_topics": " | ".join(rec.score.shared_topics),
                "reasons": " | ".join(rec.score.reasons),
                "risks": " | ".join(rec.score.risks),
            })
    columns = [
        "mentee_id", "mentee_name", "rank", "mentor_id", "mentor_name", "mentor_role",
        "total_score", "proposed", "shared_topics", "reasons", "risks",
    ]
    return pd.DataFrame(rows, columns=columns)


def _trunc(v: Any, n: int = 400) -> str:
    s = str(v or "").strip()
    return (s[: n - 1] + "…") if len(s) > n else s


def build_markdown(
    output: MatchingOutput,
    explanations: Optional[Mapping[str, str]] = None,
    used_embeddings: Optional[bool] = None,
) -> str:
    explanations = explanations or {}
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    stats = output.stats
    lines: List[str] = []
    lines.append("# Mentoring Matches Report\n")
    lines.append(f"Generated: {ts}\n")
    lines.append(f"Mode: {output.mode}\n")
    lines.append(
        f"Mentees: {stats.mentees_total} | Mentors: {stats.mentors_total} | "
        f"Pairs evaluated: {stats.pairs_evaluated} | Eligible: {stats.after_filters}\n"
    )
    if used_embeddings is False:
        lines.append("> Semantic similarity used the keyword fallback; embeddings were unavailable.\n")
    lines.append("")

    for result in output.results:
        lines.append(f"## {result.mentee_name} ({result.mentee_id})\n")
        if output.mode == "batch":
            if result.proposed_assignment is not None:
                proposed = result.proposed_assignment
                lines.append(f"Proposed mentor: **{proposed.mentor_name}**\n")
                if all(rec.mentor_id != proposed.mentor_id for rec in result.recommendations):
                    explanation = explanations.get(pair_key(result.mentee_id, proposed.mentor_id))
                    if explanation:
                        lines.append("> " + _trunc(explanation, 800).replace("\n", "\n> "))
                        lines.append("")
            else:
                lines.append("Proposed mentor: _none (no eligible mentor with capacity)_\n")
        if not result.recommendations:
            lines.append("No eligible mentors.\n")
            continue

        for rank, rec in enumerate(result.recommendations, start=1):
            score = rec.score
            role = f" | {rec.mentor_role}" if rec.mentor_role else ""
            lines.append(f"### {rank}. {rec.mentor_name}{role} | Score: {score.total_score:.2f}\n")
            if score.sub_scores:
                parts = ", ".join(f"{name} {value:.0f}" for name, value in score.sub_scores.items())
                lines.append(f"Sub-scores: {parts}\n")
            if score.reasons:
                lines.append("Reasons:")
                lines.extend(f"- {r}" for r in score.reasons)
                lines.append("")
            if score.risks:
                lines.append("Risks:")
                lines.extend(f"- {r}" for r in score.risks)
                lines.append("")
            if score.icebreaker:
                lines.append(f"Icebreaker: {score.icebreaker}\n")
            explanation = explanations.get(pair_key(result.mentee_id, rec.mentor_id))
            if explanation:
                lines.append("> " + _trunc(explanation, 800).replace("\n", "\n> "))
                lines.append("")

    return "\n".join(lines)


def render_markdown(
    output: MatchingOutput,
    out_path_md: Path,
    explanations: Optional[Mapping[str, str]] = None,
    used_embeddings: Optional[bool] = None,
) -> None:
    """Write the Markdown report for `output` to `out_path_md`."""
    out_path_md.parent.mkdir(parents=True, exist_ok=True)
    out_path_md.write_text(build_markdown(output, explanations, used_embeddings), encoding="utf-8")
    return None
