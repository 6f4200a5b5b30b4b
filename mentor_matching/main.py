from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import typer
from rich import print
from rich.logging import RichHandler
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from .config import EngineSettings
from .data_models import Mentee, Mentor
from .explanations import ExplanationRequest, JsonFileExplanationCache, build_explanation_orchestrator
from .feature_engineering import normalize
from .ingest import load_matching_output, load_participants
from .matching_models import MatchingOutput
from .recommender import run_batch_matching_async, run_top3_matching_async
from .report import output_to_frame, render_markdown
from .scoring import ScoringEngine
from .similarity import FallbackSimilarityProvider, build_similarity_provider


app = typer.Typer(help="Mentee-mentor matching CLI")

MODES = {"batch": run_batch_matching_async, "top3": run_top3_matching_async}


def _setup_logging(verbose: bool) -> None:
	logging.basicConfig(
		level=logging.DEBUG if verbose else logging.INFO,
		format="%(message)s",
		datefmt="[%X]",
		handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
	)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
	"""Score, assign and explain mentee-mentor matches."""
	_setup_logging(verbose)


def _load(path: Path, kind: str) -> list:
	participants, warnings = load_participants(path, kind)  # type: ignore[arg-type]
	for w in warnings:
		print(f"[yellow]Skipped:[/yellow] {w}")
	print(f"[green]Loaded {len(participants)} {kind}s from[/green] {path}")
	return participants


def _results_table(output: MatchingOutput) -> Table:
	table = Table("Mentee", "Mentor", "Score", "Top risk")
	for result in output.results:
		if output.mode == "batch" and result.proposed_assignment is not None:
			chosen = next((r for r in result.recommendations if r.mentor_id == result.proposed_assignment.mentor_id), None)
			if chosen is None:
				# assigned outside the shortlist once better mentors filled up
				table.add_row(result.mentee_name, result.proposed_assignment.mentor_name, "-", "")
				continue
		elif output.mode != "batch" and result.recommendations:
			chosen = result.recommendations[0]
		else:
			table.add_row(result.mentee_name, "[red]unassigned[/red]", "-", "")
			continue
		table.add_row(
			result.mentee_name,
			chosen.mentor_name,
			f"{chosen.score.total_score:.1f}",
			chosen.score.risks[0] if chosen.score.risks else "",
		)
	return table


@app.command()
def match(
	mentees_path: Path = typer.Argument(..., help="Mentees CSV export or JSON list"),
	mentors_path: Path = typer.Argument(..., help="Mentors CSV export or JSON list"),
	mode: str = typer.Option("batch", help="'batch' (capacity-aware assignment) or 'top3' (shortlists only)"),
	cohort_id: Optional[str] = typer.Option(None, help="Cohort id; required for embedding similarity"),
	out_path: Optional[Path] = typer.Option(None, "--out", help="Write MatchingOutput JSON here"),
	csv_path: Optional[Path] = typer.Option(None, "--csv", help="Also write a flat CSV of recommendations"),
	report_path: Optional[Path] = typer.Option(None, "--report", help="Also write a Markdown report"),
	embeddings: bool = typer.Option(True, "--embeddings/--no-embeddings", help="Try OpenAI embeddings before keyword similarity"),
):
	"""Run batch or top-3 matching and write the result."""
	if mode not in MODES:
		raise typer.BadParameter(f"mode must be one of {sorted(MODES)}", param_hint="--mode")

	mentees = _load(mentees_path, "mentee")
	mentors = _load(mentors_path, "mentor")

	settings = EngineSettings.from_env()
	provider = build_similarity_provider(settings) if embeddings else FallbackSimilarityProvider()
	engine = ScoringEngine(settings.weights, settings.thresholds)

	output, used_embeddings = asyncio.run(MODES[mode](mentees, mentors, cohort_id=cohort_id, provider=provider, engine=engine))
	if embeddings and not used_embeddings:
		print("[yellow]Embeddings unavailable; semantic similarity used the keyword fallback[/yellow]")

	print(_results_table(output))
	stats = output.stats
	print(f"[bold]{stats.after_filters} of {stats.pairs_evaluated} pairs eligible[/bold]")

	out = out_path or mentees_path.with_name(f"{mentees_path.stem}_matches.json")
	out.parent.mkdir(parents=True, exist_ok=True)
	out.write_text(output.model_dump_json(indent=2), encoding="utf-8")
	print(f"[green]Wrote matches to[/green] {out}")

	if csv_path is not None:
		output_to_frame(output).to_csv(csv_path, index=False)
		print(f"[green]Wrote recommendations CSV to[/green] {csv_path}")
	if report_path is not None:
		render_markdown(output, report_path, used_embeddings=used_embeddings)
		print(f"[green]Wrote report to[/green] {report_path}")


def _pairs_to_explain(
	output: MatchingOutput, mentees: List[Mentee], mentors: List[Mentor], engine: ScoringEngine
) -> Tuple[List[ExplanationRequest], List[str]]:
	"""Proposed pair per mentee in batch output, otherwise the top recommendation."""
	mentees_by_id: Dict[str, Mentee] = {m.id: m for m in mentees}
	mentors_by_id: Dict[str, Mentor] = {m.id: m for m in mentors}
	pairs: List[ExplanationRequest] = []
	skipped: List[str] = []
	for result in output.results:
		if result.proposed_assignment is not None:
			mentor_id = result.proposed_assignment.mentor_id
		elif result.recommendations:
			mentor_id = result.recommendations[0].mentor_id
		else:
			continue
		mentee = mentees_by_id.get(result.mentee_id)
		mentor = mentors_by_id.get(mentor_id)
		if mentee is None or mentor is None:
			skipped.append(f"{result.mentee_id} -> {mentor_id}")
			continue
		score = next((r.score for r in result.recommendations if r.mentor_id == mentor_id), None)
		if score is None:
			score = engine.score(normalize(mentee), normalize(mentor))
		pairs.append((mentee, mentor, score))
	return pairs, skipped


@app.command()
def explain(
	mentees_path: Path = typer.Argument(..., help="Mentees CSV export or JSON list"),
	mentors_path: Path = typer.Argument(..., help="Mentors CSV export or JSON list"),
	matches_path: Path = typer.Argument(..., help="MatchingOutput JSON written by `match`"),
	cohort_id: str = typer.Option(..., help="Cohort id scoping the explanation cache"),
	cache_path: Optional[Path] = typer.Option(None, help="Explanation cache JSON file"),
	concurrency: Optional[int] = typer.Option(None, min=1, help="Parallel LLM requests (default from env, 3)"),
	report_path: Optional[Path] = typer.Option(None, "--report", help="Write a Markdown report with explanations"),
):
	"""Generate (or reuse cached) explanations for the proposed or top pairs."""
	mentees = _load(mentees_path, "mentee")
	mentors = _load(mentors_path, "mentor")
	output = load_matching_output(matches_path)

	settings = EngineSettings.from_env()
	pairs, skipped = _pairs_to_explain(output, mentees, mentors, ScoringEngine(settings.weights, settings.thresholds))
	for s in skipped:
		print(f"[yellow]No participant record for pair[/yellow] {s}")
	if not pairs:
		print("[yellow]Nothing to explain[/yellow]")
		return

	cache = JsonFileExplanationCache(cache_path or matches_path.with_name(f"{matches_path.stem}_explanations.json"))
	orchestrator = build_explanation_orchestrator(settings, cache=cache, max_concurrency=concurrency)

	with Progress(
		TextColumn("[progress.description]{task.description}"),
		BarColumn(),
		MofNCompleteColumn(),
		TimeElapsedColumn(),
	) as progress:
		task = progress.add_task("Explaining pairs", total=len(pairs))

		def on_progress(completed: int, total: int) -> None:
			progress.update(task, completed=completed, total=total)

		explanations = asyncio.run(
			orchestrator.generate_all_explanations(cohort_id, pairs, on_progress=on_progress)
		)

	failed = len(pairs) - len(explanations)
	print(f"[bold]{len(explanations)} explanations ready, {failed} failed[/bold] (cache: {cache.path})")
	if report_path is not None:
		render_markdown(output, report_path, explanations=explanations)
		print(f"[green]Wrote report to[/green] {report_path}")
	if failed and not explanations:
		raise typer.Exit(code=1)


if __name__ == "__main__":
	app()
