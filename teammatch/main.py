from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich import print
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .builder import run_iterative_matching
from .config import MatchingConfig
from .data_models import MatchingReport
from .exceptions import TeamMatchError
from .ingest import read_frame, read_participants_csv
from .insights import (
	HistoricalTeam,
	analyze_successful_teams,
	matching_recommendations,
	recommend_thresholds,
	suggest_weight_adjustments,
)
from .report import teams_frame, unmatched_frame
from .unmatched import analyze_unmatched


app = typer.Typer(help="Case competition team matching CLI")


def _configure_logging(log_level: str) -> None:
	level = {"silent": logging.WARNING, "summary": logging.INFO, "detailed": logging.INFO}[log_level]
	logging.basicConfig(
		level=level,
		format="%(message)s",
		datefmt="[%X]",
		handlers=[RichHandler(show_path=False)],
		force=True,
	)


def _load_config(**overrides) -> MatchingConfig:
	load_dotenv()
	try:
		return MatchingConfig.from_env(**overrides)
	except ValidationError as e:
		print(f"[red]Invalid configuration:[/red] {escape(str(e))}")
		raise typer.Exit(code=1)


@app.command()
def clean(
	csv_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Raw survey CSV export"),
	out_path: Optional[Path] = typer.Option(None, help="Where to write cleaned CSV"),
):
	"""Strip whitespace and blank out empty cells in a survey export."""
	df = read_frame(csv_path)
	out = out_path or csv_path.with_name(f"{csv_path.stem}_cleaned.csv")
	df.to_csv(out, index=False)
	print(f"[green]Wrote cleaned data to[/green] {out}")


@app.command()
def match(
	csv_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Survey CSV export"),
	max_iterations: Optional[int] = typer.Option(None, help="Upper bound on matching iterations"),
	min_participants: Optional[int] = typer.Option(None, help="Stop once fewer remain in the pool"),
	log_level: Optional[str] = typer.Option(None, help="'silent', 'summary' or 'detailed'"),
	default_team_size: Optional[int] = typer.Option(None, help="Target size when none is stated"),
	max_team_size: int = typer.Option(4, help="Larger stated team sizes are treated as missing"),
	teams_out: Optional[Path] = typer.Option(None, help="Write team members CSV to this path"),
	unmatched_out: Optional[Path] = typer.Option(None, help="Write unmatched participants CSV to this path"),
	json_out: Optional[Path] = typer.Option(None, help="Write the full report as JSON"),
	explain_unmatched: bool = typer.Option(False, "--explain-unmatched/--no-explain-unmatched", help="Explain why participants were left unmatched"),
):
	"""Normalize a survey export and form teams."""
	config = _load_config(
		max_iterations=max_iterations,
		min_participants_per_iteration=min_participants,
		log_level=log_level,
		default_team_size=default_team_size,
	)
	_configure_logging(config.log_level)

	try:
		batch = read_participants_csv(csv_path, max_team_size=max_team_size)
		report = run_iterative_matching(list(batch.participants), config)
	except TeamMatchError as e:
		print(f"[red]Matching failed:[/red] {escape(str(e))}")
		raise typer.Exit(code=1)

	for rejected in batch.rejected:
		print(f"[yellow]Skipped row {rejected.row_number}:[/yellow] {rejected.reason.value}")

	table = Table("team", "members", "size", "score", "iteration", "common cases")
	for team in report.teams:
		table.add_row(
			team.id,
			", ".join(m.full_name for m in team.members),
			f"{team.team_size}/{team.target_size}",
			f"{team.compatibility_score:.2f}",
			str(team.formed_in_iteration),
			", ".join(team.common_case_types),
		)
	print(table)

	stats = report.statistics
	print(
		f"[bold]Formed {stats.teams_formed} teams[/bold] from {stats.total_participants} participants "
		f"in {report.iterations} iterations ({report.termination_reason.value}); "
		f"{len(report.unmatched)} unmatched, efficiency {stats.matching_efficiency:.1f}%"
	)

	teams_out = teams_out or csv_path.with_name(f"{csv_path.stem}_teams.csv")
	teams_frame(report).to_csv(teams_out, index=False)
	print(f"[green]Saved teams to[/green] {teams_out}")
	if report.unmatched:
		unmatched_out = unmatched_out or csv_path.with_name(f"{csv_path.stem}_unmatched.csv")
		unmatched_frame(report).to_csv(unmatched_out, index=False)
		print(f"[green]Saved unmatched to[/green] {unmatched_out}")
	if json_out:
		json_out.write_text(report.model_dump_json(indent=2), encoding="utf-8")
		print(f"[green]Saved report to[/green] {json_out}")

	if explain_unmatched and report.unmatched:
		analysis = analyze_unmatched(report, batch.participants, config)
		for item in analysis.analyses:
			print(f"[bold]{item.participant.full_name}[/bold]")
			for reason in item.reasons:
				print(f"  {reason.severity.value.upper()}: {escape(reason.title)}: {escape(reason.description)}")
			for rec in item.recommendations:
				print(f"  - {escape(rec)}")
		for issue in analysis.summary.common_issues:
			print(f"[yellow]{issue}[/yellow]")


@app.command()
def insights(
	report_paths: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="Report JSON files from earlier runs"),
	pending: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="CSV of participants waiting to be matched"),
	min_score: float = typer.Option(80.0, help="Compatibility at or above which a team counts as successful"),
	top_n: int = typer.Option(3, help="Partners to suggest per pending participant"),
):
	"""Learn from historical teams and suggest tuning for the next run."""
	config = _load_config()
	_configure_logging(config.log_level)

	teams = []
	for path in report_paths:
		try:
			report = MatchingReport.model_validate_json(path.read_text(encoding="utf-8"))
		except ValidationError as e:
			print(f"[red]Invalid report {path}:[/red] {escape(str(e))}")
			raise typer.Exit(code=1)
		teams.extend(HistoricalTeam.from_team(t) for t in report.teams)

	result = analyze_successful_teams(teams, min_compatibility_score=min_score)
	print(f"[bold]{result.teams_analyzed} of {len(teams)} teams scored at least {min_score:.1f}[/bold]")
	if result.teams_analyzed:
		table = Table("skill combination", "avg score", "teams")
		for combo in result.skill_combinations:
			table.add_row(combo.key, f"{combo.success_rate:.2f}", str(combo.team_count))
		print(table)
		for pairing in result.skill_pairings:
			print(f"  {pairing.skills[0]} + {pairing.skills[1]}: {pairing.team_count} teams")

	pending_participants = read_participants_csv(pending).participants if pending else ()
	thresholds = recommend_thresholds(result, pending_participants, config)
	print(
		f"Threshold: start {thresholds.current_start_threshold:.1f} -> {thresholds.suggested_start_threshold:.1f}, "
		f"floor {thresholds.current_floor:.1f} -> {thresholds.suggested_floor:.1f} ({thresholds.reason})"
	)

	adjustments = suggest_weight_adjustments(teams, min_score, config.weights)
	if adjustments:
		table = Table("weight", "current", "suggested", "lift")
		for adj in adjustments:
			table.add_row(adj.parameter, f"{adj.current_weight:.3f}", f"{adj.suggested_weight:.3f}", f"{adj.lift:+.3f}")
		print(table)
	else:
		print("[yellow]Not enough successful and unsuccessful teams to suggest weights[/yellow]")

	if pending_participants:
		summary = matching_recommendations(pending_participants, config.weights, top_n=top_n)
		names = {p.id: p.full_name for p in pending_participants}
		for rec in summary.recommendations:
			partners = ", ".join(f"{m.partner_name} ({m.predicted_score:.1f})" for m in rec.potential_matches)
			print(f"  {names[rec.participant_id]}: {partners or 'no compatible partners'}")
		print(
			f"{summary.high_potential_pairs} high-potential pairs, "
			f"average predicted compatibility {summary.average_predicted_compatibility:.1f}"
		)


if __name__ == "__main__":
	app()
