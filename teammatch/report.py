from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, Sequence

import numpy as np
import pandas as pd

from .data_models import (
    IterationStat,
    MatchingReport,
    Participant,
    ReportStatistics,
    Team,
    TerminationReason,
)
from .exceptions import ConservationError
from .ingest import participants_frame


def check_conservation(
    participants: Sequence[Participant],
    teams: Iterable[Team],
    unmatched: Iterable[Participant],
) -> None:
    """Every input participant must sit in exactly one team or in the unmatched list."""
    expected = Counter(p.id for p in participants)
    seen = Counter(m.id for team in teams for m in team.members)
    seen.update(p.id for p in unmatched)
    if seen == expected:
        return
    missing = sorted((expected - seen).keys())
    extra = sorted((seen - expected).keys())
    raise ConservationError(
        f"report accounts for {sum(seen.values())} placements but received "
        f"{sum(expected.values())} participants (missing={missing[:10]}, "
        f"duplicated_or_unknown={extra[:10]})"
    )


def summarize(total_participants: int, teams: Sequence[Team]) -> ReportStatistics:
    sizes = [t.team_size for t in teams]
    matched = int(sum(sizes))
    size_dist: Dict[int, int] = dict(sorted(Counter(sizes).items()))
    case_dist: Dict[str, int] = dict(
        sorted(Counter(c for t in teams for c in t.common_case_types).items(), key=lambda kv: (-kv[1], kv[0]))
    )
    efficiency = 100.0 * matched / total_participants if total_participants else 0.0
    return ReportStatistics(
        total_participants=total_participants,
        teams_formed=len(teams),
        participants_matched=matched,
        average_team_size=float(np.mean(sizes)) if sizes else 0.0,
        average_compatibility=round(float(np.mean([t.compatibility_score for t in teams])), 2) if teams else 0.0,
        matching_efficiency=round(efficiency, 2),
        unmatched_rate=round(100.0 - efficiency, 2) if total_participants else 0.0,
        team_size_distribution=size_dist,
        case_type_distribution=case_dist,
    )


def build_report(
    participants: Sequence[Participant],
    teams: Sequence[Team],
    unmatched: Sequence[Participant],
    iterations: int,
    per_iteration_stats: Sequence[IterationStat] = (),
    termination_reason: TerminationReason = TerminationReason.POOL_EXHAUSTED,
) -> MatchingReport:
    """Assemble the final report after verifying that no participant was lost.

    Raises:
        ConservationError: If the teams and unmatched list do not partition the input.
    """
    check_conservation(participants, teams, unmatched)
    return MatchingReport(
        teams=tuple(teams),
        unmatched=tuple(unmatched),
        iterations=iterations,
        per_iteration_stats=tuple(per_iteration_stats),
        termination_reason=termination_reason,
        statistics=summarize(len(participants), teams),
    )


def teams_frame(report: MatchingReport) -> pd.DataFrame:
    """One row per team member, in team order."""
    rows = []
    for team in report.teams:
        for position, member in enumerate(team.members, start=1):
            rows.append(
                {
                    "team_id": team.id,
                    "member_position": position,
                    "participant_id": member.id,
                    "full_name": member.full_name,
                    "email": member.email,
                    "college_name": member.college_name,
                    "core_strengths": "; ".join(member.core_strengths),
                    "preferred_roles": "; ".join(member.preferred_roles),
                    "preferred_team_size": member.preferred_team_size or "",
                    "team_size": team.team_size,
                    "target_size": team.target_size,
                    "compatibility_score": team.compatibility_score,
                    "formed_in_iteration": team.formed_in_iteration,
                    "common_case_types": "; ".join(team.common_case_types),
                }
            )
    columns = [
        "team_id",
        "member_position",
        "participant_id",
        "full_name",
        "email",
        "college_name",
        "core_strengths",
        "preferred_roles",
        "preferred_team_size",
        "team_size",
        "target_size",
        "compatibility_score",
        "formed_in_iteration",
        "common_case_types",
    ]
    return pd.DataFrame(rows, columns=columns)


def unmatched_frame(report: MatchingReport) -> pd.DataFrame:
    return participants_frame(report.unmatched)


def iterations_frame(report: MatchingReport) -> pd.DataFrame:
    return pd.DataFrame(
        [stat.model_dump() for stat in report.per_iteration_stats],
        columns=list(IterationStat.model_fields.keys()),
    )
