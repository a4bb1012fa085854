"""Explain why participants were left unmatched after a run.

For each unmatched participant the analyzer looks at the whole input pool and the
remaining unmatched pool and reports which constraint most likely blocked them, who
they would have fitted best with, and what could be changed for the next session.
"""
from __future__ import annotations

import logging
from collections import Counter
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .config import MatchingConfig
from .data_models import MatchingReport, Participant, TeamPreference
from .scoring import composition_compatible, score_pair


logger = logging.getLogger(__name__)

TOP_POTENTIAL_MATCHES = 5
MAX_AVAILABILITY_TIER_GAP = 1


class UnmatchedCategory(str, Enum):
    TEAM_SIZE = "team_size"
    TEAM_PREFERENCE = "team_preference"
    QUALITY_THRESHOLD = "quality_threshold"
    INSUFFICIENT_CANDIDATES = "insufficient_candidates"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class UnmatchedReason(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: UnmatchedCategory
    severity: Severity
    title: str
    description: str
    details: Tuple[str, ...] = ()
    suggestions: Tuple[str, ...] = ()


class PotentialMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    participant_id: str
    full_name: str
    compatibility_score: float
    blocking_issues: Tuple[str, ...] = ()


class CandidateStatistics(BaseModel):
    """Counts over every other participant in the input pool."""

    model_config = ConfigDict(frozen=True)

    total_candidates: int = 0
    same_team_size_preference: int = 0
    compatible_team_preference: int = 0
    availability_compatible: int = 0
    above_floor: int = 0


class UnmatchedAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    participant: Participant
    reasons: Tuple[UnmatchedReason, ...] = ()
    potential_matches: Tuple[PotentialMatch, ...] = ()
    statistics: CandidateStatistics = Field(default_factory=CandidateStatistics)
    recommendations: Tuple[str, ...] = ()


class UnmatchedSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason_breakdown: Dict[str, int] = Field(default_factory=dict)
    common_issues: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()


class UnmatchedReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_unmatched: int = 0
    analyses: Tuple[UnmatchedAnalysis, ...] = ()
    summary: UnmatchedSummary = Field(default_factory=UnmatchedSummary)


def _availability_compatible(a: Participant, b: Participant) -> bool:
    if a.availability is None or b.availability is None:
        return True
    return abs(int(a.availability) - int(b.availability)) <= MAX_AVAILABILITY_TIER_GAP


def _blocking_issues(p: Participant, other: Participant, score: float, config: MatchingConfig) -> List[str]:
    issues = []
    size_p = p.preferred_team_size or config.default_team_size
    size_o = other.preferred_team_size or config.default_team_size
    if size_p != size_o:
        issues.append(f"Team size mismatch ({size_p} vs {size_o})")
    if not composition_compatible(p, other):
        issues.append(
            f"Team preference conflict ({p.team_preference.value} vs {other.team_preference.value})"
        )
    if not _availability_compatible(p, other):
        issues.append("Availability mismatch")
    if score < config.schedule.floor:
        issues.append(f"Score {score:.1f} below the threshold floor {config.schedule.floor:.1f}")
    return issues


def _candidate_statistics(p: Participant, others: Sequence[Participant], config: MatchingConfig) -> CandidateStatistics:
    size = p.preferred_team_size or config.default_team_size
    above = 0
    for o in others:
        score, _ = score_pair(p, o, config.weights)
        if score >= config.schedule.floor:
            above += 1
    return CandidateStatistics(
        total_candidates=len(others),
        same_team_size_preference=sum(
            1 for o in others if (o.preferred_team_size or config.default_team_size) == size
        ),
        compatible_team_preference=sum(1 for o in others if composition_compatible(p, o)),
        availability_compatible=sum(1 for o in others if _availability_compatible(p, o)),
        above_floor=above,
    )


def _potential_matches(
    p: Participant,
    unmatched: Sequence[Participant],
    config: MatchingConfig,
) -> Tuple[PotentialMatch, ...]:
    scored = []
    for o in unmatched:
        if o.id == p.id:
            continue
        score, _ = score_pair(p, o, config.weights)
        scored.append((score, o.input_index, o))
    scored.sort(key=lambda item: (-item[0], item[1]))
    return tuple(
        PotentialMatch(
            participant_id=o.id,
            full_name=o.full_name,
            compatibility_score=round(score, 2),
            blocking_issues=tuple(_blocking_issues(p, o, score, config)),
        )
        for score, _, o in scored[:TOP_POTENTIAL_MATCHES]
    )


def _popular_team_size(report: MatchingReport, config: MatchingConfig) -> int:
    sizes = Counter(t.team_size for t in report.teams)
    if not sizes:
        return config.default_team_size
    return sorted(sizes.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]


def _reasons(
    p: Participant,
    stats: CandidateStatistics,
    matches: Tuple[PotentialMatch, ...],
    report: MatchingReport,
    config: MatchingConfig,
) -> List[UnmatchedReason]:
    size = p.preferred_team_size or config.default_team_size
    needed = size - 1
    reasons = []

    if stats.total_candidates < needed:
        reasons.append(
            UnmatchedReason(
                category=UnmatchedCategory.INSUFFICIENT_CANDIDATES,
                severity=Severity.CRITICAL,
                title="Not enough participants",
                description=f"Only {stats.total_candidates} other participants for a team of {size}",
                details=(f"Needed at least {needed} teammates",),
                suggestions=("Wait for more registrations before the next session",),
            )
        )

    if stats.same_team_size_preference < needed:
        popular = _popular_team_size(report, config)
        suggestions = ["Consider being flexible with team size"]
        if report.teams and popular != size:
            suggestions.append(f"Teams of {popular} were formed most often in this run")
        reasons.append(
            UnmatchedReason(
                category=UnmatchedCategory.TEAM_SIZE,
                severity=Severity.CRITICAL,
                title="Team size preference",
                description=(
                    f"{stats.same_team_size_preference} other participants prefer teams of {size}; "
                    f"{needed} are needed"
                ),
                details=(f"Preferred team size: {size}",),
                suggestions=tuple(suggestions),
            )
        )

    if stats.compatible_team_preference == 0 and stats.total_candidates > 0:
        reasons.append(
            UnmatchedReason(
                category=UnmatchedCategory.TEAM_PREFERENCE,
                severity=Severity.CRITICAL,
                title="Team composition preference",
                description=f"Nobody in the pool is compatible with '{p.team_preference.value}'",
                details=(f"Current year: {p.current_year or 'unknown'}",),
                suggestions=(
                    ("Consider accepting mixed undergrad/postgrad teams",)
                    if p.team_preference != TeamPreference.EITHER
                    else ("Others in the pool restrict their team composition",)
                ),
            )
        )

    if matches and stats.above_floor == 0:
        best = matches[0]
        reasons.append(
            UnmatchedReason(
                category=UnmatchedCategory.QUALITY_THRESHOLD,
                severity=Severity.HIGH,
                title="Compatibility below threshold",
                description=(
                    f"Best remaining partner scores {best.compatibility_score:.1f}, below the "
                    f"floor of {config.schedule.floor:.1f}"
                ),
                details=(f"Best potential partner: {best.full_name}",),
                suggestions=(
                    "Broaden core strengths or preferred roles in the profile",
                    "Add more case competition interests",
                ),
            )
        )
    return reasons


def _recommendations(reasons: Sequence[UnmatchedReason], matches: Tuple[PotentialMatch, ...]) -> List[str]:
    recs: List[str] = []
    for reason in reasons:
        for suggestion in reason.suggestions:
            if suggestion not in recs:
                recs.append(suggestion)
    unblocked = [m for m in matches if not m.blocking_issues]
    if unblocked:
        recs.append(f"Could team up with {unblocked[0].full_name} in the next session")
    recs.append("Stay in the pool for the next matching session")
    return recs


def _summary(analyses: Sequence[UnmatchedAnalysis]) -> UnmatchedSummary:
    breakdown = Counter(r.category.value for a in analyses for r in a.reasons)
    ordered = dict(sorted(breakdown.items(), key=lambda kv: (-kv[1], kv[0])))
    issues = [
        f"{category.replace('_', ' ')}: {count} participants affected"
        for category, count in ordered.items()
        if count > 1
    ]
    recs = []
    if breakdown[UnmatchedCategory.TEAM_SIZE.value] > 2:
        recs.append("Encourage more flexible team size preferences")
    if breakdown[UnmatchedCategory.TEAM_PREFERENCE.value] > 2:
        recs.append("Promote mixed undergrad/postgrad teams")
    if breakdown[UnmatchedCategory.QUALITY_THRESHOLD.value] > 2:
        recs.append("Consider lowering the threshold floor for the next run")
    if breakdown[UnmatchedCategory.INSUFFICIENT_CANDIDATES.value] > 0:
        recs.append("Run the next session once more participants have registered")
    return UnmatchedSummary(reason_breakdown=ordered, common_issues=tuple(issues), recommendations=tuple(recs))


def analyze_unmatched(
    report: MatchingReport,
    participants: Sequence[Participant],
    config: Optional[MatchingConfig] = None,
) -> UnmatchedReport:
    """Analyze every unmatched participant of ``report``.

    Args:
        report: Result of the run being explained.
        participants: The full input pool the run was given.
        config: Configuration the run used; defaults to ``MatchingConfig()``.

    Returns:
        UnmatchedReport with one analysis per unmatched participant, in report order.
    """
    config = config or MatchingConfig()
    analyses = []
    for p in report.unmatched:
        others = [o for o in participants if o.id != p.id]
        stats = _candidate_statistics(p, others, config)
        matches = _potential_matches(p, report.unmatched, config)
        reasons = _reasons(p, stats, matches, report, config)
        analyses.append(
            UnmatchedAnalysis(
                participant=p,
                reasons=tuple(reasons),
                potential_matches=matches,
                statistics=stats,
                recommendations=tuple(_recommendations(reasons, matches)),
            )
        )
    logger.info("Analyzed %d unmatched participants", len(analyses))
    return UnmatchedReport(
        total_unmatched=len(analyses),
        analyses=tuple(analyses),
        summary=_summary(analyses),
    )
