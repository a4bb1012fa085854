"""Offline analysis of historical teams.

Reads teams produced by earlier runs (supplied by the caller, typically loaded from
storage), describes what the high-scoring ones have in common, and suggests how the
strictness schedule and score weights could be tuned for a new pending pool. Inputs
are only ever read.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field
from sklearn.preprocessing import MultiLabelBinarizer

from .config import MatchingConfig
from .data_models import Participant, Team
from .scoring import ScoreWeights, composition_compatible, score_pair


logger = logging.getLogger(__name__)

HIGH_POTENTIAL_SCORE = 75.0
TOP_SKILL_COMBINATIONS = 10
TOP_SKILL_PAIRINGS = 10
TOP_EXPERIENCE_MIXES = 5


class HistoricalTeam(BaseModel):
    model_config = ConfigDict(frozen=True)

    team_id: str
    members: Tuple[Participant, ...]
    compatibility_score: float
    status: str = "active"

    @property
    def team_size(self) -> int:
        return len(self.members)

    @classmethod
    def from_team(cls, team: Team, status: str = "active") -> "HistoricalTeam":
        return cls(
            team_id=team.id,
            members=team.members,
            compatibility_score=team.compatibility_score,
            status=status,
        )


class GroupScore(BaseModel):
    """Mean compatibility of the teams sharing one characteristic."""

    model_config = ConfigDict(frozen=True)

    key: str
    success_rate: float
    team_count: int


class SkillPairing(BaseModel):
    model_config = ConfigDict(frozen=True)

    skills: Tuple[str, str]
    team_count: int


class MatchingInsights(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_compatibility_score: float
    teams_analyzed: int = 0
    benchmark_score: Optional[float] = None
    skill_combinations: Tuple[GroupScore, ...] = ()
    skill_pairings: Tuple[SkillPairing, ...] = ()
    role_distribution: Dict[str, int] = Field(default_factory=dict)
    experience_mixes: Tuple[GroupScore, ...] = ()
    availability_matches: Tuple[GroupScore, ...] = ()
    college_diversity: Tuple[GroupScore, ...] = ()
    team_sizes: Tuple[GroupScore, ...] = ()


class ThresholdRecommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_start_threshold: float
    current_floor: float
    suggested_start_threshold: float
    suggested_floor: float
    pending_pairs_scored: int
    reason: str


class WeightAdjustment(BaseModel):
    model_config = ConfigDict(frozen=True)

    parameter: str
    current_weight: float
    suggested_weight: float
    lift: float
    reason: str


class PartnerRecommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    partner_id: str
    partner_name: str
    predicted_score: float
    reasons: Tuple[str, ...] = ()


class ParticipantRecommendations(BaseModel):
    model_config = ConfigDict(frozen=True)

    participant_id: str
    potential_matches: Tuple[PartnerRecommendation, ...] = ()


class RecommendationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    recommendations: Tuple[ParticipantRecommendations, ...] = ()
    total_analyzed: int = 0
    high_potential_pairs: int = 0
    average_predicted_compatibility: float = 0.0


def _group_scores(rows: List[Tuple[str, float]], limit: Optional[int] = None) -> Tuple[GroupScore, ...]:
    if not rows:
        return ()
    df = pd.DataFrame(rows, columns=["key", "score"])
    grouped = df.groupby("key", sort=True)["score"].agg(success_rate="mean", team_count="count").reset_index()
    grouped = grouped.sort_values(["success_rate", "key"], ascending=[False, True], kind="mergesort")
    if limit is not None:
        grouped = grouped.head(limit)
    return tuple(
        GroupScore(key=str(r.key), success_rate=round(float(r.success_rate), 2), team_count=int(r.team_count))
        for r in grouped.itertuples(index=False)
    )


def _skill_pairings(teams: Sequence[HistoricalTeam]) -> Tuple[SkillPairing, ...]:
    skill_sets = [sorted({s for m in t.members for s in m.core_strengths}) for t in teams]
    if not any(skill_sets):
        return ()
    mlb = MultiLabelBinarizer()
    x = mlb.fit_transform(skill_sets)
    co = x.T @ x
    pairs = []
    classes = list(mlb.classes_)
    for i, j in zip(*np.triu_indices(len(classes), k=1)):
        count = int(co[i, j])
        if count > 0:
            pairs.append((classes[i], classes[j], count))
    pairs.sort(key=lambda p: (-p[2], p[0], p[1]))
    return tuple(SkillPairing(skills=(a, b), team_count=c) for a, b, c in pairs[:TOP_SKILL_PAIRINGS])


def _tier_name(tier) -> str:
    return tier.name if tier is not None else "UNKNOWN"


def analyze_successful_teams(
    teams: Iterable[HistoricalTeam],
    min_compatibility_score: float = 80.0,
    status: Optional[str] = "active",
) -> MatchingInsights:
    """Describe the teams whose compatibility reached ``min_compatibility_score``.

    Args:
        teams: Historical teams, e.g. from earlier reports.
        min_compatibility_score: Teams below this score are ignored.
        status: Only teams with this status are considered; None keeps every status.

    Returns:
        MatchingInsights; empty (``teams_analyzed == 0``) when nothing qualifies.
    """
    successful = [
        t
        for t in teams
        if t.compatibility_score >= min_compatibility_score and (status is None or t.status == status)
    ]
    if not successful:
        logger.info("No teams at or above %.1f to analyze", min_compatibility_score)
        return MatchingInsights(min_compatibility_score=min_compatibility_score)

    logger.info("Analyzing %d successful teams", len(successful))

    combos, exp_mixes, avail, diversity, sizes = [], [], [], [], []
    roles: Dict[str, int] = {}
    for t in successful:
        score = t.compatibility_score
        skills = sorted({s for m in t.members for s in m.core_strengths})
        combos.append((", ".join(skills) or "(none)", score))
        exp_mixes.append(("|".join(sorted(_tier_name(m.experience) for m in t.members)), score))
        tiers = {_tier_name(m.availability) for m in t.members}
        avail.append((tiers.pop() if len(tiers) == 1 else "Mixed", score))
        colleges = {m.college_name for m in t.members if m.college_name}
        diversity.append(("diverse" if len(colleges) > 1 else "same", score))
        sizes.append((str(t.team_size), score))
        for m in t.members:
            role = m.preferred_roles[0] if m.preferred_roles else "Unspecified"
            roles[role] = roles.get(role, 0) + 1

    return MatchingInsights(
        min_compatibility_score=min_compatibility_score,
        teams_analyzed=len(successful),
        benchmark_score=round(float(np.mean([t.compatibility_score for t in successful])), 2),
        skill_combinations=_group_scores(combos, TOP_SKILL_COMBINATIONS),
        skill_pairings=_skill_pairings(successful),
        role_distribution=dict(sorted(roles.items(), key=lambda kv: (-kv[1], kv[0]))),
        experience_mixes=_group_scores(exp_mixes, TOP_EXPERIENCE_MIXES),
        availability_matches=_group_scores(avail),
        college_diversity=_group_scores(diversity),
        team_sizes=_group_scores(sizes),
    )


def _pending_pair_scores(pending: Sequence[Participant], weights: ScoreWeights) -> List[float]:
    scores = []
    for i in range(len(pending)):
        for j in range(i + 1, len(pending)):
            if composition_compatible(pending[i], pending[j]):
                s, _ = score_pair(pending[i], pending[j], weights)
                scores.append(s)
    return scores


def recommend_thresholds(
    insights: MatchingInsights,
    pending: Sequence[Participant],
    config: Optional[MatchingConfig] = None,
) -> ThresholdRecommendation:
    """Suggest a start threshold and floor for a run over ``pending``.

    The start threshold aims at the historical benchmark but never above the 90th
    percentile of pending pair scores, so the first iterations can still form teams.
    The floor follows the 25th percentile of the pending scores.
    """
    config = config or MatchingConfig()
    schedule = config.schedule
    scores = _pending_pair_scores(list(pending), config.weights)

    start = schedule.start_threshold
    floor = schedule.floor
    if scores:
        q25, q90 = (float(v) for v in np.percentile(scores, [25, 90]))
        start = min(insights.benchmark_score, q90) if insights.benchmark_score is not None else q90
        floor = q25
        reason = (
            f"{len(scores)} compatible pending pairs: 25th percentile {q25:.1f}, "
            f"90th percentile {q90:.1f}"
        )
        if insights.benchmark_score is not None:
            reason += f"; successful teams averaged {insights.benchmark_score:.1f}"
    elif insights.benchmark_score is not None:
        start = insights.benchmark_score
        reason = f"no pending pairs; start aligned to successful-team average {start:.1f}"
    else:
        reason = "no historical or pending data; keeping the current schedule"

    start = round(min(100.0, max(0.0, start)), 1)
    floor = round(min(start, max(0.0, floor)), 1)
    return ThresholdRecommendation(
        current_start_threshold=schedule.start_threshold,
        current_floor=schedule.floor,
        suggested_start_threshold=start,
        suggested_floor=floor,
        pending_pairs_scored=len(scores),
        reason=reason,
    )


def _team_components(team: HistoricalTeam, weights: ScoreWeights) -> Optional[Dict[str, float]]:
    members = team.members
    rows = []
    for i in range(len(members)):
        for j in range(i + 1, len(members)):
            _, comps = score_pair(members[i], members[j], weights)
            rows.append(comps)
    if not rows:
        return None
    return pd.DataFrame(rows).mean().to_dict()


def suggest_weight_adjustments(
    teams: Iterable[HistoricalTeam],
    min_compatibility_score: float = 80.0,
    weights: Optional[ScoreWeights] = None,
) -> List[WeightAdjustment]:
    """Shift weight towards the components that separate successful teams from the rest.

    Each component's weight is scaled by ``1 + lift`` where lift is the difference of
    its mean sub-score between successful and other teams; the result is renormalised
    to the current weight total. Returns an empty list when either group is empty.
    """
    weights = weights or ScoreWeights()
    successful, others = [], []
    for t in teams:
        comps = _team_components(t, weights)
        if comps is None:
            continue
        (successful if t.compatibility_score >= min_compatibility_score else others).append(comps)
    if not successful or not others:
        return []

    success_mean = pd.DataFrame(successful).mean()
    other_mean = pd.DataFrame(others).mean()
    current = weights.as_components()
    lifts = {name: float(success_mean[name] - other_mean[name]) for name in current}
    raw = {name: max(0.0, w * (1.0 + lifts[name])) for name, w in current.items()}
    raw_total = sum(raw.values())
    scale = weights.total / raw_total if raw_total > 0 else 0.0

    adjustments = []
    for name, w in current.items():
        lift = lifts[name]
        if lift > 0:
            reason = f"successful teams score {lift:.2f} higher on {name}"
        elif lift < 0:
            reason = f"successful teams score {-lift:.2f} lower on {name}"
        else:
            reason = f"{name} does not separate successful teams"
        adjustments.append(
            WeightAdjustment(
                parameter=f"w_{name}",
                current_weight=w,
                suggested_weight=round(raw[name] * scale, 3),
                lift=round(lift, 3),
                reason=reason,
            )
        )
    return adjustments


def _pair_reasons(a: Participant, b: Participant, comps: Dict[str, float]) -> List[str]:
    reasons = []
    if a.core_strengths and b.core_strengths:
        if comps["skill"] > 0.7:
            reasons.append("Highly complementary skill sets")
        elif comps["skill"] > 0.4:
            reasons.append("Good skill balance")
    if a.preferred_roles and b.preferred_roles and comps["role"] >= 1.0:
        reasons.append("Preferred roles do not collide")
    if a.experience is not None and b.experience is not None and comps["experience"] >= 1.0:
        reasons.append("Excellent experience balance")
    if a.availability is not None and b.availability is not None:
        if comps["availability"] >= 1.0:
            reasons.append("Perfect availability match")
        elif comps["availability"] > 0.6:
            reasons.append("Good availability compatibility")
    if a.case_preferences and b.case_preferences and comps["case"] > 0.5:
        reasons.append("Shared case competition interests")
    if a.college_name and b.college_name and a.college_name != b.college_name:
        reasons.append("Inter-college collaboration opportunity")
    return reasons


def matching_recommendations(
    pending: Sequence[Participant],
    weights: Optional[ScoreWeights] = None,
    top_n: int = 5,
) -> RecommendationSummary:
    """Best potential partners for every pending participant.

    Only partners with the same preferred team size (when both stated) and a
    compatible team composition preference are considered.
    """
    weights = weights or ScoreWeights()
    pending = list(pending)
    scores: Dict[Tuple[int, int], Tuple[float, Dict[str, float]]] = {}
    for i in range(len(pending)):
        for j in range(i + 1, len(pending)):
            a, b = pending[i], pending[j]
            if a.preferred_team_size and b.preferred_team_size and a.preferred_team_size != b.preferred_team_size:
                continue
            if not composition_compatible(a, b):
                continue
            scores[(i, j)] = score_pair(a, b, weights)

    recommendations = []
    for i, p in enumerate(pending):
        partners = []
        for j, other in enumerate(pending):
            key = (i, j) if i < j else (j, i)
            if i == j or key not in scores:
                continue
            s, comps = scores[key]
            partners.append((s, j, other, comps))
        partners.sort(key=lambda item: (-item[0], item[1]))
        recommendations.append(
            ParticipantRecommendations(
                participant_id=p.id,
                potential_matches=tuple(
                    PartnerRecommendation(
                        partner_id=other.id,
                        partner_name=other.full_name,
                        predicted_score=round(s, 2),
                        reasons=tuple(_pair_reasons(p, other, comps)),
                    )
                    for s, _, other, comps in partners[:top_n]
                ),
            )
        )

    pair_scores = [s for s, _ in scores.values()]
    logger.info(
        "Generated recommendations for %d participants over %d candidate pairs",
        len(pending),
        len(pair_scores),
    )
    return RecommendationSummary(
        recommendations=tuple(recommendations),
        total_analyzed=len(pending),
        high_potential_pairs=sum(1 for s in pair_scores if round(s, 2) >= HIGH_POTENTIAL_SCORE),
        average_predicted_compatibility=round(float(np.mean(pair_scores)), 2) if pair_scores else 0.0,
    )
