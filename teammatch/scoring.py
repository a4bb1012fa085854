from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Dict, Optional, Sequence, Tuple

from .data_models import Participant, TeamPreference


FLEXIBLE_ROLE = "Flexible with any role"

# credit for landing a participant's 1st, 2nd, 3rd+ preferred role
ROLE_RANK_CREDIT = (1.0, 0.6, 0.3)

# experience tier gap -> balance score; one tier apart is the sweet spot
EXPERIENCE_GAP_SCORE = {0: 0.6, 1: 1.0, 2: 0.7, 3: 0.3}

MAX_AVAILABILITY_GAP = 3


@dataclass(frozen=True)
class ScoreWeights:
    w_skill: float = 0.30
    w_role: float = 0.20
    w_case: float = 0.20
    w_availability: float = 0.15
    w_experience: float = 0.15
    neutral: float = 0.5

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if value < 0:
                raise ValueError(f"{f.name} must be non-negative, got {value}")
        if self.neutral > 1:
            raise ValueError(f"neutral must be within [0, 1], got {self.neutral}")

    def as_components(self) -> Dict[str, float]:
        return {
            "skill": self.w_skill,
            "role": self.w_role,
            "case": self.w_case,
            "availability": self.w_availability,
            "experience": self.w_experience,
        }

    @property
    def total(self) -> float:
        return sum(self.as_components().values())


def _skill_complementarity(a: Sequence[str], b: Sequence[str], neutral: float) -> float:
    sa, sb = set(a), set(b)
    if not sa or not sb:
        return neutral
    union = sa | sb
    return len(sa ^ sb) / len(union)


def _role_fit(roles: Sequence[str], claimed: Optional[str]) -> float:
    for rank, role in enumerate(roles):
        if role == FLEXIBLE_ROLE or role != claimed:
            return ROLE_RANK_CREDIT[min(rank, len(ROLE_RANK_CREDIT) - 1)]
    return 0.0


def _role_satisfiability(a: Sequence[str], b: Sequence[str], neutral: float) -> float:
    """Can each side still take one of its preferred roles next to the other's first choice?"""
    if not a or not b:
        return neutral
    a_claim = a[0] if a[0] != FLEXIBLE_ROLE else None
    b_claim = b[0] if b[0] != FLEXIBLE_ROLE else None
    return (_role_fit(a, b_claim) + _role_fit(b, a_claim)) / 2.0


def _case_overlap(a: Sequence[str], b: Sequence[str], neutral: float) -> float:
    sa, sb = set(a), set(b)
    if not sa or not sb:
        return neutral
    return len(sa & sb) / max(len(sa), len(sb))


def _availability_compatibility(a: Optional[int], b: Optional[int], neutral: float) -> float:
    if a is None or b is None:
        return neutral
    gap = abs(int(a) - int(b))
    return max(0.0, 1.0 - gap / MAX_AVAILABILITY_GAP)


def _experience_balance(a: Optional[int], b: Optional[int], neutral: float) -> float:
    if a is None or b is None:
        return neutral
    gap = abs(int(a) - int(b))
    return EXPERIENCE_GAP_SCORE.get(gap, EXPERIENCE_GAP_SCORE[3])


def score_pair(a: Participant, b: Participant, weights: ScoreWeights) -> Tuple[float, Dict[str, float]]:
    """Score two participants on a 0-100 scale and return the per-dimension breakdown.

    Every component is normalised to [0, 1] before weighting; a dimension that is empty
    on either side contributes ``weights.neutral``. The result is symmetric in a and b.
    """
    n = weights.neutral
    comps = {
        "skill": _skill_complementarity(a.core_strengths, b.core_strengths, n),
        "role": _role_satisfiability(a.preferred_roles, b.preferred_roles, n),
        "case": _case_overlap(a.case_preferences, b.case_preferences, n),
        "availability": _availability_compatibility(a.availability, b.availability, n),
        "experience": _experience_balance(a.experience, b.experience, n),
    }
    total = weights.total
    if total <= 0:
        return 0.0, comps
    raw = sum(w * comps[name] for name, w in weights.as_components().items()) / total
    return min(100.0, max(0.0, 100.0 * raw)), comps


def score_candidate(candidate: Participant, members: Sequence[Participant], weights: ScoreWeights) -> float:
    """Team-level score for admitting ``candidate``: the mean of its pairwise scores.

    The mean is used rather than the minimum, which is too punishing for a team of two.
    """
    if not members:
        return 0.0
    total = 0.0
    for member in members:
        s, _ = score_pair(candidate, member, weights)
        total += s
    return total / len(members)


def team_cohesion(members: Sequence[Participant], weights: ScoreWeights) -> float:
    """Mean pairwise score over every pair of members (0 when there is no pair)."""
    total = 0.0
    pairs = 0
    for i in range(len(members)):
        for j in range(i + 1, len(members)):
            s, _ = score_pair(members[i], members[j], weights)
            total += s
            pairs += 1
    return total / pairs if pairs else 0.0


def composition_compatible(a: Participant, b: Participant) -> bool:
    """Undergrad/postgrad team preference rules.

    "Undergrads only" needs both to be undergrads, "Postgrads only" needs both to be
    postgrads, and two "Either" participants always fit together.
    """
    prefs = {a.team_preference, b.team_preference}
    if TeamPreference.UNDERGRADS_ONLY in prefs and TeamPreference.POSTGRADS_ONLY in prefs:
        return False
    if TeamPreference.UNDERGRADS_ONLY in prefs:
        return not a.is_postgrad and not b.is_postgrad
    if TeamPreference.POSTGRADS_ONLY in prefs:
        return a.is_postgrad and b.is_postgrad
    return True
