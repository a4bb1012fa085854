from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field


class AvailabilityTier(IntEnum):
    NOT_NOW = 0
    LIGHT = 1
    MODERATE = 2
    FULL = 3


class ExperienceTier(IntEnum):
    NONE = 0
    FEW = 1
    SEVERAL = 2
    FINALIST = 3


class TeamPreference(str, Enum):
    UNDERGRADS_ONLY = "Undergrads only"
    POSTGRADS_ONLY = "Postgrads only"
    EITHER = "Either UG or PG"


class TerminationReason(str, Enum):
    POOL_EXHAUSTED = "pool_exhausted"
    ITERATION_CAP_REACHED = "iteration_cap_reached"
    STAGNATED = "no_teams_formed_this_iteration_and_pool_unchanged"


class RejectionReason(str, Enum):
    MISSING_NAME = "missing_name"
    MISSING_EMAIL = "missing_email"
    INVALID_EMAIL = "invalid_email"
    DUPLICATE_EMAIL = "duplicate_email"


POSTGRAD_MARKERS = ("pg", "mba", "master", "postgrad", "post grad")


class Participant(BaseModel):
    """
    A single applicant to be placed on a case competition team.

    Multi-value fields are tuples so the record stays hashable and immutable for the
    whole matching run. Optional tiers left as None are scored as neutral.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    full_name: str
    email: str
    input_index: int = Field(default=0, ge=0, description="Position in the original input; earlier wins ties")
    college_name: str = ""
    current_year: str = ""
    core_strengths: Tuple[str, ...] = ()
    preferred_roles: Tuple[str, ...] = Field(default=(), description="Ordered, first is most preferred")
    working_style: Tuple[str, ...] = ()
    availability: Optional[AvailabilityTier] = None
    experience: Optional[ExperienceTier] = None
    case_preferences: Tuple[str, ...] = ()
    preferred_team_size: Optional[int] = Field(default=None, ge=2)
    team_preference: TeamPreference = TeamPreference.EITHER

    @property
    def is_postgrad(self) -> bool:
        year = self.current_year.lower()
        return any(marker in year for marker in POSTGRAD_MARKERS)


class RejectedRow(BaseModel):
    """A raw input row that could not become a Participant."""

    model_config = ConfigDict(frozen=True)

    row_number: int
    reason: RejectionReason
    raw: Dict[str, Any] = Field(default_factory=dict)


class NormalizedBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    participants: Tuple[Participant, ...] = ()
    rejected: Tuple[RejectedRow, ...] = ()


class Team(BaseModel):
    """A finalized team produced by the iterative builder.

    Fields:
        compatibility_score: Mean pairwise compatibility of the members, 0-100.
        target_size: Size the team was assembled towards (seed preference or default).
        formed_in_iteration: Iteration number that finalized the team.
        formation_threshold: Strictness threshold in force during that iteration.
        preferred_team_size_match: 100 when members' average preferred size equals the
            actual size, minus 20 per member of difference.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    members: Tuple[Participant, ...]
    compatibility_score: float = Field(ge=0.0, le=100.0)
    target_size: int = Field(ge=2)
    formed_in_iteration: int = Field(ge=1)
    formation_threshold: float
    common_case_types: Tuple[str, ...] = ()
    average_experience: float = 0.0
    preferred_team_size_match: float = 0.0

    @computed_field  # type: ignore[misc]
    @property
    def team_size(self) -> int:
        return len(self.members)


class IterationStat(BaseModel):
    model_config = ConfigDict(frozen=True)

    iteration: int
    threshold: float
    size_tolerance: int
    participants_processed: int
    teams_formed: int
    participants_matched: int
    remaining_unmatched: int
    efficiency: float = Field(description="Percentage of the iteration's pool that was matched")


class ReportStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_participants: int = 0
    teams_formed: int = 0
    participants_matched: int = 0
    average_team_size: float = 0.0
    average_compatibility: float = 0.0
    matching_efficiency: float = 0.0
    unmatched_rate: float = 0.0
    team_size_distribution: Dict[int, int] = Field(default_factory=dict)
    case_type_distribution: Dict[str, int] = Field(default_factory=dict)


class MatchingReport(BaseModel):
    """Final output of one matching run."""

    model_config = ConfigDict(frozen=True)

    teams: Tuple[Team, ...] = ()
    unmatched: Tuple[Participant, ...] = ()
    iterations: int = 0
    per_iteration_stats: Tuple[IterationStat, ...] = ()
    termination_reason: TerminationReason = TerminationReason.POOL_EXHAUSTED
    statistics: ReportStatistics = Field(default_factory=ReportStatistics)

    def member_ids(self) -> List[str]:
        return [member.id for team in self.teams for member in team.members]
