"""
Iterative team builder.

Each iteration walks the remaining pool in input order and:

- Seeds a candidate team with the next participant who has not seeded yet
- Repeatedly admits the best-scoring remaining participant who
    - prefers a team size within the iteration's size tolerance of the team target
    - fits the team's undergrad/postgrad composition rules
    - clears the iteration's score threshold against the whole team
- Finalizes the team when it reaches its target size, or returns its members to the
  pool so a later, less strict iteration can try again

Strictness only ever relaxes between iterations, and a run stops when the pool is
too small, the iteration cap is hit, or a fully relaxed iteration forms nothing.
"""
from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import MatchingConfig
from .data_models import IterationStat, MatchingReport, Participant, Team, TerminationReason
from .exceptions import InvalidInputError
from .report import build_report
from .scoring import composition_compatible, score_pair


logger = logging.getLogger(__name__)

MIN_TEAM_SIZE = 2
MAX_COMMON_CASE_TYPES = 3


@dataclass(frozen=True)
class BuildOutcome:
    teams: Tuple[Team, ...]
    unmatched: Tuple[Participant, ...]
    iterations: int
    per_iteration_stats: Tuple[IterationStat, ...]
    termination_reason: TerminationReason


@dataclass
class _RunState:
    """Per-run bookkeeping; never shared between runs."""

    rank: Dict[str, int]
    pair_scores: Dict[Tuple[str, str], float] = field(default_factory=dict)
    team_count: int = 0


class IterativeTeamBuilder:
    """Partition a participant pool into teams over a bounded number of iterations.

    The builder holds only its immutable configuration, so one instance may be used for
    any number of runs, including concurrent ones.
    """

    def __init__(
        self,
        config: Optional[MatchingConfig] = None,
        progress_fn: Optional[Callable[[IterationStat], None]] = None,
    ) -> None:
        self.config = config or MatchingConfig()
        self.progress_fn = progress_fn

    # ---- logging ----
    def _summary(self, msg: str, *args) -> None:
        if self.config.log_level != "silent":
            logger.info(msg, *args)

    def _detail(self, msg: str, *args) -> None:
        if self.config.log_level == "detailed":
            logger.info(msg, *args)

    # ---- validation ----
    @staticmethod
    def _validate(participants: Sequence[Participant]) -> List[Participant]:
        if isinstance(participants, (str, bytes, Mapping)) or not isinstance(participants, (list, tuple)):
            raise InvalidInputError(
                f"participants must be a list of Participant, got {type(participants).__name__}"
            )
        seen: set = set()
        for position, p in enumerate(participants):
            if not isinstance(p, Participant):
                raise InvalidInputError(
                    f"participants[{position}] is {type(p).__name__}, expected Participant"
                )
            if p.id in seen:
                raise InvalidInputError(f"duplicate participant id {p.id!r}")
            seen.add(p.id)
        # stable: equal input_index keeps list order
        return sorted(participants, key=lambda p: p.input_index)

    # ---- scoring with a per-run cache ----
    def _pair(self, state: _RunState, a: Participant, b: Participant) -> float:
        key = (a.id, b.id) if a.id <= b.id else (b.id, a.id)
        cached = state.pair_scores.get(key)
        if cached is None:
            cached, _ = score_pair(a, b, self.config.weights)
            state.pair_scores[key] = cached
        return cached

    def _team_score(self, state: _RunState, candidate: Participant, members: Sequence[Participant]) -> float:
        total = 0.0
        for member in members:
            total += self._pair(state, candidate, member)
        return total / len(members)

    def _cohesion(self, state: _RunState, members: Sequence[Participant]) -> float:
        total = 0.0
        pairs = 0
        for i in range(len(members)):
            for j in range(i + 1, len(members)):
                total += self._pair(state, members[i], members[j])
                pairs += 1
        return total / pairs if pairs else 0.0

    def _size_pref(self, p: Participant) -> int:
        return p.preferred_team_size or self.config.default_team_size

    # ---- assembly ----
    def _assemble(
        self,
        state: _RunState,
        seed: Participant,
        available: Sequence[Participant],
        threshold: float,
        tolerance: int,
    ) -> Tuple[List[Participant], int]:
        target = self._size_pref(seed)
        members = [seed]
        candidates = [
            p
            for p in available
            if p.id != seed.id and abs(self._size_pref(p) - target) <= tolerance
        ]
        while len(members) < target:
            best: Optional[Participant] = None
            best_key: Optional[Tuple[float, int]] = None
            for candidate in candidates:
                if not all(composition_compatible(candidate, m) for m in members):
                    continue
                score = self._team_score(state, candidate, members)
                if score < threshold:
                    continue
                # highest score first, then whoever has waited longest
                key = (-score, state.rank[candidate.id])
                if best_key is None or key < best_key:
                    best, best_key = candidate, key
            if best is None or best_key is None:
                break
            members.append(best)
            candidates = [c for c in candidates if c.id != best.id]
            self._detail(
                "  admitted %s into %s's team (score=%.2f, size %d/%d)",
                best.full_name,
                seed.full_name,
                -best_key[0],
                len(members),
                target,
            )
        return members, target

    def _finalize(
        self,
        state: _RunState,
        members: List[Participant],
        target: int,
        iteration: int,
        threshold: float,
    ) -> Team:
        state.team_count += 1
        case_counts = Counter(c for m in members for c in m.case_preferences)
        first_seen: Dict[str, int] = {}
        for m in members:
            for c in m.case_preferences:
                first_seen.setdefault(c, len(first_seen))
        common = sorted(case_counts, key=lambda c: (-case_counts[c], first_seen[c]))[:MAX_COMMON_CASE_TYPES]

        experiences = [int(m.experience) for m in members if m.experience is not None]
        avg_pref = sum(self._size_pref(m) for m in members) / len(members)
        return Team(
            id=f"team-{state.team_count}-iter{iteration}",
            members=tuple(members),
            compatibility_score=round(self._cohesion(state, members), 2),
            target_size=target,
            formed_in_iteration=iteration,
            formation_threshold=threshold,
            common_case_types=tuple(common),
            average_experience=sum(experiences) / len(experiences) if experiences else 0.0,
            preferred_team_size_match=max(0.0, 100.0 - abs(avg_pref - len(members)) * 20.0),
        )

    def _run_iteration(
        self,
        state: _RunState,
        iteration: int,
        pool: List[Participant],
    ) -> Tuple[List[Team], List[Participant]]:
        cfg = self.config
        threshold = cfg.schedule.threshold(iteration)
        tolerance = cfg.schedule.size_tolerance(iteration)
        # nothing about a short team can change later, so keep it if it is viable
        keep_short = iteration >= cfg.max_iterations or cfg.schedule.is_fully_relaxed(iteration)
        floor = max(MIN_TEAM_SIZE, cfg.min_participants_per_iteration)

        assigned: set = set()
        seeded: set = set()
        teams: List[Team] = []
        for seed in pool:
            if seed.id in assigned or seed.id in seeded:
                continue
            available = [p for p in pool if p.id not in assigned]
            if len(available) < floor:
                break
            seeded.add(seed.id)
            members, target = self._assemble(state, seed, available, threshold, tolerance)
            if len(members) >= target or (len(members) >= MIN_TEAM_SIZE and keep_short):
                team = self._finalize(state, members, target, iteration, threshold)
                teams.append(team)
                assigned.update(m.id for m in members)
                self._detail(
                    "  formed %s: %d/%d members, score=%.2f",
                    team.id,
                    team.team_size,
                    target,
                    team.compatibility_score,
                )
            elif len(members) >= MIN_TEAM_SIZE:
                self._detail(
                    "  returned %d members of %s's team to the pool (target %d)",
                    len(members),
                    seed.full_name,
                    target,
                )

        remaining = [p for p in pool if p.id not in assigned]
        return teams, remaining

    def run(self, participants: Sequence[Participant]) -> BuildOutcome:
        """Run the full iterative matching loop.

        Args:
            participants: Normalized participants; each id must be unique.

        Returns:
            BuildOutcome with finalized teams in formation order, the unmatched
            remainder in input order, and one IterationStat per iteration.

        Raises:
            InvalidInputError: If ``participants`` is not a list of Participant or
                contains duplicate ids.
        """
        pool = self._validate(participants)
        cfg = self.config
        state = _RunState(rank={p.id: i for i, p in enumerate(pool)})

        self._summary(
            "Starting iterative matching: %d participants, max %d iterations",
            len(pool),
            cfg.max_iterations,
        )

        teams: List[Team] = []
        stats: List[IterationStat] = []
        iteration = 0
        while True:
            if len(pool) < cfg.min_participants_per_iteration:
                reason = TerminationReason.POOL_EXHAUSTED
                break
            if iteration >= cfg.max_iterations:
                reason = TerminationReason.ITERATION_CAP_REACHED
                break
            iteration += 1
            processed = len(pool)
            new_teams, pool = self._run_iteration(state, iteration, pool)
            teams.extend(new_teams)
            matched = sum(t.team_size for t in new_teams)
            stat = IterationStat(
                iteration=iteration,
                threshold=cfg.schedule.threshold(iteration),
                size_tolerance=cfg.schedule.size_tolerance(iteration),
                participants_processed=processed,
                teams_formed=len(new_teams),
                participants_matched=matched,
                remaining_unmatched=len(pool),
                efficiency=100.0 * matched / processed if processed else 0.0,
            )
            stats.append(stat)
            self._detail(
                "Iteration %d (threshold=%.1f, size tolerance=%d): %d teams, %d matched, %d remaining",
                iteration,
                stat.threshold,
                stat.size_tolerance,
                stat.teams_formed,
                stat.participants_matched,
                stat.remaining_unmatched,
            )
            if self.progress_fn is not None:
                try:
                    self.progress_fn(stat)
                except Exception:
                    # a broken progress hook must not abort the run
                    logger.exception("progress callback failed on iteration %d", iteration)
            if not new_teams and cfg.schedule.is_fully_relaxed(iteration):
                reason = TerminationReason.STAGNATED
                break

        self._summary(
            "Matching complete after %d iterations (%s): %d teams, %d unmatched",
            iteration,
            reason.value,
            len(teams),
            len(pool),
        )
        return BuildOutcome(
            teams=tuple(teams),
            unmatched=tuple(pool),
            iterations=iteration,
            per_iteration_stats=tuple(stats),
            termination_reason=reason,
        )


def run_iterative_matching(
    participants: Sequence[Participant],
    config: Optional[MatchingConfig] = None,
    progress_fn: Optional[Callable[[IterationStat], None]] = None,
) -> MatchingReport:
    """Match participants into teams and return the verified report."""
    builder = IterativeTeamBuilder(config, progress_fn=progress_fn)
    outcome = builder.run(participants)
    return build_report(
        participants,
        outcome.teams,
        outcome.unmatched,
        outcome.iterations,
        outcome.per_iteration_stats,
        outcome.termination_reason,
    )


enhanced_iterative_matching = run_iterative_matching
