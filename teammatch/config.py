"""Run configuration for the iterative team builder.

All tunables are carried in an immutable ``MatchingConfig`` handed to the builder, so
two runs in the same process never share mutable state.
"""
from __future__ import annotations

import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .scoring import ScoreWeights


LogLevel = Literal["silent", "summary", "detailed"]

ENV_PREFIX = "TEAMMATCH_"


class StrictnessSchedule(BaseModel):
    """Per-iteration admission strictness.

    The score threshold decays linearly from ``start_threshold`` to ``floor``; the
    allowed gap between a candidate's preferred team size and the team's target is 0
    for the first ``exact_size_iterations`` and then widens by one every
    ``size_relax_every`` iterations up to ``max_size_tolerance``. Both curves are
    monotone, so strictness never tightens between iterations.
    """

    model_config = ConfigDict(frozen=True)

    start_threshold: float = Field(default=70.0, ge=0.0, le=100.0)
    decay_per_iteration: float = Field(default=2.5, ge=0.0)
    floor: float = Field(default=40.0, ge=0.0, le=100.0)
    exact_size_iterations: int = Field(default=10, ge=0)
    size_relax_every: int = Field(default=5, ge=1)
    max_size_tolerance: int = Field(default=2, ge=0)

    @model_validator(mode="after")
    def _floor_below_start(self) -> "StrictnessSchedule":
        if self.floor > self.start_threshold:
            raise ValueError(
                f"floor ({self.floor}) must not exceed start_threshold ({self.start_threshold})"
            )
        return self

    def threshold(self, iteration: int) -> float:
        return max(self.floor, self.start_threshold - self.decay_per_iteration * (iteration - 1))

    def size_tolerance(self, iteration: int) -> int:
        if iteration <= self.exact_size_iterations:
            return 0
        steps = (iteration - self.exact_size_iterations - 1) // self.size_relax_every + 1
        return min(self.max_size_tolerance, steps)

    def is_fully_relaxed(self, iteration: int) -> bool:
        return (
            self.threshold(iteration) <= self.floor
            and self.size_tolerance(iteration) >= self.max_size_tolerance
        )


class MatchingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_iterations: int = Field(default=30, ge=0)
    min_participants_per_iteration: int = Field(default=2, ge=1)
    log_level: LogLevel = "summary"
    default_team_size: int = Field(default=4, ge=2)
    weights: ScoreWeights = Field(default_factory=ScoreWeights)
    schedule: StrictnessSchedule = Field(default_factory=StrictnessSchedule)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "MatchingConfig":
        """Build a config from ``TEAMMATCH_*`` environment variables.

        Unset variables keep their defaults; explicit keyword overrides win over the
        environment. Invalid values raise pydantic's ``ValidationError``.
        """
        env = os.environ if environ is None else environ

        def _get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value.strip() if value is not None and value.strip() else None

        values: dict = {}
        for field_name, env_name in (
            ("max_iterations", "MAX_ITERATIONS"),
            ("min_participants_per_iteration", "MIN_PARTICIPANTS"),
            ("log_level", "LOG_LEVEL"),
            ("default_team_size", "DEFAULT_TEAM_SIZE"),
        ):
            raw = _get(env_name)
            if raw is not None:
                values[field_name] = raw

        schedule: dict = {}
        start = _get("START_THRESHOLD")
        floor = _get("THRESHOLD_FLOOR")
        if start is not None:
            schedule["start_threshold"] = start
        if floor is not None:
            schedule["floor"] = floor
        if schedule:
            values["schedule"] = StrictnessSchedule.model_validate(schedule)

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)
