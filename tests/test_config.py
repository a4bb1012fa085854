import pytest
from pydantic import ValidationError

from teammatch.config import MatchingConfig, StrictnessSchedule


def test_schedule_is_monotone():
    schedule = StrictnessSchedule()
    thresholds = [schedule.threshold(i) for i in range(1, 40)]
    tolerances = [schedule.size_tolerance(i) for i in range(1, 40)]
    assert thresholds == sorted(thresholds, reverse=True)
    assert tolerances == sorted(tolerances)
    assert thresholds[0] == 70.0
    assert min(thresholds) == 40.0
    assert max(tolerances) == 2


def test_schedule_values():
    schedule = StrictnessSchedule()
    assert schedule.threshold(5) == 60.0
    assert schedule.size_tolerance(10) == 0
    assert schedule.size_tolerance(11) == 1
    assert schedule.size_tolerance(16) == 2
    assert not schedule.is_fully_relaxed(15)
    assert schedule.is_fully_relaxed(16)


def test_floor_above_start_rejected():
    with pytest.raises(ValidationError):
        StrictnessSchedule(start_threshold=50, floor=60)


@pytest.mark.parametrize(
    "kwargs",
    [{"max_iterations": -1}, {"min_participants_per_iteration": 0}, {"log_level": "verbose"}, {"default_team_size": 1}],
)
def test_invalid_config(kwargs):
    with pytest.raises(ValidationError):
        MatchingConfig(**kwargs)


def test_config_is_frozen():
    config = MatchingConfig()
    with pytest.raises(ValidationError):
        config.max_iterations = 3


def test_from_env():
    config = MatchingConfig.from_env(
        {
            "TEAMMATCH_MAX_ITERATIONS": "12",
            "TEAMMATCH_LOG_LEVEL": "detailed",
            "TEAMMATCH_START_THRESHOLD": "65",
            "TEAMMATCH_THRESHOLD_FLOOR": "35",
            "TEAMMATCH_DEFAULT_TEAM_SIZE": " ",
        }
    )
    assert config.max_iterations == 12
    assert config.log_level == "detailed"
    assert config.schedule.start_threshold == 65.0
    assert config.schedule.floor == 35.0
    assert config.default_team_size == 4


def test_from_env_overrides_win():
    config = MatchingConfig.from_env({"TEAMMATCH_MAX_ITERATIONS": "12"}, max_iterations=3, log_level=None)
    assert config.max_iterations == 3
    assert config.log_level == "summary"


def test_from_env_invalid():
    with pytest.raises(ValidationError):
        MatchingConfig.from_env({"TEAMMATCH_MAX_ITERATIONS": "lots"})
