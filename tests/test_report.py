import pytest

from teammatch.builder import run_iterative_matching
from teammatch.config import MatchingConfig
from teammatch.data_models import MatchingReport, Team
from teammatch.exceptions import ConservationError
from teammatch.report import build_report, iterations_frame, teams_frame, unmatched_frame


def _team(members, score=75.0):
    return Team(id="t", members=tuple(members), compatibility_score=score, target_size=2, formed_in_iteration=1, formation_threshold=70.0)


def test_statistics(scenario):
    report = run_iterative_matching(scenario, MatchingConfig(max_iterations=5))
    stats = report.statistics
    assert stats.total_participants == 4
    assert stats.teams_formed == 2
    assert stats.participants_matched == 4
    assert stats.average_team_size == 2.0
    assert stats.average_compatibility == 75.0
    assert stats.matching_efficiency == 100.0
    assert stats.unmatched_rate == 0.0
    assert stats.team_size_distribution == {2: 2}


def test_missing_participant_raises(scenario):
    a, b, c, d = scenario
    with pytest.raises(ConservationError, match="missing"):
        build_report(scenario, [_team([a, b])], [c], iterations=1)


def test_duplicated_participant_raises(scenario):
    a, b, c, d = scenario
    with pytest.raises(ConservationError):
        build_report(scenario, [_team([a, b]), _team([b, c])], [d], iterations=1)


def test_partition_accepted(scenario):
    a, b, c, d = scenario
    report = build_report(scenario, [_team([a, b])], [c, d], iterations=2)
    assert report.statistics.matching_efficiency == 50.0
    assert report.statistics.unmatched_rate == 50.0


def test_frames(scenario):
    report = run_iterative_matching(scenario, MatchingConfig(max_iterations=3))
    teams = teams_frame(report)
    assert list(teams["team_id"]) == ["team-1-iter1", "team-1-iter1", "team-2-iter3", "team-2-iter3"]
    assert list(teams["member_position"]) == [1, 2, 1, 2]
    assert unmatched_frame(report).empty
    assert list(iterations_frame(report)["iteration"]) == [1, 2, 3]


def test_report_json_round_trip(scenario):
    report = run_iterative_matching(scenario, MatchingConfig(max_iterations=5))
    restored = MatchingReport.model_validate_json(report.model_dump_json())
    assert restored.teams[0].members == report.teams[0].members
    assert restored.termination_reason == report.termination_reason
