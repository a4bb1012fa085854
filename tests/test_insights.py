import pytest

from teammatch.config import MatchingConfig
from teammatch.data_models import Team
from teammatch.insights import (
    HistoricalTeam,
    MatchingInsights,
    analyze_successful_teams,
    matching_recommendations,
    recommend_thresholds,
    suggest_weight_adjustments,
)
from teammatch.scoring import ScoreWeights


@pytest.fixture
def history(scenario, make_participant):
    a, b, c, d = scenario
    e = make_participant("E", 4, core_strengths=("Finance",), preferred_roles=("Team Lead",))
    f = make_participant("F", 5, core_strengths=("Finance",), preferred_roles=("Team Lead",))
    return [
        HistoricalTeam(team_id="t1", members=(a, b), compatibility_score=90.0),
        HistoricalTeam(team_id="t2", members=(c, d), compatibility_score=85.0),
        HistoricalTeam(team_id="t3", members=(e, f), compatibility_score=60.0),
        HistoricalTeam(team_id="t4", members=(a, d), compatibility_score=95.0, status="completed"),
    ]


def test_from_team(scenario):
    team = Team(
        id="team-1-iter1",
        members=tuple(scenario[:2]),
        compatibility_score=75.0,
        target_size=2,
        formed_in_iteration=1,
        formation_threshold=70.0,
    )
    historical = HistoricalTeam.from_team(team)
    assert historical.team_id == "team-1-iter1"
    assert historical.team_size == 2
    assert historical.status == "active"


def test_analyze_successful_teams(history):
    insights = analyze_successful_teams(history, min_compatibility_score=80.0)
    assert insights.teams_analyzed == 2
    assert insights.benchmark_score == 87.5
    assert [c.key for c in insights.skill_combinations] == ["Finance, Marketing", "Finance, Tech"]
    assert [p.skills for p in insights.skill_pairings] == [("Finance", "Marketing"), ("Finance", "Tech")]
    assert insights.role_distribution == {"Data Analyst": 2, "Team Lead": 2}
    assert [(s.key, s.success_rate, s.team_count) for s in insights.team_sizes] == [("2", 87.5, 2)]
    assert [a.key for a in insights.availability_matches] == ["UNKNOWN"]
    assert [d.key for d in insights.college_diversity] == ["same"]


def test_analyze_any_status(history):
    insights = analyze_successful_teams(history, min_compatibility_score=80.0, status=None)
    assert insights.teams_analyzed == 3


def test_nothing_successful(history):
    insights = analyze_successful_teams(history, min_compatibility_score=99.0)
    assert insights.teams_analyzed == 0
    assert insights.benchmark_score is None
    assert insights.skill_pairings == ()


def test_recommend_thresholds(history, scenario):
    insights = analyze_successful_teams(history)
    rec = recommend_thresholds(insights, scenario, MatchingConfig())
    assert rec.pending_pairs_scored == 6
    assert rec.current_start_threshold == 70.0
    assert rec.suggested_start_threshold == 75.0
    assert rec.suggested_floor == 60.0


def test_recommend_thresholds_without_data():
    rec = recommend_thresholds(MatchingInsights(min_compatibility_score=80.0), [], MatchingConfig())
    assert rec.suggested_start_threshold == 70.0
    assert rec.suggested_floor == 40.0
    assert rec.pending_pairs_scored == 0


def test_weight_adjustments(history):
    adjustments = {a.parameter: a for a in suggest_weight_adjustments(history, 80.0, ScoreWeights())}
    assert set(adjustments) == {"w_skill", "w_role", "w_case", "w_availability", "w_experience"}
    assert adjustments["w_skill"].lift > 0
    assert adjustments["w_case"].lift == 0
    assert adjustments["w_skill"].suggested_weight > adjustments["w_skill"].current_weight
    assert adjustments["w_case"].suggested_weight < adjustments["w_case"].current_weight
    assert sum(a.suggested_weight for a in adjustments.values()) == pytest.approx(1.0, abs=0.01)


def test_weight_adjustments_need_both_groups(history):
    assert suggest_weight_adjustments(history[:2], 80.0) == []


def test_matching_recommendations(scenario):
    summary = matching_recommendations(scenario, top_n=3)
    by_id = {r.participant_id: r for r in summary.recommendations}
    assert [m.partner_id for m in by_id["A"].potential_matches] == ["B"]
    assert [m.partner_id for m in by_id["C"].potential_matches] == ["D"]
    best = by_id["A"].potential_matches[0]
    assert best.predicted_score == 75.0
    assert "Highly complementary skill sets" in best.reasons
    assert summary.total_analyzed == 4
    assert summary.high_potential_pairs == 2
    assert summary.average_predicted_compatibility == 75.0


def test_inputs_untouched(history, scenario):
    before = [t.model_dump() for t in history]
    analyze_successful_teams(history)
    suggest_weight_adjustments(history)
    matching_recommendations(scenario)
    assert [t.model_dump() for t in history] == before
