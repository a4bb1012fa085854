import math

import pytest

from teammatch.data_models import AvailabilityTier, ExperienceTier, TeamPreference
from teammatch.scoring import (
    FLEXIBLE_ROLE,
    ScoreWeights,
    composition_compatible,
    score_candidate,
    score_pair,
    team_cohesion,
)


def test_complementary_pair(scenario):
    a, b = scenario[0], scenario[1]
    score, comps = score_pair(a, b, ScoreWeights())
    assert score == pytest.approx(75.0)
    assert comps["skill"] == 1.0
    assert comps["role"] == 1.0
    assert comps["case"] == comps["availability"] == comps["experience"] == 0.5


def test_symmetric(varied_pool):
    weights = ScoreWeights()
    for a in varied_pool[:5]:
        for b in varied_pool[5:10]:
            assert score_pair(a, b, weights)[0] == pytest.approx(score_pair(b, a, weights)[0])


def test_empty_profiles_are_neutral(make_participant):
    score, _ = score_pair(make_participant("X"), make_participant("Y"), ScoreWeights())
    assert score == pytest.approx(50.0)


def test_zero_weights_never_nan(scenario):
    weights = ScoreWeights(w_skill=0, w_role=0, w_case=0, w_availability=0, w_experience=0)
    score, _ = score_pair(scenario[0], scenario[1], weights)
    assert score == 0.0
    assert not math.isnan(score)


def test_score_stays_in_range(varied_pool):
    for a in varied_pool:
        for b in varied_pool:
            score, comps = score_pair(a, b, ScoreWeights())
            assert 0.0 <= score <= 100.0
            assert all(0.0 <= v <= 1.0 for v in comps.values())


def test_role_falls_back_to_second_choice(make_participant):
    a = make_participant("A", preferred_roles=("Team Lead", "Designer"))
    b = make_participant("B", preferred_roles=("Team Lead", "Presenter"))
    _, comps = score_pair(a, b, ScoreWeights())
    assert comps["role"] == pytest.approx(0.6)


def test_flexible_role_never_collides(make_participant):
    a = make_participant("A", preferred_roles=(FLEXIBLE_ROLE,))
    b = make_participant("B", preferred_roles=("Team Lead",))
    _, comps = score_pair(a, b, ScoreWeights())
    assert comps["role"] == 1.0


def test_availability_and_experience(make_participant):
    a = make_participant("A", availability=AvailabilityTier.FULL, experience=ExperienceTier.FEW)
    b = make_participant("B", availability=AvailabilityTier.NOT_NOW, experience=ExperienceTier.SEVERAL)
    _, comps = score_pair(a, b, ScoreWeights())
    assert comps["availability"] == 0.0
    assert comps["experience"] == 1.0


def test_case_overlap(make_participant):
    a = make_participant("A", case_preferences=("Consulting", "Finance"))
    b = make_participant("B", case_preferences=("Finance",))
    _, comps = score_pair(a, b, ScoreWeights())
    assert comps["case"] == pytest.approx(0.5)


def test_candidate_and_cohesion(scenario):
    weights = ScoreWeights()
    a, b, c, _ = scenario
    assert score_candidate(a, [], weights) == 0.0
    assert score_candidate(a, [b, c], weights) == pytest.approx((75.0 + 25.0) / 2)
    assert team_cohesion([a], weights) == 0.0
    assert team_cohesion([a, b], weights) == pytest.approx(75.0)


def test_weights_validation():
    with pytest.raises(ValueError):
        ScoreWeights(w_skill=-0.1)
    with pytest.raises(ValueError):
        ScoreWeights(neutral=1.5)
    assert ScoreWeights().total == pytest.approx(1.0)


def test_composition_rules(make_participant):
    ug_only = make_participant("U", current_year="3rd Year", team_preference=TeamPreference.UNDERGRADS_ONLY)
    pg_only = make_participant("P", current_year="MBA", team_preference=TeamPreference.POSTGRADS_ONLY)
    ug_either = make_participant("E", current_year="1st Year")
    pg_either = make_participant("M", current_year="Masters 2nd Year")

    assert not composition_compatible(ug_only, pg_only)
    assert composition_compatible(ug_only, ug_either)
    assert not composition_compatible(ug_only, pg_either)
    assert composition_compatible(pg_only, pg_either)
    assert not composition_compatible(pg_only, ug_either)
    assert composition_compatible(ug_either, pg_either)


def test_first_timers_are_not_neutral(make_participant):
    newcomer = make_participant("N", experience=ExperienceTier.NONE)
    other_newcomer = make_participant("M", experience=ExperienceTier.NONE)
    finalist = make_participant("F", experience=ExperienceTier.FINALIST)
    assert score_pair(newcomer, other_newcomer, ScoreWeights())[1]["experience"] == pytest.approx(0.6)
    assert score_pair(newcomer, finalist, ScoreWeights())[1]["experience"] == pytest.approx(0.3)
