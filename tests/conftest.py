import pytest

from teammatch.data_models import Participant


def _participant(name, index=0, **kwargs):
    kwargs.setdefault("email", f"{name.lower()}@example.com")
    return Participant(id=kwargs.pop("id", name), full_name=name, input_index=index, **kwargs)


@pytest.fixture
def make_participant():
    return _participant


@pytest.fixture
def scenario():
    """Two pairs: A+B want teams of two, C+D want teams of four."""
    return [
        _participant("A", 0, core_strengths=("Finance",), preferred_roles=("Team Lead",), preferred_team_size=2),
        _participant("B", 1, core_strengths=("Marketing",), preferred_roles=("Data Analyst",), preferred_team_size=2),
        _participant("C", 2, core_strengths=("Finance",), preferred_roles=("Team Lead",), preferred_team_size=4),
        _participant("D", 3, core_strengths=("Tech",), preferred_roles=("Data Analyst",), preferred_team_size=4),
    ]


@pytest.fixture
def varied_pool():
    skills = [("Research", "Modeling"), ("Design", "Pitching"), ("Technical",), ("Markets", "Research"), ("Ideation",)]
    roles = [("Team Lead",), ("Researcher", "Designer"), ("Presenter",), ("Data Analyst",), ("Flexible with any role",)]
    cases = [("Consulting", "Finance"), ("Marketing",), ("Consulting",), ("Product/Tech", "Finance")]
    sizes = [2, 3, 4, None]
    pool = []
    for i in range(14):
        pool.append(
            _participant(
                f"P{i:02d}",
                i,
                core_strengths=skills[i % len(skills)],
                preferred_roles=roles[i % len(roles)],
                case_preferences=cases[i % len(cases)],
                availability=i % 4,
                experience=(i * 3) % 4,
                preferred_team_size=sizes[i % len(sizes)],
            )
        )
    return pool
