import json
import logging

import pandas as pd
import pytest
from typer.testing import CliRunner

from teammatch.main import app


runner = CliRunner()

ROWS = [
    {"Full Name": "A", "Email": "a@example.com", "Core Strengths": "Finance", "Preferred Roles": "Team Lead", "Preferred Team Size": "2"},
    {"Full Name": "B", "Email": "b@example.com", "Core Strengths": "Marketing", "Preferred Roles": "Data Analyst", "Preferred Team Size": "2"},
    {"Full Name": "C", "Email": "c@example.com", "Core Strengths": "Finance", "Preferred Roles": "Team Lead", "Preferred Team Size": "4"},
    {"Full Name": "D", "Email": "d@example.com", "Core Strengths": "Tech", "Preferred Roles": "Data Analyst", "Preferred Team Size": "4"},
    {"Full Name": "", "Email": "nobody@example.com", "Core Strengths": "", "Preferred Roles": "", "Preferred Team Size": ""},
]


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def responses(tmp_path):
    path = tmp_path / "responses.csv"
    pd.DataFrame(ROWS).to_csv(path, index=False)
    return path


def test_clean(responses, tmp_path):
    out = tmp_path / "cleaned.csv"
    result = runner.invoke(app, ["clean", str(responses), "--out-path", str(out)])
    assert result.exit_code == 0, result.output
    cleaned = pd.read_csv(out, keep_default_na=False)
    assert len(cleaned) == 5
    assert list(cleaned["Full Name"]) == ["A", "B", "C", "D", ""]


def test_match_writes_outputs(responses, tmp_path):
    teams_out = tmp_path / "teams.csv"
    json_out = tmp_path / "report.json"
    result = runner.invoke(
        app,
        [
            "match",
            str(responses),
            "--max-iterations",
            "5",
            "--log-level",
            "silent",
            "--teams-out",
            str(teams_out),
            "--json-out",
            str(json_out),
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Formed 2 teams" in result.output
    assert "Skipped row 5" in result.output

    teams = pd.read_csv(teams_out)
    assert list(teams["team_id"]) == ["team-1-iter1", "team-1-iter1", "team-2-iter5", "team-2-iter5"]
    report = json.loads(json_out.read_text(encoding="utf-8"))
    assert report["iterations"] == 5
    assert report["termination_reason"] == "pool_exhausted"


def test_match_explains_unmatched(responses, tmp_path):
    unmatched_out = tmp_path / "unmatched.csv"
    result = runner.invoke(
        app,
        [
            "match",
            str(responses),
            "--max-iterations",
            "0",
            "--log-level",
            "silent",
            "--teams-out",
            str(tmp_path / "teams.csv"),
            "--unmatched-out",
            str(unmatched_out),
            "--explain-unmatched",
        ],
    )
    assert result.exit_code == 0, result.output
    assert list(pd.read_csv(unmatched_out)["full_name"]) == ["A", "B", "C", "D"]
    assert "Stay in the pool for the next matching session" in result.output


@pytest.mark.parametrize("args", [["--log-level", "verbose"], ["--max-iterations=-1"]])
def test_match_invalid_config(responses, args):
    result = runner.invoke(app, ["match", str(responses), *args])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_insights(responses, tmp_path):
    json_out = tmp_path / "report.json"
    runner.invoke(
        app,
        ["match", str(responses), "--max-iterations", "5", "--log-level", "silent", "--json-out", str(json_out)],
    )
    result = runner.invoke(app, ["insights", str(json_out), "--pending", str(responses), "--min-score", "70"])
    assert result.exit_code == 0, result.output
    assert "2 of 2 teams scored at least 70.0" in result.output
    assert "Threshold:" in result.output


def test_insights_rejects_bad_report(tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text('{"teams": "nope"}', encoding="utf-8")
    result = runner.invoke(app, ["insights", str(bad)])
    assert result.exit_code == 1
