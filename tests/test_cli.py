import os
import sys
import json
import asyncio
import datetime

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
import cli
import seed_sample_data
from db import AsyncAnalyticsRepository


def paths(tmp_path):
    return ["--db", str(tmp_path / "cli.db"), "--yaml", str(tmp_path / "cli.yaml")]


def test_demo_seeds_once(tmp_path, capsys):
    db = str(tmp_path / "cli.db")
    cli.main(["demo", "--db", db])
    assert "Demo data inserted" in capsys.readouterr().out
    cli.main(["demo", "--db", db])
    assert "already contains" in capsys.readouterr().out


def test_fatigue_and_up_next_output(tmp_path, capsys):
    cli.main(["demo", "--db", str(tmp_path / "cli.db")])
    capsys.readouterr()

    cli.main(["--log-level", "WARNING", "fatigue", *paths(tmp_path)])
    out = capsys.readouterr().out
    assert out.startswith("Readiness:")
    assert "chest" in out

    cli.main(["up-next", *paths(tmp_path), "--duration", "45", "--json"])
    data = json.loads(capsys.readouterr().out)
    assert data["recommended_split"]["split_key"] in ("push", "pull", "legs")
    assert data["matched_template"]["match_score"] == 100


def test_progression_json(tmp_path, capsys):
    cli.main(["demo", "--db", str(tmp_path / "cli.db")])
    capsys.readouterr()
    cli.main(["progression", *paths(tmp_path), "--template", "1"])
    data = json.loads(capsys.readouterr().out)
    assert data["template_name"] == "Push Day"
    assert data["has_significant_data"] is True


def test_seed_history_shape(tmp_path):
    db = str(tmp_path / "seed.db")
    now = datetime.datetime(2024, 6, 15, 12, 0, tzinfo=datetime.timezone.utc)
    assert seed_sample_data.seed(db, "demo", now=now, weeks=2) is True
    workouts = asyncio.run(AsyncAnalyticsRepository(db).fetch_recent_workouts("demo", 10))
    assert len(workouts) == 7
    assert workouts[0]["completed_at"] == "2024-06-13"
