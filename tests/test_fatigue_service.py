import os
import sys
import datetime
import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from db import (
    AsyncAnalyticsRepository,
    ExerciseRepository,
    SessionRepository,
    SetRepository,
    TemplateRepository,
    INACTIVITY_REASON,
)
from fatigue_service import (
    FatigueService,
    TRACKED_MUSCLES,
    analysis_windows,
    fatigue_score,
    fatigue_status,
    sort_entries,
)

NOW = datetime.datetime(2024, 6, 15, 12, 0, tzinfo=datetime.timezone.utc)


def log_session_at(db, user, finished, sets, template_id=None, ended_reason=None):
    started = finished - datetime.timedelta(hours=1)
    sid = SessionRepository(db).create(user, started, template_id)
    set_repo = SetRepository(db)
    for exercise_id, reps, weight in sets:
        set_repo.add(sid, exercise_id, actual_reps=reps, actual_weight=weight)
    SessionRepository(db).finish(sid, finished, ended_reason)
    return sid


def log_session(db, user, days_ago, sets, template_id=None, ended_reason=None):
    finished = NOW - datetime.timedelta(days=days_ago)
    return log_session_at(db, user, finished, sets, template_id, ended_reason)


def make_service(db):
    return FatigueService(AsyncAnalyticsRepository(db), clock=lambda: NOW)


def by_muscle(report):
    return {e["muscle_group"]: e for e in report["per_muscle"]}


@pytest.mark.parametrize(
    "score,status",
    [
        (0, "under-trained"),
        (69.9, "under-trained"),
        (70, "optimal"),
        (109.9, "optimal"),
        (110, "moderate-fatigue"),
        (129.9, "moderate-fatigue"),
        (130, "high-fatigue"),
        (250, "high-fatigue"),
    ],
)
def test_fatigue_status_bands(score, status):
    assert fatigue_status(score, True) == status


def test_fatigue_status_without_data():
    assert fatigue_status(0, False) == "no-data"


def test_fatigue_score_without_baseline():
    assert fatigue_score(500, None) == 100
    assert fatigue_score(0, None) == 0
    assert fatigue_score(1500, 1000) == 150


def test_analysis_windows():
    utc = datetime.timezone.utc
    windows = analysis_windows(NOW)
    assert windows["end"] == NOW
    assert windows["last7_start"] == datetime.datetime(2024, 6, 8, 12, 0, tzinfo=utc)
    assert windows["baseline_start"] == datetime.datetime(2024, 5, 11, 12, 0, tzinfo=utc)
    assert windows["baseline_end"] == windows["last7_start"]
    assert windows["stimulus_start"] == windows["last7_start"]


def test_sort_entries_orders_by_severity():
    entries = [
        {"muscle_group": "a", "status": "no-data", "fatigue_score": 0},
        {"muscle_group": "b", "status": "under-trained", "fatigue_score": 50},
        {"muscle_group": "c", "status": "under-trained", "fatigue_score": 20},
        {"muscle_group": "d", "status": "optimal", "fatigue_score": 90},
        {"muscle_group": "e", "status": "high-fatigue", "fatigue_score": 140},
        {"muscle_group": "f", "status": "high-fatigue", "fatigue_score": 180},
    ]
    assert [e["muscle_group"] for e in sort_entries(entries)] == ["f", "e", "d", "c", "b", "a"]


@pytest.mark.asyncio
async def test_new_user_has_no_data(tmp_path):
    report = await make_service(str(tmp_path / "new.db")).get_fatigue_scores("nobody")
    assert [e["muscle_group"] for e in report["per_muscle"]] == list(TRACKED_MUSCLES)
    for entry in report["per_muscle"]:
        assert entry["status"] == "no-data"
        assert entry["color"] == "gray"
        assert entry["baseline_volume"] is None
        assert entry["baseline_missing"] is True
        assert entry["recovery_load"] == 0
    assert report["readiness_score"] == 100
    assert report["deload_week_detected"] is False
    assert report["last_workout_at"] is None
    assert report["totals"]["baseline_volume"] is None
    assert sorted(report["fresh_muscles"]) == sorted(TRACKED_MUSCLES)


@pytest.mark.asyncio
async def test_high_fatigue_against_baseline(tmp_path):
    db = str(tmp_path / "fatigue.db")
    log_session(db, "u1", 2, [("bench_press", 10, 810)])
    log_session(db, "u1", 10, [("bench_press", 10, 800)])
    log_session(db, "u1", 17, [("bench_press", 10, 820)])
    log_session(db, "u1", 24, [("bench_press", 10, 790)])

    report = await make_service(db).get_fatigue_scores("u1")
    chest = report["per_muscle"][0]
    assert chest["muscle_group"] == "chest"
    assert chest["last_7_days_volume"] == 8100
    assert chest["baseline_volume"] == pytest.approx(24100 / 4)
    assert chest["fatigue_score"] == pytest.approx(8100 / 6025 * 100)
    assert chest["status"] == "high-fatigue"
    assert chest["color"] == "red"
    assert chest["fatigued"] is True
    assert chest["under_trained"] is False
    assert chest["last_session_volume"] == 8100
    # one set well above baseline, 48h old
    assert chest["recovery_load"] == pytest.approx(1.5 * 0.5 ** (48 / 36), abs=1e-4)
    assert "chest" not in report["fresh_muscles"]
    assert report["readiness_score"] == pytest.approx(150 - 8100 / 6025 * 100)
    assert report["deload_week_detected"] is False


@pytest.mark.asyncio
async def test_equal_volume_is_optimal(tmp_path):
    db = str(tmp_path / "optimal.db")
    log_session(db, "u1", 1, [("squat", 10, 500)])
    for days_ago in (9, 16, 23, 30):
        log_session(db, "u1", days_ago, [("squat", 10, 500)])

    legs = by_muscle(await make_service(db).get_fatigue_scores("u1"))["legs"]
    assert legs["fatigue_score"] == pytest.approx(100)
    assert legs["status"] == "optimal"
    assert legs["color"] == "blue"


@pytest.mark.asyncio
async def test_steady_weekly_schedule_is_optimal_on_training_day(tmp_path):
    db = str(tmp_path / "weekly.db")
    evening = datetime.datetime(2024, 6, 17, 20, 0, tzinfo=datetime.timezone.utc)
    for weeks_ago in range(5):
        morning = evening - datetime.timedelta(weeks=weeks_ago, hours=10)
        log_session_at(db, "u1", morning, [("bench_press", 10, 200)])

    service = FatigueService(AsyncAnalyticsRepository(db), clock=lambda: evening)
    chest = by_muscle(await service.get_fatigue_scores("u1"))["chest"]
    assert chest["last_7_days_volume"] == 2000
    assert chest["baseline_volume"] == 2000
    assert chest["fatigue_score"] == pytest.approx(100)
    assert chest["status"] == "optimal"


@pytest.mark.parametrize(
    "age,last7,baseline",
    [
        (datetime.timedelta(0), 0, None),
        (datetime.timedelta(days=7), 4000, None),
        (datetime.timedelta(days=7, seconds=1), 0, 1000),
        (datetime.timedelta(days=35), 0, 1000),
        (datetime.timedelta(days=35, seconds=1), 0, None),
    ],
)
@pytest.mark.asyncio
async def test_window_boundaries(tmp_path, age, last7, baseline):
    db = str(tmp_path / "bounds.db")
    log_session_at(db, "u1", NOW - age, [("squat", 10, 400)])

    legs = by_muscle(await make_service(db).get_fatigue_scores("u1"))["legs"]
    assert legs["last_7_days_volume"] == last7
    assert legs["baseline_volume"] == baseline


@pytest.mark.asyncio
async def test_missed_week_is_under_trained_and_deload(tmp_path):
    db = str(tmp_path / "deload.db")
    log_session(db, "u1", 10, [("barbell_row", 10, 400)])

    report = await make_service(db).get_fatigue_scores("u1")
    back = by_muscle(report)["back"]
    assert back["fatigue_score"] == 0
    assert back["status"] == "under-trained"
    assert back["under_trained"] is False
    assert back["fatigued"] is False
    assert report["deload_week_detected"] is True
    assert report["readiness_score"] == 100
    assert "back" in report["fresh_muscles"]


@pytest.mark.asyncio
async def test_first_week_without_baseline(tmp_path):
    db = str(tmp_path / "first.db")
    log_session(db, "u1", 1, [("bench_press", 10, 100)])

    report = await make_service(db).get_fatigue_scores("u1")
    chest = by_muscle(report)["chest"]
    assert chest["fatigue_score"] == 100
    assert chest["status"] == "optimal"
    assert chest["baseline_missing"] is True
    assert report["deload_week_detected"] is False


@pytest.mark.asyncio
async def test_inactive_sessions_ignored(tmp_path):
    db = str(tmp_path / "inactive.db")
    log_session(db, "u1", 1, [("bench_press", 10, 100)], ended_reason=INACTIVITY_REASON)

    report = await make_service(db).get_fatigue_scores("u1")
    assert by_muscle(report)["chest"]["status"] == "no-data"
    assert report["last_workout_at"] is None


@pytest.mark.asyncio
async def test_untracked_muscles_are_appended(tmp_path):
    db = str(tmp_path / "extra.db")
    ExerciseRepository(db).add("neck_curl", "Neck Curl", "Neck", "plate")
    log_session(db, "u1", 1, [("neck_curl", 15, 25)])

    report = await make_service(db).get_fatigue_scores("u1")
    assert by_muscle(report)["neck"]["last_7_days_volume"] == 375
    assert len(report["per_muscle"]) == len(TRACKED_MUSCLES) + 1


@pytest.mark.asyncio
async def test_recommendations_target_under_trained(tmp_path):
    db = str(tmp_path / "recs.db")
    templates = TemplateRepository(db)
    push = templates.create("u1", "Push Day", "push")
    templates.add_exercise(push, "bench_press")
    templates.add_exercise(push, "tricep_pushdown")
    pull = templates.create("u1", "Pull Day", "pull")
    templates.add_exercise(pull, "barbell_row")
    templates.add_exercise(pull, "barbell_curl")

    log_session(db, "u1", 2, [("bench_press", 10, 810), ("barbell_row", 10, 50)])
    for days_ago, weight in ((10, 800), (17, 820), (24, 790)):
        log_session(db, "u1", days_ago, [("bench_press", 10, weight), ("barbell_row", 10, 100)])
    log_session(db, "u1", 31, [("barbell_row", 10, 100)])

    result = await make_service(db).get_training_recommendations("u1")
    assert result["target_muscles"] == ["back"]
    assert result["recommended_workouts"] == [
        {
            "id": pull,
            "name": "Pull Day",
            "muscle_groups": ["back", "biceps"],
            "reason": "Targets back",
        }
    ]


@pytest.mark.asyncio
async def test_recommendations_fallback_without_templates(tmp_path):
    result = await make_service(str(tmp_path / "empty.db")).get_training_recommendations("u1")
    assert result["target_muscles"] == []
    workout = result["recommended_workouts"][0]
    assert workout["id"] == "fallback-full-body"
    assert workout["muscle_groups"] == ["full_body"]


@pytest.mark.asyncio
async def test_calculate_muscle_fatigue(tmp_path):
    db = str(tmp_path / "calc.db")
    log_session(db, "u1", 1, [("squat", 10, 300)])
    scores = await make_service(db).calculate_muscle_fatigue("u1")
    assert scores["legs"] == 100
    assert scores["chest"] == 0


@pytest.mark.asyncio
async def test_recent_workouts_degrade_to_empty(tmp_path):
    service = make_service(str(tmp_path / "broken.db"))

    async def broken(user_id, limit):
        raise RuntimeError("database is locked")

    service.analytics.fetch_recent_workouts = broken
    assert await service.get_recent_workouts("u1") == []
