import datetime
import logging

from config import DEFAULT_DB_PATH
from db import (
    UserRepository,
    TemplateRepository,
    SessionRepository,
    SetRepository,
)

logger = logging.getLogger(__name__)

DEMO_USER = "demo"

# template name -> split type, [(exercise id, sets, reps, starting weight)]
DEMO_TEMPLATES = {
    "Push Day": (
        "push",
        [
            ("bench_press", 3, 8, 135.0),
            ("overhead_press", 3, 8, 75.0),
            ("tricep_pushdown", 3, 12, 40.0),
        ],
    ),
    "Pull Day": (
        "pull",
        [
            ("barbell_row", 3, 8, 115.0),
            ("pull_up", 3, 8, None),
            ("barbell_curl", 3, 10, 45.0),
        ],
    ),
    "Leg Day": (
        "legs",
        [
            ("squat", 3, 6, 185.0),
            ("romanian_deadlift", 3, 8, 135.0),
            ("plank", 3, 1, None),
        ],
    ),
}


def seed(
    db_path: str = DEFAULT_DB_PATH,
    user_id: str = DEMO_USER,
    now: datetime.datetime | None = None,
    weeks: int = 5,
) -> bool:
    """Insert a push/pull/legs history for ``user_id``; False if it already has one."""
    sessions = SessionRepository(db_path)
    if sessions.fetch_all(
        "SELECT 1 FROM workout_sessions WHERE user_id = ? LIMIT 1;", (user_id,)
    ):
        return False
    now = now or datetime.datetime.now(datetime.timezone.utc)
    UserRepository(db_path).create(user_id, preferred_split="ppl", session_duration=60)
    templates = TemplateRepository(db_path)
    sets = SetRepository(db_path)

    plan = []
    for name, (split, exercises) in DEMO_TEMPLATES.items():
        tid = templates.create(user_id, name, split)
        for ex_id, n_sets, reps, weight in exercises:
            templates.add_exercise(tid, ex_id, n_sets, reps, weight)
        plan.append((tid, name, exercises))

    days = list(range(weeks * 7, 0, -2))
    for index, days_ago in enumerate(days):
        tid, name, exercises = plan[index % len(plan)]
        progress = index // len(plan)
        started = now - datetime.timedelta(days=days_ago, hours=1)
        sid = sessions.create(user_id, started, tid, name)
        for ex_id, n_sets, reps, weight in exercises:
            target_weight = weight + 5 * progress if weight is not None else None
            sets.bulk_add(
                sid,
                ex_id,
                [
                    {
                        "target_reps": reps,
                        "target_weight": target_weight,
                        "actual_reps": reps + (1 if set_no == 0 else 0),
                        "actual_weight": target_weight,
                        "rpe": 7 + set_no,
                    }
                    for set_no in range(n_sets)
                ],
            )
        if name == "Leg Day":
            sets.add(
                sid,
                "treadmill_walk",
                actual_duration_minutes=15,
                actual_distance=0.9,
                actual_incline=8,
            )
        sessions.finish(sid, started + datetime.timedelta(hours=1))
    logger.info("Seeded %d demo sessions for %s", len(days), user_id)
    return True


if __name__ == "__main__":
    if seed():
        print("Seed data inserted")
    else:
        print("Database already contains workouts")
