from __future__ import annotations
import logging
from typing import Iterable

from db import AsyncAnalyticsRepository
from algorithms.math_tools import MathTools

logger = logging.getLogger(__name__)

COMPOUND_EXERCISES = (
    "bench_press",
    "squat",
    "deadlift",
    "overhead_press",
    "barbell_row",
    "pull_up",
    "chin_up",
    "dip",
    "front_squat",
    "romanian_deadlift",
)

BODYWEIGHT_EXERCISES = (
    "pull_up",
    "chin_up",
    "push_up",
    "dip",
    "bodyweight_squat",
    "lunge",
    "plank",
)

REQUIRED_SESSIONS = 3
HIT_TARGET_SHARE = 0.75


def categorize_exercise(exercise_id: str) -> str:
    """Return ``bodyweight``, ``compound`` or ``isolation`` for an exercise id."""
    key = exercise_id.lower()
    if any(bw in key for bw in BODYWEIGHT_EXERCISES):
        return "bodyweight"
    if any(comp in key for comp in COMPOUND_EXERCISES):
        return "compound"
    return "isolation"


def calculate_increment(exercise_id: str, current_weight: float) -> float:
    """Weight increment in lbs; the larger of the exercise-type and load tiers."""
    category = categorize_exercise(exercise_id)
    if category == "bodyweight":
        return 0.0
    increment = 2.5
    if category == "compound":
        increment = max(increment, 5.0)
    if current_weight >= 150:
        increment = max(increment, 10.0)
    elif current_weight >= 50:
        increment = max(increment, 5.0)
    return increment


def _session_summary(row: dict) -> dict:
    return {
        "date": row["finished_at"],
        "sets": int(row["sets"] or 0),
        "avg_reps": round(MathTools.finite(row["avg_reps"])),
        "avg_weight": round(MathTools.finite(row["avg_weight"])),
        "target_reps": round(MathTools.finite(row["target_reps"])),
        "hit_target": bool(row["hit_target"]),
    }


class ProgressionService:
    """Suggest load or rep increases from the most recent sessions of each exercise."""

    def __init__(self, analytics_repo: AsyncAnalyticsRepository) -> None:
        self.analytics = analytics_repo

    async def analyze_exercise(self, user_id: str, exercise_id: str) -> dict | None:
        rows = await self.analytics.fetch_exercise_session_history(
            user_id, exercise_id, limit=REQUIRED_SESSIONS
        )
        if len(rows) < REQUIRED_SESSIONS:
            return None

        sessions = [_session_summary(r) for r in rows]
        name = rows[0].get("exercise_name") or exercise_id
        last_two = sessions[:2]
        all_hit = all(s["hit_target"] for s in last_two)
        all_exceeded = all(s["avg_reps"] > s["target_reps"] + 1 for s in last_two)

        if categorize_exercise(exercise_id) == "bodyweight":
            if not all_hit:
                return None
            return {
                "exercise_id": exercise_id,
                "exercise_name": name,
                "current_weight": 0,
                "suggested_weight": 0,
                "increment": 0,
                "reason": "Hit target reps for 2 sessions. Try adding 2-3 more reps per set.",
                "confidence": "high",
                "last_sessions": sessions,
            }

        if not all_hit:
            return None
        current = sessions[0]["avg_weight"]
        increment = calculate_increment(exercise_id, current)
        if all_exceeded:
            reason = "Exceeded target reps for 2 consecutive sessions"
            confidence = "high"
        else:
            reason = "Consistently hit target reps for 2 sessions"
            confidence = "medium"
        return {
            "exercise_id": exercise_id,
            "exercise_name": name,
            "current_weight": current,
            "suggested_weight": current + increment,
            "increment": increment,
            "reason": reason,
            "confidence": confidence,
            "last_sessions": sessions,
        }

    async def get_progression_suggestions(self, user_id: str, template_id: int) -> dict:
        template = await self.analytics.fetch_template(user_id, template_id)
        if template is None:
            return {
                "template_id": template_id,
                "template_name": "Unknown Template",
                "has_significant_data": False,
                "suggestions": [],
                "ready_for_progression": False,
            }

        suggestions = []
        for exercise in template["exercises"]:
            suggestion = await self.analyze_exercise(user_id, exercise["exercise_id"])
            if suggestion is not None:
                suggestions.append(suggestion)
        sessions = await self.analytics.count_template_sessions(user_id, template_id)
        return {
            "template_id": template_id,
            "template_name": template["name"] or "Unknown Template",
            "has_significant_data": sessions >= REQUIRED_SESSIONS,
            "suggestions": suggestions,
            "ready_for_progression": bool(suggestions),
        }

    async def apply_progression_suggestions(
        self,
        user_id: str,
        template_id: int,
        exercise_ids: Iterable[str] | None = None,
    ) -> dict:
        """Write suggested weights into the template defaults.

        Rep-only (bodyweight) suggestions are left alone.
        """
        report = await self.get_progression_suggestions(user_id, template_id)
        if not report["ready_for_progression"]:
            return {"updated": 0}
        allowed = set(exercise_ids) if exercise_ids is not None else None
        updated = 0
        for suggestion in report["suggestions"]:
            if allowed is not None and suggestion["exercise_id"] not in allowed:
                continue
            if suggestion["increment"] == 0:
                continue
            rows = await self.analytics.update_template_default_weight(
                template_id, suggestion["exercise_id"], suggestion["suggested_weight"]
            )
            if rows:
                updated += 1
        logger.info("Applied %d progression updates to template %s", updated, template_id)
        return {"updated": updated}
