from __future__ import annotations
import asyncio
import datetime
import logging
from typing import Callable

from db import AsyncAnalyticsRepository
from stimulus_service import StimulusAggregator
from algorithms.math_tools import MathTools

logger = logging.getLogger(__name__)

TRACKED_MUSCLES = (
    "chest",
    "back",
    "shoulders",
    "biceps",
    "triceps",
    "legs",
    "glutes",
    "core",
)

WINDOW_DAYS = 7
BASELINE_WEEKS = 4

FATIGUED_ABOVE = 130.0
UNDER_TRAINED_BELOW = 70.0
FRESH_AT_OR_BELOW = 90.0
DELOAD_RATIO = 0.5

STATUS_COLORS = {
    "under-trained": "green",
    "optimal": "blue",
    "moderate-fatigue": "yellow",
    "high-fatigue": "red",
    "no-data": "gray",
}

STATUS_ORDER = {
    "high-fatigue": 0,
    "moderate-fatigue": 1,
    "optimal": 2,
    "under-trained": 3,
    "no-data": 4,
}

FALLBACK_WORKOUT = {
    "id": "fallback-full-body",
    "name": "Full Body / Mobility",
    "muscle_groups": ["full_body"],
    "reason": "Light full-body or mobility session recommended while data is limited",
}


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def fatigue_status(score: float, has_data: bool) -> str:
    """Map a fatigue score to its status band."""
    if not has_data:
        return "no-data"
    if score < UNDER_TRAINED_BELOW:
        return "under-trained"
    if score < 110:
        return "optimal"
    if score < FATIGUED_ABOVE:
        return "moderate-fatigue"
    return "high-fatigue"


def fatigue_score(last7: float, baseline_weekly: float | None) -> float:
    """Return last-7-day volume as a percentage of the weekly baseline."""
    if not baseline_weekly:
        return 100.0 if last7 > 0 else 0.0
    return MathTools.safe_divide(last7, baseline_weekly) * 100.0


def analysis_windows(now: datetime.datetime) -> dict[str, datetime.datetime]:
    """Return the rolling windows used by the fatigue report.

    ``end`` is exclusive. The last-7 window covers ``[now - 7d, now)`` and the
    baseline the four weeks before it, ``[now - 35d, now - 7d)``.
    """
    end = now.astimezone(datetime.timezone.utc)
    last7_start = end - datetime.timedelta(days=WINDOW_DAYS)
    return {
        "end": end,
        "last7_start": last7_start,
        "baseline_start": end - datetime.timedelta(days=WINDOW_DAYS * (BASELINE_WEEKS + 1)),
        "baseline_end": last7_start,
        "stimulus_start": last7_start,
    }


def sort_entries(entries: list[dict]) -> list[dict]:
    def key(entry: dict) -> tuple:
        score = entry["fatigue_score"]
        if entry["status"] == "under-trained":
            return (STATUS_ORDER[entry["status"]], score)
        return (STATUS_ORDER[entry["status"]], -score)

    return sorted(entries, key=key)


class FatigueService:
    """Compute per-muscle fatigue, readiness and deload signals for a user."""

    def __init__(
        self,
        analytics_repo: AsyncAnalyticsRepository,
        stimulus: StimulusAggregator | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.analytics = analytics_repo
        self.stimulus = stimulus or StimulusAggregator()
        self.clock = clock or utcnow

    async def get_fatigue_scores(self, user_id: str) -> dict:
        now = self.clock()
        windows = analysis_windows(now)
        (
            last7_volumes,
            baseline_volumes,
            last_sessions,
            stimulus_rows,
            last_workout_at,
        ) = await asyncio.gather(
            self.analytics.fetch_volume_by_muscle(
                user_id, windows["last7_start"], windows["end"]
            ),
            self.analytics.fetch_volume_by_muscle(
                user_id, windows["baseline_start"], windows["baseline_end"]
            ),
            self.analytics.fetch_last_session_by_muscle(user_id),
            self.analytics.fetch_stimulus_rows(user_id, windows["stimulus_start"]),
            self.analytics.fetch_last_workout_at(user_id),
        )

        muscles = list(TRACKED_MUSCLES)
        for muscle in list(last7_volumes) + list(baseline_volumes):
            if muscle not in muscles:
                muscles.append(muscle)

        baselines: dict[str, float | None] = {}
        for muscle in muscles:
            weekly = MathTools.finite(baseline_volumes.get(muscle)) / BASELINE_WEEKS
            baselines[muscle] = weekly if weekly > 0 else None
        loads = self.stimulus.recovery_loads(stimulus_rows, baselines, now)

        entries = []
        last7_total = 0.0
        baseline_total = 0.0
        for muscle in muscles:
            last7 = MathTools.finite(last7_volumes.get(muscle))
            baseline = baselines[muscle]
            score = fatigue_score(last7, baseline)
            status = fatigue_status(score, last7 > 0 or baseline is not None)
            last = last_sessions.get(muscle) or {}
            entries.append(
                {
                    "muscle_group": muscle,
                    "last_7_days_volume": last7,
                    "baseline_volume": baseline,
                    "fatigue_score": score,
                    "recovery_load": round(loads.get(muscle, 0.0), 4),
                    "status": status,
                    "color": STATUS_COLORS[status],
                    "fatigued": score > FATIGUED_ABOVE,
                    "under_trained": 0 < score < UNDER_TRAINED_BELOW,
                    "baseline_missing": baseline is None,
                    "last_trained_at": last.get("last_trained_at"),
                    "last_session_sets": last.get("sets"),
                    "last_session_reps": last.get("reps"),
                    "last_session_volume": last.get("volume"),
                }
            )
            last7_total += last7
            baseline_total += baseline or 0.0

        totals_baseline = baseline_total if baseline_total > 0 else None
        total_score = fatigue_score(last7_total, totals_baseline)
        return {
            "generated_at": now.isoformat(),
            "window_days": WINDOW_DAYS,
            "baseline_weeks": BASELINE_WEEKS,
            "per_muscle": sort_entries(entries),
            "deload_week_detected": (
                totals_baseline is not None and last7_total < totals_baseline * DELOAD_RATIO
            ),
            "readiness_score": MathTools.clamp(150.0 - total_score, 0.0, 100.0),
            "fresh_muscles": [
                e["muscle_group"]
                for e in entries
                if e["status"] == "under-trained" or e["fatigue_score"] <= FRESH_AT_OR_BELOW
            ],
            "last_workout_at": last_workout_at,
            "totals": {
                "last_7_days_volume": last7_total,
                "baseline_volume": totals_baseline,
                "fatigue_score": total_score,
            },
        }

    async def get_training_recommendations(
        self, user_id: str, fatigue: dict | None = None
    ) -> dict:
        """Pick target muscles and saved templates that train them safely."""
        if fatigue is None:
            fatigue = await self.get_fatigue_scores(user_id)
        entries = fatigue["per_muscle"]
        avoid = {e["muscle_group"] for e in entries if e["fatigued"]}
        under = [e["muscle_group"] for e in entries if e["under_trained"]]
        if under:
            targets = under
        else:
            targets = [
                e["muscle_group"]
                for e in entries
                if e["status"] == "optimal" and e["muscle_group"] not in avoid
            ]
        target_set = set(targets)

        templates = await self.analytics.fetch_templates_with_muscles(user_id)
        flagged = []
        for tpl in templates:
            groups = tpl["muscle_groups"]
            flagged.append(
                (
                    tpl,
                    any(g in target_set for g in groups),
                    any(g in avoid for g in groups),
                )
            )
        ranked = [f for f in flagged if f[1] and not f[2]]
        if not ranked:
            ranked = [f for f in flagged if not f[2]]

        workouts = []
        for tpl, hits_target, _ in ranked[:3]:
            if hits_target:
                hit = [g for g in tpl["muscle_groups"] if g in target_set]
                reason = f"Targets {', '.join(hit)}"
            else:
                reason = "Balanced option while avoiding fatigued muscles"
            workouts.append(
                {
                    "id": tpl["id"],
                    "name": tpl["name"],
                    "muscle_groups": tpl["muscle_groups"],
                    "reason": reason,
                }
            )
        if not workouts:
            workouts = [dict(FALLBACK_WORKOUT, muscle_groups=list(FALLBACK_WORKOUT["muscle_groups"]))]
        return {"target_muscles": targets[:3], "recommended_workouts": workouts}

    async def calculate_muscle_fatigue(self, user_id: str) -> dict[str, int]:
        report = await self.get_fatigue_scores(user_id)
        return {e["muscle_group"]: round(e["fatigue_score"]) for e in report["per_muscle"]}

    async def get_recent_workouts(self, user_id: str, limit: int = 5) -> list[dict]:
        """Recent workouts for context; a failing read degrades to an empty list."""
        try:
            return await self.analytics.fetch_recent_workouts(user_id, limit)
        except Exception:
            logger.warning("Failed to fetch recent workouts for %s", user_id, exc_info=True)
            return []
