from __future__ import annotations
import asyncio
import datetime
import logging
from typing import Callable, Iterable

from db import AsyncAnalyticsRepository
from fatigue_service import utcnow
from algorithms.math_tools import MathTools

logger = logging.getLogger(__name__)

PUSH_MUSCLES = ("chest", "shoulders", "triceps")
PULL_MUSCLES = ("back", "biceps")
LEG_MUSCLES = ("legs", "glutes")

DEFAULT_WEEKS = 12
PR_LOOKBACK_WEEKS = 52

RATIO_ADVICE = "Aim for 1:1 to 1.2:1 push-to-pull ratio for balanced development"


def _finished(row: dict) -> datetime.datetime:
    parsed = MathTools.parse_timestamp(row["finished_at"])
    if parsed is None:
        raise ValueError(f"unreadable finished_at: {row['finished_at']!r}")
    return parsed


def weekly_volume(rows: Iterable[dict]) -> list[dict]:
    """Group session rows into Monday-based weeks per muscle group."""
    buckets: dict[tuple[datetime.date, str], dict] = {}
    for row in rows:
        day = _finished(row).date()
        monday = day - datetime.timedelta(days=day.weekday())
        bucket = buckets.setdefault(
            (monday, row["muscle_group"]),
            {"volume": 0.0, "sets": 0, "sessions": set()},
        )
        bucket["volume"] += MathTools.finite(row["volume"])
        bucket["sets"] += int(row["set_count"] or 0)
        bucket["sessions"].add(row["session_id"])

    result = []
    for (monday, muscle), bucket in buckets.items():
        year, week, _ = monday.isocalendar()
        result.append(
            {
                "week_start_date": monday.isoformat(),
                "week_number": week,
                "year": year,
                "muscle_group": muscle,
                "total_volume": round(bucket["volume"]),
                "total_sets": bucket["sets"],
                "workout_count": len(bucket["sessions"]),
            }
        )
    result.sort(key=lambda w: w["total_volume"], reverse=True)
    result.sort(key=lambda w: w["week_start_date"], reverse=True)
    return result


def muscle_group_summaries(rows: Iterable[dict]) -> list[dict]:
    groups: dict[str, dict] = {}
    for row in rows:
        group = groups.setdefault(
            row["muscle_group"],
            {"volume": 0.0, "sets": 0, "sessions": set(), "last": None},
        )
        finished = _finished(row)
        group["volume"] += MathTools.finite(row["volume"])
        group["sets"] += int(row["set_count"] or 0)
        group["sessions"].add(row["session_id"])
        if group["last"] is None or finished > group["last"]:
            group["last"] = finished

    summaries = []
    for muscle, group in groups.items():
        workouts = len(group["sessions"])
        summaries.append(
            {
                "muscle_group": muscle,
                "total_volume": round(group["volume"]),
                "total_sets": group["sets"],
                "workout_count": workouts,
                "average_volume_per_workout": round(group["volume"] / workouts) if workouts else 0,
                "last_trained_date": group["last"].date().isoformat() if group["last"] else None,
            }
        )
    summaries.sort(key=lambda s: s["total_volume"], reverse=True)
    return summaries


def push_pull_balance(summaries: Iterable[dict]) -> dict:
    push = pull = legs = other = 0.0
    for summary in summaries:
        muscle = summary["muscle_group"]
        if muscle in PUSH_MUSCLES:
            push += summary["total_volume"]
        elif muscle in PULL_MUSCLES:
            pull += summary["total_volume"]
        elif muscle in LEG_MUSCLES:
            legs += summary["total_volume"]
        else:
            other += summary["total_volume"]

    if pull > 0:
        ratio = push / pull
    else:
        ratio = 999.0 if push > 0 else 0.0

    recommendations = []
    if ratio > 1.5:
        status = "push-heavy"
        recommendations.append("Consider adding more pulling exercises (back, biceps)")
        recommendations.append(RATIO_ADVICE)
    elif ratio < 0.7:
        status = "pull-heavy"
        recommendations.append("Consider adding more pushing exercises (chest, shoulders, triceps)")
        recommendations.append(RATIO_ADVICE)
    else:
        status = "balanced"
        recommendations.append("Great push/pull balance! Keep it up.")

    upper = push + pull
    if upper > 0 and legs < upper * 0.5:
        recommendations.append(
            "Consider increasing leg training volume to match upper body development"
        )
    return {
        "push_volume": round(push),
        "pull_volume": round(pull),
        "leg_volume": round(legs),
        "other_volume": round(other),
        "push_pull_ratio": round(ratio, 2),
        "balance_status": status,
        "recommendations": recommendations,
    }


def volume_prs(weekly: Iterable[dict], current: dict[str, float]) -> list[dict]:
    """Compare each muscle's best week with the volume of the last seven days."""
    peaks: dict[str, dict] = {}
    for week in weekly:
        peak = peaks.get(week["muscle_group"])
        if peak is None or week["total_volume"] > peak["peak_volume"]:
            peaks[week["muscle_group"]] = {
                "peak_volume": week["total_volume"],
                "peak_week_date": week["week_start_date"],
            }
    prs = []
    for muscle, peak in peaks.items():
        volume = round(current.get(muscle, 0))
        percent = volume / peak["peak_volume"] * 100 if peak["peak_volume"] > 0 else 0
        prs.append(
            {
                "muscle_group": muscle,
                "peak_volume": peak["peak_volume"],
                "peak_week_date": peak["peak_week_date"],
                "current_volume": volume,
                "percent_of_pr": round(percent),
            }
        )
    prs.sort(key=lambda p: p["peak_volume"], reverse=True)
    return prs


def frequency_heatmap(rows: Iterable[dict], weeks: int) -> list[dict]:
    groups: dict[str, dict] = {}
    for row in rows:
        finished = _finished(row)
        date_key = finished.date().isoformat()
        group = groups.setdefault(row["muscle_group"], {"dates": {}, "weekdays": {}, "days": set()})
        group["dates"][date_key] = group["dates"].get(date_key, 0) + int(row["set_count"] or 0)
        if date_key not in group["days"]:
            group["days"].add(date_key)
            weekday = finished.strftime("%A")
            group["weekdays"][weekday] = group["weekdays"].get(weekday, 0) + 1

    heatmap = []
    for muscle, group in groups.items():
        days = len(group["dates"])
        most = None
        best = 0
        for weekday, count in group["weekdays"].items():
            if count > best:
                best = count
                most = weekday
        heatmap.append(
            {
                "muscle_group": muscle,
                "date_training_count": group["dates"],
                "weekly_frequency": round(days / weeks, 1) if days else 0,
                "most_trained_day": most,
            }
        )
    heatmap.sort(key=lambda h: h["weekly_frequency"], reverse=True)
    return heatmap


class MuscleAnalyticsService:
    """Longer-range muscle group volume, balance and frequency reports."""

    def __init__(
        self,
        analytics_repo: AsyncAnalyticsRepository,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.analytics = analytics_repo
        self.clock = clock or utcnow

    async def _rows(self, user_id: str, weeks: int) -> list[dict]:
        if weeks < 1:
            raise ValueError("weeks must be at least 1")
        since = self.clock() - datetime.timedelta(weeks=weeks)
        return await self.analytics.fetch_muscle_volume_rows(user_id, since)

    async def get_weekly_volume_by_muscle_group(
        self, user_id: str, weeks: int = DEFAULT_WEEKS
    ) -> list[dict]:
        return weekly_volume(await self._rows(user_id, weeks))

    async def get_muscle_group_summaries(
        self, user_id: str, weeks: int = DEFAULT_WEEKS
    ) -> list[dict]:
        return muscle_group_summaries(await self._rows(user_id, weeks))

    async def get_push_pull_balance(self, user_id: str, weeks: int = DEFAULT_WEEKS) -> dict:
        return push_pull_balance(await self.get_muscle_group_summaries(user_id, weeks))

    async def get_volume_prs(
        self, user_id: str, lookback_weeks: int = PR_LOOKBACK_WEEKS
    ) -> list[dict]:
        history, recent = await asyncio.gather(
            self._rows(user_id, lookback_weeks), self._rows(user_id, 1)
        )
        current: dict[str, float] = {}
        for row in recent:
            current[row["muscle_group"]] = current.get(row["muscle_group"], 0.0) + MathTools.finite(
                row["volume"]
            )
        return volume_prs(weekly_volume(history), current)

    async def get_frequency_heatmap(
        self, user_id: str, weeks: int = DEFAULT_WEEKS
    ) -> list[dict]:
        return frequency_heatmap(await self._rows(user_id, weeks), weeks)

    async def get_advanced_analytics(self, user_id: str, weeks: int = DEFAULT_WEEKS) -> dict:
        rows, prs = await asyncio.gather(
            self._rows(user_id, weeks),
            self.get_volume_prs(user_id, max(weeks, PR_LOOKBACK_WEEKS)),
        )
        summaries = muscle_group_summaries(rows)
        return {
            "weekly_volume_data": weekly_volume(rows),
            "muscle_group_summaries": summaries,
            "push_pull_balance": push_pull_balance(summaries),
            "volume_prs": prs,
            "frequency_heatmap": frequency_heatmap(rows, weeks),
        }
