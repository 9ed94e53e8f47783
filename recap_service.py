from __future__ import annotations
import datetime
import logging
import time
from typing import Callable

from db import AsyncAnalyticsRepository
from fatigue_service import utcnow
from algorithms.math_tools import MathTools

logger = logging.getLogger(__name__)

LOOKBACK_WEEKS = 8
CACHE_TTL_SECONDS = 120.0
TARGET_RPE = 8.0
MAX_HIGHLIGHTS = 6
WIN_BACK_DAYS = 5


def quality_score(
    volume: float,
    baseline_volume: float | None,
    avg_rpe: float | None,
    baseline_rpe: float | None,
) -> tuple[int, str]:
    """Score a session 35-100 against the personal baseline and band it."""
    safe_baseline = baseline_volume if baseline_volume and baseline_volume > 0 else (volume or 1)
    volume_ratio = MathTools.clamp(volume / safe_baseline, 0.4, 1.6)

    rpe = avg_rpe if avg_rpe is not None else baseline_rpe
    if rpe is None:
        rpe_component = 0.75
    else:
        rpe_component = MathTools.clamp(1 - abs(rpe - TARGET_RPE) / 5, 0.45, 1.05)

    if rpe is None or baseline_rpe is None:
        trend_boost = 1.0
    else:
        trend_boost = MathTools.clamp(1 + ((rpe - baseline_rpe) / 3) * 0.1, 0.9, 1.1)

    combined = volume_ratio * 0.7 + rpe_component * 0.3
    score = round(MathTools.clamp(combined * 100 * trend_boost, 35, 100))
    if score >= 90:
        return score, "peak"
    if score >= 75:
        return score, "solid"
    return score, "dip"


def current_streak(dates: list[str], today: datetime.date) -> int:
    """Consecutive workout days ending today."""
    days = set(dates)
    streak = 0
    cursor = today
    while cursor.isoformat() in days:
        streak += 1
        cursor -= datetime.timedelta(days=1)
    return streak


def best_streak(dates: list[str]) -> int:
    ordered = sorted({datetime.date.fromisoformat(d) for d in dates})
    if not ordered:
        return 0
    best = current = 1
    for prev, day in zip(ordered, ordered[1:]):
        current = current + 1 if (day - prev).days == 1 else 1
        best = max(best, current)
    return best


def _date_key(ts: str) -> str:
    parsed = MathTools.parse_timestamp(ts)
    return parsed.date().isoformat() if parsed else str(ts)[:10]


def build_highlights(
    quality: list[dict],
    streak: dict,
    baseline_volume: float | None,
    quality_dip: dict | None,
    today: datetime.date,
) -> list[dict]:
    highlights = []
    if quality:
        best = max(quality, key=lambda q: q["quality_score"])
        highlights.append(
            {
                "id": f"quality-{best['session_id']}",
                "type": "pr",
                "title": "Standout session",
                "subtitle": best["template_name"] or "Recent workout",
                "date": best["finished_at"],
                "tone": "positive",
                "value": best["quality_score"],
            }
        )
        top = max(quality, key=lambda q: q["total_volume"])
        if baseline_volume and top["total_volume"] > baseline_volume * 1.15:
            highlights.append(
                {
                    "id": f"volume-{top['session_id']}",
                    "type": "volume_high",
                    "title": "Volume high",
                    "subtitle": f"{round(top['total_volume'] / 100) / 10}k lbs moved",
                    "date": top["finished_at"],
                    "tone": "positive",
                    "value": top["total_volume"],
                }
            )

    streak_date = streak["last_workout_at"] or today.isoformat()
    if streak["current"] >= 3:
        highlights.append(
            {
                "id": f"streak-current-{streak['current']}",
                "type": "streak",
                "title": f"{streak['current']}-day streak",
                "subtitle": "Nice consistency, keep it steady",
                "date": streak_date,
                "tone": "info",
            }
        )
    elif streak["best"] >= 5:
        highlights.append(
            {
                "id": f"streak-best-{streak['best']}",
                "type": "streak",
                "title": f"Best streak: {streak['best']} days",
                "subtitle": "You've hit this before, time to match it",
                "date": streak_date,
                "tone": "info",
            }
        )

    if quality_dip:
        highlights.append(
            {
                "id": f"dip-{quality_dip['since']}",
                "type": "dip",
                "title": "Quality dip detected",
                "subtitle": quality_dip["suggestion"],
                "date": quality_dip["since"],
                "tone": "warning",
            }
        )
    highlights.sort(key=lambda h: h["date"], reverse=True)
    return highlights[:MAX_HIGHLIGHTS]


class RecapService:
    """Score recent session quality, streaks and dips, cached briefly per user."""

    def __init__(
        self,
        analytics_repo: AsyncAnalyticsRepository,
        cache_seconds: float = CACHE_TTL_SECONDS,
        lookback_weeks: int = LOOKBACK_WEEKS,
        clock: Callable[[], datetime.datetime] | None = None,
        monotonic: Callable[[], float] | None = None,
    ) -> None:
        self.analytics = analytics_repo
        self.cache_seconds = cache_seconds
        self.lookback_weeks = lookback_weeks
        self.clock = clock or utcnow
        self.monotonic = monotonic or time.monotonic
        self._cache: dict[str, tuple[float, dict]] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    async def get_recap_slice(self, user_id: str) -> dict:
        now = self.monotonic()
        cached = self._cache.get(user_id)
        if cached and cached[0] > now:
            return cached[1]
        data = await self.build_recap(user_id)
        for key in [k for k, (expires, _) in self._cache.items() if expires <= now]:
            del self._cache[key]
        self._cache[user_id] = (now + self.cache_seconds, data)
        return data

    async def build_recap(self, user_id: str) -> dict:
        now = self.clock()
        today = now.astimezone(datetime.timezone.utc).date()
        sessions = await self.analytics.fetch_recent_sessions_with_sets(
            user_id, now - datetime.timedelta(weeks=self.lookback_weeks)
        )
        if not sessions:
            return {
                "generated_at": now.isoformat(),
                "lookback_weeks": self.lookback_weeks,
                "baseline_volume": None,
                "baseline_rpe": None,
                "streak": {"current": 0, "best": 0, "last_workout_at": None},
                "quality": [],
                "highlights": [],
                "quality_dip": None,
                "win_back": None,
            }

        session_volumes = [max(0, round(MathTools.finite(s["total_volume"]))) for s in sessions]
        volumes = [v for v in session_volumes if v > 0]
        rpes = [
            MathTools.finite(s["avg_rpe"]) for s in sessions if s["avg_rpe"] is not None
        ]
        baseline_volume = MathTools.median(volumes) if len(volumes) >= 3 else (volumes[0] if volumes else None)
        baseline_rpe = MathTools.average(rpes) if len(rpes) >= 3 else (rpes[0] if rpes else None)

        quality = []
        for session, volume in zip(sessions, session_volumes):
            score, status = quality_score(volume, baseline_volume, session["avg_rpe"], baseline_rpe)
            quality.append(
                {
                    "session_id": session["id"],
                    "finished_at": _date_key(session["finished_at"]),
                    "template_name": session["template_name"],
                    "quality_score": score,
                    "status": status,
                    "total_volume": volume,
                    "avg_rpe": session["avg_rpe"],
                }
            )

        dates = [q["finished_at"] for q in quality]
        streak = {
            "current": current_streak(dates, today),
            "best": best_streak(dates),
            "last_workout_at": dates[0],
        }

        dips = 0
        for q in quality:
            if q["status"] != "dip":
                break
            dips += 1
        quality_dip = None
        if dips >= 2:
            quality_dip = {
                "consecutive": dips,
                "since": quality[0]["finished_at"],
                "suggestion": (
                    "Dial back intensity and try a short recovery session"
                    if dips >= 3
                    else "Ease back in with focused form and lighter loads"
                ),
                "last_score": quality[0]["quality_score"],
            }

        win_back = None
        days_since = (today - datetime.date.fromisoformat(dates[0])).days
        if quality_dip and days_since >= WIN_BACK_DAYS:
            win_back = {
                "headline": "Quality dipped, take an easy win",
                "message": (
                    f"Last workout was {days_since} days ago. "
                    "Try a short recovery or technique session to reset."
                ),
                "since": quality_dip["since"],
            }
            logger.info("Win-back suggested for %s after %d days", user_id, days_since)

        return {
            "generated_at": now.isoformat(),
            "lookback_weeks": self.lookback_weeks,
            "baseline_volume": baseline_volume,
            "baseline_rpe": baseline_rpe,
            "streak": streak,
            "quality": quality,
            "highlights": build_highlights(quality, streak, baseline_volume, quality_dip, today),
            "quality_dip": quality_dip,
            "win_back": win_back,
        }
