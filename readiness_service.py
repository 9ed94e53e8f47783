from __future__ import annotations
import datetime
import math
import re
from typing import Iterable

from algorithms.math_tools import MathTools

READINESS_BLOCKED_THRESHOLD = 30
READINESS_HIGH_THRESHOLD = 45
READINESS_MODERATE_THRESHOLD = 65
READINESS_READY_THRESHOLD = 70
READINESS_FRESH_THRESHOLD = 85

_ALIASES = {
    "upper back": "back",
    "lower back": "back",
    "trapezius": "back",
    "traps": "back",
    "lats": "back",
    "latissimus dorsi": "back",
    "back": "back",
    "chest": "chest",
    "pectorals": "chest",
    "pecs": "chest",
    "deltoids": "shoulders",
    "delts": "shoulders",
    "rear delts": "shoulders",
    "shoulders": "shoulders",
    "biceps": "biceps",
    "triceps": "triceps",
    "quadriceps": "legs",
    "quads": "legs",
    "hamstring": "legs",
    "hamstrings": "legs",
    "calves": "legs",
    "adductors": "legs",
    "legs": "legs",
    "gluteal": "glutes",
    "glutes": "glutes",
    "abs": "core",
    "abdominals": "core",
    "obliques": "core",
    "core": "core",
}

# Checked in order when no alias matches exactly.
_SUBSTRINGS = (
    (("back", "lat", "trap"), "back"),
    (("shoulder", "delt"), "shoulders"),
    (("chest", "pec"), "chest"),
    (("bicep",), "biceps"),
    (("tricep",), "triceps"),
    (("quad", "ham", "calf", "leg"), "legs"),
    (("glute",), "glutes"),
    (("ab", "core", "oblique"), "core"),
)


def normalize_muscle_group(value: str | None) -> str:
    """Return the canonical tracked muscle name for ``value``."""
    key = re.sub(r"\s+", " ", re.sub(r"[_-]+", " ", (value or "").lower())).strip()
    if not key:
        return "other"
    if key in _ALIASES:
        return _ALIASES[key]
    for needles, canonical in _SUBSTRINGS:
        if any(n in key for n in needles):
            return canonical
    return key


def _score_fallback(fatigue_score: float) -> int:
    return round(MathTools.clamp(120 - (MathTools.finite(fatigue_score) - 70) * 1.2, 0, 100))


def readiness_from_muscle(entry: dict, now: datetime.datetime | None = None) -> int:
    """Return 0-100 readiness for one fatigue entry.

    The decayed recovery load is preferred. Without it readiness recovers
    linearly after the last session over ``12 + 84 * intensity`` hours, and
    as a last resort it is derived from the weekly fatigue score.
    """
    load = entry.get("recovery_load")
    if isinstance(load, (int, float)) and not isinstance(load, bool) and math.isfinite(load):
        return round(MathTools.clamp(100 * (1 - min(1.0, float(load))), 0, 100))

    score = entry.get("fatigue_score", 0)
    last = MathTools.parse_timestamp(entry.get("last_trained_at"))
    if last is None:
        return _score_fallback(score)
    now = now or datetime.datetime.now(datetime.timezone.utc)
    hours_since = MathTools.hours_between(last, now)
    if hours_since < 0:
        return _score_fallback(score)

    sets = max(0.0, MathTools.finite(entry.get("last_session_sets")))
    volume = max(0.0, MathTools.finite(entry.get("last_session_volume")))
    if sets == 0 and volume == 0:
        return _score_fallback(score)
    baseline = MathTools.finite(entry.get("baseline_volume"))
    from_sets = MathTools.clamp((sets - 1) / 5, 0, 1)
    if baseline > 0:
        from_volume = MathTools.clamp(volume / (baseline * 0.4), 0, 1)
    else:
        from_volume = MathTools.clamp(volume / 8000, 0, 1)
    intensity = max(from_sets, from_volume)

    initial = round(MathTools.clamp(100 - intensity * 100, 0, 100))
    progress = MathTools.clamp(hours_since / (12 + intensity * 84), 0, 1)
    return round(initial + (100 - initial) * progress)


def build_canonical_muscle_stats(
    report: dict | None, now: datetime.datetime | None = None
) -> dict[str, dict]:
    """Collapse a fatigue report onto canonical muscles, keeping the worst values."""
    stats: dict[str, dict] = {}
    if not report:
        return stats
    for entry in report.get("per_muscle", []):
        canonical = normalize_muscle_group(entry.get("muscle_group"))
        readiness = readiness_from_muscle(entry, now)
        score = MathTools.finite(entry.get("fatigue_score"))
        existing = stats.get(canonical)
        if existing is None:
            stats[canonical] = {"readiness": readiness, "fatigue_score": score}
        else:
            existing["readiness"] = min(existing["readiness"], readiness)
            existing["fatigue_score"] = max(existing["fatigue_score"], score)
    return stats


def muscle_readiness(stats: dict[str, dict], muscles: Iterable[str]) -> dict:
    values = [
        stats[m]["readiness"]
        for m in (normalize_muscle_group(m) for m in muscles)
        if m in stats
    ]
    if not values:
        return {
            "min_readiness": 100,
            "avg_readiness": 100.0,
            "ready_count": 0,
            "blocked_count": 0,
            "total_count": 0,
        }
    return {
        "min_readiness": min(values),
        "avg_readiness": MathTools.average(values),
        "ready_count": sum(1 for v in values if v >= READINESS_READY_THRESHOLD),
        "blocked_count": sum(1 for v in values if v <= READINESS_BLOCKED_THRESHOLD),
        "total_count": len(values),
    }


def readiness_band(readiness: float) -> str:
    if readiness <= READINESS_BLOCKED_THRESHOLD:
        return "blocked"
    if readiness <= READINESS_HIGH_THRESHOLD:
        return "high"
    if readiness <= READINESS_MODERATE_THRESHOLD:
        return "moderate"
    if readiness >= READINESS_FRESH_THRESHOLD:
        return "fresh"
    return "ready"
