from __future__ import annotations
import asyncio
import datetime
import logging
import math
from typing import Callable, Iterable

from db import AsyncAnalyticsRepository
from fatigue_service import FatigueService, TRACKED_MUSCLES, utcnow
from readiness_service import (
    build_canonical_muscle_stats,
    muscle_readiness,
    normalize_muscle_group,
)
from algorithms.math_tools import MathTools

logger = logging.getLogger(__name__)

SPLIT_CYCLES = {
    "ppl": ["push", "pull", "legs"],
    "upper_lower": ["upper", "lower"],
    "full_body": ["full_body"],
}

SPLIT_PRIMARY_MUSCLES = {
    "push": ["chest", "shoulders", "triceps"],
    "pull": ["back", "biceps"],
    "legs": ["legs", "glutes", "core"],
    "lower": ["legs", "glutes", "core"],
    "upper": ["chest", "back", "shoulders", "biceps", "triceps"],
    "full_body": list(TRACKED_MUSCLES),
    "chest": ["chest", "triceps", "shoulders"],
    "back": ["back", "biceps"],
    "shoulders": ["shoulders", "triceps"],
    "arms": ["biceps", "triceps"],
}

# Muscles checked when deciding whether any candidate can be trained today.
SPLIT_FOCUS_MUSCLES = {
    "push": ["chest", "shoulders"],
    "pull": ["back"],
    "legs": ["legs", "glutes"],
    "lower": ["legs", "glutes"],
    "upper": ["chest", "back", "shoulders"],
    "full_body": ["chest", "back", "legs", "glutes"],
    "chest": ["chest"],
    "back": ["back"],
    "shoulders": ["shoulders"],
    "arms": ["biceps", "triceps"],
}

# Template matching uses a narrower muscle set for the single-muscle splits.
TEMPLATE_SPLIT_MUSCLES = dict(
    SPLIT_PRIMARY_MUSCLES, chest=["chest", "triceps"], shoulders=["shoulders"]
)

SPLIT_KEYWORDS = {
    "push": ["push"],
    "pull": ["pull"],
    "legs": ["leg", "lower"],
    "lower": ["lower", "leg"],
    "upper": ["upper"],
    "full_body": ["full body", "full-body", "fullbody", "total body"],
    "chest": ["chest"],
    "back": ["back"],
    "shoulders": ["shoulder", "delt"],
    "arms": ["arm", "bicep", "tricep"],
}

SPLIT_LABELS = {
    "push": "Push",
    "pull": "Pull",
    "legs": "Legs",
    "upper": "Upper",
    "lower": "Lower",
    "full_body": "Full Body",
    "chest": "Chest",
    "back": "Back",
    "shoulders": "Shoulders",
    "arms": "Arms",
}

# Substring → split key, checked in order.
_SPLIT_PATTERNS = (
    ("push", "push"),
    ("pull", "pull"),
    ("leg", "legs"),
    ("upper", "upper"),
    ("lower", "lower"),
    ("full", "full_body"),
    ("chest", "chest"),
    ("back", "back"),
    ("shoulder", "shoulders"),
    ("arm", "arms"),
)

ON_CYCLE_BONUS = 18
REPETITION_PENALTY = 6
AVOID_PENALTY = 18
TIME_FIT_BONUS = 6
SHORT_SESSION_MINUTES = 30
DEFAULT_SPLIT_FATIGUE = 95.0
TEMPLATE_MATCH_THRESHOLD = 85

FALLBACK_SELECTION = {
    "split_key": "full_body",
    "label": "Full Body",
    "tags": ["Fallback"],
    "reason": "Balanced default when data is limited",
    "score": 80,
}


def normalize_split_key(value: str | None) -> str | None:
    """Map free-form split text (``"Pull Day A"``, ``"Leg day"``) to a split key."""
    raw = (value or "").lower().strip()
    if not raw:
        return None
    for needle, key in _SPLIT_PATTERNS:
        if needle in raw:
            return key
    return "_".join(raw.split())


def canonical_preferred_split(value: str | None) -> str:
    raw = (value or "").lower().strip()
    if not raw:
        return "full_body"
    if raw in ("push_pull_legs", "ppl"):
        return "ppl"
    return raw


def split_cycle(preferred_split: str) -> list[str]:
    return list(SPLIT_CYCLES.get(preferred_split, []))


def split_label(split_key: str | None, fallback: str | None = None) -> str:
    if not split_key:
        return fallback or "Training"
    key = split_key.lower()
    if key in SPLIT_LABELS:
        return SPLIT_LABELS[key]
    return " ".join(word.capitalize() for word in key.replace("_", " ").split())


def _step_in_cycle(cycle: list[str], last_split: str | None, step: int) -> str | None:
    if not cycle:
        return None
    if len(cycle) == 1:
        return cycle[0]
    fallback = cycle[0] if step > 0 else cycle[-1]
    if not last_split or last_split not in cycle:
        return fallback
    return cycle[(cycle.index(last_split) + step) % len(cycle)]


def next_in_cycle(cycle: list[str], last_split: str | None) -> str | None:
    return _step_in_cycle(cycle, last_split, 1)


def previous_in_cycle(cycle: list[str], last_split: str | None) -> str | None:
    return _step_in_cycle(cycle, last_split, -1)


def _recent_split(workout: dict | None) -> str | None:
    if not workout:
        return None
    return normalize_split_key(workout.get("split_type") or workout.get("template_name"))


def custom_split_candidates(fatigue: dict | None) -> list[str]:
    """Candidates for a custom split, steering away from the more fatigued region."""
    if not fatigue:
        return ["full_body", "upper", "lower"]
    fatigued = {e["muscle_group"] for e in fatigue.get("per_muscle", []) if e.get("fatigued")}
    legs = bool(fatigued & {"legs", "glutes"})
    upper = bool(fatigued & {"chest", "back", "shoulders"})
    if legs and not upper:
        return ["upper", "full_body", "pull"]
    if upper and not legs:
        return ["lower", "full_body", "legs"]
    return ["full_body", "upper", "lower"]


def split_average_fatigue(fatigue: dict | None, split_key: str) -> float:
    if not fatigue:
        return DEFAULT_SPLIT_FATIGUE
    scores = {e["muscle_group"]: e["fatigue_score"] for e in fatigue.get("per_muscle", [])}
    muscles = SPLIT_PRIMARY_MUSCLES.get(split_key, [])
    if not muscles:
        return DEFAULT_SPLIT_FATIGUE
    return MathTools.average(MathTools.finite(scores.get(m), DEFAULT_SPLIT_FATIGUE) for m in muscles)


def _fatigue_adjustment(avg_fatigue: float) -> int:
    if avg_fatigue >= 140:
        return 26
    if avg_fatigue >= 125:
        return 16
    if avg_fatigue >= 110:
        return 8
    if avg_fatigue <= 80:
        return -8
    return 0


def _score_candidate(
    split_key: str,
    cycle_next: str | None,
    recent_workouts: list[dict],
    avoid: list[str],
    fatigue: dict | None,
    session_duration: int | None,
) -> dict:
    primary = SPLIT_PRIMARY_MUSCLES.get(split_key, [])
    avoid_hits = [m for m in avoid if m in primary]
    on_cycle = cycle_next is not None and split_key == cycle_next
    repeats = sum(1 for w in recent_workouts[:3] if _recent_split(w) == split_key)
    avg_fatigue = split_average_fatigue(fatigue, split_key)
    short = bool(session_duration) and session_duration <= SHORT_SESSION_MINUTES

    time_bias = 0
    if short:
        if split_key == "full_body":
            time_bias = TIME_FIT_BONUS
        elif split_key in ("upper", "lower"):
            time_bias = -TIME_FIT_BONUS

    score = (
        100
        + (ON_CYCLE_BONUS if on_cycle else 0)
        + time_bias
        - repeats * REPETITION_PENALTY
        - len(avoid_hits) * AVOID_PENALTY
        - _fatigue_adjustment(avg_fatigue)
    )

    tags: list[str] = []
    reasons: list[str] = []
    if on_cycle:
        tags.append("On-cycle")
        reasons.append("Next in your split")
    if avoid_hits:
        names = " & ".join(avoid_hits[:2])
        tags.append(f"Avoids {names}")
        reasons.append(f"Less stress on {names}")
    if avg_fatigue >= 125:
        tags.append("High fatigue risk")
        reasons.append("Adjusted for recovery")
    elif avg_fatigue <= 80:
        tags.append("Fresh")
        reasons.append("Good recovery window")
    if short:
        tags.append("Quick")
        reasons.append("Fits a short session")

    return {
        "split_key": split_key,
        "label": split_label(split_key),
        "tags": tags[:3],
        "reason": " • ".join(reasons) if reasons else "Best fit for today",
        "score": MathTools.clamp(score, 0, 200),
    }


def recommend_next_split(
    preferred_split: str | None,
    recent_workouts: list[dict],
    fatigue: dict | None,
    session_duration: int | None = None,
    avoid_muscles: Iterable[str] | None = None,
    now: datetime.datetime | None = None,
) -> dict:
    """Rank candidate splits for the next workout.

    ``recent_workouts`` is newest first; the first entry decides where the
    user is in their rotation.
    """
    preferred = canonical_preferred_split(preferred_split)
    cycle = split_cycle(preferred)
    last_split = _recent_split(recent_workouts[0] if recent_workouts else None)
    cycle_next = next_in_cycle(cycle, last_split)
    cycle_prev = previous_in_cycle(cycle, last_split)

    if cycle:
        candidates: list[str] = []
        for key in [cycle_next, cycle_prev, *cycle]:
            if key and key not in candidates:
                candidates.append(key)
    else:
        candidates = custom_split_candidates(fatigue)
    candidates = candidates[:5]

    avoid = [normalize_muscle_group(m) for m in (avoid_muscles or [])]
    scored = [
        _score_candidate(key, cycle_next, recent_workouts, avoid, fatigue, session_duration)
        for key in candidates
    ]
    scored.sort(key=lambda c: c["score"], reverse=True)
    selected = scored[0] if scored else dict(FALLBACK_SELECTION)

    rest_recommended = False
    if fatigue:
        stats = build_canonical_muscle_stats(fatigue, now)
        rest_recommended = not any(
            muscle_readiness(stats, SPLIT_FOCUS_MUSCLES.get(key, []))["ready_count"] > 0
            for key in candidates
        )

    return {
        "preferred_split": preferred,
        "selected": selected,
        "alternates": [c for c in scored if c["split_key"] != selected["split_key"]][:2],
        "rest_recommended": rest_recommended,
    }


def score_template_match(template: dict, split_key: str) -> tuple[int, str]:
    """Score 100/90/85/0 for how well a saved template fits ``split_key``."""
    if normalize_split_key(template.get("split_type")) == split_key:
        return 100, "Perfect match for your split"

    name = (template.get("name") or "").lower()
    if any(k in name for k in SPLIT_KEYWORDS.get(split_key, [split_key])):
        return 90, "Matches your split"

    split_muscles = TEMPLATE_SPLIT_MUSCLES.get(split_key, [])
    muscles = template.get("muscle_groups") or []
    matching = [m for m in muscles if m in split_muscles]
    coverage = len(matching) / len(split_muscles) * 100 if split_muscles else 0
    focus = len(matching) / len(muscles) * 100 if muscles else 0
    if coverage >= 80 and focus >= 60:
        return 85, "Hits the right muscle groups"
    return 0, "Alternative option"


def split_fatigue_status(fatigue: dict | None, split_key: str) -> str:
    if not fatigue:
        return "no-data"
    muscles = TEMPLATE_SPLIT_MUSCLES.get(split_key, [])
    if not muscles:
        return "ready"
    scores = [
        e["fatigue_score"] for e in fatigue.get("per_muscle", []) if e["muscle_group"] in muscles
    ]
    if not scores:
        return "no-data"
    avg = MathTools.average(scores)
    if avg > 130:
        return "high-fatigue"
    if avg > 110:
        return "moderate-fatigue"
    if avg < 70:
        return "fresh"
    return "ready"


def build_reasoning(
    recommendation: dict, days_since_last_split: int | None, fatigue_status: str
) -> str:
    selected = recommendation["selected"]
    parts = []
    if "On-cycle" in selected["tags"]:
        label = split_label(recommendation["preferred_split"], selected["label"])
        if label == "Ppl":
            label = label.upper()
        parts.append(f"Next in your {label} rotation")
    else:
        parts.append(f"{selected['label']} fits your training balance")
    if days_since_last_split is not None and days_since_last_split >= 3:
        parts.append(f"{days_since_last_split} days since last {selected['label'].lower()}")
    if fatigue_status in ("moderate-fatigue", "high-fatigue"):
        parts.append("consider lighter volume today")
    return ". ".join(parts) + "."


def _template_sort_key(template: dict) -> tuple:
    last_used = template["last_used_at"]
    return (-template["match_score"], last_used is not None, last_used or "")


class RecommendationService:
    """Recommend the next workout split and the saved template that fits it."""

    def __init__(
        self,
        analytics_repo: AsyncAnalyticsRepository,
        fatigue_service: FatigueService,
        default_split: str = "full_body",
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.analytics = analytics_repo
        self.fatigue = fatigue_service
        self.default_split = default_split
        self.clock = clock or utcnow

    async def _days_since_last_split(self, user_id: str, split_key: str) -> int | None:
        sessions = await self.analytics.fetch_recent_session_splits(user_id)
        match = next((s for s in sessions if _recent_split(s) == split_key), None)
        finished = MathTools.parse_timestamp(match["finished_at"]) if match else None
        if finished is None:
            return None
        return math.floor(MathTools.hours_between(finished, self.clock()) / 24)

    async def get_up_next(
        self,
        user_id: str,
        session_duration: int | None = None,
        avoid_muscles: Iterable[str] | None = None,
    ) -> dict:
        templates, recent, fatigue, profile = await asyncio.gather(
            self.analytics.fetch_templates_with_muscles(user_id),
            self.fatigue.get_recent_workouts(user_id, 7),
            self.fatigue.get_fatigue_scores(user_id),
            self.analytics.fetch_user_profile(user_id),
        )
        if session_duration is None:
            session_duration = profile.get("session_duration")
        recommendation = recommend_next_split(
            profile.get("preferred_split") or self.default_split,
            recent,
            fatigue,
            session_duration=session_duration,
            avoid_muscles=avoid_muscles,
            now=self.clock(),
        )
        split_key = recommendation["selected"]["split_key"]

        scored = []
        for tpl in templates:
            score, reason = score_template_match(tpl, split_key)
            scored.append(
                {
                    "template_id": tpl["id"],
                    "template_name": tpl["name"],
                    "split_type": tpl["split_type"],
                    "exercise_count": tpl["exercise_count"],
                    "muscle_groups": tpl["muscle_groups"],
                    "last_used_at": tpl["last_used_at"],
                    "match_score": score,
                    "match_reason": reason,
                }
            )
        scored.sort(key=_template_sort_key)
        matches = [t for t in scored if t["match_score"] >= TEMPLATE_MATCH_THRESHOLD]
        matched = matches[0] if matches else None

        status = split_fatigue_status(fatigue, split_key)
        days_since = await self._days_since_last_split(user_id, split_key)
        logger.debug(
            "Up next for %s: split=%s template=%s status=%s days_since=%s",
            user_id,
            split_key,
            matched["template_id"] if matched else None,
            status,
            days_since,
        )
        selected = recommendation["selected"]
        return {
            "recommended_split": {
                "split_key": selected["split_key"],
                "label": selected["label"],
                "reason": selected["reason"],
                "tags": selected["tags"],
                "score": selected["score"],
            },
            "alternate_splits": [
                {"split_key": a["split_key"], "label": a["label"], "reason": a["reason"]}
                for a in recommendation["alternates"]
            ],
            "matched_template": matched,
            "alternate_templates": matches[1:4],
            "fatigue_status": status,
            "readiness_score": fatigue.get("readiness_score", 80) if fatigue else 80,
            "reasoning": build_reasoning(recommendation, days_since, status),
            "last_workout_at": fatigue.get("last_workout_at") if fatigue else None,
            "days_since_last_split": days_since,
            "rest_recommended": recommendation["rest_recommended"],
        }
