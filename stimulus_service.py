from __future__ import annotations
import datetime
import logging
from typing import Iterable, Mapping

from algorithms.math_tools import MathTools
from algorithms.cardio import CardioEstimator

logger = logging.getLogger(__name__)


class StimulusAggregator:
    """Turn aggregated set rows into per-muscle stimulus and decayed recovery load.

    A stimulus row is one session's totals for one muscle group as returned by
    ``AsyncAnalyticsRepository.fetch_stimulus_rows``::

        {"muscle_group", "finished_at", "strength_sets", "strength_volume",
         "cardio_minutes", "cardio_distance", "cardio_incline_minutes"}
    """

    FULL_SET_COUNT = 8.0
    BASELINE_SHARE = 0.6
    ABSOLUTE_VOLUME_DIVISOR = 8000.0
    MAX_STRENGTH_STIMULUS = 1.5
    MAX_CARDIO_STIMULUS = 0.9
    CARDIO_REFERENCE_MINUTES = 240.0

    def __init__(self, half_life_hours: float = MathTools.RECOVERY_HALF_LIFE_HOURS) -> None:
        if half_life_hours <= 0:
            raise ValueError("half_life_hours must be positive")
        self.half_life_hours = half_life_hours

    def strength_stimulus(
        self, sets: float, volume: float, baseline_weekly: float | None = None
    ) -> float:
        """Return strength stimulus in the range 0-1.5."""
        sets = max(0.0, MathTools.finite(sets))
        volume = max(0.0, MathTools.finite(volume))
        if sets <= 0 and volume <= 0:
            return 0.0
        set_component = MathTools.clamp(sets / self.FULL_SET_COUNT, 0.0, 1.0)
        baseline = MathTools.finite(baseline_weekly)
        if baseline > 0:
            ratio = volume / (baseline * self.BASELINE_SHARE)
        else:
            ratio = volume / self.ABSOLUTE_VOLUME_DIVISOR
        volume_component = MathTools.clamp(
            MathTools.finite(ratio), 0.0, self.MAX_STRENGTH_STIMULUS
        )
        return max(set_component, volume_component)

    def cardio_stimulus(
        self, minutes: float, distance: float, incline_minutes: float = 0.0
    ) -> float:
        """Return cardio stimulus in the range 0-0.9."""
        minutes = max(0.0, MathTools.finite(minutes))
        if minutes <= 0:
            return 0.0
        incline = MathTools.safe_divide(MathTools.finite(incline_minutes), minutes)
        met = CardioEstimator.estimate_met(minutes, distance, incline)
        if met is None:
            return 0.0
        raw = (met - 1.0) * minutes / self.CARDIO_REFERENCE_MINUTES
        return MathTools.clamp(MathTools.finite(raw), 0.0, self.MAX_CARDIO_STIMULUS)

    def session_stimulus(
        self, row: Mapping, baseline_weekly: float | None = None
    ) -> float:
        strength = self.strength_stimulus(
            row.get("strength_sets"), row.get("strength_volume"), baseline_weekly
        )
        cardio = self.cardio_stimulus(
            row.get("cardio_minutes"),
            row.get("cardio_distance"),
            row.get("cardio_incline_minutes"),
        )
        return strength + cardio

    def recovery_loads(
        self,
        rows: Iterable[Mapping],
        baseline_weekly_by_muscle: Mapping[str, float | None],
        now: datetime.datetime,
    ) -> dict[str, float]:
        """Sum decayed session stimulus per muscle group.

        Each session contributes ``stimulus * 0.5 ** (age_hours / half_life)``.
        Sessions stamped in the future count as age zero.
        """
        loads: dict[str, float] = {}
        skipped = 0
        for row in rows:
            finished = MathTools.parse_timestamp(row.get("finished_at"))
            if finished is None:
                skipped += 1
                continue
            muscle = (row.get("muscle_group") or "other").lower()
            stimulus = self.session_stimulus(row, baseline_weekly_by_muscle.get(muscle))
            if stimulus <= 0:
                continue
            age = max(0.0, MathTools.hours_between(finished, now))
            loads[muscle] = loads.get(muscle, 0.0) + stimulus * MathTools.decay_factor(
                age, self.half_life_hours
            )
        if skipped:
            logger.warning("Skipped %d stimulus rows with unreadable timestamps", skipped)
        return loads
