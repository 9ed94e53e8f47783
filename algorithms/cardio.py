import math

from .math_tools import MathTools


class CardioEstimator:
    """Estimate metabolic cost of cardio work from duration, distance and incline."""

    DEFAULT_MET: float = 3.5
    KM_TO_MILES: float = 0.621371
    MPH_TO_M_PER_MIN: float = 26.8224
    MAX_PLAUSIBLE_MPH: float = 12.0
    RUNNING_MPH: float = 5.0

    @classmethod
    def pace_mph(cls, minutes: float, distance: float) -> float:
        """Return pace in mph, reading ``distance`` as km when miles look implausible."""
        hours = minutes / 60.0
        mph = distance / hours
        if mph > cls.MAX_PLAUSIBLE_MPH:
            mph = (distance * cls.KM_TO_MILES) / hours
        return mph

    @classmethod
    def estimate_met(
        cls, minutes: float, distance: float, incline_percent: float = 0.0
    ) -> float | None:
        """Return an estimated MET value or ``None`` when no time was logged.

        Uses the ACSM walking equation below 5 mph and the running equation
        at or above it::

            walk: VO2 = 0.1 * v + 1.8 * v * grade + 3.5
            run:  VO2 = 0.2 * v + 0.9 * v * grade + 3.5

        with ``v`` in metres per minute. ``MET = VO2 / 3.5``.
        """
        minutes = max(0.0, MathTools.finite(minutes))
        if minutes <= 0:
            return None
        grade = MathTools.clamp(MathTools.finite(incline_percent), 0.0, 25.0) / 100.0
        distance = max(0.0, MathTools.finite(distance))
        if distance <= 0:
            return cls.DEFAULT_MET

        mph = cls.pace_mph(minutes, distance)
        m_per_min = mph * cls.MPH_TO_M_PER_MIN
        if not math.isfinite(m_per_min) or m_per_min <= 0:
            return cls.DEFAULT_MET

        if mph >= cls.RUNNING_MPH:
            vo2 = 0.2 * m_per_min + 0.9 * m_per_min * grade + 3.5
        else:
            vo2 = 0.1 * m_per_min + 1.8 * m_per_min * grade + 3.5
        met = MathTools.finite(vo2 / 3.5, cls.DEFAULT_MET)
        return MathTools.clamp(met, 1.0, 18.0)
