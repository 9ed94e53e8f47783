import math
import datetime
from typing import Iterable
import numpy as np


class MathTools:
    """Provides numeric helpers shared by the analytics services."""

    RECOVERY_HALF_LIFE_HOURS: float = 36.0

    @staticmethod
    def clamp(value: float, min_value: float, max_value: float) -> float:
        """Clamp ``value`` to the inclusive range [min_value, max_value]."""
        if min_value > max_value:
            raise ValueError("min_value must not exceed max_value")
        return max(min_value, min(value, max_value))

    @staticmethod
    def finite(value, default: float = 0.0) -> float:
        """Return ``value`` as a finite float or ``default``.

        Strings coming back from the database are parsed; ``None``, NaN and
        infinities fall back to ``default``.
        """
        if value is None or isinstance(value, bool):
            return default
        try:
            number = float(value)
        except (TypeError, ValueError):
            return default
        if not math.isfinite(number):
            return default
        return number

    @staticmethod
    def safe_divide(numerator: float, denominator: float | None) -> float:
        """Divide, returning 0 for a missing or zero denominator."""
        if not denominator:
            return 0.0
        return numerator / denominator

    @staticmethod
    def median(values: Iterable[float]) -> float:
        data = list(values)
        if not data:
            return 0.0
        return float(np.median(np.array(data, dtype=float)))

    @staticmethod
    def average(values: Iterable[float]) -> float:
        data = list(values)
        if not data:
            return 0.0
        return float(np.mean(np.array(data, dtype=float)))

    @classmethod
    def decay_factor(cls, age_hours: float, half_life_hours: float | None = None) -> float:
        """Return the exponential decay weight ``0.5 ** (age / half_life)``."""
        half_life = half_life_hours or cls.RECOVERY_HALF_LIFE_HOURS
        return math.pow(0.5, max(0.0, age_hours) / half_life)

    @staticmethod
    def hours_between(start: datetime.datetime, end: datetime.datetime) -> float:
        return (end - start).total_seconds() / 3600.0

    @staticmethod
    def parse_timestamp(ts: str | datetime.datetime | None) -> datetime.datetime | None:
        """Return ``ts`` as a timezone-aware UTC datetime or ``None``."""
        if ts is None:
            return None
        if isinstance(ts, datetime.datetime):
            dt = ts
        else:
            try:
                dt = datetime.datetime.fromisoformat(str(ts).replace("Z", "+00:00"))
            except ValueError:
                return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=datetime.timezone.utc)
        return dt.astimezone(datetime.timezone.utc)

