from .math_tools import MathTools
from .cardio import CardioEstimator

__all__ = ["MathTools", "CardioEstimator"]
