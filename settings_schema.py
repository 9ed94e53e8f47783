from typing import Literal

from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    bodyweight_fallback: float = Field(100.0, ge=0)
    recap_cache_seconds: float = Field(120.0, ge=0)
    recap_lookback_weeks: int = Field(8, ge=1, le=52)
    default_split: str = "full_body"
    rate_limit: int = Field(0, ge=0)
    rate_window: int = Field(60, gt=0)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
