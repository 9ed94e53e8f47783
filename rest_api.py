import time
import logging
import datetime
from typing import Awaitable, Callable, List, Optional

from fastapi import (
    FastAPI,
    HTTPException,
    Response,
    Request,
    Header,
    Depends,
    Query,
)
from pydantic import BaseModel

from config import APP_VERSION, DEFAULT_DB_PATH, DEFAULT_YAML_PATH, configure_logging
from db import AsyncAnalyticsRepository, SettingsRepository, BODYWEIGHT_FALLBACK_LBS
from fatigue_service import FatigueService
from recommendation_service import RecommendationService
from progression_service import ProgressionService
from recap_service import RecapService, CACHE_TTL_SECONDS, LOOKBACK_WEEKS
from muscle_analytics_service import MuscleAnalyticsService, DEFAULT_WEEKS

logger = logging.getLogger(__name__)


class RateLimiter:
    """Simple in-memory rate limiter keyed by user id, else client address."""

    def __init__(self, limit: int = 60, window: int = 60) -> None:
        self.limit = limit
        self.window = window
        self.requests: dict[str, list[float]] = {}

    def _key(self, request: Request) -> str:
        user_id = request.headers.get("x-user-id")
        if user_id:
            return f"user:{user_id}"
        return f"ip:{request.client.host if request.client else 'anon'}"

    async def __call__(self, request: Request, call_next):
        key = self._key(request)
        now = time.time()
        history = [t for t in self.requests.get(key, []) if now - t < self.window]
        if len(history) >= self.limit:
            return Response("rate limit exceeded", status_code=429)
        history.append(now)
        self.requests[key] = history
        return await call_next(request)


class ApplyProgressionRequest(BaseModel):
    exercise_ids: Optional[List[str]] = None


def require_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Resolve the caller; the auth layer in front of the API sets ``X-User-Id``."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="missing user id")
    return x_user_id.strip()


class AnalyticsAPI:
    """Provides REST endpoints for training analytics."""

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        yaml_path: str = DEFAULT_YAML_PATH,
        *,
        rate_limit: int | None = None,
        rate_window: int | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.db_path = db_path
        self.settings = SettingsRepository(db_path, yaml_path)
        self.analytics = AsyncAnalyticsRepository(
            db_path,
            bodyweight_fallback=self.settings.get_float(
                "bodyweight_fallback", BODYWEIGHT_FALLBACK_LBS
            ),
        )
        self.fatigue = FatigueService(self.analytics, clock=clock)
        self.recommender = RecommendationService(
            self.analytics,
            self.fatigue,
            default_split=self.settings.get_text("default_split", "full_body"),
            clock=clock,
        )
        self.progression = ProgressionService(self.analytics)
        self.recap = RecapService(
            self.analytics,
            cache_seconds=self.settings.get_float("recap_cache_seconds", CACHE_TTL_SECONDS),
            lookback_weeks=self.settings.get_int("recap_lookback_weeks", LOOKBACK_WEEKS),
            clock=clock,
        )
        self.muscle_analytics = MuscleAnalyticsService(self.analytics, clock=clock)
        self.app = FastAPI(
            title="Training Analytics API",
            description="Fatigue, recommendation, progression and recap analytics",
            version=APP_VERSION,
        )
        if rate_limit is None:
            rate_limit = self.settings.get_int("rate_limit", 0)
        if rate_window is None:
            rate_window = self.settings.get_int("rate_window", 60)
        if rate_limit > 0:
            limiter = RateLimiter(limit=rate_limit, window=rate_window)
            self.app.middleware("http")(limiter)
        self._setup_routes()

    async def _respond(self, action: str, user_id: str, result: Awaitable) -> dict:
        try:
            return {"data": await result}
        except HTTPException:
            raise
        except Exception:
            logger.exception("Failed to %s for user %s", action, user_id)
            raise HTTPException(status_code=500, detail=f"Failed to {action}")

    def _setup_routes(self) -> None:
        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify API and database connectivity.",
        )
        def health():
            """Return API and database connection status."""
            try:
                self.settings.fetch_all("SELECT 1;")
                return {"status": "ok", "version": APP_VERSION}
            except Exception as e:  # pragma: no cover - connectivity failure
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.get("/analytics/fatigue")
        async def fatigue(user_id: str = Depends(require_user)):
            return await self._respond(
                "fetch fatigue data", user_id, self.fatigue.get_fatigue_scores(user_id)
            )

        @self.app.get("/analytics/recommendations")
        async def recommendations(user_id: str = Depends(require_user)):
            return await self._respond(
                "fetch recommendations",
                user_id,
                self.fatigue.get_training_recommendations(user_id),
            )

        @self.app.get("/analytics/progression/{template_id}")
        async def progression(template_id: int, user_id: str = Depends(require_user)):
            return await self._respond(
                "fetch progression suggestions",
                user_id,
                self.progression.get_progression_suggestions(user_id, template_id),
            )

        @self.app.post("/analytics/progression/{template_id}/apply")
        async def apply_progression(
            template_id: int,
            payload: Optional[ApplyProgressionRequest] = None,
            user_id: str = Depends(require_user),
        ):
            exercise_ids = payload.exercise_ids if payload else None
            return await self._respond(
                "apply progression",
                user_id,
                self.progression.apply_progression_suggestions(
                    user_id, template_id, exercise_ids
                ),
            )

        @self.app.get("/analytics/up-next")
        async def up_next(
            session_duration: Optional[int] = Query(None, ge=1, le=600),
            avoid: Optional[str] = None,
            user_id: str = Depends(require_user),
        ):
            avoid_muscles = [m.strip() for m in avoid.split(",") if m.strip()] if avoid else None
            return await self._respond(
                "build up next recommendation",
                user_id,
                self.recommender.get_up_next(user_id, session_duration, avoid_muscles),
            )

        @self.app.get("/analytics/recap")
        async def recap(user_id: str = Depends(require_user)):
            return await self._respond(
                "fetch recap", user_id, self.recap.get_recap_slice(user_id)
            )

        @self.app.get("/analytics/muscle-analytics")
        async def muscle_analytics(
            weeks: int = Query(DEFAULT_WEEKS, ge=1, le=104),
            user_id: str = Depends(require_user),
        ):
            return await self._respond(
                "fetch muscle analytics",
                user_id,
                self.muscle_analytics.get_advanced_analytics(user_id, weeks),
            )

        @self.app.get("/analytics/weekly-volume")
        async def weekly_volume(
            weeks: int = Query(DEFAULT_WEEKS, ge=1, le=104),
            user_id: str = Depends(require_user),
        ):
            return await self._respond(
                "fetch weekly volume",
                user_id,
                self.muscle_analytics.get_weekly_volume_by_muscle_group(user_id, weeks),
            )

        @self.app.get("/analytics/muscle-summaries")
        async def muscle_summaries(
            weeks: int = Query(DEFAULT_WEEKS, ge=1, le=104),
            user_id: str = Depends(require_user),
        ):
            return await self._respond(
                "fetch muscle summaries",
                user_id,
                self.muscle_analytics.get_muscle_group_summaries(user_id, weeks),
            )

        @self.app.get("/analytics/push-pull-balance")
        async def push_pull_balance(
            weeks: int = Query(DEFAULT_WEEKS, ge=1, le=104),
            user_id: str = Depends(require_user),
        ):
            return await self._respond(
                "fetch push/pull balance",
                user_id,
                self.muscle_analytics.get_push_pull_balance(user_id, weeks),
            )

        @self.app.get("/analytics/volume-prs")
        async def volume_prs(
            weeks: int = Query(52, ge=1, le=156),
            user_id: str = Depends(require_user),
        ):
            return await self._respond(
                "fetch volume PRs",
                user_id,
                self.muscle_analytics.get_volume_prs(user_id, weeks),
            )

        @self.app.get("/analytics/frequency-heatmap")
        async def frequency_heatmap(
            weeks: int = Query(DEFAULT_WEEKS, ge=1, le=104),
            user_id: str = Depends(require_user),
        ):
            return await self._respond(
                "fetch frequency heatmap",
                user_id,
                self.muscle_analytics.get_frequency_heatmap(user_id, weeks),
            )


api = AnalyticsAPI()
app = api.app

if __name__ == "__main__":
    import uvicorn

    configure_logging(api.settings.get_text("log_level", "INFO"))
    uvicorn.run(app)
