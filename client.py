import requests
from typing import Iterable, Optional


class AnalyticsClient:
    """Simple REST client for the analytics API."""

    def __init__(
        self, user_id: str, base_url: str = "http://localhost:8000", timeout: float = 10.0
    ) -> None:
        self.user_id = user_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _get(self, path: str, **params):
        resp = requests.get(
            f"{self.base_url}{path}",
            params={k: v for k, v in params.items() if v is not None},
            headers={"X-User-Id": self.user_id},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()["data"]

    def fatigue(self) -> dict:
        return self._get("/analytics/fatigue")

    def recommendations(self) -> dict:
        return self._get("/analytics/recommendations")

    def progression(self, template_id: int) -> dict:
        return self._get(f"/analytics/progression/{template_id}")

    def apply_progression(
        self, template_id: int, exercise_ids: Optional[Iterable[str]] = None
    ) -> int:
        body = {"exercise_ids": list(exercise_ids)} if exercise_ids is not None else None
        resp = requests.post(
            f"{self.base_url}/analytics/progression/{template_id}/apply",
            json=body,
            headers={"X-User-Id": self.user_id},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()["data"]["updated"]

    def up_next(
        self,
        session_duration: Optional[int] = None,
        avoid: Optional[Iterable[str]] = None,
    ) -> dict:
        return self._get(
            "/analytics/up-next",
            session_duration=session_duration,
            avoid=",".join(avoid) if avoid else None,
        )

    def recap(self) -> dict:
        return self._get("/analytics/recap")

    def muscle_analytics(self, weeks: int = 12) -> dict:
        return self._get("/analytics/muscle-analytics", weeks=weeks)
