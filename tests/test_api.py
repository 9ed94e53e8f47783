import os
import sys
import datetime
import unittest
from fastapi.testclient import TestClient

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from rest_api import AnalyticsAPI
from db import SessionRepository, SetRepository, TemplateRepository, UserRepository

NOW = datetime.datetime(2024, 6, 15, 12, 0, tzinfo=datetime.timezone.utc)
HEADERS = {"X-User-Id": "u1"}


class APITestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_workout.db"
        self.yaml_path = "test_settings.yaml"
        self._cleanup()
        self.api = AnalyticsAPI(db_path=self.db_path, yaml_path=self.yaml_path, clock=lambda: NOW)
        self.client = TestClient(self.api.app)

    def tearDown(self) -> None:
        self._cleanup()

    def _cleanup(self) -> None:
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)

    def _log_session(self, days_ago, template_id, exercise_id, reps, weight, sets=3):
        started = NOW - datetime.timedelta(days=days_ago, hours=1)
        sessions = SessionRepository(self.db_path)
        sid = sessions.create("u1", started, template_id)
        for _ in range(sets):
            SetRepository(self.db_path).add(
                sid,
                exercise_id,
                target_reps=8,
                actual_reps=reps,
                target_weight=weight,
                actual_weight=weight,
            )
        sessions.finish(sid, started + datetime.timedelta(hours=1))

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")

    def test_requires_user(self) -> None:
        for path in (
            "/analytics/fatigue",
            "/analytics/recommendations",
            "/analytics/up-next",
            "/analytics/recap",
            "/analytics/muscle-analytics",
            "/analytics/progression/1",
        ):
            response = self.client.get(path)
            self.assertEqual(response.status_code, 401, path)

    def test_fatigue_for_new_user(self) -> None:
        response = self.client.get("/analytics/fatigue", headers=HEADERS)
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(len(data["per_muscle"]), 8)
        self.assertEqual(data["readiness_score"], 100)
        self.assertFalse(data["deload_week_detected"])

    def test_recommendations_fallback(self) -> None:
        response = self.client.get("/analytics/recommendations", headers=HEADERS)
        self.assertEqual(response.status_code, 200)
        workouts = response.json()["data"]["recommended_workouts"]
        self.assertEqual(workouts[0]["id"], "fallback-full-body")

    def test_up_next(self) -> None:
        UserRepository(self.db_path).create("u1", "ppl", 60)
        response = self.client.get(
            "/analytics/up-next",
            params={"session_duration": 45, "avoid": "chest, shoulders, legs"},
            headers=HEADERS,
        )
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["recommended_split"]["split_key"], "pull")
        self.assertIsNone(data["matched_template"])

        response = self.client.get(
            "/analytics/up-next", params={"session_duration": 0}, headers=HEADERS
        )
        self.assertEqual(response.status_code, 422)

    def test_progression_flow(self) -> None:
        templates = TemplateRepository(self.db_path)
        tid = templates.create("u1", "Push Day", "push")
        templates.add_exercise(tid, "bench_press", 3, 8, 135)
        for days_ago in (7, 4, 1):
            self._log_session(days_ago, tid, "bench_press", 10, 135)

        response = self.client.get(f"/analytics/progression/{tid}", headers=HEADERS)
        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertTrue(data["ready_for_progression"])
        self.assertEqual(data["suggestions"][0]["suggested_weight"], 140)

        response = self.client.post(
            f"/analytics/progression/{tid}/apply",
            json={"exercise_ids": ["bench_press"]},
            headers=HEADERS,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"data": {"updated": 1}})
        self.assertEqual(templates.fetch_exercises(tid)[0][3], 140)

        response = self.client.post(f"/analytics/progression/{tid}/apply", headers=HEADERS)
        self.assertEqual(response.json(), {"data": {"updated": 1}})

    def test_unknown_template(self) -> None:
        response = self.client.get("/analytics/progression/99", headers=HEADERS)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["template_name"], "Unknown Template")
        response = self.client.get("/analytics/progression/abc", headers=HEADERS)
        self.assertEqual(response.status_code, 422)

    def test_recap_and_muscle_analytics(self) -> None:
        self._log_session(1, None, "squat", 5, 200)
        response = self.client.get("/analytics/recap", headers=HEADERS)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["data"]["quality"]), 1)

        response = self.client.get(
            "/analytics/muscle-analytics", params={"weeks": 4}, headers=HEADERS
        )
        self.assertEqual(response.status_code, 200)
        summaries = response.json()["data"]["muscle_group_summaries"]
        self.assertEqual(summaries[0]["muscle_group"], "legs")
        self.assertEqual(summaries[0]["total_volume"], 3000)

        for path in (
            "/analytics/weekly-volume",
            "/analytics/muscle-summaries",
            "/analytics/push-pull-balance",
            "/analytics/frequency-heatmap",
            "/analytics/volume-prs",
        ):
            response = self.client.get(path, headers=HEADERS)
            self.assertEqual(response.status_code, 200, path)
            self.assertIn("data", response.json())

        response = self.client.get(
            "/analytics/muscle-analytics", params={"weeks": 0}, headers=HEADERS
        )
        self.assertEqual(response.status_code, 422)

    def test_service_errors_map_to_500(self) -> None:
        async def broken(user_id):
            raise RuntimeError("boom")

        self.api.fatigue.get_fatigue_scores = broken
        response = self.client.get("/analytics/fatigue", headers=HEADERS)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"detail": "Failed to fetch fatigue data"})

    def test_rate_limit(self) -> None:
        api = AnalyticsAPI(
            db_path=self.db_path, yaml_path=self.yaml_path, rate_limit=2, rate_window=60
        )
        client = TestClient(api.app)
        self.assertEqual(client.get("/health", headers=HEADERS).status_code, 200)
        self.assertEqual(client.get("/health", headers=HEADERS).status_code, 200)
        self.assertEqual(client.get("/health", headers=HEADERS).status_code, 429)
        self.assertEqual(client.get("/health", headers={"X-User-Id": "u2"}).status_code, 200)


if __name__ == "__main__":
    unittest.main()
