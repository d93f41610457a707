from datetime import datetime, timezone

from services.sessions.tests.sessions_test_base import SessionsAPITestBase

UTC = timezone.utc
BASE = "/api/v1/sessions"


def utc(*args):
    return datetime(*args, tzinfo=UTC)


def parse(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class TestScheduleEndpoints(SessionsAPITestBase):
    def create(self, **overrides):
        payload = {"frequency": "daily", "time": "10:30", "timezone": "UTC"}
        payload.update(overrides)
        return self.client.post(f"{BASE}/schedules", json=payload, headers=self.headers)

    def test_create_schedule(self):
        resp = self.create()
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["status"] == "scheduled"
        assert data["kind"] == "recurring"
        assert data["time_of_day"] == "10:30"
        assert parse(data["next_occurrence"]) == utc(2025, 1, 15, 10, 30)
        assert data["next"]["status"] == "upcoming"
        assert data["next"]["can_join"] is False
        assert data["next"]["time_remaining"]["minutes"] == 30
        assert data["next"]["time_remaining"]["message"] == "30 minutes remaining"

    def test_create_requires_user_header(self):
        resp = self.client.post(
            f"{BASE}/schedules", json={"frequency": "daily", "time": "10:30"}
        )
        assert resp.status_code == 400

    def test_duplicate_schedule_conflict(self):
        assert self.create().status_code == 201
        resp = self.create(frequency="weekly", days=["monday"])
        assert resp.status_code == 409
        body = resp.json()
        assert body["type"] == "conflict_error"
        assert body["details"]["code"] == "ALREADY_EXISTS"

    def test_invalid_rules_rejected(self):
        for overrides, field in [
            ({"time": "25:61"}, "time"),
            ({"frequency": "yearly"}, "frequency"),
            ({"frequency": "weekly", "days": []}, "days"),
            ({"frequency": "monthly", "anchor_day": 40}, "anchor_day"),
            ({"timezone": "Nowhere/Special"}, "timezone"),
        ]:
            resp = self.create(**overrides)
            assert resp.status_code == 422, overrides
            body = resp.json()
            assert body["type"] == "validation_error"
            assert body["details"]["field"] == field
            assert body["details"]["code"] == "INVALID_RULE"

    def test_get_my_schedule(self):
        assert self.client.get(f"{BASE}/schedules/me", headers=self.headers).json() is None

        self.create()
        resp = self.client.get(f"{BASE}/schedules/me", headers=self.headers)
        assert resp.status_code == 200
        assert resp.json()["time_of_day"] == "10:30"

    def test_schedule_reflects_clock(self):
        self.create()
        self.clock.set(utc(2025, 1, 15, 10, 40))
        data = self.client.get(f"{BASE}/schedules/me", headers=self.headers).json()
        assert data["next"]["status"] == "ready"
        assert data["next"]["can_join"] is True

    def test_list_occurrences(self):
        self.create(frequency="weekly", days=["monday", "thursday"], time="09:00")
        resp = self.client.get(
            f"{BASE}/schedules/me/occurrences",
            params={"start": "2025-01-01T00:00:00Z", "end": "2025-01-12T00:00:00Z"},
            headers=self.headers,
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["truncated"] is False
        assert [parse(o["scheduled_at"]) for o in data["occurrences"]] == [
            utc(2025, 1, 2, 9, 0),
            utc(2025, 1, 6, 9, 0),
            utc(2025, 1, 9, 9, 0),
        ]

    def test_list_occurrences_bad_range(self):
        self.create()
        resp = self.client.get(
            f"{BASE}/schedules/me/occurrences",
            params={"start": "2025-02-01T00:00:00Z", "end": "2025-01-01T00:00:00Z"},
            headers=self.headers,
        )
        assert resp.status_code == 422

    def test_list_occurrences_without_schedule(self):
        resp = self.client.get(f"{BASE}/schedules/me/occurrences", headers=self.headers)
        assert resp.status_code == 404

    def test_cancel_schedule(self):
        schedule_id = self.create().json()["id"]
        resp = self.client.delete(f"{BASE}/schedules/{schedule_id}", headers=self.headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        assert self.client.get(f"{BASE}/schedules/me", headers=self.headers).json() is None

    def test_cancel_other_users_schedule(self):
        schedule_id = self.create().json()["id"]
        resp = self.client.delete(
            f"{BASE}/schedules/{schedule_id}", headers={"X-User-Id": "intruder"}
        )
        assert resp.status_code == 404


class TestOccurrenceEndpoints(SessionsAPITestBase):
    def setup_method(self, method=None):
        super().setup_method(method)
        resp = self.client.post(
            f"{BASE}/schedules",
            json={"frequency": "daily", "time": "10:30"},
            headers=self.headers,
        )
        self.occurrence_id = resp.json()["occurrence_id"]

    def test_get_occurrence(self):
        resp = self.client.get(
            f"{BASE}/occurrences/{self.occurrence_id}", headers=self.headers
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["state"]["status"] == "upcoming"
        assert data["session"] is None

    def test_join_ignores_client_can_join(self):
        resp = self.client.post(
            f"{BASE}/occurrences/{self.occurrence_id}/join",
            json={"can_join": True},
            headers=self.headers,
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["details"]["code"] == "JOIN_WINDOW_CLOSED"
        assert body["details"]["status"] == "upcoming"

    def test_join_when_ready(self):
        self.clock.set(utc(2025, 1, 15, 10, 35))
        resp = self.client.post(
            f"{BASE}/occurrences/{self.occurrence_id}/join", headers=self.headers
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["created"] is True
        assert data["session"]["status"] == "active"
        assert parse(data["next_occurrence"]) == utc(2025, 1, 16, 10, 30)

        again = self.client.post(
            f"{BASE}/occurrences/{self.occurrence_id}/join", headers=self.headers
        )
        assert again.json()["created"] is False
        assert again.json()["session"]["id"] == data["session"]["id"]

        state = self.client.get(
            f"{BASE}/occurrences/{self.occurrence_id}", headers=self.headers
        ).json()
        assert state["state"]["status"] == "active"
        assert state["session"]["id"] == data["session"]["id"]

    def test_join_expired(self):
        self.clock.set(utc(2025, 1, 15, 11, 31))
        resp = self.client.post(
            f"{BASE}/occurrences/{self.occurrence_id}/join",
            json={"can_join": True},
            headers=self.headers,
        )
        assert resp.status_code == 409
        assert resp.json()["details"]["status"] == "expired"

    def test_unknown_occurrence(self):
        resp = self.client.get(f"{BASE}/occurrences/occ_bogus_1", headers=self.headers)
        assert resp.status_code == 404
        assert resp.json()["type"] == "not_found"

    def test_complete(self):
        self.clock.set(utc(2025, 1, 15, 10, 35))
        self.client.post(
            f"{BASE}/occurrences/{self.occurrence_id}/join", headers=self.headers
        )
        resp = self.client.post(
            f"{BASE}/occurrences/{self.occurrence_id}/complete",
            json={"summary": "  Felt lighter  "},
            headers=self.headers,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "completed"
        assert resp.json()["summary"] == "Felt lighter"

        schedule = self.client.get(f"{BASE}/schedules/me", headers=self.headers).json()
        assert schedule["last_completed_summary"] == "Felt lighter"

    def test_complete_requires_summary(self):
        resp = self.client.post(
            f"{BASE}/occurrences/{self.occurrence_id}/complete",
            json={"summary": "   "},
            headers=self.headers,
        )
        assert resp.status_code == 422

    def test_complete_without_join(self):
        resp = self.client.post(
            f"{BASE}/occurrences/{self.occurrence_id}/complete",
            json={"summary": "done"},
            headers=self.headers,
        )
        assert resp.status_code == 404

    def test_cancel_by_occurrence(self):
        resp = self.client.delete(
            f"{BASE}/schedules/{self.occurrence_id}", headers=self.headers
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

    def test_cancel_joined_occurrence_conflict(self):
        self.clock.set(utc(2025, 1, 15, 10, 35))
        self.client.post(
            f"{BASE}/occurrences/{self.occurrence_id}/join", headers=self.headers
        )
        resp = self.client.delete(
            f"{BASE}/schedules/{self.occurrence_id}", headers=self.headers
        )
        assert resp.status_code == 409
        assert resp.json()["details"]["code"] == "INVALID_STATE"


class TestSessionEndpoints(SessionsAPITestBase):
    def test_preview(self):
        resp = self.client.post(
            f"{BASE}/preview",
            json={
                "frequency": "monthly",
                "time": "08:00",
                "anchor_day": 31,
                "timezone": "America/New_York",
                "count": 3,
                "after": "2025-01-01T00:00:00Z",
            },
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["timezone"] == "America/New_York"
        assert [parse(o).day for o in data["occurrences"]] == [31, 28, 31]
        assert all(parse(o).hour == 8 for o in data["occurrences"])

    def test_preview_invalid_rule(self):
        resp = self.client.post(
            f"{BASE}/preview", json={"frequency": "weekly", "time": "08:00"}
        )
        assert resp.status_code == 422

    def test_instant_session(self):
        resp = self.client.post(f"{BASE}/instant", headers=self.headers)
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["reused"] is False
        assert data["schedule"]["kind"] == "instant"
        assert data["session"]["status"] == "active"

        again = self.client.post(f"{BASE}/instant", headers=self.headers).json()
        assert again["reused"] is True
        assert again["session"]["id"] == data["session"]["id"]

    def test_upcoming(self):
        self.client.post(
            f"{BASE}/schedules",
            json={"frequency": "daily", "time": "10:30"},
            headers=self.headers,
        )
        self.client.post(f"{BASE}/instant", headers=self.headers)

        resp = self.client.get(f"{BASE}/upcoming", headers=self.headers)
        assert resp.status_code == 200
        sessions = resp.json()["sessions"]
        assert [s["kind"] for s in sessions] == ["instant", "recurring"]
        assert sessions[0]["state"]["can_join"] is True

        limited = self.client.get(
            f"{BASE}/upcoming", params={"limit": 1}, headers=self.headers
        ).json()
        assert len(limited["sessions"]) == 1

    def test_history(self):
        instant = self.client.post(f"{BASE}/instant", headers=self.headers).json()
        occurrence_id = instant["schedule"]["occurrence_id"]
        self.client.post(
            f"{BASE}/occurrences/{occurrence_id}/complete",
            json={"summary": "Quick check-in"},
            headers=self.headers,
        )

        resp = self.client.get(f"{BASE}/history", headers=self.headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 1
        assert data["page"] == 1
        assert data["has_more"] is False
        assert data["sessions"][0]["summary"] == "Quick check-in"

    def test_cleanup_duplicates(self):
        resp = self.client.delete(f"{BASE}/instant/duplicates", headers=self.headers)
        assert resp.status_code == 200
        assert resp.json() == {"deleted": 0}

    def test_health(self):
        resp = self.client.get(f"{BASE}/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_service_exposes_one_health_route(self):
        from services.sessions.main import app

        health_paths = [
            route.path
            for route in app.routes
            if getattr(route, "path", "").endswith("/health")
        ]
        assert health_paths == [f"{BASE}/health"]
        assert self.client.get("/health").status_code == 404

    def test_request_id_header_round_trip(self):
        resp = self.client.get(
            f"{BASE}/health", headers={"X-Request-Id": "req-abc"}
        )
        assert resp.headers["X-Request-Id"] == "req-abc"
