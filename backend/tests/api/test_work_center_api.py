"""
API tests for work center capacity endpoints.
"""
from datetime import date, timedelta

from tests.factories import create_test_calendar_day, create_test_calendar_range, create_test_work_center

BASE_URL = "/api/v1/work-centers"
MONDAY = date(2025, 1, 6)


class TestCapacityQueries:
    def test_available_hours(self, client, db_session):
        wc = create_test_work_center(db_session)
        create_test_calendar_range(db_session, wc, MONDAY, 3)
        db_session.commit()

        response = client.get(
            f"{BASE_URL}/{wc.id}/available-hours",
            params={"start_date": MONDAY.isoformat(), "end_date": (MONDAY + timedelta(days=2)).isoformat()},
        )

        assert response.status_code == 200
        assert response.json()["available_hours"] == 24.0

    def test_unknown_work_center(self, client):
        response = client.get(
            f"{BASE_URL}/999/available-hours",
            params={"start_date": MONDAY.isoformat(), "end_date": MONDAY.isoformat()},
        )

        assert response.status_code == 404
        assert response.json()["error"] == "WORK_CENTER_NOT_FOUND"

    def test_reversed_range(self, client, db_session):
        wc = create_test_work_center(db_session)
        db_session.commit()

        response = client.get(
            f"{BASE_URL}/{wc.id}/available-hours",
            params={"start_date": MONDAY.isoformat(), "end_date": (MONDAY - timedelta(days=1)).isoformat()},
        )

        assert response.status_code == 400

    def test_daily_breakdown(self, client, db_session):
        wc = create_test_work_center(db_session)
        create_test_calendar_day(db_session, wc, MONDAY)
        db_session.commit()

        response = client.get(
            f"{BASE_URL}/{wc.id}/daily",
            params={"start_date": MONDAY.isoformat(), "end_date": (MONDAY + timedelta(days=1)).isoformat()},
        )

        days = response.json()
        assert [d["day_name"] for d in days] == ["Monday", "Tuesday"]
        assert days[1]["has_calendar_entry"] is False


class TestNextSlot:
    def test_slot_found(self, client, db_session):
        wc = create_test_work_center(db_session)
        create_test_calendar_range(db_session, wc, MONDAY, 5)
        db_session.commit()

        response = client.post(
            f"{BASE_URL}/{wc.id}/next-slot",
            json={"required_hours": "12", "start_from": MONDAY.isoformat()},
        )

        data = response.json()
        assert data["found"] is True
        assert data["end_date"] == (MONDAY + timedelta(days=1)).isoformat()
        assert data["accumulated_hours"] == 16.0

    def test_slot_not_found_is_not_an_error(self, client, db_session):
        wc = create_test_work_center(db_session)
        create_test_calendar_range(db_session, wc, MONDAY, 2)
        db_session.commit()

        response = client.post(
            f"{BASE_URL}/{wc.id}/next-slot",
            json={"required_hours": "40", "start_from": MONDAY.isoformat(), "max_days": 5},
        )

        assert response.status_code == 200
        assert response.json()["found"] is False


class TestCalendarMaintenance:
    def test_generate_calendar(self, client, db_session):
        wc = create_test_work_center(db_session)
        db_session.commit()

        response = client.post(f"{BASE_URL}/{wc.id}/calendar/generate", json={
            "start_date": MONDAY.isoformat(),
            "end_date": (MONDAY + timedelta(days=6)).isoformat(),
            "holidays": [MONDAY.isoformat()],
        })

        assert response.json()["count"] == 7
        hours = client.get(
            f"{BASE_URL}/{wc.id}/available-hours",
            params={"start_date": MONDAY.isoformat(), "end_date": (MONDAY + timedelta(days=6)).isoformat()},
        ).json()["available_hours"]
        assert hours == 32.0

    def test_maintenance(self, client, db_session):
        wc = create_test_work_center(db_session)
        create_test_calendar_day(db_session, wc, MONDAY)
        db_session.commit()

        response = client.post(f"{BASE_URL}/{wc.id}/calendar/maintenance", json={
            "on_date": MONDAY.isoformat(),
            "reduced_hours": "0",
            "reason": "Annual service",
        })

        assert response.status_code == 200
        assert response.json()["day_type"] == "maintenance"

    def test_load_report(self, client, db_session):
        wc = create_test_work_center(db_session, code="ASSY")
        create_test_calendar_day(db_session, wc, MONDAY)
        db_session.commit()

        response = client.get(
            f"{BASE_URL}/load-report",
            params={"start_date": MONDAY.isoformat(), "end_date": MONDAY.isoformat()},
        )

        data = response.json()
        assert data["summary"]["total_work_centers"] == 1
        assert data["work_centers"][0]["code"] == "ASSY"
