"""
Tests for saved trips.

These tests verify that:
1. A saved trip loads back with the same days and per-day order
2. A failed attraction write leaves no half-saved trip behind
3. Listing, soft delete and full user data erasure behave
4. Trip routes only ever show a user their own trips
"""

import sqlite3

import pytest

from tests.conftest import (
    auth_headers, count_rows, create_test_attraction, create_test_user, day_ids,
    get_test_db, assert_json_success,
)
from app.attractions import delete_attraction, get_catalog_index
from app.models import DEFAULT_TRIP_NAME, ScheduleDay
from app.trips import (
    save_trip, load_user_trips, load_trip_details, delete_trip_by_id, delete_user_data,
    enrich_days, get_trip_owner, validate_save_request,
)


ESB = {"id": "empire-state-building", "name": "Empire State Building"}
MET = {"id": "the-met", "name": "The Metropolitan Museum of Art"}
PARK = {"id": "central-park", "name": "Central Park"}


def _days(*pairs):
    return [ScheduleDay(date=d, items=list(items)) for d, items in pairs]


# ─────────────────────────── SAVE / LOAD ───────────────────────────

class TestSaveAndLoad:

    def test_round_trip_keeps_days_and_order(self, fresh_db):
        days = _days(
            ("2025-06-01", [MET, ESB]),
            ("2025-06-02", []),
            ("2025-06-03", [PARK, MET]),
        )

        result = save_trip("u1", "Summer", "2025-06-01", "2025-06-03", days)
        assert result.success is True
        assert result.trip_id

        details = load_trip_details(result.trip_id)
        assert details is not None
        assert [d.date for d in details.days] == ["2025-06-01", "2025-06-02", "2025-06-03"]
        assert day_ids(details.days) == [
            ["the-met", "empire-state-building"],
            [],
            ["central-park", "the-met"],
        ]
        assert details.days[0].items[0] == MET
        assert details.schedule["name"] == "Summer"
        assert details.schedule["start_date"] == "2025-06-01"
        assert details.schedule["end_date"] == "2025-06-03"
        assert len(details.attractions) == 4

    def test_accepts_plain_dict_days(self, fresh_db):
        result = save_trip("u1", "Dicts", "2025-06-01", "2025-06-01", [
            {"date": "2025-06-01", "items": [ESB]},
        ])
        assert result.success is True
        assert day_ids(load_trip_details(result.trip_id).days) == [["empire-state-building"]]

    @pytest.mark.parametrize("name", ["", "   ", None])
    def test_blank_name_gets_default(self, fresh_db, name):
        result = save_trip("u1", name, "2025-06-01", "2025-06-01", _days(("2025-06-01", [ESB])))
        assert load_trip_details(result.trip_id).schedule["name"] == DEFAULT_TRIP_NAME

    @pytest.mark.parametrize("name", [42, ["Summer"]])
    def test_non_text_name_gets_default(self, fresh_db, name):
        result = save_trip("u1", name, "2025-06-01", "2025-06-01", _days(("2025-06-01", [ESB])))
        assert result.success is True
        assert load_trip_details(result.trip_id).schedule["name"] == DEFAULT_TRIP_NAME

    def test_name_is_trimmed(self, fresh_db):
        result = save_trip("u1", "  Weekend  ", "2025-06-01", "2025-06-01", _days(("2025-06-01", [ESB])))
        assert load_trip_details(result.trip_id).schedule["name"] == "Weekend"

    def test_one_row_per_day_and_attraction(self, fresh_db):
        # Same attraction on two days is two rows
        result = save_trip("u1", "T", "2025-06-01", "2025-06-02", _days(
            ("2025-06-01", [ESB]),
            ("2025-06-02", [ESB, MET]),
        ))
        assert count_rows("scheduled_attractions", "schedule_id = ?", (result.trip_id,)) == 3

    def test_failed_attraction_write_rolls_back_schedule(self, fresh_db):
        bad_days = _days(("2025-06-01", [ESB, {"id": None, "name": "Broken"}]))

        result = save_trip("u1", "Broken trip", "2025-06-01", "2025-06-01", bad_days)

        assert result.success is False
        assert result.error == "Failed to save trip attractions"
        assert result.trip_id is None
        assert count_rows("trip_schedules") == 0
        assert count_rows("scheduled_attractions") == 0
        assert load_user_trips("u1") == []

    def test_save_writes_audit_entry(self, fresh_db):
        result = save_trip("u1", "T", "2025-06-01", "2025-06-01", _days(("2025-06-01", [ESB])))
        assert count_rows("audit_log", "action = ? AND target_id = ?", ("trip_saved", result.trip_id)) == 1

    def test_missing_trip_loads_as_none(self, fresh_db):
        assert load_trip_details("does-not-exist") is None

    def test_rows_outside_range_are_not_shown(self, fresh_db):
        result = save_trip("u1", "T", "2025-06-01", "2025-06-02", _days(
            ("2025-06-01", [ESB]),
            ("2025-06-05", [MET]),
        ))
        details = load_trip_details(result.trip_id)
        assert day_ids(details.days) == [["empire-state-building"], []]


class TestListing:

    def test_newest_first_with_counts(self, fresh_db):
        first = save_trip("u1", "First", "2025-06-01", "2025-06-01", _days(("2025-06-01", [ESB])))
        second = save_trip("u1", "Second", "2025-07-01", "2025-07-02", _days(
            ("2025-07-01", [ESB, MET]),
            ("2025-07-02", [PARK]),
        ))
        save_trip("u2", "Not mine", "2025-06-01", "2025-06-01", _days(("2025-06-01", [ESB])))

        trips = load_user_trips("u1")

        assert [t.id for t in trips] == [second.trip_id, first.trip_id]
        assert [t.attraction_count for t in trips] == [3, 1]
        assert trips[0].name == "Second"
        assert trips[0].start_date == "2025-07-01"

    def test_single_attraction_trip(self, fresh_db):
        # Three days, one attraction on the first
        save_trip("u1", "Summer", "2025-06-01", "2025-06-03", _days(
            ("2025-06-01", [ESB]),
            ("2025-06-02", []),
            ("2025-06-03", []),
        ))
        trips = load_user_trips("u1")
        assert len(trips) == 1
        assert trips[0].attraction_count == 1

    def test_unknown_user_has_no_trips(self, fresh_db):
        assert load_user_trips("nobody") == []

    def test_storage_error_reads_as_no_trips(self, fresh_db, monkeypatch):
        def broken_db():
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr("app.trips.db", broken_db)
        assert load_user_trips("u1") == []


class TestDelete:

    def test_soft_delete_hides_trip(self, fresh_db):
        result = save_trip("u1", "T", "2025-06-01", "2025-06-01", _days(("2025-06-01", [ESB])))

        assert delete_trip_by_id(result.trip_id) is True

        assert load_user_trips("u1") == []
        assert load_trip_details(result.trip_id) is None
        assert get_trip_owner(result.trip_id) is None
        # Row is still there, just inactive
        assert count_rows("trip_schedules", "id = ? AND is_active = 0", (result.trip_id,)) == 1

    def test_delete_unknown_trip(self, fresh_db):
        assert delete_trip_by_id("does-not-exist") is False

    def test_delete_user_data_erases_everything(self, fresh_db):
        user_id, _ = create_test_user("u1", "visitor@example.com")
        kept = save_trip("u2", "Other", "2025-06-01", "2025-06-01", _days(("2025-06-01", [ESB])))
        gone = save_trip(user_id, "Mine", "2025-06-01", "2025-06-01", _days(("2025-06-01", [ESB, MET])))
        soft_deleted = save_trip(user_id, "Old", "2025-05-01", "2025-05-01", _days(("2025-05-01", [PARK])))
        delete_trip_by_id(soft_deleted.trip_id)

        assert delete_user_data(user_id) is True

        assert count_rows("trip_schedules", "user_id = ?", (user_id,)) == 0
        assert count_rows("scheduled_attractions", "schedule_id IN (?, ?)", (gone.trip_id, soft_deleted.trip_id)) == 0
        assert count_rows("users", "id = ?", (user_id,)) == 0
        assert count_rows("user_sessions", "user_id = ?", (user_id,)) == 0
        assert [t.id for t in load_user_trips("u2")] == [kept.trip_id]

    def test_delete_user_data_without_rows(self, fresh_db):
        assert delete_user_data("never-existed") is True


class TestEnrichAndValidate:

    def test_enrich_uses_live_catalog(self, seeded):
        days = [ScheduleDay(date="2025-06-01", items=[ESB])]
        enriched = enrich_days(days, get_catalog_index())
        item = enriched[0].items[0]
        assert item["id"] == "empire-state-building"
        assert item["category"] == "Landmarks"
        assert item["location"]

    def test_deleted_catalog_entry_falls_back_to_stub(self, fresh_db):
        attraction = create_test_attraction("u1", name="Pop-up Gallery")
        result = save_trip("u1", "T", "2025-06-01", "2025-06-01", _days(
            ("2025-06-01", [attraction.to_stub()]),
        ))
        delete_attraction(attraction.id)

        details = load_trip_details(result.trip_id)
        enriched = enrich_days(details.days, get_catalog_index())

        assert enriched[0].items == [{"id": attraction.id, "name": "Pop-up Gallery"}]

    def test_validate_save_request(self):
        assert validate_save_request("2025-06-01", "2025-06-01", _days(("2025-06-01", [ESB]))) == []
        assert validate_save_request(None, "2025-06-01", _days(("2025-06-01", [ESB]))) == [
            "Please select trip dates"
        ]
        assert validate_save_request("2025-06-01", "2025-06-02", _days(
            ("2025-06-01", []), ("2025-06-02", [])
        )) == ["Add at least one attraction before saving"]
        assert len(validate_save_request("", "", [])) == 2


# ─────────────────────────── ROUTES ───────────────────────────

class TestTripRoutes:

    def _save_for(self, user_id):
        return save_trip(user_id, "Summer", "2025-06-01", "2025-06-02", _days(
            ("2025-06-01", [ESB]),
            ("2025-06-02", [{"id": "gone-forever", "name": "Closed Bar"}]),
        )).trip_id

    def test_requires_login(self, client):
        assert client.get("/api/trips").status_code == 401
        assert client.get("/api/trips/anything").status_code == 401
        assert client.delete("/api/trips/anything").status_code == 401

    def test_list_own_trips(self, client, user_session):
        user_id, token = user_session
        trip_id = self._save_for(user_id)

        resp = client.get("/api/trips", headers=auth_headers(token))

        assert resp.status_code == 200
        trips = resp.json()["trips"]
        assert [t["id"] for t in trips] == [trip_id]
        assert trips[0]["attraction_count"] == 2

    def test_details_are_enriched(self, client, user_session):
        user_id, token = user_session
        trip_id = self._save_for(user_id)

        resp = client.get(f"/api/trips/{trip_id}", headers=auth_headers(token))

        assert resp.status_code == 200
        days = resp.json()["days"]
        assert days[0]["items"][0]["category"] == "Landmarks"
        assert days[1]["items"] == [{"id": "gone-forever", "name": "Closed Bar"}]

    def test_other_users_trip_is_not_found(self, client, user_session, other_session):
        _, token = user_session
        other_id, _ = other_session
        trip_id = self._save_for(other_id)

        assert client.get(f"/api/trips/{trip_id}", headers=auth_headers(token)).status_code == 404
        assert client.delete(f"/api/trips/{trip_id}", headers=auth_headers(token)).status_code == 404
        assert get_trip_owner(trip_id) == other_id

    def test_delete_own_trip(self, client, user_session):
        user_id, token = user_session
        trip_id = self._save_for(user_id)

        assert_json_success(client.delete(f"/api/trips/{trip_id}", headers=auth_headers(token)))

        assert client.get("/api/trips", headers=auth_headers(token)).json()["trips"] == []
        assert client.get(f"/api/trips/{trip_id}", headers=auth_headers(token)).status_code == 404
        conn = get_test_db()
        row = conn.execute("SELECT action FROM audit_log WHERE target_id = ? AND action = 'trip_deleted'",
                           (trip_id,)).fetchone()
        conn.close()
        assert row is not None
