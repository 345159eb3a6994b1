import logging
from datetime import datetime, timedelta

import pytest
from dateutil.relativedelta import relativedelta

from services.appointment_service import (
    create_appointment,
    expand_recurrence,
    find_conflicts,
    find_free_slots,
    find_overlapping_pairs,
    get_appointment,
    list_appointments,
    list_reminders,
    save_all_appointments,
    update_appointment,
    weekly_summary,
)
from services.client_service import create_client, delete_client, list_clients, update_client
from services.errors import NotFoundError, ValidationError
from services.provider_service import create_provider, delete_provider, find_provider_by_name


@pytest.fixture
def client(owner):
    return create_client(owner, "  John Smith  ", email="john@example.com")


def _book(owner, client, start, now, **extra):
    data = {"client_id": client["id"], "start": start.isoformat()}
    data.update(extra)
    return create_appointment(owner, data, now=now)["appointments"]


def test_client_defaults_and_sorting(owner, client):
    create_client(owner, "alice Walker")
    assert client["name"] == "John Smith"
    assert client["color"] == "#3b82f6"
    assert [c["name"] for c in list_clients(owner)] == ["alice Walker", "John Smith"]
    assert list_clients("someone-else") == []


def test_client_name_required(owner):
    with pytest.raises(ValidationError, match="name required"):
        create_client(owner, "   ")


def test_update_missing_client(owner):
    with pytest.raises(NotFoundError):
        update_client(owner, "nope", {"name": "X"})


def test_create_defaults(owner, client, now):
    start = now + timedelta(days=1)
    appt = _book(owner, client, start, now)[0]
    assert appt["duration"] == 50
    assert appt["end"] == (start + timedelta(minutes=50)).isoformat()
    assert appt["status"] == "scheduled"
    assert appt["priority"] == "normal"
    assert appt["repeats"] == "none"
    assert appt["owner_uid"] == owner


def test_create_requires_client(owner, now):
    with pytest.raises(ValidationError, match="Client selection is required"):
        create_appointment(owner, {"start": now.isoformat()}, now=now)
    with pytest.raises(ValidationError, match="Client not found"):
        create_appointment(owner, {"client_id": "ghost", "start": now.isoformat()}, now=now)


def test_create_rejects_end_before_start(owner, client, now):
    with pytest.raises(ValidationError, match="End time must be after start time"):
        create_appointment(owner, {
            "client_id": client["id"],
            "start": now.isoformat(),
            "end": (now - timedelta(hours=1)).isoformat(),
        }, now=now)


def test_weekly_expansion_covers_six_months(now):
    start = now + timedelta(days=1)
    starts = expand_recurrence(start, "weekly", now=now)
    horizon = now + relativedelta(months=6)
    assert starts[0] == start
    assert all(b - a == timedelta(weeks=1) for a, b in zip(starts, starts[1:]))
    assert starts[-1] <= horizon < starts[-1] + timedelta(weeks=1)


def test_biweekly_spacing(now):
    starts = expand_recurrence(now, "biweekly", now=now)
    assert all(b - a == timedelta(weeks=2) for a, b in zip(starts, starts[1:]))


def test_monthly_clamps_to_month_end(now):
    start = datetime(2026, 1, 31, 10, 0, tzinfo=now.tzinfo)
    starts = expand_recurrence(start, "monthly", now=datetime(2026, 1, 1, 9, 0, tzinfo=now.tzinfo))
    assert [s.day for s in starts] == [31, 28, 31, 30, 31, 30]


def test_recurring_series_is_stored_individually(owner, client, now):
    created = _book(owner, client, now + timedelta(days=1), now, repeats="weekly")
    assert len(created) > 20
    assert len(list_appointments(owner)) == len(created)
    assert len({a["id"] for a in created}) == len(created)


def test_converting_to_recurring_replaces_original(owner, client, now):
    original = _book(owner, client, now + timedelta(days=1), now)[0]
    result = update_appointment(owner, original["id"], {"repeats": "monthly"}, now=now)
    assert len(result["appointments"]) == 6
    with pytest.raises(NotFoundError):
        get_appointment(owner, original["id"])


def test_update_moves_end_with_start(owner, client, now):
    appt = _book(owner, client, now + timedelta(days=1), now, duration=30)[0]
    new_start = now + timedelta(days=2)
    updated = update_appointment(owner, appt["id"], {"start": new_start.isoformat()}, now=now)["appointments"][0]
    assert updated["end"] == (new_start + timedelta(minutes=30)).isoformat()


def test_conflicts_use_half_open_intervals(owner, client, now):
    start = now + timedelta(days=1)
    appt = _book(owner, client, start, now)[0]
    assert [c["id"] for c in find_conflicts(owner, start + timedelta(minutes=30), start + timedelta(minutes=90))] == [appt["id"]]
    assert find_conflicts(owner, start + timedelta(minutes=50), start + timedelta(minutes=90)) == []
    assert find_conflicts(owner, start, start + timedelta(minutes=10), exclude_id=appt["id"]) == []


def test_cancelled_appointments_do_not_conflict(owner, client, now):
    start = now + timedelta(days=1)
    _book(owner, client, start, now, status="cancelled")
    assert find_conflicts(owner, start, start + timedelta(minutes=30)) == []


def test_manual_create_reports_overlap(owner, client, now):
    start = now + timedelta(days=1)
    first = _book(owner, client, start, now)[0]
    result = create_appointment(owner, {"client_id": client["id"], "start": (start + timedelta(minutes=20)).isoformat()}, now=now)
    assert result["conflicts"] == [first["id"]]

    pairs = find_overlapping_pairs(owner)
    assert len(pairs) == 1
    assert pairs[0]["overlap_start"] == (start + timedelta(minutes=20)).isoformat()
    assert pairs[0]["overlap_end"] == (start + timedelta(minutes=50)).isoformat()


def test_malformed_appointments_are_skipped(owner, client, now, caplog):
    good = _book(owner, client, now + timedelta(days=1), now)[0]
    save_all_appointments([
        good,
        {"id": "bad-range", "client_id": client["id"], "owner_uid": owner,
         "start": now.isoformat(), "end": (now - timedelta(hours=1)).isoformat()},
        {"id": "no-client", "owner_uid": owner, "start": now.isoformat(),
         "end": (now + timedelta(hours=1)).isoformat()},
    ])
    with caplog.at_level(logging.WARNING):
        assert [a["id"] for a in list_appointments(owner)] == [good["id"]]
    assert "bad-range" in caplog.text


def test_reminders_only_for_future_lead_time(owner, client, now):
    far = _book(owner, client, now + timedelta(days=3), now)[0]
    _book(owner, client, now + timedelta(hours=6), now)
    reminders = list_reminders(owner)
    assert [r["appointment_id"] for r in reminders] == [far["id"]]
    assert reminders[0]["scheduled_for"] == (now + timedelta(days=2)).isoformat()
    assert reminders[0]["sent"] is False


def test_delete_client_cascades(owner, client, now):
    other = create_client(owner, "Sarah Connor")
    _book(owner, client, now + timedelta(days=2), now)
    _book(owner, client, now + timedelta(days=3), now)
    kept = _book(owner, other, now + timedelta(days=4), now)[0]

    assert delete_client(owner, client["id"]) == 2
    assert [a["id"] for a in list_appointments(owner)] == [kept["id"]]
    assert all(r["client_id"] == other["id"] for r in list_reminders(owner))
    with pytest.raises(NotFoundError):
        delete_client(owner, client["id"])


def test_delete_provider_detaches_appointments(owner, client, now):
    provider = create_provider(owner, "Alex Kim")
    appt = _book(owner, client, now + timedelta(days=1), now, provider_id=provider["id"])[0]
    assert delete_provider(owner, provider["id"]) == 1
    assert get_appointment(owner, appt["id"])["provider_id"] is None


def test_find_provider_by_name_fallbacks(owner):
    assert find_provider_by_name(owner, "Alex") is None
    create_provider(owner, "Blake Jones")
    alex = create_provider(owner, "Alex Kim")
    assert find_provider_by_name(owner, "blake")["name"] == "Blake Jones"
    assert find_provider_by_name(owner, "Nobody")["id"] == alex["id"]
    assert find_provider_by_name(owner, None, default_name="")["name"] == "Alex Kim"


def test_weekly_summary(owner, client, now):
    # Wednesday 22 Oct; week is Sun 19 - Sat 25
    _book(owner, client, now + timedelta(days=1), now)
    _book(owner, client, now + timedelta(days=2), now, duration=60)
    _book(owner, client, now + timedelta(days=5), now)
    _book(owner, client, now + timedelta(days=1, hours=3), now, status="cancelled")

    summary = weekly_summary(owner, now=now)
    assert summary["total_appointments"] == 2
    assert summary["total_hours"] == 1.8
    assert summary["by_client"][0]["client_name"] == "John Smith"
    assert summary["by_client"][0]["appointments"] == 2


def test_failed_recurring_conversion_keeps_original(owner, client, now):
    original = _book(owner, client, now + timedelta(days=3), now)[0]
    with pytest.raises(ValidationError, match="End time must be after start time"):
        update_appointment(owner, original["id"], {"repeats": "weekly", "end": now.isoformat()}, now=now)
    assert get_appointment(owner, original["id"])["repeats"] == "none"
    assert [r["appointment_id"] for r in list_reminders(owner)] == [original["id"]]


def test_update_end_recomputes_duration(owner, client, now):
    start = now + timedelta(days=1)
    appt = _book(owner, client, start, now)[0]
    new_end = (start + timedelta(minutes=90)).isoformat()
    updated = update_appointment(owner, appt["id"], {"end": new_end}, now=now)["appointments"][0]
    assert updated["end"] == new_end
    assert updated["duration"] == 90
    assert get_appointment(owner, appt["id"])["duration"] == 90


def test_create_rejects_duration_that_disagrees_with_end(owner, client, now):
    start = now + timedelta(days=1)
    with pytest.raises(ValidationError, match="Duration does not match"):
        create_appointment(owner, {
            "client_id": client["id"],
            "start": start.isoformat(),
            "end": (start + timedelta(minutes=60)).isoformat(),
            "duration": 45,
        }, now=now)


def test_invalid_window_filter_is_rejected(owner, client, now):
    _book(owner, client, now + timedelta(days=1), now)
    with pytest.raises(ValidationError, match="Invalid start filter"):
        list_appointments(owner, start="next tuesday-ish")
    with pytest.raises(ValidationError, match="Invalid end filter"):
        list_appointments(owner, end="soon")


def test_free_slots_nearest_to_requested_time(owner, client, now):
    # Thursday 14:00-15:00 is taken; working day is 08:00-18:00 in 30 minute steps
    _book(owner, client, datetime(2025, 10, 23, 14, 0, tzinfo=now.tzinfo), now, duration=60)
    _book(owner, client, datetime(2025, 10, 23, 16, 0, tzinfo=now.tzinfo), now, duration=60, status="cancelled")
    wanted = datetime(2025, 10, 23, 14, 30, tzinfo=now.tzinfo)
    slots = find_free_slots(owner, wanted, 60, now=now)
    assert [s["start"] for s in slots] == [
        "2025-10-23T13:00:00+00:00",
        "2025-10-23T15:00:00+00:00",
        "2025-10-23T15:30:00+00:00",
    ]
    assert slots[1]["end"] == "2025-10-23T16:00:00+00:00"


def test_free_slots_skip_the_past(owner, client, now):
    slots = find_free_slots(owner, now, 60, limit=2, now=now)
    assert [s["start"] for s in slots] == ["2025-10-22T09:00:00+00:00", "2025-10-22T09:30:00+00:00"]
