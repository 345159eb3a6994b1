# backend/services/appointment_service.py
"""
Appointment store. Appointments live in data/appointments.json as a flat list;
recurring appointments are expanded into individual records when they are
created, so every read only ever deals with concrete time slots.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from dateutil.relativedelta import relativedelta

from services.client_service import get_client, load_all_clients
from services.errors import NotFoundError, ValidationError
from services.provider_service import get_provider
from services.time_utils import format_hhmm, get_tz, now_local, parse_iso, week_bounds
from utils.config import get_settings
from utils.storage import data_path, locked, read_json_file, write_json_file

logger = logging.getLogger(__name__)

APPOINTMENTS_FILE = "appointments.json"
REMINDERS_FILE = "reminders.json"

DEFAULT_DURATION = 50
RECURRENCE_HORIZON_MONTHS = 6
SLOT_STEP_MINUTES = 30
STATUSES = ("scheduled", "cancelled", "completed", "no-show")
REPEATS = ("none", "weekly", "biweekly", "monthly")
PRIORITIES = ("low", "normal", "high")


def load_all_appointments() -> List[dict]:
    return read_json_file(data_path(APPOINTMENTS_FILE), default=[])


def save_all_appointments(appointments: List[dict]):
    write_json_file(data_path(APPOINTMENTS_FILE), appointments)


def load_all_reminders() -> List[dict]:
    return read_json_file(data_path(REMINDERS_FILE), default=[])


def save_all_reminders(reminders: List[dict]):
    write_json_file(data_path(REMINDERS_FILE), reminders)


def _is_valid(appt: dict) -> bool:
    start = parse_iso(appt.get("start"))
    end = parse_iso(appt.get("end"))
    if not start or not end or not appt.get("client_id"):
        logger.warning("Skipping malformed appointment %s: missing start, end or client", appt.get("id"))
        return False
    if end <= start:
        logger.warning("Skipping malformed appointment %s: end is not after start", appt.get("id"))
        return False
    return True


def _owned(owner_uid: str) -> List[dict]:
    return [a for a in load_all_appointments() if a.get("owner_uid") == owner_uid]


def _sort_key(appt: dict):
    return parse_iso(appt["start"])


def _window_bound(value, label: str) -> Optional[datetime]:
    if value in (None, ""):
        return None
    parsed = parse_iso(value)
    if parsed is None:
        raise ValidationError(f"Invalid {label} filter: {value}")
    return parsed


def list_appointments(owner_uid: str, client_id: Optional[str] = None,
                      start=None, end=None) -> List[dict]:
    window_start = _window_bound(start, "start")
    window_end = _window_bound(end, "end")
    result = []
    for a in _owned(owner_uid):
        if not _is_valid(a):
            continue
        if client_id and a.get("client_id") != client_id:
            continue
        if window_start and parse_iso(a["end"]) <= window_start:
            continue
        if window_end and parse_iso(a["start"]) >= window_end:
            continue
        result.append(a)
    return sorted(result, key=_sort_key)


def get_appointment(owner_uid: str, appointment_id: str) -> dict:
    for a in _owned(owner_uid):
        if a.get("id") == appointment_id:
            return a
    raise NotFoundError("Appointment not found")


def expand_recurrence(start: datetime, repeats: str, now: Optional[datetime] = None) -> List[datetime]:
    """Start times for a series, from `start` up to six months from now."""
    if repeats not in REPEATS:
        raise ValidationError(f"Invalid repeats value: {repeats}")
    if repeats == "none":
        return [start]
    if now is None:
        now = now_local()
    horizon = now + relativedelta(months=RECURRENCE_HORIZON_MONTHS)

    starts = [start]
    step = 1
    while True:
        if repeats == "weekly":
            nxt = start + timedelta(weeks=step)
        elif repeats == "biweekly":
            nxt = start + timedelta(weeks=2 * step)
        else:
            # computed from the first slot so the 31st doesn't drift to the 28th
            nxt = start + relativedelta(months=step)
        if nxt > horizon:
            break
        starts.append(nxt)
        step += 1
    return starts


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and end_a > start_b


def find_conflicts(owner_uid: str, start, end, exclude_id: Optional[str] = None) -> List[dict]:
    start_dt, end_dt = parse_iso(start), parse_iso(end)
    if not start_dt or not end_dt:
        raise ValidationError("start and end are required")
    conflicts = []
    for a in list_appointments(owner_uid):
        if exclude_id and a.get("id") == exclude_id:
            continue
        if a.get("status") == "cancelled":
            continue
        if overlaps(start_dt, end_dt, parse_iso(a["start"]), parse_iso(a["end"])):
            conflicts.append(a)
    return conflicts


def find_overlapping_pairs(owner_uid: str) -> List[dict]:
    active = [a for a in list_appointments(owner_uid) if a.get("status") != "cancelled"]
    pairs = []
    for i in range(len(active)):
        a = active[i]
        a_start, a_end = parse_iso(a["start"]), parse_iso(a["end"])
        for b in active[i + 1:]:
            b_start, b_end = parse_iso(b["start"]), parse_iso(b["end"])
            if overlaps(a_start, a_end, b_start, b_end):
                pairs.append({
                    "first": a,
                    "second": b,
                    "overlap_start": max(a_start, b_start).isoformat(),
                    "overlap_end": min(a_end, b_end).isoformat(),
                })
    if pairs:
        logger.warning("Found %d overlapping appointment pair(s) for %s", len(pairs), owner_uid)
    return pairs


def find_free_slots(owner_uid: str, around: datetime, duration: int, exclude_id: Optional[str] = None,
                    limit: int = 3, now: Optional[datetime] = None) -> List[dict]:
    """
    Open slots of `duration` minutes inside working hours on the same day as
    `around`, the nearest `limit` of them, returned in time order.
    """
    settings = get_settings()
    local = around.astimezone(get_tz())
    day_open = local.replace(hour=settings.workday_start_hour, minute=0, second=0, microsecond=0)
    day_close = local.replace(hour=settings.workday_end_hour, minute=0, second=0, microsecond=0)
    length = timedelta(minutes=duration)

    busy = [
        (parse_iso(a["start"]), parse_iso(a["end"]))
        for a in list_appointments(owner_uid, start=day_open, end=day_close)
        if a.get("status") != "cancelled" and a.get("id") != exclude_id
    ]
    candidates = []
    slot = day_open
    while slot + length <= day_close:
        taken = any(overlaps(slot, slot + length, s, e) for s, e in busy)
        if not taken and (now is None or slot >= now):
            candidates.append(slot)
        slot += timedelta(minutes=SLOT_STEP_MINUTES)

    nearest = sorted(candidates, key=lambda s: abs((s - local).total_seconds()))[:limit]
    return [{"start": s.isoformat(), "end": (s + length).isoformat()} for s in sorted(nearest)]


def describe_slot(appt: dict) -> str:
    return f"{format_hhmm(parse_iso(appt['start']))} - {format_hhmm(parse_iso(appt['end']))}"


def _minutes(value) -> int:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Duration must be a number of minutes")
    if minutes <= 0:
        raise ValidationError("Duration must be positive")
    return minutes


def _resolve_times(data: dict):
    start = parse_iso(data.get("start"))
    if not start:
        raise ValidationError("Start time is required")
    duration = data.get("duration")
    end = parse_iso(data.get("end"))
    if end is None:
        duration = _minutes(DEFAULT_DURATION if duration in (None, "") else duration)
        return start, start + timedelta(minutes=duration), duration
    if end <= start:
        raise ValidationError("End time must be after start time")
    span = int((end - start).total_seconds() // 60)
    if duration not in (None, "") and _minutes(duration) != span:
        raise ValidationError("Duration does not match start and end times")
    return start, end, span


def _validate_refs(owner_uid: str, data: dict):
    client_id = data.get("client_id")
    if not client_id:
        raise ValidationError("Client selection is required")
    try:
        get_client(owner_uid, client_id)
    except NotFoundError:
        raise ValidationError("Client not found")
    if data.get("provider_id"):
        try:
            get_provider(owner_uid, data["provider_id"])
        except NotFoundError:
            raise ValidationError("Provider not found")
    status = data.get("status") or "scheduled"
    if status not in STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    repeats = data.get("repeats") or "none"
    if repeats not in REPEATS:
        raise ValidationError(f"Invalid repeats value: {repeats}")
    priority = data.get("priority") or "normal"
    if priority not in PRIORITIES:
        raise ValidationError(f"Invalid priority: {priority}")


def _reminder_for(appt: dict, now: datetime) -> Optional[dict]:
    settings = get_settings()
    if not settings.auto_reminders:
        return None
    remind_at = parse_iso(appt["start"]) - timedelta(hours=settings.reminder_lead_hours)
    if remind_at <= now:
        return None
    return {
        "id": uuid.uuid4().hex,
        "appointment_id": appt["id"],
        "client_id": appt["client_id"],
        "scheduled_for": remind_at.isoformat(),
        "sent": False,
        "owner_uid": appt["owner_uid"],
        "created_at": now.isoformat(),
    }


def _build_series(owner_uid: str, data: dict, now: datetime) -> List[dict]:
    _validate_refs(owner_uid, data)
    start, end, duration = _resolve_times(data)
    repeats = data.get("repeats") or "none"
    ts = now.isoformat()

    created = []
    for slot_start in expand_recurrence(start, repeats, now=now):
        created.append({
            "id": uuid.uuid4().hex,
            "client_id": data["client_id"],
            "provider_id": data.get("provider_id") or None,
            "start": slot_start.isoformat(),
            "end": (slot_start + (end - start)).isoformat(),
            "duration": duration,
            "priority": data.get("priority") or "normal",
            "status": data.get("status") or "scheduled",
            "notes": (data.get("notes") or "").strip(),
            "repeats": repeats,
            "owner_uid": owner_uid,
            "created_at": ts,
            "updated_at": ts,
        })
    return created


def _store_series(owner_uid: str, created: List[dict], now: datetime) -> Dict[str, list]:
    client_id = created[0]["client_id"]
    with locked():
        conflict_ids = []
        for appt in created:
            for c in find_conflicts(owner_uid, appt["start"], appt["end"]):
                if c["id"] not in conflict_ids:
                    conflict_ids.append(c["id"])
        if conflict_ids:
            logger.warning("New appointment for client %s overlaps %s", client_id, conflict_ids)

        appointments = load_all_appointments()
        appointments.extend(created)
        save_all_appointments(appointments)

        reminders = [r for r in (_reminder_for(a, now) for a in created) if r]
        if reminders:
            all_reminders = load_all_reminders()
            all_reminders.extend(reminders)
            save_all_reminders(all_reminders)

    logger.info("Created %d appointment(s) for client %s (repeats=%s)", len(created), client_id, created[0]["repeats"])
    return {"appointments": created, "conflicts": conflict_ids}


def create_appointment(owner_uid: str, data: dict, now: Optional[datetime] = None) -> Dict[str, list]:
    """
    Validate and store an appointment (or a whole recurring series).
    Returns {"appointments": [...created...], "conflicts": [ids of overlapping appointments]}.
    Overlaps are reported, not rejected; voice commits check them up front.
    """
    if now is None:
        now = now_local()
    return _store_series(owner_uid, _build_series(owner_uid, data, now), now)


def update_appointment(owner_uid: str, appointment_id: str, changes: dict,
                       now: Optional[datetime] = None) -> Dict[str, list]:
    if now is None:
        now = now_local()
    current = get_appointment(owner_uid, appointment_id)
    changes = {k: v for k, v in changes.items() if v is not None}

    merged = dict(current)
    merged.update(changes)
    # a new start or duration without an explicit end moves the end with it
    if ("start" in changes or "duration" in changes) and "end" not in changes:
        merged["end"] = None
        if "duration" not in changes:
            merged["duration"] = current.get("duration") or DEFAULT_DURATION
    # a new end without a duration sets the duration
    elif "end" in changes and "duration" not in changes:
        merged["duration"] = None

    _validate_refs(owner_uid, merged)

    if current.get("repeats", "none") == "none" and merged.get("repeats", "none") != "none":
        series = _build_series(owner_uid, merged, now)
        with locked():
            _drop(owner_uid, lambda a: a.get("id") == appointment_id)
            return _store_series(owner_uid, series, now)

    start, end, duration = _resolve_times(merged)
    merged.update({
        "start": start.isoformat(),
        "end": end.isoformat(),
        "duration": duration,
        "notes": (merged.get("notes") or "").strip(),
        "provider_id": merged.get("provider_id") or None,
        "updated_at": now.isoformat(),
    })

    with locked():
        conflict_ids = [c["id"] for c in find_conflicts(owner_uid, start, end, exclude_id=appointment_id)]
        if conflict_ids:
            logger.warning("Updated appointment %s overlaps %s", appointment_id, conflict_ids)
        appointments = load_all_appointments()
        for i, a in enumerate(appointments):
            if a.get("id") == appointment_id and a.get("owner_uid") == owner_uid:
                appointments[i] = merged
                break
        save_all_appointments(appointments)
    return {"appointments": [merged], "conflicts": conflict_ids}


def set_status(owner_uid: str, appointment_id: str, status: str) -> dict:
    if status not in STATUSES:
        raise ValidationError(f"Invalid status: {status}")
    with locked():
        appointments = load_all_appointments()
        for a in appointments:
            if a.get("id") == appointment_id and a.get("owner_uid") == owner_uid:
                a["status"] = status
                a["updated_at"] = now_local().isoformat()
                save_all_appointments(appointments)
                return a
    raise NotFoundError("Appointment not found")


def cancel_appointment(owner_uid: str, appointment_id: str) -> dict:
    return set_status(owner_uid, appointment_id, "cancelled")


def _drop(owner_uid: str, predicate) -> List[str]:
    with locked():
        appointments = load_all_appointments()
        dropped = [a["id"] for a in appointments if a.get("owner_uid") == owner_uid and predicate(a)]
        if not dropped:
            return []
        save_all_appointments([a for a in appointments if a.get("id") not in dropped])
        reminders = load_all_reminders()
        kept = [r for r in reminders if r.get("appointment_id") not in dropped]
        if len(kept) != len(reminders):
            save_all_reminders(kept)
    return dropped


def delete_appointment(owner_uid: str, appointment_id: str):
    if not _drop(owner_uid, lambda a: a.get("id") == appointment_id):
        raise NotFoundError("Appointment not found")


def delete_appointments_for_client(owner_uid: str, client_id: str) -> int:
    return len(_drop(owner_uid, lambda a: a.get("client_id") == client_id))


def detach_provider(owner_uid: str, provider_id: str) -> int:
    with locked():
        appointments = load_all_appointments()
        count = 0
        for a in appointments:
            if a.get("owner_uid") == owner_uid and a.get("provider_id") == provider_id:
                a["provider_id"] = None
                count += 1
        if count:
            save_all_appointments(appointments)
    return count


def list_reminders(owner_uid: str) -> List[dict]:
    return [r for r in load_all_reminders() if r.get("owner_uid") == owner_uid]


def weekly_summary(owner_uid: str, now: Optional[datetime] = None) -> dict:
    week_start, week_end = week_bounds(now)
    names = {c["id"]: c.get("name") for c in load_all_clients() if c.get("owner_uid") == owner_uid}

    total_minutes = 0.0
    count = 0
    by_client: Dict[str, dict] = {}
    for a in list_appointments(owner_uid):
        if a.get("status") == "cancelled":
            continue
        start = parse_iso(a["start"])
        if not (week_start <= start <= week_end):
            continue
        minutes = (parse_iso(a["end"]) - start).total_seconds() / 60
        count += 1
        total_minutes += minutes
        row = by_client.setdefault(a["client_id"], {
            "client_id": a["client_id"],
            "client_name": names.get(a["client_id"], "Unknown"),
            "appointments": 0,
            "hours": 0.0,
        })
        row["appointments"] += 1
        row["hours"] += minutes / 60

    for row in by_client.values():
        row["hours"] = round(row["hours"], 1)

    return {
        "week_start": week_start.isoformat(),
        "week_end": week_end.isoformat(),
        "total_appointments": count,
        "total_hours": round(total_minutes / 60, 1),
        "by_client": sorted(by_client.values(), key=lambda r: (r["client_name"] or "").lower()),
    }
