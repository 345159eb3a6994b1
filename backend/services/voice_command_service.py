# backend/services/voice_command_service.py
"""
Voice command pipeline: classify -> extract -> resolve -> stage -> confirm/cancel -> commit.

Every calendar mutation heard by the assistant is staged on the voice session
as a pending action and only applied once the user confirms it (by saying
"yes" or through the confirm endpoint). A pending schedule keeps absorbing
corrections ("I meant Thursday") until it is confirmed or cancelled.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from services.appointment_service import (
    cancel_appointment,
    create_appointment,
    delete_appointment,
    describe_slot,
    find_conflicts,
    find_free_slots,
    get_appointment,
    list_appointments,
    update_appointment,
    weekly_summary,
)
from services.client_service import create_client, list_clients
from services.errors import ConflictError, NotFoundError, ServiceError, ValidationError
from services.intent_service import (
    CALENDAR,
    GENERAL,
    classify_request,
    normalize_command,
    parse_calendar_command,
)
from services.llm_service import chat_with_llm, extract_calendar_command, run_insight
from services.name_matching import find_client_by_fuzzy_name
from services.provider_service import find_provider_by_name
from services.session_service import (
    append_history,
    clear_pending,
    create_session,
    get_session,
    merge_pending,
    set_pending,
    update_session,
)
from services.time_utils import get_tz, now_local, parse_iso, parse_relative_date, parse_time_of_day
from utils.config import get_settings
from utils.storage import locked

logger = logging.getLogger(__name__)

AFFIRMATIVE = ("yes", "y", "yeah", "yep", "confirm", "sure", "ok", "okay", "do it", "yes please")
NEGATIVE = ("no", "nope", "n", "cancel that", "never mind", "nevermind", "stop", "don't")

VOICE_DEFAULT_DURATION = 60
RESCHEDULE_DEFAULT_DURATION = 50
VOICE_CLIENT_COLOR = "#4f46e5"
TROUBLE_MESSAGE = "Sorry, I had trouble understanding your request. Please try again."


# ---------------- formatting helpers ----------------
def _spoken_date(text, now: datetime) -> str:
    day = parse_relative_date(text, today=now.date()) if text else None
    if day is None:
        return str(text or "Unknown")
    return f"{day:%A, %B} {day.day}, {day.year}"


def _spoken_time(text) -> str:
    clock = parse_time_of_day(text) if text else None
    if clock is None:
        return str(text or "Unknown")
    suffix = "AM" if clock.hour < 12 else "PM"
    return f"{clock.hour % 12 or 12}:{clock.minute:02d} {suffix}"


def _spoken_start(dt: datetime) -> str:
    dt = dt.astimezone(get_tz())
    return f"{dt:%A, %B} {dt.day} at {_spoken_time(dt.strftime('%H:%M'))}"


def _schedule_details(params: dict, now: datetime) -> str:
    return "\n".join([
        f"Client: {params.get('client_name') or 'Unknown'}",
        f"Date: {_spoken_date(params.get('date'), now)}",
        f"Time: {_spoken_time(params.get('time'))}",
        f"Provider: {params.get('provider') or get_settings().default_provider}",
        f"Duration: {params.get('duration') or VOICE_DEFAULT_DURATION} minutes",
    ])


def _client_name(owner_uid: str, client_id: str) -> str:
    for c in list_clients(owner_uid):
        if c["id"] == client_id:
            return c["name"]
    return "Unknown"


def _whose(params: dict) -> str:
    name = params.get("client_name")
    return f"{name}'s appointment" if name else "The appointment"


def _is_answer(text: str, answers) -> bool:
    return text.lower().strip().strip(".!?,") in answers


def _result(session: dict, request_type: str, action: str, response: str,
            parameters: Optional[dict] = None, needs_clarification: bool = False,
            needs_confirmation: bool = False, data: Any = None) -> Dict[str, Any]:
    return {
        "session_id": session["id"],
        "request_type": request_type,
        "action": action,
        "parameters": parameters or {},
        "response": response,
        "needs_clarification": needs_clarification,
        "needs_confirmation": needs_confirmation,
        "pending": session.get("pending"),
        "data": data,
    }


# ---------------- resolution ----------------
def _match_appointment(owner_uid: str, client_name: Optional[str], on_date, now: datetime) -> Optional[dict]:
    """Pick the appointment a spoken cancel/delete/reschedule refers to."""
    client = find_client_by_fuzzy_name(client_name, list_clients(owner_uid))
    if not client:
        return None
    candidates = [a for a in list_appointments(owner_uid, client_id=client["id"]) if a.get("status") != "cancelled"]
    if on_date:
        day = parse_relative_date(on_date, today=now.date())
        if day is not None:
            candidates = [a for a in candidates if parse_iso(a["start"]).astimezone(get_tz()).date() == day]
    if not candidates:
        return None
    upcoming = [a for a in candidates if parse_iso(a["start"]) >= now]
    chosen = (upcoming or candidates)[0]
    chosen = dict(chosen)
    chosen["client_name"] = client["name"]
    return chosen


def _resolve_start(date_text, time_text, now: datetime) -> datetime:
    day = parse_relative_date(date_text, today=now.date())
    if day is None:
        raise ValidationError(f"Invalid date format: {date_text}")
    clock = parse_time_of_day(time_text)
    if clock is None:
        raise ValidationError(f"Invalid time format: {time_text}")
    return datetime.combine(day, clock, tzinfo=get_tz())


# ---------------- staging ----------------
def _stage_schedule(owner_uid: str, session: dict, params: dict, reply: str, now: datetime):
    pending = session.get("pending")
    if pending and pending.get("kind") == "reschedule" and not params.get("client_name"):
        return _stage_reschedule_change(session, params, now)

    merge_pending(session, "schedule", params)
    staged = session["pending"]["parameters"]
    missing = [label for key, label in (("client_name", "client name"), ("date", "date"), ("time", "time"))
               if not staged.get(key)]
    if missing:
        response = reply or f"I still need the {', '.join(missing)} to schedule this appointment."
        return "schedule", response, staged, True, False, None
    response = "I'll help you schedule an appointment. Please confirm these details:\n\n" + _schedule_details(staged, now)
    return "schedule", response, staged, False, True, None


def _stage_reschedule_change(session: dict, params: dict, now: datetime):
    staged = session["pending"]["parameters"]
    if params.get("date"):
        staged["date"] = params["date"]
    if params.get("time"):
        staged["time"] = params["time"]
    response = (f"Reschedule {staged['client_name']}'s appointment to "
                f"{_spoken_date(staged['date'], now)} at {_spoken_time(staged['time'])}? Say yes to confirm.")
    return "reschedule", response, staged, False, True, None


def _stage_reschedule(owner_uid: str, session: dict, params: dict, reply: str, now: datetime):
    if not params.get("client_name"):
        return "clarify", "Which client's appointment should I reschedule?", params, True, False, None
    appt = _match_appointment(owner_uid, params["client_name"], params.get("original_date"), now)
    if not appt:
        # nothing to move, so treat it as a new booking
        logger.info("No appointment to reschedule for %r, staging a new one", params["client_name"])
        set_pending(session, None)
        return _stage_schedule(owner_uid, session, params, reply, now)
    if not params.get("date") and not params.get("time"):
        return "clarify", f"When should I move {appt['client_name']}'s appointment to?", params, True, False, None

    current = parse_iso(appt["start"]).astimezone(get_tz())
    staged = {
        "appointment_id": appt["id"],
        "client_name": appt["client_name"],
        "date": params.get("date") or current.date().isoformat(),
        "time": params.get("time") or current.strftime("%H:%M"),
    }
    set_pending(session, {"kind": "reschedule", "parameters": staged})
    response = (f"Reschedule {appt['client_name']}'s appointment on {_spoken_start(current)} to "
                f"{_spoken_date(staged['date'], now)} at {_spoken_time(staged['time'])}? Say yes to confirm.")
    return "reschedule", response, staged, False, True, None


def _stage_removal(owner_uid: str, session: dict, action: str, params: dict, now: datetime):
    if not params.get("client_name"):
        return "clarify", f"Whose appointment should I {action}?", params, True, False, None
    appt = _match_appointment(owner_uid, params["client_name"], params.get("date"), now)
    if not appt:
        return "error", f"No matching appointments found to {action}", params, False, False, None
    staged = {"appointment_id": appt["id"], "client_name": appt["client_name"], "start": appt["start"]}
    set_pending(session, {"kind": action, "parameters": staged})
    when = _spoken_start(parse_iso(appt["start"]))
    if action == "cancel":
        response = f"Cancel {appt['client_name']}'s appointment on {when}? Say yes to confirm."
    else:
        response = f"Permanently delete {appt['client_name']}'s appointment on {when}? Say yes to confirm."
    return action, response, staged, False, True, None


def _stage_add_client(session: dict, params: dict):
    if not params.get("client_name"):
        return "clarify", "Client name is required", params, True, False, None
    staged = {k: params[k] for k in ("client_name", "email", "phone", "notes") if params.get(k)}
    set_pending(session, {"kind": "add_client", "parameters": staged})
    return "add_client", f"Add {staged['client_name']} as a new client? Say yes to confirm.", staged, False, True, None


def _search(owner_uid: str, params: dict, now: datetime):
    client = find_client_by_fuzzy_name(params.get("client_name"), list_clients(owner_uid))
    if not client:
        return "search", f"I couldn't find a client named {params.get('client_name') or 'that'}.", params, True, False, []
    upcoming = [a for a in list_appointments(owner_uid, client_id=client["id"])
                if a.get("status") != "cancelled" and parse_iso(a["start"]) >= now]
    if not upcoming:
        response = f"{client['name']} has no upcoming appointments."
    else:
        response = (f"{client['name']} has {len(upcoming)} upcoming appointment(s). "
                    f"The next one is {_spoken_start(parse_iso(upcoming[0]['start']))}.")
    return "search", response, dict(params, client_name=client["name"]), False, False, upcoming


def _summary(owner_uid: str, now: datetime):
    summary = weekly_summary(owner_uid, now=now)
    response = (f"This week you have {summary['total_appointments']} appointment(s) "
                f"totaling {summary['total_hours']} hours.")
    insight = run_insight("weekly_summary", summary)
    if insight.get("ok") and insight["insight"].get("summary"):
        response += " " + str(insight["insight"]["summary"])
    return "summary", response, {}, False, False, summary


def _view(params: dict, now: datetime):
    view = params.get("view") or "week"
    day = parse_relative_date(params.get("date") or "today", today=now.date()) or now.date()
    data = {"view": view, "date": day.isoformat()}
    return "view", f"Showing the {view} view for {_spoken_date(day.isoformat(), now)}.", data, False, False, data


def _dispatch(owner_uid: str, session: dict, command: dict, now: datetime):
    action = command["action"]
    params = command["parameters"]
    reply = command.get("response") or ""

    if action == "schedule":
        return _stage_schedule(owner_uid, session, params, reply, now)
    if action in ("reschedule", "update"):
        return _stage_reschedule(owner_uid, session, params, reply, now)
    if action in ("cancel", "delete"):
        return _stage_removal(owner_uid, session, action, params, now)
    if action == "add_client":
        return _stage_add_client(session, params)
    if action == "view":
        return _view(params, now)
    if action == "search":
        return _search(owner_uid, params, now)
    if action == "summary":
        return _summary(owner_uid, now)
    return "clarify", reply or "Could you tell me which client, day and time you mean?", params, True, False, None


# ---------------- conflicts ----------------
def _conflict_data(owner_uid: str, client_name, start: datetime, end: datetime, conflicts: List[dict],
                   now: datetime, exclude_id: Optional[str] = None) -> Dict[str, Any]:
    duration = int((end - start).total_seconds() // 60)
    return {
        "requested": {"client_name": client_name, "start": start.isoformat(), "end": end.isoformat()},
        "conflicts": [{
            "id": c["id"],
            "client_name": _client_name(owner_uid, c["client_id"]),
            "start": c["start"],
            "end": c["end"],
            "priority": c.get("priority") or "normal",
        } for c in conflicts],
        "alternatives": find_free_slots(owner_uid, start, duration, exclude_id=exclude_id, now=now),
    }


def _conflict_reply(error: ConflictError) -> str:
    """Spoken reply for a blocked commit, offering the open times that day."""
    data = error.data or {}
    slots = data.get("alternatives") or []
    if not slots:
        return f"{error}. There are no other open times that day."
    times = ", ".join(_spoken_time(parse_iso(s["start"]).astimezone(get_tz()).strftime("%H:%M")) for s in slots)
    reply = f"{error}. Open times that day: {times}."
    insight = run_insight("conflict_resolution", data)
    if insight.get("ok") and insight["insight"].get("resolution"):
        reply += " " + str(insight["insight"]["resolution"])
    return reply


# ---------------- commit ----------------
def _commit(owner_uid: str, session: dict, now: datetime) -> Dict[str, Any]:
    pending = session.get("pending")
    if not pending:
        raise ValidationError("No action to confirm")
    kind = pending.get("kind")
    params = pending.get("parameters") or {}

    if kind == "schedule":
        if not (params.get("client_name") and params.get("date") and params.get("time")):
            raise ValidationError("Missing information for scheduling appointment")
        start = _resolve_start(params["date"], params["time"], now)
        duration = int(params.get("duration") or VOICE_DEFAULT_DURATION)
        end = start + timedelta(minutes=duration)

        # the overlap check and the write must not interleave with another commit
        with locked():
            conflicts = find_conflicts(owner_uid, start, end)
            if conflicts:
                first = conflicts[0]
                logger.info("Voice schedule for %r blocked by %s", params["client_name"], first["id"])
                raise ConflictError(
                    f"Cannot schedule: Overlaps with existing appointment for "
                    f"{_client_name(owner_uid, first['client_id'])} at {describe_slot(first)}",
                    data=_conflict_data(owner_uid, params.get("client_name"), start, end, conflicts, now),
                )

            client = find_client_by_fuzzy_name(params["client_name"], list_clients(owner_uid))
            if not client:
                client = create_client(owner_uid, params["client_name"], notes="Created via voice command",
                                       color=VOICE_CLIENT_COLOR)
                logger.info("Auto-created client %r from voice command", client["name"])
            provider = find_provider_by_name(owner_uid, params.get("provider"), get_settings().default_provider)

            created = create_appointment(owner_uid, {
                "client_id": client["id"],
                "provider_id": provider["id"] if provider else None,
                "start": start.isoformat(),
                "end": end.isoformat(),
                "duration": duration,
                "status": "scheduled",
                "notes": params.get("notes") or "Scheduled via voice command",
            }, now=now)
        appt = created["appointments"][0]
        message = f"Appointment scheduled for {client['name']} on {_spoken_start(start)}."
        return {"action": "schedule", "message": message, "appointment": appt}

    if kind == "reschedule":
        appt = get_appointment(owner_uid, params["appointment_id"])
        start = _resolve_start(params.get("date"), params.get("time"), now)
        duration = int(appt.get("duration") or RESCHEDULE_DEFAULT_DURATION)
        end = start + timedelta(minutes=duration)
        with locked():
            conflicts = find_conflicts(owner_uid, start, end, exclude_id=appt["id"])
            if conflicts:
                raise ConflictError(
                    "New time slot conflicts with an existing appointment",
                    data=_conflict_data(owner_uid, params.get("client_name"), start, end, conflicts, now,
                                        exclude_id=appt["id"]),
                )
            updated = update_appointment(owner_uid, appt["id"], {
                "start": start.isoformat(),
                "end": end.isoformat(),
                "duration": duration,
            }, now=now)["appointments"][0]
        message = f"{_whose(params)} moved to {_spoken_start(start)}."
        return {"action": "reschedule", "message": message, "appointment": updated}

    if kind == "cancel":
        appt = cancel_appointment(owner_uid, params["appointment_id"])
        return {"action": "cancel", "message": f"{_whose(params)} has been cancelled.",
                "appointment": appt}

    if kind == "delete":
        delete_appointment(owner_uid, params["appointment_id"])
        return {"action": "delete", "message": f"{_whose(params)} has been deleted.",
                "appointment": {"id": params["appointment_id"]}}

    if kind == "add_client":
        client = create_client(owner_uid, params["client_name"], email=params.get("email", ""),
                               phone=params.get("phone", ""), notes=params.get("notes", ""))
        return {"action": "add_client", "message": f"Added {client['name']} as a new client.", "client": client}

    raise ValidationError(f"Unknown pending action: {kind}")


def _load_session(owner_uid: str, session_id: str) -> dict:
    session = get_session(owner_uid, session_id)
    if not session:
        raise NotFoundError("Session not found")
    return session


def commit_pending(owner_uid: str, session: dict, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Apply the staged action. Conflicts leave it staged so it can be amended."""
    if now is None:
        now = now_local()
    try:
        outcome = _commit(owner_uid, session, now)
    except NotFoundError:
        # the appointment vanished since it was staged
        clear_pending(session)
        update_session(session)
        raise
    clear_pending(session)
    update_session(session)
    return outcome


def confirm_pending(owner_uid: str, session_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    session = _load_session(owner_uid, session_id)
    outcome = commit_pending(owner_uid, session, now=now)
    append_history(session, "assistant", outcome["message"])
    update_session(session)
    return dict(outcome, session_id=session["id"])


def cancel_pending(owner_uid: str, session_id: str) -> Dict[str, Any]:
    session = _load_session(owner_uid, session_id)
    pending = session.get("pending")
    if not pending:
        message = "Nothing to cancel"
    elif pending.get("kind") == "schedule":
        message = "Appointment cancelled"
    else:
        message = "Action cancelled"
    clear_pending(session)
    append_history(session, "assistant", message)
    update_session(session)
    return {"session_id": session["id"], "message": message}


# ---------------- entry point ----------------
def _extract(text: str, session: dict) -> dict:
    llm = extract_calendar_command(text, history=session.get("history"), pending=session.get("pending"))
    if llm.get("ok"):
        return normalize_command(llm["command"])
    logger.debug("Using rule-based extraction: %s", llm.get("error"))
    return normalize_command(parse_calendar_command(text, pending=session.get("pending")))


def process_command(owner_uid: str, text: str, session_id: Optional[str] = None,
                    now: Optional[datetime] = None) -> Dict[str, Any]:
    text = (text or "").strip()
    if not text:
        raise ValidationError("Empty command")
    if now is None:
        now = now_local()

    if session_id:
        session = get_session(owner_uid, session_id) or create_session(owner_uid, preferred_id=session_id)
    else:
        session = create_session(owner_uid)
    history_before: List[dict] = list(session.get("history") or [])
    pending = session.get("pending")
    append_history(session, "user", text)

    if pending and _is_answer(text, AFFIRMATIVE):
        try:
            outcome = commit_pending(owner_uid, session, now=now)
            result = _result(session, CALENDAR, "confirm", outcome["message"],
                             data=outcome.get("appointment") or outcome.get("client"))
        except ConflictError as e:
            result = _result(session, CALENDAR, "error", _conflict_reply(e), needs_clarification=True, data=e.data)
        except ServiceError as e:
            result = _result(session, CALENDAR, "error", str(e), needs_clarification=True)
    elif pending and _is_answer(text, NEGATIVE):
        message = "Appointment cancelled" if pending.get("kind") == "schedule" else "Action cancelled"
        clear_pending(session)
        result = _result(session, CALENDAR, "cancel_pending", message)
    else:
        request_type = classify_request(text, has_pending=bool(pending))
        session["last_request_type"] = request_type
        if request_type == GENERAL:
            answer = chat_with_llm(text, history=history_before)
            reply = answer["reply"] if answer.get("ok") else TROUBLE_MESSAGE
            result = _result(session, GENERAL, "general_response", reply)
        else:
            try:
                command = _extract(text, {"history": history_before, "pending": pending})
                action, response, params, clarify, confirm, data = _dispatch(owner_uid, session, command, now)
            except ServiceError as e:
                action, response, params, clarify, confirm, data = "error", str(e), {}, True, False, None
            logger.info("Voice command %r -> %s", text, action)
            result = _result(session, CALENDAR, action, response, parameters=params,
                             needs_clarification=clarify, needs_confirmation=confirm, data=data)

    append_history(session, "assistant", result["response"])
    update_session(session)
    result["pending"] = session.get("pending")
    return result
