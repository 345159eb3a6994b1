# backend/services/intent_service.py
"""
Request routing and rule-based command extraction for the voice assistant.

classify_request() decides whether an utterance is about the calendar or is a
general question. parse_calendar_command() is the offline extractor used when
no LLM is configured (or the LLM call fails); it produces the same command
shape the LLM is prompted for, which normalize_command() then cleans up.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from services.time_utils import parse_time_of_day

CALENDAR = "CALENDAR"
GENERAL = "GENERAL"

APPOINTMENT_TRIGGERS = [
    "make an appointment", "schedule an appointment", "book an appointment",
    "cancel appointment", "delete appointment", "reschedule appointment",
    "schedule", "book", "cancel", "delete", "reschedule", "client",
]
TIME_CHANGE_TRIGGERS = [
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "tomorrow", "today", "next week", "meant", "change", "instead",
]

ACTIONS = ("schedule", "reschedule", "cancel", "delete", "view", "add_client",
           "update", "search", "summary", "clarify")
VIEWS = ("month", "week", "day")

WEEKDAY_FULL = r"(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)"
WEEKDAY_ANY = r"(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday|mon|tues|tue|wed|thurs|thu|fri|sat|sun)"
MONTHS = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?"

DATE_PATTERNS = [
    re.compile(r"\b(?:next|this)\s+" + WEEKDAY_ANY + r"\b"),
    re.compile(r"\b(?:today|tomorrow|next week)\b"),
    re.compile(r"\b" + WEEKDAY_FULL + r"\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b"),
    re.compile(r"\b" + MONTHS + r"\s+\d{1,2}(?:st|nd|rd|th)?(?:,?\s+\d{4})?\b"),
]
TIME_PATTERNS = [
    re.compile(r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.)"),
    re.compile(r"\b(?:noon|midnight)\b"),
    re.compile(r"\bat\s+(\d{1,2}(?::\d{2})?)\b(?!\s*/)"),
    re.compile(r"\b\d{1,2}:\d{2}\b"),
]
DURATION_MINUTES_RE = re.compile(r"\b(\d{1,3})[\s-]*(?:minutes?|mins?)\b")
DURATION_HOURS_RE = re.compile(r"\b(\d(?:\.\d)?)\s*hours?\b")
EMAIL_RE = re.compile(r"[\w\.-]+@[\w\.-]+\.\w+")
PHONE_RE = re.compile(r"\+?\d[\d\-\s().]{6,}\d")
PROVIDER_RE = re.compile(r"\bwith\s+(?:dr\.?\s+|doctor\s+)?([A-Za-z][A-Za-z'\-]*)", re.I)
WORD_RE = re.compile(r"[A-Za-z][A-Za-z'\-]*|\S+")

STOP_WORDS = {
    "on", "at", "tomorrow", "today", "next", "this", "with", "from", "to", "in",
    "the", "a", "an", "for", "and", "please", "appointment", "appointments",
    "session", "sessions", "meeting", "am", "pm", "it", "that", "my", "me",
    "instead", "week", "month", "day", "noon", "midnight", "named", "called",
    "client", "new", "who", "is", "up", "her", "his", "their", "of",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
    "january", "february", "march", "april", "june", "july", "august",
    "september", "october", "november", "december",
}
NAME_MARKERS = {"for", "named", "called", "client"}
VERB_MARKERS = {"book", "schedule", "cancel", "delete", "remove", "reschedule", "move", "find", "search"}
LEADING_FILLERS = {"an", "a", "the", "appointment", "appointments", "session", "in", "up", "my", "client"}


def _contains_any(text: str, phrases: List[str]) -> bool:
    return any(p in text for p in phrases)


def classify_request(transcript: str, has_pending: bool = False) -> str:
    lower = (transcript or "").lower()
    if _contains_any(lower, APPOINTMENT_TRIGGERS):
        return CALENDAR
    if has_pending and _contains_any(lower, TIME_CHANGE_TRIGGERS):
        return CALENDAR
    return GENERAL


# ---------------- extraction helpers ----------------
def _find_dates(lower: str) -> List[str]:
    spans: List[Tuple[int, int]] = []
    found = []
    for pattern in DATE_PATTERNS:
        for m in pattern.finditer(lower):
            if any(m.start() < e and m.end() > s for s, e in spans):
                continue
            spans.append((m.start(), m.end()))
            found.append((m.start(), m.group(0)))
    return [phrase for _, phrase in sorted(found)]


def _find_times(lower: str) -> List[str]:
    spans: List[Tuple[int, int]] = []
    found = []
    for pattern in TIME_PATTERNS:
        for m in pattern.finditer(lower):
            start, end = m.span(1) if m.groups() else m.span()
            if any(start < e and end > s for s, e in spans):
                continue
            spans.append((start, end))
            found.append((start, lower[start:end]))
    result = []
    for _, phrase in sorted(found):
        parsed = parse_time_of_day(phrase)
        if parsed is not None:
            result.append(parsed.strftime("%H:%M"))
    return result


def _find_duration(lower: str) -> Optional[int]:
    m = DURATION_MINUTES_RE.search(lower)
    if m:
        return int(m.group(1))
    if "half an hour" in lower or "half hour" in lower:
        return 30
    if "hour and a half" in lower:
        return 90
    m = DURATION_HOURS_RE.search(lower)
    if m:
        return int(float(m.group(1)) * 60)
    if re.search(r"\b(?:an|one)\s+hour\b", lower):
        return 60
    return None


def _is_name_word(word: str) -> bool:
    return bool(re.fullmatch(r"[A-Za-z][A-Za-z'\-]*", word)) and word.lower() not in STOP_WORDS


def _collect_name(words: List[str], start: int, skip_fillers: bool = False) -> Optional[str]:
    i = start
    if skip_fillers:
        while i < len(words) and words[i].lower() in LEADING_FILLERS:
            i += 1
    parts = []
    while i < len(words) and len(parts) < 3:
        word = words[i]
        possessive = word.lower().endswith("'s")
        if possessive:
            word = word[:-2]
        if not _is_name_word(word) or word.lower() in VERB_MARKERS:
            break
        parts.append(word)
        i += 1
        if possessive:
            break
    return " ".join(parts) if parts else None


def _find_client_name(text: str) -> Optional[str]:
    words = WORD_RE.findall(text)
    lowered = [w.lower() for w in words]

    # "John Smith's appointment"
    for i, w in enumerate(lowered):
        if w.endswith("'s") and i + 1 < len(lowered) and lowered[i + 1] in ("appointment", "session", "meeting"):
            name = words[i][:-2]
            if not _is_name_word(name):
                continue
            if i > 0 and _is_name_word(words[i - 1]) and lowered[i - 1] not in VERB_MARKERS:
                return f"{words[i - 1]} {name}"
            return name

    for i, w in enumerate(lowered):
        if w in NAME_MARKERS:
            name = _collect_name(words, i + 1)
            if name:
                return name

    for i, w in enumerate(lowered):
        if w in VERB_MARKERS:
            name = _collect_name(words, i + 1, skip_fillers=True)
            if name:
                return name
    return None


def _find_provider(text: str) -> Optional[str]:
    m = PROVIDER_RE.search(text)
    if m and m.group(1).lower() not in STOP_WORDS:
        return m.group(1)
    return None


def _detect_action(lower: str) -> Optional[str]:
    if re.search(r"\b(?:add|create|new)\s+(?:a\s+)?(?:new\s+)?client\b", lower):
        return "add_client"
    if re.search(r"\b(?:reschedule|move|push)\b", lower):
        return "reschedule"
    if re.search(r"\b(?:delete|remove)\b", lower):
        return "delete"
    if "cancel" in lower:
        return "cancel"
    if re.search(r"\b(?:summary|how many|total hours)\b", lower):
        return "summary"
    if re.search(r"\b(?:show|view|display|open|go to)\b", lower):
        return "view"
    if re.search(r"\b(?:find|search|look up|when is)\b", lower):
        return "search"
    if re.search(r"\b(?:schedule|book|set up|make an appointment)\b", lower):
        return "schedule"
    return None


def parse_calendar_command(transcript: str, pending: Optional[dict] = None) -> Dict[str, Any]:
    text = (transcript or "").strip()
    lower = text.lower()
    action = _detect_action(lower)
    dates = _find_dates(lower)
    times = _find_times(lower)
    params: Dict[str, Any] = {}

    if action is None and pending and (dates or times):
        # "I meant Thursday" / "make it 3pm instead"
        action = "schedule" if pending.get("kind") in ("schedule", "reschedule") else None
        if action:
            if dates:
                params["date"] = dates[-1]
            if times:
                params["time"] = times[-1]
            return {"action": action, "parameters": params, "response": "Updated the pending appointment.",
                    "needs_clarification": False}

    if action is None:
        return {
            "action": "clarify",
            "parameters": {},
            "response": "I can schedule, reschedule, cancel or delete appointments. What would you like to do?",
            "needs_clarification": True,
        }

    if action == "add_client":
        m = re.search(r"\b(?:named|called)\s+(.+?)(?:\s+(?:with|email|phone|and)\b|$)", text, re.I)
        name = m.group(1).strip(" .,") if m else None
        if not name:
            m = re.search(r"\bclient\s+([A-Za-z][A-Za-z'\-]*(?:\s+[A-Za-z][A-Za-z'\-]*)?)", text, re.I)
            name = m.group(1) if m and _is_name_word(m.group(1).split()[0]) else None
        params["client_name"] = name
        email = EMAIL_RE.search(text)
        if email:
            params["email"] = email.group(0)
        phone = PHONE_RE.search(text)
        if phone:
            params["phone"] = phone.group(0).strip()
        return {"action": action, "parameters": params, "response": "", "needs_clarification": not name}

    if action == "view":
        params["view"] = next((v for v in VIEWS if v in lower), "day" if dates and dates[0] in ("today", "tomorrow") else "week")
        params["date"] = dates[0] if dates else "today"
        return {"action": action, "parameters": params, "response": "", "needs_clarification": False}

    if action == "summary":
        return {"action": action, "parameters": params, "response": "", "needs_clarification": False}

    params["client_name"] = _find_client_name(text)

    if action == "reschedule":
        if len(dates) >= 2:
            params["original_date"] = dates[0]
        if dates:
            params["date"] = dates[-1]
        if times:
            params["time"] = times[-1]
    elif action in ("cancel", "delete", "search"):
        if dates:
            params["date"] = dates[0]
    else:
        if dates:
            params["date"] = dates[0]
        if times:
            params["time"] = times[0]
        provider = _find_provider(text)
        if provider:
            params["provider"] = provider
        duration = _find_duration(lower)
        if duration:
            params["duration"] = duration

    params = {k: v for k, v in params.items() if v not in (None, "")}
    needs_clarification = "client_name" not in params and not (pending and action == "schedule")
    return {"action": action, "parameters": params, "response": "", "needs_clarification": needs_clarification}


def normalize_command(raw: Optional[dict]) -> Dict[str, Any]:
    """Coerce an LLM or rule-based command into {action, parameters, response, needs_clarification}."""
    raw = raw or {}
    action = str(raw.get("action") or "clarify").strip().lower()
    if action not in ACTIONS:
        action = "clarify"
    src = raw.get("parameters") or {}
    if not isinstance(src, dict):
        src = {}

    params: Dict[str, Any] = {}
    client_name = src.get("client_name") or src.get("clientName")
    if client_name:
        params["client_name"] = str(client_name).strip()

    new_date = src.get("newDate") or src.get("new_date")
    date = src.get("date")
    if new_date:
        params["date"] = new_date
        original = src.get("original_date") or src.get("originalDate") or date
        if original:
            params["original_date"] = original
    elif date:
        params["date"] = date
        if src.get("original_date") or src.get("originalDate"):
            params["original_date"] = src.get("original_date") or src.get("originalDate")

    time_value = src.get("newTime") or src.get("new_time") or src.get("time")
    if time_value:
        parsed = parse_time_of_day(time_value)
        params["time"] = parsed.strftime("%H:%M") if parsed else str(time_value)

    for key in ("provider", "view", "email", "phone", "notes"):
        if src.get(key):
            params[key] = str(src[key]).strip()
    if src.get("providerId") and "provider" not in params:
        params["provider"] = str(src["providerId"])
    if params.get("view") and params["view"] not in VIEWS:
        params["view"] = "week"

    duration = src.get("duration")
    if duration not in (None, ""):
        try:
            params["duration"] = int(float(duration))
        except (TypeError, ValueError):
            pass

    return {
        "action": action,
        "parameters": params,
        "response": str(raw.get("response") or ""),
        "needs_clarification": bool(raw.get("needs_clarification", False)),
    }
