# backend/services/llm_service.py
"""
LLM service wrapper using OpenAI v1.x client.
Two uses: turning a calendar utterance into a structured command, and
answering general questions the assistant gets asked between bookings.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from utils.config import get_settings

logger = logging.getLogger(__name__)

CALENDAR_SYSTEM_PROMPT = (
    "You are a helpful voice assistant for a therapy calendar. Always respond in JSON format."
)
GENERAL_SYSTEM_PROMPT = (
    "You are a knowledgeable assistant built into a therapy practice calendar. "
    "Answer general questions accurately and conversationally. Keep answers short enough to be read aloud."
)

CALENDAR_INSTRUCTIONS = """You are a voice assistant for a therapy calendar application.

Available calendar actions:
- schedule: create an appointment (client_name, date, time, provider, duration)
- reschedule: move a client's existing appointment (client_name, original_date if mentioned, date, time)
- cancel: mark a client's appointment as cancelled (client_name, date if mentioned)
- delete: permanently remove a client's appointment (client_name, date if mentioned)
- view: open the calendar (view: month|week|day, date)
- add_client: add a new client (client_name, email, phone)
- search: look up a client's appointments (client_name)
- summary: summarize this week's schedule
- clarify: the request is unclear or missing information

Rules for parameters:
- date: keep relative words as spoken ("tomorrow", "next monday", "this friday") or use YYYY-MM-DD for explicit dates
- time: 24-hour HH:MM ("2 p.m." becomes "14:00")
- provider: only if mentioned
- duration: minutes, only if mentioned

Example: "Make an appointment tomorrow at 2 p.m. for John with Alex" ->
{"action": "schedule", "parameters": {"client_name": "John", "date": "tomorrow", "time": "14:00", "provider": "Alex"}, "response": "Scheduling John tomorrow at 2 PM with Alex.", "needs_clarification": false}

Respond with one JSON object with keys: action, parameters, response (a short friendly sentence), needs_clarification (boolean)."""

PENDING_TEMPLATE = """

IMPORTANT: There is currently a PENDING APPOINTMENT awaiting confirmation:
- Client: {client}
- Date: {date}
- Time: {time}
- Provider: {provider}
- Duration: {duration} minutes

If the user is changing any of these details (for example "I meant Friday" or "change to 3 PM"), respond with action "schedule" and only the changed parameters."""

INSIGHT_INSTRUCTIONS = {
    "weekly_summary": (
        "You are an expert therapy practice management assistant. Provide professional, actionable "
        "insights while maintaining client confidentiality. Respond in JSON with keys: summary, insights."
    ),
    "conflict_resolution": (
        "You are a therapy practice scheduling coordinator resolving appointment conflicts. Given the requested "
        "slot, the appointments it collides with and the open slots that day, suggest the best alternative in one "
        "short spoken sentence, considering client priority and minimal disruption. "
        "Respond in JSON with keys: resolution, alternative_slots, reasoning."
    ),
}


def _load_openai_key() -> Optional[str]:
    return get_settings().openai_api_key


def _create_client(api_key: str):
    try:
        from openai import OpenAI
    except ImportError as e:
        raise RuntimeError("OpenAI library not available: " + str(e))
    return OpenAI(api_key=api_key)


def _safe_extract_json_from_text(text: str) -> Optional[dict]:
    if not text:
        return None
    # fenced json
    m = re.search(r"```json\s*(\{[\s\S]*?\})\s*```", text, re.IGNORECASE)
    if m:
        try:
            return json.loads(m.group(1))
        except ValueError:
            pass
    # balanced braces
    start = text.find('{')
    if start != -1:
        depth = 0
        for i in range(start, len(text)):
            if text[i] == '{':
                depth += 1
            elif text[i] == '}':
                depth -= 1
                if depth == 0:
                    try:
                        return json.loads(text[start:i + 1])
                    except ValueError:
                        break
    # fallback kv lines ("action: schedule", "client: John")
    kv: Dict[str, Any] = {}
    params: Dict[str, Any] = {}
    for ln in text.splitlines():
        if ':' not in ln:
            continue
        k, v = ln.split(':', 1)
        k = k.strip().strip('-* ').lower().replace(" ", "_")
        v = v.strip().strip('",')
        if k == "action":
            kv["action"] = v.lower()
        elif k in ("client", "client_name"):
            params["client_name"] = v
        elif k in ("date", "time", "provider", "duration"):
            params[k] = v
    if kv:
        kv["parameters"] = params
        return kv
    return None


def _response_text(resp) -> str:
    text_out = ""
    try:
        text_out = resp.output_text if hasattr(resp, "output_text") else ""
    except Exception:
        text_out = ""

    if not text_out:
        out = getattr(resp, "output", None) or []
        parts = []
        for itm in out:
            for c in getattr(itm, "content", None) or []:
                if getattr(c, "type", None) == "output_text":
                    parts.append(getattr(c, "text", ""))
        text_out = " ".join(p for p in parts if p).strip()
    return text_out or ""


def _history_input(history: Optional[List[dict]], limit: int) -> List[dict]:
    items = []
    for msg in (history or [])[-limit:]:
        role = msg.get("role")
        if role in ("user", "assistant") and msg.get("content"):
            items.append({"role": role, "content": msg["content"]})
    return items


def _pending_block(pending: Optional[dict]) -> str:
    if not pending or pending.get("kind") != "schedule":
        return ""
    p = pending.get("parameters") or {}
    return PENDING_TEMPLATE.format(
        client=p.get("client_name") or "Unknown",
        date=p.get("date") or "Unknown",
        time=p.get("time") or "Unknown",
        provider=p.get("provider") or get_settings().default_provider,
        duration=p.get("duration") or 60,
    )


def chat_with_llm(prompt: str, system_prompt: Optional[str] = None,
                  history: Optional[List[dict]] = None) -> Dict[str, Any]:
    key = _load_openai_key()
    if not key:
        lower = prompt.lower()
        if re.search(r"\b(hi|hello|hey)\b", lower):
            reply = "Hi! I'm your calendar assistant. Try \"schedule John tomorrow at 2pm\"."
        else:
            reply = "No cloud LLM configured, so I can only help with calendar commands right now."
        return {"ok": True, "reply": reply}

    try:
        client = _create_client(key)
    except RuntimeError as e:
        return {"ok": False, "error": f"Failed to init OpenAI client: {e}"}

    try:
        resp = client.responses.create(
            model=get_settings().openai_model,
            instructions=system_prompt or GENERAL_SYSTEM_PROMPT,
            input=_history_input(history, 3) + [{"role": "user", "content": prompt}],
            max_output_tokens=600,
            temperature=0.7,
        )
        text_out = _response_text(resp)
        if not text_out:
            return {"ok": False, "error": "LLM returned empty response"}
        return {"ok": True, "reply": text_out.strip()}
    except Exception as e:
        logger.warning("General LLM call failed: %s", e)
        return {"ok": False, "error": f"LLM call failed: {e}"}


def extract_calendar_command(transcript: str, history: Optional[List[dict]] = None,
                             pending: Optional[dict] = None) -> Dict[str, Any]:
    """
    Ask the LLM for a structured calendar command.
    Returns {"ok": True, "command": {...}, "raw_text": "..."} or {"ok": False, "error": "..."}.
    """
    key = _load_openai_key()
    if not key:
        return {"ok": False, "error": "No OpenAI key configured"}

    try:
        client = _create_client(key)
    except RuntimeError as e:
        return {"ok": False, "error": f"OpenAI client init failed: {e}"}

    instructions = CALENDAR_SYSTEM_PROMPT + "\n\n" + CALENDAR_INSTRUCTIONS + _pending_block(pending)
    try:
        resp = client.responses.create(
            model=get_settings().openai_model,
            instructions=instructions,
            input=_history_input(history, 4) + [{"role": "user", "content": transcript}],
            text={"format": {"type": "json_object"}},
            max_output_tokens=512,
            temperature=0.0,
        )
        text_out = _response_text(resp)
        if not text_out:
            return {"ok": False, "error": "LLM returned no text for command extraction"}

        parsed = _safe_extract_json_from_text(text_out)
        if parsed is None:
            return {"ok": False, "error": "Failed to parse JSON from LLM output", "raw": text_out}
        return {"ok": True, "command": parsed, "raw_text": text_out}
    except Exception as e:
        logger.warning("Calendar command extraction failed: %s", e)
        return {"ok": False, "error": f"LLM extraction failed: {e}"}


def run_insight(kind: str, payload: dict) -> Dict[str, Any]:
    """
    Short narrated insight over practice data.
    kind="weekly_summary" answers with {summary, insights};
    kind="conflict_resolution" answers with {resolution, alternative_slots, reasoning}.
    """
    key = _load_openai_key()
    if not key:
        return {"ok": False, "error": "No OpenAI key configured"}
    try:
        client = _create_client(key)
        resp = client.responses.create(
            model=get_settings().openai_model,
            instructions=INSIGHT_INSTRUCTIONS.get(kind, INSIGHT_INSTRUCTIONS["weekly_summary"]),
            input=[{"role": "user", "content": f"{kind}:\n{json.dumps(payload, indent=2)}"}],
            text={"format": {"type": "json_object"}},
            max_output_tokens=600,
        )
        parsed = _safe_extract_json_from_text(_response_text(resp))
        if not parsed:
            return {"ok": False, "error": "Insight response was not JSON"}
        return {"ok": True, "insight": parsed}
    except Exception as e:
        logger.warning("Insight call failed: %s", e)
        return {"ok": False, "error": f"Insight failed: {e}"}
