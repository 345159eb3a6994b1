from types import SimpleNamespace

from services import tts_service
from services.llm_service import _safe_extract_json_from_text, chat_with_llm, extract_calendar_command
from services.transcribe_service import transcript_problem
from utils.config import reload_settings


def test_clean_for_speech():
    text = "**Client:** John\nDate: *Friday*"
    assert tts_service.clean_for_speech(text) == "Client: John. Date: Friday"


def test_response_types():
    assert tts_service.response_type_for("schedule") == "appointment"
    assert tts_service.response_type_for("reschedule") == "appointment"
    assert tts_service.response_type_for("cancel") == "confirmation"
    assert tts_service.response_type_for("delete") == "confirmation"
    assert tts_service.response_type_for("schedule", needs_clarification=True) == "error"
    assert tts_service.response_type_for("general_response") == "general"


def test_voice_settings_per_type():
    s = tts_service.voice_settings_for("appointment")
    assert (s["stability"], s["similarity_boost"]) == (0.6, 0.9)
    assert s["style"] == 0.0 and s["use_speaker_boost"] is True
    assert tts_service.voice_settings_for("unknown")["stability"] == 0.5


def test_elevenlabs_request(monkeypatch):
    monkeypatch.setenv("ELEVENLABS_API_KEY", "xi-test")
    monkeypatch.setenv("ELEVENLABS_VOICE_ID", "voice-1")
    reload_settings()
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append({"url": url, "headers": headers, "json": json})
        return SimpleNamespace(status_code=200, content=b"abc", text="")

    monkeypatch.setattr(tts_service.requests, "post", fake_post)
    result = tts_service.text_to_speech_base64("Appointment **booked**", response_type="confirmation")
    assert result == {"ok": True, "audio_base64": "YWJj"}
    assert calls[0]["url"].endswith("/text-to-speech/voice-1")
    assert calls[0]["headers"]["xi-api-key"] == "xi-test"
    assert calls[0]["json"]["text"] == "Appointment booked"
    assert calls[0]["json"]["model_id"] == "eleven_monolingual_v1"
    assert calls[0]["json"]["voice_settings"]["stability"] == 0.7


def test_elevenlabs_failure_falls_back_to_gtts(monkeypatch):
    monkeypatch.setenv("ELEVENLABS_API_KEY", "xi-test")
    reload_settings()
    monkeypatch.setattr(tts_service.requests, "post",
                        lambda *a, **kw: SimpleNamespace(status_code=401, content=b"", text="bad key"))
    monkeypatch.setattr(tts_service, "_gtts_tts", lambda text, lang="en": {"ok": True, "audio_base64": "gtts"})
    assert tts_service.text_to_speech_base64("hello")["audio_base64"] == "gtts"


def test_transcript_problem():
    assert transcript_problem("").startswith("No speech detected")
    assert transcript_problem(" hi ").startswith("Only captured")
    assert transcript_problem("book john tomorrow") is None


def test_json_extraction_variants():
    fenced = 'Sure!\n```json\n{"action": "cancel", "parameters": {}}\n```'
    assert _safe_extract_json_from_text(fenced)["action"] == "cancel"
    braces = 'Here you go: {"action": "view", "parameters": {"view": "day"}} thanks'
    assert _safe_extract_json_from_text(braces)["parameters"] == {"view": "day"}
    kv = "Action: schedule\nClient: John\nTime: 14:00"
    assert _safe_extract_json_from_text(kv) == {
        "action": "schedule",
        "parameters": {"client_name": "John", "time": "14:00"},
    }
    assert _safe_extract_json_from_text("nothing here") is None


def test_llm_helpers_without_key():
    assert chat_with_llm("hello")["ok"] is True
    assert extract_calendar_command("book john")["ok"] is False


def test_offline_greeting_matches_whole_words():
    greeting = chat_with_llm("hey there")["reply"]
    assert greeting.startswith("Hi!")
    assert chat_with_llm("which city is the capital of Chile?")["reply"] != greeting
    assert chat_with_llm("this is a question")["reply"] != greeting
