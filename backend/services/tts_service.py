# backend/services/tts_service.py
"""
TTS service. Prefer ElevenLabs when an API key is configured,
fall back to gTTS otherwise. Returns base64-encoded mp3 audio.
"""

import base64
import io
import logging
import re

import requests

from utils.config import get_settings

logger = logging.getLogger(__name__)

ELEVEN_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
ELEVEN_MODEL = "eleven_monolingual_v1"

DEFAULT_VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.8,
    "style": 0.0,
    "use_speaker_boost": True,
}
RESPONSE_TYPE_SETTINGS = {
    "general": {"stability": 0.5, "similarity_boost": 0.8},
    "appointment": {"stability": 0.6, "similarity_boost": 0.9},
    "confirmation": {"stability": 0.7, "similarity_boost": 0.8},
    "error": {"stability": 0.4, "similarity_boost": 0.7},
}


def clean_for_speech(text: str) -> str:
    s = re.sub(r"\*\*(.*?)\*\*", r"\1", text or "")
    s = re.sub(r"\*(.*?)\*", r"\1", s)
    s = re.sub(r"\s*\n+\s*", ". ", s)
    s = re.sub(r"\.(\s*\.)+", ".", s)
    return s.strip()


def response_type_for(action: str, needs_clarification: bool = False) -> str:
    if needs_clarification or action in ("error", "clarify"):
        return "error"
    if action in ("schedule", "reschedule"):
        return "appointment"
    if action in ("cancel", "delete"):
        return "confirmation"
    return "general"


def voice_settings_for(response_type: str) -> dict:
    settings = dict(DEFAULT_VOICE_SETTINGS)
    settings.update(RESPONSE_TYPE_SETTINGS.get(response_type, {}))
    return settings


def _eleven_tts(text: str, response_type: str) -> dict:
    cfg = get_settings()
    url = ELEVEN_URL.format(voice_id=cfg.elevenlabs_voice_id)
    headers = {
        "Accept": "audio/mpeg",
        "xi-api-key": cfg.elevenlabs_api_key,
        "Content-Type": "application/json",
    }
    payload = {
        "text": text,
        "model_id": ELEVEN_MODEL,
        "voice_settings": voice_settings_for(response_type),
    }
    try:
        resp = requests.post(url, headers=headers, json=payload, timeout=30)
    except requests.RequestException as e:
        return {"ok": False, "error": f"ElevenLabs request failed: {e}"}
    if resp.status_code != 200:
        return {"ok": False, "error": f"ElevenLabs TTS failed: {resp.status_code} {resp.text}"}
    return {"ok": True, "audio_base64": base64.b64encode(resp.content).decode("utf-8")}


def _gtts_tts(text: str, lang: str = "en") -> dict:
    try:
        from gtts import gTTS
        mp3_fp = io.BytesIO()
        gTTS(text=text, lang=lang, slow=False).write_to_fp(mp3_fp)
        mp3_fp.seek(0)
        return {"ok": True, "audio_base64": base64.b64encode(mp3_fp.read()).decode("utf-8")}
    except Exception as e:
        return {"ok": False, "error": f"gTTS failed: {e}"}


def text_to_speech_base64(text: str, response_type: str = "general", lang: str = "en") -> dict:
    spoken = clean_for_speech(text)
    if not spoken:
        return {"ok": False, "error": "Nothing to speak"}
    if get_settings().elevenlabs_api_key:
        r = _eleven_tts(spoken, response_type)
        if r.get("ok"):
            return r
        logger.warning("%s; falling back to gTTS", r.get("error"))
    return _gtts_tts(spoken, lang=lang)
