# backend/services/transcribe_service.py
"""
Transcription service.
Uses OpenAI whisper-1 when a key is configured; otherwise falls back to a
local faster-whisper model if that package is installed.
"""

import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from utils.config import get_settings

logger = logging.getLogger(__name__)

WHISPER_PROMPT = (
    "This is a voice command for a therapy calendar application. Commands may include "
    "scheduling, cancelling, deleting or rescheduling appointments for clients, with days "
    "like Monday or tomorrow and times like 2 PM."
)
MIN_TRANSCRIPT_LENGTH = 3


def _openai_transcribe(key: str, file_bytes: bytes, filename_hint: str) -> dict:
    try:
        from openai import OpenAI
    except ImportError as e:
        return {"ok": False, "error": f"OpenAI library not available: {e}"}
    try:
        client = OpenAI(api_key=key)
        audio_file = io.BytesIO(file_bytes)
        audio_file.name = filename_hint
        resp = client.audio.transcriptions.create(
            model="whisper-1",
            file=audio_file,
            language="en",
            temperature=0,
            prompt=WHISPER_PROMPT,
        )
        text = getattr(resp, "text", None) or ""
        return {"ok": True, "text": text.strip()}
    except Exception as e:
        logger.warning("OpenAI transcription failed: %s", e)
        return {"ok": False, "error": f"OpenAI transcription attempt failed: {e}"}


def _local_transcribe(file_bytes: bytes, filename_hint: str) -> dict:
    try:
        from faster_whisper import WhisperModel
    except ImportError:
        return {
            "ok": False,
            "error": (
                "No working transcription method available. Set OPENAI_API_KEY for cloud "
                "transcription, or install the local model with: pip install faster-whisper"
            ),
        }
    tmp_path = None
    try:
        model = WhisperModel("small", device="cpu", compute_type="int8")
        with tempfile.NamedTemporaryFile(delete=False, suffix=Path(filename_hint).suffix) as tf:
            tf.write(file_bytes)
            tmp_path = tf.name
        segments, _info = model.transcribe(tmp_path, beam_size=5, language="en", initial_prompt=WHISPER_PROMPT)
        text = " ".join(segment.text for segment in segments).strip()
        return {"ok": True, "text": text}
    except Exception as e:
        logger.warning("Local transcription failed: %s", e)
        return {"ok": False, "error": f"Local transcription failed: {e}"}
    finally:
        if tmp_path and os.path.exists(tmp_path):
            os.remove(tmp_path)


def transcribe_audio_bytes(file_bytes: bytes, filename_hint: str = "audio.webm") -> dict:
    """
    Returns: {"ok": True, "text": "..."} or {"ok": False, "error": "..."}
    """
    if not file_bytes:
        return {"ok": False, "error": "Empty audio upload"}
    key = get_settings().openai_api_key
    if key:
        return _openai_transcribe(key, file_bytes, filename_hint)
    return _local_transcribe(file_bytes, filename_hint)


def transcript_problem(text: Optional[str]) -> Optional[str]:
    """Message explaining why a transcript is unusable, or None if it is fine."""
    cleaned = (text or "").strip()
    if not cleaned:
        return "No speech detected. Please speak clearly and try again."
    if len(cleaned) < MIN_TRANSCRIPT_LENGTH:
        return f"Only captured \"{cleaned}\". Please speak a full command."
    return None
