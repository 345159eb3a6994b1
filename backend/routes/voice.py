# backend/routes/voice.py
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from routes.deps import current_user, to_http
from services.errors import ConflictError, ServiceError
from services.session_service import get_session
from services.transcribe_service import transcribe_audio_bytes, transcript_problem
from services.tts_service import response_type_for, text_to_speech_base64
from services.voice_command_service import cancel_pending, confirm_pending, process_command

router = APIRouter()


# --- request models ---
class CommandRequest(BaseModel):
    text: str
    session_id: Optional[str] = None
    speak: bool = False


class SessionRequest(BaseModel):
    session_id: str
    speak: bool = False


def _with_audio(result: dict, text: str, response_type: str, speak: bool) -> dict:
    if speak:
        tts = text_to_speech_base64(text, response_type=response_type)
        result["audio_base64"] = tts.get("audio_base64") if tts.get("ok") else None
    return result


def _run_command(owner: str, text: str, session_id: Optional[str], speak: bool) -> dict:
    try:
        result = process_command(owner, text, session_id=session_id)
    except ServiceError as e:
        raise to_http(e)
    rtype = response_type_for(result["action"], result["needs_clarification"])
    return _with_audio(result, result["response"], rtype, speak)


# ---------------- routes ----------------
@router.post("/command")
def command(req: CommandRequest, owner: str = Depends(current_user)):
    return _run_command(owner, req.text, req.session_id, req.speak)


@router.post("/transcribe")
async def transcribe(file: UploadFile = File(...),
                     session_id: Optional[str] = Form(None),
                     speak: bool = Form(False),
                     owner: str = Depends(current_user)):
    content = await file.read()
    result = transcribe_audio_bytes(content, filename_hint=file.filename or "audio.webm")
    if not result.get("ok"):
        raise HTTPException(status_code=502, detail=result.get("error"))
    problem = transcript_problem(result.get("text"))
    if problem:
        raise HTTPException(status_code=422, detail=problem)
    out = _run_command(owner, result["text"], session_id, speak)
    out["transcript"] = result["text"]
    return out


@router.post("/confirm")
def confirm(req: SessionRequest, owner: str = Depends(current_user)):
    try:
        result = confirm_pending(owner, req.session_id)
    except ConflictError as e:
        # the action stays pending; offer the open times alongside the error
        return JSONResponse(status_code=409, content={"detail": str(e), **(e.data or {})})
    except ServiceError as e:
        raise to_http(e)
    return _with_audio(result, result["message"], "confirmation", req.speak)


@router.post("/cancel")
def cancel(req: SessionRequest, owner: str = Depends(current_user)):
    try:
        result = cancel_pending(owner, req.session_id)
    except ServiceError as e:
        raise to_http(e)
    return _with_audio(result, result["message"], "confirmation", req.speak)


@router.get("/sessions/{session_id}")
def session_detail(session_id: str, owner: str = Depends(current_user)):
    session = get_session(owner, session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found")
    return session
