import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routes import appointments, auth, clients, providers, voice
from utils.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Therapy Calendar - Voice Scheduling Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials="*" not in settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api/auth")
app.include_router(clients.router, prefix="/api/clients")
app.include_router(providers.router, prefix="/api/providers")
app.include_router(appointments.router, prefix="/api/appointments")
app.include_router(voice.router, prefix="/api/voice")

logger.info(
    "Backend configured: data_dir=%s openai=%s elevenlabs=%s tz=%s",
    settings.data_dir,
    "yes" if settings.openai_api_key else "no",
    "yes" if settings.elevenlabs_api_key else "no",
    settings.timezone,
)


@app.get("/")
def root():
    return {"status": "ok", "message": "Therapy calendar backend is running"}


@app.get("/healthz")
def healthz():
    return {"ok": True}
