# backend/routes/deps.py
from typing import Optional

from fastapi import Header, HTTPException

from services.auth_service import user_for_token
from services.errors import ConflictError, NotFoundError, ServiceError, ValidationError


def bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing token")
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing token")
    return token


def current_user(authorization: Optional[str] = Header(None)) -> str:
    """Owner uid of the caller; every record is scoped to it."""
    token = bearer_token(authorization)
    username = user_for_token(token)
    if not username:
        raise HTTPException(status_code=401, detail="Invalid token")
    return username


def to_http(e: ServiceError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ConflictError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
