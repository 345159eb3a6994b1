from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from routes.deps import bearer_token, current_user, to_http
from services.auth_service import authenticate, create_session_token, register_user, revoke_token
from services.errors import ServiceError

router = APIRouter()


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    token: str


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest):
    if not authenticate(req.username, req.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return {"token": create_session_token(req.username)}


@router.post("/register", response_model=TokenResponse, status_code=201)
def register(req: LoginRequest):
    try:
        register_user(req.username, req.password)
    except ServiceError as e:
        raise to_http(e)
    return {"token": create_session_token(req.username.strip())}


@router.get("/validate")
def validate(username: str = Depends(current_user)):
    return {"valid": True, "username": username}


@router.post("/logout", status_code=204)
def logout(token: str = Depends(bearer_token)):
    revoke_token(token)
