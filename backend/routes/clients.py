# backend/routes/clients.py
from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, EmailStr

from routes.deps import current_user, to_http
from services.client_service import create_client, delete_client, get_client, list_clients, update_client
from services.errors import ServiceError

router = APIRouter()


class ClientIn(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    color: Optional[str] = None
    notes: Optional[str] = None


@router.get("")
def api_list_clients(owner: str = Depends(current_user)):
    return list_clients(owner)


@router.post("", status_code=201)
def api_create_client(payload: ClientIn, owner: str = Depends(current_user)):
    try:
        return create_client(
            owner,
            name=payload.name or "",
            email=payload.email or "",
            phone=payload.phone or "",
            color=payload.color,
            notes=payload.notes or "",
        )
    except ServiceError as e:
        raise to_http(e)


@router.get("/{client_id}")
def api_get_client(client_id: str, owner: str = Depends(current_user)):
    try:
        return get_client(owner, client_id)
    except ServiceError as e:
        raise to_http(e)


@router.put("/{client_id}")
def api_update_client(client_id: str, payload: ClientIn, owner: str = Depends(current_user)):
    try:
        return update_client(owner, client_id, payload.model_dump(exclude_none=True))
    except ServiceError as e:
        raise to_http(e)


@router.delete("/{client_id}", status_code=204)
def api_delete_client(client_id: str, owner: str = Depends(current_user)):
    try:
        delete_client(owner, client_id)
    except ServiceError as e:
        raise to_http(e)
    return Response(status_code=204)
