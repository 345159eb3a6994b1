# backend/routes/providers.py
from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, EmailStr

from routes.deps import current_user, to_http
from services.errors import ServiceError
from services.provider_service import (
    create_provider,
    delete_provider,
    get_provider,
    list_providers,
    update_provider,
)

router = APIRouter()


class ProviderIn(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    title: Optional[str] = None
    color: Optional[str] = None


@router.get("")
def api_list_providers(owner: str = Depends(current_user)):
    return list_providers(owner)


@router.post("", status_code=201)
def api_create_provider(payload: ProviderIn, owner: str = Depends(current_user)):
    try:
        return create_provider(owner, name=payload.name or "", email=payload.email or "",
                               title=payload.title or "", color=payload.color or "")
    except ServiceError as e:
        raise to_http(e)


@router.get("/{provider_id}")
def api_get_provider(provider_id: str, owner: str = Depends(current_user)):
    try:
        return get_provider(owner, provider_id)
    except ServiceError as e:
        raise to_http(e)


@router.put("/{provider_id}")
def api_update_provider(provider_id: str, payload: ProviderIn, owner: str = Depends(current_user)):
    try:
        return update_provider(owner, provider_id, payload.model_dump(exclude_none=True))
    except ServiceError as e:
        raise to_http(e)


@router.delete("/{provider_id}", status_code=204)
def api_delete_provider(provider_id: str, owner: str = Depends(current_user)):
    try:
        delete_provider(owner, provider_id)
    except ServiceError as e:
        raise to_http(e)
    return Response(status_code=204)
