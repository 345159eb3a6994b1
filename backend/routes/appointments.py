# backend/routes/appointments.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel

from routes.deps import current_user, to_http
from services.appointment_service import (
    cancel_appointment,
    create_appointment,
    delete_appointment,
    find_conflicts,
    find_overlapping_pairs,
    get_appointment,
    list_appointments,
    list_reminders,
    update_appointment,
    weekly_summary,
)
from services.errors import ServiceError

router = APIRouter()


class AppointmentIn(BaseModel):
    client_id: Optional[str] = None
    provider_id: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    duration: Optional[int] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    repeats: Optional[str] = None


@router.get("")
def api_list_appointments(client_id: Optional[str] = Query(None),
                          start: Optional[str] = Query(None),
                          end: Optional[str] = Query(None),
                          owner: str = Depends(current_user)):
    try:
        return list_appointments(owner, client_id=client_id, start=start, end=end)
    except ServiceError as e:
        raise to_http(e)


@router.post("", status_code=201)
def api_create_appointment(payload: AppointmentIn, owner: str = Depends(current_user)):
    try:
        return create_appointment(owner, payload.model_dump())
    except ServiceError as e:
        raise to_http(e)


# fixed paths are declared before /{appointment_id}
@router.get("/conflicts")
def api_conflicts(start: str, end: str, exclude_id: Optional[str] = None, owner: str = Depends(current_user)):
    try:
        return find_conflicts(owner, start, end, exclude_id=exclude_id)
    except ServiceError as e:
        raise to_http(e)


@router.get("/overlaps")
def api_overlaps(owner: str = Depends(current_user)):
    return find_overlapping_pairs(owner)


@router.get("/summary/week")
def api_weekly_summary(owner: str = Depends(current_user)):
    return weekly_summary(owner)


@router.get("/reminders")
def api_reminders(owner: str = Depends(current_user)):
    return list_reminders(owner)


@router.get("/{appointment_id}")
def api_get_appointment(appointment_id: str, owner: str = Depends(current_user)):
    try:
        return get_appointment(owner, appointment_id)
    except ServiceError as e:
        raise to_http(e)


@router.put("/{appointment_id}")
def api_update_appointment(appointment_id: str, payload: AppointmentIn, owner: str = Depends(current_user)):
    try:
        return update_appointment(owner, appointment_id, payload.model_dump(exclude_none=True))
    except ServiceError as e:
        raise to_http(e)


@router.post("/{appointment_id}/cancel")
def api_cancel_appointment(appointment_id: str, owner: str = Depends(current_user)):
    try:
        return cancel_appointment(owner, appointment_id)
    except ServiceError as e:
        raise to_http(e)


@router.delete("/{appointment_id}", status_code=204)
def api_delete_appointment(appointment_id: str, owner: str = Depends(current_user)):
    try:
        delete_appointment(owner, appointment_id)
    except ServiceError as e:
        raise to_http(e)
    return Response(status_code=204)
