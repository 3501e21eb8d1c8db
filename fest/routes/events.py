# fest/routes/events.py

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fest.auth_token import get_current_user, require_admin
from fest.database import get_db
from fest.models.user import User
from fest.responses import ok
from fest.schemas import EventCreate, EventRegister
from fest.services.events import EventService
from fest.services.registration import RegistrationService

router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/", status_code=201)
async def create_event(
    payload: EventCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_admin),
):
    event = await EventService(db).create_event(payload, admin.id)
    return ok(event, "Event created successfully", status_code=201)


@router.get("/")
async def list_events(
    expand: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    events = await EventService(db).list_events(expand=expand)
    return ok(events, "Events fetched")


@router.get("/{event_id}")
async def get_event(
    event_id: int,
    db: AsyncSession = Depends(get_db),
):
    event = await EventService(db).get_event_verbose(event_id)
    return ok(event, "Event fetched")


@router.post("/{event_id}/register", status_code=201)
async def register_for_event(
    event_id: int,
    payload: EventRegister,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    registration = await RegistrationService(db).register_for_event(
        event_id, user.id, team_id=payload.team_id
    )
    return ok(registration, "Registered successfully", status_code=201)


@router.get("/{event_id}/status")
async def registration_status(
    event_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = await RegistrationService(db).registration_status(event_id, user.id)
    return ok(data, "Registration status fetched")
