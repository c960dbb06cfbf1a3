import asyncio
import contextlib
from datetime import date
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, Depends, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from appointments import SqlAppointmentLookup
from database import async_session, get_session, init_db
from logging_config import get_logger, setup_structured_logging
from models import Appointment, AppointmentStatus
from settings import HOLD_CLEANUP_INTERVAL_SECONDS, HOST, LOG_LEVEL, PORT
from slot_holds import (
    HOLD_ERROR_MESSAGES,
    HeldSlot,
    HoldCheck,
    HoldError,
    HoldResult,
    SlotHoldManager,
    slot_start,
)
from sweeper import HoldSweeper

setup_structured_logging(LOG_LEVEL)
logger = get_logger(__name__)

app = FastAPI(title="Appointment Slot Holds")

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

# Business rejections are conflicts; only a storage failure is a 503
HOLD_ERROR_STATUS = {
    HoldError.SESSION_REQUIRED: status.HTTP_400_BAD_REQUEST,
    HoldError.SLOT_HELD_BY_OTHER: status.HTTP_409_CONFLICT,
    HoldError.SLOT_ALREADY_BOOKED: status.HTTP_409_CONFLICT,
    HoldError.HOLD_CREATE_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}

appointment_lookup = SqlAppointmentLookup()
slot_hold_manager = SlotHoldManager(async_session, appointment_lookup)
sweeper = HoldSweeper(slot_hold_manager, interval=HOLD_CLEANUP_INTERVAL_SECONDS)


def get_manager() -> SlotHoldManager:
    return slot_hold_manager


# Pydantic Schemas for Request/Response
class SlotHoldRequest(BaseModel):
    professional_id: str = Field(min_length=1)
    slot_date: date
    slot_time: str = Field(pattern=HHMM_PATTERN)
    session_id: str = Field(min_length=1)


class AppointmentCreate(BaseModel):
    professional_id: str = Field(min_length=1)
    slot_date: date
    slot_time: str = Field(pattern=HHMM_PATTERN)
    patient_name: str = Field(min_length=1)
    session_id: Optional[str] = None


class ReleaseResponse(BaseModel):
    released: bool


class CleanupResponse(BaseModel):
    cleaned_up: int


@app.on_event("startup")
async def on_startup():
    await init_db()
    app.state.sweeper_task = asyncio.create_task(sweeper.start())


@app.on_event("shutdown")
async def on_shutdown():
    sweeper.stop()
    app.state.sweeper_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await app.state.sweeper_task


# --- Endpoint 1: POST /slot-holds (create or extend) ---
@app.post("/slot-holds", response_model=HoldResult)
async def hold_slot(
    hold_data: SlotHoldRequest,
    manager: SlotHoldManager = Depends(get_manager)
):
    result = await manager.create_slot_hold(
        hold_data.professional_id,
        hold_data.slot_date,
        slot_start(hold_data.slot_date, hold_data.slot_time),
        hold_data.session_id,
    )
    if not result.success:
        raise HTTPException(
            status_code=HOLD_ERROR_STATUS[result.error],
            detail={"error": result.error.value, "message": result.message}
        )
    return result


# --- Endpoint 2: POST /slot-holds/release ---
@app.post("/slot-holds/release", response_model=ReleaseResponse)
async def release_slot(
    hold_data: SlotHoldRequest,
    manager: SlotHoldManager = Depends(get_manager)
):
    released = await manager.release_slot_hold(
        hold_data.professional_id,
        hold_data.slot_date,
        slot_start(hold_data.slot_date, hold_data.slot_time),
        hold_data.session_id,
    )
    return ReleaseResponse(released=released)


# --- Endpoint 3: GET /slot-holds/check ---
@app.get("/slot-holds/check", response_model=HoldCheck)
async def check_slot(
    professional_id: str,
    slot_date: date = Query(..., alias="date"),
    slot_time: str = Query(..., alias="time", pattern=HHMM_PATTERN),
    session_id: Optional[str] = None,
    manager: SlotHoldManager = Depends(get_manager)
):
    return await manager.check_slot_hold(
        professional_id, slot_date, slot_start(slot_date, slot_time), session_id
    )


# --- Endpoint 4: GET /slot-holds (calendar view) ---
@app.get("/slot-holds", response_model=List[HeldSlot])
async def held_slots(
    professional_id: str,
    slot_date: date = Query(..., alias="date"),
    session_id: Optional[str] = None,
    manager: SlotHoldManager = Depends(get_manager)
):
    return await manager.get_held_slots_for_date(professional_id, slot_date, session_id)


# --- Endpoint 5: POST /slot-holds/cleanup ---
@app.post("/slot-holds/cleanup", response_model=CleanupResponse)
async def cleanup_holds(manager: SlotHoldManager = Depends(get_manager)):
    return CleanupResponse(cleaned_up=await manager.cleanup_expired_holds())


# --- Endpoint 6: POST /appointments (hand-off from hold to booking) ---
@app.post("/appointments", status_code=status.HTTP_201_CREATED)
async def book_appointment(
    booking_data: AppointmentCreate,
    session: AsyncSession = Depends(get_session),
    manager: SlotHoldManager = Depends(get_manager)
):
    start_time = slot_start(booking_data.slot_date, booking_data.slot_time)

    if booking_data.session_id and not await manager.validate_hold_for_booking(
        booking_data.professional_id, booking_data.slot_date, start_time, booking_data.session_id
    ):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=HOLD_ERROR_MESSAGES[HoldError.SLOT_HELD_BY_OTHER]
        )

    if await appointment_lookup.has_blocking_appointment(
        session, booking_data.professional_id, booking_data.slot_date, start_time
    ):
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=HOLD_ERROR_MESSAGES[HoldError.SLOT_ALREADY_BOOKED]
        )

    new_appointment = Appointment(
        professional_id=booking_data.professional_id,
        appointment_date=booking_data.slot_date,
        start_time=start_time,
        patient_name=booking_data.patient_name,
        status=AppointmentStatus.PENDING,
        created_at=manager.now(),
    )
    session.add(new_appointment)
    await session.commit()
    await session.refresh(new_appointment)
    logger.info("appointment_booked", appointment_id=new_appointment.id)

    if booking_data.session_id:
        # Never affects the booking outcome
        await manager.consume_slot_hold(
            booking_data.professional_id, booking_data.slot_date, start_time, booking_data.session_id
        )

    return {"message": "Booking successful", "id": new_appointment.id}


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def run():
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    run()
