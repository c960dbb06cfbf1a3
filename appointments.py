from datetime import date, datetime
from typing import Protocol

from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Appointment, CANCELLED_STATUSES


class AppointmentLookup(Protocol):
    async def has_blocking_appointment(
        self,
        session: AsyncSession,
        professional_id: str,
        appointment_date: date,
        start_time: datetime,
    ) -> bool: ...


class SqlAppointmentLookup:
    """Looks for any non-cancelled appointment at the slot, inside the caller's transaction."""

    async def has_blocking_appointment(
        self,
        session: AsyncSession,
        professional_id: str,
        appointment_date: date,
        start_time: datetime,
    ) -> bool:
        statement = (
            select(Appointment.id)
            .where(
                Appointment.professional_id == professional_id,
                Appointment.appointment_date == appointment_date,
                Appointment.start_time == start_time,
                Appointment.status.notin_(list(CANCELLED_STATUSES)),
            )
            .limit(1)
        )
        result = await session.execute(statement)
        return result.first() is not None
