import uuid
from enum import Enum
from typing import Optional
from datetime import date, datetime

from sqlmodel import SQLModel, Field
from sqlalchemy import DateTime, UniqueConstraint


def _new_id() -> str:
    # Never reused, so a replaced hold's id stops resolving
    return uuid.uuid4().hex


class AppointmentStatus(str, Enum):
    PENDING = "PENDING"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"


# Statuses that free the slot again
CANCELLED_STATUSES = frozenset({AppointmentStatus.CANCELLED})


# Instants are naive UTC; the column type must not demand tzinfo
class SlotHold(SQLModel, table=True):
    __tablename__ = "slot_holds"
    __table_args__ = (
        # Backstop for the hold protocol: one row per slot
        UniqueConstraint("professional_id", "hold_date", "start_time", name="unique_slot_hold"),
    )

    id: str = Field(default_factory=_new_id, primary_key=True)
    professional_id: str = Field(index=True)
    hold_date: date
    start_time: datetime = Field(sa_type=DateTime)
    session_id: str
    expires_at: datetime = Field(sa_type=DateTime, index=True)
    created_at: datetime = Field(sa_type=DateTime)


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"

    id: str = Field(default_factory=_new_id, primary_key=True)
    professional_id: str = Field(index=True)
    appointment_date: date = Field(index=True)
    start_time: datetime = Field(sa_type=DateTime)
    patient_name: str
    status: AppointmentStatus = Field(default=AppointmentStatus.PENDING)
    created_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
