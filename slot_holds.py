"""Slot holds: short-lived claims on a booking slot.

While a patient fills out the booking form the page keeps calling
`create_slot_hold`, which creates or extends a hold that expires after the
TTL. Other sessions are rejected until it is released, consumed by a
successful booking, or expires. Expired rows are ignored at read time and
swept in the background.

Every operation returns a result; none raises to its caller.
"""
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel
from sqlmodel import select
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from appointments import AppointmentLookup
from clock import Clock, SystemClock
from logging_config import get_logger
from models import SlotHold
from settings import HOLD_TTL

logger = get_logger(__name__)


class HoldError(str, Enum):
    SESSION_REQUIRED = "SESSION_REQUIRED"
    SLOT_HELD_BY_OTHER = "SLOT_HELD_BY_OTHER"
    SLOT_ALREADY_BOOKED = "SLOT_ALREADY_BOOKED"
    HOLD_CREATE_FAILED = "HOLD_CREATE_FAILED"


HOLD_ERROR_MESSAGES = {
    HoldError.SESSION_REQUIRED: "A session identifier is required",
    HoldError.SLOT_HELD_BY_OTHER: "This time slot is currently being reserved by someone else",
    HoldError.SLOT_ALREADY_BOOKED: "This time slot is no longer available",
    HoldError.HOLD_CREATE_FAILED: "Could not temporarily reserve the time slot",
}


class HoldResult(BaseModel):
    success: bool
    hold_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[HoldError] = None
    message: Optional[str] = None

    @classmethod
    def failure(cls, error: HoldError) -> "HoldResult":
        return cls(success=False, error=error, message=HOLD_ERROR_MESSAGES[error])


class HoldCheck(BaseModel):
    is_held: bool
    is_held_by_current_session: bool
    expires_at: Optional[datetime] = None


class HeldSlot(BaseModel):
    start_time: str
    is_held_by_current_session: bool


def format_slot_time(value) -> str:
    """Normalize a stored start time to 24-hour HH:MM."""
    if isinstance(value, (datetime, time)):
        return value.strftime("%H:%M")
    return str(value)[:5]


def slot_start(slot_date: date, hhmm: str) -> datetime:
    """Combine a calendar date and an HH:MM string into the slot's start instant."""
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return datetime.combine(slot_date, time(hours, minutes))


class SlotHoldManager:
    """
    Owns every write to the slot_holds table.

    Args:
        session_factory: async session factory bound to the store
        appointments: conflict check against booked appointments
        clock: source of "now"; SystemClock by default
        ttl: how long a hold stays live after creation or extension
    """

    def __init__(
        self,
        session_factory,
        appointments: AppointmentLookup,
        clock: Optional[Clock] = None,
        ttl: timedelta = HOLD_TTL,
    ):
        self._session_factory = session_factory
        self._appointments = appointments
        self._clock = clock or SystemClock()
        self._ttl = ttl

    def now(self) -> datetime:
        return self._clock.now()

    @staticmethod
    def _slot_filter(professional_id: str, hold_date: date, start_time: datetime):
        return (
            SlotHold.professional_id == professional_id,
            SlotHold.hold_date == hold_date,
            SlotHold.start_time == start_time,
        )

    async def _find_hold(self, session, professional_id, hold_date, start_time, lock=False):
        statement = select(SlotHold).where(*self._slot_filter(professional_id, hold_date, start_time))
        if lock:
            statement = statement.with_for_update()
        result = await session.execute(statement)
        return result.scalars().first()

    async def create_slot_hold(
        self,
        professional_id: str,
        hold_date: date,
        start_time: datetime,
        session_id: str,
    ) -> HoldResult:
        if not session_id:
            return HoldResult.failure(HoldError.SESSION_REQUIRED)

        await self.cleanup_expired_holds()

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await self._claim_slot(
                        session, professional_id, hold_date, start_time, session_id
                    )
        except IntegrityError:
            # Another session committed a hold for this slot first
            logger.info(
                "slot_hold_lost_race",
                professional_id=professional_id,
                start_time=start_time.isoformat(),
            )
            return HoldResult.failure(HoldError.SLOT_HELD_BY_OTHER)
        except Exception:
            logger.exception(
                "slot_hold_create_failed",
                professional_id=professional_id,
                start_time=start_time.isoformat(),
            )
            return HoldResult.failure(HoldError.HOLD_CREATE_FAILED)

        if not result.success:
            logger.info(
                "slot_hold_rejected",
                professional_id=professional_id,
                start_time=start_time.isoformat(),
                reason=result.error.value,
            )
        return result

    async def _claim_slot(self, session, professional_id, hold_date, start_time, session_id) -> HoldResult:
        now = self._clock.now()
        expires_at = now + self._ttl

        hold = await self._find_hold(session, professional_id, hold_date, start_time, lock=True)

        if hold is not None and hold.expires_at > now:
            if hold.session_id != session_id:
                return HoldResult.failure(HoldError.SLOT_HELD_BY_OTHER)

            hold.expires_at = expires_at
            await session.flush()
            logger.debug("slot_hold_extended", hold_id=hold.id)
            return HoldResult(success=True, hold_id=hold.id, expires_at=expires_at)

        if hold is not None:
            await session.delete(hold)
            # Delete must reach the store before the insert reuses the slot key
            await session.flush()

        if await self._appointments.has_blocking_appointment(
            session, professional_id, hold_date, start_time
        ):
            return HoldResult.failure(HoldError.SLOT_ALREADY_BOOKED)

        hold = SlotHold(
            professional_id=professional_id,
            hold_date=hold_date,
            start_time=start_time,
            session_id=session_id,
            expires_at=expires_at,
            created_at=now,
        )
        session.add(hold)
        await session.flush()
        logger.info("slot_hold_created", hold_id=hold.id, professional_id=professional_id)
        return HoldResult(success=True, hold_id=hold.id, expires_at=expires_at)

    async def _delete_session_hold(self, professional_id, hold_date, start_time, session_id) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(SlotHold).where(
                    *self._slot_filter(professional_id, hold_date, start_time),
                    SlotHold.session_id == session_id,
                )
            )
            deleted = result.rowcount
            await session.commit()
            return deleted

    async def release_slot_hold(
        self,
        professional_id: str,
        hold_date: date,
        start_time: datetime,
        session_id: str,
    ) -> bool:
        try:
            deleted = await self._delete_session_hold(professional_id, hold_date, start_time, session_id)
        except Exception:
            logger.exception("slot_hold_release_failed", professional_id=professional_id)
            return False
        return deleted > 0

    async def check_slot_hold(
        self,
        professional_id: str,
        hold_date: date,
        start_time: datetime,
        session_id: Optional[str] = None,
    ) -> HoldCheck:
        try:
            async with self._session_factory() as session:
                hold = await self._find_hold(session, professional_id, hold_date, start_time)
        except Exception:
            logger.exception("slot_hold_check_failed", professional_id=professional_id)
            return HoldCheck(is_held=False, is_held_by_current_session=False)

        if hold is None or hold.expires_at <= self._clock.now():
            return HoldCheck(is_held=False, is_held_by_current_session=False)

        return HoldCheck(
            is_held=True,
            is_held_by_current_session=bool(session_id) and hold.session_id == session_id,
            expires_at=hold.expires_at,
        )

    async def get_held_slots_for_date(
        self,
        professional_id: str,
        hold_date: date,
        session_id: Optional[str] = None,
    ) -> List[HeldSlot]:
        statement = select(SlotHold).where(
            SlotHold.professional_id == professional_id,
            SlotHold.hold_date == hold_date,
            SlotHold.expires_at > self._clock.now(),
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                holds = result.scalars().all()
        except Exception:
            logger.exception("held_slots_lookup_failed", professional_id=professional_id)
            return []

        return [
            HeldSlot(
                start_time=format_slot_time(hold.start_time),
                is_held_by_current_session=bool(session_id) and hold.session_id == session_id,
            )
            for hold in holds
        ]

    async def cleanup_expired_holds(self) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(SlotHold).where(SlotHold.expires_at <= self._clock.now())
                )
                count = result.rowcount
                await session.commit()
        except Exception:
            logger.exception("slot_hold_cleanup_failed")
            return 0

        if count > 0:
            logger.info("expired_slot_holds_cleaned", count=count)
        return count

    async def validate_hold_for_booking(
        self,
        professional_id: str,
        hold_date: date,
        start_time: datetime,
        session_id: str,
    ) -> bool:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    hold = await self._find_hold(
                        session, professional_id, hold_date, start_time, lock=True
                    )
                    if hold is None:
                        return True

                    if hold.expires_at <= self._clock.now():
                        await session.delete(hold)
                        return True

                    return hold.session_id == session_id
        except Exception:
            # Fail closed: a read error must not allow a double booking
            logger.exception("slot_hold_validation_failed", professional_id=professional_id)
            return False

    async def consume_slot_hold(
        self,
        professional_id: str,
        hold_date: date,
        start_time: datetime,
        session_id: str,
    ) -> None:
        try:
            await self._delete_session_hold(professional_id, hold_date, start_time, session_id)
        except Exception:
            # The booking is already committed; the hold will expire on its own
            logger.exception("slot_hold_consume_failed", professional_id=professional_id)
