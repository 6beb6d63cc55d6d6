import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, time

from sqlalchemy.exc import NoResultFound

from awn.core import errors
from awn.services.normalizer import AppointmentView
from awn.services.stores import AppointmentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    conflicts: list[AppointmentView] = field(default_factory=list)

    @property
    def conflict(self) -> AppointmentView | None:
        return self.conflicts[0] if self.conflicts else None


class AvailabilityChecker:
    """Fast pre-check for slot conflicts across every store.

    The partial unique indexes on both tables remain the authority; this check
    exists so callers get a readable 409 with the conflicting records before
    attempting a write.
    """

    def __init__(self, stores: Sequence[AppointmentStore]):
        self._stores = tuple(stores)

    async def _active_in_slot(self, store: AppointmentStore, therapist_id: int, slot_date: date,
                              slot_time: time) -> list[AppointmentView]:
        try:
            return await store.find_active_in_slot(therapist_id, slot_date, slot_time)
        except NoResultFound:
            # Some drivers signal an empty single-row lookup by raising; that slot is free.
            return []

    async def is_available(self, therapist_id: int, slot_date: date, slot_time: time,
                           exclude: AppointmentView | None = None) -> AvailabilityResult:
        found = await asyncio.gather(
            *(self._active_in_slot(store, therapist_id, slot_date, slot_time) for store in self._stores)
        )
        conflicts = [view for views in found for view in views if not view.same_record(exclude)]
        return AvailabilityResult(available=not conflicts, conflicts=conflicts)

    async def ensure_available(self, therapist_id: int, slot_date: date, slot_time: time,
                               exclude: AppointmentView | None = None) -> AvailabilityResult:
        result = await self.is_available(therapist_id, slot_date, slot_time, exclude=exclude)
        if not result.available:
            logger.info(
                'Slot %s %s for therapist %s is taken by %s',
                slot_date, slot_time, therapist_id,
                ', '.join(f'{view.source}:{view.id}' for view in result.conflicts),
            )
            raise errors.ConflictError(
                'This time slot is already booked.',
                details='Please choose another time.',
                conflicts=result.conflicts,
            )
        return result

    async def booked_on_day(self, therapist_id: int, day: date) -> list[AppointmentView]:
        found = await asyncio.gather(*(store.list_active_on_day(therapist_id, day) for store in self._stores))
        booked = [view for views in found for view in views]
        booked.sort(key=AppointmentView.sort_key)
        return booked
