"""Create, confirm, reschedule, cancel and feedback for unified appointments.

Records have no shared id scheme across the two stores, so every mutation of
an existing record first resolves the owning store: the dashboard store is
searched first, then the guest booking store, each scoped to the caller. The
matched store then applies its own mutation.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import date, datetime, time

from awn.auth.identity import CurrentUser
from awn.core import config, errors
from awn.services.availability import AvailabilityChecker
from awn.services.normalizer import APPOINTMENTS, BOOKINGS, AppointmentView
from awn.services.reconciliation import ReconciliationMerger
from awn.services.stores import AppointmentStore, Feedback, NewReservation, RescheduleResult, SlotChange
from awn.services.therapist_directory import TherapistDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DayAvailability:
    therapist_id: int
    day: date
    available_times: list[str]
    booked: list[AppointmentView]


def _trim(slot_time: time) -> time:
    return slot_time.replace(second=0, microsecond=0)


class LifecycleController:
    def __init__(
        self,
        stores: Sequence[AppointmentStore],
        checker: AvailabilityChecker,
        merger: ReconciliationMerger,
        directory: TherapistDirectory,
        now: Callable[[], datetime] = datetime.now,
    ):
        # Insertion order is the resolution order for records without a known source.
        self._stores = {store.source: store for store in stores}
        self._checker = checker
        self._merger = merger
        self._directory = directory
        self._now = now

    def _candidate_stores(self, source: str | None) -> list[AppointmentStore]:
        if source is None:
            return list(self._stores.values())
        if source not in self._stores:
            raise errors.ValidationError(f'Unknown appointment source: {source}.')
        return [self._stores[source]]

    def _ensure_future(self, slot_date: date, slot_time: time) -> None:
        if datetime.combine(slot_date, slot_time) <= self._now():
            raise errors.ValidationError('Appointments must be scheduled in the future.')

    async def _resolve(self, record_id: int, user: CurrentUser,
                       source: str | None = None) -> tuple[AppointmentStore, AppointmentView]:
        candidates = self._candidate_stores(source)
        for store in candidates:
            view = await store.find_owned(record_id, user)
            if view is not None:
                return store, view
            logger.debug('No %s row %s for user %s', store.source, record_id, user.id)
        if user.is_therapist:
            # Rows of another therapist exist but are not theirs to change.
            for store in candidates:
                if await store.get(record_id) is not None:
                    raise errors.UnauthorizedError(
                        f'You are not allowed to change this {store.label}.', status_code=403,
                    )
        raise errors.NotFoundError()

    async def _reserve(self, source: str, reservation: NewReservation) -> AppointmentView:
        reservation = replace(reservation, time=_trim(reservation.time))
        self._ensure_future(reservation.date, reservation.time)

        if await self._directory.get(reservation.therapist_id) is None:
            raise errors.NotFoundError('Therapist not found.')

        await self._checker.ensure_available(reservation.therapist_id, reservation.date, reservation.time)
        view = await self._stores[source].create(reservation, self._now())
        logger.info(
            'Created %s %s for therapist %s at %s %s',
            source, view.id, view.therapist_id, view.date, view.time,
        )
        return view

    async def create_booking(self, reservation: NewReservation) -> AppointmentView:
        """Guest flow: a pending booking that the therapist still has to confirm."""
        return await self._reserve(BOOKINGS, reservation)

    async def create_appointment(self, user: CurrentUser, reservation: NewReservation) -> AppointmentView:
        if user.is_therapist:
            raise errors.UnauthorizedError('Only patients can book appointments.', status_code=403)
        reservation = replace(reservation, patient_id=user.id, patient_email=user.normalized_email)
        return await self._reserve(APPOINTMENTS, reservation)

    async def confirm(self, record_id: int, user: CurrentUser) -> AppointmentView:
        if not user.is_therapist:
            raise errors.UnauthorizedError('Only therapists can confirm bookings.', status_code=403)

        store = self._stores[BOOKINGS]
        view = await store.get(record_id)
        if view is None:
            raise errors.NotFoundError('Booking not found.')
        if view.therapist_id != user.therapist_id:
            raise errors.UnauthorizedError('You are not allowed to confirm this booking.', status_code=403)

        confirmed = await store.confirm(view, user, self._now())
        logger.info('Therapist %s confirmed booking %s', user.therapist_id, record_id)
        return confirmed

    async def reschedule(self, record_id: int, user: CurrentUser, change: SlotChange,
                         source: str | None = None) -> RescheduleResult:
        change = replace(change, time=_trim(change.time))
        self._ensure_future(change.date, change.time)

        store, view = await self._resolve(record_id, user, source)
        if not view.is_active:
            raise errors.ValidationError(f'A {view.status} appointment cannot be rescheduled.')

        await self._checker.ensure_available(view.therapist_id, change.date, change.time, exclude=view)
        result = await store.reschedule(view, change, self._now())
        logger.info(
            'Rescheduled %s %s to %s %s as %s %s',
            view.source, view.id, change.date, change.time, result.current.source, result.current.id,
        )
        return result

    async def cancel(self, record_id: int, user: CurrentUser, reason: str | None = None,
                     source: str | None = None) -> AppointmentView:
        store, view = await self._resolve(record_id, user, source)
        cancelled = await store.cancel(view, user, reason, self._now())
        logger.info('Cancelled %s %s for user %s', view.source, view.id, user.id)
        return cancelled

    async def submit_feedback(self, record_id: int, user: CurrentUser, feedback: Feedback,
                              source: str | None = None) -> AppointmentView:
        if user.is_therapist:
            raise errors.UnauthorizedError('Only patients can submit feedback.', status_code=403)
        store, view = await self._resolve(record_id, user, source)
        return await store.submit_feedback(view, feedback, self._now())

    async def _decorate(self, views: list[AppointmentView]) -> list[AppointmentView]:
        try:
            return await self._directory.decorate(views)
        except errors.InternalError:
            logger.warning('Therapist details unavailable; returning appointments undecorated')
            return views

    async def list_for_patient(self, user: CurrentUser) -> list[AppointmentView]:
        return await self._decorate(await self._merger.list_for_patient(user))

    async def bookings_for_email(self, user: CurrentUser, email: str,
                                 status: str | None = None) -> list[AppointmentView]:
        if user.is_therapist or user.normalized_email != email.strip().lower():
            raise errors.UnauthorizedError('You can only view your own bookings.', status_code=403)
        views = await self._stores[BOOKINGS].list_for_email(email, status=status, descending=True)
        return await self._decorate(views)

    async def bookings_for_therapist(self, user: CurrentUser, therapist_id: int, *, status: str | None = None,
                                     day: date | None = None, page: int = 1,
                                     limit: int = 10) -> tuple[list[AppointmentView], int]:
        if not user.is_therapist or user.therapist_id != therapist_id:
            raise errors.UnauthorizedError('You can only view your own bookings.', status_code=403)
        return await self._stores[BOOKINGS].list_for_therapist(
            therapist_id, status=status, day=day, offset=(page - 1) * limit, limit=limit,
        )

    async def day_availability(self, therapist_id: int, day: date) -> DayAvailability:
        booked = await self._checker.booked_on_day(therapist_id, day)
        taken = {view.time.strftime('%H:%M') for view in booked if view.time is not None}
        return DayAvailability(
            therapist_id=therapist_id,
            day=day,
            available_times=[slot for slot in config.DAILY_SLOT_TEMPLATE if slot not in taken],
            booked=booked,
        )
