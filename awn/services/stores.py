"""Per-table persistence strategies behind the unified appointment view.

``AppointmentRecordStore`` backs the authenticated dashboard table and
``BookingRecordStore`` backs the guest booking table. Both expose the same
coroutine interface and return :class:`AppointmentView` objects only, so the
services above never read raw columns or branch on ``source``.

Each call opens its own short-lived session and runs in the threadpool via
:func:`awn.database.run_db_call`.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any

from sqlalchemy import false, func
from sqlalchemy.exc import IntegrityError, NoResultFound, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from awn.auth.identity import CurrentUser
from awn.core import errors
from awn.database import run_db_call
from awn.models.appointment import Appointment
from awn.models.booking import Booking
from awn.models.slot_reservation import SlotReservation
from awn.services.normalizer import (
    APPOINTMENTS,
    BOOKINGS,
    AppointmentView,
    normalize,
    row_to_dict,
)

logger = logging.getLogger(__name__)

PENDING = 'pending'
CONFIRMED = 'confirmed'
UPCOMING = 'upcoming'
COMPLETED = 'completed'
CANCELLED = 'cancelled'


@dataclass(frozen=True)
class NewReservation:
    therapist_id: int
    date: date
    time: time
    kind: str
    note: str | None = None
    patient_id: int | None = None
    patient_name: str | None = None
    patient_email: str | None = None
    patient_phone: str | None = None
    patient_national_id: str | None = None
    patient_date_of_birth: date | None = None
    session_duration: int = 60


@dataclass(frozen=True)
class SlotChange:
    date: date
    time: time
    kind: str | None = None
    note: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class Feedback:
    overall: int
    text: str | None = None
    ratings: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RescheduleResult:
    previous: AppointmentView
    current: AppointmentView

    @property
    def created_new_record(self) -> bool:
        return not self.previous.same_record(self.current)


def is_slot_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return 'active_slot' in message or 'UNIQUE constraint failed' in message


class AppointmentStore(ABC):
    source: str
    label: str
    model: Any
    date_column: str
    time_column: str
    active_statuses: tuple[str, ...]

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # -- row helpers -------------------------------------------------------

    def _normalize(self, row: Any) -> AppointmentView:
        return normalize(row_to_dict(row), self.source)

    def _normalize_many(self, rows: list[Any]) -> list[AppointmentView]:
        views = []
        for row in rows:
            try:
                views.append(self._normalize(row))
            except ValueError:
                logger.warning('Skipping unreadable %s row %s', self.source, row.id)
        return views

    def _date_attr(self):
        return getattr(self.model, self.date_column)

    def _time_attr(self):
        return getattr(self.model, self.time_column)

    def _ordered(self, query, descending: bool = False):
        if descending:
            return query.order_by(self._date_attr().desc(), self._time_attr().desc(), self.model.id.desc())
        return query.order_by(self._date_attr().asc(), self._time_attr().asc(), self.model.id.asc())

    def _load_for_update(self, db: Session, record_id: int):
        return db.query(self.model).filter(self.model.id == record_id).one()

    def _claim_slot(self, db: Session, row: Any) -> None:
        db.add(SlotReservation(
            therapist_id=row.therapist_id,
            slot_date=getattr(row, self.date_column),
            slot_time=getattr(row, self.time_column),
            source=self.source,
            record_id=row.id,
        ))

    def _release_slot(self, db: Session, record_id: int) -> None:
        db.query(SlotReservation).filter(
            SlotReservation.source == self.source,
            SlotReservation.record_id == record_id,
        ).delete(synchronize_session=False)

    def _commit_slot_change(self, db: Session, claim: Any = None) -> None:
        """Commit, first claiming the slot of ``claim`` when given."""
        try:
            if claim is not None:
                db.flush()
                self._claim_slot(db, claim)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if is_slot_violation(exc):
                logger.warning('%s slot constraint rejected a write: %s', self.source, exc.orig)
                raise errors.ConflictError() from exc
            raise

    @abstractmethod
    def _owner_clause(self, user: CurrentUser):
        """SQL condition restricting rows to those ``user`` may act on."""

    # -- lookups -----------------------------------------------------------

    def _get(self, record_id: int) -> AppointmentView:
        with self._session_factory() as db:
            return self._normalize(self._load_for_update(db, record_id))

    async def get(self, record_id: int) -> AppointmentView | None:
        try:
            return await run_db_call(self._get, record_id)
        except NoResultFound:
            return None

    def _find_owned(self, record_id: int, user: CurrentUser) -> AppointmentView | None:
        with self._session_factory() as db:
            row = db.query(self.model).filter(
                self.model.id == record_id,
                self._owner_clause(user),
            ).first()
            return self._normalize(row) if row else None

    async def find_owned(self, record_id: int, user: CurrentUser) -> AppointmentView | None:
        return await run_db_call(self._find_owned, record_id, user)

    def _find_active(self, therapist_id: int, slot_date: date, slot_time: time | None) -> list[AppointmentView]:
        with self._session_factory() as db:
            query = db.query(self.model).filter(
                self.model.therapist_id == therapist_id,
                self._date_attr() == slot_date,
                self.model.status.in_(self.active_statuses),
            )
            if slot_time is not None:
                query = query.filter(self._time_attr() == slot_time)
            return self._normalize_many(self._ordered(query).all())

    async def find_active_in_slot(self, therapist_id: int, slot_date: date, slot_time: time) -> list[AppointmentView]:
        return await run_db_call(self._find_active, therapist_id, slot_date, slot_time)

    async def list_active_on_day(self, therapist_id: int, day: date) -> list[AppointmentView]:
        return await run_db_call(self._find_active, therapist_id, day, None)

    @abstractmethod
    async def list_for_patient(self, user: CurrentUser) -> list[AppointmentView]:
        ...

    # -- mutations ---------------------------------------------------------

    @abstractmethod
    async def create(self, reservation: NewReservation, now: datetime) -> AppointmentView:
        ...

    @abstractmethod
    async def reschedule(self, view: AppointmentView, change: SlotChange, now: datetime) -> RescheduleResult:
        ...

    def _ensure_cancellable(self, row: Any) -> None:
        if row.status == CANCELLED:
            raise errors.ValidationError(f'This {self.label} is already cancelled.')
        if row.status not in self.active_statuses:
            raise errors.ValidationError(f'A {row.status} {self.label} cannot be changed.')

    def _apply_cancellation(self, row: Any, user: CurrentUser, reason: str | None, now: datetime) -> None:
        row.status = CANCELLED
        row.cancelled_at = now
        if reason:
            row.cancellation_reason = reason

    def _cancel(self, record_id: int, user: CurrentUser, reason: str | None, now: datetime) -> AppointmentView:
        with self._session_factory() as db:
            try:
                row = self._load_for_update(db, record_id)
                self._ensure_cancellable(row)
                self._apply_cancellation(row, user, reason, now)
                self._release_slot(db, row.id)
                db.commit()
                db.refresh(row)
                return self._normalize(row)
            except SQLAlchemyError:
                db.rollback()
                raise

    async def cancel(self, view: AppointmentView, user: CurrentUser, reason: str | None, now: datetime) -> AppointmentView:
        try:
            return await run_db_call(self._cancel, view.id, user, reason, now)
        except NoResultFound as exc:
            raise errors.NotFoundError() from exc

    async def confirm(self, view: AppointmentView, user: CurrentUser, now: datetime) -> AppointmentView:
        raise errors.ValidationError(f'A {self.label} does not need confirmation.')

    async def submit_feedback(self, view: AppointmentView, feedback: Feedback, now: datetime) -> AppointmentView:
        raise errors.ValidationError(f'Feedback is not supported for a {self.label}.')


class AppointmentRecordStore(AppointmentStore):
    """Rows created from the authenticated patient dashboard."""

    source = APPOINTMENTS
    label = 'appointment'
    model = Appointment
    date_column = 'date'
    time_column = 'time'
    active_statuses = (UPCOMING,)

    def _owner_clause(self, user: CurrentUser):
        if user.is_therapist:
            if user.therapist_id is None:
                return false()
            return Appointment.therapist_id == user.therapist_id
        return Appointment.patient_id == user.id

    def _list_for_patient(self, patient_id: int) -> list[AppointmentView]:
        with self._session_factory() as db:
            query = db.query(Appointment).filter(Appointment.patient_id == patient_id)
            return self._normalize_many(self._ordered(query).all())

    async def list_for_patient(self, user: CurrentUser) -> list[AppointmentView]:
        return await run_db_call(self._list_for_patient, user.id)

    def _create(self, reservation: NewReservation, now: datetime) -> AppointmentView:
        with self._session_factory() as db:
            appointment = Appointment(
                patient_id=reservation.patient_id,
                therapist_id=reservation.therapist_id,
                date=reservation.date,
                time=reservation.time,
                kind=reservation.kind,
                patient_notes=reservation.note,
                status=UPCOMING,
                created_at=now,
                updated_at=now,
            )
            db.add(appointment)
            self._commit_slot_change(db, claim=appointment)
            db.refresh(appointment)
            return self._normalize(appointment)

    async def create(self, reservation: NewReservation, now: datetime) -> AppointmentView:
        return await run_db_call(self._create, reservation, now)

    def _reschedule(self, record_id: int, change: SlotChange, now: datetime) -> AppointmentView:
        with self._session_factory() as db:
            appointment = self._load_for_update(db, record_id)
            self._ensure_cancellable(appointment)
            self._release_slot(db, appointment.id)
            appointment.date = change.date
            appointment.time = change.time
            if change.kind is not None:
                appointment.kind = change.kind
            if change.note is not None:
                appointment.patient_notes = change.note
            appointment.updated_at = now
            self._commit_slot_change(db, claim=appointment)
            db.refresh(appointment)
            return self._normalize(appointment)

    async def reschedule(self, view: AppointmentView, change: SlotChange, now: datetime) -> RescheduleResult:
        try:
            updated = await run_db_call(self._reschedule, view.id, change, now)
        except NoResultFound as exc:
            raise errors.NotFoundError() from exc
        return RescheduleResult(previous=view, current=updated)

    def _submit_feedback(self, record_id: int, feedback: Feedback, now: datetime) -> AppointmentView:
        with self._session_factory() as db:
            appointment = self._load_for_update(db, record_id)
            if appointment.status == CANCELLED:
                raise errors.ValidationError('Feedback cannot be submitted for a cancelled appointment.')
            appointment.rating = feedback.overall
            appointment.feedback_text = feedback.text
            appointment.feedback_ratings = feedback.ratings
            appointment.feedback_submitted_at = now
            db.commit()
            db.refresh(appointment)
            return self._normalize(appointment)

    async def submit_feedback(self, view: AppointmentView, feedback: Feedback, now: datetime) -> AppointmentView:
        try:
            return await run_db_call(self._submit_feedback, view.id, feedback, now)
        except NoResultFound as exc:
            raise errors.NotFoundError() from exc


class BookingRecordStore(AppointmentStore):
    """Rows created through the guest booking flow, keyed by e-mail."""

    source = BOOKINGS
    label = 'booking'
    model = Booking
    date_column = 'booking_date'
    time_column = 'booking_time'
    active_statuses = (PENDING, CONFIRMED)

    def _owner_clause(self, user: CurrentUser):
        if user.is_therapist:
            if user.therapist_id is None:
                return false()
            return Booking.therapist_id == user.therapist_id
        email = user.normalized_email
        if email is None:
            return false()
        return func.lower(Booking.user_email) == email

    def _list_by_email(self, email: str, case_insensitive: bool, status: str | None = None,
                       descending: bool = False) -> list[AppointmentView]:
        with self._session_factory() as db:
            if case_insensitive:
                query = db.query(Booking).filter(func.lower(Booking.user_email) == email.lower())
            else:
                query = db.query(Booking).filter(Booking.user_email == email)
            if status:
                query = query.filter(Booking.status == status)
            return self._normalize_many(self._ordered(query, descending=descending).all())

    async def list_for_email(self, email: str, status: str | None = None,
                             descending: bool = False) -> list[AppointmentView]:
        normalized = email.strip().lower()
        views = await run_db_call(self._list_by_email, normalized, False, status, descending)
        if not views and normalized:
            # Older rows were stored with the e-mail exactly as typed.
            logger.info('No exact-match bookings for %s; retrying case-insensitively', normalized)
            views = await run_db_call(self._list_by_email, normalized, True, status, descending)
        return views

    async def list_for_patient(self, user: CurrentUser) -> list[AppointmentView]:
        email = user.normalized_email
        if email is None:
            return []
        return await self.list_for_email(email)

    def _list_for_therapist(self, therapist_id: int, status: str | None, day: date | None,
                            offset: int, limit: int) -> tuple[list[AppointmentView], int]:
        with self._session_factory() as db:
            query = db.query(Booking).filter(Booking.therapist_id == therapist_id)
            if status:
                query = query.filter(Booking.status == status)
            if day:
                query = query.filter(Booking.booking_date == day)
            total = query.count()
            rows = self._ordered(query).offset(offset).limit(limit).all()
            return self._normalize_many(rows), total

    async def list_for_therapist(self, therapist_id: int, *, status: str | None = None, day: date | None = None,
                                 offset: int = 0, limit: int = 10) -> tuple[list[AppointmentView], int]:
        return await run_db_call(self._list_for_therapist, therapist_id, status, day, offset, limit)

    def _create(self, reservation: NewReservation, now: datetime) -> AppointmentView:
        with self._session_factory() as db:
            booking = Booking(
                therapist_id=reservation.therapist_id,
                patient_national_id=reservation.patient_national_id,
                user_name=reservation.patient_name,
                user_email=(reservation.patient_email or '').strip().lower(),
                user_phone=reservation.patient_phone,
                patient_date_of_birth=reservation.patient_date_of_birth,
                booking_date=reservation.date,
                booking_time=reservation.time,
                session_type=reservation.kind,
                session_duration=reservation.session_duration,
                notes=reservation.note,
                status=PENDING,
                created_at=now,
                updated_at=now,
            )
            db.add(booking)
            self._commit_slot_change(db, claim=booking)
            db.refresh(booking)
            return self._normalize(booking)

    async def create(self, reservation: NewReservation, now: datetime) -> AppointmentView:
        return await run_db_call(self._create, reservation, now)

    def _reschedule(self, record_id: int, change: SlotChange, now: datetime) -> tuple[AppointmentView, AppointmentView]:
        with self._session_factory() as db:
            original = self._load_for_update(db, record_id)
            self._ensure_cancellable(original)

            # Release the old slot first so moving to the same slot does not trip the index.
            self._release_slot(db, original.id)
            original.status = CANCELLED
            original.cancelled_at = now
            original.cancellation_reason = f'Rescheduled - {change.reason}' if change.reason else 'Rescheduled'
            original.updated_at = now

            replacement = Booking(
                therapist_id=original.therapist_id,
                patient_national_id=original.patient_national_id,
                user_name=original.user_name,
                user_email=original.user_email,
                user_phone=original.user_phone,
                patient_date_of_birth=original.patient_date_of_birth,
                booking_date=change.date,
                booking_time=change.time,
                session_type=change.kind or original.session_type,
                session_duration=original.session_duration,
                notes=change.note if change.note is not None else original.notes,
                status=PENDING,
                rescheduled_from=original.id,
                created_at=now,
                updated_at=now,
            )
            try:
                db.flush()
                db.add(replacement)
                db.flush()
                self._claim_slot(db, replacement)
                db.flush()
            except IntegrityError as exc:
                db.rollback()
                if is_slot_violation(exc):
                    logger.warning('bookings slot constraint rejected reschedule of %s', record_id)
                    raise errors.ConflictError('The new time slot is already booked.') from exc
                raise
            original.rescheduled_to = replacement.id
            self._commit_slot_change(db)
            db.refresh(original)
            db.refresh(replacement)
            return self._normalize(original), self._normalize(replacement)

    async def reschedule(self, view: AppointmentView, change: SlotChange, now: datetime) -> RescheduleResult:
        try:
            previous, current = await run_db_call(self._reschedule, view.id, change, now)
        except NoResultFound as exc:
            raise errors.NotFoundError() from exc
        return RescheduleResult(previous=previous, current=current)

    def _apply_cancellation(self, row: Any, user: CurrentUser, reason: str | None, now: datetime) -> None:
        super()._apply_cancellation(row, user, reason, now)
        row.cancelled_by = user.email
        row.updated_at = now

    def _confirm(self, record_id: int, therapist_id: int | None, now: datetime) -> AppointmentView:
        with self._session_factory() as db:
            booking = self._load_for_update(db, record_id)
            if booking.status != PENDING:
                raise errors.ValidationError(
                    'This booking cannot be confirmed.',
                    details=f'The booking is currently {booking.status}.',
                )
            booking.status = CONFIRMED
            booking.confirmed_at = now
            booking.confirmed_by = therapist_id
            booking.updated_at = now
            db.commit()
            db.refresh(booking)
            return self._normalize(booking)

    async def confirm(self, view: AppointmentView, user: CurrentUser, now: datetime) -> AppointmentView:
        try:
            return await run_db_call(self._confirm, view.id, user.therapist_id, now)
        except NoResultFound as exc:
            raise errors.NotFoundError('Booking not found.') from exc
