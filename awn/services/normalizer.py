"""Canonical appointment view and the mapping from raw store rows.

Rows arrive from two tables with different column names. This module is the
only place that knows about those aliases; everything downstream works with
:class:`AppointmentView`.
"""

from collections.abc import Mapping
from datetime import date, datetime, time
from typing import Any, Literal

from pydantic import BaseModel

APPOINTMENTS = 'appointments'
BOOKINGS = 'bookings'
SOURCES = (APPOINTMENTS, BOOKINGS)

Source = Literal['appointments', 'bookings']

ACTIVE_STATUSES = frozenset({'pending', 'confirmed', 'upcoming'})
SESSION_KINDS = ('online', 'home')
DEFAULT_KIND = 'home'
DEFAULT_STATUS = 'upcoming'

_DATE_FIELDS = ('date', 'booking_date')
_TIME_FIELDS = ('time', 'booking_time')
_KIND_FIELDS = ('kind', 'session_type')
_NOTE_FIELDS = ('patient_notes', 'notes', 'note')
_THERAPIST_JOIN_FIELDS = ('therapists', 'therapist')
_IDENTITY_FIELDS = {
    APPOINTMENTS: 'patient_id',
    BOOKINGS: 'user_email',
}


class TherapistSummary(BaseModel):
    id: int
    slug: str | None = None
    name_ar: str | None = None
    name_en: str | None = None
    avatar_url: str | None = None

    class Config:
        from_attributes = True


class AppointmentView(BaseModel):
    id: int
    source: Source
    patient_identity: str
    therapist_id: int | None
    date: date | None
    time: time | None
    kind: str = DEFAULT_KIND
    status: str = DEFAULT_STATUS
    note: str | None = None
    rescheduled_from: int | None = None
    rescheduled_to: int | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    created_at: datetime | None = None
    patient_name: str | None = None
    therapist: TherapistSummary | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def same_record(self, other: 'AppointmentView | None') -> bool:
        return other is not None and other.source == self.source and other.id == self.id

    def starts_at(self) -> datetime | None:
        if self.date is None:
            return None
        return datetime.combine(self.date, self.time or time(0, 0))

    def sort_key(self) -> tuple:
        # Records without a date go last; id and source make ties deterministic.
        starts_at = self.starts_at()
        return (starts_at is None, starts_at or datetime.min, self.id, self.source)

    def slot_summary(self) -> dict[str, Any]:
        """Public description of the slot this record occupies, without patient data."""
        return {
            'id': self.id,
            'source': self.source,
            'therapist_id': self.therapist_id,
            'date': self.date.isoformat() if self.date else None,
            'time': self.time.strftime('%H:%M') if self.time else None,
            'status': self.status,
        }


def _first_present(raw: Mapping[str, Any], fields: tuple[str, ...]) -> Any:
    for field in fields:
        value = raw.get(field)
        if value is not None and value != '':
            return value
    return None


def _patient_identity(raw: Mapping[str, Any], source: str) -> str | None:
    value = raw.get(_IDENTITY_FIELDS[source])
    if value is None:
        return None
    identity = str(value).strip()
    if source == BOOKINGS:
        identity = identity.lower()
    return identity or None


def _therapist_join(raw: Mapping[str, Any]) -> TherapistSummary | None:
    joined = _first_present(raw, _THERAPIST_JOIN_FIELDS)
    if joined is None:
        return None
    if isinstance(joined, TherapistSummary):
        return joined
    if isinstance(joined, Mapping):
        return TherapistSummary(**{'id': raw.get('therapist_id'), **joined})
    return TherapistSummary.model_validate(joined)


def normalize(raw: Mapping[str, Any], source: str) -> AppointmentView:
    """Map one raw row from ``source`` into an :class:`AppointmentView`.

    Raises ``ValueError`` for an unknown source or a row that has no patient
    identity; missing optional fields fall back to their defaults.
    """
    if source not in SOURCES:
        raise ValueError(f'Unknown appointment source: {source!r}')

    identity = _patient_identity(raw, source)
    if identity is None:
        raise ValueError(f'{source} row {raw.get("id")!r} has no patient identity')

    return AppointmentView(
        id=raw['id'],
        source=source,
        patient_identity=identity,
        therapist_id=raw.get('therapist_id'),
        date=_first_present(raw, _DATE_FIELDS),
        time=_first_present(raw, _TIME_FIELDS),
        kind=_first_present(raw, _KIND_FIELDS) or DEFAULT_KIND,
        status=raw.get('status') or DEFAULT_STATUS,
        note=_first_present(raw, _NOTE_FIELDS),
        rescheduled_from=raw.get('rescheduled_from'),
        rescheduled_to=raw.get('rescheduled_to'),
        cancelled_at=raw.get('cancelled_at'),
        cancellation_reason=raw.get('cancellation_reason'),
        created_at=raw.get('created_at'),
        patient_name=raw.get('user_name'),
        therapist=_therapist_join(raw),
    )


def row_to_dict(row: Any) -> dict[str, Any]:
    return {column.name: getattr(row, column.name) for column in row.__table__.columns}
