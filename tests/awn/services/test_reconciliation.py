import asyncio
from datetime import date, time

from awn.auth.identity import CurrentUser
from awn.core.errors import InternalError
from awn.models.appointment import Appointment
from awn.models.booking import Booking
from awn.services.reconciliation import ReconciliationMerger
from awn.services.stores import AppointmentRecordStore, BookingRecordStore


def _add(session_factory, *rows) -> None:
    db = session_factory()
    try:
        db.add_all(rows)
        db.commit()
    finally:
        db.close()


def _merger(session_factory, *extra_stores) -> ReconciliationMerger:
    return ReconciliationMerger(
        [AppointmentRecordStore(session_factory), BookingRecordStore(session_factory), *extra_stores]
    )


def _booking(email: str, day: date, at: time, therapist_id: int = 1, status: str = 'pending') -> Booking:
    return Booking(
        therapist_id=therapist_id,
        user_name='Patient',
        user_email=email,
        booking_date=day,
        booking_time=at,
        session_type='home',
        status=status,
    )


def test_merged_list_is_chronological_across_stores(session_factory, people) -> None:
    _add(
        session_factory,
        Appointment(patient_id=1, therapist_id=1, date=date(2025, 1, 2), time=time(9, 0), status='upcoming'),
        _booking('patient@example.com', date(2025, 1, 1), time(14, 0)),
    )

    merged = asyncio.run(_merger(session_factory).list_for_patient(people.patient))

    assert [(view.source, view.date) for view in merged] == [
        ('bookings', date(2025, 1, 1)),
        ('appointments', date(2025, 1, 2)),
    ]


def test_merged_list_is_complete_and_scoped_to_caller(session_factory, people) -> None:
    _add(
        session_factory,
        Appointment(patient_id=1, therapist_id=1, date=date(2026, 2, 1), time=time(9, 0), status='upcoming'),
        Appointment(patient_id=1, therapist_id=2, date=date(2026, 2, 3), time=time(9, 0), status='cancelled'),
        Appointment(patient_id=2, therapist_id=1, date=date(2026, 2, 2), time=time(9, 0), status='upcoming'),
        _booking('patient@example.com', date(2026, 2, 4), time(10, 0)),
        _booking('other@example.com', date(2026, 2, 5), time(10, 0)),
    )

    merged = asyncio.run(_merger(session_factory).list_for_patient(people.patient))

    keys = [(view.source, view.id) for view in merged]
    assert keys == [('appointments', 1), ('appointments', 2), ('bookings', 1)]
    assert len(set(keys)) == len(keys)
    assert all(view.patient_identity in {'1', 'patient@example.com'} for view in merged)


def test_identical_start_times_break_ties_by_id_then_source(session_factory, people) -> None:
    _add(
        session_factory,
        Appointment(patient_id=1, therapist_id=2, date=date(2026, 3, 1), time=time(11, 0), status='upcoming'),
        _booking('patient@example.com', date(2026, 3, 1), time(11, 0), therapist_id=1),
        _booking('patient@example.com', date(2026, 3, 1), time(11, 0), therapist_id=2, status='cancelled'),
    )

    first = asyncio.run(_merger(session_factory).list_for_patient(people.patient))
    second = asyncio.run(_merger(session_factory).list_for_patient(people.patient))

    assert [(view.source, view.id) for view in first] == [
        ('appointments', 1),
        ('bookings', 1),
        ('bookings', 2),
    ]
    assert first == second


def test_bookings_fall_back_to_case_insensitive_email_match(session_factory, people) -> None:
    _add(session_factory, _booking('A@B.com', date(2026, 4, 1), time(9, 0)))
    caller = CurrentUser(id=99, email='a@b.com')

    merged = asyncio.run(_merger(session_factory).list_for_patient(caller))

    assert len(merged) == 1
    assert merged[0].source == 'bookings'
    assert merged[0].patient_identity == 'a@b.com'


def test_failing_store_contributes_nothing(session_factory, people, caplog) -> None:
    class UnreachableStore:
        source = 'archive'

        async def list_for_patient(self, user):
            raise InternalError('The database did not respond in time. Please retry.', retryable=True)

    _add(session_factory, _booking('patient@example.com', date(2026, 4, 2), time(9, 0)))

    merged = asyncio.run(_merger(session_factory, UnreachableStore()).list_for_patient(people.patient))

    assert [(view.source, view.id) for view in merged] == [('bookings', 1)]
    assert 'Listing archive for user 1 failed' in caplog.text


def test_patient_without_records_gets_empty_list(session_factory, people) -> None:
    assert asyncio.run(_merger(session_factory).list_for_patient(people.other_patient)) == []
