import asyncio
from datetime import date, time

import pytest
from pydantic import ValidationError

from awn.core import errors
from awn.routes.booking_routes import (
    CancelBookingRequest,
    CreateBookingRequest,
    RescheduleBookingRequest,
    cancel_booking,
    confirm_booking,
    create_booking,
    get_availability,
    list_patient_bookings,
    list_therapist_bookings,
    normalize_status_filter,
    reschedule_booking,
)
from awn.services.stores import NewReservation


def _request(**overrides) -> CreateBookingRequest:
    payload = {
        'therapist_id': 1,
        'patient_name': ' Lina Haddad ',
        'patient_email': ' Patient@Example.com ',
        'patient_phone': '+970599000000',
        'booking_date': date(2026, 1, 5),
        'booking_time': time(9, 0),
        'session_type': 'Home',
        'notes': 'Knee rehab',
    }
    payload.update(overrides)
    return CreateBookingRequest(**payload)


def _book(controller, **overrides):
    return asyncio.run(create_booking(_request(**overrides), controller=controller))


def test_create_booking_request_normalizes_fields() -> None:
    request = _request()

    assert request.patient_name == 'Lina Haddad'
    assert request.patient_email == 'patient@example.com'
    assert request.session_type == 'home'
    assert request.session_duration == 60


@pytest.mark.parametrize(
    'overrides',
    [
        {'patient_email': 'not-an-email'},
        {'patient_name': '   '},
        {'session_type': 'clinic'},
        {'session_duration': 0},
    ],
)
def test_create_booking_request_rejects_invalid_fields(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        _request(**overrides)


def test_status_filter_accepts_known_statuses_only() -> None:
    assert normalize_status_filter(' Pending ') == 'pending'
    assert normalize_status_filter('') is None
    with pytest.raises(errors.ValidationError):
        normalize_status_filter('archived')


def test_create_booking_returns_pending_booking(controller) -> None:
    response = _book(controller)

    assert response.success is True
    assert response.message == 'Booking created and awaiting confirmation from the therapist.'
    assert response.data.status == 'pending'
    assert response.data.patient_identity == 'patient@example.com'


def test_availability_lists_free_and_booked_times(controller) -> None:
    _book(controller)

    response = asyncio.run(get_availability(therapist_id=1, day=date(2026, 1, 5), controller=controller))

    assert response.data.total_booked == 1
    assert response.data.booked_times[0].time == '09:00'
    assert response.data.booked_times[0].status == 'pending'
    assert '09:00' not in response.data.available_times
    assert response.data.total_available == len(response.data.available_times)


def test_patient_bookings_route_filters_by_status(controller, people) -> None:
    first = _book(controller)
    _book(controller, booking_time=time(10, 0))
    asyncio.run(cancel_booking(first.data.id, None, current_user=people.patient, controller=controller))

    response = asyncio.run(
        list_patient_bookings(
            'patient@example.com',
            booking_status='cancelled',
            current_user=people.patient,
            controller=controller,
        )
    )

    assert response.data.total == 1
    assert response.data.bookings[0].id == first.data.id


def test_therapist_bookings_route_paginates(controller, people) -> None:
    for hour in (9, 10, 11):
        _book(controller, booking_time=time(hour, 0))

    response = asyncio.run(
        list_therapist_bookings(
            1,
            booking_status=None,
            day=None,
            page=1,
            limit=2,
            current_user=people.therapist,
            controller=controller,
        )
    )

    assert response.data.total == 3
    assert response.data.page == 1
    assert response.data.total_pages == 2
    assert [booking.time for booking in response.data.bookings] == [time(9, 0), time(10, 0)]


def test_confirm_then_reschedule_booking(controller, people) -> None:
    booking = _book(controller)
    confirmed = asyncio.run(confirm_booking(booking.data.id, current_user=people.therapist, controller=controller))

    response = asyncio.run(
        reschedule_booking(
            booking.data.id,
            RescheduleBookingRequest(
                new_booking_date=date(2026, 1, 6),
                new_booking_time=time(12, 0),
                reschedule_reason='Exam day',
            ),
            current_user=people.patient,
            controller=controller,
        )
    )

    assert confirmed.data.status == 'confirmed'
    assert response.data.created_new_record is True
    assert response.data.previous.status == 'cancelled'
    assert response.data.previous.cancellation_reason == 'Rescheduled - Exam day'
    assert response.data.current.status == 'pending'
    assert response.data.current.rescheduled_from == booking.data.id


def test_cancel_booking_route_targets_booking_store(controller, people) -> None:
    asyncio.run(controller.create_appointment(
        people.patient,
        NewReservation(therapist_id=2, date=date(2026, 1, 5), time=time(9, 0), kind='home'),
    ))
    booking = _book(controller, booking_time=time(11, 0))

    response = asyncio.run(
        cancel_booking(
            booking.data.id,
            CancelBookingRequest(cancellation_reason='Schedule clash'),
            current_user=people.patient,
            controller=controller,
        )
    )

    assert response.data.source == 'bookings'
    assert response.data.cancellation_reason == 'Schedule clash'


def test_double_booking_is_rejected(controller) -> None:
    _book(controller)

    with pytest.raises(errors.ConflictError) as exception_info:
        _book(controller, patient_email='guest@example.com')

    assert exception_info.value.status_code == 409
