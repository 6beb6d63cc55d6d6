import re
from datetime import date, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator

from awn.auth.dependencies import get_current_user
from awn.auth.identity import CurrentUser
from awn.core import config, errors
from awn.routes.appointment_routes import (
    AppointmentResponse,
    RescheduleResponse,
    build_reschedule_response,
    normalize_kind,
    normalize_note,
)
from awn.services.lifecycle import LifecycleController
from awn.services.normalizer import BOOKINGS, AppointmentView
from awn.services.providers import get_lifecycle_controller
from awn.services.stores import NewReservation, SlotChange

router = APIRouter(tags=['bookings'])
guest_router = APIRouter(tags=['bookings'])

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
BOOKING_STATUSES = ('pending', 'confirmed', 'completed', 'cancelled')


def normalize_status_filter(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    normalized = value.strip().lower()
    if normalized not in BOOKING_STATUSES:
        raise errors.ValidationError(
            'Invalid status filter.',
            details=f'Status must be one of: {", ".join(BOOKING_STATUSES)}.',
        )
    return normalized


class CreateBookingRequest(BaseModel):
    therapist_id: int
    patient_name: str
    patient_email: str
    patient_phone: str
    booking_date: date
    booking_time: time
    session_type: str
    patient_national_id: str | None = None
    patient_date_of_birth: date | None = None
    session_duration: int = config.DEFAULT_SESSION_DURATION_MINUTES
    notes: str | None = None

    @field_validator('patient_name', 'patient_phone')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('This field is required.')
        return normalized

    @field_validator('patient_email')
    @classmethod
    def validate_patient_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not EMAIL_PATTERN.match(normalized):
            raise ValueError('Invalid email address.')
        return normalized

    @field_validator('session_type')
    @classmethod
    def validate_session_type(cls, value: str) -> str:
        return normalize_kind(value)

    @field_validator('session_duration')
    @classmethod
    def validate_session_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Session duration must be positive.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return normalize_note(value)


class CancelBookingRequest(BaseModel):
    cancellation_reason: str | None = None

    @field_validator('cancellation_reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return normalize_note(value)


class RescheduleBookingRequest(BaseModel):
    new_booking_date: date
    new_booking_time: time
    reschedule_reason: str | None = None
    session_type: str | None = None
    notes: str | None = None

    @field_validator('session_type')
    @classmethod
    def validate_session_type(cls, value: str | None) -> str | None:
        return normalize_kind(value)

    @field_validator('reschedule_reason', 'notes')
    @classmethod
    def validate_text(cls, value: str | None) -> str | None:
        return normalize_note(value)


class BookedTimeResponse(BaseModel):
    time: str
    status: str


class AvailabilityData(BaseModel):
    therapist_id: int
    date: date
    available_times: list[str]
    booked_times: list[BookedTimeResponse]
    total_available: int
    total_booked: int


class AvailabilityResponse(BaseModel):
    success: bool = True
    data: AvailabilityData


class BookingListData(BaseModel):
    bookings: list[AppointmentView]
    total: int
    page: int | None = None
    total_pages: int | None = None


class BookingListResponse(BaseModel):
    success: bool = True
    data: BookingListData


@guest_router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: CreateBookingRequest,
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    booking = await controller.create_booking(
        NewReservation(
            therapist_id=data.therapist_id,
            date=data.booking_date,
            time=data.booking_time,
            kind=data.session_type,
            note=data.notes,
            patient_name=data.patient_name,
            patient_email=data.patient_email,
            patient_phone=data.patient_phone,
            patient_national_id=data.patient_national_id,
            patient_date_of_birth=data.patient_date_of_birth,
            session_duration=data.session_duration,
        )
    )
    return AppointmentResponse(
        message='Booking created and awaiting confirmation from the therapist.',
        data=booking,
    )


@router.get('/availability', response_model=AvailabilityResponse)
async def get_availability(
    therapist_id: int = Query(...),
    day: date = Query(..., alias='date'),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    availability = await controller.day_availability(therapist_id, day)
    booked_times = [
        BookedTimeResponse(time=view.time.strftime('%H:%M'), status=view.status)
        for view in availability.booked
        if view.time is not None
    ]
    return AvailabilityResponse(
        data=AvailabilityData(
            therapist_id=therapist_id,
            date=day,
            available_times=availability.available_times,
            booked_times=booked_times,
            total_available=len(availability.available_times),
            total_booked=len(booked_times),
        )
    )


@router.get('/patient/{email}', response_model=BookingListResponse)
async def list_patient_bookings(
    email: str,
    booking_status: str | None = Query(default=None, alias='status'),
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    bookings = await controller.bookings_for_email(
        current_user, email, status=normalize_status_filter(booking_status),
    )
    return BookingListResponse(data=BookingListData(bookings=bookings, total=len(bookings)))


@router.get('/therapist/{therapist_id}', response_model=BookingListResponse)
async def list_therapist_bookings(
    therapist_id: int,
    booking_status: str | None = Query(default=None, alias='status'),
    day: date | None = Query(default=None, alias='date'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=config.MAX_PAGE_SIZE),
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    bookings, total = await controller.bookings_for_therapist(
        current_user,
        therapist_id,
        status=normalize_status_filter(booking_status),
        day=day,
        page=page,
        limit=limit,
    )
    return BookingListResponse(
        data=BookingListData(
            bookings=bookings,
            total=total,
            page=page,
            total_pages=(total + limit - 1) // limit,
        )
    )


@router.put('/{booking_id}/confirm', response_model=AppointmentResponse)
async def confirm_booking(
    booking_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    booking = await controller.confirm(booking_id, current_user)
    return AppointmentResponse(message='Booking confirmed.', data=booking)


@router.put('/{booking_id}/cancel', response_model=AppointmentResponse)
async def cancel_booking(
    booking_id: int,
    data: CancelBookingRequest | None = None,
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    reason = data.cancellation_reason if data else None
    booking = await controller.cancel(booking_id, current_user, reason, source=BOOKINGS)
    return AppointmentResponse(message='Booking cancelled.', data=booking)


@router.put('/{booking_id}/reschedule', response_model=RescheduleResponse)
async def reschedule_booking(
    booking_id: int,
    data: RescheduleBookingRequest,
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    result = await controller.reschedule(
        booking_id,
        current_user,
        SlotChange(
            date=data.new_booking_date,
            time=data.new_booking_time,
            kind=data.session_type,
            note=data.notes,
            reason=data.reschedule_reason,
        ),
        source=BOOKINGS,
    )
    return build_reschedule_response(result, 'Booking rescheduled.')
