from datetime import date, time

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator

from awn.auth.dependencies import get_current_user
from awn.auth.identity import CurrentUser
from awn.core import config
from awn.services.lifecycle import LifecycleController
from awn.services.normalizer import SESSION_KINDS, AppointmentView, Source
from awn.services.providers import get_lifecycle_controller
from awn.services.stores import Feedback, NewReservation, RescheduleResult, SlotChange

router = APIRouter(tags=['appointments'])


def normalize_kind(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in SESSION_KINDS:
        raise ValueError('Session type must be "online" or "home".')
    return normalized


def normalize_note(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > config.MAX_NOTES_LENGTH:
        raise ValueError(f'Notes must be {config.MAX_NOTES_LENGTH} characters or fewer.')

    return normalized


class CreateAppointmentRequest(BaseModel):
    therapist_id: int = Field(alias='therapistId')
    date: date
    time: time
    kind: str = 'home'
    note: str | None = None

    class Config:
        populate_by_name = True

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, value: str) -> str:
        return normalize_kind(value)

    @field_validator('note')
    @classmethod
    def validate_note(cls, value: str | None) -> str | None:
        return normalize_note(value)


class RescheduleAppointmentRequest(BaseModel):
    date: date
    time: time
    kind: str | None = None
    note: str | None = None
    reason: str | None = None

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, value: str | None) -> str | None:
        return normalize_kind(value)

    @field_validator('note', 'reason')
    @classmethod
    def validate_text(cls, value: str | None) -> str | None:
        return normalize_note(value)


class CancelAppointmentRequest(BaseModel):
    cancellation_reason: str | None = None

    @field_validator('cancellation_reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return normalize_note(value)


class FeedbackRequest(BaseModel):
    overall: int = Field(ge=1, le=5)
    feedback_text: str | None = Field(default=None, alias='feedbackText')
    ratings: dict[str, int] = Field(default_factory=dict)

    class Config:
        populate_by_name = True

    @field_validator('feedback_text')
    @classmethod
    def validate_feedback_text(cls, value: str | None) -> str | None:
        return normalize_note(value)

    @field_validator('ratings')
    @classmethod
    def validate_ratings(cls, value: dict[str, int]) -> dict[str, int]:
        for score in value.values():
            if not 1 <= score <= 5:
                raise ValueError('Ratings must be between 1 and 5.')
        return value


class AppointmentListResponse(BaseModel):
    success: bool = True
    data: list[AppointmentView]
    count: int


class AppointmentResponse(BaseModel):
    success: bool = True
    message: str | None = None
    data: AppointmentView


class RescheduleData(BaseModel):
    previous: AppointmentView
    current: AppointmentView
    created_new_record: bool


class RescheduleResponse(BaseModel):
    success: bool = True
    message: str | None = None
    data: RescheduleData


def build_reschedule_response(result: RescheduleResult, message: str) -> RescheduleResponse:
    return RescheduleResponse(
        message=message,
        data=RescheduleData(
            previous=result.previous,
            current=result.current,
            created_new_record=result.created_new_record,
        ),
    )


@router.get('', response_model=AppointmentListResponse)
async def list_my_appointments(
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    appointments = await controller.list_for_patient(current_user)
    return AppointmentListResponse(data=appointments, count=len(appointments))


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def create_appointment(
    data: CreateAppointmentRequest,
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    appointment = await controller.create_appointment(
        current_user,
        NewReservation(
            therapist_id=data.therapist_id,
            date=data.date,
            time=data.time,
            kind=data.kind,
            note=data.note,
        ),
    )
    return AppointmentResponse(message='Appointment created.', data=appointment)


@router.patch('/{appointment_id}/reschedule', response_model=RescheduleResponse)
async def reschedule_appointment(
    appointment_id: int,
    data: RescheduleAppointmentRequest,
    source: Source | None = Query(default=None),
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    result = await controller.reschedule(
        appointment_id,
        current_user,
        SlotChange(date=data.date, time=data.time, kind=data.kind, note=data.note, reason=data.reason),
        source=source,
    )
    return build_reschedule_response(result, 'Appointment rescheduled.')


@router.patch('/{appointment_id}/cancel', response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    data: CancelAppointmentRequest | None = None,
    source: Source | None = Query(default=None),
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    reason = data.cancellation_reason if data else None
    appointment = await controller.cancel(appointment_id, current_user, reason, source=source)
    return AppointmentResponse(message='Appointment cancelled.', data=appointment)


@router.post('/{appointment_id}/feedback', response_model=AppointmentResponse)
async def submit_feedback(
    appointment_id: int,
    data: FeedbackRequest,
    source: Source | None = Query(default=None),
    current_user: CurrentUser = Depends(get_current_user),
    controller: LifecycleController = Depends(get_lifecycle_controller),
):
    appointment = await controller.submit_feedback(
        appointment_id,
        current_user,
        Feedback(overall=data.overall, text=data.feedback_text, ratings=data.ratings),
        source=source,
    )
    return AppointmentResponse(message='Feedback submitted.', data=appointment)
