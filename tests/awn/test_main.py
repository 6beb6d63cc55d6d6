import asyncio
import json
from types import SimpleNamespace

from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from awn.core.errors import ConflictError, InternalError, NotFoundError
from awn.main import (
    app,
    handle_appointment_error,
    handle_http_exception,
    handle_request_validation_error,
    handle_unexpected_error,
    health,
    root,
)

REQUEST = SimpleNamespace(method='POST', url=SimpleNamespace(path='/api/appointments'))


def _body(response) -> dict:
    return json.loads(response.body)


def test_root_and_health() -> None:
    assert root() == {'status': 'Awn API Running'}

    payload = health()
    assert payload['success'] is True
    assert payload['message'] == 'Backend is running.'
    assert 'timestamp' in payload


def test_appointment_errors_render_envelope() -> None:
    response = asyncio.run(handle_appointment_error(REQUEST, NotFoundError()))

    assert response.status_code == 404
    assert _body(response) == {'success': False, 'error': 'Appointment not found.'}


def test_conflict_envelope_includes_conflicts() -> None:
    response = asyncio.run(handle_appointment_error(REQUEST, ConflictError(details='Please choose another time.')))

    assert response.status_code == 409
    assert _body(response) == {
        'success': False,
        'error': 'This time slot is already booked.',
        'details': 'Please choose another time.',
        'conflicts': [],
    }


def test_retryable_internal_error_is_service_unavailable(caplog) -> None:
    response = asyncio.run(handle_appointment_error(REQUEST, InternalError('Try again.', retryable=True)))

    assert response.status_code == 503
    assert _body(response)['error'] == 'Try again.'
    assert 'POST /api/appointments failed: Try again.' in caplog.text


def test_request_validation_errors_become_400() -> None:
    exc = RequestValidationError([
        {'loc': ('body', 'patient_email'), 'msg': 'Value error, Invalid email address.', 'type': 'value_error'},
    ])

    response = asyncio.run(handle_request_validation_error(REQUEST, exc))

    assert response.status_code == 400
    assert _body(response) == {
        'success': False,
        'error': 'Invalid request data.',
        'details': [{'field': 'patient_email', 'message': 'Value error, Invalid email address.'}],
    }


def test_http_exceptions_share_the_envelope() -> None:
    response = asyncio.run(handle_http_exception(REQUEST, StarletteHTTPException(status_code=405, detail='Method Not Allowed')))

    assert response.status_code == 405
    assert _body(response) == {'success': False, 'error': 'Method Not Allowed'}


def test_unexpected_errors_still_use_the_envelope(caplog) -> None:
    response = asyncio.run(handle_unexpected_error(REQUEST, RuntimeError('controller wiring broke')))

    assert response.status_code == 500
    assert _body(response) == {'success': False, 'error': 'Internal server error.'}
    assert 'POST /api/appointments failed unexpectedly' in caplog.text
    assert 'controller wiring broke' in caplog.text


def test_unexpected_error_handler_is_registered_for_all_exceptions() -> None:
    assert app.exception_handlers[Exception] is handle_unexpected_error
