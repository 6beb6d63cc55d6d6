import logging
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from awn.core import config
from awn.core.errors import AppointmentError, InternalError
from awn.database import (
    Base,
    engine,
    ensure_appointment_schema,
    ensure_booking_schema,
    ensure_slot_reservations,
)
from awn.models import appointment, booking, slot_reservation, therapist, user  # noqa: F401
from awn.routes import appointment_routes, booking_routes

app = FastAPI(title='Awn API')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_booking_schema()
        ensure_appointment_schema()
        ensure_slot_reservations()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


def _validation_details(exc: RequestValidationError) -> list[dict]:
    details = []
    for error in exc.errors():
        location = [str(part) for part in error.get('loc', ()) if part != 'body']
        details.append({'field': '.'.join(location), 'message': error.get('msg', 'Invalid value.')})
    return details


@app.exception_handler(AppointmentError)
async def handle_appointment_error(request: Request, exc: AppointmentError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error('%s %s failed: %s', request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={'success': False, 'error': 'Invalid request data.', 'details': _validation_details(exc)},
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={'success': False, 'error': exc.detail},
        headers=getattr(exc, 'headers', None),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error('%s %s failed unexpectedly', request.method, request.url.path, exc_info=exc)
    error = InternalError()
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


@app.get('/')
def root():
    return {'status': 'Awn API Running'}


@app.get('/api/health')
def health():
    return {'success': True, 'message': 'Backend is running.', 'timestamp': datetime.now().isoformat()}


app.include_router(appointment_routes.router, prefix='/api/appointments')
app.include_router(booking_routes.router, prefix='/api/bookings')
app.include_router(booking_routes.guest_router, prefix='/api/booking')
