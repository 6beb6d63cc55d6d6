import asyncio
import logging
from functools import partial
from threading import Lock
from typing import Any, Callable, TypeVar

import anyio.to_thread
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoResultFound, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from awn.core import config
from awn.core.errors import AppointmentError, InternalError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def build_engine(database_url: str) -> Engine:
    connect_args = {'check_same_thread': False} if database_url.startswith('sqlite') else {}
    return create_engine(database_url, echo=config.DEBUG_SQL, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_booking_schema_checked = False
_appointment_schema_checked = False
_slot_reservations_checked = False


def ensure_booking_schema(bind: Engine | None = None) -> None:
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        bind = bind or engine
        inspector = inspect(bind)

        if 'bookings' not in inspector.get_table_names():
            _booking_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('bookings')}
        migration_steps = [
            ('confirmed_at', 'ALTER TABLE bookings ADD COLUMN confirmed_at TIMESTAMP'),
            ('confirmed_by', 'ALTER TABLE bookings ADD COLUMN confirmed_by INTEGER'),
            ('cancelled_at', 'ALTER TABLE bookings ADD COLUMN cancelled_at TIMESTAMP'),
            ('cancellation_reason', 'ALTER TABLE bookings ADD COLUMN cancellation_reason VARCHAR'),
            ('cancelled_by', 'ALTER TABLE bookings ADD COLUMN cancelled_by VARCHAR'),
            ('rescheduled_from', 'ALTER TABLE bookings ADD COLUMN rescheduled_from INTEGER'),
            ('rescheduled_to', 'ALTER TABLE bookings ADD COLUMN rescheduled_to INTEGER'),
            ('updated_at', 'ALTER TABLE bookings ADD COLUMN updated_at TIMESTAMP'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_bookings_active_slot '
                    'ON bookings(therapist_id, booking_date, booking_time) '
                    "WHERE status IN ('pending', 'confirmed')"
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_user_email ON bookings(user_email)')
            )

        _booking_schema_checked = True


def ensure_appointment_schema(bind: Engine | None = None) -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        bind = bind or engine
        inspector = inspect(bind)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('cancelled_at', 'ALTER TABLE appointments ADD COLUMN cancelled_at TIMESTAMP'),
            ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR'),
            ('feedback_ratings', 'ALTER TABLE appointments ADD COLUMN feedback_ratings JSON'),
            ('feedback_submitted_at', 'ALTER TABLE appointments ADD COLUMN feedback_submitted_at TIMESTAMP'),
            ('updated_at', 'ALTER TABLE appointments ADD COLUMN updated_at TIMESTAMP'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot '
                    'ON appointments(therapist_id, date, time) '
                    "WHERE status = 'upcoming'"
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_date ON appointments(patient_id, date, time)')
            )

        _appointment_schema_checked = True


def ensure_slot_reservations(bind: Engine | None = None) -> None:
    """Claim slots for active rows written before ``slot_reservations`` existed."""
    global _slot_reservations_checked

    if _slot_reservations_checked:
        return

    with _schema_lock:
        if _slot_reservations_checked:
            return

        bind = bind or engine
        table_names = set(inspect(bind).get_table_names())

        if 'slot_reservations' not in table_names:
            _slot_reservations_checked = True
            return

        backfill_steps = [
            (
                'appointments',
                "SELECT a.therapist_id, a.date, a.time, 'appointments', a.id, CURRENT_TIMESTAMP "
                'FROM appointments a '
                "WHERE a.status = 'upcoming' AND NOT EXISTS ("
                'SELECT 1 FROM slot_reservations r WHERE r.therapist_id = a.therapist_id '
                'AND r.slot_date = a.date AND r.slot_time = a.time)',
            ),
            (
                'bookings',
                "SELECT b.therapist_id, b.booking_date, b.booking_time, 'bookings', b.id, CURRENT_TIMESTAMP "
                'FROM bookings b '
                "WHERE b.status IN ('pending', 'confirmed') AND NOT EXISTS ("
                'SELECT 1 FROM slot_reservations r WHERE r.therapist_id = b.therapist_id '
                'AND r.slot_date = b.booking_date AND r.slot_time = b.booking_time)',
            ),
        ]

        with bind.begin() as connection:
            for table_name, select_statement in backfill_steps:
                if table_name not in table_names:
                    continue
                result = connection.execute(
                    text(
                        'INSERT INTO slot_reservations '
                        '(therapist_id, slot_date, slot_time, source, record_id, created_at) '
                        + select_statement
                    )
                )
                if result.rowcount:
                    logger.info('Claimed %s legacy %s slots', result.rowcount, table_name)

        _slot_reservations_checked = True


async def _run_in_thread(call: Callable[[], T]) -> T:
    # Abandon the worker on cancellation so the timeout below is honoured.
    return await anyio.to_thread.run_sync(call, abandon_on_cancel=True)


async def run_db_call(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run blocking session work in the threadpool with a hard timeout.

    ``NoResultFound`` and domain errors raised by ``fn`` propagate unchanged;
    every other SQLAlchemy failure becomes a generic :class:`InternalError`.
    """
    try:
        return await asyncio.wait_for(
            _run_in_thread(partial(fn, *args, **kwargs)),
            timeout=config.STORE_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as exc:
        logger.warning('Database call %s timed out after %ss', fn.__name__, config.STORE_TIMEOUT_SECONDS)
        raise InternalError('The database did not respond in time. Please retry.', retryable=True) from exc
    except (AppointmentError, NoResultFound):
        raise
    except SQLAlchemyError as exc:
        logger.exception('Database call %s failed', fn.__name__)
        raise InternalError() from exc
