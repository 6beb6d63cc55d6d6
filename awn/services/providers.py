"""FastAPI dependency providers wiring the scheduling services together."""

from fastapi import Depends
from sqlalchemy.orm import sessionmaker

from awn.database import SessionLocal
from awn.services.availability import AvailabilityChecker
from awn.services.lifecycle import LifecycleController
from awn.services.reconciliation import ReconciliationMerger
from awn.services.stores import AppointmentRecordStore, BookingRecordStore
from awn.services.therapist_directory import TherapistDirectory


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_db(session_factory: sessionmaker = Depends(get_session_factory)):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def build_lifecycle_controller(session_factory: sessionmaker, **kwargs) -> LifecycleController:
    stores = [AppointmentRecordStore(session_factory), BookingRecordStore(session_factory)]
    return LifecycleController(
        stores=stores,
        checker=AvailabilityChecker(stores),
        merger=ReconciliationMerger(stores),
        directory=TherapistDirectory(session_factory),
        **kwargs,
    )


def get_lifecycle_controller(
    session_factory: sessionmaker = Depends(get_session_factory),
) -> LifecycleController:
    return build_lifecycle_controller(session_factory)
