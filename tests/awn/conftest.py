import os
from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from awn.auth.identity import CurrentUser  # noqa: E402
from awn.database import Base  # noqa: E402
from awn.models.appointment import Appointment  # noqa: E402,F401
from awn.models.booking import Booking  # noqa: E402,F401
from awn.models.therapist import Therapist  # noqa: E402
from awn.models.user import User  # noqa: E402
from awn.services.providers import build_lifecycle_controller  # noqa: E402

FIXED_NOW = datetime(2026, 1, 1, 8, 0)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f'sqlite:///{tmp_path / "awn-test.db"}',
        connect_args={'check_same_thread': False},
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield testing_session_local
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def people(session_factory):
    db = session_factory()
    try:
        db.add_all([
            Therapist(id=1, slug='sara-ali', name_en='Sara Ali', name_ar='سارة علي', is_active=True),
            Therapist(id=2, slug='omar-haddad', name_en='Omar Haddad', name_ar='عمر حداد', is_active=True),
            Therapist(id=3, slug='retired', name_en='Retired', is_active=False),
            User(id=1, email='patient@example.com', hashed_password='', role='patient'),
            User(id=2, email='other@example.com', hashed_password='', role='patient'),
            User(id=3, email='sara@awn.example', hashed_password='', role='therapist', therapist_id=1),
            User(id=4, email='omar@awn.example', hashed_password='', role='therapist', therapist_id=2),
        ])
        db.commit()
    finally:
        db.close()

    return SimpleNamespace(
        patient=CurrentUser(id=1, email='patient@example.com'),
        other_patient=CurrentUser(id=2, email='other@example.com'),
        therapist=CurrentUser(id=3, email='sara@awn.example', role='therapist', therapist_id=1),
        other_therapist=CurrentUser(id=4, email='omar@awn.example', role='therapist', therapist_id=2),
    )


@pytest.fixture
def controller(session_factory, people):
    return build_lifecycle_controller(session_factory, now=lambda: FIXED_NOW)
