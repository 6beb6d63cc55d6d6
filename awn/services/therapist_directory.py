"""Read-only therapist lookups used to decorate appointment views."""

from collections.abc import Iterable

from sqlalchemy.orm import sessionmaker

from awn.database import run_db_call
from awn.models.therapist import Therapist
from awn.services.normalizer import AppointmentView, TherapistSummary


class TherapistDirectory:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _find(self, *criteria) -> TherapistSummary | None:
        with self._session_factory() as db:
            therapist = db.query(Therapist).filter(*criteria, Therapist.is_active.is_not(False)).first()
            return TherapistSummary.model_validate(therapist) if therapist else None

    async def get(self, therapist_id: int) -> TherapistSummary | None:
        return await run_db_call(self._find, Therapist.id == therapist_id)

    async def get_by_slug(self, slug: str) -> TherapistSummary | None:
        return await run_db_call(self._find, Therapist.slug == slug.strip().lower())

    def _summaries(self, therapist_ids: set[int]) -> dict[int, TherapistSummary]:
        with self._session_factory() as db:
            therapists = db.query(Therapist).filter(Therapist.id.in_(therapist_ids)).all()
            return {therapist.id: TherapistSummary.model_validate(therapist) for therapist in therapists}

    async def decorate(self, views: Iterable[AppointmentView]) -> list[AppointmentView]:
        views = list(views)
        missing = {view.therapist_id for view in views if view.therapist is None and view.therapist_id is not None}
        if not missing:
            return views

        summaries = await run_db_call(self._summaries, missing)
        return [
            view if view.therapist is not None else view.model_copy(update={'therapist': summaries.get(view.therapist_id)})
            for view in views
        ]
