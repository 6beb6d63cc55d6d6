import asyncio
import logging
from collections.abc import Sequence

from awn.auth.identity import CurrentUser
from awn.core import errors
from awn.services.normalizer import AppointmentView
from awn.services.stores import AppointmentStore

logger = logging.getLogger(__name__)


class ReconciliationMerger:
    """Builds one chronological list of a patient's reservations from every store."""

    def __init__(self, stores: Sequence[AppointmentStore]):
        self._stores = tuple(stores)

    async def list_for_patient(self, user: CurrentUser) -> list[AppointmentView]:
        results = await asyncio.gather(
            *(store.list_for_patient(user) for store in self._stores),
            return_exceptions=True,
        )

        merged: dict[tuple[str, int], AppointmentView] = {}
        for store, result in zip(self._stores, results):
            if isinstance(result, errors.InternalError):
                logger.warning('Listing %s for user %s failed; continuing without it', store.source, user.id)
                continue
            if isinstance(result, BaseException):
                raise result
            for view in result:
                merged.setdefault((view.source, view.id), view)

        return sorted(merged.values(), key=AppointmentView.sort_key)
