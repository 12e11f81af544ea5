"""
At-most-once fencing for externally visible side effects.
"""

import logging

from jobqueue.broker.base import KeyValueStore
from jobqueue.constants import SIDE_EFFECT_KEY_PREFIX, SideEffectState

logger = logging.getLogger(__name__)


def side_effect_key(job_id: str) -> str:
    return f"{SIDE_EFFECT_KEY_PREFIX}{job_id}"


class SideEffectGuard:
    """
    Reservation per job id: absent -> reserved -> done.

    The broker redelivers jobs after crashes, timeouts and retries, so the
    effect itself is fenced here, independent of attempt bookkeeping.
    """

    def __init__(self, store: KeyValueStore):
        self._store = store

    async def reserve(self, job_id: str) -> bool:
        """
        Reserve the side effect of ``job_id``.

        Returns:
            True if this caller won the reservation, False if it was
            already reserved or done.
        """
        won = await self._store.set_if_absent(side_effect_key(job_id), SideEffectState.RESERVED)
        if not won:
            logger.info(
                "Side effect already reserved or executed",
                extra={"job_id": job_id}
            )
        return won

    async def mark_done(self, job_id: str) -> None:
        """Mark the side effect of ``job_id`` as executed. Idempotent."""
        await self._store.set(side_effect_key(job_id), SideEffectState.DONE)

    async def release(self, job_id: str) -> None:
        """
        Drop a reservation whose effect is known not to have happened.

        Only called when the handler reported a clean failure, so the next
        delivery can run the effect.
        """
        await self._store.delete(side_effect_key(job_id))
