"""
Deterministic job identity derived from caller-supplied idempotency keys.
"""

import hashlib
import re

from jobqueue.constants import JOB_ID_PATTERN
from jobqueue.errors import InvalidKey, InvalidKeyReason

_JOB_ID_RE = re.compile(JOB_ID_PATTERN)


def is_job_id(value: str) -> bool:
    """Check whether ``value`` has the shape of a derived job id."""
    return bool(_JOB_ID_RE.fullmatch(value))


class IdempotencyResolver:
    """
    Maps idempotency keys to job ids: ``id = hex(sha256(key))``.

    Identical keys always yield identical ids. Keys that already look like
    a job id are rejected, since a caller passing one back is most likely
    resubmitting a previously returned id instead of its semantic key.
    """

    def resolve(self, key: str) -> str:
        """
        Derive the job id for ``key``.

        Raises:
            InvalidKey: If the key is empty, whitespace-only, or 64 hex characters.
        """
        if key is None or not key.strip():
            raise InvalidKey(InvalidKeyReason.EMPTY)
        if is_job_id(key):
            raise InvalidKey(InvalidKeyReason.LOOKS_LIKE_JOB_ID)
        return hashlib.sha256(key.encode("utf-8")).hexdigest()
