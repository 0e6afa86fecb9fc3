"""Outcome — what a subscriber does with a message once it is handled."""

from __future__ import annotations

from enum import Enum
from typing import Any

from .exceptions import UnknownOutcomeError


class Outcome(str, Enum):
    """Closed set of handler results.

    * ``ACK`` removes the message from the queue.
    * ``REJECT`` dead-letters the message (no requeue).
    * ``RETRY`` requeues the message for immediate redelivery.
    """

    ACK = "ack"
    REJECT = "reject"
    RETRY = "retry"

    @classmethod
    def coerce(cls, value: Any) -> Outcome:
        """Map a handler's return value onto an outcome.

        ``True`` and ``False`` are accepted for ``ACK`` and ``REJECT``, as
        are the lowercase names. Anything else is a programming error.

        Raises:
            UnknownOutcomeError: If *value* is not an outcome.
        """
        if isinstance(value, cls):
            return value
        if value is True:
            return cls.ACK
        if value is False:
            return cls.REJECT
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                pass
        raise UnknownOutcomeError(value)

    @property
    def requeue(self) -> bool:
        return self is Outcome.RETRY
