"""
Operator alerts — conditions a human has to look at.

Raising an alert must never break the code path that noticed the problem,
so raise_alert() logs and swallows its own failures and reports whether
the alert went out.
"""

import logging
from abc import ABC, abstractmethod

from models.base import utcnow
from models.enums import JobName

logger = logging.getLogger(__name__)


class OperatorAlerter(ABC):

    @abstractmethod
    def raise_alert(self, kind: str, context: dict) -> bool:
        ...


class QueueAlerter(OperatorAlerter):
    """Delivers alerts as SystemAlert jobs, so they share the retry and dead-letter path."""

    def __init__(self, scheduler):
        self._scheduler = scheduler

    def raise_alert(self, kind: str, context: dict) -> bool:
        kind = getattr(kind, "value", kind)
        raised_at = utcnow().isoformat()
        try:
            self._scheduler.enqueue(
                JobName.SYSTEM_ALERT.value,
                {"alertType": kind, "context": context, "raisedAt": raised_at},
                priority=10,
            )
        except Exception as e:
            logger.error(f"Could not raise {kind} alert {context}: {e}", exc_info=True)
            return False
        logger.warning(f"Operator alert raised: {kind} {context}")
        return True
