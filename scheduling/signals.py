import logging

from django.db import models, transaction
from django.dispatch import Signal
from django.utils import timezone

from .conf import get_setting
from .models import DailyAssignment
from .subjects import Subject

logger = logging.getLogger(__name__)

# Sent after a committed mutation of a subject's assignments.
# kwargs: subject, project_id, operation, timestamp
schedule_changed = Signal()


class Operation(models.TextChoices):
    ASSIGN      = "assign", "Assign escort"
    UNASSIGN    = "unassign", "Unassign escort"
    CLEAR_DATE  = "clear_date", "Clear date"
    SET_ESCORTS = "set_escorts", "Replace escorts"


def notify_schedule_changed(subject: Subject, project_id: int, operation: str) -> None:
    """Queue a ``schedule_changed`` signal for when the current transaction commits.

    Nothing is sent if the transaction rolls back. Receiver failures are
    logged and never reach the caller of the mutation.
    """
    if not get_setting("EMIT_CHANGE_EVENTS"):
        return
    timestamp = timezone.now()

    def send():
        responses = schedule_changed.send_robust(
            sender=DailyAssignment,
            subject=subject,
            project_id=project_id,
            operation=operation,
            timestamp=timestamp,
        )
        for receiver, response in responses:
            if isinstance(response, Exception):
                logger.error("schedule_changed receiver %r failed: %s", receiver, response,
                             exc_info=(type(response), response, response.__traceback__))

    transaction.on_commit(send)
