"""Maintenance of the per-subject scheduled dates index.

The index is always rebuilt from a full rescan of the subject's live
assignment rows. Incremental add/remove bookkeeping is not used: dropping one
of two escorts on a date must not drop the date itself.
"""
import logging

from . import store
from .models import ScheduledDates
from .subjects import Subject

logger = logging.getLogger(__name__)


def lock_subject(subject: Subject, project_id: int, create: bool = True) -> ScheduledDates | None:
    """Take the per-subject row lock held until the surrounding transaction ends.

    With ``create=False`` a subject that has never been assigned returns None
    instead of getting an empty index row.
    """
    lookup = subject.as_filter(project_id)
    if create:
        ScheduledDates.objects.get_or_create(**lookup, defaults={"dates": []})
    return ScheduledDates.objects.select_for_update().filter(**lookup).first()


def recompute(subject: Subject, project_id: int) -> list[str]:
    """Overwrite the subject's index entry with the dates of its live rows."""
    dates = [d.isoformat() for d in store.dates_for(subject, project_id)]
    ScheduledDates.objects.update_or_create(
        **subject.as_filter(project_id),
        defaults={"dates": dates},
    )
    logger.debug("Recomputed scheduled dates for %s %s in project %s: %s",
                 subject.kind, subject.id, project_id, dates)
    return dates


def scheduled_dates(subject: Subject, project_id: int) -> list[str]:
    dates = (
        ScheduledDates.objects.filter(**subject.as_filter(project_id))
        .values_list("dates", flat=True)
        .first()
    )
    return list(dates or [])
