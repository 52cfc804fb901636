"""Physical storage of daily assignment facts.

Nothing here validates or maintains the scheduled-dates index; callers go
through ``AssignmentService`` which wraps these calls in one transaction.
"""
from datetime import date

from django.db import IntegrityError, transaction

from .exceptions import StorageConflict
from .models import DailyAssignment
from .subjects import Subject


def assignment_exists(subject: Subject, project_id: int, assignment_date: date, escort_id: int) -> bool:
    return DailyAssignment.objects.filter(
        **subject.as_filter(project_id),
        assignment_date=assignment_date,
        escort_id=escort_id,
    ).exists()


def insert_assignment(subject: Subject, project_id: int, assignment_date: date, escort_id: int) -> DailyAssignment:
    """Insert one fact, translating a unique constraint violation into StorageConflict."""
    try:
        # savepoint so the enclosing transaction stays usable after the violation
        with transaction.atomic():
            return DailyAssignment.objects.create(
                **subject.as_filter(project_id),
                assignment_date=assignment_date,
                escort_id=escort_id,
            )
    except IntegrityError as exc:
        raise StorageConflict(
            "Assignment was written concurrently by another request",
            {**subject.describe(), "date": assignment_date.isoformat(), "escort_id": escort_id},
        ) from exc


def delete_assignment(subject: Subject, project_id: int, assignment_date: date, escort_id: int) -> int:
    deleted, _ = DailyAssignment.objects.filter(
        **subject.as_filter(project_id),
        assignment_date=assignment_date,
        escort_id=escort_id,
    ).delete()
    return deleted


def delete_assignments_on_date(subject: Subject, project_id: int, assignment_date: date) -> int:
    """Delete every escort row of one subject on exactly one date."""
    deleted, _ = DailyAssignment.objects.filter(
        **subject.as_filter(project_id),
        assignment_date=assignment_date,
    ).delete()
    return deleted


def assignments_for(subject: Subject, project_id: int, start_date: date | None = None, end_date: date | None = None):
    queryset = DailyAssignment.objects.filter(**subject.as_filter(project_id))
    if start_date:
        queryset = queryset.filter(assignment_date__gte=start_date)
    if end_date:
        queryset = queryset.filter(assignment_date__lte=end_date)
    return queryset.select_related("escort").order_by("assignment_date", "created_at", "id")


def dates_for(subject: Subject, project_id: int) -> list[date]:
    """Distinct sorted dates holding at least one live row for the subject."""
    return list(
        DailyAssignment.objects.filter(**subject.as_filter(project_id))
        .order_by("assignment_date")
        .values_list("assignment_date", flat=True)
        .distinct()
    )


def assignments_on_date(project_id: int, assignment_date: date):
    return DailyAssignment.objects.filter(
        project_id=project_id,
        assignment_date=assignment_date,
    ).select_related("escort").order_by("created_at", "id")


def subjects_on_date(project_id: int, assignment_date: date) -> list[Subject]:
    rows = (
        DailyAssignment.objects.filter(project_id=project_id, assignment_date=assignment_date)
        .order_by("subject_type", "subject_id")
        .values_list("subject_type", "subject_id")
        .distinct()
    )
    return [Subject(kind=kind, id=subject_id) for kind, subject_id in rows]
