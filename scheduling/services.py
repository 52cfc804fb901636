import logging
from collections import defaultdict
from datetime import date
from typing import Iterable

from django.db import transaction

from . import store
from .conf import get_setting
from .exceptions import DuplicateAssignment, SchedulingError, StorageConflict
from .guards import ensure_assignable
from .index import lock_subject, recompute, scheduled_dates
from .models import DailyAssignment, ProjectTeamMember, TalentGroup, TalentProjectAssignment
from .schemas import (
    BulkOutcomeSchema, EscortAvailabilitySchema, EscortRefSchema,
    SubjectDayAssignmentsSchema, SubjectRefSchema,
)
from .signals import Operation, notify_schedule_changed
from .subjects import Subject
from .validators import ensure_escort_exists, ensure_subject_exists, get_project, validate_date_in_project

logger = logging.getLogger(__name__)


class AssignmentService:
    """Single entry point for reading and mutating day-specific escort assignments.

    Every mutation runs validate -> guard -> fact write -> index recompute in
    one transaction, holding the subject's index row lock throughout.
    """

    @classmethod
    def assign_escort(cls, subject: Subject, project_id: int, assignment_date: date, escort_id: int) -> DailyAssignment:
        """Assign an escort to a subject for one date and return the created row."""
        return cls._retry_on_conflict(cls._assign_once, subject, project_id, assignment_date, escort_id)

    @staticmethod
    @transaction.atomic
    def _assign_once(subject: Subject, project_id: int, assignment_date: date, escort_id: int) -> DailyAssignment:
        validate_date_in_project(project_id, assignment_date)
        ensure_subject_exists(subject, project_id)
        ensure_escort_exists(escort_id)

        lock_subject(subject, project_id)
        ensure_assignable(subject, project_id, assignment_date, escort_id)
        assignment = store.insert_assignment(subject, project_id, assignment_date, escort_id)
        dates = recompute(subject, project_id)

        notify_schedule_changed(subject, project_id, Operation.ASSIGN)
        logger.info("Assigned escort %s to %s %s on %s (project %s); scheduled dates now %s",
                    escort_id, subject.kind, subject.id, assignment_date, project_id, dates)
        return assignment

    @staticmethod
    @transaction.atomic
    def unassign_escort(subject: Subject, project_id: int, assignment_date: date, escort_id: int) -> bool:
        """Remove one escort from a subject on one date.

        Removing an assignment that does not exist succeeds and returns False.
        """
        get_project(project_id)
        if lock_subject(subject, project_id, create=False) is None:
            logger.debug("Unassign of escort %s from %s %s on %s is a no-op: subject never scheduled",
                         escort_id, subject.kind, subject.id, assignment_date)
            return False

        deleted = store.delete_assignment(subject, project_id, assignment_date, escort_id)
        if not deleted:
            logger.debug("Unassign of escort %s from %s %s on %s is a no-op",
                         escort_id, subject.kind, subject.id, assignment_date)
            return False

        dates = recompute(subject, project_id)
        notify_schedule_changed(subject, project_id, Operation.UNASSIGN)
        logger.info("Unassigned escort %s from %s %s on %s (project %s); scheduled dates now %s",
                    escort_id, subject.kind, subject.id, assignment_date, project_id, dates)
        return True

    @staticmethod
    @transaction.atomic
    def clear_date(subject: Subject, project_id: int, assignment_date: date) -> int:
        """Remove every escort of a subject on exactly one date; returns rows deleted."""
        get_project(project_id)
        if lock_subject(subject, project_id, create=False) is None:
            return 0

        deleted = store.delete_assignments_on_date(subject, project_id, assignment_date)
        if not deleted:
            return 0

        dates = recompute(subject, project_id)
        notify_schedule_changed(subject, project_id, Operation.CLEAR_DATE)
        logger.info("Cleared %d assignment(s) of %s %s on %s (project %s); scheduled dates now %s",
                    deleted, subject.kind, subject.id, assignment_date, project_id, dates)
        return deleted

    @classmethod
    def set_escorts(cls, subject: Subject, project_id: int, assignment_date: date,
                    escort_ids: Iterable[int]) -> list[DailyAssignment]:
        """Replace a subject's escorts on one date with exactly ``escort_ids``."""
        escort_ids = list(dict.fromkeys(escort_ids))
        return cls._retry_on_conflict(cls._set_escorts_once, subject, project_id, assignment_date, escort_ids)

    @staticmethod
    @transaction.atomic
    def _set_escorts_once(subject: Subject, project_id: int, assignment_date: date,
                          escort_ids: list[int]) -> list[DailyAssignment]:
        validate_date_in_project(project_id, assignment_date)
        ensure_subject_exists(subject, project_id)
        for escort_id in escort_ids:
            ensure_escort_exists(escort_id)

        lock_subject(subject, project_id)
        store.delete_assignments_on_date(subject, project_id, assignment_date)
        assignments = [
            store.insert_assignment(subject, project_id, assignment_date, escort_id)
            for escort_id in escort_ids
        ]
        dates = recompute(subject, project_id)

        notify_schedule_changed(subject, project_id, Operation.SET_ESCORTS)
        logger.info("Set escorts %s for %s %s on %s (project %s); scheduled dates now %s",
                    escort_ids, subject.kind, subject.id, assignment_date, project_id, dates)
        return assignments

    @staticmethod
    def list_assignments(subject: Subject, project_id: int, start_date: date | None = None,
                         end_date: date | None = None) -> list[DailyAssignment]:
        """Return the subject's rows, optionally limited to an inclusive date range."""
        get_project(project_id)
        return list(store.assignments_for(subject, project_id, start_date, end_date))

    @staticmethod
    def get_scheduled_dates(subject: Subject, project_id: int) -> list[str]:
        return scheduled_dates(subject, project_id)

    @staticmethod
    def _retry_on_conflict(operation, *args):
        """Run ``operation``, re-running it when the storage layer reports a lost race.

        Once retries are exhausted the conflict is reported as a duplicate.
        """
        retries = get_setting("STORAGE_CONFLICT_RETRIES")
        attempt = 0
        while True:
            try:
                return operation(*args)
            except StorageConflict as exc:
                if attempt >= retries:
                    logger.warning("Giving up after %d storage conflict(s): %s", attempt + 1, exc.details)
                    raise DuplicateAssignment(
                        "Escort is already assigned to this subject on this date",
                        exc.details,
                    ) from exc
                attempt += 1
                logger.warning("Storage conflict on attempt %d, retrying: %s", attempt, exc.details)


class BulkAssignmentService:
    """Bulk operations, run as independent per-tuple transactions.

    A failure on one tuple never undoes the others; each outcome is reported.
    """

    @staticmethod
    def bulk_assign(project_id: int, assignment_date: date,
                    requests: Iterable[tuple[Subject, int]]) -> list[BulkOutcomeSchema]:
        outcomes = []
        for subject, escort_id in requests:
            try:
                AssignmentService.assign_escort(subject, project_id, assignment_date, escort_id)
            except SchedulingError as exc:
                outcomes.append(BulkOutcomeSchema(
                    **subject.describe(), escort_id=escort_id, ok=False,
                    code=exc.code, message=exc.message,
                ))
            else:
                outcomes.append(BulkOutcomeSchema(**subject.describe(), escort_id=escort_id, ok=True))
        return outcomes

    @staticmethod
    def clear_day(project_id: int, assignment_date: date) -> list[BulkOutcomeSchema]:
        """Clear one date for every subject of the project holding rows on it."""
        validate_date_in_project(project_id, assignment_date)
        outcomes = []
        for subject in store.subjects_on_date(project_id, assignment_date):
            try:
                deleted = AssignmentService.clear_date(subject, project_id, assignment_date)
            except SchedulingError as exc:
                outcomes.append(BulkOutcomeSchema(
                    **subject.describe(), ok=False, code=exc.code, message=exc.message,
                ))
            else:
                outcomes.append(BulkOutcomeSchema(**subject.describe(), ok=True, deleted=deleted))
        logger.info("Cleared %s for %d subject(s) in project %s", assignment_date, len(outcomes), project_id)
        return outcomes


class DayScheduleService:
    """Read-only views of a project day."""

    @staticmethod
    def subject_display_info(project_id: int, subjects: Iterable[Subject]) -> dict[Subject, tuple[str, int]]:
        """Map each subject to its (name, display_order) on the project."""
        subjects = list(subjects)
        talent_ids = [s.id for s in subjects if not s.is_group]
        group_ids = [s.id for s in subjects if s.is_group]

        info = {}
        for entry in TalentProjectAssignment.objects.filter(
            project_id=project_id, talent_id__in=talent_ids
        ).select_related("talent"):
            info[Subject.talent(entry.talent_id)] = (entry.talent.full_name, entry.display_order)
        for group in TalentGroup.objects.filter(project_id=project_id, id__in=group_ids):
            info[Subject.group(group.id)] = (group.group_name, group.display_order)
        return info

    @classmethod
    def day_assignments(cls, project_id: int, assignment_date: date) -> list[SubjectDayAssignmentsSchema]:
        """Group a date's rows by subject, highest display order first."""
        validate_date_in_project(project_id, assignment_date)

        escorts_by_subject: dict[Subject, list[EscortRefSchema]] = defaultdict(list)
        for assignment in store.assignments_on_date(project_id, assignment_date):
            subject = Subject(kind=assignment.subject_type, id=assignment.subject_id)
            escorts_by_subject[subject].append(EscortRefSchema(
                escort_id=assignment.escort_id,
                escort_name=assignment.escort.full_name,
            ))

        info = cls.subject_display_info(project_id, escorts_by_subject.keys())
        result = []
        for subject, escorts in escorts_by_subject.items():
            name, display_order = info.get(subject, ("", 0))
            result.append(SubjectDayAssignmentsSchema(
                **subject.describe(),
                name=name,
                display_order=display_order,
                escorts=escorts,
            ))
        result.sort(key=lambda row: row.display_order, reverse=True)
        return result

    @staticmethod
    def escort_availability(project_id: int, assignment_date: date) -> list[EscortAvailabilitySchema]:
        """Report team members available on a date and what they are assigned to.

        Escorts assigned to several subjects that day are listed with all of
        them; double booking is reported, not prevented.
        """
        validate_date_in_project(project_id, assignment_date)
        date_str = assignment_date.isoformat()

        assigned_to: dict[int, list[SubjectRefSchema]] = defaultdict(list)
        for assignment in store.assignments_on_date(project_id, assignment_date):
            assigned_to[assignment.escort_id].append(SubjectRefSchema(
                subject_type=assignment.subject_type,
                subject_id=assignment.subject_id,
            ))

        escorts = []
        members = ProjectTeamMember.objects.filter(project_id=project_id).select_related("escort").order_by("escort__full_name")
        for member in members:
            if date_str not in (member.available_dates or []):
                continue
            subjects = assigned_to.get(member.escort_id, [])
            escorts.append(EscortAvailabilitySchema(
                escort_id=member.escort_id,
                escort_name=member.escort.full_name,
                section="current_day_assigned" if subjects else "available",
                assigned_to=subjects,
            ))
        return escorts
