from datetime import date

from . import store
from .exceptions import DuplicateAssignment
from .subjects import Subject


def ensure_assignable(subject: Subject, project_id: int, assignment_date: date, escort_id: int) -> None:
    """Reject an exact duplicate of an existing assignment.

    A different escort on the same subject and date is always allowed; that is
    how groups get several escorts. Whether the escort is already busy with
    another subject that day is not checked.
    """
    if store.assignment_exists(subject, project_id, assignment_date, escort_id):
        raise DuplicateAssignment(
            "Escort is already assigned to this subject on this date",
            {**subject.describe(), "date": assignment_date.isoformat(), "escort_id": escort_id},
        )
