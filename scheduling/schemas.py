from datetime import date, datetime
from typing import Literal

from ninja import Schema


SubjectKind = Literal["talent", "group"]


class AssignmentSchema(Schema):
    """Single daily assignment row."""
    id: int
    subject_type: str
    subject_id: int
    project_id: int
    assignment_date: date
    escort_id: int
    created_at: datetime


class AssignEscortSchema(Schema):
    """Request body naming one subject/escort pair."""
    subject_type: SubjectKind
    subject_id: int
    escort_id: int


class SubjectRefSchema(Schema):
    subject_type: SubjectKind
    subject_id: int


class SetEscortsSchema(Schema):
    """Replace the full escort list of a subject on one date."""
    subject_type: SubjectKind
    subject_id: int
    escort_ids: list[int]


class BulkAssignSchema(Schema):
    items: list[AssignEscortSchema]


class UnassignResultSchema(Schema):
    removed: bool


class ClearDateResultSchema(Schema):
    deleted: int


class BulkOutcomeSchema(Schema):
    """Outcome of one tuple inside a bulk request."""
    subject_type: str
    subject_id: int
    escort_id: int | None = None
    ok: bool
    deleted: int | None = None
    code: str | None = None
    message: str | None = None


class BulkResultSchema(Schema):
    date: date
    outcomes: list[BulkOutcomeSchema]
    succeeded: int
    failed: int


class ScheduleSchema(Schema):
    """Scheduled dates index entry with the rows behind it."""
    subject_type: str
    subject_id: int
    project_id: int
    scheduled_dates: list[str]
    assignments: list[AssignmentSchema]


class EscortRefSchema(Schema):
    escort_id: int
    escort_name: str


class SubjectDayAssignmentsSchema(Schema):
    """All escorts of one subject on one date."""
    subject_type: str
    subject_id: int
    name: str
    display_order: int
    escorts: list[EscortRefSchema]


class DayAssignmentsSchema(Schema):
    date: date
    assignments: list[SubjectDayAssignmentsSchema]


class EscortAvailabilitySchema(Schema):
    """Team member status for a date: 'available' or 'current_day_assigned'."""
    escort_id: int
    escort_name: str
    section: Literal["available", "current_day_assigned"]
    assigned_to: list[SubjectRefSchema]


class EscortAvailabilityResponseSchema(Schema):
    date: date
    escorts: list[EscortAvailabilitySchema]
