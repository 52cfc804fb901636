from ninja import NinjaAPI, Swagger
from datetime import date
from django.http import HttpRequest
from .exceptions import SchedulingError
from .services import AssignmentService, BulkAssignmentService, DayScheduleService
from .subjects import Subject
from .schemas import (
    AssignEscortSchema, AssignmentSchema, BulkAssignSchema, BulkResultSchema,
    ClearDateResultSchema, DayAssignmentsSchema, EscortAvailabilityResponseSchema,
    ScheduleSchema, SetEscortsSchema, SubjectKind, SubjectRefSchema, UnassignResultSchema,
)

api = NinjaAPI(docs=Swagger(settings={"persistAuthorization": True}))


@api.exception_handler(SchedulingError)
def scheduling_error(request: HttpRequest, exc: SchedulingError):
    return api.create_response(request, exc.as_dict(), status=exc.status_code)


def _bulk_result(assignment_date: date, outcomes) -> BulkResultSchema:
    succeeded = sum(1 for outcome in outcomes if outcome.ok)
    return BulkResultSchema(
        date=assignment_date,
        outcomes=outcomes,
        succeeded=succeeded,
        failed=len(outcomes) - succeeded,
    )


@api.get("/projects/{project_id}/assignments/{assignment_date}", response=DayAssignmentsSchema)
def get_day_assignments(request: HttpRequest, project_id: int, assignment_date: date) -> DayAssignmentsSchema:
    """
    Get every escort assignment of a project on one date, grouped per talent or group.
    Subjects are ordered by display order, highest first.
    """
    assignments = DayScheduleService.day_assignments(project_id, assignment_date)
    return DayAssignmentsSchema(date=assignment_date, assignments=assignments)


@api.post("/projects/{project_id}/assignments/{assignment_date}", response=AssignmentSchema)
def assign_escort(request: HttpRequest, project_id: int, assignment_date: date, payload: AssignEscortSchema):
    """
    Assign one escort to a talent or group for one date.

    Errors:
    - 400 DATE_OUT_OF_RANGE: date outside the project window
    - 404 PROJECT_NOT_FOUND / SUBJECT_NOT_FOUND / ESCORT_NOT_FOUND
    - 409 DUPLICATE_ASSIGNMENT: the escort already holds this subject on this date
    """
    subject = Subject(kind=payload.subject_type, id=payload.subject_id)
    return AssignmentService.assign_escort(subject, project_id, assignment_date, payload.escort_id)


@api.post("/projects/{project_id}/assignments/{assignment_date}/unassign", response=UnassignResultSchema)
def unassign_escort(request: HttpRequest, project_id: int, assignment_date: date, payload: AssignEscortSchema):
    """Remove one escort from a subject on one date. Removing an absent assignment is not an error."""
    subject = Subject(kind=payload.subject_type, id=payload.subject_id)
    removed = AssignmentService.unassign_escort(subject, project_id, assignment_date, payload.escort_id)
    return UnassignResultSchema(removed=removed)


@api.post("/projects/{project_id}/assignments/{assignment_date}/clear", response=ClearDateResultSchema)
def clear_date(request: HttpRequest, project_id: int, assignment_date: date, payload: SubjectRefSchema):
    """Remove all escorts of one subject on this date only. Other dates and subjects are untouched."""
    subject = Subject(kind=payload.subject_type, id=payload.subject_id)
    deleted = AssignmentService.clear_date(subject, project_id, assignment_date)
    return ClearDateResultSchema(deleted=deleted)


@api.put("/projects/{project_id}/assignments/{assignment_date}/subject", response=list[AssignmentSchema])
def set_escorts(request: HttpRequest, project_id: int, assignment_date: date, payload: SetEscortsSchema):
    """Replace the escorts of one subject on this date. An empty list clears the date."""
    subject = Subject(kind=payload.subject_type, id=payload.subject_id)
    return AssignmentService.set_escorts(subject, project_id, assignment_date, payload.escort_ids)


@api.post("/projects/{project_id}/assignments/{assignment_date}/bulk", response=BulkResultSchema)
def bulk_assign(request: HttpRequest, project_id: int, assignment_date: date, payload: BulkAssignSchema):
    """
    Assign several subject/escort pairs on one date.
    Each pair is committed on its own; failures are reported per pair and do not undo the others.
    """
    requests = [(Subject(kind=item.subject_type, id=item.subject_id), item.escort_id) for item in payload.items]
    outcomes = BulkAssignmentService.bulk_assign(project_id, assignment_date, requests)
    return _bulk_result(assignment_date, outcomes)


@api.post("/projects/{project_id}/clear-day/{assignment_date}", response=BulkResultSchema)
def clear_day(request: HttpRequest, project_id: int, assignment_date: date):
    """Clear a date for every talent and group of the project, one subject at a time."""
    outcomes = BulkAssignmentService.clear_day(project_id, assignment_date)
    return _bulk_result(assignment_date, outcomes)


@api.get("/projects/{project_id}/subjects/{subject_type}/{subject_id}/schedule", response=ScheduleSchema)
def get_subject_schedule(request: HttpRequest, project_id: int, subject_type: SubjectKind, subject_id: int,
                         start_date: date | None = None, end_date: date | None = None) -> ScheduleSchema:
    """Get a subject's scheduled dates together with the assignment rows behind them."""
    subject = Subject(kind=subject_type, id=subject_id)
    assignments = AssignmentService.list_assignments(subject, project_id, start_date, end_date)
    return ScheduleSchema(
        subject_type=subject.kind,
        subject_id=subject.id,
        project_id=project_id,
        scheduled_dates=AssignmentService.get_scheduled_dates(subject, project_id),
        assignments=[AssignmentSchema.from_orm(a) for a in assignments],
    )


@api.get("/projects/{project_id}/available-escorts/{assignment_date}", response=EscortAvailabilityResponseSchema)
def get_available_escorts(request: HttpRequest, project_id: int, assignment_date: date) -> EscortAvailabilityResponseSchema:
    """List team members available on the date and whether they already escort someone that day."""
    escorts = DayScheduleService.escort_availability(project_id, assignment_date)
    return EscortAvailabilityResponseSchema(date=assignment_date, escorts=escorts)
