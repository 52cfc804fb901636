from datetime import date

from .exceptions import DateOutOfRange, EscortNotFound, ProjectNotFound, SubjectNotFound
from .models import Escort, Project, TalentGroup, TalentProjectAssignment
from .subjects import Subject


def get_project(project_id: int) -> Project:
    try:
        return Project.objects.get(pk=project_id)
    except Project.DoesNotExist as exc:
        raise ProjectNotFound(
            f"Project {project_id} not found",
            {"project_id": project_id},
        ) from exc


def validate_date_in_project(project_id: int, assignment_date: date) -> Project:
    """Reject dates outside the project's inclusive [start_date, end_date] window."""
    project = get_project(project_id)
    if assignment_date < project.start_date or assignment_date > project.end_date:
        raise DateOutOfRange(
            f"Date must be between {project.start_date.isoformat()} and {project.end_date.isoformat()}",
            {
                "date": assignment_date.isoformat(),
                "start_date": project.start_date.isoformat(),
                "end_date": project.end_date.isoformat(),
            },
        )
    return project


def ensure_subject_exists(subject: Subject, project_id: int) -> None:
    # talent must be on the project roster, groups belong to exactly one project
    if subject.is_group:
        found = TalentGroup.objects.filter(pk=subject.id, project_id=project_id).exists()
    else:
        found = TalentProjectAssignment.objects.filter(talent_id=subject.id, project_id=project_id).exists()
    if not found:
        raise SubjectNotFound(
            f"{subject.kind.capitalize()} {subject.id} is not part of project {project_id}",
            {**subject.describe(), "project_id": project_id},
        )


def ensure_escort_exists(escort_id: int) -> None:
    if not Escort.objects.filter(pk=escort_id).exists():
        raise EscortNotFound(f"Escort {escort_id} not found", {"escort_id": escort_id})
