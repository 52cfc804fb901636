class SchedulingError(Exception):
    """Base class for every error the assignment engine reports to callers."""

    code = "SCHEDULING_ERROR"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def as_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class DateOutOfRange(SchedulingError):
    code = "DATE_OUT_OF_RANGE"
    status_code = 400


class DuplicateAssignment(SchedulingError):
    code = "DUPLICATE_ASSIGNMENT"
    status_code = 409


class ProjectNotFound(SchedulingError):
    code = "PROJECT_NOT_FOUND"
    status_code = 404


class SubjectNotFound(SchedulingError):
    code = "SUBJECT_NOT_FOUND"
    status_code = 404


class EscortNotFound(SchedulingError):
    code = "ESCORT_NOT_FOUND"
    status_code = 404


class StorageConflict(SchedulingError):
    """Raised when the unique constraint rejects a write the guard let through."""

    code = "STORAGE_CONFLICT"
    status_code = 409
