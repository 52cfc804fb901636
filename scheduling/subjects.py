from ninja import Schema
from pydantic import ConfigDict, ValidationError

from .exceptions import SubjectNotFound
from .models import SubjectType
from .schemas import SubjectKind


class Subject(Schema):
    """The thing being escorted: an individual talent or a talent group."""
    model_config = ConfigDict(frozen=True)

    kind: SubjectKind
    id: int

    @classmethod
    def talent(cls, talent_id: int) -> "Subject":
        return cls(kind=SubjectType.TALENT.value, id=talent_id)

    @classmethod
    def group(cls, group_id: int) -> "Subject":
        return cls(kind=SubjectType.GROUP.value, id=group_id)

    @classmethod
    def parse(cls, kind: str, subject_id: int) -> "Subject":
        """Build a subject from untyped input, reporting bad kinds as a missing subject."""
        try:
            return cls(kind=kind, id=subject_id)
        except ValidationError as exc:
            raise SubjectNotFound(
                f"Unknown subject type: {kind!r}",
                {"subject_type": kind, "subject_id": subject_id},
            ) from exc

    @property
    def is_group(self) -> bool:
        return self.kind == SubjectType.GROUP

    def as_filter(self, project_id: int) -> dict:
        return {"subject_type": self.kind, "subject_id": self.id, "project_id": project_id}

    def describe(self) -> dict:
        return {"subject_type": self.kind, "subject_id": self.id}
