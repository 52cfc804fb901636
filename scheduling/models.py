from django.db import models


class Project(models.Model):
    id         = models.BigAutoField(primary_key=True)
    name       = models.CharField(max_length=200)
    start_date = models.DateField()
    end_date   = models.DateField()

    def __str__(self):
        return self.name


class Escort(models.Model):
    id        = models.BigAutoField(primary_key=True)
    full_name = models.CharField(max_length=100)

    def __str__(self):
        return self.full_name


class ProjectTeamMember(models.Model):
    id              = models.BigAutoField(primary_key=True)
    project         = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="team"
    )
    escort          = models.ForeignKey(
        Escort,
        on_delete=models.CASCADE,
        related_name="team_assignments"
    )
    available_dates = models.JSONField(default=list, blank=True)  # ISO date strings

    class Meta:
        unique_together = ("project", "escort")


class Talent(models.Model):
    id         = models.BigAutoField(primary_key=True)
    first_name = models.CharField(max_length=100)
    last_name  = models.CharField(max_length=100, blank=True)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()


class TalentProjectAssignment(models.Model):
    """A talent's place on a project roster."""
    id            = models.BigAutoField(primary_key=True)
    talent        = models.ForeignKey(
        Talent,
        on_delete=models.CASCADE,
        related_name="project_assignments"
    )
    project       = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="talent_roster"
    )
    display_order = models.IntegerField(default=0)

    class Meta:
        unique_together = ("talent", "project")


class TalentGroup(models.Model):
    id            = models.BigAutoField(primary_key=True)
    project       = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="talent_groups"
    )
    group_name    = models.CharField(max_length=100)
    display_order = models.IntegerField(default=0)


class SubjectType(models.TextChoices):
    TALENT = "talent", "Talent"
    GROUP  = "group", "Group"


class DailyAssignment(models.Model):
    """One escort assigned to one subject on one project date."""
    id              = models.BigAutoField(primary_key=True)
    subject_type    = models.CharField(max_length=10, choices=SubjectType.choices)
    subject_id      = models.BigIntegerField()
    project         = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="daily_assignments"
    )
    assignment_date = models.DateField()
    escort          = models.ForeignKey(
        Escort,
        on_delete=models.CASCADE,
        related_name="daily_assignments"
    )
    created_at      = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["subject_type", "subject_id", "project", "assignment_date", "escort"],
                name="unique_daily_assignment",
            ),
        ]
        indexes = [
            models.Index(fields=["project", "assignment_date"], name="daily_asgn_project_date_idx"),
            models.Index(fields=["escort", "assignment_date"], name="daily_asgn_escort_date_idx"),
            models.Index(fields=["subject_type", "subject_id", "project"], name="daily_asgn_subject_idx"),
        ]


class ScheduledDates(models.Model):
    """Derived per-subject list of dates that have at least one assignment.

    Written only by ``scheduling.index.recompute``. The row doubles as the
    subject's lock: mutations take ``select_for_update`` on it first.
    """
    id           = models.BigAutoField(primary_key=True)
    subject_type = models.CharField(max_length=10, choices=SubjectType.choices)
    subject_id   = models.BigIntegerField()
    project      = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="scheduled_dates"
    )
    dates        = models.JSONField(default=list)  # sorted ISO date strings
    updated_at   = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["subject_type", "subject_id", "project"],
                name="unique_scheduled_dates_subject",
            ),
        ]
