import django.db.models.deletion
from django.db import migrations, models


SUBJECT_TYPE_CHOICES = [("talent", "Talent"), ("group", "Group")]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Escort",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("full_name", models.CharField(max_length=100)),
            ],
        ),
        migrations.CreateModel(
            name="Project",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=200)),
                ("start_date", models.DateField()),
                ("end_date", models.DateField()),
            ],
        ),
        migrations.CreateModel(
            name="Talent",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("first_name", models.CharField(max_length=100)),
                ("last_name", models.CharField(blank=True, max_length=100)),
            ],
        ),
        migrations.CreateModel(
            name="TalentGroup",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("group_name", models.CharField(max_length=100)),
                ("display_order", models.IntegerField(default=0)),
                ("project", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="talent_groups",
                    to="scheduling.project",
                )),
            ],
        ),
        migrations.CreateModel(
            name="TalentProjectAssignment",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("display_order", models.IntegerField(default=0)),
                ("talent", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="project_assignments",
                    to="scheduling.talent",
                )),
                ("project", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="talent_roster",
                    to="scheduling.project",
                )),
            ],
            options={
                "unique_together": {("talent", "project")},
            },
        ),
        migrations.CreateModel(
            name="ProjectTeamMember",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("available_dates", models.JSONField(blank=True, default=list)),
                ("project", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="team",
                    to="scheduling.project",
                )),
                ("escort", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="team_assignments",
                    to="scheduling.escort",
                )),
            ],
            options={
                "unique_together": {("project", "escort")},
            },
        ),
        migrations.CreateModel(
            name="DailyAssignment",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("subject_type", models.CharField(choices=SUBJECT_TYPE_CHOICES, max_length=10)),
                ("subject_id", models.BigIntegerField()),
                ("assignment_date", models.DateField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("project", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="daily_assignments",
                    to="scheduling.project",
                )),
                ("escort", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="daily_assignments",
                    to="scheduling.escort",
                )),
            ],
            options={
                "indexes": [
                    models.Index(fields=["project", "assignment_date"], name="daily_asgn_project_date_idx"),
                    models.Index(fields=["escort", "assignment_date"], name="daily_asgn_escort_date_idx"),
                    models.Index(fields=["subject_type", "subject_id", "project"], name="daily_asgn_subject_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("subject_type", "subject_id", "project", "assignment_date", "escort"),
                        name="unique_daily_assignment",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ScheduledDates",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("subject_type", models.CharField(choices=SUBJECT_TYPE_CHOICES, max_length=10)),
                ("subject_id", models.BigIntegerField()),
                ("dates", models.JSONField(default=list)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("project", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE,
                    related_name="scheduled_dates",
                    to="scheduling.project",
                )),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(
                        fields=("subject_type", "subject_id", "project"),
                        name="unique_scheduled_dates_subject",
                    ),
                ],
            },
        ),
    ]
