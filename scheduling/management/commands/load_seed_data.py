import json
from datetime import date
from pathlib import Path
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from scheduling.exceptions import SchedulingError
from scheduling.models import (
    DailyAssignment, Escort, Project, ProjectTeamMember, ScheduledDates,
    Talent, TalentGroup, TalentProjectAssignment,
)
from scheduling.services import AssignmentService
from scheduling.subjects import Subject


class Command(BaseCommand):
    help = "Load demo seed data from JSON files in seed_data/."

    def add_arguments(self, parser):
        parser.add_argument(
            "--truncate",
            action="store_true",
            help="Delete existing data before loading.",
        )
        parser.add_argument(
            "--dir",
            default="seed_data",
            help="Directory containing JSON files (default: seed_data).",
        )

    @transaction.atomic
    def handle(self, *args, **options):
        base_dir = Path(options["dir"]).resolve()

        # 1. optional clean
        if options["truncate"]:
            self.stdout.write("Deleting existing records…")
            DailyAssignment.objects.all().delete()
            ScheduledDates.objects.all().delete()
            ProjectTeamMember.objects.all().delete()
            TalentProjectAssignment.objects.all().delete()
            TalentGroup.objects.all().delete()
            Talent.objects.all().delete()
            Escort.objects.all().delete()
            Project.objects.all().delete()

        # 2. load json helpers
        def load_json(name):
            path = base_dir / f"{name}.json"
            if not path.exists():
                raise CommandError(f"{path} not found")
            with open(path) as f:
                return json.load(f)

        projects    = load_json("projects")
        escorts     = load_json("escorts")
        team        = load_json("team")
        talent      = load_json("talent")
        roster      = load_json("roster")
        groups      = load_json("groups")
        assigns     = load_json("assignments")

        # 3. reference records (bulk for speed)
        Project.objects.bulk_create(
            [
                Project(id=p["id"], name=p["name"], start_date=p["start_date"], end_date=p["end_date"])
                for p in projects
            ],
            ignore_conflicts=True,
        )
        Escort.objects.bulk_create(
            [Escort(id=e["id"], full_name=e["full_name"]) for e in escorts],
            ignore_conflicts=True,
        )
        ProjectTeamMember.objects.bulk_create(
            [
                ProjectTeamMember(
                    project_id=m["project_id"],
                    escort_id=m["escort_id"],
                    available_dates=m.get("available_dates", []),
                )
                for m in team
            ],
            ignore_conflicts=True,
        )
        Talent.objects.bulk_create(
            [Talent(id=t["id"], first_name=t["first_name"], last_name=t.get("last_name", "")) for t in talent],
            ignore_conflicts=True,
        )
        TalentProjectAssignment.objects.bulk_create(
            [
                TalentProjectAssignment(
                    talent_id=r["talent_id"],
                    project_id=r["project_id"],
                    display_order=r.get("display_order", 0),
                )
                for r in roster
            ],
            ignore_conflicts=True,
        )
        TalentGroup.objects.bulk_create(
            [
                TalentGroup(
                    id=g["id"],
                    project_id=g["project_id"],
                    group_name=g["group_name"],
                    display_order=g.get("display_order", 0),
                )
                for g in groups
            ],
            ignore_conflicts=True,
        )

        # 4. assignments go through the service so the scheduled dates index is built
        created = skipped = 0
        for a in assigns:
            try:
                subject = Subject.parse(a["subject_type"], a["subject_id"])
                AssignmentService.assign_escort(
                    subject, a["project_id"], date.fromisoformat(a["date"]), a["escort_id"]
                )
            except SchedulingError as exc:
                skipped += 1
                self.stderr.write(f"Skipped {a}: {exc.code} {exc.message}")
            else:
                created += 1

        self.stdout.write(self.style.SUCCESS(
            f"✅  Seed data loaded successfully ({created} assignments, {skipped} skipped)"
        ))
