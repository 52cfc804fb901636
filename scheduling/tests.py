import threading
from datetime import date, timedelta
from io import StringIO
from pathlib import Path
from unittest import mock

from django.core.management import call_command
from django.db import connections
from django.test import TestCase, TransactionTestCase, override_settings
from django.test.client import Client
from pydantic import ValidationError

from .exceptions import (
    DateOutOfRange, DuplicateAssignment, EscortNotFound, ProjectNotFound, SubjectNotFound,
)
from .models import (
    DailyAssignment, Escort, Project, ProjectTeamMember, ScheduledDates,
    Talent, TalentGroup, TalentProjectAssignment,
)
from .services import AssignmentService, BulkAssignmentService, DayScheduleService
from .signals import Operation, schedule_changed
from .subjects import Subject

D10 = date(2025, 1, 10)
D11 = date(2025, 1, 11)
D12 = date(2025, 1, 12)
D13 = date(2025, 1, 13)
MISSING_ID = 999_999


class EscortAssignmentTestBase(TestCase):
    """Base test class with common setup and helper methods."""

    def setUp(self):
        """Set up a three day project with two talent, one group and three escorts."""
        self.client = Client()

        self.project = Project.objects.create(name="Project P", start_date=D10, end_date=D12)
        self.other_project = Project.objects.create(name="Project Q", start_date=D10, end_date=D12)

        self.escort_x = Escort.objects.create(full_name="Escort X")
        self.escort_y = Escort.objects.create(full_name="Escort Y")
        self.escort_z = Escort.objects.create(full_name="Escort Z")

        talent_a = Talent.objects.create(first_name="Talent", last_name="A")
        talent_b = Talent.objects.create(first_name="Talent", last_name="B")
        TalentProjectAssignment.objects.create(talent=talent_a, project=self.project, display_order=1)
        TalentProjectAssignment.objects.create(talent=talent_b, project=self.project, display_order=0)
        TalentProjectAssignment.objects.create(talent=talent_a, project=self.other_project)
        group_g = TalentGroup.objects.create(project=self.project, group_name="Group G", display_order=5)

        self.talent_a = Subject.talent(talent_a.id)
        self.talent_b = Subject.talent(talent_b.id)
        self.group_g = Subject.group(group_g.id)

    def assign(self, subject, day, escort, project=None):
        """Helper to assign an escort through the service."""
        return AssignmentService.assign_escort(subject, (project or self.project).id, day, escort.id)

    def scheduled(self, subject, project=None):
        return AssignmentService.get_scheduled_dates(subject, (project or self.project).id)

    def live_dates(self, subject, project=None):
        """Dates computed straight from the fact rows, independent of the index."""
        rows = DailyAssignment.objects.filter(**subject.as_filter((project or self.project).id))
        return sorted({row.assignment_date.isoformat() for row in rows})

    def assertIndexConsistent(self, subject, project=None):
        self.assertEqual(self.scheduled(subject, project), self.live_dates(subject, project))


class EndToEndScenarioTest(EscortAssignmentTestBase):
    """Walk through a full assign / unassign / clear sequence on one project."""

    def test_project_scenario(self):
        """Each step leaves the scheduled dates in line with the assignment rows."""
        # 1. first assignment creates the index entry
        self.assign(self.talent_a, D10, self.escort_x)
        self.assertEqual(self.scheduled(self.talent_a), ["2025-01-10"])

        # 2. the day after the project ends is rejected
        with self.assertRaises(DateOutOfRange):
            self.assign(self.talent_a, D13, self.escort_x)
        self.assertEqual(self.scheduled(self.talent_a), ["2025-01-10"])

        # 3. two escorts on the same group and date
        self.assign(self.group_g, D11, self.escort_y)
        self.assign(self.group_g, D11, self.escort_z)
        rows = AssignmentService.list_assignments(self.group_g, self.project.id, D11, D11)
        self.assertEqual(len(rows), 2)
        self.assertEqual(self.scheduled(self.group_g), ["2025-01-11"])

        # 4. removing one escort keeps the date
        self.assertTrue(AssignmentService.unassign_escort(self.group_g, self.project.id, D11, self.escort_y.id))
        self.assertEqual(self.scheduled(self.group_g), ["2025-01-11"])

        # 5. removing the last escort empties the index
        self.assertTrue(AssignmentService.unassign_escort(self.group_g, self.project.id, D11, self.escort_z.id))
        self.assertEqual(self.scheduled(self.group_g), [])

        # 6. clearing the only date of the talent
        self.assertEqual(AssignmentService.clear_date(self.talent_a, self.project.id, D10), 1)
        self.assertEqual(self.scheduled(self.talent_a), [])


class AssignEscortTest(EscortAssignmentTestBase):
    """Test validation and uniqueness rules of assign_escort."""

    def test_returns_created_row(self):
        assignment = self.assign(self.talent_a, D10, self.escort_x)

        self.assertEqual(assignment.subject_type, "talent")
        self.assertEqual(assignment.subject_id, self.talent_a.id)
        self.assertEqual(assignment.project_id, self.project.id)
        self.assertEqual(assignment.assignment_date, D10)
        self.assertEqual(assignment.escort_id, self.escort_x.id)
        self.assertIsNotNone(assignment.created_at)

    def test_same_escort_twice_is_rejected(self):
        """The identical tuple can only exist once."""
        self.assign(self.talent_a, D10, self.escort_x)

        with self.assertRaises(DuplicateAssignment) as ctx:
            self.assign(self.talent_a, D10, self.escort_x)

        self.assertEqual(ctx.exception.code, "DUPLICATE_ASSIGNMENT")
        self.assertEqual(DailyAssignment.objects.count(), 1)
        self.assertIndexConsistent(self.talent_a)

    def test_different_escorts_same_subject_and_date(self):
        """Groups get several escorts by holding one row per escort."""
        self.assign(self.group_g, D11, self.escort_x)
        self.assign(self.group_g, D11, self.escort_y)
        self.assign(self.group_g, D11, self.escort_z)

        self.assertEqual(DailyAssignment.objects.filter(assignment_date=D11).count(), 3)
        self.assertEqual(self.scheduled(self.group_g), ["2025-01-11"])

    def test_same_escort_on_other_date_or_subject(self):
        self.assign(self.talent_a, D10, self.escort_x)
        self.assign(self.talent_a, D12, self.escort_x)
        self.assign(self.talent_b, D10, self.escort_x)

        self.assertEqual(self.scheduled(self.talent_a), ["2025-01-10", "2025-01-12"])
        self.assertEqual(self.scheduled(self.talent_b), ["2025-01-10"])

    def test_window_bounds_are_inclusive(self):
        self.assign(self.talent_a, D10, self.escort_x)
        self.assign(self.talent_a, D12, self.escort_x)

        with self.assertRaises(DateOutOfRange):
            self.assign(self.talent_a, date(2025, 1, 9), self.escort_x)
        with self.assertRaises(DateOutOfRange):
            self.assign(self.talent_a, D13, self.escort_x)

    def test_range_checked_before_duplicates(self):
        """An out of range date fails as such even when other checks would fail too."""
        with self.assertRaises(DateOutOfRange):
            AssignmentService.assign_escort(self.talent_a, self.project.id, D13, MISSING_ID)

    def test_unknown_project(self):
        with self.assertRaises(ProjectNotFound):
            AssignmentService.assign_escort(self.talent_a, MISSING_ID, D10, self.escort_x.id)

    def test_unknown_escort(self):
        with self.assertRaises(EscortNotFound):
            AssignmentService.assign_escort(self.talent_a, self.project.id, D10, MISSING_ID)
        self.assertFalse(ScheduledDates.objects.exists())

    def test_talent_not_on_roster(self):
        outsider = Talent.objects.create(first_name="Not", last_name="Rostered")

        with self.assertRaises(SubjectNotFound):
            self.assign(Subject.talent(outsider.id), D10, self.escort_x)

    def test_group_of_another_project(self):
        foreign = TalentGroup.objects.create(project=self.other_project, group_name="Elsewhere")

        with self.assertRaises(SubjectNotFound):
            self.assign(Subject.group(foreign.id), D10, self.escort_x)

    def test_failure_leaves_no_partial_state(self):
        self.assign(self.talent_a, D10, self.escort_x)
        before = list(ScheduledDates.objects.values_list("subject_id", "dates"))

        with self.assertRaises(DateOutOfRange):
            self.assign(self.talent_b, D13, self.escort_x)

        self.assertEqual(DailyAssignment.objects.count(), 1)
        self.assertEqual(list(ScheduledDates.objects.values_list("subject_id", "dates")), before)

    def test_talent_and_group_with_same_id_are_distinct(self):
        """Subjects are keyed by type as well as id."""
        talent = Talent.objects.create(id=4242, first_name="Twin")
        TalentProjectAssignment.objects.create(talent=talent, project=self.project)
        TalentGroup.objects.create(id=4242, project=self.project, group_name="Twins")

        self.assign(Subject.talent(4242), D10, self.escort_x)
        self.assign(Subject.group(4242), D11, self.escort_x)

        self.assertEqual(self.scheduled(Subject.talent(4242)), ["2025-01-10"])
        self.assertEqual(self.scheduled(Subject.group(4242)), ["2025-01-11"])

    def test_subject_kind_is_validated(self):
        with self.assertRaises(ValidationError):
            Subject(kind="crew", id=1)
        with self.assertRaises(SubjectNotFound):
            Subject.parse("crew", 1)

        self.assertEqual(Subject.parse("group", 7), Subject.group(7))
        self.assertEqual(len({Subject.talent(7), Subject.talent(7), Subject.group(7)}), 2)


class UnassignEscortTest(EscortAssignmentTestBase):
    """Test that removal is scoped to one tuple and idempotent."""

    def test_absent_tuple_is_noop(self):
        self.assign(self.talent_a, D10, self.escort_x)

        removed = AssignmentService.unassign_escort(self.talent_a, self.project.id, D10, self.escort_y.id)

        self.assertFalse(removed)
        self.assertEqual(self.scheduled(self.talent_a), ["2025-01-10"])

    def test_repeat_unassign_is_noop(self):
        self.assign(self.talent_a, D10, self.escort_x)

        self.assertTrue(AssignmentService.unassign_escort(self.talent_a, self.project.id, D10, self.escort_x.id))
        self.assertFalse(AssignmentService.unassign_escort(self.talent_a, self.project.id, D10, self.escort_x.id))
        self.assertEqual(self.scheduled(self.talent_a), [])

    def test_never_scheduled_subject(self):
        """No index row is created for a subject that was never assigned."""
        removed = AssignmentService.unassign_escort(self.talent_b, self.project.id, D10, self.escort_x.id)

        self.assertFalse(removed)
        self.assertFalse(ScheduledDates.objects.exists())

    def test_one_of_two_escorts_keeps_date(self):
        self.assign(self.group_g, D11, self.escort_y)
        self.assign(self.group_g, D11, self.escort_z)

        AssignmentService.unassign_escort(self.group_g, self.project.id, D11, self.escort_y.id)

        self.assertEqual(self.scheduled(self.group_g), ["2025-01-11"])
        remaining = DailyAssignment.objects.get()
        self.assertEqual(remaining.escort_id, self.escort_z.id)

    def test_last_removal_keeps_empty_index_row(self):
        """The index entry is recomputed to empty, not deleted."""
        self.assign(self.talent_a, D10, self.escort_x)

        AssignmentService.unassign_escort(self.talent_a, self.project.id, D10, self.escort_x.id)

        entry = ScheduledDates.objects.get(subject_type="talent", subject_id=self.talent_a.id)
        self.assertEqual(entry.dates, [])

    def test_unknown_project(self):
        with self.assertRaises(ProjectNotFound):
            AssignmentService.unassign_escort(self.talent_a, MISSING_ID, D10, self.escort_x.id)


class ClearDateTest(EscortAssignmentTestBase):
    """Clearing a date must touch that subject and that date only."""

    def setUp(self):
        super().setUp()
        self.assign(self.group_g, D10, self.escort_x)
        self.assign(self.group_g, D11, self.escort_x)
        self.assign(self.group_g, D11, self.escort_y)
        self.assign(self.group_g, D12, self.escort_y)
        self.assign(self.talent_a, D11, self.escort_z)
        self.assign(self.talent_a, D11, self.escort_z, project=self.other_project)

    def test_only_target_date_is_removed(self):
        deleted = AssignmentService.clear_date(self.group_g, self.project.id, D11)

        self.assertEqual(deleted, 2)
        self.assertEqual(self.scheduled(self.group_g), ["2025-01-10", "2025-01-12"])
        self.assertEqual(
            sorted(DailyAssignment.objects.filter(subject_type="group").values_list("assignment_date", "escort_id")),
            [(D10, self.escort_x.id), (D12, self.escort_y.id)],
        )

    def test_other_subjects_untouched(self):
        AssignmentService.clear_date(self.group_g, self.project.id, D11)

        self.assertEqual(self.scheduled(self.talent_a), ["2025-01-11"])
        self.assertEqual(self.scheduled(self.talent_a, self.other_project), ["2025-01-11"])

    def test_other_projects_untouched(self):
        AssignmentService.clear_date(self.talent_a, self.project.id, D11)

        self.assertEqual(self.scheduled(self.talent_a), [])
        self.assertEqual(self.scheduled(self.talent_a, self.other_project), ["2025-01-11"])
        self.assertIndexConsistent(self.talent_a, self.other_project)

    def test_empty_date_is_noop(self):
        self.assertEqual(AssignmentService.clear_date(self.talent_a, self.project.id, D12), 0)
        self.assertEqual(DailyAssignment.objects.count(), 6)
        self.assertEqual(AssignmentService.clear_date(self.talent_b, self.project.id, D12), 0)


class ListAssignmentsTest(EscortAssignmentTestBase):
    """Test the read-only listing of assignment rows."""

    def test_ordered_by_date(self):
        self.assign(self.talent_a, D12, self.escort_x)
        self.assign(self.talent_a, D10, self.escort_y)

        rows = AssignmentService.list_assignments(self.talent_a, self.project.id)

        self.assertEqual([r.assignment_date for r in rows], [D10, D12])

    def test_date_range_filter(self):
        for day in (D10, D11, D12):
            self.assign(self.talent_a, day, self.escort_x)

        rows = AssignmentService.list_assignments(self.talent_a, self.project.id, D11, D12)
        self.assertEqual([r.assignment_date for r in rows], [D11, D12])

        rows = AssignmentService.list_assignments(self.talent_a, self.project.id, start_date=D12)
        self.assertEqual([r.assignment_date for r in rows], [D12])

    def test_read_only(self):
        rows = AssignmentService.list_assignments(self.talent_a, self.project.id)

        self.assertEqual(rows, [])
        self.assertEqual(self.scheduled(self.talent_a), [])
        self.assertFalse(ScheduledDates.objects.exists())

    def test_unknown_project(self):
        with self.assertRaises(ProjectNotFound):
            AssignmentService.list_assignments(self.talent_a, MISSING_ID)


class StorageConflictTest(EscortAssignmentTestBase):
    """Simulate losing the race between the duplicate check and the insert."""

    def setUp(self):
        super().setUp()
        self.assign(self.talent_a, D10, self.escort_x)

    def test_lost_race_surfaces_as_duplicate_after_retry(self):
        with mock.patch("scheduling.services.ensure_assignable") as guard:
            with self.assertRaises(DuplicateAssignment):
                self.assign(self.talent_a, D10, self.escort_x)

        self.assertEqual(guard.call_count, 2)
        self.assertEqual(DailyAssignment.objects.count(), 1)
        self.assertIndexConsistent(self.talent_a)

    @override_settings(SCHEDULING={"STORAGE_CONFLICT_RETRIES": 0})
    def test_retries_can_be_disabled(self):
        with mock.patch("scheduling.services.ensure_assignable") as guard:
            with self.assertRaises(DuplicateAssignment):
                self.assign(self.talent_a, D10, self.escort_x)

        self.assertEqual(guard.call_count, 1)


class AtomicityTest(EscortAssignmentTestBase):
    """A failure after the fact write rolls back the whole operation."""

    def test_recompute_failure_rolls_back_insert(self):
        with mock.patch("scheduling.services.recompute", side_effect=RuntimeError("index write failed")):
            with self.assertRaises(RuntimeError):
                self.assign(self.talent_a, D10, self.escort_x)

        self.assertFalse(DailyAssignment.objects.exists())
        self.assertFalse(ScheduledDates.objects.exists())

    def test_recompute_failure_rolls_back_delete(self):
        self.assign(self.talent_a, D10, self.escort_x)

        with mock.patch("scheduling.services.recompute", side_effect=RuntimeError("index write failed")):
            with self.assertRaises(RuntimeError):
                AssignmentService.clear_date(self.talent_a, self.project.id, D10)

        self.assertEqual(DailyAssignment.objects.count(), 1)
        self.assertEqual(self.scheduled(self.talent_a), ["2025-01-10"])


class SetEscortsTest(EscortAssignmentTestBase):
    """Test replacing the escort set of a subject on one date."""

    def setUp(self):
        super().setUp()
        self.assign(self.group_g, D11, self.escort_x)
        self.assign(self.group_g, D11, self.escort_y)
        self.assign(self.group_g, D12, self.escort_x)

    def escorts_on(self, subject, day):
        return sorted(DailyAssignment.objects.filter(
            **subject.as_filter(self.project.id), assignment_date=day
        ).values_list("escort_id", flat=True))

    def test_replaces_only_that_date(self):
        rows = AssignmentService.set_escorts(
            self.group_g, self.project.id, D11, [self.escort_y.id, self.escort_z.id, self.escort_z.id]
        )

        self.assertEqual(len(rows), 2)
        self.assertEqual(self.escorts_on(self.group_g, D11), sorted([self.escort_y.id, self.escort_z.id]))
        self.assertEqual(self.escorts_on(self.group_g, D12), [self.escort_x.id])
        self.assertIndexConsistent(self.group_g)

    def test_empty_list_clears_date(self):
        AssignmentService.set_escorts(self.group_g, self.project.id, D11, [])

        self.assertEqual(self.escorts_on(self.group_g, D11), [])
        self.assertEqual(self.scheduled(self.group_g), ["2025-01-12"])

    def test_unknown_escort_changes_nothing(self):
        with self.assertRaises(EscortNotFound):
            AssignmentService.set_escorts(self.group_g, self.project.id, D11, [self.escort_z.id, MISSING_ID])

        self.assertEqual(self.escorts_on(self.group_g, D11), sorted([self.escort_x.id, self.escort_y.id]))

    def test_out_of_range(self):
        with self.assertRaises(DateOutOfRange):
            AssignmentService.set_escorts(self.group_g, self.project.id, D13, [self.escort_x.id])


class BulkOperationsTest(EscortAssignmentTestBase):
    """Bulk calls commit each tuple on its own and report every outcome."""

    def test_bulk_assign_partial_success(self):
        outcomes = BulkAssignmentService.bulk_assign(self.project.id, D11, [
            (self.talent_a, self.escort_x.id),
            (self.talent_a, self.escort_x.id),
            (self.group_g, MISSING_ID),
            (self.group_g, self.escort_y.id),
        ])

        self.assertEqual([o.ok for o in outcomes], [True, False, False, True])
        self.assertEqual(outcomes[1].code, "DUPLICATE_ASSIGNMENT")
        self.assertEqual(outcomes[2].code, "ESCORT_NOT_FOUND")
        self.assertEqual(DailyAssignment.objects.count(), 2)
        self.assertIndexConsistent(self.talent_a)
        self.assertIndexConsistent(self.group_g)

    def test_clear_day_across_subjects(self):
        self.assign(self.talent_a, D11, self.escort_x)
        self.assign(self.talent_a, D12, self.escort_x)
        self.assign(self.group_g, D11, self.escort_y)
        self.assign(self.group_g, D11, self.escort_z)
        self.assign(self.talent_a, D11, self.escort_x, project=self.other_project)

        outcomes = BulkAssignmentService.clear_day(self.project.id, D11)

        deleted = {(o.subject_type, o.subject_id): o.deleted for o in outcomes}
        self.assertEqual(deleted, {
            ("talent", self.talent_a.id): 1,
            ("group", self.group_g.id): 2,
        })
        self.assertEqual(self.scheduled(self.talent_a), ["2025-01-12"])
        self.assertEqual(self.scheduled(self.group_g), [])
        self.assertEqual(self.scheduled(self.talent_a, self.other_project), ["2025-01-11"])

    def test_clear_day_out_of_range(self):
        with self.assertRaises(DateOutOfRange):
            BulkAssignmentService.clear_day(self.project.id, D13)


class DayScheduleTest(EscortAssignmentTestBase):
    """Test the per-day views."""

    def setUp(self):
        super().setUp()
        ProjectTeamMember.objects.create(project=self.project, escort=self.escort_x,
                                         available_dates=["2025-01-10", "2025-01-11", "2025-01-12"])
        ProjectTeamMember.objects.create(project=self.project, escort=self.escort_y, available_dates=["2025-01-11"])
        ProjectTeamMember.objects.create(project=self.project, escort=self.escort_z, available_dates=["2025-01-12"])
        self.assign(self.group_g, D11, self.escort_y)
        self.assign(self.group_g, D11, self.escort_x)
        self.assign(self.talent_a, D11, self.escort_x)
        self.assign(self.talent_b, D11, self.escort_x)

    def test_day_assignments_grouped_and_ordered(self):
        rows = DayScheduleService.day_assignments(self.project.id, D11)

        self.assertEqual([(r.subject_type, r.name) for r in rows], [
            ("group", "Group G"), ("talent", "Talent A"), ("talent", "Talent B"),
        ])
        self.assertEqual([e.escort_name for e in rows[0].escorts], ["Escort Y", "Escort X"])

    def test_escort_availability_reports_double_booking(self):
        escorts = DayScheduleService.escort_availability(self.project.id, D11)

        self.assertEqual([e.escort_name for e in escorts], ["Escort X", "Escort Y"])
        x, y = escorts
        self.assertEqual(x.section, "current_day_assigned")
        self.assertEqual(len(x.assigned_to), 3)
        self.assertEqual(y.section, "current_day_assigned")
        self.assertEqual([(s.subject_type, s.subject_id) for s in y.assigned_to], [("group", self.group_g.id)])

    def test_escort_availability_free_day(self):
        escorts = DayScheduleService.escort_availability(self.project.id, D12)

        self.assertEqual([(e.escort_name, e.section) for e in escorts], [
            ("Escort X", "available"), ("Escort Z", "available"),
        ])


class ChangeNotificationTest(EscortAssignmentTestBase):
    """Test the schedule_changed signal sent after commit."""

    def setUp(self):
        super().setUp()
        self.received = []
        schedule_changed.connect(self.receiver, weak=False)
        self.addCleanup(schedule_changed.disconnect, self.receiver)

    def receiver(self, sender, **kwargs):
        self.received.append(kwargs)

    def test_assign_notifies_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.assign(self.talent_a, D10, self.escort_x)

        self.assertEqual(len(self.received), 1)
        event = self.received[0]
        self.assertEqual(event["subject"], self.talent_a)
        self.assertEqual(event["project_id"], self.project.id)
        self.assertEqual(event["operation"], Operation.ASSIGN)
        self.assertIsNotNone(event["timestamp"])

    def test_nothing_before_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            self.assign(self.talent_a, D10, self.escort_x)

        self.assertEqual(len(callbacks), 1)
        self.assertEqual(self.received, [])

    def test_failures_and_noops_do_not_notify(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            with self.assertRaises(DateOutOfRange):
                self.assign(self.talent_a, D13, self.escort_x)
            AssignmentService.unassign_escort(self.talent_a, self.project.id, D10, self.escort_x.id)
            AssignmentService.clear_date(self.talent_a, self.project.id, D10)

        self.assertEqual(callbacks, [])
        self.assertEqual(self.received, [])

    def test_operations_are_named(self):
        with self.captureOnCommitCallbacks(execute=True):
            self.assign(self.talent_a, D10, self.escort_x)
            AssignmentService.unassign_escort(self.talent_a, self.project.id, D10, self.escort_x.id)
            AssignmentService.set_escorts(self.talent_a, self.project.id, D10, [self.escort_x.id])
            AssignmentService.clear_date(self.talent_a, self.project.id, D10)

        self.assertEqual([e["operation"] for e in self.received], [
            Operation.ASSIGN, Operation.UNASSIGN, Operation.SET_ESCORTS, Operation.CLEAR_DATE,
        ])

    @override_settings(SCHEDULING={"EMIT_CHANGE_EVENTS": False})
    def test_events_can_be_disabled(self):
        with self.captureOnCommitCallbacks(execute=True) as callbacks:
            self.assign(self.talent_a, D10, self.escort_x)

        self.assertEqual(callbacks, [])

    def test_failing_receiver_is_logged(self):
        def broken(sender, **kwargs):
            raise ValueError("summarizer down")

        schedule_changed.connect(broken, weak=False)
        self.addCleanup(schedule_changed.disconnect, broken)

        with self.assertLogs("scheduling.signals", level="ERROR"):
            with self.captureOnCommitCallbacks(execute=True):
                self.assign(self.talent_a, D10, self.escort_x)

        self.assertEqual(len(self.received), 1)
        self.assertEqual(DailyAssignment.objects.count(), 1)


class AssignmentAPITest(EscortAssignmentTestBase):
    """Test the HTTP endpoints."""

    def url(self, suffix="", day="2025-01-10", project_id=None):
        return f"/api/projects/{project_id or self.project.id}/assignments/{day}{suffix}"

    def body(self, subject, escort=None, **extra):
        data = {"subject_type": subject.kind, "subject_id": subject.id, **extra}
        if escort is not None:
            data["escort_id"] = escort.id
        return data

    def post(self, url, data=None):
        return self.client.post(url, data or {}, content_type="application/json")

    def test_assign(self):
        response = self.post(self.url(), self.body(self.talent_a, self.escort_x))

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["assignment_date"], "2025-01-10")
        self.assertEqual(data["escort_id"], self.escort_x.id)
        self.assertEqual(data["subject_type"], "talent")

    def test_error_responses(self):
        self.post(self.url(), self.body(self.talent_a, self.escort_x))

        duplicate = self.post(self.url(), self.body(self.talent_a, self.escort_x))
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["code"], "DUPLICATE_ASSIGNMENT")

        out_of_range = self.post(self.url(day="2025-01-13"), self.body(self.talent_a, self.escort_x))
        self.assertEqual(out_of_range.status_code, 400)
        self.assertEqual(out_of_range.json()["code"], "DATE_OUT_OF_RANGE")

        missing = self.post(self.url(project_id=MISSING_ID), self.body(self.talent_a, self.escort_x))
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["code"], "PROJECT_NOT_FOUND")

    def test_invalid_input(self):
        bad_date = self.post(self.url(day="2025-13-01"), self.body(self.talent_a, self.escort_x))
        self.assertEqual(bad_date.status_code, 422)

        bad_kind = self.post(self.url(), {"subject_type": "crew", "subject_id": 1, "escort_id": 1})
        self.assertEqual(bad_kind.status_code, 422)

    def test_unassign_and_clear(self):
        self.post(self.url(), self.body(self.group_g, self.escort_x))
        self.post(self.url(), self.body(self.group_g, self.escort_y))

        response = self.post(self.url("/unassign"), self.body(self.group_g, self.escort_x))
        self.assertEqual(response.json(), {"removed": True})
        response = self.post(self.url("/unassign"), self.body(self.group_g, self.escort_x))
        self.assertEqual(response.json(), {"removed": False})

        response = self.post(self.url("/clear"), self.body(self.group_g))
        self.assertEqual(response.json(), {"deleted": 1})
        self.assertEqual(self.scheduled(self.group_g), [])

    def test_set_escorts(self):
        response = self.client.put(
            self.url("/subject"),
            self.body(self.group_g, escort_ids=[self.escort_x.id, self.escort_y.id]),
            content_type="application/json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()), 2)
        self.assertEqual(self.scheduled(self.group_g), ["2025-01-10"])

    def test_bulk_and_clear_day(self):
        response = self.post(self.url("/bulk"), {"items": [
            self.body(self.talent_a, self.escort_x),
            self.body(self.talent_a, self.escort_x),
        ]})
        data = response.json()
        self.assertEqual((data["succeeded"], data["failed"]), (1, 1))
        self.assertEqual(data["outcomes"][1]["code"], "DUPLICATE_ASSIGNMENT")

        response = self.post(f"/api/projects/{self.project.id}/clear-day/2025-01-10")
        data = response.json()
        self.assertEqual(data["succeeded"], 1)
        self.assertEqual(data["outcomes"][0]["deleted"], 1)

    def test_day_view(self):
        self.post(self.url(), self.body(self.group_g, self.escort_x))
        self.post(self.url(), self.body(self.talent_a, self.escort_y))

        response = self.client.get(self.url())

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["date"], "2025-01-10")
        self.assertEqual([row["name"] for row in data["assignments"]], ["Group G", "Talent A"])

    def test_subject_schedule(self):
        self.post(self.url(day="2025-01-12"), self.body(self.talent_a, self.escort_x))
        self.post(self.url(day="2025-01-10"), self.body(self.talent_a, self.escort_x))

        response = self.client.get(
            f"/api/projects/{self.project.id}/subjects/talent/{self.talent_a.id}/schedule"
        )

        data = response.json()
        self.assertEqual(data["scheduled_dates"], ["2025-01-10", "2025-01-12"])
        self.assertEqual([a["assignment_date"] for a in data["assignments"]], ["2025-01-10", "2025-01-12"])

    def test_unknown_subject_kind_is_rejected_everywhere(self):
        schedule = self.client.get(f"/api/projects/{self.project.id}/subjects/crew/1/schedule")
        self.assertEqual(schedule.status_code, 422)

        for suffix in ("", "/unassign", "/clear"):
            response = self.post(self.url(suffix), {"subject_type": "crew", "subject_id": 1, "escort_id": 1})
            self.assertEqual(response.status_code, 422, suffix)

    def test_available_escorts(self):
        ProjectTeamMember.objects.create(project=self.project, escort=self.escort_x, available_dates=["2025-01-10"])

        response = self.client.get(f"/api/projects/{self.project.id}/available-escorts/2025-01-10")

        data = response.json()
        self.assertEqual(data["escorts"][0]["section"], "available")


class LoadSeedDataCommandTest(TestCase):
    """Test the seed data management command."""

    def test_loads_and_builds_index(self):
        seed_dir = Path(__file__).resolve().parent.parent / "seed_data"

        call_command("load_seed_data", dir=str(seed_dir), stdout=StringIO(), stderr=StringIO())

        self.assertEqual(DailyAssignment.objects.count(), 5)
        self.assertEqual(
            AssignmentService.get_scheduled_dates(Subject.talent(1), 1), ["2025-01-10", "2025-01-11"]
        )
        self.assertEqual(AssignmentService.get_scheduled_dates(Subject.group(1), 1), ["2025-01-11"])


class ConcurrentAssignmentTest(TransactionTestCase):
    """Run the service from several threads, each on its own connection."""

    def setUp(self):
        """Set up a month long project with four rostered talent and two escorts."""
        self.project = Project.objects.create(
            name="Project C", start_date=date(2025, 1, 1), end_date=date(2025, 1, 31)
        )
        self.escort_x = Escort.objects.create(full_name="Escort X")
        self.escort_y = Escort.objects.create(full_name="Escort Y")
        self.subjects = []
        for n in range(4):
            talent = Talent.objects.create(first_name="Talent", last_name=str(n))
            TalentProjectAssignment.objects.create(talent=talent, project=self.project)
            self.subjects.append(Subject.talent(talent.id))

    def days(self, count, start=1, step=1):
        return [date(2025, 1, start) + timedelta(days=n * step) for n in range(count)]

    def run_in_threads(self, *jobs):
        """Start every job at the same moment and collect the exceptions they raise."""
        barrier = threading.Barrier(len(jobs))
        errors = []

        def worker(job):
            try:
                barrier.wait()
                job()
            except Exception as exc:
                errors.append(exc)
            finally:
                connections.close_all()

        threads = [threading.Thread(target=worker, args=(job,)) for job in jobs]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return errors

    def assign_many(self, subject, days, escort):
        def job():
            for day in days:
                AssignmentService.assign_escort(subject, self.project.id, day, escort.id)
        return job

    def assertIndexConsistent(self, subject):
        live = sorted({
            row.assignment_date.isoformat()
            for row in DailyAssignment.objects.filter(**subject.as_filter(self.project.id))
        })
        self.assertEqual(AssignmentService.get_scheduled_dates(subject, self.project.id), live)

    def test_different_subjects_run_without_errors(self):
        errors = self.run_in_threads(*(
            self.assign_many(subject, self.days(15), self.escort_x) for subject in self.subjects
        ))

        self.assertEqual(errors, [])
        self.assertEqual(DailyAssignment.objects.count(), 60)
        for subject in self.subjects:
            self.assertEqual(len(AssignmentService.get_scheduled_dates(subject, self.project.id)), 15)
            self.assertIndexConsistent(subject)

    def test_same_subject_on_different_dates_keeps_index_in_sync(self):
        subject = self.subjects[0]
        odd_days = self.days(8, start=1, step=2)
        even_days = self.days(8, start=2, step=2)

        errors = self.run_in_threads(
            self.assign_many(subject, odd_days, self.escort_x),
            self.assign_many(subject, even_days, self.escort_y),
        )

        self.assertEqual(errors, [])
        self.assertEqual(
            AssignmentService.get_scheduled_dates(subject, self.project.id),
            sorted(day.isoformat() for day in odd_days + even_days),
        )
        self.assertIndexConsistent(subject)

    def test_identical_tuple_race_keeps_one_row(self):
        subject = self.subjects[0]
        day = date(2025, 1, 10)

        errors = self.run_in_threads(*(
            self.assign_many(subject, [day], self.escort_x) for _ in range(4)
        ))

        self.assertEqual(len(errors), 3)
        self.assertTrue(all(isinstance(exc, DuplicateAssignment) for exc in errors), errors)
        self.assertEqual(DailyAssignment.objects.count(), 1)
        self.assertEqual(AssignmentService.get_scheduled_dates(subject, self.project.id), ["2025-01-10"])
