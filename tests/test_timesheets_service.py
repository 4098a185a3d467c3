from __future__ import annotations

import unittest

from sqlalchemy import select

from internhub.errors import ApiError, DuplicateSubmission, Unauthorized
from internhub.models import Notification, TimesheetStatus, UserRole
from internhub.services.notifications import NOTIFICATION_TYPE_TIMESHEET_DECISION
from internhub.services.timesheets import (
    can_transition,
    hr_decide,
    list_mentor_queue,
    list_own_timesheets,
    list_timesheets_for_hr,
    mentor_decide,
    normalize_week,
    submit_timesheet,
)
from tests.support import make_session_factory, make_trainee, make_user, session_of

WEEK_NOTES = ["Setup", "Code review", "", "Testing", "Demo"]


class TimesheetTransitionTests(unittest.TestCase):
    def test_terminal_states_have_no_exit(self) -> None:
        for terminal in (TimesheetStatus.APPROVED, TimesheetStatus.REJECTED):
            for target in TimesheetStatus:
                for role in (UserRole.MENTOR, UserRole.HR):
                    self.assertFalse(can_transition(terminal, target, role))

    def test_mentor_only_acts_on_pending(self) -> None:
        self.assertTrue(can_transition(TimesheetStatus.PENDING, TimesheetStatus.MENTOR_APPROVED, UserRole.MENTOR))
        self.assertTrue(can_transition(TimesheetStatus.PENDING, TimesheetStatus.REJECTED, UserRole.MENTOR))
        self.assertFalse(can_transition(TimesheetStatus.PENDING, TimesheetStatus.APPROVED, UserRole.MENTOR))
        self.assertFalse(
            can_transition(TimesheetStatus.MENTOR_APPROVED, TimesheetStatus.REJECTED, UserRole.MENTOR)
        )

    def test_hr_finalises(self) -> None:
        self.assertTrue(can_transition(TimesheetStatus.MENTOR_APPROVED, TimesheetStatus.APPROVED, UserRole.HR))
        self.assertTrue(can_transition(TimesheetStatus.PENDING, TimesheetStatus.APPROVED, UserRole.HR))
        self.assertTrue(can_transition(TimesheetStatus.PENDING, TimesheetStatus.REJECTED, UserRole.HR))
        self.assertFalse(can_transition(TimesheetStatus.PENDING, TimesheetStatus.MENTOR_APPROVED, UserRole.HR))
        self.assertFalse(can_transition(TimesheetStatus.PENDING, TimesheetStatus.APPROVED, UserRole.INTERN))

    def test_week_normalisation(self) -> None:
        self.assertEqual(normalize_week("2024-w05"), "2024-W05")
        self.assertEqual(normalize_week("2024-01-31"), "2024-W05")
        self.assertEqual(normalize_week("2020-W53"), "2020-W53")
        for bad in ("2024-W54", "2024-W5", "last week"):
            with self.assertRaises(ApiError) as ctx:
                normalize_week(bad)
            self.assertEqual(ctx.exception.code, "INVALID_WEEK")


class TimesheetServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.hr = make_user(self.db, role=UserRole.HR, email="hr@example.com")
        self.mentor = make_user(self.db, role=UserRole.MENTOR, email="mentor@example.com", department="ICT")
        self.other_mentor = make_user(
            self.db,
            role=UserRole.MENTOR,
            email="other-mentor@example.com",
            department="ICT",
        )
        self.intern, _profile = make_trainee(self.db, email="intern@example.com", mentor=self.mentor)

    def tearDown(self) -> None:
        self.db.close()

    def _submit(self, week: str = "2024-W05"):
        return submit_timesheet(
            self.db,
            actor=session_of(self.intern),
            week=week,
            daily_descriptions=WEEK_NOTES,
            hours_worked=38.5,
        )

    def test_submission_is_pending_and_routed_to_mentor(self) -> None:
        timesheet = self._submit()
        self.assertEqual(timesheet.status, TimesheetStatus.PENDING)
        self.assertEqual(timesheet.mentor_id, self.mentor.id)
        self.assertEqual(timesheet.submitter_role, UserRole.INTERN)
        self.assertEqual(timesheet.daily_descriptions, WEEK_NOTES)
        self.assertEqual([item.id for item in list_mentor_queue(self.db, actor=session_of(self.mentor))], [timesheet.id])
        self.assertEqual(list_mentor_queue(self.db, actor=session_of(self.other_mentor)), [])

    def test_same_week_cannot_be_submitted_twice(self) -> None:
        self._submit("2024-W05")
        with self.assertRaises(DuplicateSubmission):
            self._submit("2024-01-31")
        self.assertEqual(len(list_own_timesheets(self.db, actor=session_of(self.intern))), 1)

    def test_trainee_without_mentor_cannot_submit(self) -> None:
        unassigned, _profile = make_trainee(self.db, email="unassigned@example.com")
        with self.assertRaises(ApiError) as ctx:
            submit_timesheet(
                self.db,
                actor=session_of(unassigned),
                week="2024-W05",
                daily_descriptions=WEEK_NOTES,
            )
        self.assertEqual(ctx.exception.code, "MENTOR_NOT_ASSIGNED")

    def test_exactly_five_descriptions_required(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            submit_timesheet(
                self.db,
                actor=session_of(self.intern),
                week="2024-W05",
                daily_descriptions=["Mon", "Tue"],
            )
        self.assertEqual(ctx.exception.code, "INVALID_DESCRIPTIONS")

    def test_only_assigned_mentor_can_decide(self) -> None:
        timesheet = self._submit()
        with self.assertRaises(Unauthorized):
            mentor_decide(
                self.db,
                actor=session_of(self.other_mentor),
                timesheet_id=timesheet.id,
                approve=True,
            )

    def test_mentor_then_hr_approval(self) -> None:
        timesheet = self._submit()

        reviewed = mentor_decide(
            self.db,
            actor=session_of(self.mentor),
            timesheet_id=timesheet.id,
            approve=True,
            feedback=" Good week ",
        )
        self.assertEqual(reviewed.status, TimesheetStatus.MENTOR_APPROVED)
        self.assertEqual(reviewed.mentor_feedback, "Good week")
        self.assertEqual(reviewed.mentor_approved_by, self.mentor.id)

        with self.assertRaises(ApiError) as ctx:
            mentor_decide(self.db, actor=session_of(self.mentor), timesheet_id=timesheet.id, approve=False)
        self.assertEqual(ctx.exception.code, "INVALID_TRANSITION")

        final = hr_decide(self.db, actor=session_of(self.hr), timesheet_id=timesheet.id, approve=True)
        self.assertEqual(final.status, TimesheetStatus.APPROVED)
        self.assertEqual(final.approved_by, self.hr.id)
        self.assertEqual(final.approved_by_role, "hr")

        with self.assertRaises(ApiError) as ctx:
            hr_decide(self.db, actor=session_of(self.hr), timesheet_id=timesheet.id, approve=False)
        self.assertEqual(ctx.exception.code, "INVALID_TRANSITION")

        notifications = self.db.scalars(
            select(Notification).where(Notification.user_id == self.intern.id)
        ).all()
        self.assertEqual(len(notifications), 2)
        self.assertTrue(all(item.type == NOTIFICATION_TYPE_TIMESHEET_DECISION for item in notifications))

    def test_mentor_rejection_is_final(self) -> None:
        timesheet = self._submit()
        rejected = mentor_decide(
            self.db,
            actor=session_of(self.mentor),
            timesheet_id=timesheet.id,
            approve=False,
            feedback="Missing Wednesday",
        )
        self.assertEqual(rejected.status, TimesheetStatus.REJECTED)
        self.assertEqual(rejected.rejection_reason, "Missing Wednesday")
        self.assertEqual(rejected.rejected_by_role, "mentor")

        with self.assertRaises(ApiError) as ctx:
            hr_decide(self.db, actor=session_of(self.hr), timesheet_id=timesheet.id, approve=True)
        self.assertEqual(ctx.exception.code, "INVALID_TRANSITION")

    def test_hr_can_approve_straight_from_pending(self) -> None:
        timesheet = self._submit()

        final = hr_decide(self.db, actor=session_of(self.hr), timesheet_id=timesheet.id, approve=True)

        self.assertEqual(final.status, TimesheetStatus.APPROVED)
        self.assertEqual(final.approved_by_role, "hr")
        self.assertIsNone(final.mentor_approved_by)

    def test_hr_rejection_records_hr_as_rejecter(self) -> None:
        timesheet = self._submit()

        rejected = hr_decide(
            self.db,
            actor=session_of(self.hr),
            timesheet_id=timesheet.id,
            approve=False,
            rejection_reason=" Hours do not add up ",
        )

        self.assertEqual(rejected.status, TimesheetStatus.REJECTED)
        self.assertEqual(rejected.rejected_by, self.hr.id)
        self.assertEqual(rejected.rejected_by_role, "hr")
        self.assertEqual(rejected.rejection_reason, "Hours do not add up")
        self.assertIsNone(rejected.approved_by_role)
        self.assertIsNone(rejected.approved_by)

    def test_hr_listing_filters_by_status(self) -> None:
        first = self._submit("2024-W05")
        second = self._submit("2024-W06")
        mentor_decide(self.db, actor=session_of(self.mentor), timesheet_id=second.id, approve=True)

        everything = list_timesheets_for_hr(self.db, actor=session_of(self.hr))
        pending = list_timesheets_for_hr(self.db, actor=session_of(self.hr), status=TimesheetStatus.PENDING)

        self.assertEqual({item.id for item in everything}, {first.id, second.id})
        self.assertEqual([item.id for item in pending], [first.id])
        with self.assertRaises(Unauthorized):
            list_timesheets_for_hr(self.db, actor=session_of(self.mentor))


if __name__ == "__main__":
    unittest.main()
