from __future__ import annotations

import unittest
from datetime import date, datetime, timezone

from sqlalchemy import select

from internhub.models import Notification, NotificationJob, UserRole
from internhub.services.contract_expiry import scan_contract_expiries
from internhub.services.contracts import extend_contract, terminate_contract
from internhub.services.identity import set_user_active
from internhub.services.notifications import (
    NOTIFICATION_TYPE_CONTRACT_EXPIRY_1WEEK,
    NOTIFICATION_TYPE_CONTRACT_EXPIRY_2WEEKS,
    TEMPLATE_CONTRACT_EXPIRY,
)
from tests.support import make_session_factory, make_trainee, make_user, session_of

# 09:00 UTC is 12:00 in Nairobi, so the local day matches the UTC day.
MARCH_1 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
MARCH_8 = datetime(2024, 3, 8, 9, 0, tzinfo=timezone.utc)


class ContractExpiryScanTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.hr = make_user(self.db, role=UserRole.HR, email="hr@example.com")
        self.intern, self.profile = make_trainee(
            self.db,
            email="intern@example.com",
            full_name="Ivy Intern",
            contract_start=date(2024, 1, 1),
            contract_end=date(2024, 3, 15),
        )

    def tearDown(self) -> None:
        self.db.close()

    def _notifications(self) -> list[Notification]:
        return list(
            self.db.scalars(
                select(Notification).where(Notification.user_id == self.intern.id).order_by(Notification.id)
            ).all()
        )

    def _jobs(self) -> list[NotificationJob]:
        return list(self.db.scalars(select(NotificationJob).order_by(NotificationJob.id)).all())

    def test_two_week_notice_is_sent_once(self) -> None:
        notices = scan_contract_expiries(MARCH_1, db=self.db)

        self.assertEqual(len(notices), 1)
        self.assertEqual(notices[0].threshold, 14)
        self.assertEqual(notices[0].days_until_expiry, 14)
        notifications = self._notifications()
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0].type, NOTIFICATION_TYPE_CONTRACT_EXPIRY_2WEEKS)
        self.assertEqual(notifications[0].message, "Your contract will expire in 2 weeks on 15/03/2024")
        jobs = self._jobs()
        self.assertEqual(len(jobs), 1)
        self.assertEqual(jobs[0].template, TEMPLATE_CONTRACT_EXPIRY)
        self.assertEqual(jobs[0].idempotency_key, f"CONTRACT_EXPIRY:{self.intern.id}:2024-03-15:14")

        self.assertEqual(scan_contract_expiries(MARCH_1, db=self.db), [])
        self.assertEqual(len(self._notifications()), 1)
        self.assertEqual(len(self._jobs()), 1)

    def test_one_week_notice_follows_two_week_notice(self) -> None:
        scan_contract_expiries(MARCH_1, db=self.db)
        notices = scan_contract_expiries(MARCH_8, db=self.db)

        self.assertEqual([notice.threshold for notice in notices], [7])
        self.assertEqual(
            [item.type for item in self._notifications()],
            [NOTIFICATION_TYPE_CONTRACT_EXPIRY_2WEEKS, NOTIFICATION_TYPE_CONTRACT_EXPIRY_1WEEK],
        )
        self.assertTrue(self._jobs()[-1].payload["is_urgent"])
        self.assertEqual(scan_contract_expiries(MARCH_8, db=self.db), [])

    def test_extension_rearms_notices(self) -> None:
        scan_contract_expiries(MARCH_8, db=self.db)
        extend_contract(
            self.db,
            trainee_id=self.intern.id,
            new_end_date=date(2024, 3, 22),
            actor=session_of(self.hr),
        )

        notices = scan_contract_expiries(MARCH_8, db=self.db)

        self.assertEqual(len(notices), 1)
        self.assertEqual(notices[0].threshold, 14)
        self.assertEqual(notices[0].end_date, date(2024, 3, 22))
        self.assertEqual(len(self._jobs()), 2)

    def test_contracts_far_from_expiry_are_skipped(self) -> None:
        early = datetime(2024, 2, 1, 9, 0, tzinfo=timezone.utc)
        self.assertEqual(scan_contract_expiries(early, db=self.db), [])
        self.assertEqual(self._notifications(), [])

    def test_terminated_trainees_are_skipped_but_deactivated_ones_are_not(self) -> None:
        paused, _profile = make_trainee(
            self.db,
            email="paused@example.com",
            contract_start=date(2024, 1, 1),
            contract_end=date(2024, 3, 10),
        )
        set_user_active(self.db, user_id=paused.id, is_active=False, actor=session_of(self.hr))
        terminate_contract(self.db, trainee_id=self.intern.id, reason="policy violation", actor=session_of(self.hr))

        notices = scan_contract_expiries(MARCH_1, db=self.db)

        self.assertEqual(len(notices), 1)
        self.assertEqual(notices[0].user_id, paused.id)
        self.assertEqual(notices[0].threshold, 14)
        self.assertEqual(
            [job.template for job in self._jobs()],
            ["contract_termination", TEMPLATE_CONTRACT_EXPIRY],
        )
        self.assertEqual(self._notifications(), [])


if __name__ == "__main__":
    unittest.main()
