from __future__ import annotations

import unittest

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from internhub.db import Base
from internhub.models import TimesheetStatus, UserRole
from internhub.services.schema_guard import (
    EXPECTED_REVISION,
    enum_findings,
    expected_columns,
    expected_enum_labels,
    verify_runtime_schema,
)


class _FakeEnumInspector:
    def __init__(self, enums: list[dict[str, object]]):
        self._enums = enums

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


def _migrated_engine(revision: str | None = EXPECTED_REVISION):
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    with engine.begin() as connection:
        connection.execute(text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)"))
        if revision is not None:
            connection.execute(text("INSERT INTO alembic_version (version_num) VALUES (:rev)"), {"rev": revision})
    return engine


class SchemaGuardTests(unittest.TestCase):
    def test_expectations_follow_the_models(self) -> None:
        columns = expected_columns()
        self.assertIn("contract_terminated", columns["intern_profiles"])
        self.assertIn("idempotency_key", columns["notification_jobs"])
        self.assertEqual(columns["alembic_version"], {"version_num"})

        labels = expected_enum_labels()
        self.assertEqual(labels["user_role"], {item.value for item in UserRole})
        self.assertIn(TimesheetStatus.MENTOR_APPROVED.value, labels["timesheet_status"])

    def test_migrated_database_passes(self) -> None:
        result = verify_runtime_schema(_migrated_engine())

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_missing_table_and_column_are_reported(self) -> None:
        engine = _migrated_engine()
        with engine.begin() as connection:
            connection.execute(text("DROP TABLE checklists"))
            connection.execute(text("ALTER TABLE users DROP COLUMN institution"))

        result = verify_runtime_schema(engine)

        self.assertFalse(result.ok)
        self.assertIn("MISSING_TABLE:checklists", result.issues)
        self.assertIn("MISSING_COLUMNS:users:institution", result.issues)

    def test_alembic_revision_is_checked(self) -> None:
        empty = verify_runtime_schema(_migrated_engine(revision=None))
        self.assertIn("ALEMBIC_VERSION_EMPTY", empty.issues)

        stale = verify_runtime_schema(_migrated_engine(revision="0000_legacy"))
        self.assertTrue(stale.ok)
        self.assertEqual(stale.warnings, ["ALEMBIC_REVISION_MISMATCH:0000_legacy"])

    def test_enum_labels_are_compared(self) -> None:
        inspector = _FakeEnumInspector(
            [{"name": "timesheet_status", "labels": ["pending", "approved", "rejected"]}],
        )

        issues, warnings = enum_findings(
            inspector,  # type: ignore[arg-type]
            {"timesheet_status": {item.value for item in TimesheetStatus}, "user_role": {"hr"}},
        )

        self.assertEqual(issues, ["MISSING_ENUM_VALUES:timesheet_status:mentor-approved"])
        self.assertEqual(warnings, ["ENUM_NOT_FOUND:user_role"])


if __name__ == "__main__":
    unittest.main()
