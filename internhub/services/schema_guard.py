from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Enum, MetaData, inspect, text
from sqlalchemy.engine import Engine, Inspector
from sqlalchemy.exc import SQLAlchemyError

from internhub import models  # noqa: F401  registers every table on Base.metadata
from internhub.db import Base

EXPECTED_REVISION = "0001_initial"


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
        }


def expected_columns(metadata: MetaData = Base.metadata) -> dict[str, set[str]]:
    """Every mapped table with its column names, plus alembic's bookkeeping table."""
    tables = {name: {column.name for column in table.columns} for name, table in metadata.tables.items()}
    tables["alembic_version"] = {"version_num"}
    return tables


def expected_enum_labels(metadata: MetaData = Base.metadata) -> dict[str, set[str]]:
    labels: dict[str, set[str]] = {}
    for table in metadata.tables.values():
        for column in table.columns:
            if isinstance(column.type, Enum) and column.type.name:
                labels.setdefault(column.type.name, set()).update(column.type.enums)
    return labels


def column_issues(inspector: Inspector, expected: dict[str, set[str]]) -> list[str]:
    present_tables = set(inspector.get_table_names())
    issues: list[str] = []
    for table_name in sorted(expected):
        if table_name not in present_tables:
            issues.append(f"MISSING_TABLE:{table_name}")
            continue
        found = {str(item["name"]) for item in inspector.get_columns(table_name)}
        missing = sorted(expected[table_name] - found)
        if missing:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing)}")
    return issues


def enum_findings(inspector: Inspector, expected: dict[str, set[str]]) -> tuple[list[str], list[str]]:
    """Compare PostgreSQL enum labels; returns ``(issues, warnings)``."""
    found = {
        str(item["name"]): {str(label) for label in item.get("labels") or []}
        for item in inspector.get_enums()
        if item.get("name")
    }
    issues: list[str] = []
    warnings: list[str] = []
    for enum_name in sorted(expected):
        if enum_name not in found:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing = sorted(expected[enum_name] - found[enum_name])
        if missing:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing)}")
    return issues, warnings


def _current_revision(engine: Engine) -> str:
    with engine.connect() as connection:
        row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
    return str(row).strip() if row is not None else ""


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    checked_at_utc = datetime.now(timezone.utc)
    issues: list[str] = []
    warnings: list[str] = []
    try:
        inspector = inspect(engine)
        issues.extend(column_issues(inspector, expected_columns()))
        # Named enum types only exist on PostgreSQL.
        if engine.dialect.name == "postgresql":
            enum_issues, enum_warnings = enum_findings(inspector, expected_enum_labels())
            issues.extend(enum_issues)
            warnings.extend(enum_warnings)
        if "MISSING_TABLE:alembic_version" not in issues:
            revision = _current_revision(engine)
            if not revision:
                issues.append("ALEMBIC_VERSION_EMPTY")
            elif revision != EXPECTED_REVISION:
                warnings.append(f"ALEMBIC_REVISION_MISMATCH:{revision}")
    except SQLAlchemyError as exc:
        issues.append(f"SCHEMA_INSPECTION_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=not issues,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
