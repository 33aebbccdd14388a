#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app.settings import get_settings

EXPECTED_HEAD = "0001_initial"

# Each query returns offending rows; an empty result means the invariant holds.
INVARIANT_QUERIES: dict[str, str] = {
    "multiple_open_records_per_employee": """
        select employee_id, count(*)
        from attendance_records
        where status = 'OPEN'
        group by employee_id
        having count(*) > 1
    """,
    "multiple_pending_contestations_per_record": """
        select attendance_record_id, count(*)
        from contestations
        where status = 'PENDING'
        group by attendance_record_id
        having count(*) > 1
    """,
    "approved_record_with_pending_contestation": """
        select r.id
        from attendance_records r
        join contestations c on c.attendance_record_id = r.id
        where r.status = 'APPROVED' and c.status = 'PENDING'
        limit 20
    """,
    "suspicious_record_without_reason": """
        select id
        from attendance_records
        where is_suspicious = true and (suspicious_reason is null or suspicious_reason = '')
        limit 20
    """,
    "check_out_not_after_check_in": """
        select id
        from attendance_records
        where check_out_time is not null and check_out_time <= check_in_time
        limit 20
    """,
    "closed_record_without_hours": """
        select id
        from attendance_records
        where status <> 'OPEN' and total_hours is null
        limit 20
    """,
}


def _check_invariants(conn: Connection, tables: set[str]) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    if not {"attendance_records", "contestations"} <= tables:
        return results
    for name, query in INVARIANT_QUERIES.items():
        rows = conn.execute(text(query)).fetchall()
        results.append(
            {
                "name": name,
                "status": "fail" if rows else "ok",
                "details": {"rows": [list(row) for row in rows]},
            }
        )
    return results


def run() -> dict:
    database_url = get_settings().database_url
    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "database_url": engine.url.render_as_string(hide_password=True),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    tables = set(inspect(engine).get_table_names())
    with engine.connect() as conn:
        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        required_tables = [
            "tenants",
            "clients",
            "sites",
            "employees",
            "attendance_records",
            "contestations",
            "leave_requests",
            "payroll_records",
            "audit_logs",
        ]
        missing = [table for table in required_tables if table not in tables]
        add("missing_tables", "fail" if missing else "ok", {"missing": missing})

        report["checks"].extend(_check_invariants(conn, tables))

    report["ok"] = all(item["status"] != "fail" for item in report["checks"])
    return report


if __name__ == "__main__":
    result = run()
    print(json.dumps(result, ensure_ascii=False, indent=2))
    sys.exit(0 if result["ok"] else 1)
