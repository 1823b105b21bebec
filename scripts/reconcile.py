#!/usr/bin/env python3
"""
Ledger reconciliation sweep.

Cross-checks every student's ledger (or one student's) against its
obligations and credits.  A student that fails is frozen; the exit code is
1 if any student failed.

Usage:
  python scripts/reconcile.py --database-url sqlite:///fees.db
  python scripts/reconcile.py --config fees.yaml --student 2024001
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from sqlalchemy import select  # noqa: E402

from fees_config import get_active_config  # noqa: E402
from fees_kernel.db.engine import get_session_factory, init_engine_from_url  # noqa: E402
from fees_kernel.logging_config import configure_logging  # noqa: E402
from fees_kernel.models.student import Student  # noqa: E402
from fees_services import ReconciliationService, build_payment_orchestrator  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Cross-check student ledgers and freeze mismatches.")
    parser.add_argument("--config", type=Path, default=None, help="Configuration YAML (default: packaged)")
    parser.add_argument("--database-url", type=str, default=None, help="Overrides database.url")
    parser.add_argument("--student", type=str, default=None, help="Reference code of one student")
    args = parser.parse_args()

    configure_logging()
    config = get_active_config(args.config)
    database_url = args.database_url or config.database.url
    if not database_url:
        print("No database URL: pass --database-url or set database.url", file=sys.stderr)
        return 2

    init_engine_from_url(database_url)
    session_factory = get_session_factory()
    orchestrator = build_payment_orchestrator(session_factory, config_path=args.config)
    service = ReconciliationService(orchestrator)

    if args.student:
        with session_factory() as session:
            student_id = session.execute(
                select(Student.id).where(Student.reference_code == args.student.strip())
            ).scalar_one_or_none()
        if student_id is None:
            print(f"Unknown student reference: {args.student}", file=sys.stderr)
            return 2
        reports = [service.check_student(student_id)]
    else:
        reports = service.check_all()

    failed = [report for report in reports if not report.ok]
    for report in failed:
        print(f"FAILED {report.student_id} (frozen={report.frozen})")
        for problem in report.problems:
            print(f"  - {problem}")
    print(f"Checked {len(reports)} student(s), {len(failed)} failed")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
