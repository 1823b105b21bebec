"""
Module: fees_kernel.db.triggers
Responsibility: Installing and removing PostgreSQL append-only triggers.
    Database-level complement to the ORM listeners in db/immutability.py.
Architecture position: Kernel > DB.  MUST NOT import from models/,
    services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - ledger_entries rows: no UPDATE, no DELETE.
    - transaction_claims rows: no UPDATE, no DELETE.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on violation, surfaced by SQLAlchemy as
      InternalError / DBAPIError.

Audit relevance:
    Raw SQL and bulk statements bypass ORM events; these triggers do not.
    TRUNCATE (used only by test cleanup) is not a row-level event.
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

from fees_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

APPEND_ONLY_TABLES = ("ledger_entries", "transaction_claims")

_FUNCTION_SQL = """
CREATE OR REPLACE FUNCTION fees_reject_mutation() RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION '% on % is not allowed: table is append-only',
        TG_OP, TG_TABLE_NAME;
END;
$$ LANGUAGE plpgsql;
"""


def _trigger_name(table: str) -> str:
    return f"trg_{table}_append_only"


def install_immutability_triggers(engine: Engine) -> None:
    """Install append-only triggers on every table in APPEND_ONLY_TABLES."""
    with engine.begin() as conn:
        conn.execute(text(_FUNCTION_SQL))
        for table in APPEND_ONLY_TABLES:
            name = _trigger_name(table)
            conn.execute(text(f"DROP TRIGGER IF EXISTS {name} ON {table}"))
            conn.execute(
                text(
                    f"CREATE TRIGGER {name} BEFORE UPDATE OR DELETE ON {table} "
                    "FOR EACH ROW EXECUTE FUNCTION fees_reject_mutation()"
                )
            )
    logger.info("immutability_triggers_installed", extra={"tables": list(APPEND_ONLY_TABLES)})


def uninstall_immutability_triggers(engine: Engine) -> None:
    """Remove the triggers and their function (tables may not exist yet)."""
    with engine.begin() as conn:
        for table in APPEND_ONLY_TABLES:
            exists = conn.execute(
                text("SELECT to_regclass(:table)"), {"table": table}
            ).scalar()
            if exists is not None:
                conn.execute(text(f"DROP TRIGGER IF EXISTS {_trigger_name(table)} ON {table}"))
        conn.execute(text("DROP FUNCTION IF EXISTS fees_reject_mutation()"))
