"""
Module: expense_kernel.db.triggers
Responsibility: Installing, removing and verifying database-level
    immutability triggers.  This is the database-level complement to the
    ORM listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.
    MUST NOT import from models/, store/, services/, domain/, or outer layers.

Invariants enforced (PostgreSQL and SQLite):
    - audit_logs rows: no UPDATE, no DELETE.
    - expense_claims.transaction_number: no change once set.
    - money_assignments rows with is_returned = true: no UPDATE, no DELETE.
    - money_return_requests rows whose status left 'pending': no UPDATE.

The store's own writes go through Core ``update()`` statements, which
mapper events never see.  These triggers hold for those statements, for
bulk operations and for direct SQL sessions alike.

Failure modes:
    - A violating statement fails in the database (RAISE EXCEPTION on
      PostgreSQL, RAISE(ABORT) on SQLite) and surfaces as a
      ``sqlalchemy.exc.DatabaseError`` subclass.
    - Other dialects are skipped with a warning.
"""

from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine

from expense_kernel.logging_config import get_logger

logger = get_logger("db.triggers")


# =============================================================================
# PostgreSQL
# =============================================================================

_PG_FUNCTIONS = [
    """
    CREATE OR REPLACE FUNCTION expense_block_audit_log_change() RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION USING MESSAGE = 'Audit log entries are immutable: ' || TG_OP;
    END;
    $$ LANGUAGE plpgsql
    """,
    """
    CREATE OR REPLACE FUNCTION expense_block_transaction_number_change() RETURNS trigger AS $$
    BEGIN
        IF OLD.transaction_number IS NOT NULL
           AND NEW.transaction_number IS DISTINCT FROM OLD.transaction_number THEN
            RAISE EXCEPTION USING MESSAGE =
                'Transaction number ' || OLD.transaction_number || ' is already assigned';
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    """
    CREATE OR REPLACE FUNCTION expense_block_closed_assignment_change() RETURNS trigger AS $$
    BEGIN
        IF OLD.is_returned THEN
            RAISE EXCEPTION USING MESSAGE = 'Closed money assignments are immutable: ' || TG_OP;
        END IF;
        IF TG_OP = 'DELETE' THEN
            RETURN OLD;
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    """
    CREATE OR REPLACE FUNCTION expense_block_decided_request_change() RETURNS trigger AS $$
    BEGIN
        IF OLD.status <> 'pending' THEN
            RAISE EXCEPTION USING MESSAGE = 'Return request was already ' || OLD.status;
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
]

# (trigger name, table, timing, function)
_PG_TRIGGERS = [
    ("trg_audit_log_immutability", "audit_logs",
     "BEFORE UPDATE OR DELETE", "expense_block_audit_log_change"),
    ("trg_claim_transaction_number", "expense_claims",
     "BEFORE UPDATE", "expense_block_transaction_number_change"),
    ("trg_money_assignment_closed", "money_assignments",
     "BEFORE UPDATE OR DELETE", "expense_block_closed_assignment_change"),
    ("trg_return_request_decided", "money_return_requests",
     "BEFORE UPDATE", "expense_block_decided_request_change"),
]


def _pg_install_statements() -> list[str]:
    statements = list(_PG_FUNCTIONS)
    for name, table, timing, function in _PG_TRIGGERS:
        statements.append(f"DROP TRIGGER IF EXISTS {name} ON {table}")
        statements.append(
            f"CREATE TRIGGER {name} {timing} ON {table} "
            f"FOR EACH ROW EXECUTE FUNCTION {function}()"
        )
    return statements


def _pg_drop_statements() -> list[str]:
    statements = [
        f"DROP TRIGGER IF EXISTS {name} ON {table}"
        for name, table, _, _ in _PG_TRIGGERS
    ]
    statements.extend(
        f"DROP FUNCTION IF EXISTS {function}()"
        for _, _, _, function in _PG_TRIGGERS
    )
    return statements


# =============================================================================
# SQLite
# =============================================================================

# (trigger name, body after CREATE TRIGGER IF NOT EXISTS <name>)
_SQLITE_TRIGGERS = [
    ("trg_audit_log_no_update", """
        BEFORE UPDATE ON audit_logs
        BEGIN SELECT RAISE(ABORT, 'Audit log entries are immutable: UPDATE'); END
    """),
    ("trg_audit_log_no_delete", """
        BEFORE DELETE ON audit_logs
        BEGIN SELECT RAISE(ABORT, 'Audit log entries are immutable: DELETE'); END
    """),
    ("trg_claim_transaction_number", """
        BEFORE UPDATE OF transaction_number ON expense_claims
        WHEN OLD.transaction_number IS NOT NULL
             AND NEW.transaction_number IS NOT OLD.transaction_number
        BEGIN SELECT RAISE(ABORT, 'Transaction number is already assigned'); END
    """),
    ("trg_money_assignment_closed_update", """
        BEFORE UPDATE ON money_assignments
        WHEN OLD.is_returned = 1
        BEGIN SELECT RAISE(ABORT, 'Closed money assignments are immutable: UPDATE'); END
    """),
    ("trg_money_assignment_closed_delete", """
        BEFORE DELETE ON money_assignments
        WHEN OLD.is_returned = 1
        BEGIN SELECT RAISE(ABORT, 'Closed money assignments are immutable: DELETE'); END
    """),
    ("trg_return_request_decided", """
        BEFORE UPDATE ON money_return_requests
        WHEN OLD.status <> 'pending'
        BEGIN SELECT RAISE(ABORT, 'Return request was already decided'); END
    """),
]


# =============================================================================
# Public API
# =============================================================================


def trigger_names(engine: Engine) -> list[str]:
    """Names of the triggers installed for the engine's dialect."""
    dialect = engine.dialect.name
    if dialect == "postgresql":
        return [name for name, _, _, _ in _PG_TRIGGERS]
    if dialect == "sqlite":
        return [name for name, _ in _SQLITE_TRIGGERS]
    return []


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install the immutability triggers.  Idempotent.

    Preconditions: Tables must exist (call after metadata create_all).
    """
    dialect = engine.dialect.name
    if dialect == "postgresql":
        statements = _pg_install_statements()
    elif dialect == "sqlite":
        statements = [
            f"CREATE TRIGGER IF NOT EXISTS {name} {body}"
            for name, body in _SQLITE_TRIGGERS
        ]
    else:
        logger.warning("immutability_triggers_unsupported", extra={"dialect": dialect})
        return

    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    logger.info(
        "immutability_triggers_installed",
        extra={"dialect": dialect, "count": len(trigger_names(engine))},
    )


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove the immutability triggers.

    WARNING: Only for tests and migrations that must touch protected rows.
    Re-install immediately afterwards.
    """
    dialect = engine.dialect.name
    if dialect == "postgresql":
        statements = _pg_drop_statements()
    elif dialect == "sqlite":
        statements = [f"DROP TRIGGER IF EXISTS {name}" for name, _ in _SQLITE_TRIGGERS]
    else:
        return

    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    logger.warning("immutability_triggers_removed", extra={"dialect": dialect})


def triggers_installed(engine: Engine) -> bool:
    """True iff every trigger for the engine's dialect is present."""
    names = trigger_names(engine)
    if not names:
        return False
    if engine.dialect.name == "postgresql":
        query = "SELECT COUNT(DISTINCT tgname) FROM pg_trigger WHERE tgname IN :names"
    else:
        query = (
            "SELECT COUNT(*) FROM sqlite_master "
            "WHERE type = 'trigger' AND name IN :names"
        )
    stmt = text(query).bindparams(bindparam("names", expanding=True))
    with engine.connect() as conn:
        return conn.execute(stmt, {"names": names}).scalar() == len(names)
