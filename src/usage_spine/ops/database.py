"""Database operations: schema initialization and row counts."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from usage_spine.core.errors import ConfigError, DatabaseError
from usage_spine.core.logging import get_logger
from usage_spine.core.orm import UsageBase, init_schema
from usage_spine.ops.context import OperationContext
from usage_spine.ops.responses import DatabaseInitResult
from usage_spine.ops.result import OperationResult, start_timer

logger = get_logger(__name__)


def initialize_database(ctx: OperationContext) -> OperationResult[DatabaseInitResult]:
    """Create any missing tables and report per-table row counts."""
    timer = start_timer()

    if ctx.engine is None:
        err = ConfigError("Operation context has no engine; cannot initialize schema")
        return OperationResult.from_error(err, elapsed_ms=timer.elapsed_ms)

    try:
        tables = init_schema(ctx.engine)
        with ctx.session_factory() as session:
            counts = {
                name: session.scalar(select(func.count()).select_from(UsageBase.metadata.tables[name])) or 0
                for name in tables
            }
    except SQLAlchemyError as exc:
        logger.exception("db_init_failed", error=str(exc))
        err = DatabaseError(f"Failed to initialize database: {exc}", cause=exc)
        return OperationResult.from_error(err, elapsed_ms=timer.elapsed_ms)

    logger.info("db_initialized", tables=len(tables))
    return OperationResult.ok(
        DatabaseInitResult(tables=tables, row_counts=counts), elapsed_ms=timer.elapsed_ms
    )
