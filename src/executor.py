"""
    Query executor: runs a resolved query plan against the store
    NOTE: No retries here. A failed query is reported straight away, retry policy lives at the model call
    NOTE: The target table is checked first so a missing table is a SchemaError, not an empty answer
"""

from typing import Protocol

from src.errors import SchemaError
from src.logger import get_logger
from src.router import QueryPlan

logger = get_logger(__name__)


class Store(Protocol):
    """What the pipeline needs from a data store. SqlStore is the production implementation."""

    def execute(self, query: str, params: dict) -> list[dict]: ...

    def table_exists(self, name: str) -> bool: ...


def execute_plan(store: Store, plan: QueryPlan) -> list[dict]:
    """Run a query plan and return the raw rows. Raises StoreConnectionError, StoreTimeout or SchemaError."""
    if not store.table_exists(plan.table):
        logger.warning("Expected table is missing", extra={"table": plan.table})
        raise SchemaError(f"The {plan.type.value} data isn't set up in the database yet.")

    logger.debug("Executing query", extra={"type": plan.type.value, "params": plan.params})
    rows = store.execute(plan.sql, plan.params)
    logger.debug("Query returned rows", extra={"type": plan.type.value, "rows": len(rows)})
    return rows
