"""
    The database query tool facade: the single entry point the agent (or any caller) uses to look up data
    NOTE: Steps always run in this order: identity -> authorization -> query resolution -> execution -> formatting
    NOTE: It never raises. Every failure comes back as a ToolError whose `formatted` text is safe to show the customer
    NOTE: When the store fails, the failure is reported. No placeholder or sample data is ever substituted
"""

import asyncio
from enum import Enum

from pydantic import ValidationError

from src.errors import AccessDenied, AuthenticationRequired, InternalError, QueryValidationError, SupportQueryError
from src.executor import Store, execute_plan
from src.formatter import format_error, format_result
from src.guard import authorize
from src.identity import Identity
from src.logger import get_logger
from src.router import build_filter, parse_entity_type, plan_for
from src.schemas import ROW_SCOPED_TYPES, EntityType, Identifier, QueryRequest, ToolOutput

logger = get_logger(__name__)


class ToolState(str, Enum):
    IDLE = "Idle"
    VALIDATING_IDENTITY = "ValidatingIdentity"
    AUTHORIZING = "Authorizing"
    RESOLVING = "Resolving"
    EXECUTING = "Executing"
    FORMATTING = "Formatting"
    DONE = "Done"
    FAILED = "Failed"


def validate_identity(identity: Identity | str | None, entity_type: EntityType) -> Identity | None:
    """
        Fail closed: a malformed identity is rejected for every query type,
        a missing one only for the row-scoped types (products are public)
    """
    if isinstance(identity, str):
        try:
            identity = Identity(email=identity)
        except ValidationError:
            raise AuthenticationRequired("The email address provided is not valid.") from None
    if identity is None and entity_type in ROW_SCOPED_TYPES:
        raise AuthenticationRequired(f"An email address is required to look up {entity_type.value} data.")
    return identity


async def run_database_query(
    store: Store,
    entity_type: EntityType | str,
    identity: Identity | str | None = None,
    identifiers: list[Identifier] | list[dict] | None = None,
) -> ToolOutput:
    """Run one scoped data lookup and return a QueryResult, or a ToolError describing why it failed."""
    state = ToolState.IDLE
    parsed_type: EntityType | None = None

    def advance(next_state: ToolState) -> ToolState:
        logger.debug(f"db_query {state.value} -> {next_state.value}", extra={"type": entity_type})
        return next_state

    try:
        state = advance(ToolState.VALIDATING_IDENTITY)
        parsed_type = parse_entity_type(entity_type)
        identity = validate_identity(identity, parsed_type)

        state = advance(ToolState.AUTHORIZING)
        try:
            request = QueryRequest(type=parsed_type, identity=identity, identifiers=identifiers or [])
        except ValidationError:
            raise QueryValidationError("The identifiers for this lookup could not be read.") from None
        decision = authorize(request)
        if not decision.allowed:
            raise AccessDenied(decision.reason)

        state = advance(ToolState.RESOLVING)
        plan = plan_for(build_filter(parsed_type, identity, request.identifiers))

        state = advance(ToolState.EXECUTING)
        # The store is synchronous. Run it in a worker thread so the event loop keeps serving other chats
        rows = await asyncio.to_thread(execute_plan, store, plan)

        state = advance(ToolState.FORMATTING)
        result = format_result(parsed_type, rows)

        state = advance(ToolState.DONE)
        logger.info(
            "db_query complete",
            extra={"type": parsed_type.value, "user": identity.email if identity else None, "rows": len(result.data)},
        )
        return result

    except SupportQueryError as e:
        logger.warning(
            f"db_query failed in {state.value}: {e.kind.value}: {e.message}",
            extra={"user": identity.email if isinstance(identity, Identity) else None},
        )
        advance(ToolState.FAILED)
        return format_error(e, parsed_type)

    except Exception as e:
        # Contract violation, e.g. the formatter received a row of an unexpected shape
        logger.exception(f"db_query internal error in {state.value}: {e}", extra={"type": entity_type})
        advance(ToolState.FAILED)
        return format_error(InternalError(str(e)), parsed_type)
