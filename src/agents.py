"""
NOTE: LLM decides what the customer asked for, which entity type to look up and which identifiers to pass
NOTE: The code decides whose data it is allowed to see. The identity comes from deps, never from the model
NOTE: Use ModelRetry when the model output is low quality (empty reply)
NOTE: Every agent run has UsageLimits set to prevent runaway costs (see chat_service.py)
NOTE: Tools return strings (model_dump_json()). The facade returns structured data, the tool serializes it for the model
NOTE: The tool never raises. Error payloads are instructions to the model about what to tell the customer
"""

from pydantic_ai import Agent, ModelRetry, RunContext

from src.config import MAX_RETRIES, STORE_NAME, SUPPORT_MODEL, AppContext
from src.schemas import EntityType, Identifier, QueryResult
from src.tools import run_database_query

# NOTE: defer_model_check lets tests import the agent and override the model without provider credentials
support_agent = Agent(
    model=SUPPORT_MODEL,
    output_type=str,
    deps_type=AppContext,
    retries=MAX_RETRIES,
    defer_model_check=True,
)


@support_agent.system_prompt
def support_prompt(ctx: RunContext[AppContext]) -> str:
    if ctx.deps.identity is not None:
        identity_line = f"The customer has identified themselves with the email: {ctx.deps.identity.email}"
    else:
        identity_line = (
            "The customer has NOT provided an email address yet. Product questions can still be answered, "
            "but before looking up customer details, orders or support tickets, ask them for the email on their account."
        )

    return f"""
        You are a customer support assistant for {STORE_NAME}, an electronics store.
        {identity_line}

        Use the db_query tool to fetch customer details, products, orders or support tickets when needed.
        - Lookups are always limited to the customer's own account. Never try to look up another person's email.
        - Pass the order, ticket or product numbers the customer mentions as identifiers.
        - When the tool returns a "formatted" field, include that Markdown in your reply as it is.
        - When the tool returns "error": true, tell the customer the "formatted" text and the suggestion politely.
        - NEVER invent orders, tickets, products, prices or customer details. If the data is unavailable, say so.

        For simple greetings respond with a friendly message. Be friendly and concise.
    """


@support_agent.tool
async def db_query(
    ctx: RunContext[AppContext],
    entity_type: EntityType,
    identifiers: list[Identifier] | None = None,
) -> str:
    """
        Query the store for the customer's own account details, orders or support tickets, or for products.

        Args:
            entity_type: What to look up: "customer", "product", "order" or "ticket".
            identifiers: Optional ids to narrow the lookup, one field per identifier, e.g. [{"orderId": "3"}].
                Product lookups need at least one productId.
    """
    if ctx.deps.on_status:
        await ctx.deps.on_status(f"Looking up {entity_type.value} data...")

    output = await run_database_query(ctx.deps.store, entity_type, ctx.deps.identity, identifiers)
    ctx.deps.tool_results.append(output)

    if ctx.deps.on_status:
        await ctx.deps.on_status(output.summary if isinstance(output, QueryResult) else "Lookup failed")
    return output.model_dump_json(by_alias=True)


@support_agent.output_validator
def validate_reply(ctx: RunContext[AppContext], output: str) -> str:
    # Skip validation for partial streaming outputs -- data is still arriving
    if ctx.partial_output:
        return output

    if not output or len(output.strip()) < 2:
        raise ModelRetry("The reply is empty. Write a short, helpful answer for the customer.")

    return output
