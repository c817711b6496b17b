"""
    Result formatter: raw rows in, QueryResult out (structured records, a one line summary and a Markdown rendering)
    NOTE: Pure and deterministic. The same rows always produce byte-identical output
    NOTE: Money always has two decimals and a currency symbol. Dates are ISO-8601 (UTC) in data and "Jan 15, 2024" in text
    NOTE: Missing optional fields become a placeholder string. None never leaks into the formatted text
"""

from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from src.errors import SupportQueryError
from src.schemas import (
    CustomerRecord,
    CustomerRef,
    EntityType,
    ErrorKind,
    OrderRecord,
    ProductRecord,
    ProductRef,
    QueryResult,
    TicketRecord,
    ToolError,
    ToolOutput,
)

NOT_PROVIDED = "Not provided"
NO_DESCRIPTION = "No description available"
UNKNOWN = "Unknown"

CURRENCY_SYMBOL = "$"
_CENTS = Decimal("0.01")

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

# (singular used in "Found N x(s)", plural used in "No x found", text for an empty result)
_NOUNS = {
    EntityType.CUSTOMER: ("customer record", "customer records", "No customer details were found for your account."),
    EntityType.PRODUCT: ("product", "products", "No products were found for the requested product IDs."),
    EntityType.ORDER: ("order", "orders", "No orders were found for your account."),
    EntityType.TICKET: ("support ticket", "support tickets", "No support tickets were found for your account."),
}


def format_money(value) -> str:
    """699.99 -> "$699.99", 15 -> "$15.00". Accepts numbers, Decimals and already formatted strings."""
    amount = Decimal(str(value).replace(CURRENCY_SYMBOL, "").replace(",", "").strip())
    return f"{CURRENCY_SYMBOL}{amount.quantize(_CENTS, rounding=ROUND_HALF_UP)}"


def to_iso(value) -> str:
    """Normalize a datetime, date or ISO string to an ISO-8601 UTC timestamp. Naive values are taken as UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    elif isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if not isinstance(value, datetime):
        raise TypeError(f"Expected a date, got {type(value).__name__}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def display_date(iso_value: str) -> str:
    """ISO timestamp -> fixed en-US style date, e.g. "Jan 15, 2024". Independent of the process locale."""
    moment = datetime.fromisoformat(iso_value.replace("Z", "+00:00"))
    return f"{MONTHS[moment.month - 1]} {moment.day}, {moment.year}"


def _text(value, placeholder: str = NOT_PROVIDED) -> str:
    if value is None:
        return placeholder
    value = str(value).strip()
    return value or placeholder


def _cell(value: str) -> str:
    # Markdown table cells can't hold pipes or line breaks
    return value.replace("|", "\\|").replace("\r", " ").replace("\n", " ")


# raw row -> structured record

def customer_record(row: dict) -> CustomerRecord:
    return CustomerRecord(
        id=int(row["id"]),
        name=_text(row.get("name"), UNKNOWN),
        email=_text(row.get("email")),
        phone=_text(row.get("phone")),
        address=_text(row.get("address")),
    )


def product_record(row: dict) -> ProductRecord:
    stock = int(row.get("stock") or 0)
    return ProductRecord(
        id=int(row["id"]),
        name=_text(row.get("name"), UNKNOWN),
        price=format_money(row["price"]),
        description=_text(row.get("description"), NO_DESCRIPTION),
        stock=stock,
        available="In stock" if stock > 0 else "Out of stock",
    )


def order_record(row: dict) -> OrderRecord:
    return OrderRecord(
        id=int(row["id"]),
        customer=CustomerRef(name=_text(row.get("customer_name"), UNKNOWN), email=_text(row.get("customer_email"))),
        product=ProductRef(name=_text(row.get("product_name"), "Unknown product"), price=format_money(row["product_price"])),
        total=format_money(row["total"]),
        status=_text(row.get("status"), UNKNOWN),
        order_date=to_iso(row["order_date"]),
    )


def ticket_record(row: dict) -> TicketRecord:
    return TicketRecord(
        id=int(row["id"]),
        customer=CustomerRef(name=_text(row.get("customer_name"), UNKNOWN), email=_text(row.get("customer_email"))),
        issue=_text(row.get("issue"), "No issue description"),
        status=_text(row.get("status"), "Open"),
        created_at=to_iso(row["created_at"]),
    )


# structured records -> Markdown

def render_customers(records: list[CustomerRecord]) -> str:
    sections = []
    for record in records:
        sections.append("\n".join([
            f"### {record.name}",
            f"- **Customer ID:** {record.id}",
            f"- **Email:** {record.email}",
            f"- **Phone:** {record.phone}",
            f"- **Address:** {record.address}",
        ]))
    return "\n\n".join(sections)


def render_products(records: list[ProductRecord]) -> str:
    lines = [
        "| ID | Name | Price | Stock | Availability | Description |",
        "| --- | --- | --- | --- | --- | --- |",
    ]
    for record in records:
        lines.append(
            f"| {record.id} | {_cell(record.name)} | {record.price} | {record.stock} "
            f"| {record.available} | {_cell(record.description)} |"
        )
    return "\n".join(lines)


def render_orders(records: list[OrderRecord]) -> str:
    sections = []
    for record in records:
        sections.append("\n".join([
            f"### Order #{record.id}",
            f"- **Status:** {record.status}",
            f"- **Product:** {record.product.name} ({record.product.price})",
            f"- **Total:** {record.total}",
            f"- **Ordered on:** {display_date(record.order_date)}",
            f"- **Customer:** {record.customer.name} ({record.customer.email})",
        ]))
    return "\n\n".join(sections)


def render_tickets(records: list[TicketRecord]) -> str:
    sections = []
    for record in records:
        sections.append("\n".join([
            f"### Ticket #{record.id}",
            f"- **Status:** {record.status}",
            f"- **Issue:** {record.issue}",
            f"- **Created on:** {display_date(record.created_at)}",
            f"- **Customer:** {record.customer.name} ({record.customer.email})",
        ]))
    return "\n\n".join(sections)


_PROFILES = {
    EntityType.CUSTOMER: (customer_record, render_customers),
    EntityType.PRODUCT: (product_record, render_products),
    EntityType.ORDER: (order_record, render_orders),
    EntityType.TICKET: (ticket_record, render_tickets),
}


def format_result(entity_type: EntityType, rows: list[dict]) -> QueryResult:
    """Build the QueryResult for a set of raw rows. An empty result is a normal answer, not an error."""
    to_record, render = _PROFILES[entity_type]
    singular, plural, empty_text = _NOUNS[entity_type]

    records = [to_record(row) for row in rows]
    if not records:
        return QueryResult(type=entity_type, data=[], summary=f"No {plural} found", formatted=empty_text)

    summary = f"Found {len(records)} {singular}(s)"
    return QueryResult(
        type=entity_type,
        data=records,
        summary=summary,
        formatted=f"**{summary}**\n\n{render(records)}",
    )


# (suggestion, text shown to the customer). None means: show the error message itself
_ERROR_TEXT = {
    ErrorKind.AUTHENTICATION_REQUIRED: (
        "Please share the email address linked to your account.",
        "To look up your account details, please provide the email address associated with your account.",
    ),
    ErrorKind.ACCESS_DENIED: (
        "Ask about your own orders, tickets or account details using the email on your account.",
        "For your security, you can only access data that belongs to your own account.",
    ),
    ErrorKind.VALIDATION_ERROR: (
        "Please double-check the order, ticket or product number, or your email address.",
        None,
    ),
    ErrorKind.CONNECTION_ERROR: (
        "Please try again in a few minutes.",
        "Our customer database is temporarily unavailable, so I can't look that up right now. Please try again later.",
    ),
    ErrorKind.TIMEOUT: (
        "Please try again in a moment.",
        "Our customer database is taking too long to respond. Please try again in a moment.",
    ),
    ErrorKind.SCHEMA_ERROR: (
        "Please contact support if this keeps happening.",
        "That information isn't available right now. Please contact support if the problem persists.",
    ),
    ErrorKind.INTERNAL_ERROR: (
        "Please try again later or contact support.",
        "Sorry, something went wrong on our side while looking that up. Please try again later.",
    ),
}


def format_error(error: SupportQueryError, entity_type: EntityType | None = None) -> ToolError:
    """Render a pipeline failure as a structured, customer-safe payload."""
    suggestion, formatted = _ERROR_TEXT[error.kind]
    message = error.message
    if error.kind == ErrorKind.INTERNAL_ERROR:
        # Internal details stay in the logs
        message = "Something went wrong while looking up your data."
    if formatted is None:
        formatted = f"I couldn't run that lookup. {message}"
    return ToolError(
        kind=error.kind,
        type=entity_type,
        message=message,
        suggestion=suggestion,
        formatted=formatted,
    )


def to_ui_components(output: ToolOutput | None) -> list[dict]:
    """One card descriptor per record, for the browser widget. Errors and empty results render as text only."""
    if not isinstance(output, QueryResult):
        return []
    return [
        {
            "component": "ServerCardWrapper",
            "props": {
                "type": output.type.value,
                "data": record.model_dump(by_alias=True),
                "loading": False,
                "fallbackToMarkdown": True,
            },
        }
        for record in output.data
    ]
