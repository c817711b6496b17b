"""
    Query router: turns an entity type plus the model's identifiers into one of four fixed, parameterized queries
    NOTE: The model never writes SQL. It can only choose an entity type and pass identifiers
    NOTE: Identifier values only ever travel as bind parameters. The SQL text is one of the constants below
    NOTE: Rows of customer, order and ticket queries are always filtered by the caller's own email
"""

from dataclasses import dataclass, field
from typing import Any

from src.errors import InvalidType, MissingRequiredIdentifier, QueryValidationError
from src.identity import Identity, is_valid_email, normalize_email
from src.schemas import (
    CustomerFilter,
    EntityType,
    Identifier,
    OrderFilter,
    ProductFilter,
    QueryFilter,
    TicketFilter,
)

TABLES = {
    EntityType.CUSTOMER: "customer",
    EntityType.PRODUCT: "product",
    EntityType.ORDER: "order",
    EntityType.TICKET: "support_ticket",
}

CUSTOMER_QUERY = """
    SELECT c.id, c.name, c.email, c.phone, c.address
    FROM customer c
    WHERE LOWER(c.email) = :identity_email{ids}
    ORDER BY c.id
"""

PRODUCT_QUERY = """
    SELECT p.id, p.name, p.price, p.description, p.stock
    FROM product p
    WHERE p.id IN :product_ids
    ORDER BY p.id
"""

# "order" is a reserved word, the table name must stay quoted
ORDER_QUERY = """
    SELECT o.id, o.order_date, o.total, o.status,
           c.name AS customer_name, c.email AS customer_email,
           p.name AS product_name, p.price AS product_price
    FROM "order" o
    JOIN customer c ON o.customer_id = c.id
    JOIN product p ON o.product_id = p.id
    WHERE LOWER(c.email) = :identity_email{ids}
    ORDER BY o.order_date DESC, o.id
"""

TICKET_QUERY = """
    SELECT st.id, st.issue, st.status, st.created_at,
           c.name AS customer_name, c.email AS customer_email
    FROM support_ticket st
    JOIN customer c ON st.customer_id = c.id
    WHERE LOWER(c.email) = :identity_email{ids}
    ORDER BY st.created_at DESC, st.id
"""

# Which id field each entity type accepts. email is accepted everywhere (and ignored for products)
ID_FIELDS = {
    EntityType.CUSTOMER: "customer_id",
    EntityType.PRODUCT: "product_id",
    EntityType.ORDER: "order_id",
    EntityType.TICKET: "ticket_id",
}

ID_LABELS = {
    "customer_id": "customerId",
    "product_id": "productId",
    "order_id": "orderId",
    "ticket_id": "ticketId",
    "email": "email",
}


@dataclass(frozen=True)
class QueryPlan:
    """A resolved query: fixed SQL text plus its bind parameters. List values bind to IN clauses."""
    type: EntityType
    table: str
    sql: str
    params: dict[str, Any] = field(default_factory=dict)


def parse_entity_type(value) -> EntityType:
    try:
        return EntityType(value)
    except ValueError:
        raise InvalidType(
            f"'{value}' is not something I can look up. Choose one of: customer, product, order, ticket."
        ) from None


def parse_positive_int(value, label: str) -> int:
    """Parse an id the way customers type it ("42", " #42 ", 42). Anything else is a validation error."""
    if isinstance(value, bool):
        raise QueryValidationError(f"'{value}' is not a valid {label}. IDs are positive whole numbers.")
    if isinstance(value, int):
        parsed = value
    else:
        text = str(value).strip().lstrip("#").strip()
        if not (text.isascii() and text.isdigit()):
            raise QueryValidationError(f"'{value}' is not a valid {label}. IDs are positive whole numbers.")
        parsed = int(text)
    if parsed <= 0:
        raise QueryValidationError(f"'{value}' is not a valid {label}. IDs are positive whole numbers.")
    return parsed


def populated_fields(identifier: Identifier) -> list[str]:
    return [
        name for name in ("product_id", "order_id", "ticket_id", "customer_id", "email")
        if getattr(identifier, name) not in (None, "")
    ]


def build_filter(entity_type: EntityType, identity: Identity | None, identifiers: list[Identifier]) -> QueryFilter:
    """Validate the identifiers for one entity type and build its filter."""
    id_field = ID_FIELDS[entity_type]
    ids: list[int] = []

    for identifier in identifiers:
        fields = populated_fields(identifier)
        if len(fields) > 1:
            raise QueryValidationError(
                "Each identifier can hold only one of productId, orderId, ticketId, customerId or email."
            )
        if not fields:
            continue

        name = fields[0]
        value = getattr(identifier, name)
        if name == "email":
            if not is_valid_email(normalize_email(str(value))):
                raise QueryValidationError(f"'{value}' is not a valid email address.")
            continue
        if name != id_field:
            raise QueryValidationError(f"{ID_LABELS[name]} can't be used to look up {entity_type.value} data.")

        parsed = parse_positive_int(value, ID_LABELS[name])
        # Deduplicate, keep the order the ids were asked for
        if parsed not in ids:
            ids.append(parsed)

    if entity_type == EntityType.PRODUCT:
        if not ids:
            raise MissingRequiredIdentifier("A product lookup needs at least one productId.")
        return ProductFilter(product_ids=tuple(ids))

    if identity is None:
        raise MissingRequiredIdentifier(f"A {entity_type.value} lookup needs the customer's email address.")

    if entity_type == EntityType.CUSTOMER:
        return CustomerFilter(email=identity.email, customer_ids=tuple(ids))
    if entity_type == EntityType.ORDER:
        return OrderFilter(email=identity.email, order_ids=tuple(ids))
    return TicketFilter(email=identity.email, ticket_ids=tuple(ids))


def _scoped_plan(entity_type: EntityType, template: str, email: str, id_param: str, id_column: str, ids) -> QueryPlan:
    params: dict[str, Any] = {"identity_email": email}
    clause = ""
    if ids:
        clause = f" AND {id_column} IN :{id_param}"
        params[id_param] = list(ids)
    return QueryPlan(type=entity_type, table=TABLES[entity_type], sql=template.format(ids=clause), params=params)


def plan_for(query_filter: QueryFilter) -> QueryPlan:
    """Map a filter to its fixed query template."""
    if isinstance(query_filter, ProductFilter):
        return QueryPlan(
            type=EntityType.PRODUCT,
            table=TABLES[EntityType.PRODUCT],
            sql=PRODUCT_QUERY,
            params={"product_ids": list(query_filter.product_ids)},
        )
    if isinstance(query_filter, CustomerFilter):
        return _scoped_plan(EntityType.CUSTOMER, CUSTOMER_QUERY, query_filter.email,
                            "customer_ids", "c.id", query_filter.customer_ids)
    if isinstance(query_filter, OrderFilter):
        return _scoped_plan(EntityType.ORDER, ORDER_QUERY, query_filter.email,
                            "order_ids", "o.id", query_filter.order_ids)
    if isinstance(query_filter, TicketFilter):
        return _scoped_plan(EntityType.TICKET, TICKET_QUERY, query_filter.email,
                            "ticket_ids", "st.id", query_filter.ticket_ids)
    raise InvalidType(f"Unsupported query filter: {type(query_filter).__name__}")


def resolve(entity_type, identifiers: list[Identifier] | None = None, identity: Identity | None = None) -> QueryPlan:
    """Resolve a requested entity type and identifiers to a parameterized query."""
    entity_type = parse_entity_type(entity_type)
    return plan_for(build_filter(entity_type, identity, identifiers or []))
