"""
This file contains the structured schemas shared by the query pipeline, the agent and the API
NOTE: Structured schemas are the contract between the LLM and deterministic code. The model picks the entity type
      and the identifiers, Python decides what it is allowed to see
NOTE: Records serialize with camelCase aliases (orderDate, createdAt, requestId) because the browser widget reads them
NOTE: Every model here is request-scoped. Nothing is cached or mutated after construction
"""
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from src.identity import Identity


class EntityType(str, Enum):
    """
        The kind of data a query is about. Each maps to one table and one formatting profile
        NOTE: LLMs serialize string enums into JSON much more reliably than standard integer-based enums
    """
    CUSTOMER = "customer"
    PRODUCT = "product"
    ORDER = "order"
    TICKET = "ticket"


# Queries of these types only ever return rows owned by the caller
ROW_SCOPED_TYPES = frozenset({EntityType.CUSTOMER, EntityType.ORDER, EntityType.TICKET})


class ErrorKind(str, Enum):
    AUTHENTICATION_REQUIRED = "AuthenticationRequired"
    ACCESS_DENIED = "AccessDenied"
    VALIDATION_ERROR = "ValidationError"
    CONNECTION_ERROR = "ConnectionError"
    TIMEOUT = "Timeout"
    SCHEMA_ERROR = "SchemaError"
    INTERNAL_ERROR = "InternalError"


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    """Body of POST /api/chat"""
    messages: list[ChatMessage] = Field(min_length=1)


class Identifier(BaseModel):
    """
        One identifier the model passes to the db_query tool. At most one field should be set
        NOTE: ids stay loosely typed here. The query router turns a non-numeric id into a ValidationError payload
    """
    model_config = ConfigDict(populate_by_name=True)

    product_id: str | int | None = Field(default=None, alias="productId", description="Product ID to filter by")
    order_id: str | int | None = Field(default=None, alias="orderId", description="Order ID to filter by")
    ticket_id: str | int | None = Field(default=None, alias="ticketId", description="Support ticket ID to filter by")
    customer_id: str | int | None = Field(default=None, alias="customerId", description="Customer ID to filter by")
    email: str | None = Field(default=None, description="Customer email to filter by (must be the customer's own email)")


class QueryRequest(BaseModel):
    """A db_query call as seen by the authorization guard."""
    type: EntityType
    identity: Identity | None = None
    identifiers: list[Identifier] = Field(default_factory=list)


# Tagged union of per-type filters, resolved by the query router
class CustomerFilter(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["customer"] = "customer"
    email: str
    customer_ids: tuple[int, ...] = ()


class ProductFilter(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["product"] = "product"
    product_ids: tuple[int, ...]


class OrderFilter(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["order"] = "order"
    email: str
    order_ids: tuple[int, ...] = ()


class TicketFilter(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["ticket"] = "ticket"
    email: str
    ticket_ids: tuple[int, ...] = ()


QueryFilter = Union[CustomerFilter, ProductFilter, OrderFilter, TicketFilter]


class CustomerRef(BaseModel):
    name: str
    email: str


class ProductRef(BaseModel):
    name: str
    price: str


class CustomerRecord(BaseModel):
    id: int
    name: str
    email: str
    phone: str
    address: str


class ProductRecord(BaseModel):
    id: int
    name: str
    price: str
    description: str
    stock: int
    available: str


class OrderRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    customer: CustomerRef
    product: ProductRef
    total: str
    status: str
    order_date: str = Field(alias="orderDate", description="ISO-8601 timestamp in UTC")


class TicketRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int
    customer: CustomerRef
    issue: str
    status: str
    created_at: str = Field(alias="createdAt", description="ISO-8601 timestamp in UTC")


ResultRow = Union[CustomerRecord, ProductRecord, OrderRecord, TicketRecord]


class QueryResult(BaseModel):
    """Successful output of the db_query tool. An empty data list is a valid answer, not an error."""
    type: EntityType
    data: list[ResultRow] = Field(default_factory=list)
    summary: str
    formatted: str
    error: str | None = None


class ToolError(BaseModel):
    """Failed output of the db_query tool. `formatted` is always safe to show to the customer as is."""
    error: Literal[True] = True
    kind: ErrorKind
    type: EntityType | None = None
    message: str
    suggestion: str
    formatted: str
    data: list = Field(default_factory=list)


ToolOutput = Union[QueryResult, ToolError]


class ChatResponse(BaseModel):
    """Body of the JSON chat response, and the final event of the SSE stream"""
    model_config = ConfigDict(populate_by_name=True)

    text: str
    data: QueryResult | ToolError | None = None
    ui_components: list[dict] = Field(default_factory=list)
    request_id: str = Field(alias="requestId")
    error: bool = False
