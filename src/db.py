"""
    This module contains the relational store used by the db_query tool, plus the demo schema and sample data
    NOTE: Postgres in production, a SQLite file for the local demo and the tests. Same SQL for both
    NOTE: No pooling. Every call opens a connection and always closes it
    NOTE: Driver errors are classified here into connection, timeout and schema errors. They are never turned into empty results
"""

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    bindparam,
    create_engine,
    insert,
    inspect,
    text,
)
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from src.config import DB_CONNECT_TIMEOUT, DB_STATEMENT_TIMEOUT
from src.errors import InternalError, SchemaError, StoreConnectionError, StoreTimeout, SupportQueryError
from src.logger import get_logger

logger = get_logger(__name__)

_TIMEOUT_MARKERS = ("timeout", "timed out", "canceling statement")
_SCHEMA_MARKERS = ("does not exist", "no such table", "no such column", "undefined table", "undefined column")


def normalize_database_url(database_url: str) -> str:
    """Hosted Postgres providers hand out postgres:// URLs. SQLAlchemy needs the driver spelled out."""
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    if database_url.startswith("postgresql://"):
        database_url = "postgresql+psycopg://" + database_url[len("postgresql://"):]
    return database_url


def create_store_engine(
    database_url: str,
    connect_timeout: float = DB_CONNECT_TIMEOUT,
    statement_timeout: float = DB_STATEMENT_TIMEOUT,
) -> Engine:
    url = make_url(normalize_database_url(database_url))
    connect_args: dict = {}
    if url.get_backend_name() == "postgresql":
        connect_args = {
            "connect_timeout": max(1, int(connect_timeout)),
            "options": f"-c statement_timeout={int(statement_timeout * 1000)}",
        }
    elif url.get_backend_name() == "sqlite":
        connect_args = {"timeout": connect_timeout}
    return create_engine(url, poolclass=NullPool, connect_args=connect_args)


def classify_error(exc: Exception) -> SupportQueryError:
    """Map a driver failure to the error the tool facade reports to the customer."""
    detail = str(getattr(exc, "orig", None) or exc).lower()

    if isinstance(exc, TimeoutError) or any(marker in detail for marker in _TIMEOUT_MARKERS):
        return StoreTimeout("The database took too long to respond.")
    if isinstance(exc, (ProgrammingError, OperationalError)) and any(marker in detail for marker in _SCHEMA_MARKERS):
        return SchemaError("The requested data isn't set up in the database yet.")
    if isinstance(exc, (OperationalError, InterfaceError)) or (isinstance(exc, DBAPIError) and exc.connection_invalidated):
        return StoreConnectionError("The database is unavailable right now.")
    return InternalError("The database returned an unexpected error.")


class SqlStore:
    """
        Data store collaborator: execute(query, params) -> rows and table_exists(name) -> bool
        NOTE: list or tuple parameter values are bound as expanding parameters, for "id IN :ids" clauses
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str, connect_timeout: float = DB_CONNECT_TIMEOUT) -> "SqlStore":
        return cls(create_store_engine(database_url, connect_timeout=connect_timeout))

    def execute(self, query: str, params: dict | None = None) -> list[dict]:
        params = dict(params or {})
        statement = text(query)
        expanding = [bindparam(name, expanding=True) for name, value in params.items() if isinstance(value, (list, tuple))]
        if expanding:
            statement = statement.bindparams(*expanding)

        conn = self._connect()
        try:
            result = conn.execute(statement, params)
            return [dict(row) for row in result.mappings()]
        except (SQLAlchemyError, TimeoutError) as exc:
            logger.warning("Query failed", extra={"error": type(exc).__name__})
            raise classify_error(exc) from exc
        finally:
            self._close(conn)

    def table_exists(self, name: str) -> bool:
        conn = self._connect()
        try:
            return inspect(conn).has_table(name)
        except (SQLAlchemyError, TimeoutError) as exc:
            logger.warning("Table check failed", extra={"table": name, "error": type(exc).__name__})
            raise classify_error(exc) from exc
        finally:
            self._close(conn)

    def close(self) -> None:
        self.engine.dispose()

    def _connect(self) -> Connection:
        try:
            return self.engine.connect()
        except (SQLAlchemyError, TimeoutError) as exc:
            logger.warning("Could not connect to the database", extra={"error": type(exc).__name__})
            raise classify_error(exc) from exc

    def _close(self, conn: Connection) -> None:
        # A failing close is logged, it must not replace the error (or result) of the query itself
        try:
            conn.close()
        except SQLAlchemyError as exc:
            logger.warning(f"Failed to close database connection: {exc}")


# Demo schema, mirrors the production tables
metadata = MetaData()

customer_table = Table(
    "customer", metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(255)),
    Column("email", String(255), unique=True, nullable=False),
    Column("phone", String(50)),
    Column("address", Text),
    Column("created_at", DateTime),
)

product_table = Table(
    "product", metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("price", Float, nullable=False),
    Column("stock", Integer, nullable=False),
    Column("image", String(255)),
)

order_table = Table(
    "order", metadata,
    Column("id", Integer, primary_key=True),
    Column("customer_id", Integer, ForeignKey("customer.id")),
    Column("product_id", Integer, ForeignKey("product.id")),
    Column("order_date", DateTime, nullable=False),
    Column("total", Float, nullable=False),
    Column("status", String(50), nullable=False),
)

support_ticket_table = Table(
    "support_ticket", metadata,
    Column("id", Integer, primary_key=True),
    Column("customer_id", Integer, ForeignKey("customer.id")),
    Column("issue", Text, nullable=False),
    Column("status", String(50), nullable=False),
    Column("created_at", DateTime, nullable=False),
)

DEMO_CUSTOMERS = [
    {"id": 1, "name": "Alice Smith", "email": "alice@example.com", "phone": "123-456-7890", "address": "123 Main St, Anytown USA"},
    {"id": 2, "name": "Bob Johnson", "email": "bob@example.com", "phone": "987-654-3210", "address": "456 Oak Ave, Otherville USA"},
    {"id": 3, "name": "Charlie Brown", "email": "charlie@sample.net", "phone": "555-123-4567", "address": "789 Pine Ln, Somewhere USA"},
    {"id": 4, "name": "Diana Prince", "email": "diana@test.org", "phone": None, "address": None},
]

DEMO_PRODUCTS = [
    {"id": 101, "name": "Smartphone X", "description": "Latest generation smartphone", "price": 699.99, "stock": 50},
    {"id": 102, "name": "Laptop Pro", "description": "High-performance laptop for professionals", "price": 1299.99, "stock": 25},
    {"id": 103, "name": "Wireless Earbuds", "description": "Noise-cancelling wireless earbuds", "price": 149.99, "stock": 100},
    {"id": 104, "name": "USB-C Charger", "description": "Fast charging wall adapter", "price": 29.99, "stock": 200},
    {"id": 105, "name": "Phone Case", "description": None, "price": 15, "stock": 0},
]

DEMO_ORDERS = [
    {"id": 1, "customer_id": 1, "product_id": 101, "order_date": datetime(2024, 1, 15, 10, 30), "total": 699.99, "status": "Shipped"},
    {"id": 2, "customer_id": 2, "product_id": 102, "order_date": datetime(2024, 2, 3, 14, 5), "total": 1299.99, "status": "Processing"},
    {"id": 3, "customer_id": 1, "product_id": 103, "order_date": datetime(2024, 3, 9, 9, 0), "total": 149.99, "status": "Delivered"},
    {"id": 4, "customer_id": 3, "product_id": 101, "order_date": datetime(2024, 3, 21, 16, 45), "total": 699.99, "status": "Pending"},
    {"id": 5, "customer_id": 4, "product_id": 104, "order_date": datetime(2024, 4, 2, 11, 15), "total": 29.99, "status": "Shipped"},
]

DEMO_TICKETS = [
    {"id": 1, "customer_id": 2, "issue": "Laptop screen flickering after update.", "status": "Open", "created_at": datetime(2024, 2, 10, 8, 0)},
    {"id": 2, "customer_id": 1, "issue": "Wrong item delivered for order #3.", "status": "Resolved", "created_at": datetime(2024, 3, 12, 13, 20)},
    {"id": 3, "customer_id": 4, "issue": "Cannot connect wireless earbuds to phone.", "status": "In Progress", "created_at": datetime(2024, 4, 5, 17, 40)},
    {"id": 4, "customer_id": 3, "issue": "Inquiry about return policy for order #4.", "status": "Open", "created_at": datetime(2024, 3, 25, 10, 10)},
]


def create_demo_schema(engine: Engine) -> None:
    metadata.create_all(engine)


def seed_demo_data(engine: Engine) -> None:
    """Create the tables and load the sample customers, products, orders and tickets."""
    create_demo_schema(engine)
    with engine.begin() as conn:
        conn.execute(insert(customer_table), DEMO_CUSTOMERS)
        conn.execute(insert(product_table), DEMO_PRODUCTS)
        conn.execute(insert(order_table), DEMO_ORDERS)
        conn.execute(insert(support_ticket_table), DEMO_TICKETS)
    logger.info("Seeded demo data", extra={"customers": len(DEMO_CUSTOMERS), "orders": len(DEMO_ORDERS)})
