"""
Tests for the db_query tool facade in tools.py

NOTE: run_database_query() never raises. Every test checks the payload it returns, success or failure
NOTE: fake_store records every call, so `fake_store.calls == []` proves a rejected request never reached the database
NOTE: Run this in terminal - python -m pytest tests/test_tools.py -v
"""

from datetime import datetime

import pytest

from src.errors import StoreConnectionError, StoreTimeout
from src.identity import Identity
from src.schemas import EntityType, ErrorKind, QueryResult, ToolError
from src.tools import run_database_query

pytestmark = pytest.mark.anyio

ALICE_ORDER_ROW = {
    "id": 1,
    "order_date": datetime(2024, 1, 15, 10, 30),
    "total": 699.99,
    "status": "Shipped",
    "customer_name": "Alice Smith",
    "customer_email": "alice@example.com",
    "product_name": "Smartphone X",
    "product_price": 699.99,
}


async def test_own_orders_are_returned(fake_store):
    fake_store.rows = [ALICE_ORDER_ROW]

    output = await run_database_query(fake_store, "order", "alice@example.com")

    assert isinstance(output, QueryResult)
    assert len(output.data) == 1
    assert output.summary == "Found 1 order(s)"
    assert "Order #1" in output.formatted
    # The query ran with alice's email as a bind parameter
    _, _, params = fake_store.calls[-1]
    assert params["identity_email"] == "alice@example.com"


async def test_other_customers_email_is_denied_before_the_store(fake_store):
    output = await run_database_query(
        fake_store, "order", Identity(email="alice@example.com"), [{"email": "bob@example.com"}]
    )

    assert isinstance(output, ToolError)
    assert output.kind == ErrorKind.ACCESS_DENIED
    assert output.data == []
    assert fake_store.calls == []


@pytest.mark.parametrize("entity_type", ["customer", "order", "ticket"])
async def test_no_identity_requires_authentication(fake_store, entity_type):
    output = await run_database_query(fake_store, entity_type, None)

    assert output.kind == ErrorKind.AUTHENTICATION_REQUIRED
    assert "email" in output.formatted.lower()
    assert fake_store.calls == []


async def test_malformed_identity_fails_closed_even_for_products(fake_store):
    output = await run_database_query(fake_store, "product", "not-an-email", [{"productId": "101"}])

    assert output.kind == ErrorKind.AUTHENTICATION_REQUIRED
    assert fake_store.calls == []


async def test_store_timeout_is_reported_not_replaced(fake_store):
    fake_store.rows = [ALICE_ORDER_ROW]
    fake_store.error = StoreTimeout("The database took too long to respond.")

    output = await run_database_query(fake_store, "order", "alice@example.com")

    assert isinstance(output, ToolError)
    assert output.kind == ErrorKind.TIMEOUT
    assert output.data == []


async def test_store_connection_error(fake_store):
    fake_store.error = StoreConnectionError("The database is unavailable right now.")

    output = await run_database_query(fake_store, "ticket", "alice@example.com")

    assert output.kind == ErrorKind.CONNECTION_ERROR
    assert output.type == EntityType.TICKET


async def test_missing_table_is_schema_error(fake_store):
    fake_store.tables.discard("support_ticket")

    output = await run_database_query(fake_store, "ticket", "alice@example.com")

    assert output.kind == ErrorKind.SCHEMA_ERROR
    assert not any(call[0] == "execute" for call in fake_store.calls)


async def test_unknown_product_is_an_empty_result(store):
    output = await run_database_query(store, "product", None, [{"productId": "999"}])

    assert isinstance(output, QueryResult)
    assert output.data == []
    assert output.summary == "No products found"
    assert output.error is None


async def test_products_need_no_identity(store):
    output = await run_database_query(store, EntityType.PRODUCT, None, [{"productId": 101}, {"productId": "#105"}])

    assert [product.id for product in output.data] == [101, 105]
    assert output.data[1].available == "Out of stock"


async def test_seeded_orders_for_alice(store):
    output = await run_database_query(store, "order", "ALICE@example.com")

    assert [order.id for order in output.data] == [3, 1]
    assert output.data[0].order_date == "2024-03-09T09:00:00Z"


async def test_non_numeric_id_is_validation_error(fake_store):
    output = await run_database_query(fake_store, "order", "alice@example.com", [{"orderId": "abc"}])

    assert output.kind == ErrorKind.VALIDATION_ERROR
    assert "abc" in output.formatted
    assert fake_store.calls == []


async def test_unreadable_identifiers_are_validation_error(fake_store):
    output = await run_database_query(fake_store, "order", "alice@example.com", [{"orderId": [1, 2]}])

    assert output.kind == ErrorKind.VALIDATION_ERROR
    assert fake_store.calls == []


async def test_unknown_type_is_validation_error(fake_store):
    output = await run_database_query(fake_store, "invoice", "alice@example.com")

    assert output.kind == ErrorKind.VALIDATION_ERROR
    assert output.type is None


async def test_product_without_ids_is_validation_error(fake_store):
    output = await run_database_query(fake_store, "product")

    assert output.kind == ErrorKind.VALIDATION_ERROR
    assert fake_store.calls == []


async def test_unexpected_row_shape_is_internal_error(fake_store):
    fake_store.rows = [{"id": 1}]

    output = await run_database_query(fake_store, "order", "alice@example.com")

    assert output.kind == ErrorKind.INTERNAL_ERROR
    assert "KeyError" not in output.formatted
    assert "product_price" not in output.message
