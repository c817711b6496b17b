"""
Shared fixtures for the test suite.

NOTE: Environment defaults are set before anything from src is imported, because src.config reads them at import time
NOTE: `store` is a real SqlStore on a seeded SQLite file, fresh for every test
NOTE: `fake_store` records every call. Use it to prove that a request never reached the database
NOTE: No test talks to a real LLM. Real model requests are switched off for the whole session
"""

import os

os.environ.setdefault("GOOGLE_API_KEY", "test-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["MODEL_RETRY_BASE_DELAY"] = "0"

import pytest
from pydantic_ai import models
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.messages import ModelMessage, ModelResponse, TextPart, ToolCallPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from src.db import SqlStore, seed_demo_data

# Tests use FunctionModel or TestModel through agent.override(). Anything else trying to reach a provider fails loudly
models.ALLOW_MODEL_REQUESTS = False


class RecordingStore:
    """Fake store: returns `rows` for every query and records each call."""

    def __init__(self):
        self.rows: list[dict] = []
        self.tables = {"customer", "product", "order", "support_ticket"}
        self.error: Exception | None = None
        self.calls: list[tuple] = []

    def table_exists(self, name: str) -> bool:
        self.calls.append(("table_exists", name))
        if self.error:
            raise self.error
        return name in self.tables

    def execute(self, query: str, params: dict) -> list[dict]:
        self.calls.append(("execute", query, params))
        if self.error:
            raise self.error
        return list(self.rows)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store(tmp_path) -> SqlStore:
    """SqlStore on a SQLite file seeded with the demo customers, products, orders and tickets"""
    sql_store = SqlStore.from_url(f"sqlite:///{tmp_path / 'shop.db'}")
    seed_demo_data(sql_store.engine)
    yield sql_store
    sql_store.close()


@pytest.fixture
def fake_store() -> RecordingStore:
    return RecordingStore()


def _order_lookup(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
    """First request: call db_query for the caller's orders. Second request: answer with text."""
    if len(messages) == 1:
        return ModelResponse(parts=[ToolCallPart("db_query", {"entity_type": "order"})])
    return ModelResponse(parts=[TextPart("Here are your orders.")])


@pytest.fixture
def order_lookup_model() -> FunctionModel:
    return FunctionModel(_order_lookup)


def make_flaky_model(failures: int, error: Exception | None = None) -> tuple[FunctionModel, list]:
    """FunctionModel that fails `failures` times with `error` before answering, plus the list of its calls."""
    calls = []

    def flaky(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        calls.append(messages)
        if len(calls) <= failures:
            raise error or ModelHTTPError(status_code=503, model_name="test-model")
        return ModelResponse(parts=[TextPart("All good now.")])

    return FunctionModel(flaky), calls


@pytest.fixture
def flaky_model():
    """Factory: flaky_model(failures, error) -> (model, calls)"""
    return make_flaky_model
