"""
Tests for the output validator in agents.py

These tests verify that the validator rejects an empty reply (via ModelRetry)
and passes good replies through. No LLM calls -- we call the validator function directly.
"""

import pytest
# NOTE: A MagicMock is a fake object that pretends to be anything. When you access any attribute on it, it returns another MagicMock instead of crashing
from unittest.mock import MagicMock
from pydantic_ai import ModelRetry
from src.agents import validate_reply

"""
NOTE: the validator is just a regular Python function. The function doesn't know or care who called it
NOTE: pytest.raises() is a way to test that a function raises an exception.
NOTE: Test one thing at a time. Each test isolates exactly one validation rule.
"""


# NOTE: Creates a fake object that looks enough like RunContext for our validator to work
@pytest.fixture
def mock_ctx():
    """Fake RunContext for testing the validator outside of a real agent run."""
    ctx = MagicMock()
    # test the final output validation, not the streaming skip
    ctx.partial_output = False
    return ctx


def test_valid_reply_passes(mock_ctx: MagicMock):
    reply = "Your order #3 was delivered on Mar 9, 2024."
    assert validate_reply(mock_ctx, reply) == reply


def test_short_but_real_reply_passes(mock_ctx: MagicMock):
    assert validate_reply(mock_ctx, "OK") == "OK"


@pytest.mark.parametrize("reply", ["", " ", "\n", "k", "  .  "])
def test_empty_reply_triggers_retry(mock_ctx: MagicMock, reply: str):
    with pytest.raises(ModelRetry):
        validate_reply(mock_ctx, reply)


# NOTE: While streaming, the validator sees partial text. It must not reject a reply that is still arriving
def test_partial_output_is_not_validated(mock_ctx: MagicMock):
    mock_ctx.partial_output = True
    assert validate_reply(mock_ctx, "") == ""
