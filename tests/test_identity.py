"""
Tests for the identity extractor in identity.py

NOTE: The email found in the conversation is the only authorization scope, so extraction must be strict:
      invalid addresses are never accepted, and only the customer's own messages count
"""

import pytest
from pydantic import ValidationError

from src.identity import Identity, extract_identity, find_email, is_valid_email, normalize_email
from src.schemas import ChatMessage


def user(content: str) -> ChatMessage:
    return ChatMessage(role="user", content=content)


def assistant(content: str) -> ChatMessage:
    return ChatMessage(role="assistant", content=content)


def test_extracts_email_from_free_text():
    identity = extract_identity([user("show my orders for alice@example.com")])
    assert identity == Identity(email="alice@example.com")


def test_newest_user_message_wins():
    conversation = [
        user("my email is alice@example.com"),
        assistant("Thanks! How can I help?"),
        user("sorry, I meant charlie@sample.net"),
    ]
    assert extract_identity(conversation).email == "charlie@sample.net"


def test_falls_back_to_older_message_when_latest_has_no_email():
    conversation = [user("I'm alice@example.com"), assistant("Hi Alice"), user("where is my order?")]
    assert extract_identity(conversation).email == "alice@example.com"


def test_assistant_messages_are_ignored():
    """An email the assistant wrote is not the customer identifying themselves."""
    conversation = [assistant("You can reach us at help@techtrend.com"), user("show my tickets")]
    assert extract_identity(conversation) is None


def test_no_email_returns_none():
    assert extract_identity([user("where is my order?")]) is None
    assert extract_identity([]) is None


def test_conversation_order_is_not_mutated():
    conversation = [user("alice@example.com"), user("bob@example.com")]
    snapshot = list(conversation)
    extract_identity(conversation)
    assert conversation == snapshot


@pytest.mark.parametrize("text, expected", [
    ("ALICE@Example.COM", "alice@example.com"),
    ("  alice@example.com  ", "alice@example.com"),
    ("my email is alice @ example.com", "alice@example.com"),
    ("alice@example,com", "alice@example.com"),
    ("alice@example . com", "alice@example.com"),
    ("reach me at alice@example.com.", "alice@example.com"),
    ("(alice.smith+shop@mail.example.co.uk)", "alice.smith+shop@mail.example.co.uk"),
])
def test_normalizes_common_typos(text, expected):
    assert find_email(text) == expected


@pytest.mark.parametrize("email", [
    "alice@example",            # no top level label
    "alice@example.c",          # top level label too short
    "a..b@example.com",         # double dot in local part
    ".alice@example.com",       # leading dot in local part
    "alice.@example.com",       # trailing dot in local part
    "alice@-example.com",       # leading hyphen in domain
    "alice@example-.com",       # label ending with a hyphen
    "alice@exa--mple.com",      # double hyphen
    "alice@example..com",       # double dot in domain
    "a" * 65 + "@example.com",  # local part too long
    "alice@@example.com",
    "alice@example.123",
])
def test_rejects_invalid_addresses(email):
    assert is_valid_email(email) is False


def test_accepts_boundary_local_part_length():
    assert is_valid_email("a" * 64 + "@example.com") is True


@pytest.mark.parametrize("email", [
    "alice@example.com",
    "Bob.Johnson@Example.org",
    "charlie+orders@sample.net",
    "d_prince@test.co.uk",
    "o'brien@example.com",
    "-alice@example.com",
    "a!b@example.com",
])
def test_extraction_is_idempotent(email):
    """Re-extracting from a message containing only the normalized address returns the same value."""
    first = extract_identity([user(email)])
    second = extract_identity([user(first.email)])
    assert first.email == second.email == normalize_email(email)


@pytest.mark.parametrize("text", [
    ".alice@example.com",
    "my email is .alice@example.com",
    "alice.@example.com please",
    "it's a..b@example.com",
])
def test_invalid_address_is_not_shortened_into_a_valid_one(text):
    """An invalid address must not turn into a different, valid account by dropping characters."""
    assert extract_identity([user(text)]) is None


@pytest.mark.parametrize("text", [
    "I bought 2 @ techtrend.com yesterday",
    "3 @ example.com each, please",
    "$20 @ techtrend.com",
])
def test_spaced_at_after_a_number_is_not_an_address(text):
    assert extract_identity([user(text)]) is None


def test_correctly_typed_address_wins_over_repaired_one():
    text = "ship 4 @ example.com to bob@example.com"
    assert extract_identity([user(text)]).email == "bob@example.com"


def test_identity_rejects_malformed_email():
    with pytest.raises(ValidationError):
        Identity(email="not-an-email")


def test_identity_is_immutable():
    identity = Identity(email="alice@example.com")
    with pytest.raises(ValidationError):
        identity.email = "bob@example.com"
