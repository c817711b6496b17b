"""
    Identity extraction: recover the caller's email address from the chat conversation
    NOTE: The email found here is the only authorization scope for customer, order and ticket data
    NOTE: Pure functions. The conversation list passed in is never reordered or mutated
"""

import re

from pydantic import BaseModel, ConfigDict, field_validator

# Characters allowed in the local part of an address
_LOCAL_CHARS = r"A-Za-z0-9!#$%&'*+/=?^_`{|}~.-"

# Candidate finder. A candidate starts at a token boundary, so it is never the tail of a longer local part.
# Every candidate is then checked by is_valid_email()
_EMAIL_CANDIDATE = re.compile(rf"(?<![{_LOCAL_CHARS}])[{_LOCAL_CHARS}]+@[A-Za-z0-9.-]+")

_LOCAL_PART = re.compile(rf"^[{_LOCAL_CHARS}]+$")
_DOMAIN_LABEL = re.compile(r"^[a-z0-9-]+$")
_TOP_LEVEL_LABEL = re.compile(r"^[a-z]{2,}$")

# Typos customers make when typing an address: "alice @ example.com", "alice@example,com", "alice@example . com"
# The word left of a spaced '@' must contain a letter, so "2 @ techtrend.com" stays prose
_SPACED_AT = re.compile(rf"(?<![{_LOCAL_CHARS}])([{_LOCAL_CHARS}]*[A-Za-z][{_LOCAL_CHARS}]*)\s*@\s*(?=[A-Za-z0-9-])")
_COMMA_BEFORE_TLD = re.compile(r"(@[A-Za-z0-9-]+),([A-Za-z]{2,})\b")
_SPACED_DOT_BEFORE_TLD = re.compile(r"(@[A-Za-z0-9-]+)(?:\s+\.\s*|\.\s+)([A-Za-z]{2,})\b")


def repair_email_typos(text: str) -> str:
    """Collapse spaces around '@' and a comma or spaced dot typed instead of the domain dot."""
    text = _SPACED_AT.sub(r"\1@", text)
    text = _COMMA_BEFORE_TLD.sub(r"\1.\2", text)
    return _SPACED_DOT_BEFORE_TLD.sub(r"\1.\2", text)


def normalize_email(email: str) -> str:
    return repair_email_typos(email.strip()).strip().lower()


def is_valid_email(email: str) -> bool:
    """
        Syntactic check of an address
        local part: 1-64 chars, no leading, trailing or double dots
        domain: 1-255 chars, no leading, trailing or double dots or hyphens, top level label of 2+ letters
    """
    if email.count("@") != 1:
        return False
    local, domain = email.split("@")

    if not 1 <= len(local) <= 64 or not _LOCAL_PART.match(local):
        return False
    if local.startswith(".") or local.endswith(".") or ".." in local:
        return False

    domain = domain.lower()
    if not 1 <= len(domain) <= 255:
        return False
    if domain[0] in ".-" or domain[-1] in ".-" or ".." in domain or "--" in domain:
        return False

    labels = domain.split(".")
    if len(labels) < 2:
        return False
    for label in labels:
        if not label or len(label) > 63 or not _DOMAIN_LABEL.match(label):
            return False
        if label.startswith("-") or label.endswith("-"):
            return False
    return bool(_TOP_LEVEL_LABEL.match(labels[-1]))


class Identity(BaseModel):
    """The caller's verified email address. Normalized on construction."""
    model_config = ConfigDict(frozen=True)

    email: str

    @field_validator("email", mode="before")
    @classmethod
    def normalize(cls, value):
        if not isinstance(value, str):
            raise ValueError("email must be a string")
        value = normalize_email(value)
        if not is_valid_email(value):
            raise ValueError(f"'{value}' is not a valid email address")
        return value


def _first_valid(text: str) -> str | None:
    for candidate in _EMAIL_CANDIDATE.findall(text):
        # Sentence punctuation glued to the end of the address, e.g. "my email is alice@example.com."
        candidate = candidate.rstrip(".").lower()
        if is_valid_email(candidate):
            return candidate
    return None


def find_email(text: str) -> str | None:
    """
        Return the first valid, normalized email address in a piece of text
        An address typed correctly wins over one recovered by repairing typos
    """
    return _first_valid(text) or _first_valid(repair_email_typos(text))


def extract_identity(conversation) -> Identity | None:
    """
        Scan the conversation newest-first and return the identity from the first user message
        that contains a valid email address, or None when there is none.
        None means "authentication required": no customer, order or ticket query may run.
    """
    for message in reversed(list(conversation)):
        if message.role != "user":
            continue
        email = find_email(message.content or "")
        if email:
            return Identity(email=email)
    return None
