"""
    Authorization guard: a customer can only ever see their own customer, order and ticket rows
    NOTE: The LLM decides what the customer asked for. This code decides whether they are allowed to see it
    NOTE: authorize() runs before the query is resolved or executed. A denied request never reaches the store
    NOTE: Products are the public catalogue and are not scoped to an identity
"""

from dataclasses import dataclass

from src.identity import normalize_email
from src.schemas import ROW_SCOPED_TYPES, QueryRequest

DENIED_OTHER_IDENTITY = "You can only access data that belongs to your own account."
DENIED_NO_IDENTITY = "A verified email address is required to access account data."


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: str | None = None

    @classmethod
    def ok(cls) -> "AuthorizationDecision":
        return cls(allowed=True)

    @classmethod
    def denied(cls, reason: str) -> "AuthorizationDecision":
        return cls(allowed=False, reason=reason)


def authorize(request: QueryRequest) -> AuthorizationDecision:
    """
        Decide whether a query may run
        Every email the model passes for a row-scoped query must be the caller's own verified email,
        whether or not the other account exists
    """
    if request.type not in ROW_SCOPED_TYPES:
        return AuthorizationDecision.ok()

    if request.identity is None:
        return AuthorizationDecision.denied(DENIED_NO_IDENTITY)

    for identifier in request.identifiers:
        if identifier.email in (None, ""):
            continue
        if normalize_email(str(identifier.email)) != request.identity.email:
            return AuthorizationDecision.denied(DENIED_OTHER_IDENTITY)

    return AuthorizationDecision.ok()
