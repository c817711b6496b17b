"""
    Error taxonomy for the database query pipeline
    NOTE: Lower layers (identity, router, guard, executor) raise these. Only the tool facade turns them into payloads
    NOTE: The message of every error here is written for the customer. Never put raw driver text in it
"""

from src.schemas import ErrorKind


class ConfigurationError(RuntimeError):
    """A required setting is missing. Raised at startup, never per request."""


class SupportQueryError(Exception):
    """Base class for every failure of a database query request."""
    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationRequired(SupportQueryError):
    kind = ErrorKind.AUTHENTICATION_REQUIRED


class AccessDenied(SupportQueryError):
    kind = ErrorKind.ACCESS_DENIED


class QueryValidationError(SupportQueryError):
    kind = ErrorKind.VALIDATION_ERROR


class InvalidType(QueryValidationError):
    """The requested entity type is not one of customer, product, order, ticket."""


class MissingRequiredIdentifier(QueryValidationError):
    """A query was made without the identifier its template needs."""


class StoreConnectionError(SupportQueryError):
    kind = ErrorKind.CONNECTION_ERROR


class StoreTimeout(StoreConnectionError):
    kind = ErrorKind.TIMEOUT


class SchemaError(SupportQueryError):
    kind = ErrorKind.SCHEMA_ERROR


class InternalError(SupportQueryError):
    kind = ErrorKind.INTERNAL_ERROR
