from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class QueryEngineError(Exception):
    """Base class for every error the query engine raises on purpose."""


class ValidationError(QueryEngineError):
    """Malformed query input, detected before any storage access."""

    def __init__(self, errors: list[FieldError]):
        if not errors:
            raise ValueError("ValidationError requires at least one field error")
        self.errors = list(errors)
        super().__init__("; ".join(f"{e.field}: {e.message}" for e in self.errors))

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldError(field, message)])

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors]


class AuthorizationError(QueryEngineError):
    """No visibility context could be established for the caller."""

    def __init__(self, message: str, *, authenticated: bool = True):
        self.authenticated = authenticated
        super().__init__(message)


class ExecutionError(QueryEngineError):
    """Storage-layer failure. Never retried inside the engine."""

    def __init__(self, message: str, *, retryable: bool):
        self.retryable = retryable
        super().__init__(message)


class QueryNotFoundError(QueryEngineError):
    def __init__(self, query_id: int):
        self.query_id = query_id
        super().__init__(f"Query {query_id} not found")


class QueryPermissionError(QueryEngineError):
    def __init__(self, message: str = "Only the owner or an administrator may change this query"):
        super().__init__(message)
