"""
Error taxonomy for the personalization core.

- DataValidationError: malformed or out-of-range input, rejected before any state change
- NotFoundError: a profile or focus area that does not exist
- PersistenceError: a repository failure, wrapped with the failed operation
- DeliveryError: the notification sender failed

Learning cycles that lack data are not errors; they return a structured
outcome instead.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator


class PersonalizationError(Exception):
    """Base class for all personalization errors."""


class DataValidationError(PersonalizationError, ValueError):
    """Input rejected before any state was changed."""


class FocusAreaLimitError(DataValidationError):
    """User already owns the maximum number of focus areas."""


class NotFoundError(PersonalizationError, LookupError):
    """Requested entity does not exist."""

    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class PersistenceError(PersonalizationError):
    """A repository operation failed."""

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Failed to {operation}: {cause}")


class DeliveryError(PersonalizationError):
    """The notification delivery boundary rejected a notification."""


@asynccontextmanager
async def persistence_context(operation: str) -> AsyncIterator[None]:
    """
    Wrap repository failures raised inside the block as PersistenceError.

    Personalization errors (validation, not-found) pass through unchanged so
    callers can still tell them apart.
    """
    try:
        yield
    except PersonalizationError:
        raise
    except Exception as e:
        raise PersistenceError(operation, e) from e
