from typing import Any


class CacheAsideError(Exception):
    """Base error; carries the operation and identifier it failed on."""

    default_message = "Cache-aside operation failed"

    def __init__(
        self,
        message: str | None = None,
        operation: str | None = None,
        identifier: Any = None,
    ):
        self.message = message or self.default_message
        self.operation = operation
        self.identifier = identifier
        super().__init__(self.message)

    def __str__(self) -> str:
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.identifier is not None:
            context.append(f"identifier={self.identifier}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"

    @property
    def details(self) -> dict:
        return {"operation": self.operation, "identifier": self.identifier}


class StoreUnavailable(CacheAsideError):
    """Backing store call failed. Never recovered locally."""

    default_message = "Backing store unavailable"


class CacheUnavailable(CacheAsideError):
    """Cache store call failed. The accessor degrades instead of failing."""

    default_message = "Cache store unavailable"


class MalformedCacheEntry(CacheAsideError):
    default_message = "Cache entry could not be deserialized"


class UnknownFieldError(CacheAsideError):
    default_message = "Update contains fields that cannot be changed"

    def __init__(self, fields, operation: str | None = None, identifier: Any = None):
        self.fields = sorted(fields)
        super().__init__(
            f"Unknown fields: {', '.join(self.fields)}",
            operation=operation,
            identifier=identifier,
        )

    @property
    def details(self) -> dict:
        return {**super().details, "fields": self.fields}


class EmptyUpdateError(CacheAsideError):
    default_message = "Update must change at least one field"


class InvalidValueError(CacheAsideError):
    """The backing store refused the new values (constraint or type violation)."""

    default_message = "Update was rejected by the backing store"
