"""Error taxonomy for the cart pipeline.

Validation and lookup failures are protean's own exceptions, so protean's
FastAPI handlers map them to 400 and 404. The two conflict flavours build on
protean's operation and state errors and both surface as 409.
"""

from protean.exceptions import InvalidOperationError, InvalidStateError, ObjectNotFoundError, ValidationError

__all__ = [
    "ConflictError",
    "ObjectNotFoundError",
    "StaleStateError",
    "ValidationError",
    "reason_for",
]


class ConflictError(InvalidOperationError):
    """Duplicate line insert, coupon already redeemed, or a lost counter race."""


class StaleStateError(InvalidStateError):
    """A referenced product vanished between projection and application."""


def reason_for(exc: BaseException) -> str:
    """First human-readable message of ``exc``, flattened for failure events and logs."""
    messages = getattr(exc, "messages", None)
    if isinstance(messages, dict):
        for errors in messages.values():
            if isinstance(errors, (list, tuple)) and errors:
                return str(errors[0])
            if errors:
                return str(errors)
    return str(exc) or type(exc).__name__
