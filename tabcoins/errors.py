"""
tabcoins.errors — Error Taxonomy
================================

Every error raised on purpose by the ledger carries a user-facing
``message``, a suggested ``action``, the HTTP ``status_code`` the request
layer should answer with, and an ``error_location_code`` pinpointing the
raising site.

Storage errors are never wrapped: SQLAlchemy exceptions reach the caller
unmodified.  :func:`is_serialization_failure` is the one classifier the
reward flow uses to tell a lost concurrency race from a real failure.
"""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError

# PostgreSQL SQLSTATE for "could not serialize access ..."
SERIALIZATION_FAILURE = "40001"
_SERIALIZATION_MESSAGE = "could not serialize access"


class TabcoinsError(Exception):
    """Base class for all ledger errors."""

    default_message = "An unexpected internal error happened."
    default_action = "Report the error_location_code to support."
    status_code = 500

    def __init__(
        self,
        message: str | None = None,
        *,
        action: str | None = None,
        error_location_code: str | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.action = action or self.default_action
        self.error_location_code = error_location_code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "action": self.action,
            "status_code": self.status_code,
            "error_location_code": self.error_location_code,
        }


class ValidationError(TabcoinsError):
    default_message = "A validation error happened."
    default_action = "Adjust the submitted data and try again."
    status_code = 400


class ForbiddenError(TabcoinsError):
    default_message = "You are not allowed to perform this action."
    default_action = "Check that you have permission to perform this action."
    status_code = 403


class NotFoundError(TabcoinsError):
    default_message = "The requested resource could not be found."
    default_action = "Check that the identifier is correct."
    status_code = 404


class AlreadyRewardedError(TabcoinsError):
    """A concurrent request already claimed today's reward.

    Raised inside the reward transaction and always converted into a
    zero reward before it reaches the caller.
    """

    default_message = "User already rewarded today."
    default_action = "Try again tomorrow."
    status_code = 409


class UnprocessableEntityError(TabcoinsError):
    default_message = "This operation could not be performed."
    default_action = "The data is valid but the operation could not be performed."
    status_code = 422


def is_serialization_failure(exc: BaseException) -> bool:
    """True if *exc* is the database refusing a transaction because a
    concurrent one touched the same rows."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    if getattr(orig, "pgcode", None) == SERIALIZATION_FAILURE:
        return True
    if getattr(orig, "sqlstate", None) == SERIALIZATION_FAILURE:
        return True
    return str(orig).startswith(_SERIALIZATION_MESSAGE)
