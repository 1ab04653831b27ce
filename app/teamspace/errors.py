from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

_MISSING_RELATION_MARKERS = ("no such table", "does not exist", "undefinedtable", "42p01")
_PERMISSION_MARKERS = ("permission", "insufficient privilege", "42501")


def is_missing_relation(exc: BaseException) -> bool:
    text = f"{type(getattr(exc, 'orig', None)).__name__} {exc}".lower()
    return any(m in text for m in _MISSING_RELATION_MARKERS)


def is_permission_denied(exc: BaseException) -> bool:
    if isinstance(exc, PermissionError):
        return True
    return any(m in str(exc).lower() for m in _PERMISSION_MARKERS)


def describe_db_error(exc: BaseException, feature: str, action: str = "load data") -> str:
    """Turn a persistence failure into the message shown inline to the user."""
    if isinstance(exc, SQLAlchemyError) and is_missing_relation(exc):
        return f"{feature} is not yet set up. Please contact an administrator."
    if is_permission_denied(exc):
        return "You do not have permission to perform this action."
    return f"Failed to {action}. Please try again."
