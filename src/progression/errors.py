"""Error taxonomy shared by every progression service.

``ValidationError`` and ``NotFoundError`` are raised before any write.
``ConflictError`` marks a unique-pair collision and is treated as a no-op
by callers. ``InternalError`` wraps storage failures; the enclosing
transaction is rolled back before it propagates.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


class ProgressionError(Exception):
    """Base class; ``kind`` tells callers how to react."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ProgressionError):
    kind = ErrorKind.VALIDATION


class ConflictError(ProgressionError):
    kind = ErrorKind.CONFLICT


class NotFoundError(ProgressionError):
    kind = ErrorKind.NOT_FOUND


class InternalError(ProgressionError):
    kind = ErrorKind.INTERNAL
