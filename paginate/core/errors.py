from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    MALFORMED_FILTER = "MalformedFilter"
    FORBIDDEN_COLUMN = "ForbiddenColumn"
    QUERY_FAILED = "QueryFailed"


class PaginationError(Exception):
    """Failure scoped to a single pagination request.

    The paginator catches these and turns them into the ``error`` /
    ``error_message`` fields of the result (or an empty page when error
    reporting is disabled).
    """

    kind: ErrorKind = ErrorKind.QUERY_FAILED

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MalformedFilterError(PaginationError):
    kind = ErrorKind.MALFORMED_FILTER


class ForbiddenColumnError(PaginationError):
    kind = ErrorKind.FORBIDDEN_COLUMN

    def __init__(self, column: str):
        super().__init__(f'Column "{column}" is not allowed')
        self.column = column


class QueryFailedError(PaginationError):
    kind = ErrorKind.QUERY_FAILED
