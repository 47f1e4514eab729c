"""Error types raised by the S3 upload store."""

from __future__ import annotations

from collections.abc import Iterable

__all__ = [
    "HTTPError",
    "MultiError",
    "NotFoundError",
    "S3ServiceError",
    "is_service_error",
]


class HTTPError(Exception):
    """An error that carries the HTTP status code a server should answer with."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class NotFoundError(HTTPError):
    """Raised when an upload does not exist."""

    def __init__(self, message: str = "upload not found") -> None:
        super().__init__(message, 404)


class S3ServiceError(Exception):
    """An error reported by the S3 service, identified by its error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class MultiError(Exception):
    """Several errors that occurred during one operation."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors = tuple(errors)
        lines = "".join(f"\t{err}\n" for err in self.errors)
        super().__init__(f"Multiple errors occurred:\n{lines}")

    def __str__(self) -> str:
        return self.args[0]


def is_service_error(err: BaseException | None, code: str) -> bool:
    """Tell whether *err* is an S3 service error with the given code."""
    return isinstance(err, S3ServiceError) and err.code == code