"""
Custom client exceptions.

Every error raised by the client layers derives from AppException so view
coordinators can display ``detail`` without knowing where it came from.
"""

from typing import Optional

from httpx import codes


class AppException(Exception):
    """Base client exception."""

    def __init__(self, detail: str, status_code: int = codes.INTERNAL_SERVER_ERROR):
        super().__init__(detail)
        self.detail = detail
        self.status_code = int(status_code)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(detail=detail, status_code=codes.NOT_FOUND)


class UnauthorizedException(AppException):
    """Session missing or expired (HTTP 401)."""

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(detail=detail, status_code=codes.UNAUTHORIZED)


class BadRequestException(AppException):
    """Bad request exception."""

    def __init__(self, detail: str = "Bad request"):
        super().__init__(detail=detail, status_code=codes.BAD_REQUEST)


class ValidationException(AppException):
    """Client-side form validation failure. Never reaches the network."""

    def __init__(self, detail: str, field: Optional[str] = None):
        super().__init__(detail=detail, status_code=codes.UNPROCESSABLE_ENTITY)
        self.field = field


class FetchException(AppException):
    """A read (list/detail/poll) request failed."""


class MutationException(AppException):
    """The server rejected a create/update/delete/enable/run/cancel call."""


class UnrecognizedLabelError(BadRequestException):
    """A misfire policy label that does not map to any known variant."""

    def __init__(self, label: str):
        super().__init__(detail=f"Unknown misfire policy label: {label}")
        self.label = label


class RedirectToLogin(Exception):
    """Control-flow signal raised after logout: navigate to the login view."""

    def __init__(self, to: str = "/login"):
        super().__init__(to)
        self.to = to
