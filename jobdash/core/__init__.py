"""Core module - config, http client, schemas, exceptions."""

from jobdash.core.config import get_settings, Settings
from jobdash.core.http import ApiClient
from jobdash.core.schemas import CamelModel, ApiEnvelope, utcnow
from jobdash.core.exceptions import (
    AppException,
    NotFoundException,
    UnauthorizedException,
    BadRequestException,
    ValidationException,
    FetchException,
    MutationException,
    UnrecognizedLabelError,
    RedirectToLogin,
)

__all__ = [
    "get_settings",
    "Settings",
    "ApiClient",
    "CamelModel",
    "ApiEnvelope",
    "utcnow",
    "AppException",
    "NotFoundException",
    "UnauthorizedException",
    "BadRequestException",
    "ValidationException",
    "FetchException",
    "MutationException",
    "UnrecognizedLabelError",
    "RedirectToLogin",
]
