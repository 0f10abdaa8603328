"""
Shared application exceptions.

Routers raise these and the app factory maps them to HTTP responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class AppError(Exception):
    message: str = "Application error"
    details: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


class NotFoundError(AppError):
    pass


class ValidationError(AppError):
    pass


class ConflictError(AppError):
    """Request is valid but the current dialer state does not allow it."""


class ServiceUnavailableError(AppError):
    """A required collaborator is not configured."""
