from __future__ import annotations
from typing import Optional


class GalleryError(Exception):
    """Base for every expected failure; carries a short user-facing reason."""
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(GalleryError):
    pass


class InvalidTransitionError(ValidationError):
    """Photo is not in the lifecycle state the operation needs."""


class QuotaExceededError(GalleryError):
    def __init__(self, message: str, remaining_bytes: Optional[int] = None) -> None:
        super().__init__(message)
        self.remaining_bytes = remaining_bytes


class NotFoundError(GalleryError):
    status_code = 404


class ExpiredReservationError(NotFoundError):
    pass


class AlreadyCommittedError(GalleryError):
    status_code = 409


class PersistenceError(GalleryError):
    status_code = 500

    def __init__(self, message: str = "Internal error") -> None:
        super().__init__(message)


class BlobNotFound(NotFoundError):
    pass


class InvalidTokenError(GalleryError):
    status_code = 403
