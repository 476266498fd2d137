"""
Error taxonomy shared by the feed services and the HTTP boundary
"""
from dataclasses import dataclass


@dataclass(eq=False)
class FeedError(Exception):
    message: str
    status_code: int = 500

    def __str__(self) -> str:
        return self.message


class ValidationError(FeedError):
    """Missing or malformed identifiers or parameters"""

    def __init__(self, message: str):
        super().__init__(message, 400)


class NotFoundError(FeedError):
    """Referenced fact, category or user does not exist"""

    def __init__(self, message: str):
        super().__init__(message, 404)


class ConflictError(FeedError):
    """Uniqueness violation on create or update"""

    def __init__(self, message: str):
        super().__init__(message, 409)


class InternalError(FeedError):
    """Unexpected storage failure. The message is safe to show to callers."""

    def __init__(self, message: str = "Internal error"):
        super().__init__(message, 500)
