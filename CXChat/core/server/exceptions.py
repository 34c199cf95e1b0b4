"""
Exception classes for the messaging core.

Each error carries the HTTP-style status the API layer answers with.
Delivery to an absent room is not an error and has no class here; see
``DeliveryStatus`` in the routing module.
"""


class CXChatError(Exception):
    """Base exception for all messaging-core errors."""

    status_code = 500

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class InvalidArgument(CXChatError):
    """Missing or malformed input; raised before any store access."""
    status_code = 400


class AuthenticationError(CXChatError):
    """No verified identity could be attached to the request."""
    status_code = 401


class NotFound(CXChatError):
    """A referenced user, message or notification does not exist."""
    status_code = 404


class InternalError(CXChatError):
    """Store failure not otherwise classified."""
    status_code = 500


__all__ = [
    'CXChatError',
    'InvalidArgument',
    'AuthenticationError',
    'NotFound',
    'InternalError',
]
