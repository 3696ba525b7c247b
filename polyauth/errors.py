"""Exception types raised by the authentication layer."""

from typing import Any, Optional


class PolyAuthError(Exception):
    """Base class for authentication failures."""


class OwnerUnavailable(PolyAuthError):
    """Raised when no owner could be resolved or created for an owner type."""


class CredentialUnavailable(PolyAuthError):
    """Raised when a credential could not be produced or refreshed."""


class AuthenticationRejected(PolyAuthError):
    """
    Raised when the server still rejects a request after one refresh.

    ``response`` is the final rejected response. Through PolyAuth its body
    has been read. Through the requests adapter it is left open for the
    caller to read and close.
    """

    def __init__(self, message: str, response: Optional[Any] = None):
        super().__init__(message)
        self.response = response


class RouteMisconfigured(PolyAuthError):
    """Raised on conflicting route registrations or missing strategies."""
