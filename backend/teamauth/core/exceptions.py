"""
Exception hierarchy for TeamAuth.

Every error raised by the authentication core carries a stable machine code,
an HTTP status and a client-safe message. Handlers in
`teamauth.api.exception_handlers` turn them into JSON responses.
"""

from typing import Any, Dict, Optional


class TeamAuthError(Exception):
    """Base exception for all TeamAuth errors."""

    def __init__(
        self,
        message: str,
        code: str = "TEAMAUTH_ERROR",
        details: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)


#       PROVIDER / LOGIN EXCEPTIONS
# ------------------------------


class ConfigurationError(TeamAuthError):
    """Required provider settings are missing or invalid."""

    def __init__(self, message: str = "Authentication provider is not configured", **kwargs):
        super().__init__(message=message, code="CONFIGURATION_ERROR", status_code=503, **kwargs)


class NotConfigured(TeamAuthError):
    """The organization has not enabled this login strategy."""

    def __init__(self, message: str = "Login method is not configured for this organization", **kwargs):
        super().__init__(message=message, code="NOT_CONFIGURED", status_code=400, **kwargs)


class InvalidState(TeamAuthError):
    """The callback state does not match the pending handshake."""

    def __init__(self, message: str = "Invalid state parameter", **kwargs):
        super().__init__(message=message, code="INVALID_STATE", status_code=400, **kwargs)


class InvalidAssertion(TeamAuthError):
    """A SAML response could not be validated or is missing required data."""

    def __init__(self, message: str = "Invalid SAML assertion", **kwargs):
        super().__init__(message=message, code="INVALID_ASSERTION", status_code=400, **kwargs)


class AuthenticationError(TeamAuthError):
    """The identity provider rejected the credentials or code."""

    def __init__(self, message: str = "Login failed", **kwargs):
        super().__init__(message=message, code="AUTHENTICATION_FAILED", status_code=401, **kwargs)


class NotAuthenticated(TeamAuthError):
    def __init__(self, message: str = "Not authenticated", **kwargs):
        super().__init__(message=message, code="NOT_AUTHENTICATED", status_code=401, **kwargs)


class UpstreamUnavailable(TeamAuthError):
    """Timeout or network failure while talking to an identity provider."""

    def __init__(self, message: str = "Identity provider is unavailable, please retry", **kwargs):
        super().__init__(message=message, code="UPSTREAM_UNAVAILABLE", status_code=503, **kwargs)


#       RESOURCE EXCEPTIONS
# ------------------------------


class NotFound(TeamAuthError):
    def __init__(self, message: str = "Not found", **kwargs):
        super().__init__(message=message, code="NOT_FOUND", status_code=404, **kwargs)


class Forbidden(TeamAuthError):
    def __init__(self, message: str = "Insufficient permissions", **kwargs):
        super().__init__(message=message, code="FORBIDDEN", status_code=403, **kwargs)


class ValidationError(TeamAuthError):
    """Malformed request or a rule violation on otherwise valid input."""

    def __init__(self, message: str = "Validation failed", **kwargs):
        super().__init__(message=message, code="VALIDATION_ERROR", status_code=400, **kwargs)


# Errors that indicate a forged or tampered login attempt
SECURITY_EVENT_ERRORS = (InvalidState, InvalidAssertion)
