"""
Error taxonomy for the ServiceM8 credential lifecycle.

Every class carries the HTTP status and the generic message the API layer
returns to callers.  The message is deliberately fixed per class: details
(provider bodies, DB errors) go to the server log only.
"""

from __future__ import annotations


class CredentialError(Exception):
    """Base class for all credential lifecycle failures."""

    status_code = 500
    public_message = "Something went wrong, please retry."


class Unauthorized(CredentialError):
    status_code = 401
    public_message = "Missing or invalid user authentication."


class NotConnected(CredentialError):
    status_code = 404
    public_message = "ServiceM8 is not connected for this user."


class InvalidState(CredentialError):
    """OAuth ``state`` is unknown, expired, reused or bound to another user."""

    status_code = 400
    public_message = "Invalid or expired authorization request."


class InvalidRequest(CredentialError):
    """A required input was missing before any provider call was made."""

    status_code = 400
    public_message = "Invalid request."


# ── Provider token endpoint ──────────────────────────────────────────────


class OAuthError(CredentialError):
    """The provider refused the request for a reason other than the grant."""

    public_message = "ServiceM8 authorization failed, please retry."

    def __init__(self, message: str, *, status: int | None = None, error_code: str | None = None):
        super().__init__(message)
        self.status = status
        self.error_code = error_code


class InvalidGrant(OAuthError):
    """Code or refresh token rejected; permanent for that token."""

    status_code = 400
    public_message = "ServiceM8 authorization was rejected, please reconnect."


class ProviderUnavailable(OAuthError):
    """Network failure, timeout or 5xx; the caller may retry."""

    public_message = "ServiceM8 is temporarily unavailable, please retry."


class MalformedResponse(OAuthError):
    """2xx response that does not match the token response schema."""


# ── Encryption ───────────────────────────────────────────────────────────


class IntegrityError(CredentialError):
    """Ciphertext failed authentication: tampered or corrupt."""


class InvalidInputError(IntegrityError):
    """Blob is not valid base64 or is too short to hold nonce and tag."""


# ── Persistence / configuration ──────────────────────────────────────────


class StoreError(CredentialError):
    """Persistence failure; the underlying cause is chained."""


class ConfigError(CredentialError):
    """Fatal misconfiguration, raised at startup."""


class MissingSecret(ConfigError):
    pass
