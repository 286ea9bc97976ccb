"""
Error taxonomy for the auth core.

Every error carries the HTTP status and stable code it maps to at the transport
boundary; messages are safe to show to end users.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    status_code = 500
    code = "UNEXPECTED_ERROR"
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class EmailTaken(AuthError):
    status_code = 409
    code = "EMAIL_TAKEN"
    default_message = "Email is already in use"


class InvalidCredentials(AuthError):
    # Deliberately generic: unknown email and wrong password look the same.
    status_code = 401
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"


class Unauthorized(AuthError):
    status_code = 401
    code = "UNAUTHORIZED"
    default_message = "Not authenticated"


class InvalidOrExpiredState(AuthError):
    status_code = 400
    code = "INVALID_OR_EXPIRED_STATE"
    default_message = "Invalid or expired OpenID state"


class AuthFailed(AuthError):
    status_code = 401
    code = "AUTH_FAILED"
    default_message = "Steam login verification failed"


class MalformedAssertion(AuthError):
    status_code = 400
    code = "MALFORMED_ASSERTION"
    default_message = "Invalid Steam claimed ID format"


class ExternalIdentityTaken(AuthError):
    status_code = 409
    code = "EXTERNAL_IDENTITY_TAKEN"
    default_message = "Steam account is already linked to another user"


class AccountNotFound(AuthError):
    status_code = 404
    code = "ACCOUNT_NOT_FOUND"
    default_message = "User not found"


class UpstreamProviderError(AuthError):
    status_code = 502
    code = "UPSTREAM_PROVIDER_ERROR"
    default_message = "Steam request failed"


class MissingConfiguration(AuthError):
    status_code = 500
    code = "MISSING_CONFIGURATION"
    default_message = "Server is missing required configuration"


class SteamNotLinked(AuthError):
    status_code = 400
    code = "STEAM_NOT_LINKED"
    default_message = "User is not linked to Steam"


class RateLimited(AuthError):
    status_code = 429
    code = "RATE_LIMITED"
    default_message = "Too many requests. Please wait and try again."


class ValidationFailed(AuthError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"
