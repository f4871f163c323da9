"""
auth/errors.py -- Typed failure taxonomy for the identity and access core.

Every failure the auth layer can report is a subclass of AuthError carrying:
  code        -- stable machine-readable identifier for API clients
  status_code -- HTTP status the api/ layer answers with
  message     -- fixed public text. Never built from internal state, so a
                 message can not leak the hash algorithm, signing key state
                 or whether an identity exists.

Stores and services raise these; the gateway lets them propagate; api/main.py
turns them into the standard error envelope. Token verification does not
raise -- it returns a TokenCheck (see auth/tokens.py) whose `error` is one of
these instances, so callers can branch without unwinding.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    status_code = 401
    message = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


# ---------------------------------------------------------------------------
# Credential failures
# ---------------------------------------------------------------------------


class DuplicateIdentity(AuthError):
    code = "duplicate_identity"
    status_code = 409
    message = "An account with that identity already exists."


class WeakPassword(AuthError):
    """Raised by the password policy. The message names the violated rule."""

    code = "weak_password"
    status_code = 400
    message = "Password does not meet the password policy."


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    status_code = 401
    message = "Invalid identity or password."


class AccountDisabled(AuthError):
    code = "account_disabled"
    status_code = 403
    message = "This account has been disabled."


class RegistrationDisabled(AuthError):
    code = "registration_disabled"
    status_code = 403
    message = "Self-registration is disabled."


class AuthenticationRequired(AuthError):
    code = "unauthorized"
    status_code = 401
    message = "Authentication required."


# ---------------------------------------------------------------------------
# Token failures
# ---------------------------------------------------------------------------


class Expired(AuthError):
    code = "token_expired"
    status_code = 401
    message = "Token has expired."


class Malformed(AuthError):
    code = "token_malformed"
    status_code = 401
    message = "Token is malformed."


class SignatureInvalid(AuthError):
    code = "token_signature_invalid"
    status_code = 401
    message = "Token signature is invalid."


class Revoked(AuthError):
    code = "token_revoked"
    status_code = 401
    message = "Token has been revoked."


class Reused(AuthError):
    """A refresh token already consumed by rotation was presented again.

    Treated as theft: by the time this is raised the whole lineage has been
    revoked and the client must log in again.
    """

    code = "token_reused"
    status_code = 401
    message = "Refresh token reuse detected. All sessions in this chain were revoked; log in again."


# ---------------------------------------------------------------------------
# Authorization failures
# ---------------------------------------------------------------------------


class InsufficientRole(AuthError):
    code = "insufficient_role"
    status_code = 403
    message = "You do not have permission to perform this action."


class ResourceNotFound(AuthError):
    code = "not_found"
    status_code = 404
    message = "Resource not found."


class LastAdmin(AuthError):
    code = "last_admin"
    status_code = 400
    message = "Cannot demote or deactivate the last active admin account."
