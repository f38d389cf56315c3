"""
core/errors.py -- Error taxonomy for the account service.

Every failure a caller can act on is one of these classes. Services raise
them; api/main.py maps them to an HTTP status and the single-line envelope
{"error": message, "code": code}. Nothing else in the codebase builds error
responses by hand.

Each class carries three class attributes:
  status_code -- HTTP status the API layer answers with.
  code        -- stable machine-readable identifier.
  message     -- default user-visible text (overridable per raise).

Conflicts answer 400 rather than 409 because the deployed web client reads
400 bodies for every form error on /register, /google/register and /update.

Layer rule: core/ imports nothing from api/, auth/ or accounts/.
"""

from __future__ import annotations


class AccountError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    message: str = "Server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Validation (400)
# ---------------------------------------------------------------------------


class ValidationError(AccountError):
    status_code = 400
    code = "validation_error"
    message = "Invalid input"


class MissingFieldError(ValidationError):
    code = "missing_field"
    message = "Missing required field"


class InvalidEmailError(ValidationError):
    code = "invalid_email"
    message = "Invalid email format"


class InvalidNameError(ValidationError):
    code = "invalid_name"
    message = "First name and last name must contain only letters"


class WeakPasswordError(ValidationError):
    code = "weak_password"
    message = "Password must be at least 8 characters with uppercase, lowercase and special character"


class InvalidUsernameError(ValidationError):
    code = "invalid_username"
    message = "Username must be at least 3 characters"


class NoFieldsProvidedError(ValidationError):
    code = "no_fields"
    message = "No fields to update"


# ---------------------------------------------------------------------------
# Conflicts (400)
# ---------------------------------------------------------------------------


class ConflictError(AccountError):
    status_code = 400
    code = "conflict"
    message = "Conflict"


class DuplicateEmailError(ConflictError):
    code = "email_taken"
    message = "Email already registered"


class DuplicateUsernameError(ConflictError):
    code = "username_taken"
    message = "Username already taken"


class GoogleAccountLinkedError(ConflictError):
    code = "google_account_linked"
    message = "This Google account is already linked to another user"


class AlreadyVerifiedError(ConflictError):
    code = "already_verified"
    message = "Email already verified"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class AuthError(AccountError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required"


class InvalidCredentialsError(AuthError):
    # Same text for "no such email" and "wrong password".
    code = "bad_credentials"
    message = "Invalid email or password"


class TokenRequiredError(AuthError):
    code = "token_required"
    message = "Token required"


class InvalidTokenError(AuthError):
    status_code = 403
    code = "invalid_token"
    message = "Invalid token"


class InvalidGoogleCredentialError(AuthError):
    code = "invalid_google_credential"
    message = "Invalid Google credential"


class InvalidOrExpiredCodeError(AuthError):
    status_code = 400
    code = "invalid_code"
    message = "Invalid or expired code"


# ---------------------------------------------------------------------------
# Missing entities (404)
# ---------------------------------------------------------------------------


class NotFoundError(AccountError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class UserNotFoundError(NotFoundError):
    code = "user_not_found"
    message = "User not found"


# ---------------------------------------------------------------------------
# Collaborators (500)
# ---------------------------------------------------------------------------


class ExternalServiceError(AccountError):
    status_code = 500
    code = "external_service_error"
    message = "External service unavailable"


class EmailSendFailedError(ExternalServiceError):
    code = "email_send_failed"
    message = "Failed to send email"


class InternalError(AccountError):
    status_code = 500
    code = "internal_error"
    message = "Server error"
