"""
API request and response models for the account service REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

JSON field names are camelCase (birthDate, currentPassword, emailVerified...)
because that is what the web client sends and reads. Python attribute names
stay snake_case; the alias generator bridges the two, and populate_by_name
lets tests build models with either spelling.

Business validation (email format, password policy, name charset) is NOT
done here -- accounts/validation.py owns it so the rules and their error
messages stay in one place. These models only enforce shape: required keys,
string types and generous length caps.
"""

from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import User


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


_Email = Annotated[str, Field(max_length=255)]
_Name = Annotated[str, Field(max_length=100)]
_Password = Annotated[str, Field(max_length=255)]
_Code = Annotated[str, Field(max_length=16)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    email: _Email
    password: _Password
    firstname: _Name
    lastname: _Name
    username: _Name
    birth_date: Optional[str] = Field(default=None, max_length=32)


class LoginRequest(_CamelModel):
    email: _Email
    password: _Password


class GoogleAuthRequest(_CamelModel):
    credential: str = Field(max_length=8192)


class GoogleRegisterRequest(_CamelModel):
    """Completion form for a staged Google identity.

    google_id / email / signup_token are echoed back from googleData; the
    server checks them against the signature before creating anything.
    """

    signup_token: str = Field(max_length=4096)
    google_id: str = Field(max_length=255)
    email: _Email
    firstname: _Name
    lastname: _Name
    username: _Name
    password: _Password
    birth_date: Optional[str] = Field(default=None, max_length=32)


class UpdateProfileRequest(_CamelModel):
    """Partial update. Omitted (or null) fields are left unchanged."""

    current_password: _Password
    email: Optional[str] = Field(default=None, max_length=255)
    firstname: Optional[str] = Field(default=None, max_length=100)
    lastname: Optional[str] = Field(default=None, max_length=100)
    username: Optional[str] = Field(default=None, max_length=100)
    new_password: Optional[str] = Field(default=None, max_length=255)
    birth_date: Optional[str] = Field(default=None, max_length=32)


class DeleteAccountRequest(_CamelModel):
    password: _Password


class VerifyEmailRequest(_CamelModel):
    code: _Code


class ForgotPasswordRequest(_CamelModel):
    email: _Email


class VerifyResetCodeRequest(_CamelModel):
    email: _Email
    code: _Code


class ResetPasswordRequest(_CamelModel):
    email: _Email
    code: _Code
    new_password: _Password


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    """The one public projection of a User, used by every endpoint."""

    id: int
    email: str
    firstname: str
    lastname: str
    username: str
    birth_date: Optional[str] = None
    email_verified: bool
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            firstname=user.firstname,
            lastname=user.lastname,
            username=user.username,
            birth_date=user.birth_date,
            email_verified=user.email_verified,
            created_at=user.created_at,
        )


class MessageResponse(_CamelModel):
    message: str


class AuthResponse(_CamelModel):
    message: str
    user: UserResponse
    token: str


class MeResponse(_CamelModel):
    user: UserResponse


class GoogleData(_CamelModel):
    google_id: str
    email: str
    firstname: str
    lastname: str
    signup_token: str


class GoogleAuthResponse(_CamelModel):
    """Either a signed-in session (existing user) or data for the completion form."""

    is_existing_user: bool
    message: Optional[str] = None
    user: Optional[UserResponse] = None
    token: Optional[str] = None
    google_data: Optional[GoogleData] = None


class VerifyResetCodeResponse(_CamelModel):
    valid: bool


class ErrorResponse(BaseModel):
    """Uniform error envelope: one human-readable line plus a stable code."""

    error: str
    code: str


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str]
