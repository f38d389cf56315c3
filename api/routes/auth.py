"""
api/routes/auth.py -- Account and session REST endpoints.

Routes (mounted under /api):
  POST   /auth/register           -- password registration; 201 {message, user, token}
  POST   /auth/login              -- password login; 200 {message, user, token}
  POST   /auth/google             -- Google sign-in: session, or googleData for the completion form
  POST   /auth/google/register    -- complete a staged Google registration; 201
  GET    /auth/me                 -- current user (Bearer)
  PUT    /auth/update             -- partial profile update, re-checks password (Bearer)
  DELETE /auth/delete             -- delete own account, re-checks password (Bearer)
  POST   /auth/send-verification  -- mail a 6-digit verification code (Bearer)
  POST   /auth/verify-email       -- redeem the verification code (Bearer)
  POST   /auth/forgot-password    -- mail a reset code; always the same answer
  POST   /auth/verify-reset-code  -- check a reset code without consuming it
  POST   /auth/reset-password     -- set a new password with a reset code

Handlers are plain `def`: bcrypt, SQLAlchemy and SendGrid all block, so
FastAPI runs them in its threadpool. Handlers never build error responses;
services raise core.errors classes and api/main.py maps them.

Security:
  Login and forgot-password answer identically whether or not the email
  exists. Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from accounts.service import AccountService, AuthResult
from api.models import (
    AuthResponse,
    DeleteAccountRequest,
    ForgotPasswordRequest,
    GoogleAuthRequest,
    GoogleAuthResponse,
    GoogleData,
    GoogleRegisterRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateProfileRequest,
    UserResponse,
    VerifyEmailRequest,
    VerifyResetCodeRequest,
    VerifyResetCodeResponse,
)
from auth.dependencies import get_current_user
from auth.models import User

# Auth policy:
# - register, login, google, google/register, forgot-password,
#   verify-reset-code, reset-password: public
# - me, update, delete, send-verification, verify-email: Bearer token
router = APIRouter()


def get_account_service(request: Request) -> AccountService:
    return request.app.state.account_service


def _auth_response(message: str, result: AuthResult, response: Response) -> AuthResponse:
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse(message=message, user=UserResponse.from_user(result.user), token=result.token)


# ---------------------------------------------------------------------------
# Registration and sign-in (public)
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    body: RegisterRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    service: AccountService = Depends(get_account_service),
) -> AuthResponse:
    """Create an unverified password account and return a session.

    The welcome mail goes out after the response; a mail failure never fails
    the registration.
    """
    result = service.register(
        email=body.email,
        password=body.password,
        firstname=body.firstname,
        lastname=body.lastname,
        username=body.username,
        birth_date=body.birth_date,
    )
    background_tasks.add_task(service.send_welcome, result.user)
    return _auth_response("Account created successfully", result, response)


@router.post("/auth/login", response_model=AuthResponse)
def login(
    body: LoginRequest,
    response: Response,
    service: AccountService = Depends(get_account_service),
) -> AuthResponse:
    """Email + password login. 401 "Invalid email or password" on any mismatch."""
    result = service.login(body.email, body.password)
    return _auth_response("Login successful", result, response)


@router.post("/auth/google", response_model=GoogleAuthResponse, response_model_exclude_none=True)
def google_auth(
    body: GoogleAuthRequest,
    response: Response,
    service: AccountService = Depends(get_account_service),
) -> GoogleAuthResponse:
    """Step 1 of Google sign-in.

    Known identity (or matching email, which gets linked): a session.
    Unknown identity: googleData for the completion form, nothing stored.
    """
    outcome = service.google_sign_in(body.credential)
    response.headers["Cache-Control"] = "no-store"
    if outcome.existing:
        return GoogleAuthResponse(
            is_existing_user=True,
            message="Login successful",
            user=UserResponse.from_user(outcome.user),
            token=outcome.token,
        )
    staged = outcome.staged
    return GoogleAuthResponse(
        is_existing_user=False,
        google_data=GoogleData(
            google_id=staged.google_id,
            email=staged.email,
            firstname=staged.firstname,
            lastname=staged.lastname,
            signup_token=staged.signup_token,
        ),
    )


@router.post("/auth/google/register", response_model=AuthResponse, status_code=201)
def google_register(
    body: GoogleRegisterRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    service: AccountService = Depends(get_account_service),
) -> AuthResponse:
    """Step 2 of Google sign-in: create the (already verified) account."""
    result = service.complete_google_registration(
        signup_token=body.signup_token,
        google_id=body.google_id,
        email=body.email,
        username=body.username,
        password=body.password,
        firstname=body.firstname,
        lastname=body.lastname,
        birth_date=body.birth_date,
    )
    background_tasks.add_task(service.send_welcome, result.user)
    return _auth_response("Account created successfully", result, response)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the account behind the Bearer token."""
    return MeResponse(user=UserResponse.from_user(current_user))


@router.put("/auth/update", response_model=AuthResponse)
def update_profile(
    body: UpdateProfileRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
) -> AuthResponse:
    """Change one or more profile fields. A new token is returned because
    email and username are token claims."""
    result = service.update_profile(
        current_user.id,
        body.current_password,
        email=body.email,
        firstname=body.firstname,
        lastname=body.lastname,
        username=body.username,
        new_password=body.new_password,
        birth_date=body.birth_date,
    )
    return _auth_response("Profile updated successfully", result, response)


@router.delete("/auth/delete", response_model=MessageResponse)
def delete_account(
    body: DeleteAccountRequest,
    current_user: User = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
) -> MessageResponse:
    """Permanently delete the caller's account. The client discards its token."""
    service.delete_account(current_user.id, body.password)
    return MessageResponse(message="Account deleted successfully")


@router.post("/auth/send-verification", response_model=MessageResponse)
def send_verification(
    current_user: User = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
) -> MessageResponse:
    """Mail a fresh verification code. Any earlier code stops working."""
    service.send_verification(current_user.id)
    return MessageResponse(message="Verification code sent")


@router.post("/auth/verify-email", response_model=AuthResponse)
def verify_email(
    body: VerifyEmailRequest,
    response: Response,
    current_user: User = Depends(get_current_user),
    service: AccountService = Depends(get_account_service),
) -> AuthResponse:
    result = service.verify_email(current_user.id, body.code)
    return _auth_response("Email verified successfully", result, response)


# ---------------------------------------------------------------------------
# Password reset (public)
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    body: ForgotPasswordRequest,
    service: AccountService = Depends(get_account_service),
) -> MessageResponse:
    """Always 200 with the same message, whether or not the email is registered."""
    return MessageResponse(message=service.forgot_password(body.email))


@router.post("/auth/verify-reset-code", response_model=VerifyResetCodeResponse)
def verify_reset_code(
    body: VerifyResetCodeRequest,
    service: AccountService = Depends(get_account_service),
) -> VerifyResetCodeResponse:
    """Check a reset code. The code stays usable for reset-password."""
    service.verify_reset_code(body.email, body.code)
    return VerifyResetCodeResponse(valid=True)


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    body: ResetPasswordRequest,
    service: AccountService = Depends(get_account_service),
) -> MessageResponse:
    service.reset_password(body.email, body.code, body.new_password)
    return MessageResponse(message="Password reset successfully")
