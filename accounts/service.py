"""
accounts/service.py -- Account lifecycle: registration, sign-in, profile
changes, email verification, password reset and deletion.

AccountService is the only place these flows are spelled out. Route handlers
translate HTTP to method calls and back; stores, the token issuer, the code
service, the mailer and the Google bridge are injected at construction so
tests can swap any of them.

State rules enforced here:
  - email_verified starts False for password registrations and True for
    Google registrations; any email change resets it to False.
  - login and forgot-password never reveal whether an email is registered.
  - a password reset code can be checked any number of times; only a
    completed reset marks it used.

Mail policy: the explicit "send me a verification code" request fails when
the mail cannot be sent. Every other message (welcome, reset code, deletion
notice) is best effort and only logged on failure -- a reset request for an
existing address must look exactly like one for an unknown address.

Layer rule: imports auth/ and core/; never api/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from accounts import validation
from auth.codes import CodeService
from auth.google import GoogleIdentityBridge
from auth.models import User
from auth.store import UserStore
from auth.tokens import TokenIssuer, check_password_equalized, hash_password, verify_password
from core.errors import (
    AlreadyVerifiedError,
    EmailSendFailedError,
    GoogleAccountLinkedError,
    InvalidCredentialsError,
    InvalidGoogleCredentialError,
    InvalidOrExpiredCodeError,
    NoFieldsProvidedError,
    UserNotFoundError,
)
from core.mailer import Mailer

logger = logging.getLogger("bilogames.accounts")

FORGOT_PASSWORD_MESSAGE = "If an account exists with this email, a reset code has been sent"


@dataclass
class AuthResult:
    user: User
    token: str


@dataclass
class StagedGoogleIdentity:
    """A verified Google identity with no local account yet.

    Sent back to the client, which returns it with the completion form.
    signup_token is the server's signature over google_id + email.
    """

    google_id: str
    email: str
    firstname: str
    lastname: str
    signup_token: str


@dataclass
class GoogleSignInResult:
    existing: bool
    user: Optional[User] = None
    token: Optional[str] = None
    staged: Optional[StagedGoogleIdentity] = None


class AccountService:
    def __init__(
        self,
        users: UserStore,
        codes: CodeService,
        tokens: TokenIssuer,
        mailer: Mailer,
        google: GoogleIdentityBridge,
    ) -> None:
        self.users = users
        self.codes = codes
        self.tokens = tokens
        self.mailer = mailer
        self.google = google

    @property
    def code_ttl_minutes(self) -> int:
        return int(self.codes.ttl.total_seconds() // 60)

    # ------------------------------------------------------------------
    # Registration and sign-in
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        firstname: str,
        lastname: str,
        username: str,
        birth_date: Optional[str] = None,
    ) -> AuthResult:
        """Create a password account (unverified) and sign it in.

        The welcome mail is not sent from here; callers schedule
        send_welcome() after responding.
        """
        for value, field in ((email, "email"), (password, "password"), (username, "username")):
            validation.require(value, field)
        validation.validate_email(email)
        validation.validate_names(firstname, lastname)
        validation.validate_password(password)

        user = User(
            email=email,
            username=username,
            firstname=firstname,
            lastname=lastname,
            password_hash=hash_password(password),
            birth_date=birth_date,
            email_verified=False,
        )
        user_id = self.users.create_user(user)
        created = self._get_user(user_id)
        logger.info("Registered user %s (%s)", created.id, created.username)
        return AuthResult(user=created, token=self.tokens.issue(created))

    def login(self, email: str, password: str) -> AuthResult:
        """Password sign-in. Unknown email and wrong password fail identically."""
        user = self.users.get_by_email(email or "")
        if not check_password_equalized(password or "", user):
            raise InvalidCredentialsError()
        return AuthResult(user=user, token=self.tokens.issue(user))

    def google_sign_in(self, credential: str) -> GoogleSignInResult:
        """Resolve a Google credential to a session or a staged registration.

        A password account with the same email is linked to the Google
        identity on first use (and becomes verified). Nothing is persisted
        for an unknown identity; the client completes the registration with
        complete_google_registration().
        """
        identity = self.google.authenticate(credential)
        user = self.users.get_by_google_id_or_email(identity.google_id, identity.email)

        if user is None:
            staged = StagedGoogleIdentity(
                google_id=identity.google_id,
                email=identity.email,
                firstname=identity.given_name,
                lastname=identity.family_name,
                signup_token=self.tokens.issue_google_signup(identity.google_id, identity.email),
            )
            return GoogleSignInResult(existing=False, staged=staged)

        if user.google_id is None:
            user = self.users.link_google(user.id, identity.google_id)
            logger.info("Linked Google identity to user %s", user.id)
        elif user.google_id != identity.google_id:
            logger.warning("User %s matched by email but linked to a different Google identity", user.id)

        return GoogleSignInResult(existing=True, user=user, token=self.tokens.issue(user))

    def complete_google_registration(
        self,
        signup_token: str,
        google_id: str,
        email: str,
        username: str,
        password: str,
        firstname: str,
        lastname: str,
        birth_date: Optional[str] = None,
    ) -> AuthResult:
        """Create the account for a staged Google identity (verified from the start)."""
        signed_google_id, signed_email = self.tokens.verify_google_signup(signup_token or "")
        if signed_google_id != google_id or signed_email != email:
            logger.warning("Google registration rejected: submitted identity does not match signup token")
            raise InvalidGoogleCredentialError()

        for value, field in ((password, "password"), (username, "username")):
            validation.require(value, field)
        validation.validate_email(email)
        validation.validate_names(firstname, lastname)
        validation.validate_password(password)
        if self.users.get_by_google_id(google_id) is not None:
            raise GoogleAccountLinkedError()

        user = User(
            email=email,
            username=username,
            firstname=firstname,
            lastname=lastname,
            password_hash=hash_password(password),
            birth_date=birth_date,
            google_id=google_id,
            email_verified=True,
        )
        user_id = self.users.create_user(user)
        created = self._get_user(user_id)
        logger.info("Registered Google user %s (%s)", created.id, created.username)
        return AuthResult(user=created, token=self.tokens.issue(created))

    def send_welcome(self, user: User) -> None:
        """Best-effort welcome mail. Never raises."""
        try:
            self.mailer.send_welcome(user.email, user.firstname)
        except EmailSendFailedError:
            logger.warning("Welcome mail to user %s not sent", user.id)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def get_profile(self, user_id: int) -> User:
        return self._get_user(user_id)

    def update_profile(
        self,
        user_id: int,
        current_password: str,
        email: Optional[str] = None,
        firstname: Optional[str] = None,
        lastname: Optional[str] = None,
        username: Optional[str] = None,
        new_password: Optional[str] = None,
        birth_date: Optional[str] = None,
    ) -> AuthResult:
        """Apply a partial profile update after re-checking the password.

        Fields left as None are untouched. A new email resets email_verified.
        Returns a fresh token since email and username are token claims.
        """
        requested = {
            "email": email,
            "firstname": firstname,
            "lastname": lastname,
            "username": username,
            "new_password": new_password,
            "birth_date": birth_date,
        }
        if all(value is None for value in requested.values()):
            raise NoFieldsProvidedError()
        validation.require(current_password, "Current password")

        user = self._get_user(user_id)
        if not verify_password(current_password, user.password_hash):
            raise InvalidCredentialsError("Current password is incorrect")

        changes: dict = {}
        if email is not None and email != user.email:
            changes["email"] = validation.validate_email(email)
            changes["email_verified"] = False
        if firstname is not None:
            changes["firstname"] = validation.validate_name(firstname)
        if lastname is not None:
            changes["lastname"] = validation.validate_name(lastname)
        if username is not None:
            changes["username"] = validation.validate_username(username)
        if new_password is not None:
            changes["password_hash"] = hash_password(validation.validate_password(new_password))
        if birth_date is not None:
            changes["birth_date"] = birth_date

        updated = self.users.update_user(user.id, **changes) if changes else user
        if "email" in changes:
            self.codes.revoke_verification_codes(user.id)
            logger.info("User %s changed email; verification reset", user.id)
        return AuthResult(user=updated, token=self.tokens.issue(updated))

    def delete_account(self, user_id: int, password: str) -> None:
        validation.require(password, "Password")
        user = self._get_user(user_id)
        if not verify_password(password, user.password_hash):
            raise InvalidCredentialsError("Incorrect password")
        self.users.delete_user(user.id)
        logger.info("User %s deleted their account", user.id)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def send_verification(self, user_id: int) -> None:
        """Issue a verification code and mail it. Mail failure is an error here."""
        user = self._get_user(user_id)
        if user.email_verified:
            raise AlreadyVerifiedError()
        code = self.codes.issue_verification_code(user.id)
        self.mailer.send_verification_code(user.email, user.firstname, code, self.code_ttl_minutes)

    def verify_email(self, user_id: int, code: str) -> AuthResult:
        validation.require(code, "Code")
        user = self._get_user(user_id)
        self.codes.redeem_verification_code(user.id, code)
        updated = self.users.update_user(user.id, email_verified=True)
        logger.info("User %s verified their email", user.id)
        return AuthResult(user=updated, token=self.tokens.issue(updated))

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> str:
        """Send a reset code if the account exists. Always returns the same message."""
        validation.require(email, "Email")
        user = self.users.get_by_email(email)
        if user is not None:
            code = self.codes.issue_reset_code(user.email)
            try:
                self.mailer.send_reset_code(user.email, user.firstname, code, self.code_ttl_minutes)
            except EmailSendFailedError:
                logger.warning("Reset code mail to user %s not sent", user.id)
        return FORGOT_PASSWORD_MESSAGE

    def verify_reset_code(self, email: str, code: str) -> None:
        """Raise InvalidOrExpiredCodeError unless the code is live. Does not consume it."""
        validation.require(email, "Email")
        validation.require(code, "Code")
        self.codes.check_reset_code(email, code)

    def reset_password(self, email: str, code: str, new_password: str) -> None:
        validation.require(email, "Email")
        validation.require(code, "Code")
        validation.validate_password(new_password)
        self.codes.check_reset_code(email, code)
        user = self.users.get_by_email(email)
        if user is None:
            raise InvalidOrExpiredCodeError()
        # Claim the code before writing so only one of two racing resets wins.
        self.codes.consume_reset_code(email, code)
        self.users.update_user(user.id, password_hash=hash_password(new_password))
        logger.info("User %s reset their password", user.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_user(self, user_id: int) -> User:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        return user
