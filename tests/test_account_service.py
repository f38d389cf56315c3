"""Unit tests for accounts/service.py -- AccountService flows.

Covers:
- register / login, including identical failures for unknown email and wrong password
- Google sign-in: staging unknown identities, linking by email, signup token checks
- profile update rules (no-fields check first, password re-check, email change
  resets verification, fresh token)
- delete with password confirmation
- email verification codes (mail failure is an error, single use)
- password reset (generic answer, check does not consume, reset consumes)

Fixtures used (from conftest.py):
  - harness: AccountService over an isolated shared-memory database with a
    RecordingMailer, a StubGoogleStrategy and a FakeClock
"""

from __future__ import annotations

import pytest
from conftest import VALID_PASSWORD

from accounts.service import FORGOT_PASSWORD_MESSAGE
from core.errors import (
    AlreadyVerifiedError,
    DuplicateEmailError,
    DuplicateUsernameError,
    EmailSendFailedError,
    InvalidCredentialsError,
    InvalidEmailError,
    InvalidGoogleCredentialError,
    InvalidNameError,
    InvalidOrExpiredCodeError,
    MissingFieldError,
    NoFieldsProvidedError,
    UserNotFoundError,
    WeakPasswordError,
)


def _register(harness, **overrides):
    fields = dict(
        email="a@x.com",
        password=VALID_PASSWORD,
        firstname="Ann",
        lastname="Lee",
        username="annlee",
        birth_date="2000-01-01",
    )
    fields.update(overrides)
    return harness.service.register(**fields)


# ---------------------------------------------------------------------------
# Registration and login
# ---------------------------------------------------------------------------


class TestRegisterAndLogin:
    def test_register_creates_unverified_user_with_token(self, harness):
        result = _register(harness)
        assert result.user.id is not None
        assert result.user.email_verified is False
        assert result.user.password_hash != VALID_PASSWORD
        claims = harness.tokens.verify(result.token)
        assert (claims.user_id, claims.email, claims.username) == (result.user.id, "a@x.com", "annlee")

    def test_register_does_not_mail_by_itself(self, harness):
        _register(harness)
        assert harness.mailer.sent == []

    def test_duplicate_email(self, harness):
        _register(harness)
        with pytest.raises(DuplicateEmailError, match="Email already registered"):
            _register(harness, username="other")

    def test_duplicate_username(self, harness):
        _register(harness)
        with pytest.raises(DuplicateUsernameError, match="Username already taken"):
            _register(harness, email="b@x.com")

    @pytest.mark.parametrize(
        "overrides, error",
        [
            ({"email": "not-an-email"}, InvalidEmailError),
            ({"firstname": "R2D2"}, InvalidNameError),
            ({"password": "abc"}, WeakPasswordError),
            ({"username": ""}, MissingFieldError),
        ],
    )
    def test_register_validation(self, harness, overrides, error):
        with pytest.raises(error):
            _register(harness, **overrides)
        assert harness.store.get_by_email(overrides.get("email", "a@x.com")) is None

    def test_login_success(self, harness):
        registered = _register(harness)
        result = harness.service.login("a@x.com", VALID_PASSWORD)
        assert result.user.id == registered.user.id
        assert harness.tokens.verify(result.token).user_id == registered.user.id

    def test_login_failures_are_indistinguishable(self, harness):
        _register(harness)
        with pytest.raises(InvalidCredentialsError) as wrong_password:
            harness.service.login("a@x.com", "Wrong123!")
        with pytest.raises(InvalidCredentialsError) as unknown_email:
            harness.service.login("nobody@x.com", VALID_PASSWORD)
        assert wrong_password.value.message == unknown_email.value.message == "Invalid email or password"

    def test_send_welcome_swallows_mail_failure(self, harness):
        result = _register(harness)
        harness.mailer.fail = True
        harness.service.send_welcome(result.user)

    def test_send_welcome_mails_user(self, harness):
        result = _register(harness)
        harness.service.send_welcome(result.user)
        assert harness.mailer.sent[0].to == "a@x.com"
        assert "Welcome" in harness.mailer.sent[0].subject


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------


class TestGoogle:
    def test_unknown_identity_is_staged_not_stored(self, harness):
        harness.google.add("cred-new", google_id="g-1", email="g@x.com", given_name="Gina", family_name="Gold")
        outcome = harness.service.google_sign_in("cred-new")
        assert outcome.existing is False
        assert outcome.staged.google_id == "g-1"
        assert outcome.staged.email == "g@x.com"
        assert (outcome.staged.firstname, outcome.staged.lastname) == ("Gina", "Gold")
        assert harness.tokens.verify_google_signup(outcome.staged.signup_token) == ("g-1", "g@x.com")
        assert harness.store.get_by_email("g@x.com") is None

    def test_existing_email_is_linked_and_verified(self, harness):
        registered = _register(harness, email="g@x.com")
        harness.google.add("cred", google_id="g-1", email="g@x.com")
        outcome = harness.service.google_sign_in("cred")
        assert outcome.existing is True
        assert outcome.user.id == registered.user.id
        assert outcome.user.google_id == "g-1"
        assert outcome.user.email_verified is True
        assert harness.tokens.verify(outcome.token).user_id == registered.user.id

    def test_linked_identity_signs_in(self, harness):
        harness.google.add("cred", google_id="g-1", email="g@x.com")
        staged = harness.service.google_sign_in("cred").staged
        created = harness.service.complete_google_registration(
            signup_token=staged.signup_token,
            google_id="g-1",
            email="g@x.com",
            username="gina",
            password=VALID_PASSWORD,
            firstname="Gina",
            lastname="Gold",
        )
        again = harness.service.google_sign_in("cred")
        assert again.existing is True
        assert again.user.id == created.user.id

    def test_unverified_google_email_rejected(self, harness):
        harness.google.add("cred", google_id="g-1", email="g@x.com", email_verified=False)
        with pytest.raises(InvalidGoogleCredentialError):
            harness.service.google_sign_in("cred")

    def test_invalid_credential_rejected(self, harness):
        with pytest.raises(InvalidGoogleCredentialError):
            harness.service.google_sign_in("nonsense")

    def test_complete_registration_creates_verified_account(self, harness):
        token = harness.tokens.issue_google_signup("g-1", "g@x.com")
        result = harness.service.complete_google_registration(
            signup_token=token,
            google_id="g-1",
            email="g@x.com",
            username="gina",
            password=VALID_PASSWORD,
            firstname="Gina",
            lastname="Gold",
            birth_date="1999-05-05",
        )
        assert result.user.email_verified is True
        assert result.user.google_id == "g-1"
        assert result.user.birth_date == "1999-05-05"

    def test_complete_registration_requires_matching_token(self, harness):
        token = harness.tokens.issue_google_signup("g-1", "g@x.com")
        with pytest.raises(InvalidGoogleCredentialError):
            harness.service.complete_google_registration(
                signup_token=token,
                google_id="g-2",
                email="g@x.com",
                username="gina",
                password=VALID_PASSWORD,
                firstname="Gina",
                lastname="Gold",
            )
        assert harness.store.get_by_email("g@x.com") is None

    def test_complete_registration_rejects_forged_token(self, harness):
        with pytest.raises(InvalidGoogleCredentialError):
            harness.service.complete_google_registration(
                signup_token="forged",
                google_id="g-1",
                email="g@x.com",
                username="gina",
                password=VALID_PASSWORD,
                firstname="Gina",
                lastname="Gold",
            )

    def test_complete_registration_duplicate_username(self, harness):
        _register(harness)
        token = harness.tokens.issue_google_signup("g-1", "g@x.com")
        with pytest.raises(DuplicateUsernameError):
            harness.service.complete_google_registration(
                signup_token=token,
                google_id="g-1",
                email="g@x.com",
                username="annlee",
                password=VALID_PASSWORD,
                firstname="Gina",
                lastname="Gold",
            )


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class TestProfile:
    def test_no_fields_checked_before_password(self, harness):
        uid = _register(harness).user.id
        with pytest.raises(NoFieldsProvidedError):
            harness.service.update_profile(uid, "")

    def test_current_password_required(self, harness):
        uid = _register(harness).user.id
        with pytest.raises(MissingFieldError):
            harness.service.update_profile(uid, "", firstname="Anna")

    def test_wrong_current_password(self, harness):
        uid = _register(harness).user.id
        with pytest.raises(InvalidCredentialsError, match="Current password is incorrect"):
            harness.service.update_profile(uid, "Wrong123!", firstname="Anna")
        assert harness.store.get_by_id(uid).firstname == "Ann"

    def test_email_change_resets_verification_and_reissues_token(self, harness):
        uid = _register(harness).user.id
        harness.store.update_user(uid, email_verified=True)
        result = harness.service.update_profile(uid, VALID_PASSWORD, email="new@x.com", username="annie")
        assert result.user.email == "new@x.com"
        assert result.user.email_verified is False
        claims = harness.tokens.verify(result.token)
        assert (claims.email, claims.username) == ("new@x.com", "annie")

    def test_same_email_keeps_verification(self, harness):
        uid = _register(harness).user.id
        harness.store.update_user(uid, email_verified=True)
        result = harness.service.update_profile(uid, VALID_PASSWORD, email="a@x.com", firstname="Anna")
        assert result.user.email_verified is True
        assert result.user.firstname == "Anna"

    def test_password_change(self, harness):
        uid = _register(harness).user.id
        harness.service.update_profile(uid, VALID_PASSWORD, new_password="N3w-Pass!")
        harness.service.login("a@x.com", "N3w-Pass!")
        with pytest.raises(InvalidCredentialsError):
            harness.service.login("a@x.com", VALID_PASSWORD)

    def test_weak_new_password_rejected(self, harness):
        uid = _register(harness).user.id
        with pytest.raises(WeakPasswordError):
            harness.service.update_profile(uid, VALID_PASSWORD, new_password="weak")

    def test_username_taken_by_other_user(self, harness):
        _register(harness, email="b@x.com", username="bobby")
        uid = _register(harness).user.id
        with pytest.raises(DuplicateUsernameError):
            harness.service.update_profile(uid, VALID_PASSWORD, username="bobby")

    def test_email_change_revokes_outstanding_verification_code(self, harness):
        uid = _register(harness).user.id
        harness.service.send_verification(uid)
        code = harness.mailer.last_code("a@x.com")
        harness.service.update_profile(uid, VALID_PASSWORD, email="new@x.com")
        with pytest.raises(InvalidOrExpiredCodeError):
            harness.service.verify_email(uid, code)
        assert harness.store.get_by_id(uid).email_verified is False

    def test_delete_account(self, harness):
        uid = _register(harness).user.id
        with pytest.raises(InvalidCredentialsError):
            harness.service.delete_account(uid, "Wrong123!")
        harness.service.delete_account(uid, VALID_PASSWORD)
        assert harness.store.get_by_id(uid) is None
        with pytest.raises(UserNotFoundError):
            harness.service.get_profile(uid)


# ---------------------------------------------------------------------------
# Email verification
# ---------------------------------------------------------------------------


class TestEmailVerification:
    def test_send_and_verify(self, harness):
        uid = _register(harness).user.id
        harness.service.send_verification(uid)
        code = harness.mailer.last_code("a@x.com")
        result = harness.service.verify_email(uid, code)
        assert result.user.email_verified is True
        assert harness.store.get_by_id(uid).email_verified is True

    def test_code_is_single_use(self, harness):
        uid = _register(harness).user.id
        harness.service.send_verification(uid)
        code = harness.mailer.last_code("a@x.com")
        harness.service.verify_email(uid, code)
        harness.store.update_user(uid, email_verified=False)
        with pytest.raises(InvalidOrExpiredCodeError):
            harness.service.verify_email(uid, code)

    def test_expired_code_rejected(self, harness):
        uid = _register(harness).user.id
        harness.service.send_verification(uid)
        code = harness.mailer.last_code("a@x.com")
        harness.clock.advance(minutes=16)
        with pytest.raises(InvalidOrExpiredCodeError):
            harness.service.verify_email(uid, code)

    def test_already_verified(self, harness):
        uid = _register(harness).user.id
        harness.store.update_user(uid, email_verified=True)
        with pytest.raises(AlreadyVerifiedError):
            harness.service.send_verification(uid)
        assert harness.mailer.sent == []

    def test_mail_failure_is_reported(self, harness):
        uid = _register(harness).user.id
        harness.mailer.fail = True
        with pytest.raises(EmailSendFailedError):
            harness.service.send_verification(uid)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class TestPasswordReset:
    def test_unknown_email_gets_same_answer_and_no_code(self, harness):
        assert harness.service.forgot_password("nobody@x.com") == FORGOT_PASSWORD_MESSAGE
        assert harness.codes.store.list_reset_codes("nobody@x.com") == []
        assert harness.mailer.sent == []

    def test_known_email_gets_code(self, harness):
        _register(harness)
        assert harness.service.forgot_password("a@x.com") == FORGOT_PASSWORD_MESSAGE
        assert len(harness.codes.store.list_reset_codes("a@x.com")) == 1
        assert harness.mailer.last_code("a@x.com")

    def test_mail_failure_keeps_generic_answer(self, harness):
        _register(harness)
        harness.mailer.fail = True
        assert harness.service.forgot_password("a@x.com") == FORGOT_PASSWORD_MESSAGE

    def test_full_reset(self, harness):
        _register(harness)
        harness.service.forgot_password("a@x.com")
        code = harness.mailer.last_code("a@x.com")

        harness.service.verify_reset_code("a@x.com", code)
        harness.service.verify_reset_code("a@x.com", code)
        harness.service.reset_password("a@x.com", code, "N3w-Pass!")

        harness.service.login("a@x.com", "N3w-Pass!")
        with pytest.raises(InvalidCredentialsError):
            harness.service.login("a@x.com", VALID_PASSWORD)
        with pytest.raises(InvalidOrExpiredCodeError):
            harness.service.reset_password("a@x.com", code, "Other-Pass1!")

    def test_weak_new_password_does_not_burn_code(self, harness):
        _register(harness)
        harness.service.forgot_password("a@x.com")
        code = harness.mailer.last_code("a@x.com")
        with pytest.raises(WeakPasswordError):
            harness.service.reset_password("a@x.com", code, "weak")
        harness.service.reset_password("a@x.com", code, "N3w-Pass!")

    def test_expired_reset_code(self, harness):
        _register(harness)
        harness.service.forgot_password("a@x.com")
        code = harness.mailer.last_code("a@x.com")
        harness.clock.advance(minutes=15)
        with pytest.raises(InvalidOrExpiredCodeError):
            harness.service.verify_reset_code("a@x.com", code)

    def test_reset_for_deleted_account_rejected(self, harness):
        uid = _register(harness).user.id
        harness.service.forgot_password("a@x.com")
        code = harness.mailer.last_code("a@x.com")
        harness.store.delete_user(uid)
        with pytest.raises(InvalidOrExpiredCodeError):
            harness.service.reset_password("a@x.com", code, "N3w-Pass!")

    def test_reset_claims_code_before_writing_password(self, harness, monkeypatch):
        uid = _register(harness).user.id
        harness.service.forgot_password("a@x.com")
        code = harness.mailer.last_code("a@x.com")
        old_hash = harness.store.get_by_id(uid).password_hash
        monkeypatch.setattr(harness.codes.store, "mark_reset_code_used", lambda code_id: False)
        with pytest.raises(InvalidOrExpiredCodeError):
            harness.service.reset_password("a@x.com", code, "N3w-Pass!")
        assert harness.store.get_by_id(uid).password_hash == old_hash
