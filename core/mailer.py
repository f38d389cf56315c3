"""
core/mailer.py -- Outbound email for the account service.

Transport: SendGrid's v3 Web API (POST /v3/mail/send), called through a
requests.Session the same way the rest of the service talks to HTTP APIs.
Bodies are HTML rendered from core/templates/email/*.html with a Jinja2
Environment (autoescape on -- names are user-supplied).

Failure policy lives with the caller, not here: send() raises
EmailSendFailedError on any transport error or non-2xx answer, and the
account service decides whether that fails the request (explicit
verification send) or is only logged (welcome mail, reaper notices).

Development: with no SENDGRID_API_KEY / MAIL_FROM_EMAIL configured, a Mailer
built with echo=True logs the rendered message instead of sending it, so the
verification flow can be exercised locally. Without echo, an unconfigured
mailer raises on every send.

Layer rule: core/ imports nothing from api/, auth/ or accounts/.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.errors import EmailSendFailedError

logger = logging.getLogger("bilogames.mail")

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"

_TEMPLATE_DIR = Path(__file__).parent / "templates" / "email"
_HTTP_TIMEOUT = 10

_env = Environment(
    loader=FileSystemLoader(str(_TEMPLATE_DIR)),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def render(template_name: str, **context) -> str:
    return _env.get_template(template_name).render(**context)


class Mailer:
    """Sends templated account emails.

    Usage:
        mailer = Mailer(settings.sendgrid_api_key, settings.mail_from_email, settings.app_name)
        mailer.send_verification_code("a@x.com", "Ann", "123456", ttl_minutes=15)
    """

    def __init__(
        self,
        api_key: str,
        from_email: str,
        app_name: str = "BiloGames",
        echo: bool = False,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.from_email = from_email
        self.app_name = app_name
        self.echo = echo
        self._api_key = api_key
        self._session = session or requests.Session()
        # Fixed public endpoint; no reason to follow redirects far.
        self._session.max_redirects = 3

    @property
    def configured(self) -> bool:
        return bool(self._api_key and self.from_email)

    def send(self, to: str, subject: str, html: str) -> None:
        """Deliver one message. Raises EmailSendFailedError on failure."""
        if not self.configured:
            if self.echo:
                logger.warning("Mail transport not configured; message to %s not sent.\n%s\n%s", to, subject, html)
                return
            raise EmailSendFailedError("Mail transport is not configured")

        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_email, "name": self.app_name},
            "subject": subject,
            "content": [{"type": "text/html", "value": html}],
        }
        try:
            resp = self._session.post(
                SENDGRID_SEND_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=_HTTP_TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.error("SendGrid send to %s failed: %s", to, exc)
            raise EmailSendFailedError() from exc
        # SendGrid answers 202 Accepted on success.
        if not 200 <= resp.status_code < 300:
            logger.error("SendGrid send to %s returned %s", to, resp.status_code)
            raise EmailSendFailedError()
        logger.info("Mail '%s' sent to %s", subject, to)

    # ------------------------------------------------------------------
    # Account messages
    # ------------------------------------------------------------------

    def send_welcome(self, to: str, firstname: str) -> None:
        html = render("welcome.html", app_name=self.app_name, firstname=firstname)
        self.send(to, f"Welcome to {self.app_name}", html)

    def send_verification_code(self, to: str, firstname: str, code: str, ttl_minutes: int) -> None:
        html = render(
            "verification_code.html",
            app_name=self.app_name,
            firstname=firstname,
            code=code,
            ttl_minutes=ttl_minutes,
        )
        self.send(to, f"{self.app_name} - Verify your email", html)

    def send_reset_code(self, to: str, firstname: str, code: str, ttl_minutes: int) -> None:
        html = render(
            "reset_code.html",
            app_name=self.app_name,
            firstname=firstname,
            code=code,
            ttl_minutes=ttl_minutes,
        )
        self.send(to, f"{self.app_name} - Reset your password", html)

    def send_account_deleted(self, to: str, firstname: str, retention_days: int) -> None:
        html = render(
            "account_deleted.html",
            app_name=self.app_name,
            firstname=firstname,
            retention_days=retention_days,
        )
        self.send(to, f"{self.app_name} - Your account has been deleted", html)
