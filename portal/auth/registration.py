"""
Registration Workflow

Email-confirmed self-registration. A request issues a single-use numeric
code tied to the email address; completing it with that code creates the
account and signs the new user in.

Per email the token moves none -> pending -> used, or pending -> expired
once the expiry passes. A repeated request replaces the pending code.
"""

import html
import logging
import re
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import parse_qs, quote, unquote, urlparse

from portal.auth.passwords import PLAINTEXT, hash_password
from portal.auth.sessions import SessionService
from portal.database import Database
from portal.errors import (
    ConflictError,
    ExpiredError,
    ValidationError,
)
from portal.formatters import format_user_row
from portal.mailer import Mailer, MailMessage


TOKEN_LENGTH = 8
# Generation attempts before falling back to an unchecked code
TOKEN_GENERATION_ATTEMPTS = 5
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_DEPARTMENT = "Співробітник"
EMAIL_SUBJECT = "Завершення реєстрації в корпоративному порталі"

TOKEN_PARAM_PATTERN = re.compile(r"token=([^&]+)", re.IGNORECASE)

logger = logging.getLogger(__name__)


@dataclass
class RegistrationTicket:
    """An issued confirmation code."""
    email: str
    token: str
    expires_at: str
    confirmation_link: str


@dataclass
class CompletedRegistration:
    """A created account and its first session."""
    token: str
    user: dict


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as a naive UTC timestamp, the way SQLite stores them."""
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp; naive values are UTC."""
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_incoming_token(raw_token) -> str:
    """
    Extract the bare confirmation code from user input.

    The input may be the code itself, the whole confirmation link, or a
    query-string fragment such as "token=12345678&email=...".
    """
    if not raw_token:
        return ""

    trimmed = str(raw_token).strip()

    parsed = urlparse(trimmed)
    if parsed.scheme and parsed.netloc:
        search_token = parse_qs(parsed.query).get("token")
        if search_token and search_token[0]:
            return search_token[0]

    match = TOKEN_PARAM_PATTERN.search(trimmed)
    if match:
        return unquote(match.group(1))

    return trimmed


def email_from_token_input(raw_token) -> Optional[str]:
    """Read the email query parameter of a pasted confirmation link, if any."""
    if not raw_token:
        return None
    query = str(raw_token).strip()
    if "?" in query:
        query = query.split("?", 1)[1]
    emails = parse_qs(query).get("email")
    return emails[0] if emails and emails[0] else None


def build_confirmation_email(*, sender: str, to: str, name: str, token: str,
                             confirmation_link: str, expires_at: str) -> MailMessage:
    """Compose the confirmation message with the code, the link and the expiry."""
    greeting = f"Вітаємо, {name}!" if name else "Вітаємо!"

    text = (
        f"{greeting}\n\n"
        f"Ваш код підтвердження: {token}\n\n"
        f"Скопіюйте код у форму завершення реєстрації або скористайтеся посиланням нижче:\n"
        f"{confirmation_link}\n\n"
        f"Посилання дійсне до {expires_at}."
    )

    link = html.escape(confirmation_link, quote=True)
    body = f"""
    <div style="font-family: 'Segoe UI', system-ui, sans-serif; background:#f5f7fb; padding:24px;">
      <div style="max-width:560px; margin:0 auto; background:#ffffff; border-radius:16px; padding:28px;">
        <h1 style="font-size:20px; color:#0f172a; margin:0 0 12px 0;">{html.escape(greeting)}</h1>
        <p style="color:#475569; line-height:1.6;">
          Ось ваш код підтвердження для завершення реєстрації.
        </p>
        <div style="background:#f8fafc; border:1px solid #e2e8f0; border-radius:12px; padding:16px; text-align:center;">
          <div style="font-size:28px; font-weight:700; color:#0f172a; letter-spacing:6px;">{token}</div>
        </div>
        <p style="margin:20px 0;">
          <a href="{link}" style="background:#2563eb; color:#ffffff; padding:12px 20px; border-radius:12px; text-decoration:none;">
            Завершити реєстрацію
          </a>
        </p>
        <div style="font-size:13px; color:#0f172a; word-break:break-all;">{link}</div>
        <p style="color:#475569; font-size:13px;">Код дійсний до {expires_at}.</p>
      </div>
    </div>
    """

    return MailMessage(sender=sender, to=to, subject=EMAIL_SUBJECT, text=text, html=body)


class RegistrationWorkflow:
    """Issue and redeem registration tokens."""

    def __init__(self, db: Database, sessions: SessionService, mailer: Mailer, *,
                 base_url: str, sender: str, token_hours: int = 24,
                 min_password_length: int = 8, password_scheme: str = PLAINTEXT,
                 now: Callable[[], datetime] = utcnow):
        self.db = db
        self.sessions = sessions
        self.mailer = mailer
        self.base_url = base_url.rstrip("/")
        self.sender = sender
        self.token_hours = token_hours
        self.min_password_length = min_password_length
        self.password_scheme = password_scheme
        self.now = now

    def generate_token(self) -> str:
        """
        Generate a zero-padded numeric code not held by any unused token.

        After the bounded attempts the next code is used unchecked.
        """
        for _ in range(TOKEN_GENERATION_ATTEMPTS):
            candidate = self._random_code()
            if not self.db.is_registration_token_pending(candidate):
                return candidate
        return self._random_code()

    def _random_code(self) -> str:
        return str(secrets.randbelow(10 ** TOKEN_LENGTH)).zfill(TOKEN_LENGTH)

    def request_registration(self, email: str, name: str = "",
                             department: str = "") -> RegistrationTicket:
        """
        Issue (or replace) the confirmation code for an email and mail it.

        Raises:
            ValidationError: No email given
            ConflictError: An account with this email already exists
            MailDeliveryError: The message could not be sent
        """
        email = (email or "").strip().lower()
        if not email:
            raise ValidationError("Потрібен email для реєстрації")

        if self.db.get_user_by_email(email):
            raise ConflictError("Користувач з таким email вже існує")

        name = (name or "").strip()
        department = (department or "").strip()
        token = self.generate_token()
        expires_at = format_timestamp(self.now() + timedelta(hours=self.token_hours))

        self.db.save_registration_token(
            email, token, expires_at, name=name, department=department
        )

        confirmation_link = (
            f"{self.base_url}/register?token={token}&email={quote(email, safe='')}"
        )
        message = build_confirmation_email(
            sender=self.sender,
            to=email,
            name=name,
            token=token,
            confirmation_link=confirmation_link,
            expires_at=expires_at,
        )
        self.mailer.send(message)

        logger.info("Registration token issued for %s", email)
        return RegistrationTicket(
            email=email,
            token=token,
            expires_at=expires_at,
            confirmation_link=confirmation_link,
        )

    def complete_registration(self, token: str, password: str,
                              confirm_password: str = None,
                              email: str = None) -> CompletedRegistration:
        """
        Redeem a confirmation code: create the account and sign it in.

        Works with email plus code, or with the code (or pasted link) alone.

        Raises:
            ValidationError: Missing fields, unknown code, weak or mismatched password
            ConflictError: Token already used, or the account already exists
            ExpiredError: Token past its expiry
        """
        code = normalize_incoming_token(token)
        email = (email or email_from_token_input(token) or "").strip().lower()

        if not code or not password:
            raise ValidationError("Потрібні token та password")

        token_row = self.db.find_registration_token(code, email=email or None)
        if token_row is None:
            raise ValidationError("Невірний токен або email")

        if token_row["used"]:
            raise ConflictError("Токен уже використано")

        if parse_timestamp(token_row["expires_at"]) < self.now():
            raise ExpiredError("Токен прострочений")

        account_email = token_row["email"].lower()
        if self.db.get_user_by_email(account_email):
            raise ConflictError("Користувач уже активований")

        self._check_password(password, confirm_password)

        name = token_row["name"] or account_email.split("@")[0]
        department = token_row["department"] or DEFAULT_DEPARTMENT

        try:
            with self.db.transaction():
                user_id = self.db.create_user(
                    name=name,
                    email=account_email,
                    password=hash_password(password, self.password_scheme),
                    department=department,
                    is_admin=False,
                )
                if not self.db.mark_registration_token_used(account_email, code):
                    raise ConflictError("Токен уже використано")
        except sqlite3.IntegrityError as e:
            raise ConflictError("Користувач уже активований") from e

        session_token = self.sessions.create_session(user_id)
        logger.info("Registration completed for %s", account_email)
        return CompletedRegistration(
            token=session_token,
            user=format_user_row(self.db.get_user_by_id(user_id)),
        )

    def _check_password(self, password: str, confirm_password: str = None):
        if len(password) < self.min_password_length:
            raise ValidationError(
                f"Пароль має містити щонайменше {self.min_password_length} символів"
            )
        if confirm_password is not None and password != confirm_password:
            raise ValidationError("Паролі не збігаються")
