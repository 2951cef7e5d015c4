"""Authentication primitives: input cleanup, password hashing, session tokens."""

import re
import secrets
from datetime import datetime, timedelta, timezone

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ph = PasswordHasher()


def format_timestamp(dt: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class AuthService:
    """Stateless helpers handed to the storage facade and the auth routes."""

    def __init__(self, session_ttl_hours: int = 24):
        self.session_ttl_hours = session_ttl_hours

    @staticmethod
    def sanitize_input(value: str) -> str:
        """Trim and strip angle brackets so stored names cannot carry markup."""
        if not isinstance(value, str):
            return ""
        return value.strip().replace("<", "").replace(">", "")

    @staticmethod
    def is_valid_email(email: str) -> bool:
        return bool(EMAIL_RE.match(email or ""))

    @staticmethod
    def hash_password(password: str) -> str:
        return ph.hash(password)

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            ph.verify(password_hash, password)
            return True
        except (VerificationError, InvalidHashError):
            return False

    @staticmethod
    def generate_session_token() -> str:
        return secrets.token_urlsafe(32)

    def generate_session_expiry(self, now: datetime | None = None) -> str:
        now = now or datetime.now(timezone.utc)
        return format_timestamp(now + timedelta(hours=self.session_ttl_hours))
