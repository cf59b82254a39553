"""Security utilities: IP hashing, unsubscribe tokens, CSRF tokens, API keys."""

import base64
import binascii
import hashlib
import hmac
import secrets
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import jwt

from app.core.config import settings

UNSUBSCRIBE_PURPOSE = "newsletter_subscription"
CSRF_ALGORITHM = "HS256"


def hash_ip(ip: str, salt: str | None = None) -> str:
    """Hash a client IP with the configured salt (first 16 hex chars)."""
    salt = settings.ip_hash_salt if salt is None else salt
    return hashlib.sha256(f"{ip}{salt}".encode()).hexdigest()[:16]


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


class UnsubscribeTokenService:
    """Generates and verifies self-contained, time-bound unsubscribe tokens.

    A token is ``base64url("<timestamp_ms>:<signature>")`` where the signature
    is ``HMAC-SHA256(secret, "<email>:<purpose>:<timestamp_ms>")`` in hex.
    Nothing is persisted; verification recomputes the signature.
    """

    def __init__(
        self,
        secret: str,
        *,
        max_age: timedelta = timedelta(days=30),
        purpose: str = UNSUBSCRIBE_PURPOSE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.secret = secret.encode()
        self.max_age_ms = int(max_age.total_seconds() * 1000)
        self.purpose = purpose
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _sign(self, email: str, timestamp: str) -> str:
        data = f"{email}:{self.purpose}:{timestamp}".encode()
        return hmac.new(self.secret, data, hashlib.sha256).hexdigest()

    def generate(self, email: str) -> str:
        email = email.strip().lower()
        timestamp = str(self._now_ms())
        signature = self._sign(email, timestamp)
        return _b64url_encode(f"{timestamp}:{signature}".encode())

    def verify(self, token: str, email: str) -> bool:
        try:
            raw = _b64url_decode(token)
            decoded = raw.decode("ascii")
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return False
        # Non-canonical encodings (stray characters, altered padding bits) are rejected
        if _b64url_encode(raw) != token:
            return False

        timestamp, sep, signature = decoded.partition(":")
        if not sep or not timestamp or not signature or not timestamp.isdigit():
            return False

        if self._now_ms() - int(timestamp) > self.max_age_ms:
            return False

        expected = self._sign(email.strip().lower(), timestamp)
        return hmac.compare_digest(signature.encode(), expected.encode())


def get_token_service() -> UnsubscribeTokenService:
    """Token service bound to the configured secret."""
    return UnsubscribeTokenService(
        settings.unsubscribe_token_secret,
        max_age=timedelta(days=settings.unsubscribe_token_max_age_days),
    )


# --- CSRF ---


def _csrf_expiry() -> timedelta:
    return timedelta(hours=2) if settings.is_development else timedelta(hours=1)


def generate_csrf_token(client_ip: str, user_agent: str) -> str:
    """Issue a signed CSRF token.

    In production the token is bound to the caller's user agent and hashed IP;
    development tokens skip both bindings so localhost proxies work.
    """
    now = datetime.now(UTC)
    strict = not settings.is_development
    payload = {
        "nonce": secrets.token_hex(32),
        "iat": now,
        "exp": now + _csrf_expiry(),
        "ua": user_agent if strict else "flexible",
        "iph": hash_ip(client_ip) if strict else "flexible",
        "env": settings.environment,
    }
    return jwt.encode(payload, settings.csrf_secret, algorithm=CSRF_ALGORITHM)


def verify_csrf_token(token: str, client_ip: str, user_agent: str) -> bool:
    """Verify a CSRF token issued by :func:`generate_csrf_token`."""
    try:
        payload = jwt.decode(token, settings.csrf_secret, algorithms=[CSRF_ALGORITHM])
    except jwt.InvalidTokenError:
        return False

    if payload.get("env") != settings.environment:
        return False
    if payload.get("ua", "flexible") != "flexible" and payload["ua"] != user_agent:
        return False
    if payload.get("iph", "flexible") != "flexible" and payload["iph"] != hash_ip(client_ip):
        return False
    return True


def verify_api_key(authorization: str | None) -> bool:
    """Check a ``Bearer <key>`` header against the newsletter API key."""
    if not authorization or not settings.newsletter_api_key:
        return False
    provided = authorization.removeprefix("Bearer ").strip()
    return hmac.compare_digest(provided.encode(), settings.newsletter_api_key.encode())
