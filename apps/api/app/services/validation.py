"""Input sanitization and validation for subscriber names and emails.

Everything here is pure: no I/O, no settings. Sanitizers clean a value without
judging it; the ``contains_suspicious_patterns`` / ``validate_*`` functions
decide whether the cleaned value is acceptable.
"""

import re
from dataclasses import dataclass, field
from typing import Any

EMAIL_MAX_LENGTH = 254
NAME_MAX_LENGTH = 100
NAME_MIN_LENGTH = 2

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\u2028\u2029]")
_ZERO_WIDTH_RE = re.compile(r"[\u200b-\u200d\ufeff]")
_WHITESPACE_RE = re.compile(r"\s+")

EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

_XSS_PATTERNS = [
    re.compile(r"<[^>]*>"),
    re.compile(r"[<>]"),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"data:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"&[#\w]+;"),
]

# Single quotes are deliberately absent: they are legitimate in names (O'Brien)
_SQL_PATTERNS = [
    re.compile(r";|--|/\*"),
    re.compile(
        r"\b(union|select|insert|delete|update|drop|create|alter|exec|execute)\s+",
        re.IGNORECASE,
    ),
    re.compile(r"\b(and|or)\b.{1,6}?(=|>|<)", re.IGNORECASE),
]

_SCRIPT_PATTERNS = [
    re.compile(r"(script|javascript|vbscript|onload|onerror|onclick)", re.IGNORECASE),
]

_VALID_NAME_RE = re.compile(
    r"^[a-zA-Z\u00c0-\u00ff\u0100-\u017f\u0180-\u024f\u1e00-\u1eff\s\-'.]+$"
)
_SUSPICIOUS_NAME_RE = re.compile(r"[0-9@#$%^&*()_+={}\[\]|\\:\";?/<>~`]")
_REPEATED_CHARS_RE = re.compile(r"(.)\1{4,}")

COMMON_DOMAINS = (
    "gmail.com",
    "yahoo.com",
    "hotmail.com",
    "outlook.com",
    "aol.com",
    "icloud.com",
    "protonmail.com",
    "mail.com",
    "yandex.com",
)

DISPOSABLE_DOMAINS = frozenset(
    {
        "10minutemail.com",
        "tempmail.org",
        "guerrillamail.com",
        "mailinator.com",
        "throwaway.email",
        "temp-mail.org",
        "getnada.com",
        "maildrop.cc",
    }
)

_IP_DOMAIN_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
_SUSPICIOUS_DOMAIN_PATTERNS = [
    re.compile(r"\.(tk|ml|ga|cf)$", re.IGNORECASE),
    re.compile(r"\d{4,}"),
    re.compile(r"[^a-z0-9.-]", re.IGNORECASE),
]

MAX_SUGGESTIONS = 3


@dataclass
class ValidationResult:
    is_valid: bool
    reason: str | None = None


@dataclass
class EmailValidationResult:
    is_valid: bool
    reason: str | None = None
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"is_valid": self.is_valid, "reason": self.reason, "suggestions": self.suggestions}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EmailValidationResult":
        return cls(
            is_valid=bool(data.get("is_valid")),
            reason=data.get("reason"),
            suggestions=list(data.get("suggestions") or []),
        )


# --- Sanitizers ---


def sanitize_input(value: str, max_length: int = EMAIL_MAX_LENGTH) -> str:
    """Trim, drop control and zero-width characters, truncate."""
    cleaned = _CONTROL_CHARS_RE.sub("", value.strip())
    cleaned = _ZERO_WIDTH_RE.sub("", cleaned)
    return cleaned[:max_length]


def sanitize_email(email: str) -> str:
    return sanitize_input(email, EMAIL_MAX_LENGTH).lower()


def sanitize_name(name: str) -> str:
    return _WHITESPACE_RE.sub(" ", sanitize_input(name, NAME_MAX_LENGTH)).strip()


# --- Pattern checks ---


def contains_suspicious_patterns(value: str) -> bool:
    """True when ``value`` carries markup, script or SQL-injection markers."""
    if not value:
        return False
    patterns = (*_XSS_PATTERNS, *_SQL_PATTERNS, *_SCRIPT_PATTERNS)
    return any(pattern.search(value) for pattern in patterns)


def _contains_suspicious_domain(domain: str) -> bool:
    if _IP_DOMAIN_RE.match(domain):
        return True
    return any(pattern.search(domain) for pattern in _SUSPICIOUS_DOMAIN_PATTERNS)


# --- Validators ---


def validate_name(name: str) -> ValidationResult:
    """Validate a display name after sanitization."""
    name = sanitize_input(name, NAME_MAX_LENGTH + 1)

    if not name:
        return ValidationResult(False, "Name is required")
    if len(name) > NAME_MAX_LENGTH:
        return ValidationResult(False, "Name is too long")
    if len(name) < NAME_MIN_LENGTH:
        return ValidationResult(False, "Name is too short")
    if _SUSPICIOUS_NAME_RE.search(name):
        return ValidationResult(False, "Name contains invalid characters")
    if _REPEATED_CHARS_RE.search(name):
        return ValidationResult(False, "Name contains suspicious patterns")
    if not _VALID_NAME_RE.match(name):
        return ValidationResult(False, "Name contains invalid characters")
    if any(pattern.search(name) for pattern in (*_SQL_PATTERNS, *_SCRIPT_PATTERNS)):
        return ValidationResult(False, "Name contains invalid characters")
    return ValidationResult(True)


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit-cost insert, delete and substitute."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (char_a != char_b),
                )
            )
        previous = current
    return previous[-1]


def suggest_domain_corrections(domain: str) -> list[str]:
    """Common providers within edit distance 1-2 of ``domain``."""
    domain = domain.lower()
    suggestions = [
        candidate
        for candidate in COMMON_DOMAINS
        if 0 < levenshtein_distance(domain, candidate) <= 2
    ]
    return suggestions[:MAX_SUGGESTIONS]


def validate_email(email: str) -> EmailValidationResult:
    """Validate an email address.

    A valid result can still carry ``suggestions`` when the domain looks like a
    typo of a common provider (e.g. ``gmial.com``).
    """
    email = sanitize_input(email, EMAIL_MAX_LENGTH)

    if contains_suspicious_patterns(email):
        return EmailValidationResult(False, "Email contains invalid characters")
    if not EMAIL_RE.match(email):
        return EmailValidationResult(False, "Invalid email format")

    local_part, _, domain = email.lower().partition("@")
    if not local_part or not domain:
        return EmailValidationResult(False, "Email cannot be empty")
    if len(local_part) > 64:
        return EmailValidationResult(False, "Email local part is too long")
    if len(domain) > 253:
        return EmailValidationResult(False, "Email domain is too long")
    if ".." in email:
        return EmailValidationResult(False, "Email cannot contain consecutive dots")
    if local_part.startswith(".") or local_part.endswith("."):
        return EmailValidationResult(False, "Email local part cannot start or end with a dot")
    if domain in DISPOSABLE_DOMAINS:
        return EmailValidationResult(False, "Disposable email addresses are not allowed")

    suggestions = suggest_domain_corrections(domain)

    if "." not in domain or domain.startswith(".") or domain.endswith("."):
        return EmailValidationResult(False, "Invalid domain format", suggestions)

    tld = domain.rsplit(".", 1)[-1]
    if not (2 <= len(tld) <= 63) or not tld.isalpha():
        return EmailValidationResult(False, "Invalid top-level domain", suggestions)

    if _contains_suspicious_domain(domain):
        return EmailValidationResult(False, "Domain contains suspicious patterns")

    return EmailValidationResult(True, suggestions=suggestions)
