"""Input validation for the onboarding forms."""

import re

from agrilink.domain.errors import ValidationError

_OTP_RE = re.compile(r"^\d{6}$")
_SUBSCRIBER_RE = re.compile(r"^[67]\d{8}$")
_E164_RE = re.compile(r"^\+[1-9]\d{7,14}$")


def normalize_phone(raw: str, country_code: str = "255") -> str:
    """Normalize a user-typed mobile number to E.164.

    Accepts local (``0712345678``), bare subscriber (``712345678``),
    international without plus (``255712345678``) and E.164 input.
    Spaces, dashes and parentheses are ignored.
    """
    cleaned = re.sub(r"[\s\-()]", "", raw or "")
    if not cleaned:
        raise ValidationError("Please enter your phone number")

    if cleaned.startswith("+"):
        candidate = cleaned
    elif cleaned.startswith("00"):
        candidate = f"+{cleaned[2:]}"
    elif cleaned.startswith(country_code):
        candidate = f"+{cleaned}"
    elif cleaned.startswith("0"):
        candidate = f"+{country_code}{cleaned[1:]}"
    else:
        candidate = f"+{country_code}{cleaned}"

    if not _E164_RE.match(candidate):
        raise ValidationError("Please enter a valid phone number")
    if candidate.startswith(f"+{country_code}") and not _SUBSCRIBER_RE.match(
        candidate[len(country_code) + 1 :]
    ):
        raise ValidationError("Please enter a valid phone number")
    return candidate


def validate_otp_code(code: str) -> str:
    """Return the code stripped of whitespace if it is exactly six digits."""
    cleaned = (code or "").strip()
    if not _OTP_RE.match(cleaned):
        raise ValidationError("Please enter the 6-digit code")
    return cleaned


def require_text(value: str | None, message: str) -> str:
    """Return ``value`` stripped, or raise with ``message`` when blank."""
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationError(message)
    return cleaned


def require_choice(value: str, choices: tuple[str, ...], message: str) -> str:
    cleaned = value.strip()
    if cleaned not in choices:
        raise ValidationError(message)
    return cleaned
