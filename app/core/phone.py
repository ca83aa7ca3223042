import re

NIGERIAN_PHONE_RE = re.compile(r"^\+234[789][01]\d{8}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


def normalize_nigerian_phone(phone: str) -> str:
    text = str(phone or "").strip()
    digits = "".join(ch for ch in text if ch.isdigit())
    if not digits:
        raise ValueError("phone must contain digits")

    # Accept already-prefixed numbers: 234 + 10 local digits.
    if digits.startswith("234") and len(digits) == 13:
        normalized = f"+{digits}"
    # Accept local trunk format: 0 + 10 digits.
    elif digits.startswith("0") and len(digits) == 11:
        normalized = f"+234{digits[1:]}"
    elif len(digits) == 10:
        normalized = f"+234{digits}"
    else:
        raise ValueError("phone must be in format +234XXXXXXXXXX")

    if not NIGERIAN_PHONE_RE.match(normalized):
        raise ValueError("phone must be in format +234XXXXXXXXXX")
    return normalized


def is_email(contact: str) -> bool:
    return "@" in (contact or "")


def normalize_contact(contact: str) -> str:
    """Return the canonical form of a phone number or email address."""

    text = str(contact or "").strip()
    if not text:
        raise ValueError("phone number or email is required")
    if is_email(text):
        lowered = text.lower()
        if not EMAIL_RE.match(lowered):
            raise ValueError("invalid email address format")
        return lowered
    return normalize_nigerian_phone(text)
