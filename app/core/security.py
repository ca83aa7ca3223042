import hashlib
import hmac
import secrets

DIGITS = "0123456789"


def generate_numeric_code(length: int) -> str:
    return "".join(secrets.choice(DIGITS) for _ in range(length))


def constant_time_equals(expected: str, provided: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def generate_session_id() -> str:
    return f"sess_{secrets.token_urlsafe(24)}"


def hash_token(token: str) -> str:
    """Tokens are stored and looked up by their SHA-256 digest."""

    return hashlib.sha256(token.encode("utf-8")).hexdigest()
