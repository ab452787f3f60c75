import hashlib
from typing import Any

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import get_settings
from app.core.exceptions import ValidationError

SESSION_MAX_AGE = 7 * 24 * 3600  # 7 days


def get_session_serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(
        settings.secret_key,
        salt="mentor-points-session",
        signer_kwargs={"key_derivation": "hmac", "digest_method": hashlib.sha256},
    )


def create_session_cookie(payload: dict[str, Any]) -> str:
    """Sign a session payload. Issued by the login collaborator; used here by tests and tooling."""
    return get_session_serializer().dumps(payload)


def load_session_cookie(cookie_value: str, max_age_seconds: int = SESSION_MAX_AGE) -> dict[str, Any] | None:
    serializer = get_session_serializer()
    try:
        return serializer.loads(cookie_value, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None


def normalize_idempotency_key(key: str | None) -> str | None:
    """Strip an optional Idempotency-Key header; reject keys that are present but blank or oversized."""
    if key is None:
        return None
    key = key.strip()
    if not key:
        raise ValidationError("Idempotency-Key header must not be blank")
    if len(key) > 200:
        raise ValidationError("Idempotency-Key header is too long")
    return key
