from typing import Optional

import bcrypt
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings

_BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="access-token")


def token_max_age_seconds() -> int:
    return get_settings().token_max_age_minutes * 60


def generate_access_token(user_id: int, role: str) -> str:
    return _serializer().dumps({"u": user_id, "r": role})


def validate_access_token(token: str) -> Optional[tuple[int, str]]:
    """Return ``(user_id, role)`` for a valid token, ``None`` otherwise."""
    serializer = _serializer()
    try:
        data = serializer.loads(token, max_age=token_max_age_seconds())
    except (SignatureExpired, BadSignature):
        return None

    user_id = data.get("u")
    role = data.get("r")
    if not isinstance(user_id, int) or not isinstance(role, str):
        return None
    return user_id, role
