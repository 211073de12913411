from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.auth_secret, salt="session-token")


def issue_session_token(user_id: str) -> str:
    if not user_id:
        raise ValueError("User id cannot be empty")
    return _serializer().dumps({"sub": user_id})


def resolve_session_token(
    token: Optional[str], max_age_hours: Optional[int] = None
) -> Optional[str]:
    """
    Return the user id carried by a session token, or None when the token is
    missing, tampered with or expired. SignatureExpired is a BadSignature.
    """
    if not token:
        return None
    if max_age_hours is None:
        max_age_hours = get_settings().session_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except BadSignature:
        return None

    user_id = data.get("sub") if isinstance(data, dict) else None
    if not isinstance(user_id, str) or not user_id:
        return None
    return user_id


def token_from_headers(authorization: Optional[str], cookie: Optional[str]) -> Optional[str]:
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return cookie or None
