import hmac
from typing import Optional

from fastapi import Header, HTTPException
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.secret_key, salt="session-token")


def issue_session_token(subject: str) -> str:
    """Sign the identity the OAuth provider already verified."""
    return _serializer().dumps({"sub": subject})


def read_session_token(token: str, max_age_hours: Optional[int] = None) -> str:
    if max_age_hours is None:
        max_age_hours = get_settings().session_max_age_hours
    try:
        data = _serializer().loads(token, max_age=max_age_hours * 3600)
    except SignatureExpired as exc:
        raise ValueError("Session expired") from exc
    except BadSignature as exc:
        raise ValueError("Invalid session token") from exc
    subject = data.get("sub") if isinstance(data, dict) else None
    if not subject:
        raise ValueError("Invalid session token")
    return str(subject)


def bridge_secret_matches(candidate: str) -> bool:
    expected = get_settings().oauth_bridge_secret
    if not expected:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


def current_user_id(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = authorization.split(" ", 1)[1].strip()
    try:
        return read_session_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
