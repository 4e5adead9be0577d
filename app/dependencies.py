import os
from typing import Optional

from fastapi import HTTPException, Request
from itsdangerous import BadSignature, URLSafeTimedSerializer

from grocery_tracker.runtime import Services

SESSION_COOKIE = "gt_session"
SESSION_MAX_AGE = 60 * 60 * 24 * 7  # 7 days


def _get_signer() -> URLSafeTimedSerializer:
    key = os.environ.get("SECRET_KEY", "dev-secret-change-in-production")
    return URLSafeTimedSerializer(key)


def create_session_token(user_id: int) -> str:
    return _get_signer().dumps({"uid": user_id})


def read_session_user(token: str) -> Optional[int]:
    """Return the user id stored in a session token, or None if invalid or expired."""
    try:
        data = _get_signer().loads(token, max_age=SESSION_MAX_AGE)
    except BadSignature:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("uid"), int):
        return None
    return data["uid"]


def verify_session_token(token: str) -> bool:
    return read_session_user(token) is not None


def current_user_id(request: Request) -> int:
    token = request.cookies.get(SESSION_COOKIE)
    user_id = read_session_user(token) if token else None
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id


def get_services(request: Request) -> Services:
    return request.app.state.services


# Paths that don't require auth
_PUBLIC_PREFIXES = ("/login", "/demo", "/health")


def is_public(path: str) -> bool:
    return any(path.startswith(p) for p in _PUBLIC_PREFIXES)
