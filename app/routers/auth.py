import os
from fastapi import APIRouter, Form
from fastapi.responses import JSONResponse, RedirectResponse

from grocery_tracker.core import users as users_core
from app.dependencies import create_session_token, SESSION_COOKIE, SESSION_MAX_AGE

router = APIRouter(tags=["auth"])


def _app_password() -> str:
    """Read APP_PASSWORD at call time so tests can set it via env."""
    return os.environ.get("APP_PASSWORD", "")


@router.get("/")
async def root():
    return RedirectResponse(url="/reports/dashboard", status_code=302)


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.post("/login")
def login(password: str = Form(...), user_id: int = Form(1)):
    if not password or password != _app_password():
        return JSONResponse({"detail": "Invalid password"}, status_code=401)
    user = users_core.get(user_id)
    if user is None or not user.is_active:
        return JSONResponse({"detail": "Unknown user"}, status_code=401)
    resp = JSONResponse({"user_id": user.id, "name": user.name})
    resp.set_cookie(
        SESSION_COOKIE,
        create_session_token(user.id),
        httponly=True,
        samesite="lax",
        max_age=SESSION_MAX_AGE,
    )
    return resp


@router.post("/logout")
async def logout():
    resp = JSONResponse({"ok": True})
    resp.delete_cookie(SESSION_COOKIE)
    return resp
