"""
Authentication routes for the NYC visitor guide.

These routes handle:
- Magic link request and verification
- Logout
- Current user lookup with role flags
- Full personal data erasure
"""

import os
import logging

from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse

from app.auth import (
    SESSION_COOKIE, SESSION_DAYS,
    create_magic_link, verify_magic_link, create_user_session, delete_user_session,
    get_current_user, get_session_token, require_user, is_valid_email, normalize_email,
    log_audit,
)
from app.emails import build_magic_link, send_magic_link_email
from app.models import AuditAction, User
from app.security import get_client_ip
from app.trips import delete_user_data

logger = logging.getLogger("nycguide.auth")

# ─────────────────────────── SETUP ───────────────────────────

router = APIRouter()


def get_base_url() -> str:
    return os.getenv("BASE_URL", "http://localhost:3000")


def _set_session_cookie(resp: JSONResponse, token: str):
    resp.set_cookie(
        SESSION_COOKIE,
        token,
        httponly=True,
        samesite="lax",
        secure=get_base_url().startswith("https"),
        path="/",
        max_age=SESSION_DAYS * 24 * 60 * 60
    )


# ─────────────────────────── MAGIC LINK ───────────────────────────

@router.post("/auth/magic-link")
async def api_magic_link(request: Request):
    """
    Send a sign-in link.
    Accepts: { email }
    Returns: { success, error? }
    """
    try:
        data = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON"})

    email = normalize_email(data.get("email", "") if isinstance(data, dict) else "")
    if not is_valid_email(email):
        return JSONResponse(status_code=400, content={"success": False, "error": "Please enter a valid email"})

    token = create_magic_link(email)
    if token:
        link = build_magic_link(get_base_url(), token)
        if not send_magic_link_email(email, link):
            logger.warning(f"Magic link for {email} was not delivered")

    # Same answer either way
    return JSONResponse({"success": True, "message": "Check your email for a sign-in link"})


@router.get("/auth/verify")
async def api_verify_magic_link(request: Request, token: str = ""):
    """Verify magic link and log user in."""
    user = verify_magic_link(token)
    if not user:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid or expired link"})

    session_token = create_user_session(
        user.id,
        device_info=request.headers.get("User-Agent"),
        ip_address=get_client_ip(request)
    )
    log_audit(AuditAction.USER_LOGIN, "user", actor_id=user.id, target_type="user", target_id=user.id)

    resp = JSONResponse({"success": True, "user": user.to_dict(), "session_token": session_token})
    _set_session_cookie(resp, session_token)
    return resp


@router.post("/auth/logout")
async def api_logout(request: Request):
    token = get_session_token(request)
    user = await get_current_user(request)
    if token:
        delete_user_session(token)
    if user:
        log_audit(AuditAction.USER_LOGOUT, "user", actor_id=user.id, target_type="user", target_id=user.id)

    resp = JSONResponse({"success": True})
    resp.delete_cookie(SESSION_COOKIE, path="/")
    return resp


# ─────────────────────────── ACCOUNT ───────────────────────────

@router.get("/api/user/me")
async def api_current_user(request: Request):
    """Get current logged-in user."""
    user = await get_current_user(request)
    if not user:
        return JSONResponse({"user": None})
    return JSONResponse({"user": user.to_dict()})


@router.post("/api/user/delete-data")
async def api_delete_user_data(request: Request, user: User = Depends(require_user)):
    """
    Erase the caller's trips and account.
    Accepts: { confirm: true }
    """
    try:
        data = await request.json()
    except ValueError:
        data = {}
    if not isinstance(data, dict) or data.get("confirm") is not True:
        return JSONResponse(status_code=400, content={"success": False, "error": "Please confirm deletion"})

    if not delete_user_data(user.id):
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to delete your data. Please try again."}
        )

    resp = JSONResponse({"success": True})
    resp.delete_cookie(SESSION_COOKIE, path="/")
    return resp
