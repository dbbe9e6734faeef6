"""Browser admin login routes.

The UI admin key is exchanged once for an httponly cookie; afterwards the
browser authenticates on the cookie channel, which only admits the UI class.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .classifier import AuthVerdict
from .credentials import ADMIN_COOKIE, Channel
from .gate import AuthMode, get_authorization_gate, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Admin auth"])

COOKIE_MAX_AGE = 60 * 60 * 24 * 7  # 7 days


class LoginRequest(BaseModel):
    adminKey: Optional[str] = None


@router.post("/login")
async def login(body: LoginRequest, request: Request):
    """Validate the UI admin key and set the admin cookie.

    Request:
        POST /api/auth/login
        {"adminKey": "<ui key>"}

    Response:
        {"success": true} with Set-Cookie: admin_key=...
    """
    if not body.adminKey:
        return JSONResponse({"error": "Admin key is required"}, status_code=400)

    gate = get_authorization_gate(request)
    verdict = gate.classifier.classify(body.adminKey, Channel.COOKIE)
    if not verdict.authorized:
        logger.info("Rejected admin login attempt")
        return JSONResponse({"error": "Invalid admin key"}, status_code=401)

    response = JSONResponse({"success": True})
    response.set_cookie(
        ADMIN_COOKIE,
        body.adminKey,
        max_age=COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=request.app.state.config.admin_cookie_secure,
    )
    logger.info("Admin logged in via UI key")
    return response


@router.post("/logout")
async def logout():
    """Clear the admin cookie."""
    response = JSONResponse({"success": True})
    response.delete_cookie(ADMIN_COOKIE, path="/")
    return response


@router.get("/check")
async def check(verdict: AuthVerdict = Depends(require_admin(AuthMode.UI))):
    """Report whether the browser holds a valid UI admin cookie."""
    return {"authenticated": verdict.authorized}
