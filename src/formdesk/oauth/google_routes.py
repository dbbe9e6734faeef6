"""OAuth2 routes for the Google Sheets integration.

This module implements the Google OAuth2 round trip for form integrations:
- Admin-key protection on every route (the callback included)
- Popup and redirect flows, with the target form carried in ``state``
- Grant status with liveness check and refresh
- Form linking/unlinking and explicit grant deletion
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from ..auth.gate import AuthMode, get_authorization_gate, require_admin
from ..config import AppConfig
from ..errors import ReauthRequired
from ..integrations.gsuite.auth.token_lifecycle import GrantResolver, TokenRefresher, delegated_credentials
from ..integrations.gsuite.auth.token_store import OAuthGrant, TokenStore
from ..integrations.gsuite.sheets.client import SheetsClient, extract_spreadsheet_id
from .callback import OAuthCallbackHandler
from .oauth_manager import GoogleOAuthManager
from .rendering import render_outcome
from .state import FlowKind, OAuthState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/google", tags=["Google OAuth"])

LOGIN_PATH = "/login"


def get_config(request: Request) -> AppConfig:
    return request.app.state.config


def get_oauth_manager(request: Request) -> GoogleOAuthManager:
    """Get configured OAuth manager instance."""
    return request.app.state.oauth_manager


def get_token_store(request: Request) -> TokenStore:
    return request.app.state.token_store


def get_callback_handler(request: Request) -> OAuthCallbackHandler:
    return request.app.state.callback_handler


def get_token_refresher(request: Request) -> TokenRefresher:
    return request.app.state.token_refresher


def get_grant_resolver(request: Request) -> GrantResolver:
    return request.app.state.grant_resolver


def _user_payload(grant: OAuthGrant) -> dict:
    return {"email": grant.email, "name": grant.name, "picture": grant.picture_url}


class ResourceRequest(BaseModel):
    refKey: Optional[str] = None


class LinkRequest(BaseModel):
    refKey: Optional[str] = None
    email: Optional[str] = None


class SheetTestRequest(BaseModel):
    refKey: Optional[str] = None
    sheetUrl: Optional[str] = None


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=400)


@router.get("", dependencies=[Depends(require_admin(AuthMode.ANY))])
async def authorize(
    popup: bool = Query(default=False, description="Complete the flow in a popup window"),
    refKey: Optional[str] = Query(default=None, description="Form to link the grant to"),
    oauth_manager: GoogleOAuthManager = Depends(get_oauth_manager),
):
    """Initiate the Google OAuth2 flow.

    Request:
        GET /api/auth/google?popup=true&refKey=contact-form
        Headers:
            x-admin-key: <api key>   (or the admin_key cookie)

    Response:
        {
            "ok": true,
            "data": {
                "authUrl": "https://accounts.google.com/o/oauth2/auth?...",
                "popup": true
            }
        }

    Raises:
        ConfigurationError: If Google OAuth is not configured (rendered as 500)
    """
    state = OAuthState(
        flow_kind=FlowKind.POPUP if popup else FlowKind.REDIRECT,
        target_resource_id=refKey or None,
    )
    auth_url = oauth_manager.create_authorization_url(state)

    logger.info(f"Generated Google authorization URL ({state.flow_kind.value} flow, form={refKey})")

    return {"ok": True, "data": {"authUrl": auth_url, "popup": popup}}


@router.api_route("/callback", methods=["GET", "POST"])
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(default=None, description="Authorization code from Google"),
    error: Optional[str] = Query(default=None, description="Error from Google"),
    state: Optional[str] = Query(default=None, description="Encoded flow kind and target form"),
    handler: OAuthCallbackHandler = Depends(get_callback_handler),
    config: AppConfig = Depends(get_config),
):
    """Handle the OAuth2 callback from Google.

    The callback writes grants, so it requires an admin credential like any
    other mutating route; the browser's admin cookie normally satisfies it.

    Returns:
        Popup flow: HTML page that posts GOOGLE_AUTH_SUCCESS / GOOGLE_AUTH_ERROR
        to the opener window and closes.
        Redirect flow: 302 to /builder?google_auth=success|error|missing_code
    """
    verdict = get_authorization_gate(request).authorize_request(request, AuthMode.ANY)
    if not verdict.authorized:
        logger.warning("Unauthenticated request to Google OAuth callback")
        return RedirectResponse(f"{config.app_base_url}{LOGIN_PATH}", status_code=302)

    outcome = await handler.handle_callback(code=code, error=error, state_raw=state)
    return render_outcome(outcome, base_url=config.app_base_url)


@router.get("/status", dependencies=[Depends(require_admin(AuthMode.ANY))])
async def oauth_status(
    refKey: Optional[str] = Query(default=None, description="Form whose grant to check"),
    token_store: TokenStore = Depends(get_token_store),
    refresher: TokenRefresher = Depends(get_token_refresher),
):
    """Check whether a usable Google grant exists.

    With ``refKey`` the form's linked grant is checked; otherwise the most
    recently used grant. An expired or dead access token is refreshed.

    Response:
        {
            "ok": true,
            "data": {
                "authenticated": true,
                "user": {"email": "...", "name": "...", "picture": "..."},
                "expiresAt": "2025-01-15T10:30:00+00:00"
            }
        }
    """
    if refKey:
        grant = await asyncio.to_thread(token_store.get_by_resource, refKey)
    else:
        grant = await asyncio.to_thread(token_store.get_most_recently_used)

    if grant is None:
        return {"ok": True, "data": {"authenticated": False, "user": None}}

    try:
        grant = await refresher.ensure_fresh(grant)
    except ReauthRequired:
        return {"ok": True, "data": {"authenticated": False, "user": None, "needsReauth": True}}

    return {
        "ok": True,
        "data": {
            "authenticated": True,
            "user": _user_payload(grant),
            "expiresAt": grant.expiry_date.isoformat() if grant.expiry_date else None,
        },
    }


@router.post("/logout", dependencies=[Depends(require_admin(AuthMode.ANY))])
async def disconnect_form(
    body: ResourceRequest,
    token_store: TokenStore = Depends(get_token_store),
):
    """Unlink a form from its Google grant.

    The grant itself is kept; other forms may still use it. An unknown refKey answers 404.

    Request:
        POST /api/auth/google/logout
        {"refKey": "contact-form"}
    """
    if not body.refKey:
        return _bad_request("Form refKey is required")

    await asyncio.to_thread(token_store.link_resource_to_grant, body.refKey, None)
    logger.info(f"Unlinked Google auth from form: {body.refKey}")

    return {"ok": True, "data": {"message": "Successfully logged out from Google"}}


@router.post("/link", dependencies=[Depends(require_admin(AuthMode.ANY))])
async def link_form(
    body: LinkRequest,
    resolver: GrantResolver = Depends(get_grant_resolver),
):
    """Link a form to a Google grant.

    With ``email`` the grant for that account is linked. Without it the form
    keeps its current grant, or gets the most recently used one.

    Request:
        POST /api/auth/google/link
        {"refKey": "contact-form", "email": "owner@example.com"}
    """
    if not body.refKey:
        return _bad_request("Form refKey is required")

    if body.email:
        grant = await asyncio.to_thread(resolver.link_by_email, body.refKey, body.email)
    else:
        grant = await asyncio.to_thread(resolver.resolve_for_resource, body.refKey, True)

    if grant is None:
        return JSONResponse(
            {"ok": False, "error": "No connected Google account found"},
            status_code=404,
        )

    return {"ok": True, "data": {"refKey": body.refKey, "user": _user_payload(grant)}}


@router.delete("/grants", dependencies=[Depends(require_admin(AuthMode.ANY))])
async def delete_grants(
    email: Optional[str] = Query(default=None, description="Account whose grant to delete"),
    delete_all: bool = Query(default=False, alias="all", description="Delete every stored grant"),
    token_store: TokenStore = Depends(get_token_store),
    oauth_manager: GoogleOAuthManager = Depends(get_oauth_manager),
):
    """Delete stored Google grants.

    ``?email=`` deletes one account's grant (revoking its token with Google
    on a best-effort basis). ``?all=true`` deletes every grant and must be
    passed explicitly. Forms linked to a deleted grant fall back to "not
    connected".
    """
    if email:
        grant = await asyncio.to_thread(token_store.get_by_email, email)
        if grant is None:
            return JSONResponse({"ok": False, "error": "Google account not found"}, status_code=404)

        await oauth_manager.revoke_token(grant.refresh_token or grant.access_token)
        await asyncio.to_thread(token_store.delete_by_email, email)
        logger.info(f"Deleted Google grant for {email}")
        return {"ok": True, "data": {"deleted": 1}}

    if delete_all:
        deleted = await asyncio.to_thread(token_store.delete_all)
        logger.warning(f"Deleted all Google grants on admin request ({deleted})")
        return {"ok": True, "data": {"deleted": deleted}}

    return _bad_request("Pass email=<address> or all=true")


@router.post("/test-sheet", dependencies=[Depends(require_admin(AuthMode.ANY))])
async def test_sheet(
    body: SheetTestRequest,
    resolver: GrantResolver = Depends(get_grant_resolver),
    refresher: TokenRefresher = Depends(get_token_refresher),
    oauth_manager: GoogleOAuthManager = Depends(get_oauth_manager),
):
    """Check that a form's Google account can open a spreadsheet.

    Request:
        POST /api/auth/google/test-sheet
        {"refKey": "contact-form", "sheetUrl": "https://docs.google.com/spreadsheets/d/<id>/edit"}

    Raises:
        ReauthRequired: If the form has no usable grant (rendered as 401 with needsReauth)
    """
    if not body.refKey:
        return _bad_request("Form refKey is required")

    spreadsheet_id = extract_spreadsheet_id(body.sheetUrl or "")
    if not spreadsheet_id:
        return _bad_request("Invalid Google Sheets URL format")

    credentials = await delegated_credentials(body.refKey, resolver, refresher)
    service = oauth_manager.get_sheets_service(credentials)
    result = await SheetsClient(service).get_spreadsheet_info(spreadsheet_id)

    if not result["success"]:
        return JSONResponse({"ok": False, "error": result["error"]}, status_code=400)
    return {"ok": True, "data": result}
