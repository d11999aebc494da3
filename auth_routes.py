import json
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from pymongo.database import Database

import config
from campus_routes import build_profile
from database import get_db
from errors import NotFound, Unauthorized
from oauth import GoogleOAuthProvider, complete_login, get_oauth_provider
from responses import ok
from schemas import ROLES
from security import create_access_token, principal_from_user

logger = logging.getLogger(__name__)

router = APIRouter()


# Declared before /google/{role} so "callback" is never read as a role.
@router.get("/google/callback")
def google_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Database = Depends(get_db),
    provider: GoogleOAuthProvider = Depends(get_oauth_provider),
):
    if error or not code:
        logger.warning(f"OAuth callback without a code (error={error})")
        raise Unauthorized("Authentication failed")

    identity = provider.authenticate(code)
    if identity is None:
        raise Unauthorized("Authentication failed")

    user = complete_login(db, identity, state)
    token = create_access_token(principal_from_user(user))
    profile = build_profile(db, user)

    origins = config.client_origins()
    if origins:
        params = {"success": "true", "token": token, "profile": json.dumps(profile)}
        if state:
            params["state"] = state
        return RedirectResponse(f"{origins[0]}/auth/callback?{urlencode(params)}", status_code=302)

    return ok("Authentication successful", {"token": token, "user": profile})


@router.get("/google/{role}")
def start_google_login(role: str, provider: GoogleOAuthProvider = Depends(get_oauth_provider)):
    if role not in ROLES:
        raise NotFound("Resource not found")
    return RedirectResponse(provider.get_authorization_url(state=role), status_code=302)
