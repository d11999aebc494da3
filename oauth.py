"""Google OAuth provider and the account-linking step that follows a login."""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from fastapi import Request
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from database import collection_name, utcnow
from errors import Forbidden, Unauthorized
from schemas import Student, Teacher, User

logger = logging.getLogger(__name__)


class OAuthIdentity(BaseModel):
    """What the identity provider tells us about the person signing in."""
    external_id: str
    email: Optional[str] = None
    name: str = ""
    picture: str = ""


class GoogleOAuthProvider:
    """Handle Google OAuth authentication."""

    GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
    GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"

    def __init__(self, client_id: Optional[str], client_secret: Optional[str], redirect_uri: str):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri

    @classmethod
    def from_config(cls) -> "GoogleOAuthProvider":
        if not config.GOOGLE_CLIENT_ID or not config.GOOGLE_CLIENT_SECRET:
            logger.warning("Google OAuth credentials are not configured. OAuth routes will fail.")
        return cls(config.GOOGLE_CLIENT_ID, config.GOOGLE_CLIENT_SECRET, config.GOOGLE_CALLBACK_URL)

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def get_authorization_url(self, state: Optional[str] = None) -> str:
        """Generate Google OAuth authorization URL."""
        params = {
            "client_id": self.client_id or "",
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "prompt": "select_account",
        }
        if state:
            params["state"] = state
        return f"{self.GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code_for_tokens(self, code: str) -> Dict[str, Any]:
        with httpx.Client(timeout=10.0) as client:
            response = client.post(
                self.GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.redirect_uri,
                },
            )
            response.raise_for_status()
            return response.json()

    def get_user_info(self, access_token: str) -> Dict[str, Any]:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(
                self.GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            return response.json()

    def authenticate(self, code: str) -> Optional[OAuthIdentity]:
        """
        Complete OAuth flow: exchange code and get user info.

        Returns the identity if successful, None otherwise.
        """
        if not self.configured:
            logger.error("[GoogleOAuth] Login attempted without client credentials")
            return None
        try:
            tokens = self.exchange_code_for_tokens(code)
            access_token = tokens.get("access_token")
            if not access_token:
                logger.error("[GoogleOAuth] No access token received from token exchange")
                return None

            user_info = self.get_user_info(access_token)
            return OAuthIdentity(
                external_id=str(user_info.get("sub")),
                email=user_info.get("email"),
                name=user_info.get("name", ""),
                picture=user_info.get("picture", ""),
            )
        except httpx.HTTPStatusError as e:
            logger.error(f"[GoogleOAuth] HTTP error during authentication: {e.response.status_code} - {e.response.text}")
            return None
        except httpx.RequestError as e:
            logger.error(f"[GoogleOAuth] Request error during authentication: {e}")
            return None


def get_oauth_provider(request: Request) -> GoogleOAuthProvider:
    return request.app.state.oauth_provider


def role_from_state(state: Optional[str]) -> str:
    requested = (state or "").strip().lower()
    return requested if requested in ("teacher", "admin") else "student"


def _upsert_role_profile(db: Database, user: Dict[str, Any]) -> None:
    model = {"student": Student, "teacher": Teacher}.get(user["role"])
    if model is None:
        return
    profile = model(
        user=user["_id"],
        name=user["name"],
        email=user["email"],
        external_id=user["external_id"],
        profile_pic=user.get("profile_pic", ""),
    ).model_dump()
    fresh = {k: profile.pop(k) for k in ("user", "name", "email", "external_id", "profile_pic", "role")}
    now = utcnow()
    db[collection_name(model)].update_one(
        {"user": user["_id"]},
        {
            "$set": {**fresh, "updated_at": now},
            "$setOnInsert": {**profile, "created_at": now},
        },
        upsert=True,
    )


def complete_login(db: Database, identity: OAuthIdentity, state: Optional[str]) -> Dict[str, Any]:
    """
    Link a provider identity to a campus account.

    The role always comes from the login state, never from an earlier session.
    Students must sign in with an institutional address. A failure after the
    user upsert reports the whole login as failed; retrying is safe because
    both writes are keyed upserts.
    """
    role = role_from_state(state)
    email = (identity.email or "").strip().lower()
    if not email:
        raise Unauthorized("Unable to read Google account email")
    if role == "student" and not email.endswith(config.ALLOWED_STUDENT_DOMAIN):
        logger.warning(f"Rejected student login from outside {config.ALLOWED_STUDENT_DOMAIN}: {email}")
        raise Forbidden("Invalid domain")

    fields = User(
        name=identity.name.strip() or "Unnamed User",
        email=email,
        external_id=identity.external_id,
        profile_pic=identity.picture or "",
        role=role,
    ).model_dump()
    now = utcnow()
    try:
        user = db[collection_name(User)].find_one_and_update(
            {"external_id": identity.external_id},
            {"$set": {**fields, "updated_at": now}, "$setOnInsert": {"created_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        _upsert_role_profile(db, user)
    except PyMongoError as e:
        logger.error(f"Login for {email} failed while saving the account: {e}")
        raise Unauthorized("Authentication failed")

    logger.info(f"Signed in {email} as {role}")
    return user
