"""
LINE Login Service
OAuth 2.1 code flow against the LINE Platform: build the authorize URL,
exchange the code for tokens and fetch the user's profile.
"""

import logging
from typing import Any, Dict
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt

from config import settings

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://access.line.me/oauth2/v2.1/authorize"
TOKEN_URL = "https://api.line.me/oauth2/v2.1/token"
PROFILE_URL = "https://api.line.me/v2/profile"
ID_TOKEN_ISSUER = "https://access.line.me"
LOGIN_SCOPE = "profile openid email"


class LineLoginError(Exception):
    """LINE rejected a request or could not be reached."""


class LineLoginService:
    """Service for LINE Login API calls"""

    def __init__(self):
        self.channel_id = settings.LINE_CHANNEL_ID
        self.channel_secret = settings.LINE_CHANNEL_SECRET
        self.redirect_uri = f"{settings.APP_URL.rstrip('/')}/api/auth/line/callback"

    def is_configured(self) -> bool:
        return bool(self.channel_id and self.channel_secret)

    def authorize_url(self, tenant: str, nonce: str) -> str:
        """The tenant travels in the state so the shared callback knows where to send the user."""
        params = {
            "response_type": "code",
            "client_id": self.channel_id,
            "redirect_uri": self.redirect_uri,
            "state": f"{tenant}:{nonce}",
            "scope": LOGIN_SCOPE,
        }
        return f"{AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=15.0) as client:
                response = await client.post(
                    TOKEN_URL,
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": self.redirect_uri,
                        "client_id": self.channel_id,
                        "client_secret": self.channel_secret,
                    },
                    headers={"Content-Type": "application/x-www-form-urlencoded"}
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"LINE token exchange failed ({e.response.status_code}): {e.response.text}")
            raise LineLoginError("Failed to exchange code") from e
        except httpx.HTTPError as e:
            logger.error(f"LINE token exchange error: {e}")
            raise LineLoginError("LINE API unreachable") from e

    async def get_profile(self, access_token: str) -> Dict[str, Any]:
        """{userId, displayName, pictureUrl?, statusMessage?}"""
        try:
            async with httpx.AsyncClient(timeout=15.0) as client:
                response = await client.get(
                    PROFILE_URL,
                    headers={"Authorization": f"Bearer {access_token}"}
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"LINE profile request failed ({e.response.status_code})")
            raise LineLoginError("Failed to get profile") from e
        except httpx.HTTPError as e:
            logger.error(f"LINE profile request error: {e}")
            raise LineLoginError("LINE API unreachable") from e

    def email_from_id_token(self, token_data: Dict[str, Any]) -> str:
        """Email claim of the ID token; empty when the user did not grant it."""
        id_token = token_data.get("id_token")
        if not id_token:
            return ""
        try:
            claims = jwt.decode(
                id_token,
                self.channel_secret,
                algorithms=["HS256"],
                audience=self.channel_id,
                issuer=ID_TOKEN_ISSUER,
                access_token=token_data.get("access_token"),
            )
        except JWTError as e:
            logger.warning(f"Ignoring LINE ID token: {e}")
            return ""
        return claims.get("email") or ""


# Singleton instance
line_service = LineLoginService()
