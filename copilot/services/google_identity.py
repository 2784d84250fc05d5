"""Google sign-in: resolve an OAuth access token to its verified email"""

import logging
from typing import Optional

import httpx

from copilot.config import settings
from copilot.errors import AuthenticationFailure, UpstreamFailure

logger = logging.getLogger(__name__)


class GoogleIdentity:
    def __init__(self, http: Optional[httpx.AsyncClient] = None):
        self.http = http

    async def verified_email(self, token: str) -> str:
        """
        Look up the token's owner.

        Raises:
            AuthenticationFailure: token rejected or email not verified
        """
        if not token:
            raise AuthenticationFailure("Google token is required")

        headers = {"Authorization": f"Bearer {token}"}
        try:
            if self.http is not None:
                response = await self.http.get(settings.google_userinfo_url, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=10.0) as http:
                    response = await http.get(settings.google_userinfo_url, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Google userinfo request failed: {e}")
            raise UpstreamFailure("Google sign-in is unavailable") from e

        if response.status_code != 200:
            logger.warning(f"Google userinfo rejected token: {response.status_code}")
            raise AuthenticationFailure("Invalid Google token")

        info = response.json()
        if not info.get("email") or not info.get("email_verified"):
            raise AuthenticationFailure("Google account email is not verified")
        return info["email"].lower()
