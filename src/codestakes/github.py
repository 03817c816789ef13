"""
GitHub OAuth provider: authorize URL, code exchange and profile lookup.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .config import Settings

logger = logging.getLogger(__name__)

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_URL = "https://api.github.com"


class OAuthProviderError(Exception):
    """GitHub rejected the exchange or returned an unusable profile."""


@dataclass(frozen=True)
class GitHubOAuthConfig:
    client_id: Optional[str]
    client_secret: Optional[str]
    callback_url: str
    scope: str = "user:email"

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def missing(self) -> Dict[str, str]:
        """Presence flags for the credentials, never their values."""
        return {
            "clientId": "present" if self.client_id else "missing",
            "clientSecret": "present" if self.client_secret else "missing",
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "GitHubOAuthConfig":
        return cls(
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            callback_url=settings.oauth_callback_url,
        )


@dataclass(frozen=True)
class GitHubProfile:
    github_id: str
    username: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar: Optional[str] = None


class GitHubProvider:
    """Performs the provider side of the redirect-based handshake."""

    def __init__(
        self,
        config: GitHubOAuthConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30,
    ):
        self.config = config
        self._transport = transport
        self._timeout = timeout

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    def authorize_url(self, state: str) -> str:
        """Build GitHub OAuth authorize URL with client settings and state."""
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.callback_url,
            "scope": self.config.scope,
            "state": state,
        }
        return str(httpx.URL(GITHUB_AUTHORIZE_URL, params=params))

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout)

    async def fetch_profile(self, code: str) -> GitHubProfile:
        """
        Exchange an authorization code and return the user's profile.

        Raises:
            OAuthProviderError when GitHub fails or omits required fields.
        """
        try:
            async with self._client() as client:
                access_token = await self._exchange_code(client, code)
                return await self._get_profile(client, access_token)
        except httpx.HTTPError as exc:
            logger.warning("github request failed: %s", exc)
            raise OAuthProviderError(f"GitHub request failed: {exc}") from exc

    async def _exchange_code(self, client: httpx.AsyncClient, code: str) -> str:
        payload = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": code,
            "redirect_uri": self.config.callback_url,
        }
        response = await client.post(
            GITHUB_ACCESS_TOKEN_URL, json=payload, headers={"Accept": "application/json"}
        )
        response.raise_for_status()
        data = response.json()
        access_token = data.get("access_token")
        if not access_token:
            raise OAuthProviderError(data.get("error_description") or "GitHub OAuth token exchange failed")
        return access_token

    async def _get_profile(self, client: httpx.AsyncClient, access_token: str) -> GitHubProfile:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
        }
        user_resp = await client.get(f"{GITHUB_API_URL}/user", headers=headers)
        user_resp.raise_for_status()
        user_data: Dict[str, Any] = user_resp.json()

        email = None
        emails_resp = await client.get(f"{GITHUB_API_URL}/user/emails", headers=headers)
        if emails_resp.status_code == 200:
            for entry in emails_resp.json():
                if entry.get("primary"):
                    email = entry.get("email")
                    break

        if not user_data.get("id") or not user_data.get("login"):
            raise OAuthProviderError("GitHub profile is missing id or login")

        return GitHubProfile(
            github_id=str(user_data["id"]),
            username=user_data["login"],
            display_name=user_data.get("name"),
            email=email or user_data.get("email"),
            avatar=user_data.get("avatar_url"),
        )
