"""VATSIM Connect (OAuth) and Core API clients."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
from dotenv import find_dotenv, load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..errors import UpstreamError

logger = logging.getLogger(__name__)

_DOTENV_PATH = find_dotenv(filename=".env", raise_error_if_not_found=False, usecwd=True)
if _DOTENV_PATH:
    load_dotenv(_DOTENV_PATH)

ROSTER_PAGE_SIZE = 100
USER_AGENT = "ATC-BookingSystem/1.0"
OAUTH_SCOPE = "full_name vatsim_details"


class VatsimSettings(BaseSettings):
    """Configuration for VATSIM Connect and the VATSIM Core API."""

    model_config = SettingsConfigDict(env_prefix="VATSIM_", extra="ignore", populate_by_name=True)

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None
    auth_url: str = "https://auth.vatsim.net/oauth/authorize"
    token_url: str = "https://auth.vatsim.net/oauth/token"
    user_url: str = "https://auth.vatsim.net/api/user"
    api_base_url: str = "https://api.vatsim.net"
    api_key: Optional[str] = None
    http_timeout_seconds: float = 15.0
    frontend_url: str = Field("", validation_alias="FRONTEND_URL")

    @property
    def oauth_configured(self) -> bool:
        return bool(self.client_id and self.redirect_uri)


@lru_cache
def get_vatsim_settings() -> VatsimSettings:
    return VatsimSettings()


class VatsimError(UpstreamError):
    """Raised when a VATSIM endpoint fails or returns an unusable payload."""


@dataclass(frozen=True, slots=True)
class VatsimProfile:
    cid: str
    name: str


@dataclass(frozen=True, slots=True)
class RosterMember:
    cid: str
    name_first: str
    name_last: str
    subdivision_id: Optional[str] = None


class VatsimOAuthClient:
    """Authorization-code flow against VATSIM Connect."""

    def __init__(
        self,
        settings: VatsimSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    def authorize_url(self, state: str) -> str:
        params = {
            "client_id": self._settings.client_id or "",
            "redirect_uri": self._settings.redirect_uri or "",
            "response_type": "code",
            "scope": OAUTH_SCOPE,
            "state": state,
        }
        return f"{self._settings.auth_url}?{urlencode(params)}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._settings.http_timeout_seconds, transport=self._transport)

    async def exchange_code(self, code: str) -> str:
        """Trade an authorization code for an access token."""

        async with self._client() as client:
            response = await client.post(
                self._settings.token_url,
                data={
                    "grant_type": "authorization_code",
                    "client_id": self._settings.client_id or "",
                    "client_secret": self._settings.client_secret or "",
                    "redirect_uri": self._settings.redirect_uri or "",
                    "code": code,
                },
            )

        if response.status_code >= 400:
            logger.error("VATSIM token exchange failed (%d): %s", response.status_code, response.text)
            raise VatsimError("Token exchange failed")

        access_token = response.json().get("access_token")
        if not access_token:
            logger.error("VATSIM token response did not include an access token")
            raise VatsimError("Token exchange failed")
        return access_token

    async def fetch_profile(self, access_token: str) -> VatsimProfile:
        async with self._client() as client:
            response = await client.get(
                self._settings.user_url,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )

        if response.status_code >= 400:
            logger.error("VATSIM user fetch failed (%d): %s", response.status_code, response.text)
            raise VatsimError("User fetch failed")

        try:
            data = response.json()["data"]
            personal = data.get("personal") or {}
            cid = str(data["cid"])
        except (KeyError, TypeError, ValueError) as exc:
            logger.error("VATSIM user payload was malformed: %s", response.text)
            raise VatsimError("User fetch failed") from exc

        name = " ".join(
            part for part in (personal.get("name_first"), personal.get("name_last")) if part
        )
        return VatsimProfile(cid=cid, name=name or cid)


class VatsimRosterClient:
    """Paged reader for ``/v2/orgs/...`` roster listings."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.vatsim.net",
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: VatsimSettings) -> "VatsimRosterClient":
        if not settings.api_key:
            raise UpstreamError("VATSIM API key is not configured")
        return cls(
            settings.api_key,
            base_url=settings.api_base_url,
            timeout_seconds=settings.http_timeout_seconds,
        )

    async def fetch_subdivision(self, code: str) -> list[RosterMember]:
        return await self.fetch_members(f"/v2/orgs/subdivision/{code}")

    async def fetch_division(self, code: str) -> list[RosterMember]:
        return await self.fetch_members(f"/v2/orgs/division/{code}")

    async def fetch_members(self, path: str) -> list[RosterMember]:
        """Collect every page of ``path``.

        Stops once the collected count reaches the declared ``count`` or a page
        comes back shorter than the page size.
        """

        headers = {
            "X-API-Key": self._api_key,
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }
        members: list[RosterMember] = []
        offset = 0

        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout_seconds,
            transport=self._transport,
        ) as client:
            while True:
                try:
                    response = await client.get(
                        path,
                        headers=headers,
                        params={"limit": ROSTER_PAGE_SIZE, "offset": offset},
                    )
                except httpx.HTTPError as exc:
                    logger.error("VATSIM roster request to %s failed: %s", path, exc)
                    raise VatsimError("VATSIM roster request failed") from exc

                if response.status_code >= 400:
                    logger.error(
                        "VATSIM roster error %d for %s offset=%d: %s",
                        response.status_code,
                        path,
                        offset,
                        response.text,
                    )
                    raise VatsimError(f"VATSIM API returned {response.status_code}")

                try:
                    payload: dict[str, Any] = response.json()
                    items = payload.get("items") or []
                    members.extend(_parse_member(item) for item in items)
                    declared = int(payload.get("count") or 0)
                except (ValueError, KeyError, TypeError, AttributeError) as exc:
                    logger.error(
                        "VATSIM roster payload for %s offset=%d was invalid: %s",
                        path,
                        offset,
                        response.text,
                    )
                    raise VatsimError("VATSIM API returned an invalid payload") from exc

                if len(members) >= declared or len(items) < ROSTER_PAGE_SIZE:
                    break
                offset += ROSTER_PAGE_SIZE

        return members


def _parse_member(item: dict[str, Any]) -> RosterMember:
    return RosterMember(
        cid=str(item["id"]),
        name_first=item.get("name_first") or "",
        name_last=item.get("name_last") or "",
        subdivision_id=item.get("subdivision_id"),
    )
