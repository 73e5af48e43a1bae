"""Keycloak admin REST client.

A client object is bound to exactly one realm. Authentication happens in the
administrative realm; `for_realm()` derives a client for the application
realm that shares the HTTP connection pool and the admin token, so there is
no process-wide session whose realm gets switched mid-run.
"""

from dataclasses import dataclass
from typing import Any

import httpx

from lagoon_rbac.errors import KeycloakError, NotFoundError
from lagoon_rbac.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class AdminCredentials:
    """Password grant credentials for the admin account."""

    username: str
    password: str
    client_id: str = "admin-cli"
    grant_type: str = "password"


@dataclass
class _TokenState:
    """Admin token shared between clients derived from the same login."""

    realm: str
    credentials: AdminCredentials | None = None
    access_token: str | None = None


class KeycloakAdminClient:
    """Admin API client bound to a single realm."""

    def __init__(
        self,
        base_url: str,
        realm: str,
        http: httpx.AsyncClient,
        token_state: _TokenState | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._realm = realm
        self._http = http
        self._token = token_state or _TokenState(realm=realm)

    @classmethod
    def connect(
        cls,
        base_url: str,
        realm: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "KeycloakAdminClient":
        """Create a client with its own HTTP connection pool."""
        http = httpx.AsyncClient(timeout=timeout, transport=transport)
        return cls(base_url, realm, http)

    @property
    def realm(self) -> str:
        return self._realm

    @property
    def is_authenticated(self) -> bool:
        return self._token.access_token is not None

    def for_realm(self, realm: str) -> "KeycloakAdminClient":
        """Return a client for another realm using the same admin login."""
        return KeycloakAdminClient(self._base_url, realm, self._http, self._token)

    async def authenticate(self, credentials: AdminCredentials) -> None:
        """Obtain an admin access token from this client's realm."""
        self._token.realm = self._realm
        self._token.credentials = credentials
        await self._fetch_token()
        logger.info(
            "Authenticated with Keycloak",
            realm=self._realm,
            username=credentials.username,
        )

    async def _fetch_token(self) -> None:
        credentials = self._token.credentials
        if credentials is None:
            raise KeycloakError("Keycloak client has no credentials; call authenticate() first")

        token_url = (
            f"{self._base_url}/realms/{self._token.realm}/protocol/openid-connect/token"
        )
        data = {
            "grant_type": credentials.grant_type,
            "client_id": credentials.client_id,
            "username": credentials.username,
            "password": credentials.password,
        }
        try:
            resp = await self._http.post(token_url, data=data)
        except httpx.HTTPError as e:
            raise KeycloakError(f"Token request to {token_url} failed: {e}") from e

        if resp.status_code != 200:
            raise KeycloakError(
                f"Keycloak authentication failed: {resp.status_code} {resp.text}",
                status_code=resp.status_code,
            )
        self._token.access_token = resp.json()["access_token"]

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Call an admin endpoint relative to /admin/realms/{realm}.

        Re-authenticates once when the admin token has expired. Raises
        NotFoundError on 404 and KeycloakError on any other failure.
        """
        if self._token.access_token is None:
            await self._fetch_token()

        url = f"{self._base_url}/admin/realms/{self._realm}{path}"
        resp = await self._send(method, url, params=params, json=json)
        if resp.status_code == 401 and self._token.credentials is not None:
            logger.debug("Admin token rejected, re-authenticating", realm=self._realm)
            await self._fetch_token()
            resp = await self._send(method, url, params=params, json=json)

        if resp.status_code == 404:
            raise NotFoundError(f"{method} {path}: not found")
        if resp.status_code >= 400:
            raise KeycloakError(
                f"{method} {path} failed: {resp.status_code} {resp.text}",
                status_code=resp.status_code,
            )
        return resp

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None,
        json: Any,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._token.access_token}"}
        try:
            return await self._http.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise KeycloakError(f"{method} {url} failed: {e}") from e

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        resp = await self.request("GET", path, params=params)
        return resp.json()

    async def create(self, path: str, representation: dict[str, Any]) -> str:
        """POST a new entity and return its id from the Location header."""
        resp = await self.request("POST", path, json=representation)
        location = resp.headers.get("Location", "")
        if not location:
            raise KeycloakError(f"POST {path} returned no Location header")
        return location.rstrip("/").rsplit("/", 1)[-1]

    async def aclose(self) -> None:
        """Close the shared HTTP connection pool."""
        await self._http.aclose()
