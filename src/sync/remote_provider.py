"""
Remote data providers.

``RemoteDataProvider`` is the contract the sync layer depends on:
``fetch_all(resource)`` returns every record of a table or raises
``RemoteFetchError``. ``RestDataProvider`` talks to a PostgREST-style
HTTP API and signs in once per process; the session token is reused
until ``sign_out``.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp
import structlog

from ..shared.config import SyncSettings
from ..shared.exceptions import RemoteFetchError

logger = structlog.get_logger(__name__)

Record = Dict[str, Any]


class RemoteDataProvider(ABC):
    """Source of remote table data."""

    @abstractmethod
    async def fetch_all(self, resource_name: str) -> List[Record]:
        """
        Fetch every record of a resource.

        Raises:
            RemoteFetchError: On network or remote failure.
        """

    async def close(self) -> None:
        pass


class StaticDataProvider(RemoteDataProvider):
    """Serves tables from memory. Used offline and in development."""

    def __init__(self, tables: Optional[Dict[str, List[Record]]] = None):
        self.tables = {name: list(rows) for name, rows in (tables or {}).items()}

    async def fetch_all(self, resource_name: str) -> List[Record]:
        if resource_name not in self.tables:
            raise RemoteFetchError(f"Unknown resource: {resource_name}", resource=resource_name)
        return [dict(row) for row in self.tables[resource_name]]


class RestDataProvider(RemoteDataProvider):
    """PostgREST-style HTTP provider with a cached session token."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        email: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 30.0
    ):
        if not base_url:
            raise ValueError("Provider URL is required")
        if not api_key:
            raise ValueError("Provider API key is required")

        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.email = email
        self.password = password
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self._access_token: Optional[str] = None
        self._sign_in_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> 'RestDataProvider':
        return cls(
            base_url=settings.provider_url,
            api_key=settings.provider_api_key,
            email=settings.provider_email,
            password=settings.provider_password,
            timeout=settings.sync_fetch_timeout or 30.0
        )

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def connect(self) -> None:
        """Initialize the HTTP session."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"apikey": self.api_key, "Content-Type": "application/json"}
            )
            logger.info("Remote provider connected", base_url=self.base_url)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
            logger.info("Remote provider disconnected")

    @property
    def is_signed_in(self) -> bool:
        return self._access_token is not None

    async def sign_in(self) -> str:
        """Sign in with password credentials, reusing an existing token."""
        async with self._sign_in_lock:
            if self._access_token:
                return self._access_token
            if not self.email or not self.password:
                # Anonymous access with the API key
                self._access_token = self.api_key
                return self._access_token

            if not self.session:
                await self.connect()

            url = f"{self.base_url}/auth/v1/token"
            try:
                async with self.session.post(
                    url,
                    params={"grant_type": "password"},
                    json={"email": self.email, "password": self.password}
                ) as response:
                    if response.status >= 400:
                        error_text = await response.text()
                        raise RemoteFetchError(
                            f"Sign-in failed ({response.status}): {error_text}",
                            status_code=response.status
                        )
                    body = await response.json()
            except aiohttp.ClientError as e:
                logger.error("Sign-in network error", error=str(e))
                raise RemoteFetchError(f"Network error during sign-in: {e}")

            self._access_token = body.get("access_token")
            if not self._access_token:
                raise RemoteFetchError("Sign-in response did not include an access token")
            logger.info("Signed in to remote provider", email=self.email)
            return self._access_token

    def sign_out(self) -> None:
        """Forget the session token; the next fetch signs in again."""
        self._access_token = None
        logger.info("Signed out of remote provider")

    async def fetch_all(self, resource_name: str) -> List[Record]:
        token = await self.sign_in()
        if not self.session:
            await self.connect()

        url = f"{self.base_url}/rest/v1/{resource_name}"
        try:
            async with self.session.get(
                url,
                params={"select": "*"},
                headers={"Authorization": f"Bearer {token}"}
            ) as response:
                if response.status == 401:
                    self.sign_out()
                    raise RemoteFetchError(
                        f"Not authorized to read {resource_name}",
                        resource=resource_name,
                        status_code=401
                    )
                if response.status >= 400:
                    error_text = await response.text()
                    raise RemoteFetchError(
                        f"Remote error {response.status} reading {resource_name}: {error_text}",
                        resource=resource_name,
                        status_code=response.status
                    )
                data = await response.json()
        except aiohttp.ClientError as e:
            logger.error("Remote fetch network error", resource=resource_name, error=str(e))
            raise RemoteFetchError(f"Network error reading {resource_name}: {e}", resource=resource_name)
        except asyncio.TimeoutError:
            raise RemoteFetchError(f"Timed out reading {resource_name}", resource=resource_name)

        if not isinstance(data, list):
            raise RemoteFetchError(f"Unexpected payload for {resource_name}", resource=resource_name)
        logger.debug("Fetched remote resource", resource=resource_name, records=len(data))
        return data
