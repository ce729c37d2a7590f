"""Concrete implementation of the ApiKeyClient interface for SendGrid.

Hides the specifics of the SendGrid v3 REST API and translates requests/
responses between the domain model and the SendGrid JSON format.
"""

import logging
import time
from typing import Any, Dict, Iterable, Optional

import httpx

from keysync.domain.errors import RateLimitedError, RemoteOperationFailed
from keysync.domain.interfaces.api_key_client import ApiKeyClient
from keysync.domain.models.api_key import ApiKey
from keysync.domain.models.common import ApiKeyID, SecretValue
from keysync.infrastructure.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

ON_BEHALF_OF_HEADER = "on-behalf-of"


class SendGridApiKeyClient(ApiKeyClient):
    """SendGrid implementation of the ApiKeyClient interface."""

    DEFAULT_BASE_URL = "https://api.sendgrid.com"
    API_KEYS_PATH = "/v3/api_keys"

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout_s: float = 30.0,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initializes the SendGrid client.

        Args:
            api_key: SendGrid API key with the api_keys scope.
            base_url: API root, defaults to the public SendGrid endpoint.
            timeout_s: Per-request timeout.
            rate_limiter: Optional client-side pacing shared by all calls.
            transport: Custom httpx transport (used by tests).
        """
        if not api_key:
            raise ValueError("SendGrid API key not provided.")
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.rate_limiter = rate_limiter
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(timeout_s),
            transport=transport,
        )
        logger.info(f"SendGridApiKeyClient initialized for {self.base_url}")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "SendGridApiKeyClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # --- ApiKeyClient ---

    async def create_api_key(
        self, name: str, scopes: Iterable[str], on_behalf_of: Optional[str] = None
    ) -> ApiKey:
        body = {"name": name, "scopes": list(scopes)}
        data = await self._request("POST", self.API_KEYS_PATH, on_behalf_of, json=body)
        return self._parse_api_key(data)

    async def read_api_key(self, key_id: ApiKeyID, on_behalf_of: Optional[str] = None) -> ApiKey:
        data = await self._request("GET", f"{self.API_KEYS_PATH}/{key_id}", on_behalf_of)
        # GET wraps the key in a single-element "result" list
        if isinstance(data.get("result"), list):
            if not data["result"]:
                raise RemoteOperationFailed(f"API key {key_id} not found", 404)
            data = data["result"][0]
        return self._parse_api_key(data, fallback_id=key_id)

    async def update_api_key(
        self,
        key_id: ApiKeyID,
        name: str,
        scopes: Optional[Iterable[str]] = None,
        on_behalf_of: Optional[str] = None,
    ) -> ApiKey:
        path = f"{self.API_KEYS_PATH}/{key_id}"
        if scopes is None:
            # PATCH only renames; PUT would replace the scopes
            data = await self._request("PATCH", path, on_behalf_of, json={"name": name})
        else:
            data = await self._request("PUT", path, on_behalf_of, json={"name": name, "scopes": list(scopes)})
        return self._parse_api_key(data, fallback_id=key_id)

    async def delete_api_key(self, key_id: ApiKeyID, on_behalf_of: Optional[str] = None) -> None:
        await self._request("DELETE", f"{self.API_KEYS_PATH}/{key_id}", on_behalf_of)

    # --- Helpers ---

    async def _request(
        self,
        method: str,
        path: str,
        on_behalf_of: Optional[str],
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = {ON_BEHALF_OF_HEADER: on_behalf_of} if on_behalf_of else None
        if self.rate_limiter is not None:
            await self.rate_limiter.wait_for_permission()

        logger.debug(f"{method} {path}" + (f" on behalf of {on_behalf_of}" if on_behalf_of else ""))
        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e}")
            raise RemoteOperationFailed(f"{method} {path} failed: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> Dict[str, Any]:
        """Handle API response and errors."""
        if response.status_code == 429:
            retry_after = self._retry_after(response)
            if self.rate_limiter is not None and retry_after is not None:
                self.rate_limiter.pause_for(retry_after)
            logger.warning(f"SendGrid rate limit hit, retry after {retry_after}s")
            raise RateLimitedError(self._error_message(response), retry_after=retry_after)

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.error(f"SendGrid returned {response.status_code}: {message}")
            raise RemoteOperationFailed(message, response.status_code)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteOperationFailed("Invalid response format from SendGrid", response.status_code) from e
        if not isinstance(data, dict):
            raise RemoteOperationFailed("Unexpected response body from SendGrid", response.status_code)
        return data

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        """Reads the cooldown from Retry-After, else from X-RateLimit-Reset (epoch seconds)."""
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                logger.debug(f"Ignoring non-numeric Retry-After header: {retry_after}")
        reset = response.headers.get("X-RateLimit-Reset")
        if reset:
            try:
                return max(0.0, float(reset) - time.time())
            except ValueError:
                logger.debug(f"Ignoring non-numeric X-RateLimit-Reset header: {reset}")
        return None

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            errors = response.json().get("errors") or []
            messages = [e.get("message") for e in errors if isinstance(e, dict) and e.get("message")]
            if messages:
                return "; ".join(messages)
        except (ValueError, AttributeError):
            pass
        return f"SendGrid API error: {response.status_code}"

    @staticmethod
    def _parse_api_key(data: Dict[str, Any], fallback_id: Optional[str] = None) -> ApiKey:
        key_id = data.get("api_key_id") or fallback_id
        if not key_id:
            raise RemoteOperationFailed("SendGrid response did not include an api_key_id")
        secret = data.get("api_key")
        return ApiKey(
            key_id=ApiKeyID(key_id),
            name=data.get("name", ""),
            scopes=tuple(data.get("scopes") or ()),
            api_key=SecretValue(secret) if secret else None,
        )
