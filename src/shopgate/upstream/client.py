"""Bounded-timeout HTTP clients for the workflow engine and the platform API.

All outbound HTTP goes through :class:`UpstreamClient`, a thin wrapper around
one shared :class:`httpx.AsyncClient`.  It enforces a timeout on every call
and maps transport failures onto the shopgate exception family:

+-----------------------------+-------------------------------+
| httpx                       | shopgate                      |
+=============================+===============================+
| ``httpx.TimeoutException``  | ``UpstreamTimeoutError`` (504)|
+-----------------------------+-------------------------------+
| any other ``httpx.HTTPError``| ``UpstreamFailureError`` (502)|
+-----------------------------+-------------------------------+

A timeout is retryable and is never reported as an authentication failure.

Two collaborators sit on top:

:class:`WorkflowRelay`
    Forwards verified requests to the workflow engine, carrying the verified
    tenant (``X-Shop``, ``X-Client-Id``), the correlation id
    (``X-Request-Id``) and the backend shared secret.

:class:`PlatformClient`
    Exchanges OAuth codes for access tokens and performs admin API calls
    with a token fetched from the vault.  Shops are validated before they
    are placed in a URL.
"""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import TYPE_CHECKING, Any

import httpx

from shopgate.core.exceptions import (
    ConfigurationError,
    MalformedInputError,
    UpstreamFailureError,
    UpstreamTimeoutError,
)
from shopgate.resolution.shop_domain import is_valid_shop_domain

if TYPE_CHECKING:
    from shopgate.core.types import TenantIdentity
    from shopgate.vault.vault import CredentialVault

logger = logging.getLogger(__name__)

# Hop-by-hop and identity headers never copied onto a forwarded request.
_STRIPPED_HEADERS = frozenset(
    {
        "host",
        "connection",
        "content-length",
        "transfer-encoding",
        "authorization",
        "cookie",
        "x-shop",
        "x-client-id",
        "x-request-id",
    }
)


class UpstreamClient:
    """Shared async HTTP client with a bounded timeout.

    Args:
        timeout: Upper bound in seconds for each request.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(self, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def timeout(self) -> float:
        return self._timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
                follow_redirects=False,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        operation: str,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request; non-2xx responses are returned, not raised.

        Raises:
            UpstreamTimeoutError: The request exceeded the timeout.
            UpstreamFailureError: The request failed at the transport level.
        """
        try:
            response = await self._get_client().request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Upstream %s timed out after %.1fs", operation, self._timeout)
            raise UpstreamTimeoutError(operation=operation, timeout=self._timeout) from exc
        except httpx.HTTPError as exc:
            logger.warning("Upstream %s failed: %s", operation, type(exc).__name__)
            raise UpstreamFailureError(operation=operation, reason=type(exc).__name__) from exc
        logger.debug("Upstream %s -> %d", operation, response.status_code)
        return response


class WorkflowRelay:
    """Forward verified requests to the workflow engine.

    Args:
        client: Shared upstream client.
        base_url: Workflow engine base URL.
        shared_secret: Backend shared secret sent on every call.
        secret_header: Header name carrying *shared_secret*.
    """

    def __init__(
        self,
        client: UpstreamClient,
        base_url: str | None,
        shared_secret: str | None,
        secret_header: str = "X-Forward-Secret",
    ) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/") if base_url else None
        self._secret = shared_secret
        self._secret_header = secret_header

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url) and bool(self._secret)

    def _headers(
        self,
        tenant: TenantIdentity | None,
        request_id: str,
        extra: Mapping[str, str] | None = None,
    ) -> dict[str, str]:
        headers = {
            k: v for k, v in (extra or {}).items() if k.lower() not in _STRIPPED_HEADERS
        }
        headers[self._secret_header] = self._secret or ""
        headers["X-Request-Id"] = request_id
        if tenant is not None:
            headers["X-Shop"] = tenant.shop
            if tenant.client_id:
                headers["X-Client-Id"] = tenant.client_id
        return headers

    async def forward(
        self,
        path: str,
        *,
        tenant: TenantIdentity | None,
        request_id: str,
        method: str = "POST",
        body: bytes | None = None,
        params: Mapping[str, str] | list[tuple[str, str]] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Forward one request to ``{base_url}/{path}``.

        Raises:
            ConfigurationError: When the base URL or shared secret is unset.
            UpstreamTimeoutError: The engine did not answer in time.
            UpstreamFailureError: The call failed at the transport level.
        """
        if not self.is_configured:
            raise ConfigurationError(
                parameter="workflow_base_url",
                reason="workflow relay needs workflow_base_url and backend_shared_secret.",
            )
        url = f"{self._base_url}/{path.lstrip('/')}"
        return await self._client.request(
            "workflow.forward",
            method,
            url,
            content=body,
            params=params,
            headers=self._headers(tenant, request_id, headers),
        )

    async def notify(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        tenant: TenantIdentity | None,
        request_id: str,
    ) -> None:
        """POST *payload* as JSON to an absolute workflow *url*.

        Raises:
            UpstreamFailureError: On a non-2xx answer or a transport failure.
            UpstreamTimeoutError: The engine did not answer in time.
        """
        response = await self._client.request(
            "workflow.notify",
            "POST",
            url,
            json=dict(payload),
            headers=self._headers(tenant, request_id),
        )
        if response.is_error:
            raise UpstreamFailureError(
                operation="workflow.notify",
                reason="non-success response",
                status=response.status_code,
            )


class PlatformClient:
    """Platform OAuth and admin REST calls.

    Args:
        client: Shared upstream client.
        api_key: Platform public client key.
        api_secret: Platform app secret used for the code exchange.
        api_version: Admin REST API version segment.
        vault: Credential vault providing per-shop access tokens.
    """

    def __init__(
        self,
        client: UpstreamClient,
        api_key: str | None,
        api_secret: str | None,
        api_version: str = "2024-10",
        vault: CredentialVault | None = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._api_secret = api_secret
        self._api_version = api_version
        self._vault = vault

    @staticmethod
    def _checked_shop(shop: str) -> str:
        if not is_valid_shop_domain(shop):
            raise MalformedInputError("shop", "not a valid storefront domain")
        return shop

    async def exchange_code(self, shop: str, code: str) -> dict[str, Any]:
        """Exchange an OAuth *code* for an access token.

        Returns:
            The platform's JSON answer, guaranteed to contain ``access_token``.

        Raises:
            ConfigurationError: When the API key or secret is unset.
            MalformedInputError: Invalid shop or empty code.
            UpstreamFailureError: Non-2xx answer or no token in the answer.
            UpstreamTimeoutError: The platform did not answer in time.
        """
        if not self._api_key or not self._api_secret:
            raise ConfigurationError(
                parameter="api_key", reason="code exchange needs api_key and an app secret."
            )
        shop = self._checked_shop(shop)
        if not code:
            raise MalformedInputError("code", "must not be empty")

        response = await self._client.request(
            "platform.exchange_code",
            "POST",
            f"https://{shop}/admin/oauth/access_token",
            json={"client_id": self._api_key, "client_secret": self._api_secret, "code": code},
        )
        if response.is_error:
            raise UpstreamFailureError(
                operation="platform.exchange_code",
                reason="token exchange rejected",
                status=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamFailureError(
                operation="platform.exchange_code", reason="non-JSON answer"
            ) from exc
        if not isinstance(data, dict) or not data.get("access_token"):
            raise UpstreamFailureError(
                operation="platform.exchange_code", reason="answer carries no access_token"
            )
        return data

    async def admin_request(
        self,
        shop: str,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Call the admin REST API for *shop* with its vault token.

        Raises:
            ConfigurationError: When no vault is attached.
            CredentialNotFoundError: When the shop has no stored token.
            CredentialIntegrityError: When the stored token fails authentication.
            UpstreamTimeoutError: The platform did not answer in time.
            UpstreamFailureError: The call failed at the transport level.
        """
        if self._vault is None:
            raise ConfigurationError(parameter="vault", reason="admin calls need a credential vault.")
        shop = self._checked_shop(shop)
        token = await self._vault.decrypt(shop=shop)
        url = f"https://{shop}/admin/api/{self._api_version}/{path.lstrip('/')}"
        return await self._client.request(
            "platform.admin_request",
            method,
            url,
            json=json,
            params=params,
            headers={"X-Shopify-Access-Token": token, "Accept": "application/json"},
        )


__all__ = ["PlatformClient", "UpstreamClient", "WorkflowRelay"]
