"""Outbound HTTP calls for violation actions.

Every call is bounded by a timeout. Timeouts, transport errors, non-2xx
replies and unusable approval bodies all surface as
:class:`~litestar_sla.exceptions.ExternalCallFailureError`; nothing here ever
reports a failed call as a success.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from litestar_sla.exceptions import ExternalCallFailureError

if TYPE_CHECKING:
    from litestar_sla.core.policy import CallbackConfig

__all__ = ["CallbackClient"]

logger = logging.getLogger(__name__)


class CallbackClient:
    """Async HTTP client for notify and auto-approve endpoints.

    Args:
        timeout: Per-request timeout in seconds.
        client: Optional pre-built ``httpx.AsyncClient``. When omitted one is
            created and owned by this instance.
        transport: Optional transport for the owned client (e.g. ``httpx.MockTransport``).
    """

    def __init__(
        self,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout), transport=transport)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> CallbackClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _send(self, config: CallbackConfig, url: str, body: dict[str, Any]) -> httpx.Response:
        request_kwargs: dict[str, Any] = {"headers": config.headers, "timeout": self.timeout}
        if config.method == "GET":
            request_kwargs["params"] = {key: str(value) for key, value in body.items()}
        else:
            request_kwargs["json"] = body

        try:
            response = await self._client.request(config.method, url, **request_kwargs)
        except httpx.TimeoutException as exc:
            raise ExternalCallFailureError(url, f"timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ExternalCallFailureError(url, f"{type(exc).__name__}: {exc}") from exc

        if not response.is_success:
            raise ExternalCallFailureError(url, "non-2xx response", status_code=response.status_code)
        return response

    async def notify(self, config: CallbackConfig, url: str, body: dict[str, Any]) -> int:
        """Send a violation notification.

        Args:
            config: The callback configuration (method and headers).
            url: The rendered endpoint URL.
            body: The rendered request body.

        Returns:
            The HTTP status code of the 2xx acknowledgment.

        Raises:
            ExternalCallFailureError: On timeout, transport error or non-2xx reply.
        """
        response = await self._send(config, url, body)
        logger.debug("Notification to %s acknowledged with HTTP %s", url, response.status_code)
        return response.status_code

    async def request_approval(self, config: CallbackConfig, url: str, body: dict[str, Any]) -> dict[str, Any]:
        """Ask an external system to perform an approval.

        The response body must be a JSON object; it becomes the approval
        payload verbatim.

        Args:
            config: The callback configuration (method and headers).
            url: The rendered endpoint URL.
            body: The rendered request body.

        Returns:
            The approval payload.

        Raises:
            ExternalCallFailureError: On timeout, transport error, non-2xx reply
                or a body that is not a non-empty JSON object.
        """
        response = await self._send(config, url, body)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalCallFailureError(url, "approval response is not JSON", response.status_code) from exc
        if not isinstance(payload, dict) or not payload:
            raise ExternalCallFailureError(
                url,
                "approval response must be a non-empty JSON object",
                response.status_code,
            )
        return payload
