"""Webhook notifier driver using httpx.AsyncClient.

Implements the :class:`~deployflow.kernel.ports.notifier.Notifier` port by
POSTing each event's JSON payload to a fixed URL (chat webhook, incident
tool, custom receiver).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from deployflow.kernel.exceptions import CollaboratorError
from deployflow.kernel.logging import get_logger

if TYPE_CHECKING:
    from deployflow.kernel.orchestration.events import Event

logger = get_logger(__name__)


class WebhookNotifier:
    """Notifier that POSTs events as JSON.

    Parameters
    ----------
    url : str
        Receiver URL.
    timeout : float
        Request timeout in seconds (default: 10.0).
    headers : dict[str, str] | None
        Extra headers sent with every request.
    transport : httpx.AsyncBaseTransport | None
        Custom transport, e.g. ``httpx.MockTransport`` in tests.

    Examples
    --------
    Example usage::

        notifier = WebhookNotifier("https://hooks.example.com/deploys")
        engine = ExecutionEngine(adapters, notifier=notifier)

    The request body is ``event.to_dict()`` plus a human-readable ``text``::

        {"event": "ApprovalRequested", "run_id": "…", "stage_name": "approve",
         "gates": "deploy", "approvers": ["alice"], "timestamp": "…",
         "text": "Approval 'approve' requested before 'deploy'"}
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._headers = dict(headers) if headers else {}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Lazily create the httpx client on first use."""
        if self._client is None:
            kwargs: dict[str, Any] = {"timeout": self._timeout, "headers": self._headers}
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def anotify(self, event: Event) -> None:
        """POST ``event`` to the webhook.

        Raises
        ------
        CollaboratorError
            On transport errors or non-2xx responses.
        """
        payload = event.to_dict()
        payload["text"] = event.log_message()
        try:
            response = await self._get_client().post(self._url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CollaboratorError(
                "WebhookNotifier", f"{self._url} answered {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise CollaboratorError("WebhookNotifier", f"{self._url}: {e}") from e
        logger.debug(
            "Delivered {event} for run {run_id}", event=payload["event"], run_id=event.run_id
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
