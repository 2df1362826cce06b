"""
Outbound delivery to Discord webhooks.

One POST per message, no retries. Every failure mode is turned into a
DeliveryOutcome so callers never have to catch transport exceptions.

Public API:
  build_http_client(user_agent, timeout) -> httpx.AsyncClient
  build_webhook_url(destination)         -> str
  deliver(client, destination, message)  -> DeliveryOutcome
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import quote

import httpx

from notehook import config
from notehook.models.discord import WebhookMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True, repr=False)
class Destination:
    """A Discord webhook, identified by its snowflake id and secret token."""
    webhook_id: int
    token: str

    def __repr__(self) -> str:
        # Tokens are credentials; keep them out of logs
        return f"Destination(webhook_id={self.webhook_id})"


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"     # Discord answered 2xx
    REJECTED = "rejected"       # Discord answered with any non-2xx status
    FAILED = "failed"           # request never completed


@dataclass(frozen=True)
class DeliveryOutcome:
    status: DeliveryStatus
    status_code: Optional[int] = None
    detail: Optional[str] = None   # response body or transport error text

    @property
    def ok(self) -> bool:
        return self.status is DeliveryStatus.DELIVERED


def build_http_client(
    user_agent: str = config.USER_AGENT,
    timeout: float = config.OUTBOUND_TIMEOUT_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create the shared outbound client.

    The application owns the returned client and must close it on shutdown.
    ``transport`` exists for tests (httpx.MockTransport).
    """
    return httpx.AsyncClient(
        headers={"User-Agent": user_agent},
        timeout=timeout,
        transport=transport,
    )


def build_webhook_url(destination: Destination, api_base: str = config.DISCORD_API_BASE) -> str:
    # The token comes from a URL path segment; keep it a single segment
    return f"{api_base}/webhooks/{destination.webhook_id}/{quote(destination.token, safe='')}"


async def deliver(
    client: httpx.AsyncClient,
    destination: Destination,
    message: WebhookMessage,
    api_base: str = config.DISCORD_API_BASE,
) -> DeliveryOutcome:
    """
    POST ``message`` to the Discord webhook and classify the result.

    - 2xx         -> DELIVERED
    - otherwise   -> REJECTED, response body logged and kept in ``detail``
    - httpx error -> FAILED (connection, timeout, protocol, decoding)

    Never raises for network problems.
    """
    url = build_webhook_url(destination, api_base)

    try:
        response = await client.post(url, json=message.to_request_json())
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        logger.error(
            f"Failed to deliver to Discord webhook {destination.webhook_id}: "
            f"{type(exc).__name__}: {exc}"
        )
        return DeliveryOutcome(DeliveryStatus.FAILED, detail=str(exc))

    if not response.is_success:
        body = response.text
        logger.error(
            f"Error response from Discord for webhook {destination.webhook_id} "
            f"(HTTP {response.status_code}): {body}"
        )
        return DeliveryOutcome(
            DeliveryStatus.REJECTED,
            status_code=response.status_code,
            detail=body,
        )

    logger.debug(
        f"Delivered to Discord webhook {destination.webhook_id} "
        f"(HTTP {response.status_code})"
    )
    return DeliveryOutcome(DeliveryStatus.DELIVERED, status_code=response.status_code)
