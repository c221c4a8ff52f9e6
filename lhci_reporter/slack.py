"""
Deliver rendered blocks to Slack, via incoming webhook or chat.postMessage.

Exactly one attempt per call. Retrying transient failures is left to the
caller, which can check DeliveryError.retryable.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"
DEFAULT_TIMEOUT_MS = 10000
DEFAULT_CHANNEL = "#general"


class DeliveryError(Exception):
    retryable = False


class DeliveryTimeout(DeliveryError):
    """The request did not complete within the timeout."""


class EndpointRejected(DeliveryError):
    """Slack refused the message (4xx, or ok=false from the Web API)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientServerError(DeliveryError):
    """Slack answered 5xx; safe to try again later."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class SlackDestination:
    webhook_url: Optional[str] = None
    token: Optional[str] = None
    channel: Optional[str] = None

    def __post_init__(self):
        if not self.webhook_url and not self.token:
            raise ValueError("Either slack_webhook_url or slack_token must be provided")

    @property
    def kind(self) -> str:
        return "webhook" if self.webhook_url else "api"


def _check_status(response: httpx.Response) -> None:
    status = response.status_code
    if status >= 500:
        raise TransientServerError(f"Slack returned {status}: {response.text[:200]}", status)
    if status >= 400:
        raise EndpointRejected(f"Slack rejected the message ({status}): {response.text[:200]}", status)


async def send_report(
    blocks: list[dict],
    destination: SlackDestination,
    title: str,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """Post the blocks to Slack once, raising a DeliveryError subclass on failure."""
    timeout = timeout_ms / 1000

    if destination.webhook_url:
        url = destination.webhook_url
        headers = {}
        payload = {"text": title, "blocks": blocks}
        if destination.channel:
            payload["channel"] = destination.channel
    else:
        url = SLACK_POST_MESSAGE_URL
        headers = {"Authorization": f"Bearer {destination.token}"}
        payload = {
            "channel": destination.channel or DEFAULT_CHANNEL,
            "text": title,
            "blocks": blocks,
        }

    logger.debug("Sending %d blocks to Slack via %s", len(blocks), destination.kind)

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as e:
        raise DeliveryTimeout(f"Slack {destination.kind} request timed out after {timeout_ms}ms") from e
    except httpx.RequestError as e:
        raise DeliveryError(f"Slack {destination.kind} request failed: {e}") from e

    _check_status(response)

    if destination.kind == "api":
        try:
            body = response.json()
        except ValueError as e:
            raise EndpointRejected(f"Slack API returned a non-JSON body: {response.text[:200]}",
                                   response.status_code) from e
        if not body.get("ok"):
            raise EndpointRejected(f"Slack API error: {body.get('error', 'unknown_error')}", response.status_code)

    logger.info("Sent report to Slack via %s", destination.kind)
