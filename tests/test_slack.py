"""Tests for Slack delivery using httpx.MockTransport."""
import asyncio
import json

import httpx
import pytest

from lhci_reporter.slack import (
    SLACK_POST_MESSAGE_URL,
    DeliveryError,
    DeliveryTimeout,
    EndpointRejected,
    SlackDestination,
    TransientServerError,
    send_report,
)

BLOCKS = [{"type": "divider"}]
WEBHOOK = SlackDestination(webhook_url="https://hooks.slack.com/services/T/B/X", channel="perf")


def deliver(destination, handler):
    return asyncio.run(send_report(
        BLOCKS, destination, "Results", transport=httpx.MockTransport(handler),
    ))


def test_webhook_payload():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, text="ok")

    deliver(WEBHOOK, handler)

    assert len(seen) == 1
    assert str(seen[0].url) == WEBHOOK.webhook_url
    assert json.loads(seen[0].content) == {"text": "Results", "blocks": BLOCKS, "channel": "perf"}


def test_api_uses_bearer_token_and_default_channel():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    deliver(SlackDestination(token="xoxb-1"), handler)

    assert str(seen[0].url) == SLACK_POST_MESSAGE_URL
    assert seen[0].headers["Authorization"] == "Bearer xoxb-1"
    assert json.loads(seen[0].content)["channel"] == "#general"


def test_api_error_body_is_rejected():
    with pytest.raises(EndpointRejected, match="channel_not_found"):
        deliver(SlackDestination(token="xoxb-1", channel="nope"),
                lambda request: httpx.Response(200, json={"ok": False, "error": "channel_not_found"}))


def test_client_error_is_rejected_not_retryable():
    with pytest.raises(EndpointRejected) as exc:
        deliver(WEBHOOK, lambda request: httpx.Response(404, text="no_service"))
    assert exc.value.status_code == 404
    assert exc.value.retryable is False


def test_server_error_is_transient():
    with pytest.raises(TransientServerError) as exc:
        deliver(WEBHOOK, lambda request: httpx.Response(503, text="unavailable"))
    assert exc.value.retryable is True


def test_timeout_is_typed():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(DeliveryTimeout):
        deliver(WEBHOOK, handler)


def test_connection_error_is_delivery_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(DeliveryError):
        deliver(WEBHOOK, handler)


def test_destination_requires_webhook_or_token():
    with pytest.raises(ValueError):
        SlackDestination(channel="perf")
