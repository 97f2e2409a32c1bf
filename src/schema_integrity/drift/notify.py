"""Webhook delivery of drift reports.

Usage:
    notifier = WebhookNotifier("https://hooks.example.com/drift", timeout=10)
    delivery = await notifier.send(report)
    if not delivery.delivered:
        print(delivery.error)
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel

from schema_integrity.drift.models import DriftReport

logger = logging.getLogger(__name__)


class Delivery(BaseModel):
    """Outcome of one webhook POST."""

    delivered: bool
    status_code: int | None = None
    error: str | None = None


def build_payload(report: DriftReport) -> dict[str, Any]:
    """JSON body posted to the webhook."""
    return {
        "event": "drift_detected",
        "timestamp": report.timestamp.isoformat(),
        "summary": report.summary().model_dump(),
        "drifts": [d.model_dump(mode="json") for d in report.drifts],
        "suggestions": [s.model_dump(mode="json") for s in report.suggestions],
    }


class WebhookNotifier:
    """Posts drift reports to an HTTP endpoint.

    A failed delivery never raises; it is reported through ``Delivery``.

    Args:
        url: Webhook endpoint.
        timeout: Seconds before the request is abandoned.
        client: Optional shared client; one is created per call otherwise.
    """

    def __init__(self, url: str, *, timeout: float = 10.0, client: httpx.AsyncClient | None = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> httpx.Response:
        return await client.post(self.url, json=payload, timeout=self.timeout)

    async def send(self, report: DriftReport) -> Delivery:
        payload = build_payload(report)
        try:
            if self._client is not None:
                response = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, payload)
        except httpx.HTTPError as e:
            logger.warning(f"Drift webhook {self.url} failed: {type(e).__name__}: {e}")
            return Delivery(delivered=False, error=f"{type(e).__name__}: {e}")

        if not response.is_success:
            logger.warning(f"Drift webhook {self.url} returned {response.status_code}")
            return Delivery(
                delivered=False,
                status_code=response.status_code,
                error=f"HTTP {response.status_code}",
            )

        logger.info(f"Sent drift notification to {self.url}")
        return Delivery(delivered=True, status_code=response.status_code)
