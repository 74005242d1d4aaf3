"""Webhook notifier: implements NotifierPort by POSTing JSON to a delivery service."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from workshop.application.ports.notifier import NotifierPort

logger = logging.getLogger(__name__)


class WebhookNotifier(NotifierPort):
    """One POST per notification; non-2xx responses raise ``httpx.HTTPStatusError``."""

    def __init__(self, url: str, client: httpx.AsyncClient | None = None, timeout_s: float = 10.0):
        if not url:
            raise ValueError("WebhookNotifier requires a URL")
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def _post(self, payload: dict[str, Any]) -> None:
        response = await self._client.post(self._url, json=payload)
        response.raise_for_status()

    async def notify_customer(
        self,
        customer_id: str,
        phone: str,
        message: str,
        meta: dict[str, Any] | None = None,
    ) -> None:
        await self._post(
            {
                "channel": "sms",
                "to": phone,
                "customerId": customer_id,
                "message": message,
                "meta": meta or {},
            }
        )
        logger.info("SMS webhook delivered for customer %s", customer_id)

    async def notify_user(
        self,
        user_id: str,
        title: str,
        message: str,
        priority: str = "medium",
        category: str = "service_orders",
        meta: dict[str, Any] | None = None,
    ) -> None:
        await self._post(
            {
                "channel": "in_app",
                "userId": user_id,
                "type": category,
                "title": title,
                "message": message,
                "priority": priority,
                "meta": meta or {},
            }
        )
        logger.info("Notification webhook delivered for user %s", user_id)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
