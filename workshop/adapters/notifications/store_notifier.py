"""StoreNotifier: queues notifications as documents for the delivery workers."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from workshop.application.mappers import NOTIFICATIONS, SMS_NOTIFICATIONS
from workshop.application.ports.document_store import DocumentStore
from workshop.application.ports.notifier import NotifierPort

logger = logging.getLogger(__name__)


class StoreNotifier(NotifierPort):
    def __init__(self, store: DocumentStore, utcnow: Callable[[], datetime] | None = None):
        self._store = store
        self._utcnow = utcnow or (lambda: datetime.now(timezone.utc))

    async def notify_customer(
        self,
        customer_id: str,
        phone: str,
        message: str,
        meta: dict[str, Any] | None = None,
    ) -> None:
        record_id = await self._store.add(
            SMS_NOTIFICATIONS,
            {
                "to": phone,
                "message": message,
                "customerId": customer_id,
                "status": "pending",
                "createdAt": self._utcnow(),
                **(meta or {}),
            },
        )
        logger.info("SMS queued for customer %s (%s)", customer_id, record_id)

    async def notify_user(
        self,
        user_id: str,
        title: str,
        message: str,
        priority: str = "medium",
        category: str = "service_orders",
        meta: dict[str, Any] | None = None,
    ) -> None:
        record_id = await self._store.add(
            NOTIFICATIONS,
            {
                "type": category,
                "title": title,
                "message": message,
                "userId": user_id,
                "priority": priority,
                "targetAudience": "specific_user",
                "read": False,
                "createdAt": self._utcnow(),
                "additionalMeta": meta or {},
            },
        )
        logger.info("Notification queued for user %s (%s)", user_id, record_id)
