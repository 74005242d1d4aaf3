"""Port interface for outbound notifications (SMS and in-app)."""

from abc import ABC, abstractmethod
from typing import Any


class NotifierPort(ABC):
    @abstractmethod
    async def notify_customer(
        self,
        customer_id: str,
        phone: str,
        message: str,
        meta: dict[str, Any] | None = None,
    ) -> None:
        """Queue an SMS for a customer. Delivery is the channel's concern."""
        ...

    @abstractmethod
    async def notify_user(
        self,
        user_id: str,
        title: str,
        message: str,
        priority: str = "medium",
        category: str = "service_orders",
        meta: dict[str, Any] | None = None,
    ) -> None:
        """Queue an in-app / push notification for a staff member."""
        ...

    async def aclose(self) -> None:
        return None
