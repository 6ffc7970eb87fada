"""Demo handlers served by the responder service

Each handler simulates some work, then answers with a small JSON document.
"""
import asyncio
import itertools
import json
import random
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """Millisecond precision local timestamp"""
    moment = moment or datetime.now()
    return moment.strftime(TIMESTAMP_FORMAT)[:-3]


class DemoHandlers:
    """Order, user, payment, inventory and notification handlers

    The message counter belongs to the instance, so separate responders
    number their requests independently.

    Args:
        delay_scale: Multiplier applied to every simulated processing time
        rng: Random generator used for inventory levels
    """

    def __init__(self, delay_scale: float = 1.0, rng: Optional[random.Random] = None) -> None:
        self._delay_scale = delay_scale
        self._rng = rng or random.Random()
        self._counter = itertools.count(1)
        self.processed = 0

    def as_mapping(self) -> Dict[str, Callable[[bytes], Any]]:
        return {
            "order.process": self.process_order,
            "user.validate": self.validate_user,
            "payment.authorize": self.authorize_payment,
            "inventory.check": self.check_inventory,
            "notification.send": self.send_notification,
        }

    async def _simulate(self, millis: int) -> int:
        self.processed += 1
        msg_num = next(self._counter)
        if self._delay_scale > 0:
            await asyncio.sleep(millis * self._delay_scale / 1000)
        return msg_num

    @staticmethod
    def _render(document: Dict[str, Any]) -> bytes:
        return json.dumps(document, indent=2).encode("utf-8")

    async def process_order(self, payload: bytes) -> bytes:
        msg_num = await self._simulate(100)
        return self._render({
            "status": "success",
            "message": "Order processed successfully",
            "orderId": f"ORD-{msg_num}",
            "orderData": payload.decode("utf-8", errors="replace"),
            "timestamp": format_timestamp(),
            "processingTime": "100ms",
        })

    async def validate_user(self, payload: bytes) -> bytes:
        await self._simulate(50)
        user_data = payload.decode("utf-8", errors="replace")
        is_valid = len(user_data.strip()) >= 3
        return self._render({
            "status": "success" if is_valid else "failed",
            "message": f"User validation {'passed' if is_valid else 'failed'}",
            "userData": user_data,
            "valid": is_valid,
            "timestamp": format_timestamp(),
        })

    async def authorize_payment(self, payload: bytes) -> bytes:
        msg_num = await self._simulate(200)
        return self._render({
            "status": "success",
            "message": "Payment authorized",
            "paymentId": f"PAY-{msg_num}",
            "reference": f"PAY-{msg_num}-{int(time.time() * 1000)}",
            "paymentData": payload.decode("utf-8", errors="replace"),
            "timestamp": format_timestamp(),
        })

    async def check_inventory(self, payload: bytes) -> bytes:
        await self._simulate(75)
        available = self._rng.randrange(100)
        return self._render({
            "status": "success",
            "message": "Inventory check completed",
            "itemData": payload.decode("utf-8", errors="replace"),
            "availableStock": available,
            "inStock": available > 0,
            "timestamp": format_timestamp(),
        })

    async def send_notification(self, payload: bytes) -> bytes:
        msg_num = await self._simulate(150)
        return self._render({
            "status": "success",
            "message": "Notification sent",
            "notificationId": f"NOTIF-{msg_num}",
            "notificationData": payload.decode("utf-8", errors="replace"),
            "timestamp": format_timestamp(),
        })
