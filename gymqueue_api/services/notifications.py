"""Turn notifications for queued members.

Delivery is best effort: queue state is authoritative and members can always
poll their position. Gateways raise ``DeliveryFailed`` on transport errors;
``NotificationDispatcher`` runs deliveries off the request path, logs failures
and never lets them reach the state transition that triggered them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from datetime import datetime
from typing import Any, Protocol

import asyncpg
import httpx

from gymqueue_shared.errors import DeliveryFailed

logger = logging.getLogger(__name__)

QUEUE_YOUR_TURN = "QUEUE_YOUR_TURN"
QUEUE_EXPIRED = "QUEUE_EXPIRED"

PG_NOTIFY_CHANNEL = "queue_notifications"


class NotificationGateway(Protocol):
    async def notify(self, member_id: str, equipment_id: str, expires_at: datetime) -> None: ...

    async def notify_expired(self, member_id: str, equipment_id: str) -> None: ...

    async def close(self) -> None: ...


def build_payload(
    kind: str, member_id: str, equipment_id: str, expires_at: datetime | None = None
) -> dict[str, Any]:
    """Push payload shared by every transport."""
    if kind == QUEUE_YOUR_TURN:
        title = "It's your turn!"
        body = "Your equipment is now available. Claim it before your window runs out."
    else:
        title = "Your turn has expired"
        body = "You did not claim the equipment in time. Join the queue again if you still need it."
    data: dict[str, Any] = {"type": kind, "equipment_id": equipment_id}
    if expires_at is not None:
        data["expires_at"] = expires_at.isoformat()
    return {"member_id": member_id, "title": title, "body": body, "data": data}


class LoggingNotificationGateway:
    """Writes notifications to the log. Used when no transport is configured."""

    async def notify(self, member_id: str, equipment_id: str, expires_at: datetime) -> None:
        logger.info(
            f"Notify member {member_id}: equipment {equipment_id} is free until "
            f"{expires_at.isoformat()}"
        )

    async def notify_expired(self, member_id: str, equipment_id: str) -> None:
        logger.info(f"Notify member {member_id}: turn on equipment {equipment_id} expired")

    async def close(self) -> None:
        return None


class WebhookNotificationGateway:
    """POSTs push payloads to the push-notification service.

    Holds one shared httpx client for connection reuse.
    """

    def __init__(
        self,
        url: str,
        *,
        token: str = "",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not url:
            raise ValueError("Push webhook URL is required")
        self.url = url
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._http = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = await self._http.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryFailed(f"Push delivery to {payload['member_id']} failed: {e}") from e

    async def notify(self, member_id: str, equipment_id: str, expires_at: datetime) -> None:
        await self._post(build_payload(QUEUE_YOUR_TURN, member_id, equipment_id, expires_at))

    async def notify_expired(self, member_id: str, equipment_id: str) -> None:
        await self._post(build_payload(QUEUE_EXPIRED, member_id, equipment_id))

    async def close(self) -> None:
        await self._http.aclose()


class PgNotifyNotificationGateway:
    """In-app delivery through PostgreSQL NOTIFY.

    Realtime listeners (websocket fan-out, mobile push bridge) subscribe to
    the ``queue_notifications`` channel.
    """

    def __init__(self, pool: asyncpg.Pool, channel: str = PG_NOTIFY_CHANNEL) -> None:
        self.pool = pool
        self.channel = channel

    async def _send(self, payload: dict[str, Any]) -> None:
        try:
            async with self.pool.acquire() as conn:
                await conn.execute("SELECT pg_notify($1, $2)", self.channel, json.dumps(payload))
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise DeliveryFailed(f"pg_notify to {payload['member_id']} failed: {e}") from e

    async def notify(self, member_id: str, equipment_id: str, expires_at: datetime) -> None:
        await self._send(build_payload(QUEUE_YOUR_TURN, member_id, equipment_id, expires_at))

    async def notify_expired(self, member_id: str, equipment_id: str) -> None:
        await self._send(build_payload(QUEUE_EXPIRED, member_id, equipment_id))

    async def close(self) -> None:
        return None


class NotificationDispatcher:
    """Fire-and-forget delivery on top of a gateway."""

    def __init__(self, gateway: NotificationGateway) -> None:
        self.gateway = gateway
        self._pending: set[asyncio.Task] = set()

    def your_turn(self, member_id: str, equipment_id: str, expires_at: datetime) -> None:
        self._spawn(
            self.gateway.notify(member_id, equipment_id, expires_at),
            f"turn notice to {member_id} for {equipment_id}",
        )

    def expired(self, member_id: str, equipment_id: str) -> None:
        self._spawn(
            self.gateway.notify_expired(member_id, equipment_id),
            f"expiry notice to {member_id} for {equipment_id}",
        )

    def _spawn(self, delivery: Coroutine[Any, Any, None], description: str) -> None:
        task = asyncio.create_task(self._deliver(delivery, description))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, delivery: Coroutine[Any, Any, None], description: str) -> None:
        try:
            await delivery
        except DeliveryFailed as e:
            logger.warning(f"Delivery failed ({description}): {e.message}")
        except Exception as e:
            logger.exception(f"Unexpected error delivering {description}: {e}")

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every in-flight delivery."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self.gateway.close()
