"""Recording notification gateway and a controllable clock."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from gymqueue_shared.errors import DeliveryFailed


class RecordingGateway:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.turns: list[tuple[str, str, datetime]] = []
        self.expired: list[tuple[str, str]] = []
        self.closed = False

    async def notify(self, member_id: str, equipment_id: str, expires_at: datetime) -> None:
        if self.fail:
            raise DeliveryFailed("push service unreachable")
        self.turns.append((member_id, equipment_id, expires_at))

    async def notify_expired(self, member_id: str, equipment_id: str) -> None:
        if self.fail:
            raise DeliveryFailed("push service unreachable")
        self.expired.append((member_id, equipment_id))

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 18, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now
