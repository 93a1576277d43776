"""Dependency injection utilities for FastAPI"""

import hmac
import logging

import asyncpg
from fastapi import Cookie, Depends, Header, HTTPException

from gymqueue_api.core.config import get_settings
from gymqueue_api.services import (
    AuthService,
    LoggingNotificationGateway,
    Member,
    NotificationDispatcher,
    NotificationGateway,
    PgNotifyNotificationGateway,
    QueueCoordinator,
    QueueQueryService,
    WebhookNotificationGateway,
)
from gymqueue_shared.cache import AsyncTTLCache
from gymqueue_shared.database import get_database_manager
from gymqueue_shared.repositories import EquipmentQueueRepository

logger = logging.getLogger(__name__)


# ============================================
# Infrastructure Dependencies
# ============================================


def get_db_pool() -> asyncpg.Pool:
    db_manager = get_database_manager()
    if db_manager is None or not db_manager.is_connected:
        raise HTTPException(status_code=503, detail="Database not ready")
    return db_manager.pool


def get_auth_service() -> AuthService:
    """Get AuthService instance (dependency injection)"""
    settings = get_settings()
    return AuthService(secret_key=settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


_queue_cache: AsyncTTLCache | None = None


def get_queue_cache() -> AsyncTTLCache:
    """Process-wide cache for polled queue listings."""
    global _queue_cache
    if _queue_cache is None:
        _queue_cache = AsyncTTLCache(maxsize=512, ttl=get_settings().queue_cache_ttl)
    return _queue_cache


def build_notification_gateway(pool: asyncpg.Pool) -> NotificationGateway:
    """Pick the delivery transport configured by ``notification_backend``."""
    settings = get_settings()
    if settings.notification_backend == "webhook":
        return WebhookNotificationGateway(
            settings.push_webhook_url, token=settings.push_webhook_token
        )
    if settings.notification_backend == "pg_notify":
        return PgNotifyNotificationGateway(pool)
    return LoggingNotificationGateway()


_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher(pool: asyncpg.Pool = Depends(get_db_pool)) -> NotificationDispatcher:
    """Get the shared dispatcher (one set of in-flight deliveries per process)."""
    global _dispatcher
    if _dispatcher is None:
        gateway = build_notification_gateway(pool)
        logger.info(f"Notification gateway: {type(gateway).__name__}")
        _dispatcher = NotificationDispatcher(gateway)
    return _dispatcher


async def close_notification_dispatcher() -> None:
    """Flush pending deliveries and close the gateway. Call on app shutdown."""
    global _dispatcher
    if _dispatcher is not None:
        await _dispatcher.close()
        _dispatcher = None


# ============================================
# Service Dependencies
# ============================================


def build_query_service(pool: asyncpg.Pool) -> QueueQueryService:
    settings = get_settings()
    return QueueQueryService(
        EquipmentQueueRepository(pool),
        estimated_minutes_per_member=settings.estimated_minutes_per_member,
        cache=get_queue_cache(),
    )


def build_queue_coordinator(pool: asyncpg.Pool) -> QueueCoordinator:
    settings = get_settings()
    return QueueCoordinator(
        EquipmentQueueRepository(pool),
        get_notification_dispatcher(pool),
        build_query_service(pool),
        claim_window=settings.claim_window,
        max_queue_length=settings.max_queue_length,
    )


def get_query_service(pool: asyncpg.Pool = Depends(get_db_pool)) -> QueueQueryService:
    """Get QueueQueryService instance (dependency injection)"""
    return build_query_service(pool)


def get_queue_coordinator(pool: asyncpg.Pool = Depends(get_db_pool)) -> QueueCoordinator:
    """Get QueueCoordinator instance (dependency injection)"""
    return build_queue_coordinator(pool)


# ============================================
# Authentication Dependencies
# ============================================


def _extract_token(authorization: str | None, auth_token: str | None) -> str | None:
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials:
            return credentials.strip()
    return auth_token


async def get_current_member(
    authorization: str | None = Header(None),
    auth_token: str | None = Cookie(None),
) -> Member:
    """Resolve the calling member from a bearer token or the auth cookie"""
    token = _extract_token(authorization, auth_token)
    if not token:
        logger.warning("No auth token provided")
        raise HTTPException(status_code=401, detail="Not logged in")

    member = get_auth_service().member_from_token(token)
    if member is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return member


async def require_internal_key(
    x_internal_key: str | None = Header(None, alias="X-Internal-Key"),
) -> None:
    """Guard for signals sent by other gym systems (access control, ops)"""
    expected = get_settings().internal_api_key
    if not expected:
        raise HTTPException(status_code=403, detail="Internal API is disabled")
    if not x_internal_key or not hmac.compare_digest(x_internal_key, expected):
        logger.warning("Rejected internal call with bad key")
        raise HTTPException(status_code=403, detail="Invalid internal key")
