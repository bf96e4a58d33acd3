"""
Status API routes - Health checks for tRIAL-cLIENTS dependencies.

Public endpoint (no auth) for status page aggregation.
Rate limited via a short result cache.
"""

import asyncio
import time
from datetime import UTC, datetime
from enum import Enum

import httpx
from fastapi import APIRouter
from pydantic import BaseModel, Field
from redis.exceptions import RedisError
from sqlalchemy import text

from trial_clients.config import settings
from trial_clients.db.session import get_write_session
from trial_clients.observability.logging import get_logger
from trial_clients.redis_client import get_optional_redis

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

# Timeout for health checks
CHECK_TIMEOUT = 5.0  # seconds
DEGRADED_LATENCY_THRESHOLD = 1000  # ms

# Rate limiting: cache last result for 10 seconds
_status_cache: dict[str, tuple[datetime, "ServiceStatusResponse"]] = {}
_CACHE_TTL_SECONDS = 10


class StatusLevel(str, Enum):
    """Status levels for health checks."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class ProviderStatus(BaseModel):
    """Status of a single dependency."""

    status: StatusLevel
    latency_ms: int | None = None
    last_check: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


class ServiceStatusResponse(BaseModel):
    """Response for /v1/status endpoint."""

    service: str = "trial-clients"
    status: StatusLevel
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    providers: dict[str, ProviderStatus]


def _timed_status(latency_ms: int, timestamp: str) -> ProviderStatus:
    status = (
        StatusLevel.DEGRADED if latency_ms > DEGRADED_LATENCY_THRESHOLD else StatusLevel.OPERATIONAL
    )
    return ProviderStatus(
        status=status,
        latency_ms=latency_ms,
        last_check=timestamp,
        message="High latency" if status == StatusLevel.DEGRADED else None,
    )


async def check_postgresql() -> ProviderStatus:
    """Check PostgreSQL connectivity."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        async with get_write_session() as db:
            await db.execute(text("SELECT 1"))
        return _timed_status(int((time.perf_counter() - start) * 1000), timestamp)
    except Exception as e:
        logger.warning("postgresql_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Connection failed",
        )


async def check_redis() -> ProviderStatus:
    """Check the Redis pub/sub backend. Degraded, not down: notifications still list."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    redis = get_optional_redis()
    if redis is None:
        return ProviderStatus(
            status=StatusLevel.DEGRADED,
            latency_ms=None,
            last_check=timestamp,
            message="Not initialized",
        )

    try:
        await asyncio.wait_for(redis.ping(), timeout=CHECK_TIMEOUT)
        return _timed_status(int((time.perf_counter() - start) * 1000), timestamp)
    except (RedisError, TimeoutError) as e:
        logger.warning("redis_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.DEGRADED,
            latency_ms=None,
            last_check=timestamp,
            message="Push events unavailable",
        )


async def check_brief_webhook() -> ProviderStatus:
    """Check the brief generator webhook host is reachable."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    if not settings.brief_webhook_url:
        return ProviderStatus(
            status=StatusLevel.OPERATIONAL,
            latency_ms=0,
            last_check=timestamp,
            message="Not configured",
        )

    try:
        async with httpx.AsyncClient(timeout=CHECK_TIMEOUT) as client:
            # The webhook only accepts POST; any non-5xx answer means the host is up
            response = await client.get(settings.brief_webhook_url)
            latency_ms = int((time.perf_counter() - start) * 1000)

            if response.status_code < 500:
                return _timed_status(latency_ms, timestamp)

            return ProviderStatus(
                status=StatusLevel.DEGRADED,
                latency_ms=latency_ms,
                last_check=timestamp,
                message=f"Unexpected status: {response.status_code}",
            )
    except httpx.TimeoutException:
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=int(CHECK_TIMEOUT * 1000),
            last_check=timestamp,
            message="Timeout",
        )
    except httpx.HTTPError as e:
        logger.warning("brief_webhook_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Connection failed",
        )


def calculate_overall_status(providers: dict[str, ProviderStatus]) -> StatusLevel:
    """Calculate overall service status from provider statuses."""
    statuses = [p.status for p in providers.values()]

    if StatusLevel.OUTAGE in statuses:
        return StatusLevel.OUTAGE
    if StatusLevel.DEGRADED in statuses:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


@router.get("/v1/status", response_model=ServiceStatusResponse)
async def get_status() -> ServiceStatusResponse:
    """
    Get service status.

    Public endpoint (no auth) for status page aggregation.
    Rate limited via 10-second cache to prevent abuse.
    """
    cache_key = "status"
    now = datetime.now(UTC)

    if cache_key in _status_cache:
        cached_time, cached_response = _status_cache[cache_key]
        age_seconds = (now - cached_time).total_seconds()
        if age_seconds < _CACHE_TTL_SECONDS:
            logger.debug("status_cache_hit", age_seconds=age_seconds)
            return cached_response

    postgresql_status, redis_status, webhook_status = await asyncio.gather(
        check_postgresql(), check_redis(), check_brief_webhook()
    )

    providers = {
        "postgresql": postgresql_status,
        "redis": redis_status,
        "brief_webhook": webhook_status,
    }

    response = ServiceStatusResponse(
        status=calculate_overall_status(providers),
        timestamp=now.isoformat(),
        version=settings.api_version,
        providers=providers,
    )

    _status_cache[cache_key] = (now, response)
    return response
