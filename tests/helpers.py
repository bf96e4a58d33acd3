"""
Shared test factories: mock query results, mock ORM rows and session tokens.
"""

import os
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import jwt

from trial_clients.db.models import Subscription


def make_result(
    scalar: Any = None,
    rows: list[Any] | None = None,
    first: Any = None,
    scalars: list[Any] | None = None,
) -> MagicMock:
    """A mock Result answering the accessors the services use."""
    result = MagicMock()
    result.scalar_one_or_none = MagicMock(return_value=scalar)
    result.scalar_one = MagicMock(return_value=scalar)
    result.first = MagicMock(return_value=first)
    result.all = MagicMock(return_value=rows or [])
    result.scalars = MagicMock(
        return_value=MagicMock(all=MagicMock(return_value=scalars or []))
    )
    return result


def create_mock_subscription(
    user_id: UUID | None = None,
    plan: str = "free",
    beginner_left: int = -1,
    intermediate_left: int = 2,
    veteran_left: int = 0,
    credits: int = 0,
    reset_at: datetime | None = None,
) -> MagicMock:
    """Factory function to create mock Subscription objects."""
    subscription = MagicMock(spec=Subscription)
    subscription.id = uuid4()
    subscription.user_id = user_id or uuid4()
    subscription.plan = plan
    subscription.beginner_left = beginner_left
    subscription.intermediate_left = intermediate_left
    subscription.veteran_left = veteran_left
    subscription.credits = credits
    subscription.reset_at = reset_at or datetime.now(UTC) + timedelta(days=10)
    subscription.created_at = datetime.now(UTC)
    subscription.updated_at = datetime.now(UTC)
    return subscription


def make_token(
    user_id: UUID,
    secret: str | None = None,
    audience: str = "authenticated",
    expires_in: timedelta = timedelta(hours=1),
    **claims: Any,
) -> str:
    """Sign a user session token the way the auth provider does."""
    now = datetime.now(UTC)
    payload = {"sub": str(user_id), "aud": audience, "iat": now, "exp": now + expires_in}
    payload.update(claims)
    return jwt.encode(payload, secret or os.environ["JWT_SECRET"], algorithm="HS256")
