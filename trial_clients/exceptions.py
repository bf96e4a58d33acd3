"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from datetime import datetime
from uuid import UUID


class TrialClientsError(Exception):
    """Base exception for all service errors."""

    pass


# ============================================================================
# Authentication / Authorization
# ============================================================================


class AuthenticationError(TrialClientsError):
    """Raised when authentication fails (missing or invalid session token)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


# ============================================================================
# Quota / Credits
# ============================================================================


class QuotaExhaustedError(TrialClientsError):
    """Raised when a counted level has no generations left this period."""

    def __init__(self, user_id: UUID, level: str) -> None:
        self.user_id = user_id
        self.level = level
        super().__init__(f"No {level} generations left for user {user_id}")


class LevelLockedError(TrialClientsError):
    """Raised when a level is not available on the user's plan."""

    def __init__(self, plan: str, level: str) -> None:
        self.plan = plan
        self.level = level
        super().__init__(f"Level {level} is locked on the {plan} plan")


class InsufficientCreditsError(TrialClientsError):
    """Raised when purchased credits do not cover a deduction."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")


# ============================================================================
# Social Rewards
# ============================================================================


class InvalidSocialUrlError(TrialClientsError):
    """Raised when a submitted post URL fails validation."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(reason)


class DuplicatePostUrlError(TrialClientsError):
    """Raised when a post URL has already been submitted by anyone."""

    def __init__(self, post_url: str) -> None:
        self.post_url = post_url
        super().__init__("This post URL has already been submitted")


class PendingRequestExistsError(TrialClientsError):
    """Raised when the user already has a request awaiting review."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__("You already have a request pending review")


class CooldownActiveError(TrialClientsError):
    """Raised when a submission falls inside the reward cooldown window."""

    def __init__(self, cooldown_end: datetime, ms_remaining: int) -> None:
        self.cooldown_end = cooldown_end
        self.ms_remaining = ms_remaining
        super().__init__(f"Next submission available at {cooldown_end.isoformat()}")


class InvalidStatusTransitionError(TrialClientsError):
    """Raised when a review targets a request that is no longer pending."""

    def __init__(self, request_id: UUID, current_status: str) -> None:
        self.request_id = request_id
        self.current_status = current_status
        super().__init__(f"Request {request_id} is already {current_status}")


# ============================================================================
# Referrals
# ============================================================================


class InvalidReferralCodeError(TrialClientsError):
    """Raised when a referral code does not exist."""

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Invalid referral code: {code}")


class SelfReferralError(TrialClientsError):
    """Raised when a user tries to redeem their own referral code."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__("You cannot use your own referral code")


class ReferralAlreadyUsedError(TrialClientsError):
    """Raised when the referred user has already been referred once."""

    def __init__(self, referred_id: UUID) -> None:
        self.referred_id = referred_id
        super().__init__(f"User {referred_id} has already redeemed a referral")


# ============================================================================
# Gamification
# ============================================================================


class InvalidEventTypeError(TrialClientsError):
    """Raised when an XP event type is not in the server-owned table."""

    def __init__(self, event_type: str) -> None:
        self.event_type = event_type
        super().__init__(f"Invalid event type: {event_type}")


# ============================================================================
# Generic
# ============================================================================


class ResourceNotFoundError(TrialClientsError):
    """Raised when a referenced resource doesn't exist."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")


class WriteVerificationError(TrialClientsError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")
