"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from trial_clients.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    LEVEL = "level"
    PLAN = "plan"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class ServiceMetrics:
    """
    Centralized metrics for the tRIAL-cLIENTS API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Quota consumption (granted/denied per level and plan)
    - Social reward submissions and reviews
    - Referral redemptions
    - XP and badge awards
    - Notification push events
    - Brief generation dispatch
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "trial_clients_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "trial_clients_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "trial_clients_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "trial_clients_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Quota Metrics
        # ====================================================================
        self.quota_consumptions_total = Counter(
            "trial_clients_quota_consumptions_total",
            "Quota consumption attempts",
            [MetricLabels.PLAN, MetricLabels.LEVEL, MetricLabels.OUTCOME],
        )

        self.plan_changes_total = Counter(
            "trial_clients_plan_changes_total",
            "Plan changes (full counter overwrite)",
            [MetricLabels.PLAN],
        )

        # ====================================================================
        # Social Reward Metrics
        # ====================================================================
        self.social_reward_submissions_total = Counter(
            "trial_clients_social_reward_submissions_total",
            "Social reward submission attempts",
            [MetricLabels.OUTCOME],
        )

        self.social_reward_reviews_total = Counter(
            "trial_clients_social_reward_reviews_total",
            "Social reward reviews by admins",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Referral / Gamification Metrics
        # ====================================================================
        self.referrals_total = Counter(
            "trial_clients_referrals_total",
            "Referral redemptions",
            [MetricLabels.OUTCOME],
        )

        self.xp_awarded_total = Counter(
            "trial_clients_xp_awarded_total",
            "XP points awarded",
            ["event_type"],
        )

        self.badges_awarded_total = Counter(
            "trial_clients_badges_awarded_total",
            "Badges awarded",
            ["badge_type"],
        )

        # ====================================================================
        # Notification Metrics
        # ====================================================================
        self.notification_events_total = Counter(
            "trial_clients_notification_events_total",
            "Notification insert events published",
            ["source"],
        )

        self.notification_resyncs_total = Counter(
            "trial_clients_notification_resyncs_total",
            "Full notification re-fetches after a dropped subscription",
        )

        # ====================================================================
        # Generation Metrics
        # ====================================================================
        self.generation_dispatches_total = Counter(
            "trial_clients_generation_dispatches_total",
            "Brief generation webhook dispatch attempts",
            [MetricLabels.OUTCOME],
        )

        self.generation_dispatch_duration_seconds = Histogram(
            "trial_clients_generation_dispatch_duration_seconds",
            "Brief generation webhook call duration in seconds",
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "trial_clients_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_quota_consumption(self, plan: str, level: str, granted: bool) -> None:
        """Record a quota consumption attempt."""
        self.quota_consumptions_total.labels(
            plan=plan, level=level, outcome="granted" if granted else "denied"
        ).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ServiceMetrics()
