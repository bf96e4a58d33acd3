"""
Social post URL validation.

The same check runs before submission and again inside the submit
operation; the database never sees a URL that fails it.
"""

from typing import Final
from urllib.parse import urlsplit

from trial_clients.models.api import Platform
from trial_clients.models.domain import SocialUrlValidation

HOST_PLATFORMS: Final[dict[str, Platform]] = {
    "x.com": Platform.X,
    "www.x.com": Platform.X,
    "twitter.com": Platform.X,
    "www.twitter.com": Platform.X,
    "linkedin.com": Platform.LINKEDIN,
    "www.linkedin.com": Platform.LINKEDIN,
    "reddit.com": Platform.REDDIT,
    "www.reddit.com": Platform.REDDIT,
    "youtube.com": Platform.YOUTUBE,
    "www.youtube.com": Platform.YOUTUBE,
    "youtu.be": Platform.YOUTUBE,
}

ERROR_REQUIRED: Final = "URL is required"
ERROR_INVALID: Final = "Please enter a valid URL"
ERROR_HTTPS: Final = "URL must use HTTPS"
ERROR_DOMAIN: Final = "URL must be from X/Twitter, LinkedIn, Reddit, or YouTube"
ERROR_HOMEPAGE: Final = (
    "Please provide a direct link to your post, not just the platform homepage"
)


def validate_social_url(url: str) -> SocialUrlValidation:
    """
    Validate a social post URL.

    Rules, in order: non-empty after trimming, parseable absolute URL,
    https scheme, hostname exactly in the allow-list (no subdomain
    matching), and a path other than "/".
    """
    trimmed = url.strip()
    if not trimmed:
        return SocialUrlValidation(valid=False, error=ERROR_REQUIRED)

    try:
        parts = urlsplit(trimmed)
        hostname = parts.hostname
        # .port raises on a malformed authority section
        _ = parts.port
    except ValueError:
        return SocialUrlValidation(valid=False, error=ERROR_INVALID)

    if not parts.scheme:
        return SocialUrlValidation(valid=False, error=ERROR_INVALID)

    if parts.scheme.lower() != "https":
        return SocialUrlValidation(valid=False, error=ERROR_HTTPS)

    if not hostname:
        return SocialUrlValidation(valid=False, error=ERROR_INVALID)

    if hostname.lower() not in HOST_PLATFORMS:
        return SocialUrlValidation(valid=False, error=ERROR_DOMAIN)

    if not parts.path or parts.path == "/":
        return SocialUrlValidation(valid=False, error=ERROR_HOMEPAGE)

    return SocialUrlValidation(valid=True)


def platform_for_host(url: str) -> Platform | None:
    """Platform a valid URL belongs to, or None if the URL is not valid."""
    if not validate_social_url(url).valid:
        return None
    hostname = urlsplit(url.strip()).hostname or ""
    return HOST_PLATFORMS.get(hostname.lower())
