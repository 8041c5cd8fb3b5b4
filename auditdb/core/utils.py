"""
Common Utilities

Helper functions used throughout the package.
"""

from datetime import UTC, datetime

from sqlalchemy.engine import URL


def utc_now() -> datetime:
    """Get current UTC datetime.

    Returns:
        Current datetime with UTC timezone
    """
    return datetime.now(UTC)


def safe_url(url: URL) -> str:
    """Render a connection URL for logs with the password masked."""
    return url.render_as_string(hide_password=True)
