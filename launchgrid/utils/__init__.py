"""Small helpers shared across LaunchGrid modules."""

from .clock import new_id, utcnow
from .retry import compute_backoff, schedule_retry

__all__ = ["compute_backoff", "new_id", "schedule_retry", "utcnow"]
