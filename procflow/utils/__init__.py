from .clock import ensure_utc, parse_datetime, to_datetime, utcnow
from .retry import compute_backoff, compute_retry_at

__all__ = ["utcnow", "ensure_utc", "parse_datetime", "to_datetime", "compute_backoff", "compute_retry_at"]
