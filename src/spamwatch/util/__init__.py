"""Small helpers shared across spamwatch modules."""

from .addresses import dedupe_addresses, normalize_address
from .retry import BackoffPolicy, retry_async

__all__ = ["normalize_address", "dedupe_addresses", "BackoffPolicy", "retry_async"]
