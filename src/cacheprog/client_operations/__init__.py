"""Operations on the remote cache outside a proxy session."""

from .bucket import check_bucket_access
from .stats import PrefixStats, get_prefix_stats

__all__ = ["PrefixStats", "check_bucket_access", "get_prefix_stats"]
