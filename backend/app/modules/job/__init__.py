"""Background job support: retry and backoff primitives."""

from app.modules.job.retry import RetryConfig, RETRY_CONFIGS, get_retry_config, retry_async

__all__ = [
    "RetryConfig",
    "RETRY_CONFIGS",
    "get_retry_config",
    "retry_async",
]
