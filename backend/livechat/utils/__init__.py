"""
Utility modules for the hub.
Provides retry logic, telemetry, and middleware.
"""
from .retry import RetryConfig, RetryStrategy, async_retry, calculate_retry_delay
from .telemetry import metrics_collector, setup_telemetry
from .middleware import RequestIDMiddleware, TimingMiddleware, RateLimitMiddleware


__all__ = [
    # Retry
    'RetryConfig',
    'RetryStrategy',
    'async_retry',
    'calculate_retry_delay',

    # Telemetry
    'setup_telemetry',
    'metrics_collector',

    # Middleware
    'RequestIDMiddleware',
    'TimingMiddleware',
    'RateLimitMiddleware',
]
