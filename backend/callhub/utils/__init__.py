"""
Utility modules for the application.
Provides retry logic, telemetry, and middleware.

Version: 1.0.0
"""
from .retry import (
    RetryConfig,
    async_retry,
    calculate_retry_delay
)
from .telemetry import (
    setup_telemetry,
    metrics_collector,
    MetricsCollector
)
from .middleware import (
    RequestIDLogFilter,
    RequestIDMiddleware,
    TimingMiddleware,
    install_request_id_logging
)


__all__ = [
    # Retry
    'RetryConfig',
    'async_retry',
    'calculate_retry_delay',

    # Telemetry
    'setup_telemetry',
    'metrics_collector',
    'MetricsCollector',

    # Middleware
    'RequestIDLogFilter',
    'RequestIDMiddleware',
    'TimingMiddleware',
    'install_request_id_logging',
]
