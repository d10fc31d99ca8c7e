"""
Error Types
Failures the alerting pipeline distinguishes between.
"""


class StoreUnavailableError(RuntimeError):
    """An external store (window, configuration, history) failed or timed out.

    Retryable: the evaluation for that agent is abandoned and the next
    metric report tries again.
    """


class ConfigurationError(ValueError):
    """An alert configuration is malformed and cannot be evaluated."""
