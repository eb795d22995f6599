"""Queue-driven task graph batch generator."""

__version__ = "0.1.0"
