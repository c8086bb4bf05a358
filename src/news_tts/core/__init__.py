"""
Core Infrastructure for news-tts.

This package provides foundational components:
    - config.py: Configuration loading and validation
    - errors.py: Error codes and exception taxonomy
    - logging/: Structured logging with numeric levels and correlation ids
    - metrics.py: Prometheus metrics collection
    - notifications.py: Operator notifications (log, webhook)
"""
