"""Common utilities shared across the service.

Includes:
- ``config``: Pydantic-based service configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics collector.

Import pattern:
- from libs.common.config import ModelServingConfig
- from libs.common.logging import configure_logging
"""
