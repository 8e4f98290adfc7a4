"""Common utilities shared across the service.

Includes:
- ``config``: Pydantic-based configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``auth``: API key authentication dependency.

Import pattern:
- from libs.common.config import SearchConfig
- from libs.common.logging import configure_logging
"""
