"""Middleware package."""

from taskdesk.middleware.logging import LoggingMiddleware, configure_logging
from taskdesk.middleware.request_id import RequestIDMiddleware

__all__ = ["LoggingMiddleware", "RequestIDMiddleware", "configure_logging"]
