"""
Built-in request handlers
"""

from .base import Handler
from .hello import DiagnosticHandler
from .metrics import MetricsHandler
from .static import StaticFileHandler

__all__ = ["Handler", "DiagnosticHandler", "MetricsHandler", "StaticFileHandler"]
