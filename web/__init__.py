"""
Social account connector - HTTP surface.

This package exposes the OAuth connect flow and account status endpoints
for TikTok and Instagram over FastAPI.
"""
from .server import ConnectorServer
from .app import create_app

__version__ = "1.0.0"

__all__ = [
    'ConnectorServer',
    'create_app',
]
