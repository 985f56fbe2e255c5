"""
Web layer - HTTP and WebSocket control API.
"""

from .server import create_app, serve

__all__ = ["create_app", "serve"]
