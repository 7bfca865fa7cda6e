"""
HTTP API.

aiohttp routes for the deposit lifecycle and manual sweeps.
"""

from app.api.app import create_app


__all__ = ["create_app"]
