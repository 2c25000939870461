"""
asgi.py -- ASGI entry point for the mediashare identity service.

Run with:  uvicorn asgi:app --reload

Keeps the server command independent of where the app object is built.
"""

from api.main import app

__all__ = ["app"]
