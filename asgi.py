"""
asgi.py -- ASGI entry point for the Rentally identity service.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so deployment configs point at a stable
module path while api/ stays free to reorganize.
"""

from api.main import app

__all__ = ["app"]
