"""
asgi.py -- Application assembly for Orbit.

Process managers point here rather than at api/main.py so deployment config
does not depend on the package layout.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
