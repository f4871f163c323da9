"""
asgi.py -- Application assembly for Agora.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so that additional routers (community and
post handlers) can be mounted here without api/ importing them.
"""

from api.main import app

__all__ = ["app"]
