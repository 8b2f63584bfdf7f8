"""
asgi.py -- Application assembly for authcore.

The ASGI entry point servers import. api/main.py builds the FastAPI app;
this module only re-exports it so process managers have one stable target.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
