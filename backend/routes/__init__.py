# Routes package
# routes/__init__.py
"""API route modules"""

from .respond import router as respond_router
from .health import router as health_router

# Export all routers
__all__ = [
    'respond_router',
    'health_router'
]
