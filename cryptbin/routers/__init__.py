"""
API routers.
"""

from cryptbin.routers.pastes import router as pastes_router

__all__ = [
    "pastes_router",
]
