"""
Application services.

- paste_service: create/read/delete pastes and comments
- purge_service: throttled sweeps of expired pastes
"""

from cryptbin.services.paste_service import PasteService
from cryptbin.services.purge_service import PurgeResult, run_purge

__all__ = [
    "PasteService",
    "PurgeResult",
    "run_purge",
]
