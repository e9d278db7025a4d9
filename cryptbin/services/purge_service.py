# cryptbin/services/purge_service.py
"""
Purge service for expired pastes.

Handles:
- Global throttling through the purge limiter (at most one sweep per interval)
- Bounded sweeps (batch size) so a request never pays for a full backlog
- Reporting what was removed
"""

import logging
import time
from dataclasses import dataclass, field

from cryptbin.exceptions import CryptbinError
from cryptbin.persistence.purge_limiter import PurgeLimiter
from cryptbin.storage.base import DataStore

logger = logging.getLogger(__name__)


@dataclass
class PurgeResult:
    """Result of a purge run."""

    success: bool
    ran: bool = False
    removed: list[str] = field(default_factory=list)
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)


def run_purge(
    store: DataStore,
    limiter: PurgeLimiter,
    batch_size: int,
    force: bool = False,
) -> PurgeResult:
    """
    Run one purge sweep if the limiter allows it.

    Args:
        store: Data store to sweep
        limiter: Global purge throttle
        batch_size: Maximum number of pastes to remove
        force: Skip the limiter check (operator runs)

    Returns:
        PurgeResult; a throttled call reports ran=False
    """
    if not force and not limiter.can_purge():
        logger.debug("Purge skipped, next sweep not due yet")
        return PurgeResult(success=True)

    start_time = time.time()
    result = PurgeResult(success=True, ran=True)
    try:
        result.removed = store.purge_expired(batch_size)
    except CryptbinError as e:
        # never fail the request that triggered the sweep
        result.success = False
        result.errors.append(e.message)
        logger.error(
            f"Purge sweep failed on {store.name}: {e.message}",
            extra={"event": "purge_failed", "backend": store.name, "batch_size": batch_size},
        )

    result.duration_ms = int((time.time() - start_time) * 1000)
    logger.info(
        f"Purge sweep on {store.name}: removed {len(result.removed)} pastes ({result.duration_ms}ms)",
        extra={
            "event": "purge_sweep",
            "backend": store.name,
            "batch_size": batch_size,
            "removed": len(result.removed),
            "duration_ms": result.duration_ms,
        },
    )
    return result
