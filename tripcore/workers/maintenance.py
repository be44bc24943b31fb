"""
Background Maintenance Worker
=============================

Runs every ``MAINTENANCE_INTERVAL_SECONDS`` (default 30 s).

Per cycle
---------
1. Evict live driver locations whose booking is terminal (or gone).
2. When ``ACTIVE_EXPIRY_ENABLED`` is set, cancel pending bookings older than
   the expiry window.  Otherwise stale requests are only hidden from the
   pending listing.

Concurrency safety
------------------
* With a Redis URL configured, a **Redis distributed lock** ensures only one
  instance runs a cycle at a time across multiple API processes.
* Cancellations go through ``BookingService`` and its compare-and-swap, so
  a request accepted by a driver mid-cycle is left alone.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from tripcore.infrastructure.locks import DistributedLock
from tripcore.infrastructure.redis_client import get_redis
from tripcore.services.container import Services

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


@dataclass
class CycleReport:
    evicted_locations: int = 0
    expired_bookings: int = 0
    skipped: bool = False


# ── Public API ────────────────────────────────────────────────────────


async def start_maintenance_loop(services: Services) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(services))
    logger.info(
        "Maintenance worker started (interval=%ds)",
        services.settings.maintenance_interval_seconds,
    )


async def stop_maintenance_loop() -> None:
    global _task, _stop_event
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task = None
    _stop_event = None
    logger.info("Maintenance worker stopped")


async def run_maintenance_cycle(services: Services) -> CycleReport:
    """Execute one maintenance cycle."""
    if not services.settings.redis_url:
        return await _run(services)

    lock = DistributedLock(await get_redis(), "maintenance", ttl_seconds=60)
    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping cycle")
        return CycleReport(skipped=True)
    try:
        return await _run(services)
    finally:
        await lock.release()


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(services: Services) -> None:
    """Periodic loop: run a cycle then sleep."""
    assert _stop_event is not None
    stop = _stop_event
    while not stop.is_set():
        try:
            await run_maintenance_cycle(services)
        except Exception:
            logger.exception("Unhandled error in maintenance cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                stop.wait(), timeout=services.settings.maintenance_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def _run(services: Services) -> CycleReport:
    report = CycleReport()
    report.evicted_locations = await services.tracker.evict_finished(
        services.session_factory
    )
    if services.settings.active_expiry_enabled:
        report.expired_bookings = await services.bookings.expire_stale()
    if report.evicted_locations or report.expired_bookings:
        logger.info(
            "Maintenance cycle: %d locations evicted, %d bookings expired",
            report.evicted_locations,
            report.expired_bookings,
        )
    return report
