"""Periodic sweep that applies overdue deadlines in bulk."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from resolve_service.logging import get_logger

if TYPE_CHECKING:
    from resolve_service.services.dispute_manager import DisputeManager
    from resolve_service.services.transaction_manager import TransactionManager

logger = get_logger(__name__)


class Sweeper:
    """Expires stale proposals and advances overdue disputes.

    Deadlines are already honoured lazily on every read and write; the
    sweep only keeps stored statuses and list filters fresh for records
    nobody touches. Both sweeps are idempotent.
    """

    def __init__(
        self,
        transactions: TransactionManager,
        disputes: DisputeManager,
        interval_seconds: int,
    ) -> None:
        self._transactions = transactions
        self._disputes = disputes
        self._interval_seconds = interval_seconds
        self._running = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_once(self) -> dict[str, int]:
        """Run both sweeps once and report how many records moved."""
        expired = await self._transactions.expire_stale_transactions()
        advanced = await self._disputes.advance_overdue_disputes()
        if expired or advanced:
            logger.info(
                "Sweep completed",
                extra={"expired_transactions": expired, "advanced_disputes": advanced},
            )
        return {"expired_transactions": expired, "advanced_disputes": advanced}

    async def run(self) -> None:
        """Sweep every interval until stopped or cancelled."""
        self._running = True
        logger.info("Sweeper starting", extra={"interval_seconds": self._interval_seconds})
        while self._running:
            try:
                await self.run_once()
                await asyncio.sleep(self._interval_seconds)
            except asyncio.CancelledError:
                logger.info("Sweeper cancelled, shutting down")
                self._running = False
                raise
            except Exception:
                logger.exception("Unhandled error in sweep cycle")
                await asyncio.sleep(self._interval_seconds)
        logger.info("Sweeper stopped")

    def stop(self) -> None:
        """Signal the loop to stop after the current cycle."""
        self._running = False

    @property
    def running(self) -> bool:
        return self._running
