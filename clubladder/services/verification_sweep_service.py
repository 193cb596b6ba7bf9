"""
Verification sweep service: auto-verifies stale match scores and expires
unanswered ladder challenges.

Background worker that polls every 5 minutes by default. Open match scores
left in pending_verification for 24+ hours are finalized with the
``auto_verify`` action; pending challenges past their ``expires_at`` are
declined and both teams freed.
"""

import asyncio
import logging
import os
from typing import Dict, Optional

from clubladder.database import db
from clubladder.services import ladder_service, match_service
from clubladder.services.exceptions import LadderError
from clubladder.services.match_service import MatchVerifyAction

logger = logging.getLogger(__name__)

# How often the worker runs a sweep (seconds)
POLL_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))


class VerificationSweepService:
    """Background service that finalizes stale results."""

    def __init__(self, poll_interval: float = POLL_INTERVAL_SECONDS):
        self.poll_interval = poll_interval
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        """Start the background sweep worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Verification sweep worker started")

    def stop(self) -> None:
        """Stop the background sweep worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Verification sweep worker stopped")

    async def _poll_loop(self) -> None:
        """Main loop: sweep, then sleep. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in verification sweep worker: {e}", exc_info=True)

            # Wait for poll interval or until stop is signalled
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                break
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> Dict[str, int]:
        """Run one sweep. Returns counts of auto-verified matches and expired challenges."""
        verified = await self._auto_verify_matches()
        expired = await self._expire_challenges()
        if verified or expired:
            logger.info(
                f"Verification sweep: {verified} match(es) auto-verified, "
                f"{expired} challenge(s) expired"
            )
        return {"auto_verified": verified, "expired_challenges": expired}

    async def _auto_verify_matches(self) -> int:
        """Auto-verify every due match, one transaction per match."""
        async with db.AsyncSessionLocal() as session:
            due = await match_service.get_matches_due_for_auto_verify(session)

        verified = 0
        for match_id in due:
            async with db.AsyncSessionLocal() as session:
                try:
                    await match_service.verify_match_score(
                        session, match_id, None, MatchVerifyAction.AUTO_VERIFY
                    )
                    await session.commit()
                    verified += 1
                except LadderError as e:
                    # Confirmed or disputed between the scan and the lock
                    await session.rollback()
                    logger.info(f"Skipped auto-verify for match {match_id}: {e}")
                except Exception as e:
                    await session.rollback()
                    logger.error(f"Error auto-verifying match {match_id}: {e}", exc_info=True)
        return verified

    async def _expire_challenges(self) -> int:
        async with db.AsyncSessionLocal() as session:
            try:
                expired = await ladder_service.expire_pending_challenges(session)
                await session.commit()
                return expired
            except Exception as e:
                await session.rollback()
                logger.error(f"Error expiring ladder challenges: {e}", exc_info=True)
                return 0


# Global singleton
_sweep_service = VerificationSweepService()


def get_verification_sweep_service() -> VerificationSweepService:
    """Get the global verification sweep service instance."""
    return _sweep_service
