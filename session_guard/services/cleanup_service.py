"""Cleanup service for refresh token garbage collection."""
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from session_guard.services.token_store import RefreshTokenStore
from session_guard.utils.clock import Clock, system_clock

logger = logging.getLogger(__name__)


class CleanupService:
    """Periodic deletion of refresh token records that can no longer be used.

    Revoked records are kept until they expire: a replayed token must still
    find its record to be recognised as reuse.
    """

    def __init__(self, db: AsyncSession, *, clock: Clock | None = None):
        self.db = db
        self.store = RefreshTokenStore(db)
        self.clock = clock or system_clock

    async def count_expired_refresh_tokens(self) -> int:
        """Number of records the expiry sweep would delete right now."""
        return await self.store.count_expired(self.clock.now())

    async def cleanup_expired_refresh_tokens(self) -> int:
        """
        Remove refresh tokens past their expiry, whatever their revocation state.

        Returns:
            Number of expired tokens deleted
        """
        deleted_count = await self.store.delete_expired(self.clock.now())
        await self.store.commit()

        if deleted_count > 0:
            logger.info(f"Cleaned up {deleted_count} expired refresh tokens")
        else:
            logger.debug("No expired refresh tokens found")

        return deleted_count

    async def count_orphaned_refresh_tokens(self) -> int:
        return await self.store.count_orphaned()

    async def cleanup_orphaned_refresh_tokens(self) -> int:
        """
        Remove refresh tokens that reference users which no longer exist.

        Covers databases where the user foreign key is not enforced (SQLite
        without PRAGMA foreign_keys) and rows deleted outside the ORM.

        Returns:
            Number of orphaned tokens deleted
        """
        deleted_count = await self.store.delete_orphaned()
        await self.store.commit()

        if deleted_count > 0:
            logger.warning(f"Cleaned up {deleted_count} orphaned refresh tokens")
        else:
            logger.debug("No orphaned refresh tokens found")

        return deleted_count

    async def run_all_cleanup_tasks(self) -> dict[str, int]:
        """
        Run all cleanup tasks.

        Returns:
            Dictionary with counts of items cleaned up per task
        """
        logger.info("Starting scheduled cleanup tasks")

        results = {
            "orphaned_tokens": await self.cleanup_orphaned_refresh_tokens(),
            "expired_tokens": await self.cleanup_expired_refresh_tokens(),
        }

        total_cleaned = sum(results.values())
        logger.info(f"Cleanup tasks completed. Total items cleaned: {total_cleaned}")

        return results
