"""
Affirmly Backend — Affirmation Broadcast Scheduler
===================================================

What:  Periodically pushes one randomly chosen affirmation to every user with
       a registered device token and records it in their inbox.
Why:   The daily-affirmation experience is driven server-side; clients only
       register a token.
How:   APScheduler (AsyncIOScheduler) fires `AffirmationBroadcaster.run_once`
       on a fixed interval inside the API's event loop.

Tick Algorithm:
    1. If a previous pass is still running, skip this one (logged).
    2. Load the affirmation catalogue once. Empty catalogue ends the pass.
    3. Walk users in id order, `broadcast_batch_size` per page.
    4. Per user with a token: pick an affirmation uniformly at random, push it,
       then stage an AFFIRMATION notification. Users without a token are
       counted and skipped.
    5. A failure for one user is logged and the walk continues. An
       unregistered token is cleared on the user row.
    6. Commit once per page.

A failed tick leaves no state behind that affects the next one: the next
interval simply starts a fresh pass.
"""

import asyncio
import logging
import random
import time
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.exceptions import DeviceTokenNotRegisteredError, PushDeliveryError
from app.models.affirmation import Affirmation
from app.models.notification import NotificationType
from app.models.user import User
from app.schemas.notification import BroadcastResult
from app.services.notification_service import NotificationService
from app.services.push_service import PushService

logger = logging.getLogger(__name__)

JOB_ID = "affirmation-broadcast"


class AffirmationBroadcaster:
    """
    One broadcast pass, guarded against overlap.

    The lock only protects against two passes in the same process (a slow
    scheduled tick plus a manual admin trigger). `rng` is injectable so tests
    can make the affirmation choice deterministic.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        push_service: PushService,
        batch_size: Optional[int] = None,
        title: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session_factory = session_factory
        self.notifications = NotificationService(push_service)
        self.batch_size = batch_size or settings.broadcast_batch_size
        self.title = title or settings.affirmation_notification_title
        self.rng = rng or random.Random()
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_once(self) -> Optional[BroadcastResult]:
        """Run one pass. Returns None when a pass was already in progress."""
        if self._lock.locked():
            logger.warning("Affirmation broadcast already in progress; skipping this tick")
            return None
        async with self._lock:
            return await self._broadcast()

    async def _broadcast(self) -> BroadcastResult:
        started = time.perf_counter()
        result = BroadcastResult()

        async with self.session_factory() as db:
            affirmations = (
                await db.execute(select(Affirmation.id, Affirmation.content))
            ).all()
            if not affirmations:
                logger.info("No affirmations found; nothing to broadcast")
                return result

            last_id = None
            while True:
                query = select(User).order_by(User.id).limit(self.batch_size)
                if last_id is not None:
                    query = query.where(User.id > last_id)
                users = list((await db.execute(query)).scalars().all())
                if not users:
                    break

                for user in users:
                    result.users_considered += 1
                    await self._send_one(db, user, affirmations, result)

                await db.commit()
                last_id = users[-1].id
                if len(users) < self.batch_size:
                    break

        logger.info(
            "Affirmation broadcast finished in %.0fms: considered=%d sent=%d "
            "no_token=%d cleared=%d failed=%d",
            (time.perf_counter() - started) * 1000,
            result.users_considered,
            result.sent,
            result.skipped_no_token,
            result.tokens_cleared,
            result.failed,
        )
        return result

    async def _send_one(self, db: AsyncSession, user: User, affirmations, result: BroadcastResult) -> None:
        if not user.fcm_token:
            result.skipped_no_token += 1
            logger.debug("User %s has no FCM token; skipped", user.id)
            return

        affirmation = self.rng.choice(affirmations)
        try:
            await self.notifications.deliver(
                db,
                user,
                title=self.title,
                body=affirmation.content,
                notification_type=NotificationType.AFFIRMATION,
                data={"affirmationId": str(affirmation.id)},
            )
            result.sent += 1
        except DeviceTokenNotRegisteredError:
            result.tokens_cleared += 1
        except PushDeliveryError as e:
            result.failed += 1
            logger.error("Affirmation push to user %s failed: %s", user.id, e.message)
        except Exception as e:
            result.failed += 1
            logger.error(
                "Unexpected error sending affirmation to user %s: %s",
                user.id,
                str(e),
                exc_info=True,
            )


class BroadcastScheduler:
    """Owns the AsyncIOScheduler; started and stopped by the app lifespan."""

    def __init__(self, broadcaster: AffirmationBroadcaster, interval_seconds: Optional[int] = None):
        self.broadcaster = broadcaster
        self.interval_seconds = interval_seconds or settings.affirmation_interval_seconds
        self._scheduler = AsyncIOScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    async def _tick(self) -> None:
        logger.info("Affirmation broadcast triggered")
        try:
            await self.broadcaster.run_once()
        except Exception as e:
            logger.error("Affirmation broadcast aborted: %s", str(e), exc_info=True)

    def start(self) -> None:
        self._scheduler.add_job(
            self._tick,
            "interval",
            seconds=self.interval_seconds,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Affirmation scheduler started (every %ss)", self.interval_seconds)

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Affirmation scheduler stopped")
