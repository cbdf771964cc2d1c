"""Journey recorder: append-only lead journey log for pipeline actions."""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rental_pipeline.domain.enums import JourneyAction
from rental_pipeline.domain.models import LeadJourney

logger = logging.getLogger(__name__)


class JourneyRecorder:
    """Writes LeadJourney rows in their own session, outside the caller's transaction.

    Recording is best effort: any failure is logged and swallowed so that the
    operation which triggered it is never affected.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(
        self,
        property_id: str | None,
        user_id: str | None,
        action: JourneyAction,
        metadata: dict | None = None,
    ) -> None:
        try:
            async with self._session_factory() as session:
                session.add(
                    LeadJourney(
                        id=str(uuid.uuid4()),
                        property_id=property_id,
                        user_id=user_id,
                        action=action.value,
                        data=metadata or {},
                        created_at=datetime.now(timezone.utc),
                    )
                )
                await session.commit()
        except Exception as e:
            logger.warning(
                "Journey record failed (action=%s, user=%s, property=%s): %s",
                action.value, user_id, property_id, e,
            )
            return

        logger.debug("Journey %s recorded for user %s", action.value, user_id)
