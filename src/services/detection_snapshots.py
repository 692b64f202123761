"""
Detection-Snapshots: was der Detector pro (User, Email) entschieden hat

Der FeedbackCollector liest hier Label, Confidence und Feature-Werte zum
Zeitpunkt der Erkennung nach, statt neu zu rechnen.
"""

import importlib
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from src import known_newsletters

models = importlib.import_module(".02_models", "src")

logger = logging.getLogger(__name__)


class DetectionSnapshotStore:
    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def save_snapshot(
        self, email: models.Email, result: models.DetectionResult
    ) -> models.DetectionSnapshot:
        """Upsert pro (user_id, email_id), eine erneute Erkennung überschreibt"""
        if not email.user_id:
            raise ValueError("Snapshot benötigt user_id")

        sender = known_newsletters.extract_email_address(email.header("from") or "")
        subject = email.subject if email.subject is not None else email.header("subject")
        message_id = email.message_id or email.header("message-id")

        DetectionSnapshot = models.DetectionSnapshot
        async with self._session_factory() as session:
            result_row = await session.execute(
                select(DetectionSnapshot).where(
                    DetectionSnapshot.user_id == email.user_id,
                    DetectionSnapshot.email_id == email.id,
                )
            )
            snapshot = result_row.scalar_one_or_none()
            if snapshot is None:
                snapshot = DetectionSnapshot(user_id=email.user_id, email_id=email.id)
                session.add(snapshot)

            snapshot.sender = sender
            snapshot.sender_domain = known_newsletters.extract_domain(sender)
            snapshot.subject = subject
            snapshot.message_id = message_id
            snapshot.is_newsletter = result.is_newsletter
            snapshot.needs_verification = result.needs_verification
            snapshot.combined_score = result.combined_score
            snapshot.features = result.features()
            snapshot.detected_at = models.utcnow()

            await session.commit()
            logger.debug(
                f"🔍 Snapshot gespeichert: user={email.user_id}, email={email.id}, "
                f"score={result.combined_score:.2f}"
            )
            return snapshot

    async def get_snapshot(
        self, user_id: str, email_id: str
    ) -> Optional[models.DetectionSnapshot]:
        DetectionSnapshot = models.DetectionSnapshot
        async with self._session_factory() as session:
            result = await session.execute(
                select(DetectionSnapshot).where(
                    DetectionSnapshot.user_id == user_id,
                    DetectionSnapshot.email_id == email_id,
                )
            )
            return result.scalar_one_or_none()
