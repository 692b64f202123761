"""
FeedbackRepository: async Persistenz für FeedbackItem und VerificationRequest

Jede Methode öffnet eine eigene Session (async_sessionmaker). Fehler
(SQLAlchemyError) werden geloggt und unverändert weitergereicht, kein Retry.
"""

from __future__ import annotations

import importlib
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.helpers.errors import NotFoundError

models = importlib.import_module(".02_models", "src")

logger = logging.getLogger(__name__)

# HIGH zuerst, dann MEDIUM, dann LOW
_PRIORITY_RANK = case(
    (models.FeedbackItem.priority == models.FeedbackPriority.HIGH.value, 0),
    (models.FeedbackItem.priority == models.FeedbackPriority.MEDIUM.value, 1),
    else_=2,
)


class FeedbackRepository:
    """SQLAlchemy-Implementierung der Feedback-/Verifikations-Persistenz"""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    # ========================================================================
    # FeedbackItem
    # ========================================================================

    async def save_feedback(self, item: models.FeedbackItem) -> models.FeedbackItem:
        try:
            async with self._session_factory() as session:
                session.add(item)
                await session.commit()
                return item
        except SQLAlchemyError as e:
            logger.error(f"❌ Feedback konnte nicht gespeichert werden: {e}")
            raise

    async def get_feedback(self, feedback_id: str) -> Optional[models.FeedbackItem]:
        async with self._session_factory() as session:
            return await session.get(models.FeedbackItem, feedback_id)

    async def list_feedback(
        self,
        user_id: Optional[str] = None,
        email_id: Optional[str] = None,
        sender: Optional[str] = None,
        sender_domain: Optional[str] = None,
        types: Optional[List[str]] = None,
        processed: Optional[bool] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[models.FeedbackItem]:
        """
        Feedback mit optionalen Filtern, neueste zuerst.

        Args:
            types: Liste von FeedbackType-Werten
            since/until: Zeitraum (inklusive)
        """
        FeedbackItem = models.FeedbackItem
        stmt = select(FeedbackItem)
        if user_id is not None:
            stmt = stmt.where(FeedbackItem.user_id == user_id)
        if email_id is not None:
            stmt = stmt.where(FeedbackItem.email_id == email_id)
        if sender is not None:
            stmt = stmt.where(FeedbackItem.sender == sender)
        if sender_domain is not None:
            stmt = stmt.where(FeedbackItem.sender_domain == sender_domain)
        if types:
            stmt = stmt.where(FeedbackItem.type.in_([_value(t) for t in types]))
        if processed is not None:
            stmt = stmt.where(FeedbackItem.processed == processed)
        if since is not None:
            stmt = stmt.where(FeedbackItem.timestamp >= since)
        if until is not None:
            stmt = stmt.where(FeedbackItem.timestamp <= until)

        stmt = stmt.order_by(FeedbackItem.timestamp.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_unprocessed_feedback(self, limit: int = 100) -> List[models.FeedbackItem]:
        """Unverarbeitetes Feedback nach Priorität (HIGH zuerst), dann ältestes zuerst"""
        FeedbackItem = models.FeedbackItem
        stmt = (
            select(FeedbackItem)
            .where(FeedbackItem.processed.is_(False))
            .order_by(_PRIORITY_RANK, FeedbackItem.timestamp.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count_feedback_by_user(self, min_count: int = 1) -> dict:
        """user_id -> Anzahl Feedback-Items (nur User mit >= min_count)"""
        FeedbackItem = models.FeedbackItem
        stmt = (
            select(FeedbackItem.user_id, func.count(FeedbackItem.id))
            .group_by(FeedbackItem.user_id)
            .having(func.count(FeedbackItem.id) >= min_count)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {user_id: count for user_id, count in result.all()}

    async def mark_feedback_processed(self, feedback_id: str) -> models.FeedbackItem:
        """Setzt processed/processed_at (einzige erlaubte Änderung)"""
        try:
            async with self._session_factory() as session:
                item = await session.get(models.FeedbackItem, feedback_id)
                if item is None:
                    raise NotFoundError("FeedbackItem", feedback_id)
                if not item.processed:
                    item.processed = True
                    item.processed_at = models.utcnow()
                    await session.commit()
                return item
        except SQLAlchemyError as e:
            logger.error(f"❌ Feedback {feedback_id} konnte nicht markiert werden: {e}")
            raise

    async def claim_feedback(self, feedback_id: str) -> bool:
        """
        Markiert ein Item atomar als verarbeitet (bedingtes UPDATE).

        Returns:
            True nur für den einen Aufrufer, der processed von False auf True setzt
        """
        FeedbackItem = models.FeedbackItem
        stmt = (
            update(FeedbackItem)
            .where(FeedbackItem.id == feedback_id, FeedbackItem.processed.is_(False))
            .values(processed=True, processed_at=models.utcnow())
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error(f"❌ Feedback {feedback_id} konnte nicht übernommen werden: {e}")
            raise

    async def release_feedback_claim(self, feedback_id: str) -> None:
        """Gibt ein übernommenes Item wieder frei (Lernen ist fehlgeschlagen)"""
        FeedbackItem = models.FeedbackItem
        stmt = (
            update(FeedbackItem)
            .where(FeedbackItem.id == feedback_id)
            .values(processed=False, processed_at=None)
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

    # ========================================================================
    # VerificationRequest
    # ========================================================================

    async def save_verification_request(
        self, request: models.VerificationRequest
    ) -> models.VerificationRequest:
        """Insert oder Update (merge) einer Anfrage"""
        try:
            async with self._session_factory() as session:
                merged = await session.merge(request)
                await session.commit()
                return merged
        except SQLAlchemyError as e:
            logger.error(f"❌ Verifikations-Anfrage konnte nicht gespeichert werden: {e}")
            raise

    async def get_verification_request(
        self, request_id: str
    ) -> Optional[models.VerificationRequest]:
        async with self._session_factory() as session:
            return await session.get(models.VerificationRequest, request_id)

    async def get_verification_request_by_token(
        self, token: str
    ) -> Optional[models.VerificationRequest]:
        VerificationRequest = models.VerificationRequest
        async with self._session_factory() as session:
            result = await session.execute(
                select(VerificationRequest).where(VerificationRequest.token == token)
            )
            return result.scalar_one_or_none()

    async def list_pending_verification_requests(
        self, user_id: Optional[str] = None
    ) -> List[models.VerificationRequest]:
        VerificationRequest = models.VerificationRequest
        stmt = select(VerificationRequest).where(
            VerificationRequest.status == models.VerificationStatus.PENDING.value
        )
        if user_id is not None:
            stmt = stmt.where(VerificationRequest.user_id == user_id)
        stmt = stmt.order_by(VerificationRequest.generated_at.asc())

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_verification_request_status(
        self,
        request_id: str,
        status: models.VerificationStatus,
        user_response: Optional[str] = None,
    ) -> models.VerificationRequest:
        """
        Setzt den Status. Bei CONFIRMED/REJECTED werden responded_at und
        user_response mitgeschrieben.

        Raises:
            NotFoundError: Unbekannte request_id
        """
        try:
            async with self._session_factory() as session:
                request = await session.get(models.VerificationRequest, request_id)
                if request is None:
                    raise NotFoundError("VerificationRequest", request_id)

                request.status = _value(status)
                if status in (
                    models.VerificationStatus.CONFIRMED,
                    models.VerificationStatus.REJECTED,
                ):
                    request.responded_at = models.utcnow()
                    request.user_response = _value(user_response) if user_response else None

                await session.commit()
                return request
        except SQLAlchemyError as e:
            logger.error(f"❌ Status-Update für Anfrage {request_id} fehlgeschlagen: {e}")
            raise

    async def list_expired_verification_requests(
        self, now: Optional[datetime] = None
    ) -> List[models.VerificationRequest]:
        """PENDING-Anfragen mit expires_at < now"""
        VerificationRequest = models.VerificationRequest
        now = now or models.utcnow()
        stmt = select(VerificationRequest).where(
            VerificationRequest.status == models.VerificationStatus.PENDING.value,
            VerificationRequest.expires_at < now,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


def _value(enum_or_str):
    return enum_or_str.value if hasattr(enum_or_str, "value") else enum_or_str
