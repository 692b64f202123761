# src/services/feedback_collector.py
"""
Feedback Collector - nimmt User-Feedback auf und priorisiert es.

Die Priorität ist eine reine Funktion von (Typ, Confidence zum Erkennungszeitpunkt)
und wird genau einmal beim Sammeln berechnet.
"""

from __future__ import annotations

import importlib
import logging
from typing import List, Optional

from src.helpers.errors import NotFoundError
from src.helpers.validation import validate_identifier, validate_unit_interval

models = importlib.import_module(".02_models", "src")
config = importlib.import_module(".01_config", "src")

logger = logging.getLogger(__name__)

FeedbackType = models.FeedbackType
FeedbackPriority = models.FeedbackPriority


def determine_feedback_priority(
    feedback_type: FeedbackType, confidence: float, settings=None
) -> FeedbackPriority:
    """
    Priorität eines Feedbacks (Reihenfolge der Regeln ist relevant).

    Args:
        feedback_type: Art des Feedbacks
        confidence: Score der Erkennung zum Zeitpunkt der Entscheidung
        settings: FeedbackSettings (default: aus Umgebung)

    Returns:
        HIGH   - Feedback widerspricht einer fast sicheren Entscheidung
        MEDIUM - Grenzfall, VERIFY oder Default
        LOW    - UNCERTAIN / IGNORE

    Raises:
        ValueError: confidence fehlt oder liegt nicht in [0, 1]
    """
    settings = settings or config.get_settings().feedback
    feedback_type = FeedbackType(feedback_type)
    confidence = validate_unit_interval(confidence, "confidence")

    if (
        feedback_type == FeedbackType.REJECT
        and confidence > settings.contradiction_high_confidence
    ) or (
        feedback_type == FeedbackType.CONFIRM
        and confidence < settings.contradiction_low_confidence
    ):
        return FeedbackPriority.HIGH

    if (
        feedback_type in (FeedbackType.CONFIRM, FeedbackType.REJECT)
        and settings.borderline_low <= confidence <= settings.borderline_high
    ):
        return FeedbackPriority.MEDIUM

    if feedback_type == FeedbackType.VERIFY:
        return FeedbackPriority.MEDIUM

    if feedback_type in (FeedbackType.UNCERTAIN, FeedbackType.IGNORE):
        return FeedbackPriority.LOW

    return FeedbackPriority.MEDIUM


class FeedbackCollector:
    def __init__(
        self,
        repository,
        snapshot_store,
        verification_service=None,
        learner=None,
        settings=None,
        learn_immediately: bool = True,
    ):
        self.repository = repository
        self.snapshot_store = snapshot_store
        self.verification_service = verification_service
        self.learner = learner
        self.settings = settings or config.get_settings().feedback
        self.learn_immediately = learn_immediately

    async def collect(
        self,
        user_id: str,
        email_id: str,
        feedback_type: FeedbackType,
        comment: Optional[str] = None,
    ) -> models.FeedbackItem:
        """
        Speichert ein Feedback-Item und gleicht offene Verifikationen ab.

        Raises:
            NotFoundError: kein Detection-Snapshot für (user_id, email_id)
        """
        user_id = validate_identifier(user_id, "user_id")
        email_id = validate_identifier(email_id, "email_id")
        feedback_type = FeedbackType(feedback_type)

        snapshot = await self.snapshot_store.get_snapshot(user_id, email_id)
        if snapshot is None:
            raise NotFoundError("DetectionSnapshot", f"{user_id}/{email_id}")

        priority = determine_feedback_priority(
            feedback_type, snapshot.combined_score, self.settings
        )

        item = models.FeedbackItem(
            id=models.new_id(),
            user_id=user_id,
            email_id=email_id,
            message_id=snapshot.message_id,
            sender=snapshot.sender,
            sender_domain=snapshot.sender_domain,
            subject=snapshot.subject,
            type=feedback_type.value,
            priority=priority.value,
            detection_result=snapshot.is_newsletter,
            confidence=snapshot.combined_score,
            features=dict(snapshot.features or {}),
            comment=comment,
            timestamp=models.utcnow(),
            processed=False,
        )
        saved = await self.repository.save_feedback(item)
        logger.info(
            f"✅ Feedback gespeichert: {saved.id} ({feedback_type.value}, {priority.value}) "
            f"für email={email_id}"
        )

        if self.verification_service is not None:
            await self.verification_service.resolve_pending_for_email(
                user_id, email_id, feedback_type
            )

        if self.learner is not None and self.learn_immediately:
            await self.learner.apply_feedback(saved)

        return saved

    async def process_unprocessed(self, limit: int = 100) -> int:
        """
        Wendet offenes Feedback an, HIGH zuerst.

        Returns:
            Anzahl angewendeter Items
        """
        if self.learner is None:
            raise RuntimeError("process_unprocessed benötigt einen Learner")

        items = await self.repository.list_unprocessed_feedback(limit)
        applied = 0
        for item in items:
            if await self.learner.apply_feedback(item):
                applied += 1

        if applied:
            logger.info(f"✅ {applied} Feedback-Items angewendet")
        return applied

    async def get_pending_verifications(self, user_id: str) -> List[models.VerificationRequest]:
        return await self.repository.list_pending_verification_requests(user_id)
