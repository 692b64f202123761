# src/services/feedback_service.py
"""
FeedbackService - verdrahtet Erkennung, Verifikation, Feedback und Lernen.

Verwendung:
    engine, factory = create_session_factory()
    await init_models(engine)
    service = build_feedback_service(factory)
    result = await service.classify_email(email)
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from src.helpers.errors import NotFoundError
from src.services.category_engine import CategoryEngine
from src.services.category_learning import CategoryLearner
from src.services.category_manager import CategoryManager
from src.services.category_matcher import CategoryMatcher
from src.services.detection_snapshots import DetectionSnapshotStore
from src.services.feedback_analyzer import FeedbackAnalyzer, calculate_accuracy_metrics
from src.services.feedback_collector import FeedbackCollector
from src.services.feedback_repository import FeedbackRepository
from src.services.newsletter_detector import NewsletterDetector, create_default_detector
from src.services.reputation_learner import ReputationLearner
from src.services.verification_service import VerificationService

models = importlib.import_module(".02_models", "src")
config = importlib.import_module(".01_config", "src")

logger = logging.getLogger(__name__)

FeedbackType = models.FeedbackType


@dataclass
class FeedbackStats:
    total: int
    by_type: Dict[str, int]
    pending_verifications: int
    accuracy: float
    precision: float
    recall: float
    f1_score: float


class FeedbackService:
    def __init__(
        self,
        repository: FeedbackRepository,
        detector: NewsletterDetector,
        verification: VerificationService,
        collector: FeedbackCollector,
        learner: ReputationLearner,
        analyzer: FeedbackAnalyzer,
        categories: Optional[CategoryEngine] = None,
    ):
        self.repository = repository
        self.detector = detector
        self.verification = verification
        self.collector = collector
        self.learner = learner
        self.analyzer = analyzer
        self.categories = categories

    async def classify_email(self, email: models.Email) -> models.DetectionResult:
        """Erkennung, bei unsicherem Ergebnis zusätzlich Verifikations-Anfrage"""
        result = await self.detector.detect(email)
        if result.needs_verification and email.user_id:
            await self.verification.generate(email.user_id, email.id, result.combined_score)
        return result

    async def submit_feedback(
        self,
        user_id: str,
        email_id: str,
        feedback_type: FeedbackType,
        comment: Optional[str] = None,
    ) -> models.FeedbackItem:
        return await self.collector.collect(user_id, email_id, feedback_type, comment)

    async def process_verification(
        self, token: str, is_newsletter: bool, comment: Optional[str] = None
    ) -> models.VerificationRequest:
        feedback_type = FeedbackType.CONFIRM if is_newsletter else FeedbackType.REJECT
        return await self.verification.respond(token, feedback_type, comment)

    async def request_verification(self, user_id: str, email_id: str) -> models.VerificationRequest:
        """
        Manuelle Rückfrage zu einer bereits erkannten Email.

        Raises:
            NotFoundError: Email wurde für diesen User nie erkannt
        """
        snapshot = await self.collector.snapshot_store.get_snapshot(user_id, email_id)
        if snapshot is None:
            raise NotFoundError("DetectionSnapshot", f"{user_id}/{email_id}")
        return await self.verification.generate(user_id, email_id, snapshot.combined_score)

    async def cancel_verification(self, request_id: str) -> bool:
        return await self.verification.cancel(request_id)

    async def get_feedback_stats(self, user_id: str) -> FeedbackStats:
        items = await self.repository.list_feedback(user_id=user_id)
        pending = await self.repository.list_pending_verification_requests(user_id)
        analytics = self.analyzer.summarize(items)
        metrics = calculate_accuracy_metrics(items)
        return FeedbackStats(
            total=analytics.total,
            by_type=analytics.by_type,
            pending_verifications=len(pending),
            accuracy=metrics.accuracy,
            precision=metrics.precision,
            recall=metrics.recall,
            f1_score=metrics.f1_score,
        )

    async def process_expired_requests(self) -> int:
        return await self.verification.expire_overdue()

    async def process_feedback_queue(self, limit: int = 100) -> int:
        return await self.collector.process_unprocessed(limit)

    async def train_personalized_models(
        self, user_ids: Optional[Iterable[str]] = None
    ) -> Dict[str, bool]:
        """
        Trainiert User-Gewichte. Ohne user_ids: alle User mit genug Feedback.

        Returns:
            user_id -> trainiert ja/nein
        """
        if user_ids is None:
            minimum = self.learner.learning.min_feedback_for_training
            user_ids = list((await self.repository.count_feedback_by_user(minimum)).keys())

        results = {}
        for user_id in user_ids:
            results[user_id] = await self.learner.train_personalized_model(user_id)
        return results


def build_feedback_service(
    session_factory: async_sessionmaker, settings=None, learn_immediately: bool = True
) -> FeedbackService:
    """Baut alle Komponenten auf einer gemeinsamen Session-Factory"""
    settings = settings or config.get_settings()

    repository = FeedbackRepository(session_factory)
    snapshots = DetectionSnapshotStore(session_factory)
    learner = ReputationLearner(session_factory, repository, settings)
    detector = create_default_detector(learner, repository, snapshots, settings.detection)

    verification = VerificationService(repository, snapshots, settings.feedback)
    collector = FeedbackCollector(
        repository,
        snapshots,
        verification_service=verification,
        learner=learner,
        settings=settings.feedback,
        learn_immediately=learn_immediately,
    )
    verification.bind_collector(collector)

    manager = CategoryManager(session_factory)
    matcher = CategoryMatcher(
        session_factory, manager, threshold=settings.learning.category_confidence_threshold
    )
    categories = CategoryEngine(
        manager, matcher, CategoryLearner(session_factory, matcher, settings.learning), settings.learning
    )

    return FeedbackService(
        repository=repository,
        detector=detector,
        verification=verification,
        collector=collector,
        learner=learner,
        analyzer=FeedbackAnalyzer(repository),
        categories=categories,
    )
