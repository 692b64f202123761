# src/services/newsletter_detector.py
"""
Newsletter-Detector: führt alle registrierten Analyzer aus und aggregiert.

Ablauf:
    Email → Analyzer (parallel) → Gewichte (Default < global < User) → Aggregator
          → Snapshot (falls user_id gesetzt)
"""

from __future__ import annotations

import asyncio
import importlib
import logging
from typing import Dict, List, Optional

from src.services.signal_analyzers import (
    ContentStructureAnalyzer,
    HeaderAnalyzer,
    SenderReputationAnalyzer,
    SignalAnalyzer,
    UserFeedbackAnalyzer,
)

models = importlib.import_module(".02_models", "src")
scoring = importlib.import_module(".05_scoring", "src")

logger = logging.getLogger(__name__)


class NewsletterDetector:
    def __init__(
        self,
        analyzers: Optional[List[SignalAnalyzer]] = None,
        aggregator=None,
        learner=None,
        snapshot_store=None,
    ):
        self._analyzers: List[SignalAnalyzer] = list(analyzers or [])
        self.aggregator = aggregator or scoring.DetectionAggregator()
        self.learner = learner
        self.snapshot_store = snapshot_store

    @property
    def analyzers(self) -> List[SignalAnalyzer]:
        return list(self._analyzers)

    def register_analyzer(self, analyzer: SignalAnalyzer) -> None:
        """Registriert einen Analyzer (ersetzt einen vorhandenen derselben Methode)"""
        self.remove_analyzer(analyzer.method)
        self._analyzers.append(analyzer)
        logger.debug(f"Analyzer registriert: {analyzer.method.value} (weight={analyzer.weight()})")

    def remove_analyzer(self, method) -> bool:
        before = len(self._analyzers)
        self._analyzers = [a for a in self._analyzers if a.method != method]
        return len(self._analyzers) != before

    async def resolve_weights(self, user_id: Optional[str] = None) -> Dict[str, float]:
        weights = {a.method.value: a.weight() for a in self._analyzers}
        if self.learner is not None:
            learned = await self.learner.get_feature_weights(user_id)
            for method in weights:
                if method in learned:
                    weights[method] = learned[method]
        return weights

    async def detect(self, email: models.Email) -> models.DetectionResult:
        """
        Bewertet eine Email.

        Fehler einzelner Analyzer führen zu Scores mit niedriger Confidence,
        nicht zu einer Exception.
        """
        scores = await asyncio.gather(*(a.analyze(email) for a in self._analyzers))
        weights = await self.resolve_weights(email.user_id)
        result = self.aggregator.combine(list(scores), weights)

        feedback_score = result.score_for(models.DetectionMethod.USER_FEEDBACK)
        override = self.aggregator.settings.feedback_override_confidence
        if result.needs_verification and feedback_score and feedback_score.confidence > override:
            # Explizites User-Feedback zum Sender ersetzt die Rückfrage
            result.needs_verification = False
            result.is_newsletter = feedback_score.score >= 0.5

        logger.info(
            f"🔍 Email {email.id}: score={result.combined_score:.2f}, "
            f"newsletter={result.is_newsletter}, verify={result.needs_verification}"
        )

        if self.snapshot_store is not None and email.user_id:
            await self.snapshot_store.save_snapshot(email, result)

        return result

    async def get_confidence_score(self, email: models.Email) -> float:
        result = await self.detect(email)
        return result.combined_score


def create_default_detector(
    learner, feedback_repository, snapshot_store=None, settings=None
) -> NewsletterDetector:
    """Detector mit allen vier Standard-Analyzern"""
    return NewsletterDetector(
        analyzers=[
            HeaderAnalyzer(),
            ContentStructureAnalyzer(),
            SenderReputationAnalyzer(learner),
            UserFeedbackAnalyzer(feedback_repository),
        ],
        aggregator=scoring.DetectionAggregator(settings),
        learner=learner,
        snapshot_store=snapshot_store,
    )
