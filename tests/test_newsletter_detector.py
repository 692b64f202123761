"""Unit Tests für NewsletterDetector

Tests für src/services/newsletter_detector.py
"""

import importlib

import pytest

from src.services.detection_snapshots import DetectionSnapshotStore
from src.services.feedback_repository import FeedbackRepository
from src.services.newsletter_detector import NewsletterDetector, create_default_detector
from src.services.reputation_learner import ReputationLearner
from src.services.signal_analyzers import HeaderAnalyzer, SignalAnalyzer

models = importlib.import_module("src.02_models")
scoring = importlib.import_module("src.05_scoring")


class FixedAnalyzer(SignalAnalyzer):
    """Analyzer mit festem Score"""

    def __init__(self, method, score, confidence=0.5, weight=0.25):
        self.method = method
        self.fixed_score = score
        self.fixed_confidence = confidence
        self.default_weight = weight

    async def _analyze(self, email):
        return models.DetectionScore(
            method=self.method, score=self.fixed_score, confidence=self.fixed_confidence
        )


@pytest.fixture
def detector_parts(session_factory, settings):
    repository = FeedbackRepository(session_factory)
    learner = ReputationLearner(session_factory, repository, settings)
    snapshots = DetectionSnapshotStore(session_factory)
    detector = create_default_detector(learner, repository, snapshots, settings.detection)
    return detector, repository, learner, snapshots


class TestDetect:
    """Tests für detect()"""

    async def test_header_only_newsletter(self, newsletter_email, settings):
        """Test: Nur Header-Analyzer, Score 0.76 → Newsletter ohne Verifikation"""
        detector = NewsletterDetector(
            analyzers=[HeaderAnalyzer()],
            aggregator=scoring.DetectionAggregator(settings.detection),
        )

        result = await detector.detect(newsletter_email)

        assert result.combined_score == pytest.approx(0.76)
        assert result.is_newsletter is True
        assert result.needs_verification is False

    async def test_default_detector_uncertain(self, detector_parts, newsletter_email):
        """Test: Alle vier Analyzer ohne Historie → Verifikations-Band"""
        detector, _, _, snapshots = detector_parts

        result = await detector.detect(newsletter_email)

        # 0.4*0.76 + 0.3*0.1 + 0.2*0.5 + 0.1*0.5
        assert result.combined_score == pytest.approx(0.484)
        assert result.is_newsletter is False
        assert result.needs_verification is True
        assert len(result.scores) == 4

        snapshot = await snapshots.get_snapshot("user-1", "email-1")
        assert snapshot is not None
        assert snapshot.sender == "newsletter@example.com"
        assert snapshot.sender_domain == "example.com"
        assert snapshot.combined_score == pytest.approx(0.484)
        assert snapshot.features["header_analysis"] == pytest.approx(0.76)

    async def test_no_snapshot_without_user(self, detector_parts, make_email):
        detector, _, _, snapshots = detector_parts

        await detector.detect(make_email(user_id=None))

        assert await snapshots.get_snapshot("user-1", "email-1") is None

    async def test_user_feedback_overrides_verification(self, detector_parts, newsletter_email):
        """Test: Bestätigter Sender hebt die Rückfrage auf"""
        detector, repository, _, _ = detector_parts
        await repository.save_feedback(
            models.FeedbackItem(
                id=models.new_id(),
                user_id="user-1",
                email_id="older-email",
                sender="newsletter@example.com",
                sender_domain="example.com",
                type=models.FeedbackType.CONFIRM.value,
                priority=models.FeedbackPriority.MEDIUM.value,
                detection_result=False,
                confidence=0.48,
                features={},
            )
        )

        result = await detector.detect(newsletter_email)

        assert 0.3 < result.combined_score < 0.7
        assert result.needs_verification is False
        assert result.is_newsletter is True

    async def test_failing_analyzer_does_not_abort(self, settings, make_email):
        detector = NewsletterDetector(
            analyzers=[
                HeaderAnalyzer(),
                FixedAnalyzer(models.DetectionMethod.CONTENT_STRUCTURE, 0.9),
            ],
            aggregator=scoring.DetectionAggregator(settings.detection),
        )
        email = models.Email(id="no-payload", payload=None)

        result = await detector.detect(email)

        header = result.score_for(models.DetectionMethod.HEADER_ANALYSIS)
        assert header.confidence == 0.1
        assert header.reason.startswith("Error in header_analysis")
        assert len(result.scores) == 2

    async def test_get_confidence_score(self, newsletter_email, settings):
        detector = NewsletterDetector(
            analyzers=[HeaderAnalyzer()],
            aggregator=scoring.DetectionAggregator(settings.detection),
        )

        assert await detector.get_confidence_score(newsletter_email) == pytest.approx(0.76)


class TestAnalyzerRegistry:
    """Tests für register/remove"""

    def test_register_replaces_same_method(self, settings):
        detector = NewsletterDetector(aggregator=scoring.DetectionAggregator(settings.detection))
        detector.register_analyzer(FixedAnalyzer(models.DetectionMethod.HEADER_ANALYSIS, 0.1))
        replacement = FixedAnalyzer(models.DetectionMethod.HEADER_ANALYSIS, 0.9)

        detector.register_analyzer(replacement)

        assert detector.analyzers == [replacement]

    def test_remove_analyzer(self, settings):
        detector = NewsletterDetector(
            analyzers=[HeaderAnalyzer()],
            aggregator=scoring.DetectionAggregator(settings.detection),
        )

        assert detector.remove_analyzer(models.DetectionMethod.HEADER_ANALYSIS) is True
        assert detector.remove_analyzer(models.DetectionMethod.HEADER_ANALYSIS) is False
        assert detector.analyzers == []

    async def test_empty_detector_is_neutral(self, settings, make_email):
        detector = NewsletterDetector(aggregator=scoring.DetectionAggregator(settings.detection))

        result = await detector.detect(make_email(user_id=None))

        assert result.combined_score == 0.5
        assert result.needs_verification is True
        assert result.is_newsletter is True


class TestWeights:
    """Tests für resolve_weights"""

    async def test_defaults_without_learner(self, settings):
        detector = NewsletterDetector(
            analyzers=[HeaderAnalyzer(), FixedAnalyzer(models.DetectionMethod.USER_FEEDBACK, 0.5, weight=0.1)],
            aggregator=scoring.DetectionAggregator(settings.detection),
        )

        weights = await detector.resolve_weights("user-1")

        assert weights == {"header_analysis": 0.4, "user_feedback": 0.1}

    async def test_user_weights_override_global(self, detector_parts):
        detector, _, learner, _ = detector_parts
        await learner.set_feature_weight("header_analysis", 0.8)
        await learner.set_feature_weight("header_analysis", 0.6, user_id="user-1")

        assert (await detector.resolve_weights(None))["header_analysis"] == 0.8
        assert (await detector.resolve_weights("user-1"))["header_analysis"] == 0.6
        assert (await detector.resolve_weights("user-2"))["header_analysis"] == 0.8
