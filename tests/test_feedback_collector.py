"""Unit Tests für FeedbackCollector und Prioritäts-Regeln

Tests für src/services/feedback_collector.py
"""

import importlib

import pytest

from src.helpers.errors import NotFoundError
from src.services.detection_snapshots import DetectionSnapshotStore
from src.services.feedback_collector import FeedbackCollector, determine_feedback_priority
from src.services.feedback_repository import FeedbackRepository
from src.services.reputation_learner import ReputationLearner
from src.services.verification_service import VerificationService

models = importlib.import_module("src.02_models")
config = importlib.import_module("src.01_config")

FeedbackType = models.FeedbackType
Priority = models.FeedbackPriority


@pytest.mark.parametrize(
    "feedback_type, confidence, expected",
    [
        (FeedbackType.REJECT, 0.9, Priority.HIGH),
        (FeedbackType.CONFIRM, 0.1, Priority.HIGH),
        (FeedbackType.CONFIRM, 0.5, Priority.MEDIUM),
        (FeedbackType.REJECT, 0.4, Priority.MEDIUM),
        (FeedbackType.REJECT, 0.6, Priority.MEDIUM),
        (FeedbackType.VERIFY, 0.95, Priority.MEDIUM),
        (FeedbackType.UNCERTAIN, 0.5, Priority.LOW),
        (FeedbackType.IGNORE, 0.95, Priority.LOW),
        # Grenzen: 0.8 und 0.2 sind kein Widerspruch
        (FeedbackType.REJECT, 0.8, Priority.MEDIUM),
        (FeedbackType.CONFIRM, 0.2, Priority.MEDIUM),
        (FeedbackType.CONFIRM, 0.95, Priority.MEDIUM),
    ],
)
def test_determine_feedback_priority(feedback_type, confidence, expected):
    settings = config.FeedbackSettings()

    assert determine_feedback_priority(feedback_type, confidence, settings) == expected


def test_priority_accepts_string_type():
    assert determine_feedback_priority("reject", 0.9, config.FeedbackSettings()) == Priority.HIGH


@pytest.fixture
def parts(session_factory, settings):
    repository = FeedbackRepository(session_factory)
    snapshots = DetectionSnapshotStore(session_factory)
    learner = ReputationLearner(session_factory, repository, settings)
    verification = VerificationService(repository, snapshots, settings.feedback)
    return repository, snapshots, learner, verification


class TestCollect:
    """Tests für collect()"""

    async def test_copies_detection_snapshot(self, parts, make_snapshot, settings):
        repository, snapshots, _, _ = parts
        collector = FeedbackCollector(repository, snapshots, settings=settings.feedback)
        await make_snapshot(
            combined_score=0.9,
            is_newsletter=True,
            sender="news@example.com",
            features={"header_analysis": 0.9},
        )

        item = await collector.collect("user-1", "email-1", FeedbackType.REJECT, "kein Newsletter")

        stored = await repository.get_feedback(item.id)
        assert stored.type == "reject"
        assert stored.priority == "high"
        assert stored.detection_result is True
        assert stored.confidence == pytest.approx(0.9)
        assert stored.sender == "news@example.com"
        assert stored.sender_domain == "example.com"
        assert stored.features == {"header_analysis": 0.9}
        assert stored.comment == "kein Newsletter"
        assert stored.processed is False

    async def test_unknown_email(self, parts, settings):
        repository, snapshots, _, _ = parts
        collector = FeedbackCollector(repository, snapshots, settings=settings.feedback)

        with pytest.raises(NotFoundError):
            await collector.collect("user-1", "never-seen", FeedbackType.CONFIRM)

        assert await repository.list_feedback() == []

    async def test_snapshot_of_other_user_is_not_used(self, parts, make_snapshot, settings):
        repository, snapshots, _, _ = parts
        collector = FeedbackCollector(repository, snapshots, settings=settings.feedback)
        await make_snapshot(user_id="user-2")

        with pytest.raises(NotFoundError):
            await collector.collect("user-1", "email-1", FeedbackType.CONFIRM)

    async def test_resolves_pending_verification(self, parts, make_snapshot, settings):
        """Test: Direktes Feedback schließt die offene Rückfrage ab"""
        repository, snapshots, _, verification = parts
        collector = FeedbackCollector(
            repository, snapshots, verification_service=verification, settings=settings.feedback
        )
        await make_snapshot(combined_score=0.5)
        request = await verification.generate("user-1", "email-1", 0.5)

        await collector.collect("user-1", "email-1", FeedbackType.REJECT)

        stored = await repository.get_verification_request(request.id)
        assert stored.status == models.VerificationStatus.CONFIRMED.value
        assert stored.user_response == "reject"
        assert await collector.get_pending_verifications("user-1") == []

    async def test_learns_immediately(self, parts, make_snapshot, settings):
        repository, snapshots, learner, _ = parts
        collector = FeedbackCollector(
            repository, snapshots, learner=learner, settings=settings.feedback
        )
        await make_snapshot(combined_score=0.9, is_newsletter=True)

        item = await collector.collect("user-1", "email-1", FeedbackType.CONFIRM)

        assert (await repository.get_feedback(item.id)).processed is True
        assert await learner.get_sender_score("news@example.com") == 1.0

    async def test_deferred_learning(self, parts, make_snapshot, settings):
        repository, snapshots, learner, _ = parts
        collector = FeedbackCollector(
            repository, snapshots, learner=learner, settings=settings.feedback,
            learn_immediately=False,
        )
        await make_snapshot(combined_score=0.9, is_newsletter=True)

        item = await collector.collect("user-1", "email-1", FeedbackType.CONFIRM)

        assert (await repository.get_feedback(item.id)).processed is False
        assert await learner.get_reputation("sender", "news@example.com") is None


class TestProcessUnprocessed:
    """Tests für process_unprocessed()"""

    async def test_applies_high_priority_first(self, parts, make_snapshot, settings):
        repository, snapshots, learner, _ = parts
        collector = FeedbackCollector(
            repository, snapshots, learner=learner, settings=settings.feedback,
            learn_immediately=False,
        )
        await make_snapshot(email_id="email-low", combined_score=0.5)
        await make_snapshot(email_id="email-high", combined_score=0.95)
        low = await collector.collect("user-1", "email-low", FeedbackType.IGNORE)
        high = await collector.collect("user-1", "email-high", FeedbackType.REJECT)

        queue = await repository.list_unprocessed_feedback()
        assert [item.id for item in queue] == [high.id, low.id]

        assert await collector.process_unprocessed() == 2
        assert await collector.process_unprocessed() == 0
        assert await repository.list_unprocessed_feedback() == []

    async def test_limit(self, parts, make_snapshot, settings):
        repository, snapshots, learner, _ = parts
        collector = FeedbackCollector(
            repository, snapshots, learner=learner, settings=settings.feedback,
            learn_immediately=False,
        )
        for i in range(3):
            await make_snapshot(email_id=f"email-{i}")
            await collector.collect("user-1", f"email-{i}", FeedbackType.CONFIRM)

        assert await collector.process_unprocessed(limit=2) == 2
        assert len(await repository.list_unprocessed_feedback()) == 1

    async def test_requires_learner(self, parts, settings):
        repository, snapshots, _, _ = parts
        collector = FeedbackCollector(repository, snapshots, settings=settings.feedback)

        with pytest.raises(RuntimeError):
            await collector.process_unprocessed()


@pytest.mark.parametrize("confidence", [None, 1.2, -0.1, float("nan")])
def test_priority_rejects_invalid_confidence(confidence):
    with pytest.raises(ValueError):
        determine_feedback_priority(FeedbackType.CONFIRM, confidence, config.FeedbackSettings())
