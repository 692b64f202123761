"""Unit Tests für FeedbackRepository und DetectionSnapshotStore

Tests für src/services/feedback_repository.py und detection_snapshots.py
"""

import importlib
from datetime import timedelta

import pytest

from src.helpers.errors import NotFoundError
from src.services.detection_snapshots import DetectionSnapshotStore
from src.services.feedback_repository import FeedbackRepository

models = importlib.import_module("src.02_models")

FeedbackType = models.FeedbackType
Priority = models.FeedbackPriority


def _item(user_id="user-1", feedback_type=FeedbackType.CONFIRM, priority=Priority.MEDIUM, minutes_ago=0):
    return models.FeedbackItem(
        id=models.new_id(),
        user_id=user_id,
        email_id=f"email-{models.new_id()}",
        sender="news@example.com",
        sender_domain="example.com",
        type=feedback_type.value,
        priority=priority.value,
        detection_result=True,
        confidence=0.5,
        features={},
        timestamp=models.utcnow() - timedelta(minutes=minutes_ago),
    )


@pytest.fixture
def repository(session_factory):
    return FeedbackRepository(session_factory)


class TestFeedbackItems:
    """Tests für FeedbackItem-Persistenz"""

    async def test_list_newest_first(self, repository):
        old = await repository.save_feedback(_item(minutes_ago=10))
        new = await repository.save_feedback(_item(minutes_ago=1))

        items = await repository.list_feedback(user_id="user-1")

        assert [i.id for i in items] == [new.id, old.id]

    async def test_filters(self, repository):
        await repository.save_feedback(_item(feedback_type=FeedbackType.CONFIRM))
        await repository.save_feedback(_item(feedback_type=FeedbackType.IGNORE))
        await repository.save_feedback(_item(user_id="user-2"))

        confirms = await repository.list_feedback(user_id="user-1", types=[FeedbackType.CONFIRM])
        assert len(confirms) == 1
        assert len(await repository.list_feedback(sender_domain="example.com")) == 3
        assert len(await repository.list_feedback(limit=2)) == 2

    async def test_unprocessed_order(self, repository):
        low = await repository.save_feedback(_item(priority=Priority.LOW, minutes_ago=30))
        medium_old = await repository.save_feedback(_item(priority=Priority.MEDIUM, minutes_ago=20))
        medium_new = await repository.save_feedback(_item(priority=Priority.MEDIUM, minutes_ago=5))
        high = await repository.save_feedback(_item(priority=Priority.HIGH, minutes_ago=1))

        queue = await repository.list_unprocessed_feedback()

        assert [i.id for i in queue] == [high.id, medium_old.id, medium_new.id, low.id]

    async def test_mark_processed(self, repository):
        item = await repository.save_feedback(_item())

        marked = await repository.mark_feedback_processed(item.id)

        assert marked.processed is True
        assert marked.processed_at is not None
        assert await repository.list_feedback(processed=False) == []

    async def test_claim_only_once(self, repository):
        item = await repository.save_feedback(_item())

        assert await repository.claim_feedback(item.id) is True
        assert await repository.claim_feedback(item.id) is False
        assert (await repository.get_feedback(item.id)).processed_at is not None

        await repository.release_feedback_claim(item.id)

        assert (await repository.get_feedback(item.id)).processed is False
        assert await repository.claim_feedback(item.id) is True

    async def test_claim_unknown(self, repository):
        assert await repository.claim_feedback("missing") is False

    async def test_mark_unknown(self, repository):
        with pytest.raises(NotFoundError):
            await repository.mark_feedback_processed("missing")

    async def test_count_by_user(self, repository):
        for _ in range(3):
            await repository.save_feedback(_item(user_id="user-1"))
        await repository.save_feedback(_item(user_id="user-2"))

        assert await repository.count_feedback_by_user() == {"user-1": 3, "user-2": 1}
        assert await repository.count_feedback_by_user(min_count=2) == {"user-1": 3}


class TestVerificationRequests:
    """Tests für VerificationRequest-Persistenz"""

    def _request(self, user_id="user-1", expires_in=timedelta(days=7)):
        now = models.utcnow()
        return models.VerificationRequest(
            id=models.new_id(),
            user_id=user_id,
            email_id="email-1",
            status=models.VerificationStatus.PENDING.value,
            token=models.new_id(),
            generated_at=now,
            expires_at=now + expires_in,
        )

    async def test_update_status_sets_response(self, repository):
        request = await repository.save_verification_request(self._request())

        updated = await repository.update_verification_request_status(
            request.id, models.VerificationStatus.CONFIRMED, "reject"
        )

        assert updated.status == "confirmed"
        assert updated.user_response == "reject"
        assert updated.responded_at is not None

    async def test_update_unknown(self, repository):
        with pytest.raises(NotFoundError):
            await repository.update_verification_request_status(
                "missing", models.VerificationStatus.CANCELED
            )

    async def test_lookup_by_token(self, repository):
        request = await repository.save_verification_request(self._request())

        found = await repository.get_verification_request_by_token(request.token)

        assert found.id == request.id
        assert await repository.get_verification_request_by_token("nope") is None

    async def test_expired_listing(self, repository):
        overdue = await repository.save_verification_request(
            self._request(expires_in=timedelta(hours=-1))
        )
        await repository.save_verification_request(self._request())

        expired = await repository.list_expired_verification_requests()

        assert [r.id for r in expired] == [overdue.id]
        assert expired[0].expires_at.tzinfo is not None


class TestDetectionSnapshots:
    """Tests für DetectionSnapshotStore"""

    async def test_upsert(self, session_factory, newsletter_email):
        store = DetectionSnapshotStore(session_factory)
        first = models.DetectionResult(combined_score=0.5, is_newsletter=True, needs_verification=True)
        second = models.DetectionResult(combined_score=0.9, is_newsletter=True, needs_verification=False)

        await store.save_snapshot(newsletter_email, first)
        await store.save_snapshot(newsletter_email, second)

        snapshot = await store.get_snapshot("user-1", "email-1")
        assert snapshot.combined_score == pytest.approx(0.9)
        assert snapshot.needs_verification is False
        assert snapshot.sender == "newsletter@example.com"

    async def test_requires_user(self, session_factory, make_email):
        store = DetectionSnapshotStore(session_factory)
        result = models.DetectionResult(combined_score=0.5, is_newsletter=True, needs_verification=True)

        with pytest.raises(ValueError):
            await store.save_snapshot(make_email(user_id=None), result)
