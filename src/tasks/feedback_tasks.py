"""
Celery Tasks: Feedback-Lernschleife

Tasks:
- expire_verification_requests: Expiry-Sweep für offene Verifikations-Anfragen
- process_feedback_queue: wendet unverarbeitetes Feedback an (HIGH zuerst)
- train_personalized_models: trainiert User-Gewichte aus gelabeltem Feedback

Die Services sind async. Jeder Task-Lauf bekommt einen eigenen Event-Loop
(asyncio.run) und eine eigene Engine, die danach geschlossen wird.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from celery import Task
from celery.exceptions import Reject
from sqlalchemy.exc import SQLAlchemyError

from src.celery_app import celery_app
from src.helpers.database import create_session_factory, init_models
from src.services.feedback_service import FeedbackService, build_feedback_service

logger = logging.getLogger(__name__)


class BaseFeedbackTask(Task):
    """Base Task für Feedback-Operationen"""

    autoretry_for = (SQLAlchemyError,)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True
    retry_backoff_max = 600  # 10 minutes
    retry_jitter = True


async def _run_async(operation: Callable[[FeedbackService], Awaitable[Any]]) -> Any:
    engine, session_factory = create_session_factory()
    try:
        await init_models(engine)
        service = build_feedback_service(session_factory, learn_immediately=False)
        return await operation(service)
    finally:
        await engine.dispose()


def run_with_service(operation: Callable[[FeedbackService], Awaitable[Any]]) -> Any:
    """Führt operation(service) in einem eigenen Event-Loop aus"""
    return asyncio.run(_run_async(operation))


@celery_app.task(
    bind=True,
    base=BaseFeedbackTask,
    name="tasks.feedback.expire_verification_requests",
    acks_late=True,
    reject_on_worker_lost=True,
    time_limit=300,
    soft_time_limit=240,
)
def expire_verification_requests(self) -> Dict[str, Any]:
    """
    Stellt abgelaufene PENDING-Anfragen auf EXPIRED.

    Returns:
        {"expired": int}
    """
    logger.info(f"🚀 [Task {self.request.id}] Expiry-Sweep gestartet")

    expired = run_with_service(lambda service: service.process_expired_requests())

    logger.info(f"✅ [Task {self.request.id}] {expired} Anfragen abgelaufen")
    return {"expired": expired}


@celery_app.task(
    bind=True,
    base=BaseFeedbackTask,
    name="tasks.feedback.process_feedback_queue",
    acks_late=True,
    reject_on_worker_lost=True,
    time_limit=600,
    soft_time_limit=540,
)
def process_feedback_queue(self, limit: int = 100) -> Dict[str, Any]:
    """
    Wendet unverarbeitetes Feedback an (Reputation + Gewichte).

    Args:
        limit: Max. Anzahl Items pro Lauf

    Returns:
        {"applied": int, "limit": int}

    Raises:
        Reject: Bei ungültigen Parametern
    """
    if not isinstance(limit, int) or limit < 1:
        raise Reject(f"Invalid parameter: limit must be a positive integer ({limit!r})", requeue=False)

    logger.info(f"🚀 [Task {self.request.id}] Feedback-Queue: limit={limit}")

    applied = run_with_service(lambda service: service.process_feedback_queue(limit))

    logger.info(f"✅ [Task {self.request.id}] {applied} Feedback-Items angewendet")
    return {"applied": applied, "limit": limit}


@celery_app.task(
    bind=True,
    base=BaseFeedbackTask,
    name="tasks.feedback.train_personalized_models",
    acks_late=True,
    reject_on_worker_lost=True,
    time_limit=1800,
    soft_time_limit=1700,
)
def train_personalized_models(self, user_ids: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Trainiert personalisierte Analyzer-Gewichte.

    Args:
        user_ids: Liste von User IDs (None = alle mit genug Feedback)

    Returns:
        {"trained": [...], "skipped": [...]}
    """
    if user_ids is not None and not isinstance(user_ids, (list, tuple)):
        raise Reject("Invalid parameter: user_ids must be a list", requeue=False)

    logger.info(f"🚀 [Task {self.request.id}] Personalisiertes Training: users={user_ids or 'alle'}")

    results = run_with_service(lambda service: service.train_personalized_models(user_ids))

    trained = sorted(user for user, ok in results.items() if ok)
    skipped = sorted(user for user, ok in results.items() if not ok)
    logger.info(
        f"✅ [Task {self.request.id}] Training: {len(trained)} trainiert, {len(skipped)} übersprungen"
    )
    return {"trained": trained, "skipped": skipped}
