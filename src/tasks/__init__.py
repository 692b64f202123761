# src/tasks/__init__.py
"""Celery Tasks - periodische Jobs der Feedback-Lernschleife.

Tasks sind dünne Wrapper um FeedbackService (src/services/feedback_service.py):
Session/Engine-Management und Fehlerbehandlung hier, Business-Logik im Service.

Auto-discovered durch celery_app.autodiscover_tasks() in celery_app.py
"""

from src.tasks.feedback_tasks import (
    expire_verification_requests,
    process_feedback_queue,
    train_personalized_models,
)

__all__ = [
    "expire_verification_requests",
    "process_feedback_queue",
    "train_personalized_models",
]
