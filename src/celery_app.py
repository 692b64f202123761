# src/celery_app.py
"""Celery Application für periodische Feedback-Jobs.

INHALT:
- Redis als Message Broker / Result Backend
- Beat-Schedule: Expiry-Sweep (stündlich), Feedback-Queue (5 Min),
  personalisiertes Training (nachts)
- Auto-discovery von Tasks in src/tasks/

VERWENDUNG:
    celery -A src.celery_app worker --loglevel=info
    celery -A src.celery_app beat --loglevel=info
"""

import os
from pathlib import Path

from celery import Celery
from celery.schedules import crontab
from dotenv import load_dotenv

# Load .env.local first (priority), then .env (fallback)
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env.local", override=True)
load_dotenv(project_root / ".env", override=False)

celery_app = Celery(
    "newsletter_feedback",
    broker=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/2"),
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Europe/Berlin",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=15 * 60,
    task_soft_time_limit=12 * 60,
    worker_prefetch_multiplier=1,
    beat_schedule={
        "expire-verification-requests": {
            "task": "tasks.feedback.expire_verification_requests",
            "schedule": crontab(minute=0),
        },
        "process-feedback-queue": {
            "task": "tasks.feedback.process_feedback_queue",
            "schedule": 5 * 60,
        },
        "train-personalized-models": {
            "task": "tasks.feedback.train_personalized_models",
            "schedule": crontab(hour=3, minute=30),
        },
    },
)

celery_app.autodiscover_tasks(["src.tasks"])


if __name__ == "__main__":
    celery_app.start()
