"""
Newsletter Feedback Learning - Konfiguration
Lädt Schwellwerte und Lern-Parameter aus der Umgebung (.env.local, dann .env)

Die Schwellwerte sind handkalibriert. Semantik nicht ohne Produkt-Entscheidung ändern.
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# Load .env.local first (priority), then .env (fallback)
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env.local", override=True)
load_dotenv(project_root / ".env", override=False)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///newsletters.db"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} muss eine Zahl sein (ist: {raw!r})")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} muss eine ganze Zahl sein (ist: {raw!r})")


@dataclass(frozen=True)
class DetectionSettings:
    """Entscheidungs-Bänder des Aggregators"""

    newsletter_threshold: float = 0.7
    not_newsletter_threshold: float = 0.3
    best_guess_threshold: float = 0.5
    # User-Feedback mit höherer Confidence hebt die Verifikation auf
    feedback_override_confidence: float = 0.9


@dataclass(frozen=True)
class FeedbackSettings:
    """Prioritäts-Regeln und Verifikations-Workflow"""

    # Feedback widerspricht einer fast sicheren Entscheidung
    contradiction_high_confidence: float = 0.8
    contradiction_low_confidence: float = 0.2
    # Grenzfall-Band für CONFIRM/REJECT
    borderline_low: float = 0.4
    borderline_high: float = 0.6

    verification_ttl_days: int = 7
    max_resend_count: int = 3
    verification_base_url: str = "http://localhost:5000/verify"


@dataclass(frozen=True)
class LearningSettings:
    """Reputation, Feature-Gewichte und Kategorie-Lernen"""

    learning_rate: float = 0.1
    conflict_confidence_threshold: float = 0.6
    min_decayed_confidence: float = 0.1
    assign_preference_delta: float = 1.0
    remove_preference_delta: float = -0.5
    category_confidence_threshold: float = 0.4
    min_feedback_for_training: int = 10
    feature_learning_rate: float = 0.1
    high_impact_weight: float = 0.8
    weight_cache_ttl: int = 300


@dataclass(frozen=True)
class Settings:
    detection: DetectionSettings = field(default_factory=DetectionSettings)
    feedback: FeedbackSettings = field(default_factory=FeedbackSettings)
    learning: LearningSettings = field(default_factory=LearningSettings)
    database_url: str = DEFAULT_DATABASE_URL


def load_settings() -> Settings:
    """Baut Settings aus den Umgebungsvariablen (ohne Cache)"""
    detection = DetectionSettings(
        newsletter_threshold=_env_float("NEWSLETTER_THRESHOLD", 0.7),
        not_newsletter_threshold=_env_float("NOT_NEWSLETTER_THRESHOLD", 0.3),
        best_guess_threshold=_env_float("BEST_GUESS_THRESHOLD", 0.5),
    )
    feedback = FeedbackSettings(
        contradiction_high_confidence=_env_float("FEEDBACK_HIGH_CONFIDENCE", 0.8),
        contradiction_low_confidence=_env_float("FEEDBACK_LOW_CONFIDENCE", 0.2),
        borderline_low=_env_float("FEEDBACK_BORDERLINE_LOW", 0.4),
        borderline_high=_env_float("FEEDBACK_BORDERLINE_HIGH", 0.6),
        verification_ttl_days=_env_int("VERIFICATION_TTL_DAYS", 7),
        max_resend_count=_env_int("VERIFICATION_MAX_RESEND", 3),
        verification_base_url=os.getenv(
            "VERIFICATION_BASE_URL", "http://localhost:5000/verify"
        ),
    )
    learning = LearningSettings(
        learning_rate=_env_float("LEARNING_RATE", 0.1),
        conflict_confidence_threshold=_env_float("CONFLICT_CONFIDENCE_THRESHOLD", 0.6),
        category_confidence_threshold=_env_float("CATEGORY_THRESHOLD", 0.4),
        min_feedback_for_training=_env_int("MIN_FEEDBACK_FOR_TRAINING", 10),
        feature_learning_rate=_env_float("FEATURE_LEARNING_RATE", 0.1),
    )
    return Settings(
        detection=detection,
        feedback=feedback,
        learning=learning,
        database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings-Singleton. Tests rufen get_settings.cache_clear() auf."""
    return load_settings()
