# src/services/category_learning.py
"""
Category Learning - Negative Examples und User-Präferenzen.

- Manuelle Entscheidung widerspricht automatischer Zuordnung (confidence > 0.6):
  confidence = max(0.1, confidence - learning_rate), bleibt automatisch
- Präferenz pro (User, Kategorie): clamp(0, 1, pref + delta)
"""

from __future__ import annotations

import importlib
import logging
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.helpers.keyed_lock import KeyedLock
from src.helpers.validation import clamp_unit

models = importlib.import_module(".02_models", "src")
config = importlib.import_module(".01_config", "src")

logger = logging.getLogger(__name__)


def decay_confidence(confidence: float, learning_rate: float, floor: float) -> float:
    """Ein Decay-Schritt, nie unter floor"""
    return max(floor, confidence - learning_rate)


class CategoryLearner:
    def __init__(self, session_factory: async_sessionmaker, matcher, settings=None):
        self._session_factory = session_factory
        self.matcher = matcher
        self.settings = settings or config.get_settings().learning
        self._preference_locks = KeyedLock("category_preference")

    async def decay_conflicting_assignments(
        self, newsletter_id: str, manual_category_id: str
    ) -> List[models.CategoryAssignment]:
        """
        Dämpft automatische Zuordnungen desselben Newsletters zu anderen
        Kategorien, deren confidence über dem Konflikt-Schwellwert liegt.

        Returns:
            Die gedämpften Zuordnungen
        """
        decayed = []
        for assignment in await self.matcher.get_categories_for_newsletter(newsletter_id):
            if assignment.category_id == manual_category_id or assignment.is_manual:
                continue
            if assignment.confidence <= self.settings.conflict_confidence_threshold:
                continue

            new_confidence = decay_confidence(
                assignment.confidence,
                self.settings.learning_rate,
                self.settings.min_decayed_confidence,
            )
            updated = await self.matcher.update_assignment_confidence(
                newsletter_id, assignment.category_id, new_confidence
            )
            if updated is not None:
                decayed.append(updated)
                logger.debug(
                    f"Negative Example: {newsletter_id} → {assignment.category_id} "
                    f"{assignment.confidence:.2f} → {new_confidence:.2f}"
                )

        if decayed:
            logger.info(f"✅ {len(decayed)} widersprochene Zuordnungen gedämpft ({newsletter_id})")
        return decayed

    async def update_preference(self, user_id: str, category_id: str, delta: float) -> float:
        """
        Read-Modify-Write der Präferenz unter Per-User Lock.

        Returns:
            Neue Präferenz in [0, 1]
        """
        UserCategoryPreference = models.UserCategoryPreference
        async with self._preference_locks.hold(user_id):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(UserCategoryPreference).where(
                        UserCategoryPreference.user_id == user_id,
                        UserCategoryPreference.category_id == category_id,
                    )
                )
                preference = result.scalar_one_or_none()
                if preference is None:
                    preference = UserCategoryPreference(
                        user_id=user_id, category_id=category_id, score=0.0
                    )
                    session.add(preference)

                preference.score = clamp_unit((preference.score or 0.0) + delta)
                await session.commit()
                return preference.score

    async def get_preferences(self, user_id: str) -> Dict[str, float]:
        """category_id -> Präferenz"""
        UserCategoryPreference = models.UserCategoryPreference
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserCategoryPreference).where(UserCategoryPreference.user_id == user_id)
            )
            return {p.category_id: p.score for p in result.scalars().all()}
