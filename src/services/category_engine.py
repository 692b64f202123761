# src/services/category_engine.py
"""
Category Confidence Engine - Kategorien über Schwellwert, manuelle Overrides.
"""

from __future__ import annotations

import importlib
import logging
from typing import List

from src.helpers.errors import NotFoundError
from src.helpers.validation import clamp_unit, validate_identifier

models = importlib.import_module(".02_models", "src")
config = importlib.import_module(".01_config", "src")

logger = logging.getLogger(__name__)


class CategoryEngine:
    def __init__(self, category_manager, matcher, learner, settings=None):
        self.category_manager = category_manager
        self.matcher = matcher
        self.learner = learner
        self.settings = settings or config.get_settings().learning

    async def categorize(self, content: models.NewsletterContent) -> List[models.Category]:
        """
        Kategorien mit confidence >= threshold. Keine Kategorie ist ein gültiges Ergebnis.
        """
        candidates = await self.matcher.match_categories(content)
        categories = []
        for assignment in candidates:
            if assignment.confidence < self.settings.category_confidence_threshold:
                continue
            category = await self.category_manager.get_category(assignment.category_id)
            if category is not None:
                categories.append(category)

        logger.info(
            f"🔍 Newsletter {content.newsletter_id}: {len(categories)} Kategorien "
            f"({', '.join(c.name for c in categories) or '-'})"
        )
        return categories

    async def assign(
        self, newsletter_id: str, category_id: str, user_id: str
    ) -> models.CategoryAssignment:
        """
        Manuelle Zuordnung (confidence 1.0), Präferenz +1.0, Decay der Konkurrenz.

        Raises:
            NotFoundError: Kategorie unbekannt
        """
        newsletter_id = validate_identifier(newsletter_id, "newsletter_id")
        user_id = validate_identifier(user_id, "user_id")
        if await self.category_manager.get_category(category_id) is None:
            raise NotFoundError("Category", category_id)

        assignment = await self.matcher.add_category_assignment(
            newsletter_id, category_id, is_manual=True
        )
        await self.learner.update_preference(
            user_id, category_id, self.settings.assign_preference_delta
        )
        await self.learner.decay_conflicting_assignments(newsletter_id, category_id)

        logger.info(f"✅ Manuelle Zuordnung: {newsletter_id} → {category_id} (user={user_id})")
        return assignment

    async def remove_assignment(self, newsletter_id: str, category_id: str, user_id: str) -> bool:
        """Entfernt eine Zuordnung, Präferenz -0.5 (auch wenn keine existierte)"""
        removed = await self.matcher.remove_category_assignment(newsletter_id, category_id)
        await self.learner.update_preference(
            user_id, category_id, self.settings.remove_preference_delta
        )
        return removed

    async def link_newsletter_to_category(
        self, newsletter_id: str, category_id: str, confidence: float
    ) -> models.CategoryAssignment:
        """Automatische Verknüpfung mit vorgegebener Confidence"""
        if await self.category_manager.get_category(category_id) is None:
            raise NotFoundError("Category", category_id)
        return await self.matcher.add_category_assignment(
            newsletter_id, category_id, is_manual=False, confidence=clamp_unit(confidence)
        )

    async def get_categories_for_user(self, user_id: str) -> List[models.Category]:
        """Alle Kategorien, absteigend nach Präferenz (stabil: Erstellungsreihenfolge)"""
        categories = await self.category_manager.get_categories()
        preferences = await self.learner.get_preferences(user_id)
        return sorted(categories, key=lambda c: preferences.get(c.id, 0.0), reverse=True)
