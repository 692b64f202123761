# src/services/category_matcher.py
"""
CategoryMatcher - Keyword-Vektoren pro Kategorie + Zuordnungs-Speicher.

Relevanz = Cosine-Similarity zwischen Bag-of-Words des Newsletters und
dem Vektor der Kategorie (Name x5, Beschreibung/Keywords x1).
Manuelle Zuordnungen werden vom Matcher nie überschrieben.
"""

from __future__ import annotations

import importlib
import logging
import re
from collections import Counter
from typing import Dict, List, Optional

import numpy as np
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.helpers.keyed_lock import KeyedLock
from src.helpers.validation import clamp_unit

models = importlib.import_module(".02_models", "src")

logger = logging.getLogger(__name__)

NAME_TOKEN_WEIGHT = 5.0
TERM_TOKEN_WEIGHT = 1.0
TOPIC_REPEAT = 2
DEFAULT_AUTOMATIC_CONFIDENCE = 0.7
DEFAULT_MATCH_THRESHOLD = 0.4

_TOKEN = re.compile(r"[a-z0-9äöüß]+")
STOPWORDS = {
    "and", "the", "for", "with", "from", "this", "that", "news", "your", "our",
    "und", "der", "die", "das", "mit", "von", "für",
}


def tokenize(text: str) -> List[str]:
    return [t for t in _TOKEN.findall((text or "").lower()) if len(t) > 1 and t not in STOPWORDS]


def cosine_similarity(a: Dict[str, float], b: Dict[str, float]) -> float:
    """Cosine-Similarity zweier Sparse-Vektoren (numpy über gemeinsames Vokabular)"""
    if not a or not b:
        return 0.0
    vocab = sorted(set(a) | set(b))
    va = np.array([a.get(t, 0.0) for t in vocab])
    vb = np.array([b.get(t, 0.0) for t in vocab])
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def build_category_vector(category: models.Category) -> Dict[str, float]:
    vector: Dict[str, float] = {}
    for token in tokenize(category.name):
        vector[token] = NAME_TOKEN_WEIGHT
    terms = tokenize(category.description or "") + tokenize(" ".join(category.keywords or []))
    for token in terms:
        vector[token] = vector.get(token, 0.0) + TERM_TOKEN_WEIGHT
    return vector


def build_content_vector(content: models.NewsletterContent) -> Dict[str, float]:
    tokens = tokenize(content.title) + tokenize(content.text)
    for topic in content.topics:
        tokens.extend(tokenize(topic) * TOPIC_REPEAT)
    return {token: float(count) for token, count in Counter(tokens).items()}


class CategoryMatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        category_manager,
        threshold: float = DEFAULT_MATCH_THRESHOLD,
    ):
        self._session_factory = session_factory
        self.category_manager = category_manager
        self.threshold = threshold
        self._locks = KeyedLock("category_assignment")

    async def calculate_relevance_scores(
        self, content: models.NewsletterContent
    ) -> Dict[str, float]:
        """category_id -> Relevanz in [0, 1]"""
        content_vector = build_content_vector(content)
        scores = {}
        for category in await self.category_manager.get_categories():
            scores[category.id] = clamp_unit(
                cosine_similarity(content_vector, build_category_vector(category))
            )
        return scores

    async def match_categories(
        self, content: models.NewsletterContent
    ) -> List[models.CategoryAssignment]:
        """
        Bewertet alle Kategorien und speichert Kandidaten >= threshold als
        automatische Zuordnungen.
        Eine bestehende automatische Zuordnung wird nie angehoben, nur gesenkt.

        Returns:
            Kandidaten absteigend nach Confidence (manuelle Zuordnungen bleiben unberührt)
        """
        scores = await self.calculate_relevance_scores(content)
        candidates: List[models.CategoryAssignment] = []
        existing = {
            a.category_id: a
            for a in await self.get_categories_for_newsletter(content.newsletter_id)
        }

        for category_id, confidence in scores.items():
            if confidence < self.threshold:
                continue
            previous = existing.get(category_id)
            if previous is not None and not previous.is_manual:
                # Per Decay abgewertete Zuordnungen bleiben abgewertet
                confidence = min(confidence, previous.confidence)
            assignment = await self.add_category_assignment(
                content.newsletter_id, category_id, is_manual=False, confidence=confidence
            )
            candidates.append(assignment)

        candidates.sort(key=lambda a: a.confidence, reverse=True)
        logger.debug(
            f"🔍 {len(candidates)} Kategorie-Kandidaten für Newsletter {content.newsletter_id}"
        )
        return candidates

    async def add_category_assignment(
        self,
        newsletter_id: str,
        category_id: str,
        is_manual: bool = False,
        confidence: Optional[float] = None,
    ) -> models.CategoryAssignment:
        """
        Upsert einer Zuordnung (unique pro newsletter_id, category_id).

        Manuell: confidence immer 1.0. Automatisch: überschreibt keine
        manuelle Zuordnung, Default-Confidence 0.7.
        """
        if is_manual:
            confidence = 1.0
        elif confidence is None:
            confidence = DEFAULT_AUTOMATIC_CONFIDENCE
        confidence = clamp_unit(confidence)

        CategoryAssignment = models.CategoryAssignment
        async with self._locks.hold(newsletter_id):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CategoryAssignment).where(
                        CategoryAssignment.newsletter_id == newsletter_id,
                        CategoryAssignment.category_id == category_id,
                    )
                )
                assignment = result.scalar_one_or_none()

                if assignment is not None and assignment.is_manual and not is_manual:
                    return assignment

                if assignment is None:
                    assignment = CategoryAssignment(
                        newsletter_id=newsletter_id, category_id=category_id
                    )
                    session.add(assignment)

                assignment.confidence = confidence
                assignment.is_manual = is_manual
                assignment.assigned_at = models.utcnow()
                await session.commit()
                return assignment

    async def update_assignment_confidence(
        self, newsletter_id: str, category_id: str, confidence: float
    ) -> Optional[models.CategoryAssignment]:
        """Setzt nur die Confidence einer automatischen Zuordnung (für Decay)"""
        CategoryAssignment = models.CategoryAssignment
        async with self._locks.hold(newsletter_id):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CategoryAssignment).where(
                        CategoryAssignment.newsletter_id == newsletter_id,
                        CategoryAssignment.category_id == category_id,
                    )
                )
                assignment = result.scalar_one_or_none()
                if assignment is None or assignment.is_manual:
                    return None
                assignment.confidence = clamp_unit(confidence)
                assignment.assigned_at = models.utcnow()
                await session.commit()
                return assignment

    async def remove_category_assignment(self, newsletter_id: str, category_id: str) -> bool:
        CategoryAssignment = models.CategoryAssignment
        async with self._locks.hold(newsletter_id):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(CategoryAssignment).where(
                        CategoryAssignment.newsletter_id == newsletter_id,
                        CategoryAssignment.category_id == category_id,
                    )
                )
                assignment = result.scalar_one_or_none()
                if assignment is None:
                    return False
                await session.delete(assignment)
                await session.commit()
                return True

    async def get_categories_for_newsletter(
        self, newsletter_id: str
    ) -> List[models.CategoryAssignment]:
        CategoryAssignment = models.CategoryAssignment
        async with self._session_factory() as session:
            result = await session.execute(
                select(CategoryAssignment)
                .where(CategoryAssignment.newsletter_id == newsletter_id)
                .order_by(CategoryAssignment.confidence.desc())
            )
            return list(result.scalars().all())

    async def get_newsletters_for_category(
        self, category_id: str, min_confidence: float = DEFAULT_MATCH_THRESHOLD
    ) -> List[models.CategoryAssignment]:
        CategoryAssignment = models.CategoryAssignment
        async with self._session_factory() as session:
            result = await session.execute(
                select(CategoryAssignment)
                .where(
                    CategoryAssignment.category_id == category_id,
                    CategoryAssignment.confidence >= min_confidence,
                )
                .order_by(CategoryAssignment.confidence.desc())
            )
            return list(result.scalars().all())
