# src/services/reputation_learner.py
"""
Reputation/Weight Learner - Lernen aus Newsletter-Feedback.

Implementiert:
- Sender-/Domain-Reputation (gewichtete Newsletter/Nicht-Newsletter Zähler)
- Feedback-Gewichtung (Typ + Widerspruch zur vorherigen Entscheidung)
- Analyzer-Gewichte global und pro User (TTL-Cache, 5 Min)
- Personalisiertes Training der Analyzer-Gewichte (SGDClassifier)

Alle Read-Modify-Write Updates laufen unter einem Per-Key Lock
(sender/domain bzw. user+method), damit parallele Requests keine Updates verlieren.
"""

from __future__ import annotations

import importlib
import logging
import threading
from typing import Dict, List, Optional

import numpy as np
from cachetools import TTLCache
from sklearn.linear_model import SGDClassifier
from sklearn.preprocessing import StandardScaler
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from src import known_newsletters
from src.helpers.keyed_lock import KeyedLock
from src.helpers.validation import clamp_unit, normalize_email_address

models = importlib.import_module(".02_models", "src")
config = importlib.import_module(".01_config", "src")
scoring = importlib.import_module(".05_scoring", "src")

logger = logging.getLogger(__name__)

FeedbackType = models.FeedbackType


# =============================================================================
# CONSTANTS
# =============================================================================

SENDER = "sender"
DOMAIN = "domain"

FEEDBACK_TYPE_WEIGHTS: Dict[FeedbackType, float] = {
    FeedbackType.CONFIRM: 1.0,
    FeedbackType.REJECT: 1.0,
    FeedbackType.VERIFY: 0.8,
    FeedbackType.UNCERTAIN: 0.3,
    FeedbackType.IGNORE: 0.1,
}

# Nur diese Typen tragen ein Label (Newsletter ja/nein)
LABELLED_TYPES = {FeedbackType.CONFIRM: True, FeedbackType.REJECT: False}

CONTRADICTION_MULTIPLIER = 2.0
BORDERLINE_MULTIPLIER = 0.5

KNOWN_PROVIDER_SCORE = 0.8
NEUTRAL_REPUTATION = 0.5
PROVIDER_MIN_EVIDENCE = 5
PROVIDER_MIN_RATIO = 0.6

CACHE_MAX_SIZE = 1000


class ReputationLearner:
    """Persistente Reputation + Analyzer-Gewichte mit Per-Key Locks"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        feedback_repository=None,
        settings=None,
    ):
        settings = settings or config.get_settings()
        self._session_factory = session_factory
        self._feedback_repository = feedback_repository
        self.learning = settings.learning
        self.feedback = settings.feedback

        self._reputation_locks = KeyedLock("reputation")
        self._weight_locks = KeyedLock("feature_weights")

        self._weight_cache: TTLCache = TTLCache(
            maxsize=CACHE_MAX_SIZE, ttl=self.learning.weight_cache_ttl
        )
        self._cache_lock = threading.Lock()

    # =========================================================================
    # REPUTATION (lesen)
    # =========================================================================

    async def get_reputation(
        self, entity_type: str, entity: str
    ) -> Optional[models.ReputationEntry]:
        if not entity:
            return None
        ReputationEntry = models.ReputationEntry
        async with self._session_factory() as session:
            result = await session.execute(
                select(ReputationEntry).where(
                    ReputationEntry.entity_type == entity_type,
                    ReputationEntry.entity == entity.lower(),
                )
            )
            return result.scalar_one_or_none()

    async def get_domain_score(self, domain: str) -> float:
        """Bekannter Provider 0.8, sonst Domain-Quote, sonst 0.5"""
        if known_newsletters.is_known_newsletter_provider(domain):
            return KNOWN_PROVIDER_SCORE

        entry = await self.get_reputation(DOMAIN, domain)
        if entry is not None and entry.total > 0:
            return entry.score
        return NEUTRAL_REPUTATION

    async def get_sender_score(self, sender: str) -> float:
        """Sender-Quote, Fallback auf Domain-Score"""
        entry = await self.get_reputation(SENDER, sender)
        if entry is not None and entry.total > 0:
            return entry.score
        return await self.get_domain_score(known_newsletters.extract_domain(sender))

    async def is_domain_newsletter_provider(self, domain: str) -> bool:
        if known_newsletters.is_known_newsletter_provider(domain):
            return True
        entry = await self.get_reputation(DOMAIN, domain)
        if entry is None:
            return False
        return entry.total >= PROVIDER_MIN_EVIDENCE and entry.score > PROVIDER_MIN_RATIO

    # =========================================================================
    # REPUTATION (schreiben)
    # =========================================================================

    async def _update_reputation(
        self, entity_type: str, entity: str, is_newsletter: bool, weight: float
    ) -> models.ReputationEntry:
        entity = entity.lower()
        ReputationEntry = models.ReputationEntry

        async with self._reputation_locks.hold(f"{entity_type}:{entity}"):
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ReputationEntry).where(
                        ReputationEntry.entity_type == entity_type,
                        ReputationEntry.entity == entity,
                    )
                )
                entry = result.scalar_one_or_none()
                if entry is None:
                    entry = ReputationEntry(
                        entity_type=entity_type,
                        entity=entity,
                        newsletter_weight=0.0,
                        non_newsletter_weight=0.0,
                        feedback_count=0,
                    )
                    session.add(entry)

                if is_newsletter:
                    entry.newsletter_weight += weight
                else:
                    entry.non_newsletter_weight += weight
                entry.feedback_count += 1

                await session.commit()
                return entry

    async def update_sender_reputation(
        self, sender: str, is_newsletter: bool, weight: float = 1.0
    ) -> models.ReputationEntry:
        address = normalize_email_address(sender)
        if not address:
            raise ValueError(f"Ungültige Sender-Adresse: {sender!r}")
        sender = address
        return await self._update_reputation(SENDER, sender, is_newsletter, weight)

    async def update_domain_reputation(
        self, domain: str, is_newsletter: bool, weight: float = 1.0
    ) -> models.ReputationEntry:
        return await self._update_reputation(DOMAIN, domain, is_newsletter, weight)

    async def seed_known_senders(self) -> int:
        """Legt Start-Reputation für bekannte Newsletter-Sender an (idempotent)"""
        created = 0
        for sender in known_newsletters.SEED_NEWSLETTER_SENDERS:
            if await self.get_reputation(SENDER, sender) is not None:
                continue
            async with self._reputation_locks.hold(f"{SENDER}:{sender}"):
                async with self._session_factory() as session:
                    session.add(
                        models.ReputationEntry(
                            entity_type=SENDER,
                            entity=sender,
                            newsletter_weight=known_newsletters.SEED_SENDER_WEIGHT,
                            non_newsletter_weight=0.0,
                            feedback_count=0,
                        )
                    )
                    await session.commit()
            created += 1

        logger.info(f"✅ {created} bekannte Newsletter-Sender geseedet")
        return created

    # =========================================================================
    # FEEDBACK ANWENDEN
    # =========================================================================

    def calculate_feedback_weight(self, item: models.FeedbackItem) -> float:
        """
        Gewicht eines Feedback-Items für das Lernen.

        Widerspruch zu einer fast sicheren Entscheidung zählt doppelt,
        Feedback zu Grenzfällen halb.
        """
        feedback_type = FeedbackType(item.type)
        weight = FEEDBACK_TYPE_WEIGHTS[feedback_type]
        confidence = item.confidence

        contradicts = (item.detection_result and feedback_type == FeedbackType.REJECT) or (
            not item.detection_result and feedback_type == FeedbackType.CONFIRM
        )
        near_certain = (
            confidence > self.feedback.contradiction_high_confidence
            or confidence < self.feedback.contradiction_low_confidence
        )

        if contradicts and near_certain:
            weight *= CONTRADICTION_MULTIPLIER
        elif self.feedback.borderline_low <= confidence <= self.feedback.borderline_high:
            weight *= BORDERLINE_MULTIPLIER

        return weight

    async def apply_feedback(self, item: models.FeedbackItem) -> bool:
        """
        Wendet ein Feedback-Item an und markiert es als verarbeitet.

        Returns:
            False wenn das Item schon verarbeitet war oder ein anderer Lauf
            es übernommen hat
        """
        if item.processed:
            logger.debug(f"Feedback {item.id} bereits verarbeitet")
            return False

        # Sofort-Lernen und Queue-Lauf können dasselbe Item geladen haben
        repository = self._feedback_repository
        if repository is not None and not await repository.claim_feedback(item.id):
            logger.debug(f"Feedback {item.id} wird bereits von einem anderen Lauf verarbeitet")
            item.processed = True
            return False
        item.processed = True

        feedback_type = FeedbackType(item.type)
        weight = self.calculate_feedback_weight(item)

        try:
            await self._learn_from(item, feedback_type, weight)
        except SQLAlchemyError:
            if repository is not None:
                await repository.release_feedback_claim(item.id)
            item.processed = False
            raise

        logger.info(
            f"✅ Feedback angewendet: {item.id} ({feedback_type.value}, weight={weight:.2f})"
        )
        return True

    async def _learn_from(self, item, feedback_type: FeedbackType, weight: float) -> None:
        if feedback_type not in LABELLED_TYPES:
            return

        is_newsletter = LABELLED_TYPES[feedback_type]
        if normalize_email_address(item.sender):
            await self.update_sender_reputation(item.sender, is_newsletter, weight)
        if item.sender_domain:
            await self.update_domain_reputation(item.sender_domain, is_newsletter, weight)

        if weight > self.learning.high_impact_weight:
            direction = 1.0 if is_newsletter else -1.0
            await self._adjust_from_features(item.user_id, item.features or {}, direction, weight)

    async def _adjust_from_features(
        self, user_id: str, features: Dict[str, float], direction: float, weight: float
    ) -> None:
        for method, value in features.items():
            delta = direction * weight * float(value) * self.learning.feature_learning_rate
            if delta:
                await self.adjust_feature_weight(method, delta, user_id=user_id)

    # =========================================================================
    # ANALYZER-GEWICHTE
    # =========================================================================

    def _invalidate_weights(self, user_id: Optional[str] = None) -> None:
        with self._cache_lock:
            if user_id is None or user_id == models.GLOBAL_SCOPE:
                self._weight_cache.clear()
            else:
                self._weight_cache.pop(user_id, None)

    async def get_feature_weights(self, user_id: Optional[str] = None) -> Dict[str, float]:
        """
        Effektive Gewichte: Defaults < global < User.

        Args:
            user_id: None für nur globale Gewichte

        Returns:
            method -> Gewicht
        """
        cache_key = user_id or models.GLOBAL_SCOPE
        with self._cache_lock:
            cached = self._weight_cache.get(cache_key)
        if cached is not None:
            return dict(cached)

        scopes = [models.GLOBAL_SCOPE]
        if user_id:
            scopes.append(user_id)

        FeatureWeight = models.FeatureWeight
        async with self._session_factory() as session:
            result = await session.execute(
                select(FeatureWeight).where(FeatureWeight.user_id.in_(scopes))
            )
            rows = list(result.scalars().all())

        weights = dict(scoring.DEFAULT_METHOD_WEIGHTS)
        for row in rows:
            if row.user_id == models.GLOBAL_SCOPE:
                weights[row.method] = row.weight
        for row in rows:
            if row.user_id != models.GLOBAL_SCOPE:
                weights[row.method] = row.weight

        with self._cache_lock:
            self._weight_cache[cache_key] = dict(weights)
        return weights

    async def _write_weight(self, session, user_id: str, method: str, weight: float):
        FeatureWeight = models.FeatureWeight
        result = await session.execute(
            select(FeatureWeight).where(
                FeatureWeight.user_id == user_id, FeatureWeight.method == method
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = FeatureWeight(user_id=user_id, method=method, weight=weight)
            session.add(row)
        else:
            row.weight = weight
        return row

    async def set_feature_weight(
        self, method: str, weight: float, user_id: Optional[str] = None
    ) -> float:
        scope = user_id or models.GLOBAL_SCOPE
        method = getattr(method, "value", method)
        weight = clamp_unit(weight)

        async with self._weight_locks.hold((scope, method)):
            async with self._session_factory() as session:
                await self._write_weight(session, scope, method, weight)
                await session.commit()

        self._invalidate_weights(scope)
        return weight

    async def adjust_feature_weight(
        self, method: str, delta: float, user_id: Optional[str] = None
    ) -> float:
        """Addiert delta auf das effektive Gewicht und speichert es im User-Scope"""
        scope = user_id or models.GLOBAL_SCOPE
        method = getattr(method, "value", method)

        async with self._weight_locks.hold((scope, method)):
            self._invalidate_weights(scope)
            current = (await self.get_feature_weights(user_id)).get(method, 0.0)
            new_weight = clamp_unit(current + delta)
            async with self._session_factory() as session:
                await self._write_weight(session, scope, method, new_weight)
                await session.commit()

        self._invalidate_weights(scope)
        logger.debug(f"Gewicht {method} ({scope}): {current:.3f} → {new_weight:.3f}")
        return new_weight

    # =========================================================================
    # PERSONALISIERTES TRAINING
    # =========================================================================

    async def train_personalized_model(self, user_id: str) -> bool:
        """
        Trainiert User-Gewichte aus gelabeltem Feedback (CONFIRM/REJECT).

        Positive Koeffizienten eines logistischen SGDClassifier werden
        normalisiert und als User-Gewichte gespeichert.

        Returns:
            False bei zu wenig Daten oder nur einer Klasse
        """
        if self._feedback_repository is None:
            raise RuntimeError("train_personalized_model benötigt ein FeedbackRepository")

        items = await self._feedback_repository.list_feedback(
            user_id=user_id, types=list(LABELLED_TYPES)
        )
        if len(items) < self.learning.min_feedback_for_training:
            logger.info(
                f"⚠️ Zu wenig Feedback für Training: user={user_id}, "
                f"{len(items)}/{self.learning.min_feedback_for_training}"
            )
            return False

        methods: List[str] = list(scoring.DEFAULT_METHOD_WEIGHTS)
        X = np.array(
            [[float((item.features or {}).get(m, 0.0)) for m in methods] for item in items]
        )
        y = np.array([1 if FeedbackType(item.type) == FeedbackType.CONFIRM else 0 for item in items])

        if len(set(y.tolist())) < 2:
            logger.info(f"⚠️ Training übersprungen: nur eine Klasse für user={user_id}")
            return False

        X_scaled = StandardScaler().fit_transform(X)
        clf = SGDClassifier(loss="log_loss", max_iter=1000, tol=1e-3, random_state=42)
        clf.fit(X_scaled, y)

        positive = np.clip(clf.coef_[0], 0.0, None)
        total = float(positive.sum())
        if total <= 0.0:
            logger.info(f"⚠️ Training ohne positive Signale: user={user_id}")
            return False

        normalized = positive / total
        for method, weight in zip(methods, normalized):
            await self.set_feature_weight(method, float(weight), user_id=user_id)

        logger.info(
            f"✅ Personalisierte Gewichte für user={user_id}: "
            + ", ".join(f"{m}={w:.2f}" for m, w in zip(methods, normalized))
        )
        return True
