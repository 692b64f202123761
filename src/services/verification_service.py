# src/services/verification_service.py
"""
Verification Workflow - Rückfragen an den User für unsichere Erkennungen.

Zustände (nur vorwärts):
    PENDING → CONFIRMED | REJECTED | EXPIRED | CANCELED

- generate: neue Anfrage oder bestehende PENDING-Anfrage erneut senden
- respond: Antwort per Token, leitet Feedback an den Collector weiter
- cancel: erzwingt CANCELED, liefert False bei Repository-Fehlern
- expire_overdue: PENDING-Anfragen nach expires_at → EXPIRED

Alle Übergänge laufen unter einem Lock pro request_id.
"""

from __future__ import annotations

import importlib
import logging
import secrets
from datetime import timedelta
from typing import Dict, List, Optional
from urllib.parse import urlencode

from sqlalchemy.exc import SQLAlchemyError

from src.helpers.errors import (
    NotFoundError,
    StateConflictError,
    VerificationExpiredError,
)
from src.helpers.keyed_lock import KeyedLock
from src.helpers.validation import clamp_unit, validate_identifier

models = importlib.import_module(".02_models", "src")
config = importlib.import_module(".01_config", "src")

logger = logging.getLogger(__name__)

VerificationStatus = models.VerificationStatus
FeedbackType = models.FeedbackType

TOKEN_BYTES = 32


class VerificationService:
    def __init__(self, repository, snapshot_store=None, settings=None):
        self.repository = repository
        self.snapshot_store = snapshot_store
        self.settings = settings or config.get_settings().feedback
        self._request_locks = KeyedLock("verification_request")
        self._generate_locks = KeyedLock("verification_generate")
        self._collector = None

    def bind_collector(self, collector) -> None:
        """Collector für weitergeleitete Antworten (zirkuläre Abhängigkeit)"""
        self._collector = collector

    def _ttl(self) -> timedelta:
        return timedelta(days=self.settings.verification_ttl_days)

    # =========================================================================
    # GENERATE / RESEND
    # =========================================================================

    async def _find_pending(self, user_id: str, email_id: str):
        for request in await self.repository.list_pending_verification_requests(user_id):
            if request.email_id == email_id:
                return request
        return None

    async def generate(
        self, user_id: str, email_id: str, confidence: float
    ) -> models.VerificationRequest:
        """
        Erstellt eine Verifikations-Anfrage oder sendet die offene erneut.

        Args:
            user_id: User ID
            email_id: Email ID
            confidence: kombinierter Score der Erkennung

        Returns:
            VerificationRequest (bei bestehender PENDING-Anfrage dieselbe ID)
        """
        user_id = validate_identifier(user_id, "user_id")
        email_id = validate_identifier(email_id, "email_id")

        async with self._generate_locks.hold((user_id, email_id)):
            existing = await self._find_pending(user_id, email_id)
            if existing is not None:
                async with self._request_locks.hold(existing.id):
                    refreshed = await self._refresh(existing)
                if refreshed is not None:
                    return refreshed

            now = models.utcnow()
            request = models.VerificationRequest(
                id=models.new_id(),
                user_id=user_id,
                email_id=email_id,
                confidence=clamp_unit(confidence),
                status=VerificationStatus.PENDING.value,
                token=secrets.token_urlsafe(TOKEN_BYTES),
                generated_at=now,
                expires_at=now + self._ttl(),
                last_sent_at=now,
                request_sent_count=1,
            )

            if self.snapshot_store is not None:
                snapshot = await self.snapshot_store.get_snapshot(user_id, email_id)
                if snapshot is not None:
                    request.sender = snapshot.sender
                    request.sender_domain = snapshot.sender_domain
                    request.subject = snapshot.subject
                    request.message_id = snapshot.message_id

            saved = await self.repository.save_verification_request(request)
            logger.info(f"✅ Verifikations-Anfrage erstellt: {saved.id} (email={email_id})")
            return saved

    async def _refresh(
        self, request: models.VerificationRequest
    ) -> Optional[models.VerificationRequest]:
        """Erhöht request_sent_count und verlängert die Frist; None wenn nicht mehr PENDING"""
        current = await self.repository.get_verification_request(request.id)
        if current is None or current.status != VerificationStatus.PENDING.value:
            return None

        if current.request_sent_count >= self.settings.max_resend_count:
            logger.warning(
                f"⚠️ Anfrage {current.id} bereits {current.request_sent_count}x gesendet, kein Resend"
            )
            return current

        now = models.utcnow()
        current.request_sent_count += 1
        current.last_sent_at = now
        current.expires_at = now + self._ttl()
        saved = await self.repository.save_verification_request(current)
        logger.info(f"🔁 Anfrage {saved.id} erneut gesendet ({saved.request_sent_count}x)")
        return saved

    async def resend(self, request_id: str) -> models.VerificationRequest:
        """
        Sendet eine offene Anfrage erneut.

        Raises:
            NotFoundError: unbekannte ID
            StateConflictError: nicht PENDING oder Resend-Limit erreicht
        """
        async with self._request_locks.hold(request_id):
            request = await self.repository.get_verification_request(request_id)
            if request is None:
                raise NotFoundError("VerificationRequest", request_id)
            if request.status != VerificationStatus.PENDING.value:
                raise StateConflictError(
                    f"Anfrage {request_id} kann nicht erneut gesendet werden (Status: {request.status})"
                )
            if request.request_sent_count >= self.settings.max_resend_count:
                raise StateConflictError(
                    f"Resend-Limit erreicht für Anfrage {request_id} ({self.settings.max_resend_count})"
                )
            return await self._refresh(request)

    # =========================================================================
    # RESPOND / RECONCILE
    # =========================================================================

    async def respond(
        self, token: str, feedback_type: FeedbackType, comment: Optional[str] = None
    ) -> models.VerificationRequest:
        """
        Verarbeitet die Antwort des Users.

        Raises:
            NotFoundError: unbekannter Token oder kein Detection-Snapshot zur Email
            VerificationExpiredError: Status EXPIRED oder Frist überschritten
        """
        feedback_type = FeedbackType(feedback_type)
        request = await self.repository.get_verification_request_by_token(token)
        if request is None:
            raise NotFoundError("VerificationRequest (token)", token[:8] + "…")

        async with self._request_locks.hold(request.id):
            request = await self.repository.get_verification_request(request.id)

            if request.status == VerificationStatus.EXPIRED.value:
                raise VerificationExpiredError(request.id)

            if request.is_terminal:
                logger.warning(
                    f"⚠️ Anfrage {request.id} bereits abgeschlossen ({request.status}), Antwort ignoriert"
                )
                return request

            if models.utcnow() > request.expires_at:
                await self.repository.update_verification_request_status(
                    request.id, VerificationStatus.EXPIRED
                )
                raise VerificationExpiredError(request.id)

            # Ohne Snapshot kann der Collector nichts speichern: Anfrage bleibt PENDING
            if self._collector is not None and self.snapshot_store is not None:
                snapshot = await self.snapshot_store.get_snapshot(request.user_id, request.email_id)
                if snapshot is None:
                    raise NotFoundError(
                        "DetectionSnapshot", f"{request.user_id}/{request.email_id}"
                    )

            updated = await self.repository.update_verification_request_status(
                request.id, VerificationStatus.CONFIRMED, feedback_type.value
            )

        logger.info(f"✅ Anfrage {updated.id} beantwortet: {feedback_type.value}")

        if self._collector is not None:
            await self._collector.collect(
                updated.user_id,
                updated.email_id,
                feedback_type,
                comment or "Antwort auf Verifikations-Anfrage",
            )
        return updated

    async def resolve_pending_for_email(
        self, user_id: str, email_id: str, feedback_type: FeedbackType
    ) -> Optional[models.VerificationRequest]:
        """
        Schließt die offene Anfrage zu einer Email ab (idempotent).

        Returns:
            Die abgeschlossene Anfrage oder None, wenn keine offen war
        """
        pending = await self._find_pending(user_id, email_id)
        if pending is None:
            return None

        async with self._request_locks.hold(pending.id):
            current = await self.repository.get_verification_request(pending.id)
            if current is None or current.status != VerificationStatus.PENDING.value:
                return None
            resolved = await self.repository.update_verification_request_status(
                current.id, VerificationStatus.CONFIRMED, FeedbackType(feedback_type).value
            )

        logger.info(f"✅ Offene Anfrage {resolved.id} durch Feedback abgeschlossen")
        return resolved

    # =========================================================================
    # CANCEL / EXPIRE
    # =========================================================================

    async def cancel(self, request_id: str) -> bool:
        """Erzwingt CANCELED. Fehler werden geloggt, Rückgabe False."""
        try:
            async with self._request_locks.hold(request_id):
                await self.repository.update_verification_request_status(
                    request_id, VerificationStatus.CANCELED
                )
            logger.info(f"Anfrage {request_id} storniert")
            return True
        except (NotFoundError, SQLAlchemyError) as e:
            logger.error(f"❌ Stornieren von Anfrage {request_id} fehlgeschlagen: {e}")
            return False

    async def expire_overdue(self) -> int:
        """
        Expiry-Sweep: PENDING-Anfragen nach expires_at → EXPIRED.

        Returns:
            Anzahl umgestellter Anfragen
        """
        now = models.utcnow()
        expired = await self.repository.list_expired_verification_requests(now)
        count = 0
        for request in expired:
            async with self._request_locks.hold(request.id):
                current = await self.repository.get_verification_request(request.id)
                if current is None or current.status != VerificationStatus.PENDING.value:
                    continue
                await self.repository.update_verification_request_status(
                    current.id, VerificationStatus.EXPIRED
                )
                count += 1

        if count:
            logger.info(f"⏰ {count} Verifikations-Anfragen abgelaufen")
        return count

    async def get_pending(self, user_id: str) -> List[models.VerificationRequest]:
        return await self.repository.list_pending_verification_requests(user_id)

    def build_verification_links(self, request: models.VerificationRequest) -> Dict[str, str]:
        """Links für Bestätigen/Ablehnen/Ignorieren (Versand ist nicht Teil dieses Moduls)"""
        base = self.settings.verification_base_url.rstrip("/")
        links = {}
        for action, feedback_type in (
            ("confirm", FeedbackType.CONFIRM),
            ("reject", FeedbackType.REJECT),
            ("ignore", FeedbackType.IGNORE),
        ):
            query = urlencode({"token": request.token, "response": feedback_type.value})
            links[action] = f"{base}?{query}"
        return links
