# src/services/signal_analyzers.py
"""
Signal-Analyzer für die Newsletter-Erkennung.

Jeder Analyzer liefert für eine Email genau einen DetectionScore
(score, confidence, reason) und hat ein festes Default-Gewicht.
Fehler werden lokal abgefangen: score=0.0, confidence=0.1, reason=Fehlertext.
"""

from __future__ import annotations

import base64
import binascii
import importlib
import logging
import re
from abc import ABC, abstractmethod
from collections import Counter
from typing import List, Optional

from src import known_newsletters

models = importlib.import_module(".02_models", "src")

logger = logging.getLogger(__name__)

DetectionMethod = models.DetectionMethod
DetectionScore = models.DetectionScore
FeedbackType = models.FeedbackType

FAILURE_CONFIDENCE = 0.1


class SignalAnalyzer(ABC):
    """Vertrag: analyze(email) -> DetectionScore, weight() -> float"""

    method: DetectionMethod
    default_weight: float = 0.0

    def weight(self) -> float:
        return self.default_weight

    async def analyze(self, email: models.Email) -> DetectionScore:
        try:
            return await self._analyze(email)
        except Exception as e:
            logger.error(
                f"❌ {self.method.value} fehlgeschlagen für Email {getattr(email, 'id', '?')}: {e}"
            )
            return DetectionScore(
                method=self.method,
                score=0.0,
                confidence=FAILURE_CONFIDENCE,
                reason=f"Error in {self.method.value}: {e}",
            )

    @abstractmethod
    async def _analyze(self, email: models.Email) -> DetectionScore:
        ...

    @staticmethod
    def _require_headers(email: models.Email):
        if email.payload is None or not email.payload.headers:
            raise ValueError("Email headers are missing")
        return email.header_map()


# =============================================================================
# HEADER
# =============================================================================


class HeaderAnalyzer(SignalAnalyzer):
    """List-Unsubscribe, ESP/X-Header und Sender-Pattern"""

    method = DetectionMethod.HEADER_ANALYSIS
    default_weight = 0.4
    CONFIDENCE = 0.9

    LIST_UNSUBSCRIBE_WEIGHT = 0.5
    X_HEADER_WEIGHT = 0.3
    SENDER_PATTERN_WEIGHT = 0.2
    X_HEADER_SATURATION = 3

    def check_list_unsubscribe(self, headers: dict) -> float:
        return 1.0 if "list-unsubscribe" in headers else 0.0

    def check_newsletter_headers(self, headers: dict) -> float:
        count = known_newsletters.count_newsletter_headers(headers.keys())
        return min(count / self.X_HEADER_SATURATION, 1.0)

    def check_sender_pattern(self, headers: dict) -> float:
        return known_newsletters.sender_pattern_score(headers.get("from", ""))

    async def _analyze(self, email: models.Email) -> DetectionScore:
        headers = self._require_headers(email)

        list_unsubscribe = self.check_list_unsubscribe(headers)
        newsletter_headers = self.check_newsletter_headers(headers)
        sender_pattern = self.check_sender_pattern(headers)

        score = (
            self.LIST_UNSUBSCRIBE_WEIGHT * list_unsubscribe
            + self.X_HEADER_WEIGHT * newsletter_headers
            + self.SENDER_PATTERN_WEIGHT * sender_pattern
        )

        reason = ""
        if list_unsubscribe > 0:
            reason += "Found List-Unsubscribe header. "
        if newsletter_headers > 0:
            reason += "Found newsletter-specific headers. "
        if sender_pattern > 0:
            reason += "Sender matches newsletter pattern. "

        return DetectionScore(
            method=self.method,
            score=min(score, 1.0),
            confidence=self.CONFIDENCE,
            reason=reason.strip() or "No newsletter headers found.",
            metadata={
                "list_unsubscribe_score": list_unsubscribe,
                "newsletter_headers_score": newsletter_headers,
                "sender_pattern_score": sender_pattern,
            },
        )


# =============================================================================
# CONTENT STRUCTURE
# =============================================================================


def _compile(patterns):
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


HEADER_PATTERNS = _compile(
    [r"<header", r"<div[^>]*header", r"<div[^>]*masthead", r"<img[^>]*logo", r"<div[^>]*banner"]
)
FOOTER_PATTERNS = _compile(
    [
        r"<footer",
        r"<div[^>]*footer",
        r"unsubscribe",
        r"opt[- ]out",
        r"email preferences",
        r"manage your (?:email|subscription)",
        r"view (?:in|as) (?:browser|web)",
        r"privacy policy",
        r"copyright \d{4}",
        r"&copy;",
        r"you(?:'re| are) receiving this",
    ]
)
LAYOUT_PATTERNS = _compile(
    [
        r"<table[^>]*width=[\"'](?:600|650|700|750|800)",
        r"<div[^>]*width=[\"'](?:600|650|700|750|800)",
        r"<table[^>]*cellpadding",
        r"<table[^>]*cellspacing",
        r"<(?:table|div)[^>]*align=[\"']center",
        r"<div[^>]*class=[\"'][^\"']*column",
        r"@media",
        r"<(?:table|div)[^>]*container",
    ]
)
SECTION_PATTERNS = _compile(
    [
        r"<h1[^>]*>",
        r"<h2[^>]*>",
        r"<div[^>]*section",
        r"<(?:div|table)[^>]*article",
        r"<div[^>]*story",
        r"<div[^>]*post",
        r"<(?:div|table)[^>]*card",
        r"<div[^>]*feature",
    ]
)
CTA_PATTERNS = _compile(
    [
        r"<a[^>]*class=[\"'][^\"']*(?:button|btn|cta)",
        r"<a[^>]*style=[\"'][^\"']*background",
        r"read more",
        r"learn more",
        r"click here",
        r"shop now",
        r"sign up",
    ]
)
IMAGE_PATTERNS = _compile(
    [
        r"<img[^>]*width=[\"'](?:100%|[4-9][0-9][0-9])",
        r"<img[^>]*style=[\"'][^\"']*max-width",
        r"<(?:img|div)[^>]*class=[\"'][^\"']*(?:banner|hero)",
        r"<table[^>]*background=",
    ]
)
_FIXED_WIDTH = re.compile(r"width=[\"'](?:600|650|700|750|800)", re.IGNORECASE)
_CLASS_ATTR = re.compile(r"<(div|table)[^>]*class=[\"']([^\"']+)[\"']", re.IGNORECASE)


def _count_matches(content: str, patterns) -> int:
    return sum(1 for p in patterns if p.search(content))


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return ""


def extract_html(payload: Optional[models.EmailPayload]) -> str:
    """Sammelt alle text/html Teile (rekursiv, base64url dekodiert)"""
    if payload is None:
        return ""
    chunks: List[str] = []
    if payload.mime_type == "text/html" and payload.body_data:
        chunks.append(_decode_body(payload.body_data))
    for part in payload.parts:
        html = extract_html(part)
        if html:
            chunks.append(html)
    return "\n".join(chunks)


class ContentStructureAnalyzer(SignalAnalyzer):
    """Newsletter-typisches HTML-Layout, Strukturelemente und Sektionen"""

    method = DetectionMethod.CONTENT_STRUCTURE
    default_weight = 0.3

    def identify_layout(self, html: str) -> float:
        ratio = _count_matches(html, LAYOUT_PATTERNS) / len(LAYOUT_PATTERNS)
        if html.lower().count("<table") > 3:
            return min(0.2 + ratio, 1.0)
        if "@media" in html:
            return min(0.3 + ratio, 1.0)
        if _FIXED_WIDTH.search(html):
            return min(0.2 + ratio, 1.0)
        return ratio

    def detect_elements(self, html: str) -> float:
        score = 0.0
        if _count_matches(html, HEADER_PATTERNS):
            score += 0.25
        if _count_matches(html, FOOTER_PATTERNS):
            score += 0.25
        score += min(_count_matches(html, CTA_PATTERNS) / 3, 0.25)
        score += min(_count_matches(html, IMAGE_PATTERNS) / 3, 0.25)
        lowered = html.lower()
        if "unsubscribe" in lowered or "opt-out" in lowered or "opt out" in lowered:
            score += 0.2
        return min(score, 1.0)

    def recognize_sections(self, html: str) -> float:
        score = min(_count_matches(html, SECTION_PATTERNS) / 5, 0.8)
        class_counts = Counter(m.group(2).strip().lower() for m in _CLASS_ATTR.finditer(html))
        # Wiederholte Blöcke mit gleicher Klasse
        if any(count >= 3 for count in class_counts.values()):
            score += 0.2
        return min(score, 1.0)

    async def _analyze(self, email: models.Email) -> DetectionScore:
        if email.payload is None:
            raise ValueError("Email payload is missing")

        html = extract_html(email.payload)
        if not html:
            return DetectionScore(
                method=self.method,
                score=0.1,
                confidence=0.5,
                reason="No HTML content found (plain text email).",
            )

        layout = self.identify_layout(html)
        elements = self.detect_elements(html)
        sections = self.recognize_sections(html)
        score = 0.4 * layout + 0.4 * elements + 0.2 * sections

        reason = ""
        if layout > 0.5:
            reason += "Newsletter-like layout detected. "
        if elements > 0.5:
            reason += "Header/footer/CTA elements found. "
        if sections > 0.5:
            reason += "Templated content sections found. "

        return DetectionScore(
            method=self.method,
            score=min(score, 1.0),
            confidence=0.8 if len(html) > 1000 else 0.6,
            reason=reason.strip() or "Little newsletter structure found.",
            metadata={
                "layout_score": layout,
                "elements_score": elements,
                "sections_score": sections,
                "html_length": len(html),
            },
        )


# =============================================================================
# SENDER REPUTATION
# =============================================================================


class SenderReputationAnalyzer(SignalAnalyzer):
    """Historische Reputation von Sender und Domain (aus dem ReputationLearner)"""

    method = DetectionMethod.SENDER_REPUTATION
    default_weight = 0.2

    def __init__(self, learner):
        self.learner = learner

    async def _analyze(self, email: models.Email) -> DetectionScore:
        headers = self._require_headers(email)

        sender = known_newsletters.extract_email_address(headers.get("from", ""))
        if not sender:
            return DetectionScore(
                method=self.method,
                score=0.0,
                confidence=FAILURE_CONFIDENCE,
                reason="No sender information found",
            )

        domain = known_newsletters.extract_domain(sender)
        score = await self.learner.get_sender_score(sender)
        sender_entry = await self.learner.get_reputation("sender", sender)

        if sender_entry is not None:
            total = sender_entry.total
            if total > 1:
                confidence = min(0.5 + total / 10, 0.9)
                reason = f"Sender reputation based on {total:g} weighted feedback events."
            else:
                confidence = 0.6
                reason = "Limited sender history available."
        elif await self.learner.is_domain_newsletter_provider(domain):
            score = max(score, 0.7)
            confidence = 0.8
            reason = f"Sender domain {domain} is a known newsletter provider."
        else:
            domain_entry = await self.learner.get_reputation("domain", domain)
            if domain_entry is not None and domain_entry.total > 2:
                confidence = min(0.4 + domain_entry.total / 20, 0.8)
                reason = f"Domain reputation based on {domain_entry.total:g} weighted feedback events."
            elif domain_entry is not None:
                confidence = 0.6
                reason = "Limited domain history available."
            else:
                confidence = 0.3
                reason = "No reputation data available for this sender."

        return DetectionScore(
            method=self.method,
            score=score,
            confidence=confidence,
            reason=reason,
            metadata={"sender": sender, "domain": domain},
        )


# =============================================================================
# USER FEEDBACK
# =============================================================================


class UserFeedbackAnalyzer(SignalAnalyzer):
    """Explizites Feedback des Users zu Sender und Domain"""

    method = DetectionMethod.USER_FEEDBACK
    default_weight = 0.1
    DOMAIN_TRUST_THRESHOLD = 3

    def __init__(self, feedback_repository):
        self.feedback_repository = feedback_repository

    def _neutral(self, reason: str) -> DetectionScore:
        return DetectionScore(method=self.method, score=0.5, confidence=0.1, reason=reason)

    async def _analyze(self, email: models.Email) -> DetectionScore:
        headers = self._require_headers(email)

        if not email.user_id:
            return self._neutral("No user context for feedback lookup.")

        sender = known_newsletters.extract_email_address(headers.get("from", ""))
        if not sender:
            return self._neutral("No sender information found.")

        labelled = [FeedbackType.CONFIRM.value, FeedbackType.REJECT.value]
        latest = await self.feedback_repository.list_feedback(
            user_id=email.user_id, sender=sender, types=labelled, limit=1
        )
        if latest:
            if latest[0].type == FeedbackType.CONFIRM.value:
                return DetectionScore(
                    method=self.method,
                    score=1.0,
                    confidence=1.0,
                    reason="User confirmed this sender as newsletter.",
                    metadata={"sender": sender},
                )
            return DetectionScore(
                method=self.method,
                score=0.0,
                confidence=1.0,
                reason="User rejected this sender as newsletter.",
                metadata={"sender": sender},
            )

        domain = known_newsletters.extract_domain(sender)
        domain_feedback = await self.feedback_repository.list_feedback(
            user_id=email.user_id, sender_domain=domain, types=labelled
        )
        confirms = sum(1 for f in domain_feedback if f.type == FeedbackType.CONFIRM.value)
        rejects = len(domain_feedback) - confirms

        if confirms >= self.DOMAIN_TRUST_THRESHOLD and confirms > rejects:
            return DetectionScore(
                method=self.method,
                score=0.9,
                confidence=0.9,
                reason=f"Domain {domain} is trusted by user ({confirms} confirmations).",
                metadata={"domain": domain},
            )
        if rejects >= self.DOMAIN_TRUST_THRESHOLD and rejects >= confirms:
            return DetectionScore(
                method=self.method,
                score=0.1,
                confidence=0.9,
                reason=f"Domain {domain} is blocked by user ({rejects} rejections).",
                metadata={"domain": domain},
            )

        return self._neutral("No user feedback for this sender.")
