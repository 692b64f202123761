# src/services/feedback_analyzer.py
"""
Feedback-Analytics: Genauigkeit der Erkennung aus Sicht der User.

False Positive  = REJECT auf eine positive Entscheidung
False Negative  = CONFIRM auf eine negative Entscheidung
"""

from __future__ import annotations

import importlib
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

models = importlib.import_module(".02_models", "src")

FeedbackType = models.FeedbackType

MIN_DOMAIN_ITEMS = 3
TOP_DOMAINS = 5


@dataclass
class DomainStats:
    domain: str
    total: int = 0
    errors: int = 0

    @property
    def error_rate(self) -> float:
        return self.errors / self.total if self.total else 0.0


@dataclass
class AccuracyMetrics:
    precision: float
    recall: float
    f1_score: float
    accuracy: float


@dataclass
class FeedbackAnalytics:
    total: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    accuracy: float = 0.0
    false_positives: int = 0
    false_negatives: int = 0
    by_domain: Dict[str, DomainStats] = field(default_factory=dict)
    top_misclassified_domains: List[DomainStats] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)


def _is_error(item) -> bool:
    return (item.detection_result and item.type == FeedbackType.REJECT.value) or (
        not item.detection_result and item.type == FeedbackType.CONFIRM.value
    )


def calculate_accuracy_metrics(items) -> AccuracyMetrics:
    """
    Precision/Recall/F1 der Newsletter-Entscheidung aus gelabeltem Feedback.

    Label: CONFIRM = Newsletter, REJECT = kein Newsletter.
    """
    tp = fp = tn = fn = 0
    for item in items:
        if item.type == FeedbackType.CONFIRM.value:
            if item.detection_result:
                tp += 1
            else:
                fn += 1
        elif item.type == FeedbackType.REJECT.value:
            if item.detection_result:
                fp += 1
            else:
                tn += 1

    precision = tp / (tp + fp) if tp + fp else 0.0
    recall = tp / (tp + fn) if tp + fn else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0
    labelled = tp + fp + tn + fn
    accuracy = (tp + tn) / labelled if labelled else 0.0
    return AccuracyMetrics(precision=precision, recall=recall, f1_score=f1, accuracy=accuracy)


class FeedbackAnalyzer:
    def __init__(self, repository):
        self.repository = repository

    async def analyze(
        self,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> FeedbackAnalytics:
        items = await self.repository.list_feedback(user_id=user_id, since=since, until=until)
        return self.summarize(items)

    def summarize(self, items) -> FeedbackAnalytics:
        analytics = FeedbackAnalytics(total=len(items))
        analytics.by_type = dict(Counter(item.type for item in items))

        domains: Dict[str, DomainStats] = defaultdict(lambda: DomainStats(domain=""))
        for item in items:
            if item.detection_result and item.type == FeedbackType.REJECT.value:
                analytics.false_positives += 1
            elif not item.detection_result and item.type == FeedbackType.CONFIRM.value:
                analytics.false_negatives += 1

            if item.sender_domain:
                stats = domains[item.sender_domain]
                stats.domain = item.sender_domain
                stats.total += 1
                if _is_error(item):
                    stats.errors += 1

        analytics.by_domain = dict(domains)
        analytics.accuracy = calculate_accuracy_metrics(items).accuracy
        analytics.top_misclassified_domains = sorted(
            (s for s in domains.values() if s.total >= MIN_DOMAIN_ITEMS and s.errors),
            key=lambda s: (s.error_rate, s.total),
            reverse=True,
        )[:TOP_DOMAINS]
        analytics.suggestions = self._suggestions(analytics)
        return analytics

    @staticmethod
    def _suggestions(analytics: FeedbackAnalytics) -> List[str]:
        suggestions = []
        if analytics.false_positives > analytics.false_negatives * 2 and analytics.false_positives:
            suggestions.append(
                "Viele False Positives: Header-Gewicht senken oder Newsletter-Schwellwert anheben."
            )
        if analytics.false_negatives > analytics.false_positives * 2 and analytics.false_negatives:
            suggestions.append(
                "Viele False Negatives: Sender-Reputation stärker gewichten."
            )
        for stats in analytics.top_misclassified_domains:
            suggestions.append(
                f"Domain {stats.domain}: {stats.errors}/{stats.total} falsch erkannt, Reputation prüfen."
            )
        return suggestions
