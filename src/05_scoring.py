"""
Newsletter Feedback Learning - Detection Aggregator
Kombiniert Analyzer-Scores gewichtet und ordnet sie einem Entscheidungs-Band zu
"""

import importlib
from typing import Dict, Mapping, Optional, Sequence

import numpy as np

models = importlib.import_module(".02_models", "src")
config = importlib.import_module(".01_config", "src")

DetectionMethod = models.DetectionMethod
DetectionResult = models.DetectionResult
DetectionScore = models.DetectionScore

# Default-Gewichte der Analyzer (Learner kann pro User überschreiben)
DEFAULT_METHOD_WEIGHTS: Dict[str, float] = {
    DetectionMethod.HEADER_ANALYSIS.value: 0.4,
    DetectionMethod.CONTENT_STRUCTURE.value: 0.3,
    DetectionMethod.SENDER_REPUTATION.value: 0.2,
    DetectionMethod.USER_FEEDBACK.value: 0.1,
}

# Ohne verwertbare Gewichte: neutral, landet im Verifikations-Band
NEUTRAL_SCORE = 0.5

BAND_NEWSLETTER = "newsletter"
BAND_NOT_NEWSLETTER = "not_newsletter"
BAND_UNCERTAIN = "uncertain"


def _method_key(method) -> str:
    return method.value if isinstance(method, DetectionMethod) else str(method)


def calculate_combined_score(
    scores: Sequence[float], weights: Sequence[float]
) -> float:
    """
    Gewichteter Mittelwert Σ w·s / Σ w

    Args:
        scores: Analyzer-Scores (werden auf [0, 1] geclamped)
        weights: Gewichte, gleiche Länge wie scores (negative zählen als 0)

    Returns:
        Score in [0, 1], NEUTRAL_SCORE wenn keine Gewichte vorhanden
    """
    if len(scores) != len(weights):
        raise ValueError(
            f"scores und weights müssen gleich lang sein ({len(scores)} != {len(weights)})"
        )
    if len(scores) == 0:
        return NEUTRAL_SCORE

    s = np.clip(np.asarray(scores, dtype=float), 0.0, 1.0)
    w = np.clip(np.asarray(weights, dtype=float), 0.0, None)
    total = float(w.sum())
    if total <= 0.0:
        return NEUTRAL_SCORE

    # Rundung glättet Float-Rauschen an den Band-Grenzen (0.4*0.7/0.4 != 0.7)
    combined = round(float(np.dot(w, s) / total), 10)
    return float(np.clip(combined, 0.0, 1.0))


def get_decision_band(score: float, settings=None) -> str:
    """
    Bestimmt das Entscheidungs-Band

    Args:
        score: kombinierter Score 0-1
        settings: DetectionSettings (default: aus Umgebung)

    Returns:
        "newsletter", "not_newsletter" oder "uncertain"
    """
    settings = settings or config.get_settings().detection
    if score >= settings.newsletter_threshold:
        return BAND_NEWSLETTER
    elif score <= settings.not_newsletter_threshold:
        return BAND_NOT_NEWSLETTER
    else:
        return BAND_UNCERTAIN


def get_band_label(band: str) -> str:
    """Lesbares Label für ein Band"""
    labels = {
        BAND_NEWSLETTER: "Newsletter",
        BAND_NOT_NEWSLETTER: "Kein Newsletter",
        BAND_UNCERTAIN: "Unsicher (Verifikation)",
    }
    return labels.get(band, "Unbekannt")


class DetectionAggregator:
    """Kombiniert DetectionScores zu einem DetectionResult.

    Die Gewichte werden über die tatsächlich genutzte Summe normalisiert,
    damit das Ergebnis auch bei hinzugefügten/entfernten Analyzern definiert ist.
    """

    def __init__(self, settings=None, default_weights: Optional[Mapping[str, float]] = None):
        self.settings = settings or config.get_settings().detection
        self.default_weights = dict(default_weights or DEFAULT_METHOD_WEIGHTS)

    def resolve_weight(self, method, weights: Optional[Mapping[str, float]] = None) -> float:
        key = _method_key(method)
        if weights and key in weights:
            return float(weights[key])
        return float(self.default_weights.get(key, 0.0))

    def combine(
        self,
        scores: Sequence[DetectionScore],
        weights: Optional[Mapping[str, float]] = None,
    ) -> DetectionResult:
        """
        Args:
            scores: DetectionScores in Analyzer-Reihenfolge
            weights: method -> Gewicht (fehlende: Default-Tabelle)

        Returns:
            DetectionResult mit combined_score, is_newsletter, needs_verification
        """
        values = [s.score for s in scores]
        used_weights = [self.resolve_weight(s.method, weights) for s in scores]
        combined = calculate_combined_score(values, used_weights)

        band = get_decision_band(combined, self.settings)
        if band == BAND_NEWSLETTER:
            is_newsletter, needs_verification = True, False
        elif band == BAND_NOT_NEWSLETTER:
            is_newsletter, needs_verification = False, False
        else:
            is_newsletter = combined >= self.settings.best_guess_threshold
            needs_verification = True

        return DetectionResult(
            combined_score=combined,
            is_newsletter=is_newsletter,
            needs_verification=needs_verification,
            scores=list(scores),
        )


def analyze_scores(scores: Sequence[DetectionScore], weights=None) -> Dict:
    """
    Vollständige Analyse als Dict (für Logs/Debug-Ausgaben)

    Returns:
        Dict mit combined_score, band, label, is_newsletter, needs_verification
    """
    result = DetectionAggregator().combine(scores, weights)
    band = get_decision_band(result.combined_score)
    return {
        "combined_score": round(result.combined_score, 4),
        "band": band,
        "label": get_band_label(band),
        "is_newsletter": result.is_newsletter,
        "needs_verification": result.needs_verification,
    }


if __name__ == "__main__":
    print("=== Entscheidungs-Bänder ===\n")
    for value in (0.0, 0.2, 0.3, 0.35, 0.5, 0.65, 0.7, 0.76, 1.0):
        band = get_decision_band(value)
        print(f"  {value:4.2f} → {get_band_label(band)}")

    print("\n=== Beispiel: List-Unsubscribe + X-Mailchimp + newsletter@ ===")
    header_score = DetectionScore(
        method=DetectionMethod.HEADER_ANALYSIS,
        score=0.5 * 1.0 + 0.3 * (1 / 3) + 0.2 * 0.8,
        confidence=0.9,
    )
    print(f"  {analyze_scores([header_score])}")
