# src/helpers/errors.py
"""Fehler-Taxonomie für Verifikation, Feedback und Kategorien.

Signal-Fehler der Analyzer werden lokal abgefangen und tauchen hier nicht auf.
Repository-Fehler (SQLAlchemyError) werden unverändert weitergereicht.
"""


class NewsletterLearningError(Exception):
    """Basisklasse aller fachlichen Fehler"""


class NotFoundError(NewsletterLearningError):
    """Unbekannte ID oder Token"""

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} nicht gefunden: {identifier}")


class StateConflictError(NewsletterLearningError):
    """Übergang im aktuellen Zustand nicht erlaubt"""


class VerificationExpiredError(StateConflictError):
    """Antwort auf eine abgelaufene Verifikations-Anfrage"""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Verifikations-Anfrage ist abgelaufen: {request_id}")
