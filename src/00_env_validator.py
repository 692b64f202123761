"""
Newsletter Feedback Learning - Environment Validator
Prüft Schwellwerte, Workflow-Parameter und DATABASE_URL beim Start
"""

import os
import sys


class EnvironmentValidator:
    """Validiert Umgebungsvariablen für Erkennung, Feedback und Lernen"""

    # Alle Werte müssen in [0, 1] liegen
    UNIT_INTERVAL_VARS = {
        "NEWSLETTER_THRESHOLD": "Ab diesem Score gilt eine Email als Newsletter",
        "NOT_NEWSLETTER_THRESHOLD": "Bis zu diesem Score gilt eine Email nicht als Newsletter",
        "BEST_GUESS_THRESHOLD": "Best-Guess Grenze im Verifikations-Band",
        "FEEDBACK_HIGH_CONFIDENCE": "REJECT über diesem Wert => HIGH Priority",
        "FEEDBACK_LOW_CONFIDENCE": "CONFIRM unter diesem Wert => HIGH Priority",
        "FEEDBACK_BORDERLINE_LOW": "Untere Grenze des Grenzfall-Bands",
        "FEEDBACK_BORDERLINE_HIGH": "Obere Grenze des Grenzfall-Bands",
        "LEARNING_RATE": "Decay-Schritt für widersprochene Zuordnungen",
        "CONFLICT_CONFIDENCE_THRESHOLD": "Ab dieser Confidence wird eine Zuordnung gedämpft",
        "CATEGORY_THRESHOLD": "Mindest-Confidence für Kategorie-Zuordnungen",
        "FEATURE_LEARNING_RATE": "Lernrate für Analyzer-Gewichte",
    }

    POSITIVE_INT_VARS = {
        "VERIFICATION_TTL_DAYS": "Gültigkeit einer Verifikations-Anfrage in Tagen",
        "VERIFICATION_MAX_RESEND": "Maximale Anzahl Sendungen pro Anfrage",
        "MIN_FEEDBACK_FOR_TRAINING": "Mindestanzahl Feedback für personalisiertes Training",
    }

    ASYNC_DRIVERS = ("sqlite+aiosqlite", "postgresql+asyncpg")

    @staticmethod
    def validate():
        """Hauptvalidierungs-Methode"""
        errors = []
        warnings = []

        errors.extend(EnvironmentValidator._check_unit_interval_vars())
        errors.extend(EnvironmentValidator._check_positive_int_vars())
        errors.extend(EnvironmentValidator._check_band_order())
        warnings.extend(EnvironmentValidator._check_database_url())

        if errors:
            EnvironmentValidator._print_errors(errors, warnings)
            sys.exit(1)

        if warnings:
            EnvironmentValidator._print_warnings(warnings)

        print("✅ Konfiguration für Newsletter-Erkennung ist gültig\n")
        return True

    @staticmethod
    def _read_float(var):
        raw = os.getenv(var)
        if raw is None or raw.strip() == "":
            return None
        return float(raw)

    @staticmethod
    def _check_unit_interval_vars():
        """Prüft dass alle Schwellwerte Zahlen in [0, 1] sind"""
        errors = []

        for var, description in EnvironmentValidator.UNIT_INTERVAL_VARS.items():
            try:
                value = EnvironmentValidator._read_float(var)
            except ValueError:
                errors.append(
                    {
                        "var": var,
                        "description": description,
                        "hint": f"{var} muss eine Zahl sein (z.B. 0.5)",
                        "severity": "CRITICAL",
                    }
                )
                continue

            if value is not None and not 0.0 <= value <= 1.0:
                errors.append(
                    {
                        "var": var,
                        "description": description,
                        "hint": f"{var} muss zwischen 0 und 1 liegen (ist: {value})",
                        "severity": "CRITICAL",
                    }
                )

        return errors

    @staticmethod
    def _check_positive_int_vars():
        errors = []

        for var, description in EnvironmentValidator.POSITIVE_INT_VARS.items():
            raw = os.getenv(var)
            if raw is None or raw.strip() == "":
                continue
            try:
                value = int(raw)
            except ValueError:
                value = None
            if value is None or value < 1:
                errors.append(
                    {
                        "var": var,
                        "description": description,
                        "hint": f"{var} muss eine positive ganze Zahl sein (ist: {raw!r})",
                        "severity": "CRITICAL",
                    }
                )

        return errors

    @staticmethod
    def _check_band_order():
        """Prüft not_newsletter < best_guess < newsletter"""
        try:
            low = EnvironmentValidator._read_float("NOT_NEWSLETTER_THRESHOLD")
            mid = EnvironmentValidator._read_float("BEST_GUESS_THRESHOLD")
            high = EnvironmentValidator._read_float("NEWSLETTER_THRESHOLD")
        except ValueError:
            # Bereits von _check_unit_interval_vars gemeldet
            return []

        low = 0.3 if low is None else low
        mid = 0.5 if mid is None else mid
        high = 0.7 if high is None else high

        if low < mid < high:
            return []

        return [
            {
                "var": "NOT_NEWSLETTER_THRESHOLD / BEST_GUESS_THRESHOLD / NEWSLETTER_THRESHOLD",
                "description": "Entscheidungs-Bänder sind nicht aufsteigend sortiert",
                "hint": f"Erwartet {low} < {mid} < {high}",
                "severity": "CRITICAL",
            }
        ]

    @staticmethod
    def _check_database_url():
        """DATABASE_URL muss einen async Treiber nutzen (nur Warnung)"""
        url = os.getenv("DATABASE_URL")
        if not url:
            return []
        if url.startswith(EnvironmentValidator.ASYNC_DRIVERS):
            return []
        return [
            f"DATABASE_URL nutzt keinen async Treiber ({url.split(':', 1)[0]}). "
            f"Erwartet: {', '.join(EnvironmentValidator.ASYNC_DRIVERS)}"
        ]

    @staticmethod
    def _print_errors(errors, warnings):
        """Gibt Fehler formatiert aus"""
        print("\n" + "=" * 70)
        print("🚨 FEHLER: Ungültige Konfiguration für Newsletter-Erkennung")
        print("=" * 70 + "\n")

        for i, error in enumerate(errors, 1):
            print(f"{i}. ❌ {error['var']}")
            print(f"   Beschreibung: {error['description']}")
            print(f"   💡 Hinweis: {error['hint']}")
            print()

        print("=" * 70)
        print("📋 Lösung: .env bzw. .env.local korrigieren und Worker neu starten")
        print("=" * 70 + "\n")

        if warnings:
            EnvironmentValidator._print_warnings(warnings)

    @staticmethod
    def _print_warnings(warnings):
        """Gibt Warnungen aus"""
        print("\n⚠️  WARNUNGEN:\n")
        for warning in warnings:
            print(f"  ⚠️  {warning}")
        print()


def validate_environment():
    """Entry-Point für Environment Validation"""
    EnvironmentValidator.validate()


if __name__ == "__main__":
    validate_environment()
