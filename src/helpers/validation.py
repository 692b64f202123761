# src/helpers/validation.py
"""Validierung und Clamping für Scores, IDs und Adressen.

Alle Score-, Confidence- und Präferenz-Werte liegen in [0, 1].
"""

import math


def clamp_unit(value: float) -> float:
    """Clamped einen Wert auf [0, 1]. NaN wird zu 0.0."""
    if value is None or math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, float(value)))


def validate_unit_interval(value, field_name):
    """Validate a score/confidence/threshold in [0, 1].

    Args:
        value: Value to validate
        field_name: Field name for error messages

    Returns:
        Float value

    Raises:
        ValueError: If value is missing, not numeric or out of range
    """
    if value is None:
        raise ValueError(f"{field_name} ist erforderlich")

    try:
        value = float(value)
    except (ValueError, TypeError):
        raise ValueError(f"{field_name} muss eine Zahl sein")

    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise ValueError(f"{field_name} muss zwischen 0 und 1 liegen (ist: {value})")

    return value


def validate_identifier(value, field_name, max_len=255):
    """Validate a non-empty id (user_id, email_id, category_id, token).

    Returns:
        Stripped string

    Raises:
        ValueError: If validation fails
    """
    if value is None:
        raise ValueError(f"{field_name} ist erforderlich")

    if not isinstance(value, str):
        value = str(value)

    value = value.strip()

    if not value:
        raise ValueError(f"{field_name} darf nicht leer sein")

    if len(value) > max_len:
        raise ValueError(f"{field_name} darf maximal {max_len} Zeichen lang sein")

    return value


def normalize_email_address(value):
    """Normalisiert eine Adresse (lowercase, stripped) oder gibt "" zurück.

    Kein Fehler bei ungültigen Adressen: Sender-Header sind oft kaputt und
    werden dann einfach nicht für Reputation genutzt.
    """
    if not value or not isinstance(value, str):
        return ""

    value = value.strip().lower()

    if len(value) > 320 or "@" not in value:  # RFC 5321 Maximum
        return ""

    local_part, domain = value.rsplit("@", 1)
    if not local_part or not domain:
        return ""

    return value
