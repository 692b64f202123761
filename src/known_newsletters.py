"""
Known Newsletter Senders und Header-Patterns
Tabellen für HeaderAnalyzer und SenderReputationAnalyzer

Sender-Pattern ist ein gestufter Lookup:
    bekanntes Sender-Präfix (newsletter@, noreply@, ...)  → 0.8
    bekannte ESP-Versanddomain (sendgrid.net, ...)        → 0.7
    "digest/weekly/bulletin" im Anzeigenamen              → 0.6
"""

import re
from typing import Tuple

SENDER_PREFIX_SCORE = 0.8
ESP_DOMAIN_SCORE = 0.7
FRIENDLY_NAME_SCORE = 0.6

# Header-Präfixe von ESPs (lower-case, Vergleich per startswith)
NEWSLETTER_X_HEADERS = (
    "x-campaign",
    "x-mailchimp",
    "x-mc",
    "x-cid",
    "x-mailer",
    "x-newsletter",
    "x-cm-campid",
    "x-sendgrid",
    "x-ses",
    "x-postmark",
    "x-customer",
    "x-ib",
    "x-maropost",
    "x-constantcontact",
    "x-aweber",
    "x-getresponse",
    "x-cm",
    "x-feedback-id",
    "x-report-abuse",
    "x-drip",
)

NEWSLETTER_SENDER_PREFIXES = (
    "newsletter@",
    "news@",
    "updates@",
    "noreply@",
    "no-reply@",
    "donotreply@",
    "do-not-reply@",
    "digest@",
    "weekly@",
    "daily@",
    "monthly@",
    "notifications@",
    "info@",
    "hello@",
    "support@",
    "team@",
    "broadcast@",
    "campaign@",
)

NEWSLETTER_ESP_DOMAINS = {
    "sendgrid.net",
    "mailchimp.com",
    "amazonaws.com",
    "constantcontact.com",
    "cmail19.com",
    "cmail20.com",
    "aweber.com",
    "getresponse.com",
    "mailerlite.com",
    "infusionmail.com",
    "drip.com",
    "maropost.com",
    "activecampaign.com",
    "hubspotmail.net",
    "convertkit.com",
    "klaviyomail.com",
    "sendpulse.com",
    "omnisend.com",
    "sendinblue.com",
    "mailgun.org",
}

NEWSLETTER_NAME_INDICATORS = (
    "newsletter",
    "weekly",
    "daily",
    "monthly",
    "digest",
    "update",
    "bulletin",
    "news",
    "roundup",
    "recap",
)

# Domains, die fast ausschließlich Newsletter versenden (Reputation-Prior)
KNOWN_NEWSLETTER_PROVIDER_DOMAINS = {
    "mailchimp.com",
    "sendgrid.net",
    "constantcontact.com",
    "campaignmonitor.com",
    "mailgun.org",
    "aweber.com",
    "getresponse.com",
    "activecampaign.com",
    "hubspot.com",
    "convertkit.com",
    "klaviyo.com",
    "marketo.com",
    "pardot.com",
    "sendpulse.com",
    "sendinblue.com",
    "omnisend.com",
    "drip.com",
    "moosend.com",
    "benchmark.email",
    "substack.com",
    "beehiiv.com",
    "revue.email",
    "tinyletter.com",
    "medium.com",
}

# Startwerte der Sender-Reputation (newsletter_weight = SEED_SENDER_WEIGHT)
SEED_SENDER_WEIGHT = 10.0
SEED_NEWSLETTER_SENDERS = (
    "newsletter@github.com",
    "hello@convertkit.com",
    "info@substack.com",
    "newsletter@medium.com",
    "newsletter@theverge.com",
    "info@mailchimp.com",
    "newsletter@beehiiv.com",
    "no-reply@techcrunch.com",
    "mailer@notion.so",
    "newsletter@nytimes.com",
    "newsletter@wired.com",
    "hello@producthunt.com",
)

_ADDRESS_IN_BRACKETS = re.compile(r"<\s*([^<>\s]+@[^<>\s]+)\s*>")
_BARE_ADDRESS = re.compile(r"[\w.+'-]+@[\w-]+(?:\.[\w-]+)+")


def parse_from_header(value: str) -> Tuple[str, str]:
    """
    Zerlegt einen From-Header in Anzeigename und Adresse.

    Args:
        value: z.B. 'Weekly Digest <news@example.com>'

    Returns:
        (display_name, address), address lower-case, "" wenn nicht parsebar
    """
    if not value:
        return "", ""

    match = _ADDRESS_IN_BRACKETS.search(value)
    if match:
        address = match.group(1)
        display_name = value[: match.start()].strip().strip('"').strip()
        return display_name, address.lower()

    match = _BARE_ADDRESS.search(value)
    if match:
        return "", match.group(0).lower()

    return value.strip(), ""


def extract_email_address(value: str) -> str:
    return parse_from_header(value)[1]


def extract_domain(address: str) -> str:
    """Domain-Teil einer Adresse (lower-case), "" wenn keine Adresse"""
    if not address or "@" not in address:
        return ""
    return address.rsplit("@", 1)[1].strip().lower()


def is_esp_domain(domain: str) -> bool:
    """ESP-Domain inkl. Subdomains (z.B. bounce.sendgrid.net)"""
    if not domain:
        return False
    return any(
        domain == esp or domain.endswith("." + esp) for esp in NEWSLETTER_ESP_DOMAINS
    )


def is_known_newsletter_provider(domain: str) -> bool:
    return bool(domain) and domain.lower() in KNOWN_NEWSLETTER_PROVIDER_DOMAINS


def sender_pattern_score(from_value: str) -> float:
    """
    Gestufter Sender-Pattern Score.

    Args:
        from_value: roher From-Header

    Returns:
        0.8 (Präfix), 0.7 (ESP-Domain), 0.6 (Anzeigename) oder 0.0
    """
    display_name, address = parse_from_header(from_value)

    if address and address.startswith(NEWSLETTER_SENDER_PREFIXES):
        return SENDER_PREFIX_SCORE

    if is_esp_domain(extract_domain(address)):
        return ESP_DOMAIN_SCORE

    name_lower = display_name.lower()
    if name_lower and any(word in name_lower for word in NEWSLETTER_NAME_INDICATORS):
        return FRIENDLY_NAME_SCORE

    return 0.0


def count_newsletter_headers(header_names) -> int:
    """Anzahl Header, deren Name mit einem ESP-Präfix beginnt"""
    return sum(
        1
        for name in header_names
        if name.lower().startswith(NEWSLETTER_X_HEADERS)
    )
