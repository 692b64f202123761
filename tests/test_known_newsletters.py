"""Unit Tests für Sender-/Header-Tabellen

Tests für src/known_newsletters.py
"""

import pytest

from src import known_newsletters


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Weekly Digest <News@Example.com>", ("Weekly Digest", "news@example.com")),
        ('"Shop Team" <team@shop.example>', ("Shop Team", "team@shop.example")),
        ("newsletter@example.com", ("", "newsletter@example.com")),
        ("undisclosed-recipients", ("undisclosed-recipients", "")),
        ("", ("", "")),
    ],
)
def test_parse_from_header(value, expected):
    assert known_newsletters.parse_from_header(value) == expected


def test_extract_domain():
    assert known_newsletters.extract_domain("a@Mail.Example.com") == "mail.example.com"
    assert known_newsletters.extract_domain("no-address") == ""


def test_esp_domain_includes_subdomains():
    assert known_newsletters.is_esp_domain("sendgrid.net")
    assert known_newsletters.is_esp_domain("bounce.sendgrid.net")
    assert not known_newsletters.is_esp_domain("notsendgrid.net")
    assert not known_newsletters.is_esp_domain("")


def test_known_provider():
    assert known_newsletters.is_known_newsletter_provider("Substack.com")
    assert not known_newsletters.is_known_newsletter_provider("example.com")


def test_count_newsletter_headers_uses_prefix():
    names = ["X-Mailchimp-Campaign", "x-campaign-id", "List-Unsubscribe", "From"]

    assert known_newsletters.count_newsletter_headers(names) == 2


def test_prefix_beats_esp_domain():
    assert known_newsletters.sender_pattern_score("news@mail.sendgrid.net") == 0.8
