# tests/conftest.py
"""Pytest Configuration & Shared Fixtures.

Jeder Test bekommt eine frische In-Memory SQLite (aiosqlite, StaticPool).
Für Nebenläufigkeits-Tests gibt es eine Datei-DB (file_session_factory).
"""

import base64
import importlib

import pytest
import pytest_asyncio

from src.helpers.database import create_session_factory, init_models

models = importlib.import_module("src.02_models")
config = importlib.import_module("src.01_config")


# ===== SETTINGS =====

@pytest.fixture
def settings():
    """Default-Settings (unabhängig von .env)"""
    return config.Settings()


# ===== DATABASE FIXTURES =====

@pytest_asyncio.fixture
async def session_factory():
    """In-Memory Datenbank mit allen Tabellen."""
    engine, factory = create_session_factory("sqlite+aiosqlite:///:memory:")
    await init_models(engine)
    yield factory
    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Datei-Datenbank: mehrere Connections für parallele Sessions."""
    engine, factory = create_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(engine)
    yield factory
    await engine.dispose()


# ===== EMAIL FIXTURES =====

@pytest.fixture
def make_email():
    """Factory für Email-Objekte im Provider-Format"""

    def _make(
        email_id="email-1",
        user_id="user-1",
        headers=None,
        html=None,
        subject="Weekly Update",
    ):
        if headers is None:
            headers = {"From": "Someone <someone@example.com>"}
        header_list = [models.EmailHeader(name=k, value=v) for k, v in headers.items()]
        parts = []
        if html is not None:
            data = base64.urlsafe_b64encode(html.encode("utf-8")).decode("ascii").rstrip("=")
            parts.append(models.EmailPayload(mime_type="text/html", body_data=data))
        payload = models.EmailPayload(
            headers=header_list, mime_type="multipart/alternative", parts=parts
        )
        return models.Email(id=email_id, payload=payload, user_id=user_id, subject=subject)

    return _make


@pytest.fixture
def newsletter_email(make_email):
    """List-Unsubscribe + X-Mailchimp + newsletter@ Sender"""
    return make_email(
        headers={
            "List-Unsubscribe": "<mailto:unsubscribe@example.com>",
            "X-Mailchimp": "campaign-123",
            "From": "newsletter@example.com",
        }
    )


@pytest.fixture
def make_snapshot(session_factory):
    """Legt einen Detection-Snapshot direkt in der DB an"""

    async def _make(
        user_id="user-1",
        email_id="email-1",
        combined_score=0.5,
        is_newsletter=True,
        sender="news@example.com",
        features=None,
    ):
        snapshot = models.DetectionSnapshot(
            user_id=user_id,
            email_id=email_id,
            sender=sender,
            sender_domain=sender.split("@")[-1] if sender else "",
            subject="Weekly Update",
            is_newsletter=is_newsletter,
            needs_verification=False,
            combined_score=combined_score,
            features=features or {"header_analysis": 0.8, "content_structure": 0.5},
        )
        async with session_factory() as session:
            session.add(snapshot)
            await session.commit()
        return snapshot

    return _make
