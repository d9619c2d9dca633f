"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, insert
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to sys.path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from nomadev_wa.db.db import get_db  # noqa: E402
from nomadev_wa.db.init_db import create_schema  # noqa: E402
from nomadev_wa.db.tables import agents  # noqa: E402
from nomadev_wa.settings import Settings, get_settings  # noqa: E402


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        WHATSAPP_VERIFY_TOKEN="verify-me",
        WHATSAPP_APP_SECRET="",
        LLM_PROVIDER="openai",
        OPENAI_API_KEY="sk-test",
        OPENAI_LOGPROBS=False,
        OLLAMA_API_KEY="ollama-test",
        DEFAULT_AI_MODEL="gpt-4o-mini",
        DEFAULT_AI_TEMPERATURE=0.7,
        DEFAULT_AI_MAX_TOKENS=2000,
        HISTORY_LIMIT=10,
        DEDUPE_INBOUND=True,
        MAX_MESSAGE_AGE_SECONDS=0,
        INTERNAL_API_KEY="internal-key",
    )


@pytest.fixture
def make_agent(db):
    """Inserta un agente; por defecto activo, phone_number_id "123"."""

    def _make(**overrides):
        row = {
            "id": "agent-1",
            "user_id": "user-1",
            "name": "Nomi",
            "status": "active",
            "ai_model": None,
            "ai_temperature": None,
            "ai_max_tokens": None,
            "ai_system_prompt": None,
            "ai_context": None,
            "personality": None,
            "whatsapp_phone_id": "123",
            "whatsapp_access_token": "wa-token",
        }
        row.update(overrides)
        db.execute(insert(agents).values(**row))
        db.commit()
        return row

    return _make


@pytest.fixture
def text_message():
    def _build(body="Hola", wamid="wamid.A", sender="5551234", timestamp="1707500000"):
        return {
            "from": sender,
            "id": wamid,
            "timestamp": timestamp,
            "type": "text",
            "text": {"body": body},
        }

    return _build


@pytest.fixture
def build_payload():
    def _build(messages=None, statuses=None, phone_number_id="123", contacts=None, field="messages"):
        value = {
            "messaging_product": "whatsapp",
            "metadata": {"display_phone_number": "15550001111", "phone_number_id": phone_number_id},
        }
        if contacts is not None:
            value["contacts"] = contacts
        if messages is not None:
            value["messages"] = messages
        if statuses is not None:
            value["statuses"] = statuses
        return {
            "object": "whatsapp_business_account",
            "entry": [{"id": "WABA-1", "changes": [{"field": field, "value": value}]}],
        }

    return _build


@pytest.fixture
def client(db, settings):
    from nomadev_wa.main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
