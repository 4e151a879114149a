"""tests/conftest.py

Shared fixtures: temporary SQLite database, persistence objects and a
scripted model streamer that replays canned step events.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from app.config import Settings
from app.database import Database
from app.models.chat import Chat
from app.services.crypto import PlaintextCipher
from app.services.generation.ledger import GenerationLedger
from app.services.generation.model_profile import ModelCatalog
from app.services.generation.orchestrator import GenerationOrchestrator
from app.services.generation.reconciler import StaleReconciler
from app.services.generation.telemetry import Usage
from app.services.persistence import PersistenceGateway

CHAT_ID = "chat-1"
USER_ID = "user-1"
MODEL_ID = "gemini-3-flash-preview"


class FakeStreamer:
    """Replays one scripted list of events per model step.

    Script items are the dict events the real streamer yields, plus
    ``{"type": "sleep", "seconds": x}`` to simulate a slow model.
    ``completions`` feeds the short non-streaming calls (title, effort);
    an exception item is raised instead of returned.
    """

    def __init__(self, steps: List[List[Dict[str, Any]]], completions: Optional[List[Any]] = None):
        self.steps = list(steps)
        self.completions = list(completions or [])
        self.calls: List[Dict[str, Any]] = []
        self.completion_calls: List[Dict[str, Any]] = []

    async def complete_text(self, model_id, messages, max_tokens=50, temperature=0.5) -> str:
        self.completion_calls.append({"model": model_id, "messages": [dict(m) for m in messages]})
        item = self.completions.pop(0) if self.completions else ""
        if isinstance(item, Exception):
            raise item
        return item

    async def stream_step(self, profile, messages, tools=None, reasoning_effort="medium"):
        self.calls.append({
            "model": profile.model_id,
            "messages": [dict(m) for m in messages],
            "tools": tools,
            "reasoning_effort": reasoning_effort,
        })
        script = self.steps.pop(0) if self.steps else [{"type": "finish", "finish_reason": "stop"}]
        for item in script:
            if item.get("type") == "sleep":
                await asyncio.sleep(item["seconds"])
                continue
            yield item


def usage_event(output_tokens: int = 10, input_tokens: int = 5, reasoning_tokens: int = 0) -> Dict[str, Any]:
    return {
        "type": "usage",
        "usage": Usage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            reasoning_tokens=reasoning_tokens,
            total_tokens=input_tokens + output_tokens + reasoning_tokens,
        ),
    }


class EmptyRegistry:
    def lookup_enabled_tools(self, names):
        return {}


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}",
        OPENAI_API_KEY="test-key",
        BRAVE_API_KEY="",
        YOUTUBE_API_KEY="",
        CONTENT_ENCRYPTION_KEY="",
    )


@pytest_asyncio.fixture
async def db(tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'chat.db'}")
    await database.init_db()
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def chat(db) -> Chat:
    async with db.session_maker() as session:
        row = Chat(id=CHAT_ID, user_id=USER_ID, title=None, mode="chat")
        session.add(row)
        await session.commit()
    return row


@pytest.fixture
def gateway(db) -> PersistenceGateway:
    return PersistenceGateway(db.session_maker, PlaintextCipher())


@pytest.fixture
def ledger(db) -> GenerationLedger:
    return GenerationLedger(db.session_maker)


@pytest.fixture
def reconciler(db, gateway) -> StaleReconciler:
    return StaleReconciler(db.session_maker, gateway, stale_threshold_sec=30, retention_sec=86400)


@pytest.fixture
def make_orchestrator(db, gateway, ledger, reconciler):
    def build(streamer: FakeStreamer, registry: Optional[Any] = None, **kwargs) -> GenerationOrchestrator:
        kwargs.setdefault("checkpoint_interval_sec", 0.05)
        return GenerationOrchestrator(
            db.session_maker,
            ModelCatalog([MODEL_ID, "gemini-2.5-flash-image"], MODEL_ID),
            streamer,
            registry or EmptyRegistry(),
            gateway,
            ledger,
            reconciler,
            **kwargs,
        )

    return build
