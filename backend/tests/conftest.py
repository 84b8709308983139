# backend/tests/conftest.py
"""
Shared fixtures: an in-memory store, a fake scoring LLM behind the real agents,
an ElevenLabs client on a mock transport, and a TestClient wired to all of them.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from conversly.agents import ConversationCoachAgent, NextStepsAgent
from conversly.api import deps
from conversly.config import settings
from conversly.main import app
from conversly.pipelines.analysis import AnalysisPipeline
from conversly.services import ElevenLabsService, NotificationHub, OpenAIService
from conversly.storage import MemoryStore
from conversly.utils.webhook_signature import SIGNATURE_HEADER, build_signature_header


WEBHOOK_SECRET = "whsec_test_secret"
SIGNED_URL = "wss://api.elevenlabs.io/v1/convai/conversation?agent_id=agent_01jyfb9fh8f67agfzvv09tvg3t&token=abc"

THREE_TURNS = [
    {"role": "agent", "message": "Hi there! What can I get you today?", "time_in_call_secs": 0},
    {"role": "user", "message": "A flat white please. How has your morning been?", "time_in_call_secs": 3},
    {"role": "agent", "message": "Busy but good, thanks for asking!", "time_in_call_secs": 7},
]

COACH_RESPONSE = {
    "reviews": [
        {"index": 1, "review": "Nice follow-up question about their morning.", "category": "compliment"},
    ],
    "summary": "Friendly and curious. Try sharing a bit about yourself next time.",
}

STEPS_RESPONSE = {
    "steps": [
        {"step": "Share one detail about your own day after asking about theirs."},
        {"step": "Use the other person's name once during the chat."},
    ]
}


@pytest.fixture
def store():
    return MemoryStore(demo_user_email=settings.DEMO_USER_EMAIL)


@pytest.fixture
def demo_user(store):
    return store.get_user_by_email(settings.DEMO_USER_EMAIL)


@pytest.fixture
def llm_responses():
    """Per-operation canned answers; tests may replace entries with an Exception."""
    return {
        "conversation_coach": json.dumps(COACH_RESPONSE),
        "next_steps": json.dumps(STEPS_RESPONSE),
    }


@pytest.fixture
def fake_openai(llm_responses):
    svc = MagicMock(spec=OpenAIService)

    async def generate_json(**kwargs):
        answer = llm_responses[kwargs["operation"]]
        if isinstance(answer, Exception):
            raise answer
        return answer

    svc.generate_json = AsyncMock(side_effect=generate_json)
    return svc


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def pipeline(store, fake_openai, hub):
    return AnalysisPipeline(
        store=store,
        coach=ConversationCoachAgent(fake_openai),
        next_steps_agent=NextStepsAgent(fake_openai),
        hub=hub,
    )


@pytest.fixture
def elevenlabs_requests():
    return []


@pytest.fixture
def elevenlabs(elevenlabs_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        elevenlabs_requests.append(request)
        return httpx.Response(200, json={"signed_url": SIGNED_URL})

    return ElevenLabsService(
        api_key="xi-test-key",
        default_agent_id="agent_01jyfb9fh8f67agfzvv09tvg3t",
        webhook_secret=WEBHOOK_SECRET,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture
def client(store, hub, pipeline, elevenlabs):
    # the websocket route reads app.state directly
    app.state.store = store
    app.state.hub = hub
    app.state.pipeline = pipeline
    app.state.elevenlabs = elevenlabs

    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_hub] = lambda: hub
    app.dependency_overrides[deps.get_pipeline] = lambda: pipeline
    app.dependency_overrides[deps.get_elevenlabs] = lambda: elevenlabs

    # no context manager: startup would replace the injected state
    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def make_conversation(store, demo_user):
    def _make(external_id="conv_test_001", **kwargs):
        return store.create_conversation(demo_user.id, external_id=external_id, **kwargs)

    return _make


@pytest.fixture
def post_webhook(client):
    """POST a payload with a valid provider signature over the exact bytes sent."""

    def _post(payload, path="/api/webhook/elevenlabs", secret=WEBHOOK_SECRET, timestamp=None, headers=None):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        all_headers = {"content-type": "application/json"}
        if secret is not None:
            all_headers[SIGNATURE_HEADER] = build_signature_header(secret, body, timestamp=timestamp)
        all_headers.update(headers or {})
        return client.post(path, content=body, headers=all_headers)

    return _post


@pytest.fixture
def three_turns():
    return [dict(t) for t in THREE_TURNS]
