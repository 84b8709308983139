# backend/tests/test_next_steps.py
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from conversly.agents.next_steps_agent import (
    InvalidStepsResponse,
    NextStepsAgent,
    build_next_steps_input,
    normalize_steps_response,
)
from conversly.errors import UpstreamUnavailable
from conversly.schemas import ReviewedTurn, Step
from conversly.services.openai_service import OpenAIService


REVIEWED = [
    ReviewedTurn(index=0, role="agent", message="Hi!"),
    ReviewedTurn(index=1, role="user", message="Hey, how are you?", review="Good opener", category="compliment"),
    ReviewedTurn(index=2, role="agent", message="Great, you?"),
    ReviewedTurn(index=3, role="user", message="Fine.", review="Say a bit more", category="improvement"),
]


def _agent(answer):
    svc = MagicMock(spec=OpenAIService)
    if isinstance(answer, Exception):
        svc.generate_json = AsyncMock(side_effect=answer)
    else:
        svc.generate_json = AsyncMock(return_value=answer)
    return NextStepsAgent(svc), svc


class TestNextStepsInput:

    def test_only_reviewed_turns_with_categories(self):
        data = build_next_steps_input(REVIEWED, "Solid start")
        assert data["summary"] == "Solid start"
        assert [r["index"] for r in data["reviews"]] == [1, 3]
        assert [r["category"] for r in data["reviews"]] == ["compliment", "improvement"]


class TestNormalizeStepsResponse:

    def test_object_and_string_forms(self):
        payload = {"steps": [{"step": "Ask one open question"}]}
        assert normalize_steps_response(payload) == [Step(step="Ask one open question")]
        assert normalize_steps_response(json.dumps(payload)) == [Step(step="Ask one open question")]

    @pytest.mark.parametrize(
        "raw",
        [
            {"steps": [{"step": "fine"}, {"step": 3}]},
            {"steps": [{"step": "fine"}, "just a string"]},
            {"steps": "not a list"},
            {"items": []},
            ["step one"],
            "{not json",
        ],
    )
    def test_any_malformed_element_rejects_everything(self, raw):
        with pytest.raises(InvalidStepsResponse):
            normalize_steps_response(raw)


class TestNextStepsAgent:

    @pytest.mark.asyncio
    async def test_generates_steps(self):
        agent, svc = _agent(json.dumps({"steps": [{"step": "Share a story"}, {"step": "Use their name"}]}))

        steps = await agent.generate(REVIEWED, "Solid start", conversation_id=7)

        assert [s.step for s in steps] == ["Share a story", "Use their name"]
        sent = json.loads(svc.generate_json.call_args.kwargs["user_content"])
        assert len(sent["reviews"]) == 2

    @pytest.mark.asyncio
    async def test_malformed_answer_yields_empty_list(self):
        agent, _ = _agent(json.dumps({"steps": [{"step": "ok"}, {"wrong": "shape"}]}))
        assert await agent.generate(REVIEWED, "summary") == []

    @pytest.mark.asyncio
    async def test_upstream_error_yields_empty_list(self):
        agent, _ = _agent(UpstreamUnavailable("down", provider="openai"))
        assert await agent.generate(REVIEWED, "summary") == []
