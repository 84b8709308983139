# backend/conversly/agents/next_steps_agent.py
"""
Turns a finished review into a short ordered list of things to practise next.

Best effort: any failure yields an empty list, and the caller then stores
nothing. Unlike turn reviews (bad items dropped, good ones kept), one malformed
step rejects the whole answer.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from conversly.schemas import ReviewedTurn, Step, StepsPayload
from conversly.services.openai_service import OpenAIService
from conversly.utils.logger import logger


NEXT_STEPS_SYSTEM_PROMPT = """You help people improve their conversational skills.

You receive a JSON object with:
- "reviews": the user's reviewed turns, each {"index", "role", "message", "review", "category"}
- "summary": an overall assessment of the conversation

Write 3 to 5 concrete, encouraging next steps the user can practise in their next conversation,
most important first. Each step is one sentence.

Respond with JSON only, in exactly this shape:
{"steps": [{"step": "<one actionable sentence>"}]}"""


class InvalidStepsResponse(ValueError):
    pass


def build_next_steps_input(turns: List[ReviewedTurn], summary: str) -> Dict[str, Any]:
    """Only turns that actually carry a review are sent, with their category."""
    reviewed = [
        {
            "index": t.index,
            "role": t.role,
            "message": t.message,
            "review": t.review,
            "category": t.category,
        }
        for t in turns
        if t.review is not None
    ]
    return {"reviews": reviewed, "summary": summary}


def normalize_steps_response(raw: Any) -> List[Step]:
    """
    Accept {"steps": [...]} as an object or a JSON string. Every element must be
    {"step": <str>}; otherwise InvalidStepsResponse is raised for the whole answer.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise InvalidStepsResponse(f"Steps response is not valid JSON: {e}") from e

    if not isinstance(raw, dict) or not isinstance(raw.get("steps"), list):
        raise InvalidStepsResponse("Invalid response format from next steps LLM")

    for index, item in enumerate(raw["steps"]):
        if not isinstance(item, dict) or not isinstance(item.get("step"), str):
            raise InvalidStepsResponse(f"Invalid step format at index {index}")

    try:
        payload = StepsPayload.model_validate({"steps": [{"step": item["step"]} for item in raw["steps"]]})
    except ValidationError as e:
        raise InvalidStepsResponse(str(e)) from e
    return payload.steps


class NextStepsAgent:

    def __init__(self, openai_service: OpenAIService):
        self.openai = openai_service

    async def generate(self, turns: List[ReviewedTurn], summary: str, conversation_id: Optional[int] = None) -> List[Step]:
        review_input = build_next_steps_input(turns, summary)
        try:
            content = await self.openai.generate_json(
                system_prompt=NEXT_STEPS_SYSTEM_PROMPT,
                user_content=json.dumps(review_input, ensure_ascii=False),
                temperature=0.5,
                max_tokens=800,
                operation="next_steps",
            )
            steps = normalize_steps_response(content)
        except Exception as e:
            logger.error(
                f"❌ Next steps generation failed conversation_id={conversation_id} "
                f"reviews={len(review_input['reviews'])} summary_len={len(summary or '')}: {e}"
            )
            return []

        logger.info(f"✅ Generated {len(steps)} next steps for conversation_id={conversation_id}")
        return steps
