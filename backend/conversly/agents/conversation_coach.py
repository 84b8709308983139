# backend/conversly/agents/conversation_coach.py
"""
Conversation coach: asks the scoring LLM for turn-by-turn feedback on a practice conversation.

The agent only talks to the model and decodes its answer. Validation, merging
and rating live in conversly.pipelines.analysis so they can be tested without
any network access.
"""
from __future__ import annotations

import json
from typing import Any, List

from conversly.schemas import TranscriptTurn
from conversly.services.openai_service import OpenAIService
from conversly.utils.logger import logger


COACH_SYSTEM_PROMPT = """You are a warm, practical conversation coach. The user practised small talk with an AI
character (role "agent"). Review the USER's turns only.

You receive a JSON array of transcript turns: {"index", "role", "message", "time_in_call_secs"}.

For each user turn worth commenting on, write one short, specific comment and tag it:
- "compliment" when the user did something well (asked a follow-up, shared detail, showed empathy)
- "improvement" when there is a concrete way to do better

Skip turns that need no comment. Never invent indexes that are not in the input.

Respond with JSON only, in exactly this shape:
{
  "reviews": [
    {"index": <turn index>, "review": "<comment>", "category": "compliment" | "improvement"}
  ],
  "summary": "<2-3 sentence overall assessment addressed to the user>"
}"""


def serialize_transcript(turns: List[TranscriptTurn]) -> str:
    """Transcript as the JSON array the coach prompt expects."""
    return json.dumps([t.model_dump() for t in turns], ensure_ascii=False)


class ConversationCoachAgent:

    def __init__(self, openai_service: OpenAIService):
        self.openai = openai_service

    async def score(self, turns: List[TranscriptTurn]) -> Any:
        """
        Return the decoded model answer (usually a dict, sometimes a bare list).

        Upstream errors propagate; the caller decides what a failure means for
        the conversation.
        """
        transcript_json = serialize_transcript(turns)
        logger.info(f"🧠 Scoring transcript ({len(turns)} turns, {len(transcript_json)} chars)")

        content = await self.openai.generate_json(
            system_prompt=COACH_SYSTEM_PROMPT,
            user_content=transcript_json,
            temperature=0.4,
            max_tokens=2500,
            operation="conversation_coach",
        )
        # JSON-decoding and shape checks happen in normalize_scoring_response
        return content
