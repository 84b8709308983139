# backend/conversly/api/sessions.py
from __future__ import annotations

import re
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from conversly.api.deps import get_elevenlabs
from conversly.config import settings
from conversly.errors import UpstreamUnavailable
from conversly.services.elevenlabs_service import ElevenLabsService
from conversly.utils.logger import logger

router = APIRouter(prefix="/api", tags=["sessions"])

AGENT_ID_RE = re.compile(r"^agent_[a-z0-9]{26}$")


class Avatar(BaseModel):
    name: str
    description: str
    agent_id: str


# Practice personas; each maps to a configured voice agent
DEVELOPMENT_AVATARS: List[Avatar] = [
    Avatar(name="Jessie", description="Your local cafe barista", agent_id="agent_01jyfb9fh8f67agfzvv09tvg3t"),
    Avatar(name="Shawn", description="A mutual friend at a house party", agent_id="agent_01jypzmj9heh3rhmn47anjbsr8"),
    Avatar(name="Maya", description="A cyclist at a cycling event", agent_id="agent_01jyq00m9aev8rq8e6a040rjmv"),
    Avatar(name="Sam", description="A fellow housewarming guest", agent_id="agent_01jyq0j92gfxdrv3me49xygae1"),
]

PRODUCTION_AVATARS: List[Avatar] = [
    Avatar(name="Jessie", description="Your local cafe barista", agent_id="agent_01jys1g9ndfcqthwrs8p9fy4bn"),
    Avatar(name="Shawn", description="A mutual friend at a house party", agent_id="agent_01jys1h6dfe0dt1x186wkqcnmb"),
    Avatar(name="Maya", description="A cyclist at a cycling event", agent_id="agent_01jys1jsmje7wvb6vak1dt4t54"),
    Avatar(name="Sam", description="A fellow housewarming guest", agent_id="agent_01jys1hz8zf9crk3j8aq7hnk9b"),
]


def get_avatars_for_environment(environment: str) -> List[Avatar]:
    return PRODUCTION_AVATARS if environment == "production" else DEVELOPMENT_AVATARS


def is_valid_agent_id(agent_id: str) -> bool:
    return bool(AGENT_ID_RE.match(agent_id or ""))


class SignedUrlRequest(BaseModel):
    agentId: Optional[str] = Field(default=None)


@router.get("/avatars")
def list_avatars() -> List[Dict[str, str]]:
    return [a.model_dump() for a in get_avatars_for_environment(settings.ENVIRONMENT)]


@router.post("/elevenlabs/signed-url")
async def create_signed_url(
    payload: Optional[SignedUrlRequest] = None,
    elevenlabs: ElevenLabsService = Depends(get_elevenlabs),
):
    """Short-lived session URL for the browser's voice client."""
    agent_id = (payload.agentId if payload else None) or None
    if agent_id is not None and not is_valid_agent_id(agent_id):
        raise HTTPException(status_code=400, detail="Invalid ElevenLabs agent ID format")

    try:
        signed_url = await elevenlabs.get_signed_url(agent_id)
    except UpstreamUnavailable as e:
        logger.error(f"❌ Signed URL request failed for agent {agent_id or 'default'}: {e}")
        raise HTTPException(status_code=502, detail="Failed to generate signed URL")

    return {"signedUrl": signed_url}
