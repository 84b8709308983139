# backend/conversly/api/webhooks.py
"""
Post-call webhook from the voice provider.

The raw body is read before anything else: the signature covers the exact
bytes sent, not a re-serialized JSON document.
"""
from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request

from conversly.api.deps import get_elevenlabs, get_pipeline, get_store
from conversly.errors import InvalidSignatureError, NotFoundError, StorageError
from conversly.pipelines.analysis import AnalysisPipeline
from conversly.pipelines.post_call import InvalidPayload, extract_post_call_payload, process_post_call
from conversly.services.elevenlabs_service import ElevenLabsService
from conversly.storage.base import ConversationStore
from conversly.utils.logger import logger
from conversly.utils.webhook_signature import SIGNATURE_HEADER

router = APIRouter(prefix="/api/webhook", tags=["webhooks"])


async def _handle_post_call(
    request: Request,
    store: ConversationStore,
    pipeline: AnalysisPipeline,
    elevenlabs: ElevenLabsService,
):
    raw_body = await request.body()

    try:
        elevenlabs.verify_webhook(raw_body=raw_body, signature_header=request.headers.get(SIGNATURE_HEADER))
    except InvalidSignatureError as e:
        logger.warning(f"❌ Rejected webhook: {e.reason}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        body = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed JSON body")

    try:
        payload = extract_post_call_payload(body)
    except InvalidPayload as e:
        logger.error(f"❌ Invalid webhook payload: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    try:
        return await process_post_call(store, pipeline, payload)
    except NotFoundError:
        logger.error(f"❌ Conversation not found for ElevenLabs ID: {payload.conversation_id}")
        raise HTTPException(status_code=404, detail="Conversation not found")
    except StorageError as e:
        logger.error(f"❌ Storage failure while processing webhook for {payload.conversation_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to process webhook")


@router.post("/elevenlabs")
async def elevenlabs_webhook(
    request: Request,
    store: ConversationStore = Depends(get_store),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
    elevenlabs: ElevenLabsService = Depends(get_elevenlabs),
):
    return await _handle_post_call(request, store, pipeline, elevenlabs)


@router.post("/analysis-provider")
async def analysis_provider_webhook(
    request: Request,
    store: ConversationStore = Depends(get_store),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
    elevenlabs: ElevenLabsService = Depends(get_elevenlabs),
):
    return await _handle_post_call(request, store, pipeline, elevenlabs)
