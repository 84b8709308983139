# backend/conversly/services/elevenlabs_service.py
from __future__ import annotations

from typing import Optional

import httpx

from conversly.config import settings
from conversly.errors import UpstreamUnavailable
from conversly.utils.logger import logger
from conversly.utils.webhook_signature import verify_webhook_signature


class ElevenLabsService:
    """
    Client for the ElevenLabs Conversational AI API.

    Issues signed session URLs for the browser and verifies post-call webhooks.
    Construct one per app and pass it where it is needed.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_agent_id: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        *,
        base_url: str = "https://api.elevenlabs.io",
        max_age_seconds: Optional[int] = None,
        max_skew_seconds: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = (api_key if api_key is not None else settings.ELEVENLABS_API_KEY or "").strip()
        self.default_agent_id = (default_agent_id or settings.ELEVENLABS_AGENT_ID or "").strip()
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.ELEVENLABS_WEBHOOK_SECRET or ""
        ).strip()
        self.max_age_seconds = max_age_seconds if max_age_seconds is not None else settings.WEBHOOK_MAX_AGE_SECONDS
        self.max_skew_seconds = max_skew_seconds if max_skew_seconds is not None else settings.WEBHOOK_MAX_SKEW_SECONDS

        self.base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=25)

        if not self.api_key:
            logger.warning("ELEVENLABS_API_KEY is missing")
        if not self.webhook_secret:
            logger.warning("ELEVENLABS_WEBHOOK_SECRET is missing; webhook signatures will NOT be verified")

    async def get_signed_url(self, agent_id: Optional[str] = None) -> str:
        """
        Request a short-lived signed WebSocket URL so the browser can talk to the agent
        directly without seeing our API key. No retries; the browser may ask again.
        """
        agent = (agent_id or self.default_agent_id).strip()
        if not self.api_key:
            raise UpstreamUnavailable("ElevenLabs API key not configured", provider="elevenlabs")
        if not agent:
            raise UpstreamUnavailable("No ElevenLabs agent id configured", provider="elevenlabs")

        url = f"{self.base_url}/v1/convai/conversation/get-signed-url"
        headers = {"xi-api-key": self.api_key}

        logger.info(f"Generating signed URL for agent: {agent}")
        try:
            resp = await self._http.get(url, headers=headers, params={"agent_id": agent})
        except httpx.HTTPError as e:
            logger.error(f"ElevenLabs signed-url request failed: {e}")
            raise UpstreamUnavailable(f"ElevenLabs request failed: {e}", provider="elevenlabs") from e

        if resp.status_code >= 400:
            logger.error(f"ElevenLabs signed-url error {resp.status_code}: {resp.text[:500]}")
            raise UpstreamUnavailable(
                f"ElevenLabs returned {resp.status_code}",
                provider="elevenlabs",
                status_code=resp.status_code,
            )

        try:
            signed_url = (resp.json() or {}).get("signed_url")
        except ValueError:
            signed_url = None
        if not signed_url:
            raise UpstreamUnavailable("ElevenLabs response missing signed_url", provider="elevenlabs")

        logger.info("Successfully generated signed URL")
        return signed_url

    @property
    def verifies_webhooks(self) -> bool:
        return bool(self.webhook_secret)

    def verify_webhook(self, *, raw_body: bytes, signature_header: Optional[str]) -> bool:
        """
        Verify a post-call webhook.

        Returns True when the signature checked out, False when verification was
        skipped because no secret is configured. Raises InvalidSignatureError otherwise.
        """
        if not self.webhook_secret:
            logger.warning("Skipping webhook signature verification (no secret configured)")
            return False

        verify_webhook_signature(
            raw_body=raw_body,
            signature_header=signature_header,
            secret=self.webhook_secret,
            max_age_seconds=self.max_age_seconds,
            max_skew_seconds=self.max_skew_seconds,
        )
        return True

    async def aclose(self) -> None:
        await self._http.aclose()
