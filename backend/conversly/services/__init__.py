from conversly.services.elevenlabs_service import ElevenLabsService
from conversly.services.notification_hub import NotificationHub
from conversly.services.openai_service import OpenAIService

__all__ = [
    'ElevenLabsService',
    'NotificationHub',
    'OpenAIService',
]
