# backend/conversly/models/__init__.py
from conversly.models.user import User
from conversly.models.transcript import Transcript
from conversly.models.conversation import Conversation
from conversly.models.review import Review
from conversly.models.next_steps import NextSteps
from conversly.models.feedback import Feedback

__all__ = ['User', 'Transcript', 'Conversation', 'Review', 'NextSteps', 'Feedback']
