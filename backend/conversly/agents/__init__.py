from conversly.agents.conversation_coach import ConversationCoachAgent
from conversly.agents.next_steps_agent import NextStepsAgent

__all__ = [
    'ConversationCoachAgent',
    'NextStepsAgent',
]
