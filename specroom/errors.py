"""Error types shared by the orchestration and session layers."""

from typing import Optional


class SpecRoomError(Exception):
    """Base error. ``code`` is the stable identifier sent to clients."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ConversationNotFoundError(SpecRoomError):
    code = "CONVERSATION_NOT_FOUND"

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation {conversation_id} not found")
        self.conversation_id = conversation_id


class PersonaNotFoundError(SpecRoomError):
    code = "PERSONA_NOT_FOUND"

    def __init__(self, persona_id: str):
        super().__init__(f"Unknown persona: {persona_id}")
        self.persona_id = persona_id


class StoreError(SpecRoomError):
    code = "STORE_ERROR"


class GenerationError(SpecRoomError):
    """A single persona's response could not be generated."""

    code = "GENERATION_ERROR"


class ProviderError(GenerationError):
    code = "PROVIDER_ERROR"

    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class RateLimitError(GenerationError):
    code = "RATE_LIMITED"

    def __init__(self, persona_id: str, retry_after: float):
        super().__init__(
            f"Rate limit exceeded for {persona_id}. Try again in {max(1, int(retry_after + 0.999))} seconds."
        )
        self.persona_id = persona_id
        self.retry_after = retry_after


class NoMessagesError(SpecRoomError):
    code = "NO_MESSAGES_FOUND"

    def __init__(self, conversation_id: str):
        super().__init__("No messages found in conversation")
        self.conversation_id = conversation_id
