"""Persona response generation on top of the configured provider."""

import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from .config import (
    AI_DEFAULT_PROVIDER,
    AI_MAX_TOKENS,
    AI_RATE_LIMIT_PER_MINUTE,
    AI_TEMPERATURE,
    PROMPT_HISTORY_WINDOW,
    RATE_LIMIT_WINDOW_SECONDS,
    SUPPORTED_PROVIDERS,
)
from .errors import ProviderError, RateLimitError
from .models import ConversationContext, OrchestratedResponse, Persona, PersonaRole
from .personas import all_personas, get_persona
from .providers import configured_providers, query_model, validate_api_key

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Per-key call budget over a sliding window. Rejects instead of queuing."""

    def __init__(
        self,
        max_calls: int,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self._clock = clock
        self._calls: Dict[str, Deque[float]] = {}

    def _prune(self, key: str, now: float) -> Deque[float]:
        calls = self._calls.setdefault(key, deque())
        while calls and now - calls[0] >= self.window_seconds:
            calls.popleft()
        return calls

    def check(self, key: str):
        """Raise RateLimitError if ``key`` has used its budget for the window."""
        now = self._clock()
        calls = self._prune(key, now)
        if len(calls) >= self.max_calls:
            retry_after = self.window_seconds - (now - calls[0])
            raise RateLimitError(key, retry_after)

    def record(self, key: str) -> float:
        now = self._clock()
        self._prune(key, now).append(now)
        return now

    def acquire(self, key: str) -> float:
        """Check and reserve a slot in one step. Returns the reservation stamp."""
        self.check(key)
        return self.record(key)

    def release(self, key: str, stamp: float):
        """Give back a reservation whose call did not succeed."""
        calls = self._calls.get(key)
        if calls and stamp in calls:
            calls.remove(stamp)

    def remaining(self, key: str) -> int:
        return max(0, self.max_calls - len(self._prune(key, self._clock())))


def format_history(context: ConversationContext, limit: int = PROMPT_HISTORY_WINDOW) -> str:
    lines = []
    for msg in context.previous_messages[-limit:]:
        if msg.persona:
            speaker = get_persona(msg.persona).name
        else:
            speaker = "User" if msg.is_user else "System"
        lines.append(f"{speaker}: {msg.content}")
    return "\n".join(lines)


def build_prompt(persona: Persona, context: ConversationContext, user_message: str) -> str:
    target_users = ", ".join(context.target_users)
    active = ", ".join(get_persona(p).name for p in context.active_personas)

    return f"""{persona.system_prompt}

CONVERSATION CONTEXT:
- App Idea: {context.app_idea}
- Target Users: {target_users}
- Complexity: {context.complexity or 'Not specified'}
- Current Phase: {context.current_phase.value}
- Active Personas: {active}

RECENT CONVERSATION:
{format_history(context)}

USER MESSAGE: {user_message}

Please respond as {persona.name} ({persona.role.value}). Keep your response focused, professional, and true to your expertise. If you need to hand off to another team member or suggest next steps, mention it clearly."""


class ResponseGenerator:
    """Generates one persona's reply via the configured provider."""

    def __init__(
        self,
        default_provider: str = AI_DEFAULT_PROVIDER,
        max_tokens: int = AI_MAX_TOKENS,
        temperature: float = AI_TEMPERATURE,
        rate_limit_per_minute: int = AI_RATE_LIMIT_PER_MINUTE,
        providers: Optional[List[str]] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
    ):
        if default_provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported provider: {default_provider}")
        self.default_provider = default_provider
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.providers = providers if providers is not None else configured_providers()
        if not self.providers:
            raise ProviderError("At least one AI provider API key must be configured")
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(rate_limit_per_minute)

    def active_provider(self) -> str:
        """The default provider when configured, otherwise the first available one."""
        if self.default_provider in self.providers:
            return self.default_provider
        return self.providers[0]

    async def generate(
        self,
        persona: PersonaRole,
        context: ConversationContext,
        user_message: str,
    ) -> OrchestratedResponse:
        started = time.monotonic()
        key = PersonaRole(persona).value

        # reserved before the await so concurrent turns cannot overshoot the budget
        stamp = self.rate_limiter.acquire(key)
        succeeded = False

        profile = get_persona(persona)
        prompt = build_prompt(profile, context, user_message)
        provider = self.active_provider()

        try:
            result = await query_model(
                provider,
                [{"role": "user", "content": prompt}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
            succeeded = True
        except ProviderError as e:
            logger.error("Generation failed for persona %s via %s: %s", key, provider, e)
            raise ProviderError(
                f"Failed to generate response for {key}: {e.message}",
                provider=provider,
                status_code=e.status_code,
            )
        finally:
            if not succeeded:
                self.rate_limiter.release(key, stamp)

        return OrchestratedResponse(
            persona=profile.role,
            content=result["content"],
            tokens=result.get("tokens", 0),
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )

    async def validate_api_keys(self) -> Dict[str, bool]:
        results = {provider: False for provider in SUPPORTED_PROVIDERS}
        for provider in self.providers:
            results[provider] = await validate_api_key(provider)
        return results

    def available_personas(self) -> List[Persona]:
        return all_personas()
