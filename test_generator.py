import asyncio
import os
import sys
import unittest
from datetime import datetime
from unittest.mock import AsyncMock, patch

import httpx

# Add the project root to sys.path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '.')))

from specroom.errors import ProviderError, RateLimitError
from specroom.generator import (
    ResponseGenerator,
    SlidingWindowRateLimiter,
    build_prompt,
    format_history,
)
from specroom.models import ConversationContext, ConversationMessage, ConversationPhase, PersonaRole
from specroom.personas import get_persona
from specroom.providers import _build_request, _parse_response, query_model


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_context(messages=0):
    history = [
        ConversationMessage(
            id=str(i),
            type="user" if i % 2 == 0 else "ai",
            content=f"message {i}",
            timestamp=datetime(2024, 1, 1),
            persona=None if i % 2 == 0 else PersonaRole.PRODUCT_MANAGER,
        )
        for i in range(messages)
    ]
    return ConversationContext(
        conversation_id="c1",
        app_idea="Habit tracker",
        target_users=["students", "teachers"],
        current_phase=ConversationPhase.BUSINESS_REQUIREMENTS,
        active_personas=[PersonaRole.PRODUCT_MANAGER],
        previous_messages=history,
    )


class TestRateLimiter(unittest.TestCase):

    def test_budget_is_per_key_and_slides(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(2, window_seconds=60, clock=clock)

        limiter.record("tech-lead")
        clock.now += 10
        limiter.record("tech-lead")

        with self.assertRaises(RateLimitError) as ctx:
            limiter.check("tech-lead")
        self.assertEqual(ctx.exception.retry_after, 50)
        self.assertIn("Rate limit exceeded for tech-lead", ctx.exception.message)

        # other personas are unaffected
        limiter.check("devops")

        clock.now += 50
        self.assertEqual(limiter.remaining("tech-lead"), 1)
        limiter.check("tech-lead")


class TestPrompt(unittest.TestCase):

    def test_history_window_is_last_ten(self):
        history = format_history(make_context(messages=14))

        self.assertNotIn("message 3", history)
        self.assertIn("User: message 4", history)
        self.assertIn("Sarah Chen: message 13", history)
        self.assertEqual(len(history.splitlines()), 10)

    def test_system_notes_are_not_attributed_to_a_persona(self):
        context = make_context().model_copy(update={"previous_messages": [
            ConversationMessage(
                id="n1", type="system", content="Moving to infrastructure phase.",
                timestamp=datetime(2024, 1, 1),
            ),
        ]})
        self.assertEqual(format_history(context), "System: Moving to infrastructure phase.")

    def test_prompt_sections(self):
        persona = get_persona(PersonaRole.PRODUCT_MANAGER)
        prompt = build_prompt(persona, make_context(messages=2), "Who pays for this?")

        self.assertTrue(prompt.startswith(persona.system_prompt))
        self.assertIn("- App Idea: Habit tracker", prompt)
        self.assertIn("- Target Users: students, teachers", prompt)
        self.assertIn("- Current Phase: business-requirements", prompt)
        self.assertIn("- Active Personas: Sarah Chen", prompt)
        self.assertIn("USER MESSAGE: Who pays for this?", prompt)
        self.assertIn("Please respond as Sarah Chen (product-manager).", prompt)


class TestResponseGenerator(unittest.IsolatedAsyncioTestCase):

    def test_requires_a_configured_provider(self):
        with self.assertRaises(ProviderError):
            ResponseGenerator(providers=[])

    def test_rejects_unknown_default_provider(self):
        with self.assertRaises(ValueError):
            ResponseGenerator(default_provider="mystery", providers=["openai"])

    def test_falls_back_to_first_configured_provider(self):
        generator = ResponseGenerator(default_provider="openai", providers=["deepseek", "anthropic"])
        self.assertEqual(generator.active_provider(), "deepseek")

    @patch('specroom.generator.query_model')
    async def test_generate_returns_persona_reply(self, mock_query):
        mock_query.return_value = {"content": "What problem does it solve?", "tokens": 87}
        generator = ResponseGenerator(providers=["anthropic"])

        response = await generator.generate(PersonaRole.PRODUCT_MANAGER, make_context(), "Hello")

        self.assertEqual(response.persona, PersonaRole.PRODUCT_MANAGER)
        self.assertEqual(response.content, "What problem does it solve?")
        self.assertEqual(response.tokens, 87)
        self.assertGreaterEqual(response.processing_time_ms, 0)
        self.assertEqual(mock_query.call_args[0][0], "anthropic")
        self.assertIn("USER MESSAGE: Hello", mock_query.call_args[0][1][0]["content"])

    @patch('specroom.generator.query_model')
    async def test_rate_limit_rejects_without_calling_provider(self, mock_query):
        mock_query.return_value = {"content": "ok", "tokens": 1}
        generator = ResponseGenerator(providers=["openai"], rate_limit_per_minute=1)

        await generator.generate(PersonaRole.DEVOPS, make_context(), "one")
        with self.assertRaises(RateLimitError):
            await generator.generate(PersonaRole.DEVOPS, make_context(), "two")

        self.assertEqual(mock_query.call_count, 1)

    @patch('specroom.generator.query_model')
    async def test_concurrent_calls_share_the_budget(self, mock_query):
        async def slow_reply(*args, **kwargs):
            await asyncio.sleep(0.01)
            return {"content": "ok", "tokens": 1}

        mock_query.side_effect = slow_reply
        generator = ResponseGenerator(providers=["openai"], rate_limit_per_minute=1)

        results = await asyncio.gather(
            generator.generate(PersonaRole.UX_DESIGNER, make_context(), "one"),
            generator.generate(PersonaRole.UX_DESIGNER, make_context(), "two"),
            return_exceptions=True,
        )

        self.assertEqual(mock_query.call_count, 1)
        self.assertEqual(sum(isinstance(r, RateLimitError) for r in results), 1)
        self.assertEqual(generator.rate_limiter.remaining("ux-designer"), 0)

    @patch('specroom.generator.query_model')
    async def test_failed_calls_do_not_consume_budget(self, mock_query):
        mock_query.side_effect = ProviderError("boom", provider="openai", status_code=500)
        generator = ResponseGenerator(providers=["openai"], rate_limit_per_minute=1)

        with self.assertRaises(ProviderError) as ctx:
            await generator.generate(PersonaRole.TECH_LEAD, make_context(), "one")
        self.assertIn("tech-lead", ctx.exception.message)
        self.assertEqual(generator.rate_limiter.remaining("tech-lead"), 1)


class TestProviders(unittest.IsolatedAsyncioTestCase):

    def test_anthropic_request_and_response_shape(self):
        request = _build_request("anthropic", "key", "claude", [{"role": "user", "content": "hi"}], 100, 0.5)
        self.assertEqual(request["headers"]["x-api-key"], "key")
        self.assertEqual(request["json"]["max_tokens"], 100)

        parsed = _parse_response("anthropic", {
            "content": [{"type": "text", "text": "Hello"}],
            "usage": {"input_tokens": 5, "output_tokens": 7},
        })
        self.assertEqual(parsed, {"content": "Hello", "tokens": 12})

    def test_openai_style_response_requires_content(self):
        with self.assertRaises(ProviderError):
            _parse_response("openai", {"choices": [{"message": {"content": ""}}]})

        parsed = _parse_response("deepseek", {
            "choices": [{"message": {"content": "Sure"}}],
            "usage": {"total_tokens": 30},
        })
        self.assertEqual(parsed, {"content": "Sure", "tokens": 30})

    async def test_client_errors_are_not_retried(self):
        response = httpx.Response(
            401,
            json={"error": {"message": "bad key"}},
            request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"),
        )
        post = AsyncMock(return_value=response)

        with patch('specroom.providers.provider_api_key', return_value="sk-test"), \
                patch.object(httpx.AsyncClient, "post", new=post):
            with self.assertRaises(ProviderError) as ctx:
                await query_model("openai", [{"role": "user", "content": "hi"}], 10, 0.7)

        self.assertEqual(ctx.exception.status_code, 401)
        self.assertIn("bad key", ctx.exception.message)
        self.assertEqual(post.call_count, 1)

    async def test_rate_limited_calls_are_retried(self):
        request = httpx.Request("POST", "https://api.deepseek.com/v1/chat/completions")
        post = AsyncMock(side_effect=[
            httpx.Response(429, json={}, request=request),
            httpx.Response(200, json={"choices": [{"message": {"content": "Done"}}]}, request=request),
        ])

        with patch('specroom.providers.provider_api_key', return_value="sk-test"), \
                patch.object(httpx.AsyncClient, "post", new=post), \
                patch('specroom.providers.asyncio.sleep', new=AsyncMock()):
            result = await query_model("deepseek", [{"role": "user", "content": "hi"}], 10, 0.7)

        self.assertEqual(result["content"], "Done")
        self.assertEqual(post.call_count, 2)


if __name__ == "__main__":
    unittest.main()
