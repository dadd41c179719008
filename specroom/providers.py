"""HTTP clients for the chat-completion providers behind the response generator."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import (
    ANTHROPIC_API_KEY,
    ANTHROPIC_API_URL,
    ANTHROPIC_API_VERSION,
    AI_MAX_RETRIES,
    AI_REQUEST_TIMEOUT,
    DEEPSEEK_API_KEY,
    DEEPSEEK_API_URL,
    OPENAI_API_KEY,
    OPENAI_API_URL,
    OPENAI_MODELS_URL,
    OPENROUTER_API_KEY,
    OPENROUTER_API_URL,
    OPENROUTER_APP_TITLE,
    OPENROUTER_SITE_URL,
    PROVIDER_MODELS,
    SUPPORTED_PROVIDERS,
)
from .errors import ProviderError

logger = logging.getLogger(__name__)


def provider_api_key(provider: str) -> Optional[str]:
    return {
        "openrouter": OPENROUTER_API_KEY,
        "openai": OPENAI_API_KEY,
        "anthropic": ANTHROPIC_API_KEY,
        "deepseek": DEEPSEEK_API_KEY,
    }.get(provider)


def configured_providers() -> List[str]:
    """Providers with an API key, in preference order."""
    return [p for p in ["openai", "anthropic", "deepseek", "openrouter"] if provider_api_key(p)]


def _build_request(
    provider: str,
    api_key: str,
    model: str,
    messages: List[Dict[str, str]],
    max_tokens: int,
    temperature: float,
) -> Dict[str, Any]:
    if provider == "anthropic":
        return {
            "url": ANTHROPIC_API_URL,
            "headers": {
                "x-api-key": api_key,
                "anthropic-version": ANTHROPIC_API_VERSION,
                "Content-Type": "application/json",
            },
            "json": {
                "model": model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": messages,
            },
        }

    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    if provider == "openrouter":
        url = OPENROUTER_API_URL
        if OPENROUTER_SITE_URL:
            headers["HTTP-Referer"] = OPENROUTER_SITE_URL
        if OPENROUTER_APP_TITLE:
            headers["X-Title"] = OPENROUTER_APP_TITLE
    elif provider == "deepseek":
        url = DEEPSEEK_API_URL
    else:
        url = OPENAI_API_URL

    payload = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    if provider == "deepseek":
        payload["stream"] = False
    return {"url": url, "headers": headers, "json": payload}


def _parse_response(provider: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a provider payload to {'content', 'tokens'}."""
    if provider == "anthropic":
        blocks = data.get("content") or []
        first = blocks[0] if blocks else {}
        if first.get("type") != "text" or not first.get("text"):
            raise ProviderError("Unexpected response type from anthropic", provider=provider)
        usage = data.get("usage") or {}
        return {
            "content": first["text"],
            "tokens": int(usage.get("input_tokens", 0)) + int(usage.get("output_tokens", 0)),
        }

    choices = data.get("choices")
    if not choices:
        raise ProviderError(f"Invalid response from {provider}: {data}", provider=provider)
    content = (choices[0].get("message") or {}).get("content")
    if not content:
        raise ProviderError(f"No response content from {provider}", provider=provider)
    usage = data.get("usage") or {}
    return {"content": content, "tokens": int(usage.get("total_tokens") or 0)}


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if data.get("message"):
            return str(data["message"])
    return str(data)


async def query_model(
    provider: str,
    messages: List[Dict[str, str]],
    max_tokens: int,
    temperature: float,
    model: Optional[str] = None,
    timeout: float = AI_REQUEST_TIMEOUT,
    max_retries: int = AI_MAX_RETRIES,
) -> Dict[str, Any]:
    """
    Query one chat-completion provider.

    Args:
        provider: One of SUPPORTED_PROVIDERS
        messages: List of message dicts with 'role' and 'content'
        max_tokens: Completion token cap
        temperature: Sampling temperature
        model: Override for the provider's default model
        timeout: Request timeout in seconds

    Returns:
        Dict with 'content' and 'tokens'

    Raises:
        ProviderError: when the provider is unconfigured, rejects the call,
            or keeps failing after the retries are exhausted
    """
    if provider not in SUPPORTED_PROVIDERS:
        raise ProviderError(f"Unsupported provider: {provider}", provider=provider)

    api_key = provider_api_key(provider)
    if not api_key:
        raise ProviderError(f"{provider} API key is not configured", provider=provider)

    request = _build_request(
        provider,
        api_key,
        model or PROVIDER_MODELS[provider],
        messages,
        max_tokens,
        temperature,
    )

    base_delay = 2.0
    last_error: Optional[Exception] = None

    for attempt in range(max_retries):
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(
                    request["url"],
                    headers=request["headers"],
                    json=request["json"],
                )

            if response.status_code == 429:
                delay = base_delay * (2 ** attempt)
                logger.warning("Rate limited (429) by %s. Retrying in %ss...", provider, delay)
                last_error = ProviderError(
                    f"{provider} rate limited the request", provider=provider, status_code=429
                )
                if attempt < max_retries - 1:
                    await asyncio.sleep(delay)
                continue

            if response.status_code in (400, 401, 403, 404, 422):
                raise ProviderError(
                    f"{provider} API error ({response.status_code}): {_error_detail(response)}",
                    provider=provider,
                    status_code=response.status_code,
                )

            response.raise_for_status()
            return _parse_response(provider, response.json())

        except ProviderError:
            raise
        except (httpx.HTTPError, ValueError) as e:
            last_error = e
            delay = base_delay * (2 ** attempt)
            if attempt < max_retries - 1:
                logger.warning(
                    "Error querying %s (attempt %d/%d): %s. Retrying in %ss...",
                    provider, attempt + 1, max_retries, e, delay,
                )
                await asyncio.sleep(delay)
            else:
                logger.error("Final failure for %s after %d attempts: %s", provider, max_retries, e)

    raise ProviderError(
        f"{provider} request failed after {max_retries} attempts: {last_error}",
        provider=provider,
    )


async def validate_api_key(provider: str, timeout: float = 20.0) -> bool:
    """Make the cheapest call the provider allows to check its key."""
    api_key = provider_api_key(provider)
    if not api_key:
        return False

    if provider == "openai":
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(
                    OPENAI_MODELS_URL,
                    headers={"Authorization": f"Bearer {api_key}"},
                )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("openai API key validation failed: %s", e)
            return False

    try:
        await query_model(
            provider,
            [{"role": "user", "content": "test"}],
            max_tokens=10,
            temperature=0.1,
            timeout=timeout,
            max_retries=1,
        )
        return True
    except ProviderError as e:
        logger.warning("%s API key validation failed: %s", provider, e)
        return False
