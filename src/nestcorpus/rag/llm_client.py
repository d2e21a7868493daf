"""LiteLLM client wrapper: async calls, API key validation, error translation.

All embedding + completion calls route through this module. LiteLLM's own
retry is disabled (num_retries=0); bounded retry, backoff and the shared
concurrency limit live in nestcorpus.rag.gateway so every attempt is counted
against the same limiter.
"""

from __future__ import annotations

import asyncio
import os

import litellm

from nestcorpus.errors import AuthError, NetworkError, ProviderError, RateLimited

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def provider_env_var(provider: str) -> str:
    """Environment variable holding the API key for *provider* (or a model string)."""
    name = provider_of(provider) if "/" in provider else provider.lower()
    return _PROVIDER_ENV.get(name) or f"{name.upper()}_API_KEY"


def has_api_key(model: str) -> bool:
    env_var = _PROVIDER_ENV.get(provider_of(model))
    return env_var is None or bool(os.getenv(env_var))


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Raises:
        AuthError: If the required key is missing from the environment.
    """
    if not has_api_key(model):
        provider = provider_of(model)
        raise AuthError(
            f"API key not found for provider '{provider}'. "
            f"Set the {_PROVIDER_ENV[provider]} environment variable.",
            provider=model,
        )


# ------------------------------------------------------------------
# Error translation
# ------------------------------------------------------------------


def translate_error(exc: BaseException, model: str) -> ProviderError:
    """Map a LiteLLM / asyncio exception onto the provider error taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(
        exc,
        (litellm.exceptions.AuthenticationError, litellm.exceptions.PermissionDeniedError),
    ):
        return AuthError(f"{model}: authentication failed: {exc}", provider=model)
    if isinstance(exc, litellm.exceptions.RateLimitError):
        return RateLimited(f"{model}: rate limited: {exc}", provider=model)
    if isinstance(
        exc,
        (
            litellm.exceptions.Timeout,
            litellm.exceptions.APIConnectionError,
            litellm.exceptions.ServiceUnavailableError,
            litellm.exceptions.InternalServerError,
            asyncio.TimeoutError,
            ConnectionError,
        ),
    ):
        return NetworkError(f"{model}: network failure: {exc}", provider=model)
    return ProviderError(f"{model}: {type(exc).__name__}: {exc}", provider=model)


# ------------------------------------------------------------------
# Calls
# ------------------------------------------------------------------


async def aembed(model: str, text: str, timeout: float) -> list[float]:
    """Call litellm.aembedding() once. Returns the embedding vector.

    Raises:
        ProviderError: Any failure, translated via translate_error().
    """
    try:
        response = await litellm.aembedding(
            model=model,
            input=[text],
            timeout=timeout,
            num_retries=0,
        )
        return list(response.data[0]["embedding"])
    except Exception as exc:
        raise translate_error(exc, model) from exc


async def acomplete(
    model: str,
    messages: list[dict],
    timeout: float,
    max_tokens: int = 500,
    temperature: float = 0.3,
) -> str:
    """Call litellm.acompletion() once. Returns the content string.

    Raises:
        ProviderError: Any failure, translated via translate_error().
    """
    try:
        response = await litellm.acompletion(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            timeout=timeout,
            num_retries=0,
        )
        return response.choices[0].message.content or ""
    except Exception as exc:
        raise translate_error(exc, model) from exc
