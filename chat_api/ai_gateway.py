"""
AI gateway: turns a chat transcript into one Gemini reply.

Candidate models are discovered from the API (or taken from a static list), and
each `(transport, model)` pair is tried in order: every model through the SDK
first, then every model through the REST endpoint. Transient overload errors
are retried with exponential backoff on the same pair; "not found" errors move
on immediately.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from chat_api.transports import DEFAULT_API_BASE, RestTransport, SDKTransport, list_models
from chat_api.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are Lovable AI, a senior full-stack engineer and product designer.

CRITICAL REQUIREMENTS:
- ALWAYS generate React/Next.js code when users ask for UI components, pages, or features
- NEVER provide plain HTML/CSS; always use React components with TypeScript
- Use Next.js 14 App Router patterns (server components, client components with 'use client')
- Use Tailwind CSS for all styling (no inline <style> tags, no separate CSS files)
- Provide complete, production-ready code with proper imports
- Include TypeScript types and interfaces
- Use modern React patterns (hooks, functional components)
- Make components reusable and well-structured

When users request UI components (login pages, forms, dashboards, etc.):
1. Create a Next.js component file (e.g., LoginPage.tsx)
2. Use the 'use client' directive for interactive components
3. Use Tailwind CSS classes for all styling
4. Include proper TypeScript types
5. Add form handling, validation, and state management
6. Make it responsive and accessible
7. Include all necessary imports

You help users design UI, generate clean production-ready Next.js/React code,
refine product ideas, and improve UX.
Respond clearly and step-by-step.
Focus on Next.js, React, TypeScript, Tailwind CSS, and modern frontend development."""

ACKNOWLEDGEMENT = "Understood. I'm ready to help you design UI, generate code, and refine product ideas."

DEFAULT_MODELS = ["gemini-pro", "gemini-1.5-pro", "gemini-1.5-flash"]

TRANSIENT_MARKERS = ("503", "service unavailable", "overloaded", "try again later")
NOT_FOUND_MARKERS = ("404", "not found")


class FailureKind(enum.Enum):
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    OTHER = "other"


def classify_failure(error: BaseException) -> FailureKind:
    """Classify an upstream error by its message, the only signal both transports share."""
    text = str(error).lower()
    if any(marker in text for marker in TRANSIENT_MARKERS):
        return FailureKind.TRANSIENT
    if any(marker in text for marker in NOT_FOUND_MARKERS):
        return FailureKind.NOT_FOUND
    return FailureKind.OTHER


@dataclass
class PreparedPrompt:
    """Gemini-shaped history plus the text to send as the new user turn."""

    history: List[Dict[str, Any]]
    message: str


def _role_and_content(message: Any) -> Tuple[str, str]:
    if isinstance(message, dict):
        return message.get("role", ""), str(message.get("content") or "")
    return getattr(message, "role", ""), str(getattr(message, "content", "") or "")


def prepare_prompt(messages: Sequence[Any], system_prompt: str = SYSTEM_PROMPT) -> PreparedPrompt:
    """
    Build the request for the last user message.

    A leading AI message is the UI's canned greeting and is dropped. With no
    earlier turns the system prompt is folded into the user's text; otherwise the
    history is seeded with the prompt and an acknowledgement from the model.
    """
    pairs = [_role_and_content(m) for m in messages]
    if pairs and pairs[0][0] == "ai":
        pairs = pairs[1:]

    if not pairs or pairs[-1][0] != "user":
        raise ValidationError("Last message must be from user")

    earlier, (_, last_text) = pairs[:-1], pairs[-1]
    if not earlier:
        return PreparedPrompt(history=[], message=f"{system_prompt}\n\nUser: {last_text}")

    history = [
        {"role": "user", "parts": [{"text": system_prompt}]},
        {"role": "model", "parts": [{"text": ACKNOWLEDGEMENT}]},
    ]
    for role, content in earlier:
        history.append({"role": "user" if role == "user" else "model", "parts": [{"text": content}]})
    return PreparedPrompt(history=history, message=last_text)


class AIGateway:
    """Resolves models and runs the retry/fallback loop over the configured transports."""

    def __init__(
        self,
        api_key: Optional[str],
        transports: Optional[Sequence[Any]] = None,
        *,
        api_base: str = DEFAULT_API_BASE,
        fallback_models: Optional[Sequence[str]] = None,
        list_models_timeout: float = 5.0,
        request_timeout: float = 60.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        model_cache_seconds: float = 300.0,
        system_prompt: str = SYSTEM_PROMPT,
        model_lister: Optional[Callable[[], Awaitable[List[str]]]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.api_base = api_base
        self.fallback_models = list(fallback_models or DEFAULT_MODELS)
        self.list_models_timeout = list_models_timeout
        self.max_retries = max(1, max_retries)
        self.retry_base_delay = retry_base_delay
        self.model_cache_seconds = model_cache_seconds
        self.system_prompt = system_prompt
        self._sleep = sleep
        self._model_lister = model_lister
        self._model_cache: Optional[Tuple[float, List[str]]] = None
        if transports is None:
            transports = [
                SDKTransport(api_key, request_timeout=request_timeout),
                RestTransport(api_key, api_base=api_base, request_timeout=request_timeout),
            ]
        self.transports = list(transports)

    @classmethod
    def from_settings(cls, settings) -> "AIGateway":
        return cls(
            settings.gemini_api_key,
            api_base=settings.gemini_api_base,
            fallback_models=settings.gemini_fallback_models,
            list_models_timeout=settings.gemini_list_models_timeout,
            request_timeout=settings.gemini_request_timeout,
            max_retries=settings.gemini_max_retries,
            retry_base_delay=settings.gemini_retry_base_delay,
            model_cache_seconds=settings.gemini_model_cache_seconds,
        )

    # --- Model resolution ---

    async def _fetch_models(self) -> List[str]:
        if self._model_lister is not None:
            return await asyncio.wait_for(self._model_lister(), timeout=self.list_models_timeout)
        return await list_models(self.api_key, self.api_base, timeout=self.list_models_timeout)

    async def resolve_models(self) -> List[str]:
        """Models to try, in order. Falls back to the static list when discovery fails or is empty."""
        if self._model_cache is not None:
            fetched_at, cached = self._model_cache
            if time.monotonic() - fetched_at < self.model_cache_seconds:
                return list(cached)

        try:
            models = await self._fetch_models()
        except Exception as e:
            logger.warning(f"Could not fetch available models, using defaults: {e!r}")
            models = []

        if not models:
            return list(self.fallback_models)
        self._model_cache = (time.monotonic(), list(models))
        return list(models)

    async def list_available_models(self) -> List[str]:
        if not self.api_key:
            raise UpstreamError("GEMINI_API_KEY is not set in environment variables")
        return await self.resolve_models()

    def candidates(self, models: Sequence[str]) -> Iterator[Tuple[Any, str]]:
        for transport in self.transports:
            for model in models:
                yield transport, model

    # --- Generation ---

    async def _call_with_retry(self, transport, model: str, prompt: PreparedPrompt) -> str:
        attempt = 0
        while True:
            try:
                return await transport.generate(model, prompt.history, prompt.message, self.system_prompt)
            except Exception as e:
                attempt += 1
                if classify_failure(e) is not FailureKind.TRANSIENT or attempt >= self.max_retries:
                    raise
                # 1s, 2s, 4s, ...
                delay = self.retry_base_delay * (2 ** (attempt - 1))
                logger.info(
                    f"{model} via {transport.name} is busy, retry attempt "
                    f"{attempt}/{self.max_retries} after {delay}s"
                )
                await self._sleep(delay)

    async def generate_reply(self, messages: Sequence[Any]) -> str:
        """Return the model's reply to the last user message in `messages`."""
        prompt = prepare_prompt(messages, self.system_prompt)
        if not self.api_key:
            raise UpstreamError("GEMINI_API_KEY is not set in environment variables")

        models = await self.resolve_models()
        last_error: Optional[BaseException] = None
        current_transport = None

        for transport, model in self.candidates(models):
            if transport is not current_transport:
                if current_transport is not None:
                    logger.warning(f"{current_transport.name} transport failed for every model, trying {transport.name}")
                current_transport = transport
            try:
                return await self._call_with_retry(transport, model, prompt)
            except Exception as e:
                last_error = e
                kind = classify_failure(e)
                logger.warning(f"{model} via {transport.name} failed ({kind.value}): {e}")

        raise self._exhausted_error(models, last_error)

    @staticmethod
    def _exhausted_error(models: Sequence[str], last_error: Optional[BaseException]) -> UpstreamError:
        detail = str(last_error) if last_error is not None else "Unknown error"
        if last_error is not None and classify_failure(last_error) is FailureKind.TRANSIENT:
            return UpstreamError(
                "The Gemini API is currently overloaded. Please try again in a few moments.\n\n"
                f"Last error: {detail}\n\n"
                "The request was retried automatically but the service is still busy. "
                "This usually resolves within a minute or two.",
                models=models,
                overloaded=True,
            )
        return UpstreamError(
            f"None of the available models ({', '.join(models)}) are accessible with your API key. "
            f"Last error: {detail}.\n\n"
            "Troubleshooting steps:\n"
            "1. Visit /models to see which models are available for your API key\n"
            "2. Check your API key at https://aistudio.google.com/app/apikey\n"
            "3. Ensure your API key has the necessary permissions\n"
            "4. Try creating a new API key if the current one doesn't work",
            models=models,
            overloaded=False,
        )
