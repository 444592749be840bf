"""
Two ways of calling the Gemini generateContent API: the google-generativeai SDK
and a direct REST request over aiohttp. Both take the same Gemini-shaped
history (`{"role": "user"|"model", "parts": [{"text": ...}]}`) and return text.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp
import google.generativeai as genai

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class TransportCallError(Exception):
    """A non-2xx response (or unusable body) from the REST endpoint."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class SDKTransport:
    """Chat-session call through google-generativeai."""

    name = "sdk"

    def __init__(self, api_key: str, request_timeout: float = 60.0):
        self.api_key = api_key
        self.request_timeout = request_timeout
        self._configured = False

    def _ensure_configured(self) -> None:
        # genai.configure is process-global; only do it once per transport
        if not self._configured:
            genai.configure(api_key=self.api_key)
            self._configured = True

    async def generate(
        self,
        model_name: str,
        history: List[Dict[str, Any]],
        message: str,
        system_instruction: str,
    ) -> str:
        self._ensure_configured()
        model = genai.GenerativeModel(model_name)
        chat = model.start_chat(history=history)
        response = await asyncio.wait_for(chat.send_message_async(message), timeout=self.request_timeout)
        return response.text


class RestTransport:
    """Direct POST to `models/{model}:generateContent`."""

    name = "rest"

    def __init__(self, api_key: str, api_base: str = DEFAULT_API_BASE, request_timeout: float = 60.0):
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.request_timeout = request_timeout

    async def generate(
        self,
        model_name: str,
        history: List[Dict[str, Any]],
        message: str,
        system_instruction: str,
    ) -> str:
        contents = list(history)
        contents.append({"role": "user", "parts": [{"text": message}]})
        payload = {
            "contents": contents,
            "systemInstruction": {"parts": [{"text": system_instruction}]},
        }
        url = f"{self.api_base}/models/{model_name}:generateContent"
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(url, params={"key": self.api_key}, json=payload) as response:
                if response.status != 200:
                    body = await response.text()
                    raise TransportCallError(
                        f"API error: {response.status} {response.reason} - {body}", status=response.status
                    )
                data = await response.json()

        text = extract_text(data)
        if not text:
            raise TransportCallError("No text in response")
        return text


def extract_text(data: Dict[str, Any]) -> Optional[str]:
    """Pull the first candidate's first text part out of a generateContent response."""
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None


async def list_models(api_key: str, api_base: str = DEFAULT_API_BASE, timeout: float = 5.0) -> List[str]:
    """
    Names of the models this key can call with generateContent, without the
    `models/` prefix. Raises on network or HTTP failure; callers decide the fallback.
    """
    url = f"{api_base.rstrip('/')}/models"
    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        async with session.get(url, params={"key": api_key}) as response:
            if response.status != 200:
                raise TransportCallError(
                    f"Failed to fetch models: {response.status} {response.reason}", status=response.status
                )
            data = await response.json()
    return parse_model_listing(data)


def parse_model_listing(data: Dict[str, Any]) -> List[str]:
    names = []
    for model in data.get("models") or []:
        if "generateContent" not in (model.get("supportedGenerationMethods") or []):
            continue
        name = model.get("name") or ""
        if name.startswith("models/"):
            name = name[len("models/"):]
        if name:
            names.append(name)
    return names
