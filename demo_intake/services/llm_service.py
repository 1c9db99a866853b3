from __future__ import annotations

import logging
import time
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

ANTHROPIC_API_VERSION = "2023-06-01"


class LLMError(Exception):
    pass


class LLMTransientError(LLMError):
    """Transient LLM errors (timeouts, 429/5xx, network) that a later run may not hit."""


def _gemini_endpoint(model: str, api_key: str) -> str:
    # Using the public Generative Language API endpoint.
    return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={api_key}"


def extract_json_object(text: str) -> str:
    """
    Return the first balanced {...} substring of an LLM reply.

    Prose or markdown fences around the object are ignored; braces inside JSON
    strings do not count towards the balance. Raises LLMError if there is none.
    """
    start = text.find("{")
    if start < 0:
        raise LLMError("No JSON object in LLM response")

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]

    raise LLMError("Unbalanced JSON object in LLM response")


class LLMClient:
    """Single-shot text generation against Gemini or Anthropic."""

    def __init__(
        self,
        *,
        provider: str,
        api_key: str,
        model: str,
        timeout: float = 60.0,
        max_output_tokens: int = 2000,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.provider = provider.lower()
        self._api_key = api_key
        self.model = model
        self._timeout = timeout
        self._max_output_tokens = max_output_tokens
        self._transport = transport

    def generate(self, *, system: str, user: str) -> str:
        if not self._api_key:
            raise LLMError(f"No API key configured for LLM provider {self.provider}")

        logger.info("Calling LLM API. provider=%s model=%s user_prompt_len=%d", self.provider, self.model, len(user))
        start_time = time.time()
        if self.provider == "anthropic":
            text = self._call_anthropic(system=system, user=user)
        elif self.provider == "gemini":
            text = self._call_gemini(system=system, user=user)
        else:
            raise LLMError(f"Unsupported LLM provider: {self.provider}")
        logger.info("LLM response received. elapsed=%.2fs response_len=%d", time.time() - start_time, len(text))
        return text

    def _post(self, url: str, *, headers: dict[str, str], payload: dict[str, Any]) -> dict[str, Any]:
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                resp = client.post(url, headers=headers, json=payload)
                resp.raise_for_status()
                return resp.json()
        except httpx.TransportError as e:
            raise LLMTransientError(str(e)) from e
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            if code == 429 or 500 <= code <= 599:
                raise LLMTransientError(f"{self.provider} HTTP {code}") from e
            raise LLMError(f"{self.provider} HTTP {code}") from e
        except ValueError as e:
            raise LLMError(f"{self.provider} returned invalid JSON: {e}") from e

    def _call_gemini(self, *, system: str, user: str) -> str:
        payload = {
            "systemInstruction": {"parts": [{"text": system}]},
            "contents": [{"role": "user", "parts": [{"text": user}]}],
            "generationConfig": {
                "temperature": 0.2,
                "maxOutputTokens": self._max_output_tokens,
            },
        }
        body = self._post(_gemini_endpoint(self.model, self._api_key), headers={}, payload=payload)
        try:
            candidate = body["candidates"][0]
            result = candidate["content"]["parts"][0]["text"]
        except Exception as e:  # noqa: BLE001
            raise LLMError(f"Unexpected Gemini response shape: {body}") from e

        finish_reason = candidate.get("finishReason", "UNKNOWN")
        if finish_reason != "STOP":
            logger.warning("Gemini response may be incomplete. finish_reason=%s", finish_reason)
        return result

    def _call_anthropic(self, *, system: str, user: str) -> str:
        payload = {
            "model": self.model,
            "max_tokens": self._max_output_tokens,
            "system": system,
            "messages": [{"role": "user", "content": user}],
        }
        headers = {
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }
        body = self._post("https://api.anthropic.com/v1/messages", headers=headers, payload=payload)
        blocks = body.get("content") if isinstance(body, dict) else None
        if isinstance(blocks, list):
            for block in blocks:
                if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
                    return block["text"]
        raise LLMError(f"No text block in Anthropic response: {body}")
