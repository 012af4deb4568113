from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Protocol
from urllib import error, request

from task_orchestrator.config.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextGenerationOptions:
    temperature: float = 0.7
    max_tokens: int = 2000
    system_prompt: str | None = None
    model: str | None = None


class LLMAdapter(Protocol):
    """Interface for free-text completions used by the planner and text tools."""

    def generate_text(
        self,
        prompt: str,
        options: TextGenerationOptions | None = None,
    ) -> str: ...


class OpenAIChatCompletionsAdapter:
    """Small OpenAI adapter using the chat completions REST API."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 30.0,
        max_retries: int = 1,
        backoff_s: float = 0.2,
        default_options: TextGenerationOptions | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)
        self.default_options = default_options or TextGenerationOptions()

    def generate_text(
        self,
        prompt: str,
        options: TextGenerationOptions | None = None,
    ) -> str:
        resolved = options or self.default_options
        messages: list[dict[str, str]] = []
        if resolved.system_prompt:
            messages.append({"role": "system", "content": resolved.system_prompt})
        messages.append({"role": "user", "content": prompt})
        payload = {
            "model": resolved.model or self.model,
            "messages": messages,
            "temperature": resolved.temperature,
            "max_tokens": resolved.max_tokens,
        }
        response_json = self._request_with_retry(payload)
        return self._extract_content(response_json)

    def _request_with_retry(self, payload: dict[str, Any]) -> dict[str, Any]:
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._request(payload)
            except (TimeoutError, ValueError, error.URLError, error.HTTPError) as exc:
                last_error = exc
                logger.warning(
                    "OpenAI request failed attempt=%d/%d model=%s reason=%s",
                    attempt + 1,
                    self.max_retries + 1,
                    payload["model"],
                    exc,
                )
                if attempt < self.max_retries and self.backoff_s > 0:
                    time.sleep(self.backoff_s)
        if last_error is None:
            raise RuntimeError("LLM request failed with unknown error")
        raise last_error

    def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        if _trace_enabled():
            logger.warning(
                "LLM trace request provider=openai model=%s url=%s timeout_s=%s",
                payload["model"],
                url,
                self.timeout_s,
            )
        raw_payload = json.dumps(payload).encode("utf-8")
        req = request.Request(
            url=url,
            data=raw_payload,
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            raise error.HTTPError(
                exc.url,
                exc.code,
                f"OpenAI API request failed: {raw_error}",
                exc.headers,
                exc.fp,
            ) from exc
        if _trace_enabled():
            logger.warning("LLM trace response provider=openai model=%s status=ok", payload["model"])
        return json.loads(body)

    @staticmethod
    def _extract_content(response_json: dict[str, Any]) -> str:
        choices = response_json.get("choices", [])
        if not choices:
            raise ValueError("OpenAI response did not contain choices")

        message = choices[0].get("message", {})
        content = message.get("content", "")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            text_segments: list[str] = []
            for item in content:
                if isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        text_segments.append(text)
            merged = "".join(text_segments).strip()
            if merged:
                return merged
        raise ValueError("OpenAI response content could not be parsed as text")


def build_llm_adapter(settings: Settings) -> LLMAdapter | None:
    """Return the configured adapter, or None when text generation is unavailable."""
    if settings.llm_provider.lower().strip() != "openai":
        logger.warning("Unsupported LLM provider=%s; text generation disabled", settings.llm_provider)
        return None

    api_key = settings.resolved_openai_api_key()
    if not api_key:
        return None

    return OpenAIChatCompletionsAdapter(
        api_key=api_key,
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout_s=settings.llm_timeout_s,
        max_retries=settings.llm_max_retries,
        backoff_s=settings.llm_backoff_s,
        default_options=TextGenerationOptions(
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
        ),
    )


def _trace_enabled() -> bool:
    return os.getenv("TASK_ORCHESTRATOR_LLM_TRACE", "0").strip() == "1"
