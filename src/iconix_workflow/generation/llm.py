"""Minimal OpenAI-compatible chat completions client used by the LLM writer.

Only two calls are needed: free text (narratives, diagrams, scenarios) and
JSON validated into a pydantic model (review issues).
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Protocol, TypeVar
from urllib import error, request

from pydantic import BaseModel

TModel = TypeVar("TModel", bound=BaseModel)
logger = logging.getLogger(__name__)

# Failures worth another attempt; anything else propagates immediately.
RETRYABLE_ERRORS = (TimeoutError, ValueError, error.URLError)


class LLMAdapter(Protocol):
    def generate_text(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        timeout_s: float,
    ) -> str: ...

    def generate_structured(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        response_model: type[TModel],
        timeout_s: float,
    ) -> TModel: ...


class OpenAIChatCompletionsAdapter:
    """Chat completions over plain HTTP with bounded retries."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        max_retries: int = 1,
        backoff_s: float = 0.2,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)

    def generate_text(self, *, system_prompt: str, user_prompt: str, timeout_s: float) -> str:
        body = self._complete(self._payload(system_prompt, user_prompt), timeout_s=timeout_s)
        return self._extract_content(body).strip()

    def generate_structured(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        response_model: type[TModel],
        timeout_s: float,
    ) -> TModel:
        payload = self._payload(system_prompt, user_prompt)
        payload["response_format"] = {
            "type": "json_schema",
            "json_schema": {
                "name": response_model.__name__.lower(),
                "strict": False,
                "schema": response_model.model_json_schema(),
            },
        }
        body = self._complete(payload, timeout_s=timeout_s)
        return response_model.model_validate(json.loads(self._extract_content(body)))

    def _payload(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }

    def _complete(self, payload: dict[str, Any], *, timeout_s: float) -> dict[str, Any]:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._request(payload, timeout_s=timeout_s)
            except RETRYABLE_ERRORS as exc:
                logger.warning(
                    "llm_request event=failed attempt=%d/%d model=%s reason=%s",
                    attempt,
                    attempts,
                    self.model,
                    exc,
                )
                if attempt == attempts:
                    raise
                if self.backoff_s > 0:
                    time.sleep(self.backoff_s * attempt)
        raise RuntimeError("LLM request loop exited without a result")

    def _request(self, payload: dict[str, Any], timeout_s: float) -> dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        if _trace_enabled():
            logger.debug("llm_request event=send model=%s url=%s timeout_s=%s", self.model, url, timeout_s)
        req = request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise error.URLError(f"chat completions returned HTTP {exc.code}: {detail}") from exc
        if _trace_enabled():
            logger.debug("llm_request event=received model=%s chars=%d", self.model, len(raw))
        return json.loads(raw)

    @staticmethod
    def _extract_content(response_json: dict[str, Any]) -> str:
        choices = response_json.get("choices") or []
        if not choices:
            raise ValueError("OpenAI response did not contain choices")
        content = choices[0].get("message", {}).get("content", "")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            merged = "".join(
                part["text"]
                for part in content
                if isinstance(part, dict) and isinstance(part.get("text"), str)
            ).strip()
            if merged:
                return merged
        raise ValueError("OpenAI response content could not be parsed as text")


def _trace_enabled() -> bool:
    return os.getenv("ICONIX_LLM_TRACE", "0").strip() == "1"
