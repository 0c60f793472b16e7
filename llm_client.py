"""Client for an OpenAI-style chat-completions endpoint.

Services never talk to the model directly: they build a :class:`PromptSpec`
and hand it to an object implementing :class:`LLMClient`. The production
implementation is :class:`ChatCompletionsClient`; tests inject fakes.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol
from uuid import uuid4

import requests

import db
from env_validation import get_env_int

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODELS = {
    "recommendation": "gpt-4o",
    "coach": "gpt-4o-mini",
}

_LLM_LOGGER = logging.getLogger("carecoach.llm")
if not _LLM_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(message)s"))
    _LLM_LOGGER.addHandler(_handler)
_LLM_LOGGER.setLevel(logging.INFO)
_LLM_LOGGER.propagate = False


class LLMCallError(RuntimeError):
    """Raised when the model could not produce a usable reply."""


@dataclass(frozen=True)
class PromptSpec:
    prompt_id: str
    prompt_version: str
    system: str
    user: str
    temperature: float
    max_tokens: int
    model_role: str = "coach"
    user_id: Optional[str] = None


class LLMClient(Protocol):
    def submit(self, spec: PromptSpec) -> str:
        """Return the raw reply text or raise :class:`LLMCallError`."""
        ...


def _coerce_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ChatCompletionsClient:
    """Stateless caller of a chat-completions endpoint."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        models: Optional[Mapping[str, str]] = None,
        timeout: Optional[int] = None,
        db_module=db,
    ) -> None:
        self.api_url = api_url or os.getenv("LLM_API_URL") or DEFAULT_API_URL
        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY")
        self.models = dict(DEFAULT_MODELS)
        self.models["recommendation"] = os.getenv("RECOMMENDATION_MODEL") or self.models["recommendation"]
        self.models["coach"] = os.getenv("COACH_MODEL") or self.models["coach"]
        if models:
            self.models.update(models)
        self.timeout = timeout if timeout is not None else get_env_int("LLM_TIMEOUT", 30)
        self._db = db_module

    def model_for(self, role: str) -> str:
        return self.models.get(role) or self.models["coach"]

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_payload(self, spec: PromptSpec) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model_for(spec.model_role),
            "messages": [
                {"role": "system", "content": spec.system},
                {"role": "user", "content": spec.user},
            ],
            "temperature": spec.temperature,
            "max_tokens": int(spec.max_tokens),
            # Every prompt is decoded as a single JSON object.
            "response_format": {"type": "json_object"},
        }
        return payload

    def submit(self, spec: PromptSpec) -> str:
        payload = self.build_payload(spec)
        model_id = str(payload["model"])
        request_id = str(uuid4())
        start = time.perf_counter()
        tokens_in: Optional[int] = None
        tokens_out: Optional[int] = None
        outcome = "error"
        try:
            try:
                response = requests.post(
                    self.api_url,
                    json=payload,
                    headers=self._headers(),
                    timeout=self.timeout,
                )
                response.raise_for_status()
                data = response.json()
            except requests.HTTPError as exc:
                status = getattr(exc.response, "status_code", "?")
                body = getattr(exc.response, "text", "") or ""
                raise LLMCallError(f"LLM-HTTP {status}: {body[:300]}") from exc
            except requests.Timeout as exc:
                outcome = "timeout"
                raise LLMCallError(f"LLM timeout after {self.timeout}s") from exc
            except (requests.RequestException, ValueError) as exc:
                raise LLMCallError(f"LLM error: {exc}") from exc

            usage = data.get("usage") if isinstance(data, dict) else None
            if isinstance(usage, dict):
                tokens_in = _coerce_int(usage.get("prompt_tokens") or usage.get("input_tokens"))
                tokens_out = _coerce_int(usage.get("completion_tokens") or usage.get("output_tokens"))

            try:
                content = data["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError) as exc:
                raise LLMCallError(f"Unexpected LLM response: {str(data)[:300]}") from exc
            outcome = "ok"
            return content or ""
        finally:
            latency_ms = int((time.perf_counter() - start) * 1000)
            try:
                self._db.record_llm_metric(
                    user_id=spec.user_id,
                    model_id=model_id,
                    prompt_id=spec.prompt_id,
                    prompt_version=spec.prompt_version,
                    latency_ms=latency_ms,
                    tokens_in=tokens_in,
                    tokens_out=tokens_out,
                    outcome=outcome,
                )
            except Exception:
                logger.debug("Failed to record llm metric for %s", spec.prompt_id, exc_info=True)
            log_record = {
                "event": "llm_call",
                "request_id": request_id,
                "user_id": spec.user_id,
                "prompt_id": spec.prompt_id,
                "prompt_version": spec.prompt_version,
                "model": model_id,
                "latency_ms": latency_ms,
                "tokens_in": tokens_in,
                "tokens_out": tokens_out,
                "outcome": outcome,
            }
            _LLM_LOGGER.info(json.dumps(log_record, ensure_ascii=False))
