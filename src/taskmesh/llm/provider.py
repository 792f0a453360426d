"""Provider abstractions used by the orchestration runtime."""

from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Protocol

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


class LLMError(RuntimeError):
    """Raised when a language model call cannot produce text."""


@dataclass
class PromptContext:
    """Metadata about the prompt being generated."""

    agent_name: str
    task_id: str
    attempt: int = 1
    system_prompt: str = ""
    model: str = ""
    temperature: float = 0.7
    max_tokens: int = 2048


class LLMProvider(Protocol):
    """Interface for language model providers."""

    def generate(self, prompt: str, context: PromptContext) -> str:  # pragma: no cover - interface
        """Return a response for the given prompt."""


class StaticResponseProvider:
    """Provider that replays a finite list of responses (useful for tests)."""

    def __init__(self, responses: Iterable[str]):
        self._responses = iter(responses)
        self.prompts: List[str] = []

    def generate(self, prompt: str, context: PromptContext) -> str:
        self.prompts.append(prompt)
        try:
            return next(self._responses)
        except StopIteration as exc:  # pragma: no cover - debug guard
            raise LLMError("StaticResponseProvider exhausted") from exc


class CallbackProvider:
    """Delegates generation to a plain function; lets tests route by prompt content."""

    def __init__(self, callback: Callable[[str, PromptContext], str]):
        self._callback = callback
        self.prompts: List[str] = []

    def generate(self, prompt: str, context: PromptContext) -> str:
        self.prompts.append(prompt)
        return self._callback(prompt, context)


class ChatCompletionProvider:
    """Calls an OpenAI-compatible ``/chat/completions`` endpoint over HTTP."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        api_key_env: str = "OPENROUTER_API_KEY",
        base_url: str = DEFAULT_BASE_URL,
        model: str | None = None,
        extra_headers: Dict[str, str] | None = None,
        timeout: float = 120.0,
    ) -> None:
        self.api_key = api_key or os.environ.get(api_key_env)
        self.api_key_env = api_key_env
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.extra_headers = extra_headers or {}
        self.timeout = timeout

    def build_payload(self, prompt: str, context: PromptContext) -> Dict[str, Any]:
        messages = []
        if context.system_prompt:
            messages.append({"role": "system", "content": context.system_prompt})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": self.model or context.model,
            "messages": messages,
            "temperature": context.temperature,
            "max_tokens": context.max_tokens,
        }

    def generate(self, prompt: str, context: PromptContext) -> str:
        if not self.api_key:
            raise LLMError(
                f"API key is required for {self.base_url} (set {self.api_key_env} or llm_params.api_key)"
            )
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            **self.extra_headers,
        }
        request = urllib.request.Request(
            url=f"{self.base_url}/chat/completions",
            data=json.dumps(self.build_payload(prompt, context)).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            raise LLMError(f"Chat completion API error: {exc.code} - {detail or exc.reason}") from exc
        except urllib.error.URLError as exc:
            raise LLMError(f"Chat completion request to {self.base_url} failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise LLMError(f"Chat completion request to {self.base_url} timed out after {self.timeout}s") from exc
        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise LLMError("Chat completion API returned a non-JSON body") from exc
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMError(f"Chat completion API returned unexpected payload: {data}") from exc
        if not isinstance(content, str):
            raise LLMError(f"Chat completion API returned unexpected payload: {data}")
        return content.strip()
