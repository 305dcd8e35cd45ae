"""
Text generation providers.

A provider turns input text into a summary and reports which model and
generation options produced it. Remote providers are untrusted and may
fail at any time; the mock provider is local and deterministic and is
what callers fall back to.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import requests

from .hashing import digest_model_config
from .keywords import extract_keywords, keyword_summary

logger = logging.getLogger(__name__)

KNOWN_PROVIDERS = ("mock", "ollama", "openai", "anthropic", "together")

MOCK_MODEL_ID = "mock-local"

SUMMARY_INSTRUCTION = "Summarize succinctly:\n\n{text}"


class ProviderError(Exception):
    """A provider call failed, timed out or returned an unusable body."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


@dataclass
class ProviderOutput:
    summary: str
    model_id: str
    model: str
    provider: str
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def model_config(self) -> Dict[str, Any]:
        return {"model": self.model, "params": dict(self.params)}

    @property
    def model_hash(self) -> str:
        return digest_model_config(self.model, self.params)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "modelId": self.model_id,
            "provider": self.provider,
            "modelConfig": self.model_config,
            "modelHash": self.model_hash,
        }


class Provider:
    """Base class. Subclasses implement the blocking ``_generate``."""
    name = "base"
    default_model = ""

    def __init__(self, timeout: float = 180.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self._session = session or requests.Session()

    async def generate(self, text: str, model: Optional[str] = None,
                       params: Optional[Mapping[str, Any]] = None) -> ProviderOutput:
        return await asyncio.to_thread(self._generate, text, model or self.default_model, dict(params or {}))

    def _generate(self, text: str, model: str, params: Dict[str, Any]) -> ProviderOutput:
        raise NotImplementedError

    def _post_json(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        try:
            resp = self._session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout as e:
            raise ProviderError(self.name, f"timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise ProviderError(self.name, str(e)) from e
        if resp.status_code != 200:
            raise ProviderError(self.name, f"HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as e:
            raise ProviderError(self.name, "response is not JSON") from e
        if not isinstance(body, dict):
            raise ProviderError(self.name, "response is not an object")
        return body

    def _output(self, summary: Any, model: str, params: Dict[str, Any]) -> ProviderOutput:
        if not isinstance(summary, str) or not summary.strip():
            raise ProviderError(self.name, "empty completion")
        return ProviderOutput(
            summary=summary.strip(),
            model_id=f"{self.name}:{model}",
            model=model,
            provider=self.name,
            params=params,
        )


class MockProvider(Provider):
    """Keyword summary computed in-process. Never fails."""
    name = "mock"
    default_model = MOCK_MODEL_ID

    async def generate(self, text: str, model: Optional[str] = None,
                       params: Optional[Mapping[str, Any]] = None) -> ProviderOutput:
        return self._generate(text, MOCK_MODEL_ID, {})

    def _generate(self, text: str, model: str, params: Dict[str, Any]) -> ProviderOutput:
        return ProviderOutput(
            summary=keyword_summary(extract_keywords(text), n=5),
            model_id=MOCK_MODEL_ID,
            model=MOCK_MODEL_ID,
            provider=self.name,
            params={},
        )


def _sampling(params: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    return {k: params[k] for k in keys if k in params}


class OllamaProvider(Provider):
    name = "ollama"
    default_model = "llama3"

    def __init__(self, base_url: str = "http://localhost:11434", **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")

    def _generate(self, text, model, params):
        options = _sampling(params, "temperature", "top_p", "seed")
        body = self._post_json(
            f"{self.base_url}/api/generate",
            {
                "model": model,
                "prompt": f"Please provide a concise summary of the following text:\n\n{text}\n\nSummary:",
                "stream": False,
                "options": options,
            },
            {"Content-Type": "application/json"},
        )
        return self._output(body.get("response"), model, options)


class OpenAIProvider(Provider):
    name = "openai"
    default_model = "gpt-4o-mini"
    url = "https://api.openai.com/v1/chat/completions"

    def __init__(self, api_key: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key

    def _generate(self, text, model, params):
        sampling = _sampling(params, "temperature", "top_p", "max_tokens", "seed")
        body = self._post_json(
            self.url,
            {
                "model": model,
                "messages": [
                    {"role": "system", "content": "You are a concise summarization assistant."},
                    {"role": "user", "content": SUMMARY_INSTRUCTION.format(text=text)},
                ],
                **sampling,
            },
            {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"},
        )
        try:
            summary = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.name, "unexpected response shape") from e
        return self._output(summary, model, sampling)


class AnthropicProvider(Provider):
    name = "anthropic"
    default_model = "claude-3-haiku-20240307"
    url = "https://api.anthropic.com/v1/messages"

    def __init__(self, api_key: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key

    def _generate(self, text, model, params):
        sampling = {"max_tokens": 400, **_sampling(params, "temperature", "top_p", "max_tokens")}
        body = self._post_json(
            self.url,
            {
                "model": model,
                "messages": [{"role": "user", "content": SUMMARY_INSTRUCTION.format(text=text)}],
                **sampling,
            },
            {
                "Content-Type": "application/json",
                "x-api-key": self.api_key,
                "anthropic-version": "2023-06-01",
            },
        )
        try:
            summary = body["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.name, "unexpected response shape") from e
        return self._output(summary, model, sampling)


class TogetherProvider(Provider):
    name = "together"
    default_model = "meta-llama/Meta-Llama-3-8B-Instruct-Turbo"
    url = "https://api.together.xyz/v1/completions"

    def __init__(self, api_key: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key

    def _generate(self, text, model, params):
        sampling = {"max_tokens": 400, **_sampling(params, "temperature", "top_p", "max_tokens")}
        body = self._post_json(
            self.url,
            {
                "model": model,
                "prompt": SUMMARY_INSTRUCTION.format(text=text) + "\n\nSummary:",
                **sampling,
            },
            {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"},
        )
        try:
            choice = body["choices"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.name, "unexpected response shape") from e
        return self._output(choice.get("text") if isinstance(choice, dict) else None, model, sampling)


class ProviderRegistry:
    """
    Providers that are configured for this process.

    Only providers with a key or URL are registered; the mock provider is
    always present.
    """

    def __init__(self, providers: Optional[Mapping[str, Provider]] = None):
        self._providers: Dict[str, Provider] = {"mock": MockProvider()}
        self._providers.update(providers or {})

    @classmethod
    def from_credentials(
        cls,
        ollama_url: Optional[str] = None,
        openai_key: Optional[str] = None,
        anthropic_key: Optional[str] = None,
        together_key: Optional[str] = None,
        timeout: float = 180.0,
    ) -> "ProviderRegistry":
        providers: Dict[str, Provider] = {}
        if ollama_url:
            providers["ollama"] = OllamaProvider(base_url=ollama_url, timeout=timeout)
        if openai_key:
            providers["openai"] = OpenAIProvider(api_key=openai_key, timeout=timeout)
        if anthropic_key:
            providers["anthropic"] = AnthropicProvider(api_key=anthropic_key, timeout=timeout)
        if together_key:
            providers["together"] = TogetherProvider(api_key=together_key, timeout=timeout)
        return cls(providers)

    def active(self) -> List[str]:
        return [name for name in KNOWN_PROVIDERS if name in self._providers]

    def get(self, name: str) -> Optional[Provider]:
        return self._providers.get(name)

    @property
    def mock(self) -> Provider:
        return self._providers["mock"]
