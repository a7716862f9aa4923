"""AI spam classifier for contract metadata.

Verdicts are cached by a fingerprint of the provider-independent metadata
view, the resolved model id and the prompt version, so a change to any of
them is a cache miss.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, AsyncContextManager, Mapping, Sequence

import httpx
import openai
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from spamwatch.chains import ChainConfig
from spamwatch.errors import (
    ClassifierError,
    ClassifierParseFailure,
    ClassifierPromptError,
    ClassifierRateLimited,
    ClassifierTimeout,
    ClassifierUnauthorized,
    ClassifierUnavailable,
    RegistryError,
)
from spamwatch.observability import Observability, get_observability
from spamwatch.providers.base import ContractMetadata, DependencyHealth
from spamwatch.settings import Settings, get_settings
from spamwatch.util.retry import BackoffPolicy, retry_async

from .cache import PredictionCache
from .registry import ModelRegistry, PromptRegistry, PromptVersion

LOGGER = logging.getLogger(__name__)

SPAM_MESSAGE = "AI analysis classified as spam"
LEGITIMATE_MESSAGE = "AI analysis classified as legitimate"
CACHED_SUFFIX = " (cached)"
HEALTH_DEPENDENCY_NAME = "classifier"

_SPAM_TOKENS = frozenset({"true", "yes", "spam"})
_LEGITIMATE_TOKENS = frozenset({"false", "no", "not spam", "legitimate"})
_LEADING_ANSWERS = {"true": True, "yes": True, "false": False, "no": False}
_ANSWER_PUNCTUATION = " \t\r\n\"'`.!"
_SPAM_PATTERNS = (
    re.compile(r"\bis spam\b"),
    re.compile(r"\bspam\s*:\s*true\b"),
    re.compile(r"\bclassification\s*:\s*spam\b"),
    re.compile(r"[\"']spam[\"']\s*:\s*true\b"),
)
_LEGITIMATE_PATTERNS = (
    re.compile(r"\bnot spam\b"),
    re.compile(r"\bspam\s*:\s*false\b"),
    re.compile(r"\bclassification\s*:\s*legitimate\b"),
    re.compile(r"[\"']spam[\"']\s*:\s*false\b"),
)
_MOCK_SPAM_MARKERS = (
    "airdrop",
    "claim",
    "reward",
    "giveaway",
    "free mint",
    "bonus",
    "visit",
    "http://",
    "https://",
    "www.",
    ".com",
    ".io",
    "t.me/",
)


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    verdict: bool
    message: str
    cached: bool
    fingerprint: str


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```") and stripped.endswith("```"):
        lines = stripped.splitlines()
        if len(lines) >= 2:
            return "\n".join(lines[1:-1]).strip()
    return stripped


def parse_verdict(raw_output: str) -> bool:
    """Map free-form model output to a verdict.

    Exact answers are checked first, then a leading answer word together with
    known phrasings. Output matching none of them, matching both a spam and a
    legitimate phrasing, or whose leading answer contradicts its phrasing
    raises :class:`ClassifierParseFailure`; it is never defaulted.
    """

    text = _strip_code_fence(raw_output or "").lower()
    token = text.strip(_ANSWER_PUNCTUATION)
    if token in _SPAM_TOKENS:
        return True
    if token in _LEGITIMATE_TOKENS:
        return False

    leading = _leading_answer(text)
    spam_hit = any(pattern.search(text) for pattern in _SPAM_PATTERNS)
    legitimate_hit = any(pattern.search(text) for pattern in _LEGITIMATE_PATTERNS)
    if spam_hit and legitimate_hit:
        raise ClassifierParseFailure(raw_output)
    phrased = spam_hit if spam_hit or legitimate_hit else None
    if leading is not None and phrased is not None and leading != phrased:
        raise ClassifierParseFailure(raw_output)
    if leading is not None:
        return leading
    if phrased is not None:
        return phrased
    raise ClassifierParseFailure(raw_output)


def _leading_answer(text: str) -> bool | None:
    lines = text.strip().splitlines()
    if not lines:
        return None
    first_line = lines[0].strip(_ANSWER_PUNCTUATION)
    if first_line in _SPAM_TOKENS:
        return True
    if first_line in _LEGITIMATE_TOKENS:
        return False
    words = first_line.split()
    first_word = words[0].strip(_ANSWER_PUNCTUATION + ",:;") if words else ""
    return _LEADING_ANSWERS.get(first_word)


def compute_fingerprint(view: Mapping[str, Any], *, model_id: str, prompt_version: str) -> str:
    """Return the SHA-256 cache key for a classification input."""

    canonical = json.dumps(
        {"metadata": dict(view), "model": model_id, "prompt_version": prompt_version},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _map_exception(exc: BaseException) -> ClassifierError:
    if isinstance(exc, ClassifierError):
        return exc
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ClassifierUnauthorized(f"completion API rejected credentials: {exc}")
    if isinstance(exc, openai.RateLimitError):
        return ClassifierRateLimited(f"completion API rate limited: {exc}")
    if isinstance(exc, (openai.APITimeoutError, httpx.TimeoutException, asyncio.TimeoutError)):
        return ClassifierTimeout(f"completion API timed out: {exc}")
    if isinstance(exc, (openai.APIConnectionError, httpx.TransportError, ConnectionError)):
        return ClassifierUnavailable(f"completion API unreachable: {exc}")
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        if status in (401, 403):
            return ClassifierUnauthorized(f"completion API rejected credentials (HTTP {status})")
        if status == 429:
            return ClassifierRateLimited("completion API rate limited (HTTP 429)")
        if status == 408 or status >= 500:
            return ClassifierUnavailable(f"completion API returned HTTP {status}")
    return ClassifierError(f"completion request failed: {exc}")


class SpamClassifier:
    """Classify contract metadata as spam or legitimate with a chat model."""

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        cache: PredictionCache | None = None,
        model_registry: ModelRegistry | None = None,
        prompt_registry: PromptRegistry | None = None,
        chat_model: Any | None = None,
        http_client: httpx.AsyncClient | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        config = self.settings.classifier
        self.provider = config.provider
        self.cache = cache
        self.model_registry = model_registry or ModelRegistry.from_yaml(config.model_registry_path)
        self.prompt_registry = prompt_registry or PromptRegistry.from_json(config.prompt_registry_path)
        self.model_id = self.model_registry.resolve(config.model_type, config.model_version)
        self.prompt: PromptVersion = self.prompt_registry.get(config.prompt_version)
        self.timeout_seconds = config.timeout_seconds
        self.health_check_timeout_seconds = config.health_check_timeout_seconds
        self.policy = BackoffPolicy.from_settings(self.settings, max_attempts=config.max_attempts)
        self.observability = observability or get_observability(component="classifier", settings=self.settings)
        self._client = chat_model if chat_model is not None else self._build_client()
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient()

    def _build_client(self):
        config = self.settings.classifier
        if self.provider == "mock":
            return None

        if self.provider == "openai":
            from langchain_openai import ChatOpenAI

            if not config.api_key:
                LOGGER.warning("OpenAI API key is not configured; classification requests will be rejected")
            return ChatOpenAI(
                model=self.model_id,
                api_key=config.api_key or "",
                base_url=config.base_url,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                timeout=config.timeout_seconds,
                max_retries=0,
            )

        if self.provider == "ollama":
            from langchain_ollama import ChatOllama

            return ChatOllama(
                model=self.model_id,
                base_url=config.ollama_base_url,
                temperature=config.temperature,
                num_predict=config.max_tokens,
            )
        raise ValueError(f"Unsupported classifier provider '{self.provider}'")

    async def classify(
        self, chain: ChainConfig, metadata: ContractMetadata, *, limiter: AsyncContextManager | None = None
    ) -> ClassificationResult:
        """Return a verdict for ``metadata``, consulting the cache first.

        ``limiter`` is held for each completion attempt, not across backoff.
        """

        view = metadata.classification_view()
        fingerprint = compute_fingerprint(view, model_id=self.model_id, prompt_version=self.prompt.version)

        if self.cache is not None:
            entry = self.cache.get(fingerprint)
            if entry is not None:
                self.observability.increment("classifier.cache", tags={"result": "hit"})
                return ClassificationResult(
                    verdict=entry.verdict,
                    message=f"{entry.message}{CACHED_SUFFIX}",
                    cached=True,
                    fingerprint=fingerprint,
                )
            self.observability.increment("classifier.cache", tags={"result": "miss"})

        try:
            user_message = self.prompt.render_user_message(view)
        except RegistryError as exc:
            LOGGER.error("Prompt %s failed to render for %s: %s", self.prompt.version, metadata.address, exc)
            self.observability.increment("classifier.outcome", tags={"result": ClassifierPromptError.kind})
            raise ClassifierPromptError(str(exc)) from exc
        messages = [SystemMessage(content=self.prompt.system_message), HumanMessage(content=user_message)]
        try:
            with self.observability.timer("classifier.latency_ms", tags={"provider": self.provider}):
                raw_output = await retry_async(
                    lambda: self._complete(messages, view),
                    policy=self.policy,
                    is_retryable=lambda exc: isinstance(exc, ClassifierError) and exc.retryable,
                    label=f"classify {metadata.address}",
                    limiter=limiter,
                )
            verdict = parse_verdict(raw_output)
        except ClassifierError as exc:
            if isinstance(exc, ClassifierUnauthorized):
                LOGGER.error("Classifier credentials rejected while classifying %s on %s", metadata.address, chain.label)
            elif isinstance(exc, ClassifierParseFailure):
                LOGGER.warning("Unparseable classifier output for %s: %r", metadata.address, exc.raw_output)
            self.observability.increment("classifier.outcome", tags={"result": exc.kind})
            raise

        message = SPAM_MESSAGE if verdict else LEGITIMATE_MESSAGE
        if self.cache is not None:
            self.cache.put(fingerprint, verdict, message)
        self.observability.increment("classifier.outcome", tags={"result": "spam" if verdict else "legitimate"})
        return ClassificationResult(verdict=verdict, message=message, cached=False, fingerprint=fingerprint)

    async def _complete(self, messages: Sequence[BaseMessage], view: Mapping[str, Any]) -> str:
        if self._client is None:
            return _mock_completion(view)
        try:
            response = await asyncio.wait_for(self._client.ainvoke(list(messages)), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise ClassifierTimeout(f"completion timed out after {self.timeout_seconds:g}s") from exc
        except Exception as exc:
            raise _map_exception(exc) from exc
        content = getattr(response, "content", response)
        if isinstance(content, list):
            content = " ".join(str(part.get("text", "")) if isinstance(part, Mapping) else str(part) for part in content)
        return str(content or "")

    async def health_check(self) -> DependencyHealth:
        """Check the completion backend; the mock backend is always up."""

        started = time.perf_counter()
        config = self.settings.classifier
        if self.provider == "mock":
            return DependencyHealth.up(HEALTH_DEPENDENCY_NAME, latency_ms=0.0)
        if self.provider == "openai":
            url = f"{config.base_url.rstrip('/')}/models"
            headers = {"Authorization": f"Bearer {config.api_key or ''}"}
        else:
            url = f"{config.ollama_base_url.rstrip('/')}/api/tags"
            headers = {}
        try:
            response = await self._http.get(url, headers=headers, timeout=self.health_check_timeout_seconds)
        except httpx.TimeoutException:
            return DependencyHealth.down(
                HEALTH_DEPENDENCY_NAME,
                f"timed out after {self.health_check_timeout_seconds:g}s",
                latency_ms=_elapsed_ms(started),
            )
        except httpx.HTTPError as exc:
            return DependencyHealth.down(HEALTH_DEPENDENCY_NAME, f"unreachable: {exc}", latency_ms=_elapsed_ms(started))
        status = response.status_code
        if status < 300 or status == 400:
            return DependencyHealth.up(HEALTH_DEPENDENCY_NAME, latency_ms=_elapsed_ms(started))
        if status in (401, 403):
            LOGGER.error("Classifier health check failed: credentials rejected (HTTP %s)", status)
            reason = "credentials rejected"
        else:
            reason = f"HTTP {status}"
        return DependencyHealth.down(HEALTH_DEPENDENCY_NAME, reason, latency_ms=_elapsed_ms(started))

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()


def _mock_completion(view: Mapping[str, Any]) -> str:
    text = " ".join(str(view.get(key) or "") for key in ("name", "symbol", "description")).lower()
    if not text.strip():
        return "false"
    return "true" if any(marker in text for marker in _MOCK_SPAM_MARKERS) else "false"


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 2)


__all__ = [
    "ClassificationResult",
    "SpamClassifier",
    "compute_fingerprint",
    "parse_verdict",
    "SPAM_MESSAGE",
    "LEGITIMATE_MESSAGE",
]
