"""
Remote Intent Classifier
Text-completion fallback used when the local heuristics are not confident.

Providers:
    anthropic - Anthropic Messages API (default)
    openai    - OpenAI Chat Completions API

The API key comes from a credential provider callable; the classifier never
stores or rotates it. Every call returns a RemoteOutcome whose ``kind`` says
what happened (ok, no_credential, network_failure, timeout, parse_failure,
cancelled, circuit_open) - failures are values, not exceptions.

Usage:
    remote = RemoteClassifier(credential_provider=lambda: "sk-ant-...")
    outcome = remote.classify("put on some jazz", "play some jazz", "No recent context")
    if outcome.ok:
        print(outcome.result.intent)
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

import anthropic
import openai

from understanding import config
from understanding.models import IntentResult, planned_action_for
from understanding.observability import CircuitBreaker
from understanding.vocabulary import KNOWN_INTENTS, UNKNOWN_INTENT, canonical_action

logger = logging.getLogger(__name__)

CredentialProvider = Callable[[], Optional[str]]

SYSTEM_PROMPT = "You are an intent classifier. Respond only with valid JSON."

CLASSIFY_PROMPT = """Classify this user request into a structured intent.

User said: "{original}"
Normalized: "{normalized}"
Context: {context}

Respond with JSON only:
{{
  "intent": "{intents}",
  "entities": {{
    "query": "main subject",
    "app": "application name",
    "action": "specific action",
    "target": "file/folder/url",
    "platform": "spotify/youtube/etc"
  }},
  "confidence": 0.0-1.0,
  "inferred_goal": "what user wants to achieve",
  "needs_confirmation": true/false,
  "missing_capability": "null or what's missing"
}}"""


class RemoteClassifierError(Exception):
    """Raised internally when a completion cannot be turned into an IntentResult."""


class RemoteOutcomeKind(Enum):
    OK = "ok"
    NO_CREDENTIAL = "no_credential"
    NETWORK_FAILURE = "network_failure"
    TIMEOUT = "timeout"
    PARSE_FAILURE = "parse_failure"
    CANCELLED = "cancelled"
    CIRCUIT_OPEN = "circuit_open"


class RemoteOutcome:
    """Outcome of one remote classification attempt."""

    __slots__ = ("kind", "result", "detail")

    def __init__(
        self,
        kind: RemoteOutcomeKind,
        result: Optional[IntentResult] = None,
        detail: str = "",
    ):
        self.kind = kind
        self.result = result
        self.detail = detail

    @property
    def ok(self) -> bool:
        return self.kind == RemoteOutcomeKind.OK and self.result is not None

    def __repr__(self) -> str:
        return f"RemoteOutcome(kind={self.kind.value!r}, detail={self.detail!r})"


# ── Response parsing ─────────────────────────────────────────────────────────

def strip_code_fence(text: str) -> str:
    """Remove a ```json ... ``` wrapper if the model added one."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        kept = []
        for line in lines:
            if line.startswith("```"):
                break
            kept.append(line)
        text = "\n".join(kept)
    return text.strip()


def parse_classification(text: Optional[str]) -> IntentResult:
    """
    Turn the model's reply into an IntentResult.

    Raises:
        RemoteClassifierError: reply is empty, not JSON, or breaks the schema.
    """
    if not text or not text.strip():
        raise RemoteClassifierError("empty completion")

    try:
        root = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        raise RemoteClassifierError(f"invalid JSON: {e}") from e

    if not isinstance(root, dict):
        raise RemoteClassifierError("completion is not a JSON object")

    intent = root.get("intent", UNKNOWN_INTENT)
    if not isinstance(intent, str) or not intent.strip():
        raise RemoteClassifierError("intent must be a non-empty string")
    intent = intent.strip().lower()

    confidence = root.get("confidence", 0.5)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise RemoteClassifierError("confidence must be a number")

    needs_confirmation = root.get("needs_confirmation", False)
    if not isinstance(needs_confirmation, bool):
        raise RemoteClassifierError("needs_confirmation must be a boolean")

    entities: Dict[str, str] = {}
    raw_entities = root.get("entities") or {}
    if not isinstance(raw_entities, dict):
        raise RemoteClassifierError("entities must be an object")
    for key, value in raw_entities.items():
        if isinstance(value, str):
            entities[key] = value
    if entities.get("action"):
        entities["action"] = canonical_action(intent, entities["action"])

    inferred_goal = root.get("inferred_goal")
    missing = root.get("missing_capability")
    if not isinstance(missing, str) or missing.strip().lower() in ("", "null", "none"):
        missing = None

    if intent not in KNOWN_INTENTS:
        logger.info("Remote classifier answered with unlisted intent '%s'", intent)

    result = IntentResult(
        intent=intent,
        confidence=confidence,
        entities=entities,
        inferred_goal=inferred_goal if isinstance(inferred_goal, str) else None,
        needs_confirmation=needs_confirmation,
        missing_capability=missing,
        source="remote",
    )
    result.planned_action = planned_action_for(result)
    return result


# ── Client ───────────────────────────────────────────────────────────────────

class RemoteClassifier:
    """
    Remote intent classification over a hosted LLM.

    Falls back gracefully: without a credential, or when the service keeps
    failing (circuit breaker), no request is made at all.
    """

    def __init__(
        self,
        credential_provider: Optional[CredentialProvider] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Args:
            credential_provider: Zero-argument callable returning the API key
                                 (default: key from config for *provider*)
            provider: "anthropic" or "openai" (default: config.CLASSIFIER_PROVIDER)
            model: Model to use (default: config.CLASSIFIER_MODEL)
            timeout: Seconds before a request is abandoned
        """
        self.provider = (provider or config.CLASSIFIER_PROVIDER).lower()
        if self.provider not in ("anthropic", "openai"):
            raise ValueError(f"Unsupported classifier provider: {self.provider}")

        self.credential_provider = credential_provider or config.default_credential_provider()
        self.model = model or config.CLASSIFIER_MODEL
        self.timeout = timeout if timeout is not None else config.REMOTE_TIMEOUT_SECONDS
        self.breaker = breaker or CircuitBreaker(f"remote_classifier:{self.provider}")

        self._sync_client: Any = None
        self._async_client: Any = None
        self._client_key: Optional[str] = None

    def _credential(self) -> Optional[str]:
        try:
            key = self.credential_provider()
        except Exception as e:
            logger.warning("Credential provider failed: %s", e)
            return None
        return key.strip() if isinstance(key, str) and key.strip() else None

    def is_configured(self) -> bool:
        """True when a credential is available."""
        return self._credential() is not None

    @staticmethod
    def build_prompt(original: str, normalized: str, context_summary: str) -> str:
        return CLASSIFY_PROMPT.format(
            original=original,
            normalized=normalized,
            context=context_summary,
            intents="|".join(KNOWN_INTENTS),
        )

    # ── client construction ──────────────────────────────────────────────

    def _clients_for(self, key: str):
        if key != self._client_key:
            if self.provider == "anthropic":
                self._sync_client = anthropic.Anthropic(
                    api_key=key, timeout=self.timeout, max_retries=0
                )
                self._async_client = anthropic.AsyncAnthropic(
                    api_key=key, timeout=self.timeout, max_retries=0
                )
            else:
                self._sync_client = openai.OpenAI(
                    api_key=key, timeout=self.timeout, max_retries=0
                )
                self._async_client = openai.AsyncOpenAI(
                    api_key=key, timeout=self.timeout, max_retries=0
                )
            self._client_key = key
        return self._sync_client, self._async_client

    def _request_kwargs(self, prompt: str) -> Dict[str, Any]:
        if self.provider == "anthropic":
            return {
                "model": self.model,
                "max_tokens": config.CLASSIFIER_MAX_TOKENS,
                "temperature": config.CLASSIFIER_TEMPERATURE,
                "system": SYSTEM_PROMPT,
                "messages": [{"role": "user", "content": prompt}],
            }
        return {
            "model": self.model,
            "max_tokens": config.CLASSIFIER_MAX_TOKENS,
            "temperature": config.CLASSIFIER_TEMPERATURE,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        }

    def _completion_text(self, response: Any) -> str:
        if self.provider == "anthropic":
            return "".join(
                getattr(block, "text", "") for block in (response.content or [])
            )
        return response.choices[0].message.content or ""

    # ── public API ───────────────────────────────────────────────────────

    def _precheck(self) -> "tuple[Optional[str], Optional[RemoteOutcome]]":
        key = self._credential()
        if key is None:
            return None, RemoteOutcome(RemoteOutcomeKind.NO_CREDENTIAL)
        if self.breaker.is_open:
            wait = self.breaker.retry_after()
            return None, RemoteOutcome(
                RemoteOutcomeKind.CIRCUIT_OPEN,
                detail=f"breaker {self.breaker.name} open, retry in {wait:.0f}s",
            )
        return key, None

    def _finish(self, text: str) -> RemoteOutcome:
        self.breaker.record_success()
        try:
            result = parse_classification(text)
        except RemoteClassifierError as e:
            logger.info("Remote classification unusable: %s", e)
            return RemoteOutcome(RemoteOutcomeKind.PARSE_FAILURE, detail=str(e))
        return RemoteOutcome(RemoteOutcomeKind.OK, result=result)

    def _failure(self, e: Exception) -> RemoteOutcome:
        self.breaker.record_failure()
        if isinstance(
            e,
            (anthropic.APITimeoutError, openai.APITimeoutError, asyncio.TimeoutError, TimeoutError),
        ):
            logger.warning("Remote classification timed out after %.1fs", self.timeout)
            return RemoteOutcome(RemoteOutcomeKind.TIMEOUT, detail=str(e) or "timeout")
        logger.warning("Remote classification failed (%s): %s", type(e).__name__, e)
        return RemoteOutcome(RemoteOutcomeKind.NETWORK_FAILURE, detail=str(e))

    def classify(self, original: str, normalized: str, context_summary: str) -> RemoteOutcome:
        """Blocking classification bounded by the client timeout."""
        key, early = self._precheck()
        if early is not None:
            return early

        sync_client, _ = self._clients_for(key)
        kwargs = self._request_kwargs(self.build_prompt(original, normalized, context_summary))
        try:
            if self.provider == "anthropic":
                response = sync_client.messages.create(**kwargs)
            else:
                response = sync_client.chat.completions.create(**kwargs)
            text = self._completion_text(response)
        except Exception as e:
            return self._failure(e)

        return self._finish(text)

    async def aclassify(self, original: str, normalized: str, context_summary: str) -> RemoteOutcome:
        """
        Async classification bounded by *timeout*.

        Cancellation propagates to the caller (the IntentClassifier turns it
        into a CANCELLED outcome).
        """
        key, early = self._precheck()
        if early is not None:
            return early

        _, async_client = self._clients_for(key)
        kwargs = self._request_kwargs(self.build_prompt(original, normalized, context_summary))
        try:
            if self.provider == "anthropic":
                call = async_client.messages.create(**kwargs)
            else:
                call = async_client.chat.completions.create(**kwargs)
            response = await asyncio.wait_for(call, timeout=self.timeout)
            text = self._completion_text(response)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return self._failure(e)

        return self._finish(text)
