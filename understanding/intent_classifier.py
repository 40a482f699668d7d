"""
Intent Classifier for the Understanding Layer.

Turns raw user text into an IntentResult:
  1. Normalize   - lowercase, fix known typos, map slang to plain words
  2. Resolve     - ask the ContextStore to rewrite "it", "again", "that folder"
  3. Score local - keyword patterns per intent, best score wins
  4. Remote      - only when the local score is below the fast-path threshold
                   and a credential is configured; kept only if it is more
                   confident than the local answer

Classification never raises: any failure along the way degrades to the
local result (or to "unknown").

Usage:
    classifier = IntentClassifier(ContextStore(), RemoteClassifier())
    result = classifier.classify("oepn dwonloads")
    # result.intent == "open_folder", result.entities == {"target": "downloads", ...}
"""

import asyncio
import logging
import re
from typing import Dict, Iterable, Optional, Tuple

from understanding import config
from understanding.context_store import ContextStore
from understanding.entities import (
    AppEntities,
    ControlEntities,
    EntitySlots,
    FileEntities,
    MediaEntities,
    NoEntities,
    SearchEntities,
    WeatherEntities,
)
from understanding.models import IntentResult, planned_action_for
from understanding.remote_classifier import RemoteClassifier, RemoteOutcome, RemoteOutcomeKind
from understanding.vocabulary import (
    ACTIONS_BY_INTENT,
    INTENT_PATTERNS,
    KNOWN_FOLDERS,
    PLATFORMS,
    SLANG_MAP,
    SLANG_PHRASES,
    TYPO_MAP,
    UNKNOWN_INTENT,
    match_action,
)

logger = logging.getLogger(__name__)


# ── Scoring constants ────────────────────────────────────────────────────────

BASE_SCORE = 0.6
EDGE_MATCH_BONUS = 0.15      # pattern is a prefix or suffix of the input
EXTRA_HIT_BONUS = 0.05       # per additional distinct pattern of the same intent
EXTRA_HIT_CAP = 0.15
SHORT_INPUT_BONUS = 0.1
SHORT_INPUT_TOKENS = 4

_SLANG_RES = tuple(
    (re.compile(r"\b" + re.escape(phrase) + r"\b"), SLANG_MAP[phrase])
    for phrase in SLANG_PHRASES
)

_PLATFORM_SUFFIX = re.compile(
    r"\s+(on|in|using)\s+(spotify|youtube|soundcloud).*$", re.IGNORECASE
)
_SEARCH_FILLER = re.compile(r"^(for|about)\s+", re.IGNORECASE)
_PATH = re.compile(r"[A-Za-z]:\\[^\s]+|~?/[^\s]+")
_LOCATION = re.compile(
    r"(?:weather|temperature|forecast)\s+(?:in|for|at)\s+(.+)", re.IGNORECASE
)

# keywords whose trailing text is the entity value
_MEDIA_KEYWORDS = ("play", "listen to", "put on", "watch")
_APP_KEYWORDS = ("open", "close", "launch", "start", "kill", "quit")
_SEARCH_KEYWORDS = ("search", "google", "look up", "find")


def _after_keywords(text: str, keywords: Iterable[str]) -> str:
    """Text after the first keyword found, minus a trailing 'on <platform>'."""
    lower = text.lower()
    for keyword in keywords:
        idx = lower.find(keyword)
        if idx >= 0:
            value = text[idx + len(keyword):].strip()
            return _PLATFORM_SUFFIX.sub("", value)
    return text


def _detect_platform(text: str) -> str:
    for needle, tag in PLATFORMS:
        if needle in text:
            return tag
    return ""


def _folder_or_file(text: str) -> str:
    lower = text.lower()
    for folder in KNOWN_FOLDERS:
        if folder in lower:
            return folder
    match = _PATH.search(text)
    return match.group(0) if match else ""


def _location(text: str) -> str:
    match = _LOCATION.search(text)
    return match.group(1).strip() if match else ""


class IntentClassifier:
    """
    Local-first intent classifier with an optional remote fallback.

    One classifier serves one session; it reads and resolves references
    through the session's ContextStore.
    """

    def __init__(self, context: ContextStore, remote: Optional[RemoteClassifier] = None):
        self.context = context
        self.remote = remote if remote is not None else RemoteClassifier()
        self._pending: Optional[asyncio.Task] = None

    # ── Stage 1: normalization ───────────────────────────────────────────

    def normalize(self, text: str) -> str:
        """Lowercase, correct typos token by token, then map slang phrases."""
        tokens = [TYPO_MAP.get(token, token) for token in text.lower().split()]
        result = " ".join(tokens)
        for pattern, replacement in _SLANG_RES:
            result = pattern.sub(replacement, result)
        return result

    # ── Stage 3: local scoring ───────────────────────────────────────────

    @staticmethod
    def _score(text: str, pattern: str, patterns: Tuple[str, ...], token_count: int) -> float:
        score = BASE_SCORE
        if text.startswith(pattern) or text.endswith(pattern):
            score += EDGE_MATCH_BONUS
        hits = sum(1 for p in patterns if p in text)
        score += min(EXTRA_HIT_BONUS * (hits - 1), EXTRA_HIT_CAP)
        if token_count <= SHORT_INPUT_TOKENS:
            score += SHORT_INPUT_BONUS
        return round(min(score, config.MAX_CONFIDENCE), 4)

    def classify_local(self, text: str) -> IntentResult:
        """
        Pattern-based classification of already-normalized text.

        Ties keep the earliest registered intent.
        """
        lower = text.lower().strip()
        token_count = len(lower.split())
        best_intent, best_score = UNKNOWN_INTENT, 0.0

        if lower:
            for intent, patterns in INTENT_PATTERNS.items():
                for pattern in patterns:
                    if pattern in lower:
                        score = self._score(lower, pattern, patterns, token_count)
                        if score > best_score:
                            best_intent, best_score = intent, score

        entities = self.extract_entities(text, best_intent).as_map()
        result = IntentResult(
            intent=best_intent,
            confidence=best_score,
            entities=entities,
            inferred_goal=self.infer_goal(best_intent, entities),
            needs_confirmation=self.is_destructive(best_intent, entities),
            source="local",
        )
        result.planned_action = planned_action_for(result)
        return result

    def extract_entities(self, text: str, intent: str) -> EntitySlots:
        lower = text.lower()

        if intent in ("play_music", "play_video"):
            return MediaEntities(
                query=_after_keywords(text, _MEDIA_KEYWORDS),
                platform=_detect_platform(lower),
            )
        if intent in ("open_app", "close_app"):
            return AppEntities(app=_after_keywords(text, _APP_KEYWORDS))
        if intent in ("file_operation", "organize_files"):
            return FileEntities(
                target=_folder_or_file(text),
                action=match_action(lower, ACTIONS_BY_INTENT[intent]),
            )
        if intent == "open_folder":
            return FileEntities(target=_folder_or_file(text), action="open")
        if intent == "web_search":
            query = _after_keywords(text, _SEARCH_KEYWORDS)
            return SearchEntities(query=_SEARCH_FILLER.sub("", query))
        if intent == "weather":
            return WeatherEntities(location=_location(text))
        if intent in ("power_control", "media_control", "volume_control"):
            return ControlEntities(action=match_action(lower, ACTIONS_BY_INTENT[intent]))
        return NoEntities()

    @staticmethod
    def infer_goal(intent: str, entities: Dict[str, str]) -> str:
        goals = {
            "play_music": f"Play {entities.get('query', 'music')}",
            "play_video": f"Watch {entities.get('query', 'a video')}",
            "open_app": f"Open {entities.get('app', 'application')}",
            "close_app": f"Close {entities.get('app', 'application')}",
            "open_folder": f"Open the {entities.get('target', 'requested')} folder",
            "organize_files": f"Organize files in {entities.get('target', 'folder')}",
            "web_search": f"Search for {entities.get('query', 'information')}",
            "weather": f"Get weather for {entities.get('location', 'your location')}",
            "power_control": f"{entities.get('action', 'Control').capitalize()} the computer",
            "security_scan": "Scan system for threats",
            "screenshot": "Take a screenshot",
        }
        return goals.get(intent, "Help with your request")

    @staticmethod
    def is_destructive(intent: str, entities: Dict[str, str]) -> bool:
        if intent == "power_control":
            return True
        return intent == "file_operation" and entities.get("action") == "delete"

    # ── Full pipeline ────────────────────────────────────────────────────

    def _prepare(self, text: str) -> Tuple[str, IntentResult]:
        normalized = self.normalize(text)
        logger.debug("Normalized '%s' -> '%s'", text, normalized)
        resolved = self.context.resolve_reference(normalized)
        if resolved != normalized:
            logger.debug("After context resolution: '%s'", resolved)
        return resolved, self.classify_local(resolved)

    @staticmethod
    def _fallback() -> IntentResult:
        result = IntentResult()
        result.planned_action = planned_action_for(result)
        return result

    def _choose(self, local: IntentResult, outcome: RemoteOutcome) -> IntentResult:
        if outcome.ok and outcome.result.confidence > local.confidence:
            remote = outcome.result
            remote.remote_outcome = outcome.kind.value
            logger.info(
                "Remote classification: %s (%.2f) over local %s (%.2f)",
                remote.intent, remote.confidence, local.intent, local.confidence,
            )
            return remote

        local.remote_outcome = outcome.kind.value
        if not outcome.ok:
            logger.debug("Remote classification not used: %s", outcome.kind.value)
        return local

    def classify(self, text: str) -> IntentResult:
        """Classify *text*, blocking on the remote call when one is needed."""
        try:
            resolved, local = self._prepare(text)
        except Exception as e:
            logger.error("Local classification failed for '%s': %s", text, e, exc_info=True)
            return self._fallback()

        if local.confidence >= config.FAST_PATH_THRESHOLD:
            logger.info("Local classification: %s (%.2f)", local.intent, local.confidence)
            return local

        try:
            outcome = self.remote.classify(text, resolved, self.context.get_context_summary())
        except Exception as e:
            logger.error("Remote classifier raised: %s", e, exc_info=True)
            outcome = RemoteOutcome(RemoteOutcomeKind.NETWORK_FAILURE, detail=str(e))
        return self._choose(local, outcome)

    async def aclassify(self, text: str) -> IntentResult:
        """
        Async variant of classify(). The remote stage runs as a task that
        cancel_pending() can abort; the result then falls back to local.
        """
        try:
            resolved, local = self._prepare(text)
        except Exception as e:
            logger.error("Local classification failed for '%s': %s", text, e, exc_info=True)
            return self._fallback()

        if local.confidence >= config.FAST_PATH_THRESHOLD:
            logger.info("Local classification: %s (%.2f)", local.intent, local.confidence)
            return local

        task = asyncio.ensure_future(
            self.remote.aclassify(text, resolved, self.context.get_context_summary())
        )
        self._pending = task
        try:
            done, _ = await asyncio.wait({task}, timeout=self.remote.timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._pending = None

        if not done:
            task.cancel()
            outcome = RemoteOutcome(RemoteOutcomeKind.TIMEOUT, detail="no answer in time")
        elif task.cancelled():
            logger.info("Remote classification cancelled, using local result")
            outcome = RemoteOutcome(RemoteOutcomeKind.CANCELLED)
        elif task.exception() is not None:
            e = task.exception()
            logger.error("Remote classifier raised: %s", e)
            outcome = RemoteOutcome(RemoteOutcomeKind.NETWORK_FAILURE, detail=str(e))
        else:
            outcome = task.result()

        return self._choose(local, outcome)

    def cancel_pending(self) -> bool:
        """
        Cancel the in-flight async remote call, if any.

        Safe to call from another thread. Returns True if a call was cancelled.
        """
        task = self._pending
        if task is None or task.done():
            return False

        loop = task.get_loop()
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            task.cancel()
        else:
            loop.call_soon_threadsafe(task.cancel)
        return True
