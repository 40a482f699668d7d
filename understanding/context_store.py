"""
Context Store for the Understanding Layer.

Short-term conversational memory that solves the "it" problem:
- Keeps the last 20 turns (oldest evicted first)
- Tracks the most recent file, folder, app, search and music references
- Rewrites "it", "that", "again", "same folder", "that app" ... into the
  concrete thing the user referred to earlier
- Produces a short summary used as context for the remote classifier

One ContextStore belongs to one session. The whole state is written to a
single JSON snapshot after every mutation (history truncated to the last 10
turns); loading never raises, it reports a LoadStatus and starts empty.
"""

import json
import logging
import os
import re
import tempfile
import threading
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from understanding import config
from understanding.models import ContextEntry, IntentResult

logger = logging.getLogger(__name__)


class ContextIntegrityError(Exception):
    """Raised when the in-memory history no longer satisfies its invariants."""


class LoadStatus(Enum):
    LOADED = "loaded"
    NO_DATA = "no_data"
    PARSE_FAILURE = "parse_failure"
    IO_FAILURE = "io_failure"


class ContextState(BaseModel):
    """
    Owning aggregate: ordered history plus "last referenced" fields that
    always hold the most recent non-empty value seen across all entries.

    Aliases are the keys of the persisted snapshot.
    """

    model_config = ConfigDict(populate_by_name=True)

    history: List[ContextEntry] = Field(default_factory=list, alias="History")
    last_active_feature: Optional[str] = Field(None, alias="LastActiveFeature")
    last_referenced_file: Optional[str] = Field(None, alias="LastReferencedFile")
    last_referenced_folder: Optional[str] = Field(None, alias="LastReferencedFolder")
    last_referenced_app: Optional[str] = Field(None, alias="LastReferencedApp")
    last_scan_result: Optional[str] = Field(None, alias="LastScanResult")
    last_search_query: Optional[str] = Field(None, alias="LastSearchQuery")
    last_music_query: Optional[str] = Field(None, alias="LastMusicQuery")
    last_action_outcome: Optional[str] = Field(None, alias="LastActionOutcome")
    # In-memory only
    last_intent: Optional[IntentResult] = Field(None, exclude=True)

    def scalars(self) -> Dict[str, Optional[str]]:
        return self.model_dump(exclude={"history"})


# ── Reference phrase families ────────────────────────────────────────────────

_IT_TRIGGER = re.compile(
    r"\b(do it|open it|play it|close it|delete it|that one|this one|the same one)\b",
    re.IGNORECASE,
)
_IT_WORDS = re.compile(r"\b(the same one|that|this|it)\b", re.IGNORECASE)
_AGAIN = re.compile(r"\b(again|repeat)\b", re.IGNORECASE)
_FOLDER_REF = re.compile(
    r"\b(same folder|that folder|same directory|there|that location)\b", re.IGNORECASE
)
_FILE_REF = re.compile(r"\b(same file|that file)\b", re.IGNORECASE)
_APP_REF = re.compile(r"\b(same app|that app|that program)\b", re.IGNORECASE)


class ContextStore:
    """
    Bounded conversational memory with anaphora resolution.

    All public methods take the store lock, so concurrent callers are
    serialized and eviction sees turns in arrival order.
    """

    def __init__(
        self,
        persist_path: Optional[str] = None,
        max_entries: int = config.CONTEXT_MAX_ENTRIES,
        persist_entries: int = config.CONTEXT_PERSIST_ENTRIES,
        autoload: bool = True,
    ):
        self.persist_path = persist_path or config.CONTEXT_STORE_PATH
        self.max_entries = max_entries
        self.persist_entries = persist_entries

        self._lock = threading.RLock()
        self._state = ContextState()
        self.last_save_error: Optional[str] = None
        self.load_status = LoadStatus.NO_DATA

        if autoload:
            self.load_status = self.load()

    @property
    def state(self) -> ContextState:
        """The live state. Treat as read-only; mutate through the store."""
        return self._state

    # ── Mutation ─────────────────────────────────────────────────────────

    def add_entry(self, entry: ContextEntry):
        """
        Append a turn, refresh the quick-access fields from its non-empty
        values, evict the oldest turns beyond the bound, then persist.
        """
        with self._lock:
            history = self._state.history
            if len(history) > self.max_entries:
                raise ContextIntegrityError(
                    f"history holds {len(history)} entries, bound is {self.max_entries}"
                )

            entry = entry.model_copy(deep=True)
            history.append(entry)
            state = self._state

            if entry.active_feature:
                state.last_active_feature = entry.active_feature
            if entry.referenced_files:
                state.last_referenced_file = entry.referenced_files[-1]
            if entry.referenced_folders:
                state.last_referenced_folder = entry.referenced_folders[-1]
            if entry.referenced_apps:
                state.last_referenced_app = entry.referenced_apps[-1]
            if entry.last_scan_result:
                state.last_scan_result = entry.last_scan_result
            if entry.last_action_outcome:
                state.last_action_outcome = entry.last_action_outcome

            if entry.intent is not None:
                state.last_intent = entry.intent
                query = entry.intent.entities.get("query")
                if query:
                    tag = entry.intent.intent
                    if "search" in tag:
                        state.last_search_query = query
                    elif "music" in tag or "play" in tag:
                        state.last_music_query = query

            while len(history) > self.max_entries:
                history.pop(0)

            self.save()

    def update_last_outcome(self, outcome: str):
        """Record the outcome of the most recent action."""
        with self._lock:
            self._state.last_action_outcome = outcome
            if self._state.history:
                self._state.history[-1].last_action_outcome = outcome
            self.save()

    def clear(self):
        """Forget everything, on disk too."""
        with self._lock:
            self._state = ContextState()
            self.save()
            logger.info("Context cleared")

    # ── Reference resolution ─────────────────────────────────────────────

    def resolve_reference(self, text: str) -> str:
        """
        Rewrite references like "it", "again", "same folder" into the
        concrete entity they point at. Each phrase family is applied once;
        text without any reference phrase comes back unchanged.
        """
        with self._lock:
            result = text
            state = self._state

            # "it" / "that" / "this" -> last referenced entity
            if _IT_TRIGGER.search(result):
                entity = self.get_last_referenced_entity()
                if entity:
                    result = _IT_WORDS.sub(lambda _m: entity, result)
                    logger.debug("Resolved 'it/that' to '%s'", entity)

            # "again" -> "<last intent> <last entity>"
            if _AGAIN.search(result):
                last_entry = state.history[-1] if state.history else None
                if last_entry is not None and last_entry.intent is not None:
                    last_action = last_entry.intent.intent
                    entity = self.get_last_referenced_entity()
                    if last_action and entity:
                        result = f"{last_action} {entity}"
                        logger.debug("Resolved 'again' to '%s'", result)

            if state.last_referenced_folder and _FOLDER_REF.search(result):
                folder = state.last_referenced_folder
                result = _FOLDER_REF.sub(lambda _m: folder, result)
                logger.debug("Resolved folder reference to '%s'", folder)

            if state.last_referenced_file and _FILE_REF.search(result):
                path = state.last_referenced_file
                result = _FILE_REF.sub(lambda _m: path, result)
                logger.debug("Resolved file reference to '%s'", path)

            if state.last_referenced_app and _APP_REF.search(result):
                app = state.last_referenced_app
                result = _APP_REF.sub(lambda _m: app, result)
                logger.debug("Resolved app reference to '%s'", app)

            return result

    def get_last_referenced_entity(self) -> Optional[str]:
        """
        Most recently referenced entity: the last turn's query, app or
        target, else the last file, folder, app, music or search query.
        """
        with self._lock:
            state = self._state
            if state.history:
                last_intent = state.history[-1].intent
                if last_intent is not None:
                    for key in ("query", "app", "target"):
                        value = last_intent.entities.get(key)
                        if value:
                            return value

            return (
                state.last_referenced_file
                or state.last_referenced_folder
                or state.last_referenced_app
                or state.last_music_query
                or state.last_search_query
            )

    # ── Read helpers ─────────────────────────────────────────────────────

    def get_context_summary(self) -> str:
        """Recent context digest for AI reasoning."""
        with self._lock:
            state = self._state
            parts = []

            if state.last_active_feature:
                parts.append(f"Active feature: {state.last_active_feature}")
            if state.last_referenced_file:
                parts.append(f"Last file: {state.last_referenced_file}")
            if state.last_referenced_folder:
                parts.append(f"Last folder: {state.last_referenced_folder}")
            if state.last_referenced_app:
                parts.append(f"Last app: {state.last_referenced_app}")
            if state.last_music_query:
                parts.append(f"Last music: {state.last_music_query}")
            if state.last_action_outcome:
                parts.append(f"Last outcome: {state.last_action_outcome}")

            recent = [
                e.user_input
                for e in state.history[-config.CONTEXT_SUMMARY_REQUESTS:]
                if e.user_input
            ]
            if recent:
                parts.append(f"Recent requests: {'; '.join(recent)}")

            return "\n".join(parts) if parts else "No recent context"

    def get_recent_history(self, count: int = 5) -> List[ContextEntry]:
        with self._lock:
            if count <= 0:
                return []
            return list(self._state.history[-count:])

    def __len__(self) -> int:
        with self._lock:
            return len(self._state.history)

    # ── Persistence ──────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        """The JSON-ready dict written by save()."""
        with self._lock:
            data = self._state.model_dump(mode="json", by_alias=True)
            data["History"] = data["History"][-self.persist_entries:] if self.persist_entries > 0 else []
            return data

    def save(self) -> bool:
        """
        Overwrite the snapshot file. Failures are logged and remembered in
        ``last_save_error``; the in-memory state stays authoritative.
        """
        with self._lock:
            try:
                payload = json.dumps(self.snapshot(), indent=2, ensure_ascii=False)
                directory = os.path.dirname(os.path.abspath(self.persist_path))
                os.makedirs(directory, exist_ok=True)

                fd, tmp_path = tempfile.mkstemp(
                    dir=directory, prefix=".context_store.", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        fh.write(payload)
                    os.replace(tmp_path, self.persist_path)
                except OSError:
                    if os.path.exists(tmp_path):
                        os.remove(tmp_path)
                    raise

                self.last_save_error = None
                return True
            except (OSError, TypeError, ValueError) as e:
                self.last_save_error = str(e)
                logger.error("Context save error (%s): %s", self.persist_path, e)
                return False

    def load(self) -> LoadStatus:
        """
        Replace the in-memory state with the snapshot on disk.

        Never raises: a missing file is NO_DATA, unreadable or corrupt files
        leave an empty state and are logged.
        """
        with self._lock:
            if not os.path.exists(self.persist_path):
                self._state = ContextState()
                return LoadStatus.NO_DATA

            try:
                with open(self.persist_path, "r", encoding="utf-8") as fh:
                    raw = json.load(fh)
            except OSError as e:
                logger.error("Context load error (%s): %s", self.persist_path, e)
                self._state = ContextState()
                return LoadStatus.IO_FAILURE
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                logger.error("Context file is corrupt (%s): %s", self.persist_path, e)
                self._state = ContextState()
                return LoadStatus.PARSE_FAILURE

            if not isinstance(raw, dict):
                logger.error("Context file is not a JSON object: %s", self.persist_path)
                self._state = ContextState()
                return LoadStatus.PARSE_FAILURE

            try:
                state = ContextState.model_validate(raw)
            except ValidationError as e:
                logger.error(
                    "Context file does not match the snapshot format (%s): %s",
                    self.persist_path, e,
                )
                self._state = ContextState()
                return LoadStatus.PARSE_FAILURE

            state.history = state.history[-self.max_entries:]
            for entry in reversed(state.history):
                if entry.intent is not None:
                    state.last_intent = entry.intent
                    break

            self._state = state
            logger.info(
                "Loaded previous context (%d entries) from %s",
                len(state.history), self.persist_path,
            )
            return LoadStatus.LOADED
