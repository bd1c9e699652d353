from __future__ import annotations

"""Profile and conversation history storage.

Two implementations share one interface: a volatile in-memory store and a
JSON-file-backed durable store. ``FailoverProfileStore`` wraps the durable
store and switches to memory for the rest of the process when the file can no
longer be read or written.
"""

import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pydantic import ValidationError

from .errors import StoreUnavailable
from .models import ChatMessage, StudentProfile

logger = logging.getLogger("vocational.store")


class ProfileStore(Protocol):
    """Interface injected into the conversation service and HTTP handlers."""

    mode: str

    def get_profile(self, session_key: str) -> Optional[StudentProfile]:  # pragma: no cover - interface only
        ...

    def save_profile(self, session_key: str, profile_data: Dict[str, Any]) -> StudentProfile:  # pragma: no cover - interface only
        ...

    def get_history(self, session_key: str) -> List[ChatMessage]:  # pragma: no cover - interface only
        ...

    def append_turn(
        self,
        session_key: str,
        user_text: str,
        bot_text: str,
        default_profile: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ChatMessage, ChatMessage]:  # pragma: no cover - interface only
        ...


class InMemoryProfileStore:
    """Volatile store; contents are lost when the process exits."""

    mode = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._profiles: Dict[str, StudentProfile] = {}
        self._histories: Dict[str, List[ChatMessage]] = {}

    def get_profile(self, session_key: str) -> Optional[StudentProfile]:
        with self._lock:
            profile = self._profiles.get(session_key)
            return profile.model_copy(deep=True) if profile else None

    def save_profile(self, session_key: str, profile_data: Dict[str, Any]) -> StudentProfile:
        """Purpose: Upsert a profile; supplied fields overwrite, others keep defaults.
        Inputs/Outputs: Session key and a partial profile dict; returns the stored record.
        Side Effects / State: Mutates the profile map and persists via _commit.
        Failure Modes: pydantic ValidationError for badly typed fields;
            StoreUnavailable from durable subclasses.
        """
        with self._lock:
            existing = self._profiles.get(session_key)
            merged = existing.model_dump() if existing else {}
            merged.update(profile_data or {})
            merged["userId"] = session_key
            profile = StudentProfile(**merged)
            self._profiles[session_key] = profile
            try:
                self._commit()
            except StoreUnavailable:
                _restore(self._profiles, session_key, existing)
                raise
            return profile.model_copy(deep=True)

    def get_history(self, session_key: str) -> List[ChatMessage]:
        # Stable sort keeps insertion order for equal timestamps.
        with self._lock:
            history = list(self._histories.get(session_key, []))
        return sorted(history, key=lambda message: message.timestamp)

    def append_turn(
        self,
        session_key: str,
        user_text: str,
        bot_text: str,
        default_profile: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ChatMessage, ChatMessage]:
        """Purpose: Append one user and one bot message as a single unit.
        Inputs/Outputs: Session key, both texts, and an optional profile used
            when none is stored yet; returns the two stored messages.
        Side Effects / State: Creates the profile with defaults if missing,
            appends to history, and persists via _commit.
        Failure Modes: StoreUnavailable from durable subclasses; in that case
            neither message nor the default profile is kept.
        If Removed: Conversation history is never recorded.
        Testing Notes: Run two threads on one key and expect four messages.
        """
        user_timestamp = time.time()
        user_message = ChatMessage(sender="user", message=user_text, timestamp=user_timestamp)
        bot_message = ChatMessage(sender="bot", message=bot_text, timestamp=max(time.time(), user_timestamp))
        with self._lock:
            created_profile = session_key not in self._profiles
            if created_profile:
                seed = dict(default_profile or {})
                seed["userId"] = session_key
                self._profiles[session_key] = StudentProfile(**seed)
            history = self._histories.setdefault(session_key, [])
            history.append(user_message)
            history.append(bot_message)
            try:
                self._commit()
            except StoreUnavailable:
                del history[-2:]
                if created_profile:
                    self._profiles.pop(session_key, None)
                raise
        return user_message, bot_message

    def export_state(self) -> Tuple[Dict[str, StudentProfile], Dict[str, List[ChatMessage]]]:
        with self._lock:
            return dict(self._profiles), {key: list(value) for key, value in self._histories.items()}

    @classmethod
    def from_state(
        cls,
        profiles: Dict[str, StudentProfile],
        histories: Dict[str, List[ChatMessage]],
    ) -> "InMemoryProfileStore":
        store = cls()
        store._profiles = dict(profiles)
        store._histories = {key: list(value) for key, value in histories.items()}
        return store

    def _commit(self) -> None:
        """Hook for durable subclasses; memory needs no flush."""


class JsonFileProfileStore(InMemoryProfileStore):
    """Durable store: a single JSON document holding profiles and histories."""

    mode = "file"

    def __init__(self, path: Path) -> None:
        """Purpose: Open the store file, creating its directory, and hydrate caches.
        Inputs/Outputs: Input is the JSON file path; no return value.
        Side Effects / State: Creates parent directories; loads existing data.
        Dependencies: Calls _load; relies on StudentProfile/ChatMessage models.
        Failure Modes: Unreadable/unwritable paths or corrupt JSON raise StoreUnavailable.
        If Removed: Profiles and histories do not survive restarts.
        Testing Notes: Save, reopen on the same tmp path, and compare records.
        """
        super().__init__()
        self._path = path
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot create store directory {self._path.parent}: {exc}") from exc
        self._load()

    def _load(self) -> None:
        # A missing file means an empty store; writing it now checks the path is usable.
        if not self._path.exists():
            self._commit()
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreUnavailable(f"Cannot read store file {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreUnavailable(f"Store file {self._path} does not hold a JSON object")
        try:
            profiles = {key: StudentProfile(**profile) for key, profile in (data.get("profiles") or {}).items()}
            histories = {
                key: [ChatMessage(**message) for message in messages]
                for key, messages in (data.get("histories") or {}).items()
            }
        except (ValidationError, AttributeError, TypeError) as exc:
            raise StoreUnavailable(f"Store file {self._path} holds invalid records: {exc}") from exc
        self._profiles.update(profiles)
        self._histories.update(histories)
        logger.info(
            "store loaded path=%s profiles=%d histories=%d",
            self._path,
            len(self._profiles),
            len(self._histories),
        )

    def _commit(self) -> None:
        # Write to a sibling temp file and swap it in so readers never see half a document.
        payload = {
            "profiles": {key: profile.model_dump() for key, profile in self._profiles.items()},
            "histories": {
                key: [message.model_dump() for message in messages] for key, messages in self._histories.items()
            },
        }
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot write store file {self._path}: {exc}") from exc


class FailoverProfileStore:
    """Delegate to a durable store until it fails, then to memory for good."""

    def __init__(self, primary: InMemoryProfileStore) -> None:
        self._primary = primary
        self._fallback: Optional[InMemoryProfileStore] = None
        self._lock = threading.Lock()

    @property
    def mode(self) -> str:
        return "memory-degraded" if self._fallback is not None else self._primary.mode

    @property
    def degraded(self) -> bool:
        return self._fallback is not None

    def get_profile(self, session_key: str) -> Optional[StudentProfile]:
        return self._call("get_profile", session_key)

    def save_profile(self, session_key: str, profile_data: Dict[str, Any]) -> StudentProfile:
        return self._call("save_profile", session_key, profile_data)

    def get_history(self, session_key: str) -> List[ChatMessage]:
        return self._call("get_history", session_key)

    def append_turn(
        self,
        session_key: str,
        user_text: str,
        bot_text: str,
        default_profile: Optional[Dict[str, Any]] = None,
    ) -> Tuple[ChatMessage, ChatMessage]:
        return self._call("append_turn", session_key, user_text, bot_text, default_profile)

    def _call(self, operation: str, *args: Any) -> Any:
        active = self._fallback or self._primary
        try:
            return getattr(active, operation)(*args)
        except StoreUnavailable as exc:
            if active is not self._primary:
                raise
            return getattr(self._degrade(exc), operation)(*args)

    def _degrade(self, exc: StoreUnavailable) -> InMemoryProfileStore:
        with self._lock:
            if self._fallback is None:
                logger.warning(
                    "durable store unavailable (%s); continuing with in-memory storage. "
                    "Data written from now on is lost when the process exits.",
                    exc,
                )
                profiles, histories = self._primary.export_state()
                self._fallback = InMemoryProfileStore.from_state(profiles, histories)
            return self._fallback


def open_profile_store(path: Optional[Path]):
    """Purpose: Select the store implementation once at process start.
    Inputs/Outputs: Optional file path; returns a store implementing ProfileStore.
    Side Effects / State: Opens/creates the store file when a path is given.
    Failure Modes: None raised; an unusable file logs a warning and degrades
        to memory so chat and profile endpoints stay up.
    If Removed: The app cannot choose between durable and in-memory storage.
    Testing Notes: Pass a directory path to force the degraded branch.
    """
    if path is None:
        logger.info("store mode=memory (no store path configured)")
        return InMemoryProfileStore()
    try:
        primary = JsonFileProfileStore(path)
    except StoreUnavailable as exc:
        logger.warning(
            "durable store unavailable at startup (%s); using in-memory storage. "
            "Data written in this mode is lost when the process exits.",
            exc,
        )
        store = InMemoryProfileStore()
        store.mode = "memory-degraded"
        return store
    logger.info("store mode=file path=%s", path)
    return FailoverProfileStore(primary)


def _restore(mapping: Dict[str, Any], key: str, previous: Any) -> None:
    if previous is None:
        mapping.pop(key, None)
    else:
        mapping[key] = previous
