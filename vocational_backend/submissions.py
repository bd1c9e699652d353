from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .errors import StoreUnavailable
from .models import QUESTION_COUNT, QuestionnaireSubmission

logger = logging.getLogger("vocational.submissions")

QUESTION_KEYS = tuple(f"pregunta{index}" for index in range(1, QUESTION_COUNT + 1))


class QuestionnaireStore:
    """Append-only registry of questionnaire submissions, optionally file-backed."""

    def __init__(self, path: Optional[Path] = None) -> None:
        """Purpose: Initialize the registry and load prior submissions from disk.
        Inputs/Outputs: Input is an optional Path; ``None`` keeps data in memory.
        Side Effects / State: Loads submissions into an in-memory list.
        Dependencies: Calls _load; uses a JSON file on disk.
        Failure Modes: Unreadable or corrupt files log a warning and the store
            continues in memory only.
        If Removed: /api/submit and /api/stats have nowhere to keep answers.
        Testing Notes: Submit, reopen on the same tmp path, and compare stats.
        """
        self._path = path
        self._lock = threading.Lock()
        self._submissions: List[QuestionnaireSubmission] = []
        self._load()

    @property
    def persistent(self) -> bool:
        return self._path is not None

    def _load(self) -> None:
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            self._disable_persistence(exc)
            return
        entries = data.get("submissions", []) if isinstance(data, dict) else []
        try:
            self._submissions = [QuestionnaireSubmission(**entry) for entry in entries if isinstance(entry, dict)]
        except ValidationError as exc:
            self._disable_persistence(exc)

    def _persist(self) -> None:
        if not self._path:
            return
        payload = {"submissions": [entry.model_dump() for entry in self._submissions]}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            raise StoreUnavailable(f"Cannot write questionnaire file {self._path}: {exc}") from exc

    def record(self, payload: Dict[str, Any]) -> Tuple[QuestionnaireSubmission, List[int], List[int]]:
        """Purpose: Store one questionnaire with a server id and timestamp.
        Inputs/Outputs: Raw request body; returns the stored submission plus the
            answered and missing question numbers.
        Side Effects / State: Appends to the registry and writes the file.
        Failure Modes: A failed write keeps the submission in memory and
            switches the store to memory-only with a warning.
        Testing Notes: Answers are kept as sent; absent or blank ones count as
            missing and unknown keys are dropped.
        """
        answers: Dict[str, Any] = {}
        answered: List[int] = []
        missing: List[int] = []
        for number, key in enumerate(QUESTION_KEYS, start=1):
            if key not in payload:
                missing.append(number)
                continue
            value = payload[key]
            answers[key] = value
            if value is not None and str(value).strip():
                answered.append(number)
            else:
                missing.append(number)

        submission = QuestionnaireSubmission(id=uuid.uuid4().hex, answers=answers, fechaEnvio=time.time())
        with self._lock:
            self._submissions.append(submission)
            try:
                self._persist()
            except StoreUnavailable as exc:
                self._disable_persistence(exc)

        logger.info("questionnaire stored id=%s answered=%d/%d", submission.id, len(answered), QUESTION_COUNT)
        if missing:
            logger.info("questionnaire id=%s missing=%s", submission.id, missing)
        return submission, answered, missing

    def stats(self) -> Tuple[int, Optional[float]]:
        """Return the submission count and the most recent timestamp."""
        with self._lock:
            if not self._submissions:
                return 0, None
            return len(self._submissions), max(entry.fechaEnvio for entry in self._submissions)

    def _disable_persistence(self, exc: Exception) -> None:
        logger.warning(
            "questionnaire store unavailable (%s); keeping submissions in memory for this process",
            exc,
        )
        self._path = None
