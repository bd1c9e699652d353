from __future__ import annotations

"""Recover a chat reply and career suggestions from raw completion text.

Two grammars are supported and kept in separate code paths:

strict
    The provider was asked for pure JSON. The first ```json fenced block is
    parsed if present, otherwise the whole text. Any parse failure raises
    MalformedCompletionError; there is no further fallback.

free_text
    The provider was asked for prose followed by a numbered list. The first run
    of consecutive ``N. label`` lines becomes the suggestion list and the text
    before it becomes the reply. No list means reply-only, which is valid.

Field-level problems (unknown career names, bad percentages) are logged and
degraded, never escalated.
"""

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import AbstractSet, Any, List, Optional

from .errors import MalformedCompletionError
from .models import SuggestedCareer
from .prompt_builder import OutputContract

logger = logging.getLogger("vocational.extractor")

FENCED_JSON_RE = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
NUMBERED_LINE_RE = re.compile(r"^\s*(\d+)\.\s+(.*?)\s*$")
MIN_LIST_LINES = 2
EXPECTED_SUGGESTIONS = (3, 4)


@dataclass
class ExtractedReply:
    chat_reply: str
    suggested_careers: List[SuggestedCareer] = field(default_factory=list)


def extract_response(
    raw_text: str,
    contract: OutputContract,
    catalog_names: AbstractSet[str] = frozenset(),
) -> ExtractedReply:
    """Dispatch to the grammar matching the contract the prompt requested."""
    if contract is OutputContract.STRICT:
        return parse_strict(raw_text, catalog_names)
    return parse_free_text(raw_text, catalog_names)


def parse_strict(raw_text: str, catalog_names: AbstractSet[str] = frozenset()) -> ExtractedReply:
    """Purpose: Parse a strict-mode completion into an ExtractedReply.
    Inputs/Outputs: Raw completion text and catalog names; returns ExtractedReply.
    Side Effects / State: Logs warnings for degraded fields.
    Dependencies: FENCED_JSON_RE, json.loads, coerce_percentage.
    Failure Modes: Invalid JSON, a non-object payload, or a missing/non-string
        chatReply raise MalformedCompletionError carrying the raw text.
    If Removed: Strict-mode chat turns cannot produce a reply.
    Testing Notes: Fenced and bare JSON must give identical results.
    """
    # Prefer the fenced block interior, otherwise try the whole text.
    text = raw_text or ""
    match = FENCED_JSON_RE.search(text)
    if match:
        candidate = match.group(1)
    else:
        logger.debug("no fenced json block; parsing the whole completion")
        candidate = text.strip()

    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedCompletionError(f"Completion is not valid JSON: {exc.msg}", raw_text=text) from exc

    if not isinstance(payload, dict):
        raise MalformedCompletionError("Completion JSON is not an object", raw_text=text)
    chat_reply = payload.get("chatReply")
    if not isinstance(chat_reply, str):
        raise MalformedCompletionError("Completion JSON has no string chatReply", raw_text=text)

    raw_suggestions = payload.get("suggestedCareers", [])
    if not isinstance(raw_suggestions, list):
        logger.warning("suggestedCareers is not a list (%s); using none", type(raw_suggestions).__name__)
        raw_suggestions = []

    suggestions: List[SuggestedCareer] = []
    for index, item in enumerate(raw_suggestions):
        if not isinstance(item, dict):
            logger.warning("suggestion %d is not an object; skipped", index)
            continue
        suggestion = _build_suggestion(item, index)
        if suggestion is not None:
            suggestions.append(suggestion)

    _check_suggestions(suggestions, catalog_names)
    return ExtractedReply(chat_reply=chat_reply.strip(), suggested_careers=suggestions)


def parse_free_text(raw_text: str, catalog_names: AbstractSet[str] = frozenset()) -> ExtractedReply:
    """Purpose: Split free-text completions into reply prose and list labels.
    Inputs/Outputs: Raw completion text and catalog names; returns ExtractedReply.
    Side Effects / State: Logs warnings for labels outside the catalog.
    Dependencies: NUMBERED_LINE_RE, find_numbered_block.
    Failure Modes: None; text without a list is returned as reply only.
    If Removed: The numbered-list contract cannot be used.
    Testing Notes: Reply must exclude the list; labels lose their "N. " prefix.
    """
    text = raw_text or ""
    lines = text.splitlines()
    block = find_numbered_block(lines)
    if block is None:
        return ExtractedReply(chat_reply=text.strip(), suggested_careers=[])

    start, end = block
    chat_reply = "\n".join(lines[:start]).strip()
    suggestions: List[SuggestedCareer] = []
    for line in lines[start:end]:
        match = NUMBERED_LINE_RE.match(line)
        label = match.group(2).strip() if match else ""
        if not label:
            continue
        suggestions.append(SuggestedCareer(name=label, percentageMatch=0, reason=""))

    _check_suggestions(suggestions, catalog_names)
    return ExtractedReply(chat_reply=chat_reply, suggested_careers=suggestions)


def find_numbered_block(lines: List[str]) -> Optional[tuple]:
    """Return ``(start, end)`` of the first run of numbered lines, or None."""
    index = 0
    while index < len(lines):
        if not NUMBERED_LINE_RE.match(lines[index]):
            index += 1
            continue
        end = index
        while end < len(lines) and NUMBERED_LINE_RE.match(lines[end]):
            end += 1
        if end - index >= MIN_LIST_LINES:
            return index, end
        index = end
    return None


def _parse_percentage(value: Any) -> Optional[int]:
    # None when the value is not a number in [0, 100] after rounding.
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip().rstrip("%").strip()
        try:
            value = float(cleaned)
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        value = int(round(value))
    if value < 0 or value > 100:
        return None
    return int(value)


def coerce_percentage(value: Any) -> int:
    """Coerce a percentage to an int in [0, 100]; anything else becomes 0."""
    parsed = _parse_percentage(value)
    return 0 if parsed is None else parsed


def _build_suggestion(item: dict, index: int) -> Optional[SuggestedCareer]:
    name = str(item.get("name") or "").strip()
    if not name:
        logger.warning("suggestion %d has no name; skipped", index)
        return None
    raw_percentage = item.get("percentageMatch")
    parsed = _parse_percentage(raw_percentage)
    if parsed is None:
        logger.warning("suggestion %r percentageMatch=%r out of range; set to 0", name, raw_percentage)
    reason = item.get("reason")
    return SuggestedCareer(
        name=name,
        percentageMatch=0 if parsed is None else parsed,
        reason=reason.strip() if isinstance(reason, str) else "",
    )


def _check_suggestions(suggestions: List[SuggestedCareer], catalog_names: AbstractSet[str]) -> None:
    # Soft checks only: unknown names and unusual counts are kept as-is.
    low, high = EXPECTED_SUGGESTIONS
    if suggestions and not low <= len(suggestions) <= high:
        logger.info("completion returned %d suggestions (expected %d-%d)", len(suggestions), low, high)
    if not catalog_names:
        return
    for suggestion in suggestions:
        if suggestion.name not in catalog_names:
            logger.warning("suggested career %r is not in the catalog; kept", suggestion.name)
