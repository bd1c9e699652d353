from __future__ import annotations

"""Render profile, recent history, catalog, and the latest message into one prompt.

Rendering is deterministic: the same inputs always produce the same text. The
only lossy step is the history window, which keeps the most recent messages
(oldest-first) and silently drops the rest.
"""

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .catalog import CareerCatalog
from .models import ChatMessage, StudentProfile
from .prompt_loader import load_prompt, render_template

NOT_SPECIFIED = "not specified"
DEFAULT_HISTORY_WINDOW = 10


class OutputContract(str, Enum):
    """Shape the completion provider is asked to produce."""
    STRICT = "strict"
    FREE_TEXT = "free_text"

    @property
    def template_name(self) -> str:
        return f"chat_{self.value}.txt"


@dataclass(frozen=True)
class RenderedPrompt:
    text: str
    contract: OutputContract
    history_included: int


class PromptBuilder:
    """Load the per-contract templates once and render prompts from them."""

    def __init__(self, prompts_dir: Path, history_window: int = DEFAULT_HISTORY_WINDOW) -> None:
        """Purpose: Cache the instruction template of every output contract.
        Inputs/Outputs: Inputs are the prompts directory and history window size.
        Side Effects / State: Reads one template file per OutputContract.
        Failure Modes: A missing template raises FileNotFoundError at startup.
        If Removed: Chat turns cannot build prompts.
        """
        self._history_window = history_window
        self._templates: Dict[OutputContract, str] = {
            contract: load_prompt(prompts_dir / contract.template_name) for contract in OutputContract
        }

    def build(
        self,
        profile: StudentProfile,
        history: Sequence[ChatMessage],
        user_message: str,
        catalog: CareerCatalog,
        contract: OutputContract,
    ) -> RenderedPrompt:
        """Purpose: Render the full instruction text for one chat turn.
        Inputs/Outputs: Profile, full history, latest message, catalog, and the
            requested contract; returns a RenderedPrompt.
        Side Effects / State: None.
        Dependencies: render_profile, render_history, render_catalog, render_template.
        Failure Modes: None for well-formed models.
        If Removed: The completion provider receives no context.
        Testing Notes: Check placeholders, window truncation, and contract marker.
        """
        recent = recent_history(history, self._history_window)
        text = render_template(
            self._templates[contract],
            {
                "PROFILE": render_profile(profile),
                "CONVERSATION": render_history(recent),
                "USER_MESSAGE": user_message.strip(),
                "CATALOG": render_catalog(catalog),
            },
        )
        return RenderedPrompt(text=text, contract=contract, history_included=len(recent))


def recent_history(history: Sequence[ChatMessage], window: int) -> List[ChatMessage]:
    """Return the last ``window`` messages ordered oldest-first."""
    ordered = sorted(history, key=lambda message: message.timestamp)
    if window <= 0:
        return []
    return ordered[-window:]


def render_profile(profile: StudentProfile) -> str:
    # Every field is rendered; absent values get the explicit placeholder.
    lines = [
        f"Name: {_or_placeholder(profile.name)}",
        f"Age: {_or_placeholder(profile.age)}",
        f"Interests: {_join_or_placeholder(profile.interests)}",
        f"Skills: {_join_or_placeholder(profile.skills)}",
        "Additional preferences (from previous conversations): "
        + json.dumps(profile.preferences or {}, ensure_ascii=False, sort_keys=True),
    ]
    return "\n".join(lines)


def render_history(messages: Sequence[ChatMessage]) -> str:
    if not messages:
        return "Recent conversation history: no previous messages."
    body = "\n".join(f"{message.sender}: {message.message}" for message in messages)
    return f"Recent conversation history (last {len(messages)} messages):\n{body}"


def render_catalog(catalog: CareerCatalog) -> str:
    return "\n\n".join(
        f"Name: {entry.name}\nDescription: {entry.description or NOT_SPECIFIED}" for entry in catalog.entries
    )


def _or_placeholder(value: Optional[Any]) -> str:
    if value is None:
        return NOT_SPECIFIED
    text = str(value).strip()
    if not text or text == "0":
        return NOT_SPECIFIED
    return text


def _join_or_placeholder(values: Iterable[str]) -> str:
    cleaned = [str(value).strip() for value in values or [] if str(value).strip()]
    return ", ".join(cleaned) if cleaned else NOT_SPECIFIED
