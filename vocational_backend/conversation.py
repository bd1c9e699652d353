"""Vocational chat turn orchestration.

Role:
    Runs one chat turn end to end: load profile and history, render the prompt,
    call the completion provider, extract the structured reply, and append the
    turn to history. It owns the TurnContext contract passed between steps.

Step contracts:
    Load Context:
        Store-backed turns read profile + history by session key; stateless
        turns use the caller-supplied profile and history as-is.
    Prompt Build:
        Renders TurnContext.prompt for the configured OutputContract.
    Completion:
        Sets raw_completion; ProviderError propagates.
    Extraction:
        Sets extracted; MalformedCompletionError propagates after logging the
        raw completion.
    Persist Turn:
        Appends user + bot messages in one store call. Skipped for stateless
        turns. Nothing is written if any earlier step raised.

Chat turns never rewrite the stored profile; only /save-profile does.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .catalog import CareerCatalog
from .errors import MalformedCompletionError, RequestFieldError
from .extractor import ExtractedReply, extract_response
from .gemini_client import CompletionClient
from .models import ChatMessage, StudentProfile, SuggestedCareer
from .pipeline_runtime import PipelineRunner, PipelineStep
from .profile_store import ProfileStore
from .prompt_builder import OutputContract, PromptBuilder, RenderedPrompt

logger = logging.getLogger("vocational.conversation")

STATELESS_SESSION = "anonymous"


@dataclass
class TurnContext:
    session_key: str
    user_message: str
    stateless: bool = False
    supplied_profile: Optional[Dict[str, Any]] = None
    profile: Optional[StudentProfile] = None
    history: List[ChatMessage] = field(default_factory=list)
    prompt: Optional[RenderedPrompt] = None
    raw_completion: str = ""
    extracted: Optional[ExtractedReply] = None


@dataclass
class TurnResult:
    bot_message: str
    suggested_options: List[SuggestedCareer]
    profile_snapshot: Dict[str, Any]


class ConversationService:
    def __init__(
        self,
        store: ProfileStore,
        completion_client: CompletionClient,
        prompt_builder: PromptBuilder,
        catalog: CareerCatalog,
        contract: OutputContract = OutputContract.STRICT,
    ) -> None:
        """Purpose: Wire the turn pipeline to its collaborators.
        Inputs/Outputs: Store, completion client, prompt builder, catalog, and
            output contract; no return value.
        Side Effects / State: Builds a PipelineRunner with ordered steps.
        Failure Modes: None at init; step errors surface from handle_turn.
        If Removed: The /chat endpoint has nothing to run.
        Testing Notes: Inject a fake completion client and an in-memory store.
        """
        self._store = store
        self._client = completion_client
        self._builder = prompt_builder
        self._catalog = catalog
        self._contract = contract
        self._runner = PipelineRunner(
            steps=[
                PipelineStep("load_context", self._step_load_context),
                PipelineStep("prompt_build", self._step_prompt_build),
                PipelineStep("completion", self._step_completion),
                PipelineStep("extraction", self._step_extraction),
                PipelineStep("persist_turn", self._step_persist_turn, skip_if=lambda ctx: ctx.stateless),
            ]
        )

    def handle_turn(
        self,
        session_key: str,
        user_message: str,
        fallback_profile: Optional[Dict[str, Any]] = None,
    ) -> TurnResult:
        """Purpose: Run a store-backed chat turn for a session key.
        Inputs/Outputs: Session key, message, and an optional profile used only
            when the store has none; returns a TurnResult.
        Side Effects / State: Appends exactly two messages on success.
        Failure Modes: ProviderError, MalformedCompletionError, or StoreUnavailable
            propagate with no history appended.
        Testing Notes: After a malformed completion the history must be unchanged.
        """
        context = TurnContext(
            session_key=session_key,
            user_message=user_message,
            supplied_profile=fallback_profile,
        )
        self._runner.run(context)
        return self._result(context)

    def handle_stateless(
        self,
        user_message: str,
        profile: Optional[Dict[str, Any]],
        history: Optional[List[Dict[str, Any]]],
    ) -> TurnResult:
        """Run a turn on caller-supplied context; the store is never touched."""
        context = TurnContext(
            session_key=str((profile or {}).get("userId") or STATELESS_SESSION),
            user_message=user_message,
            stateless=True,
            supplied_profile=profile,
            history=_history_from(history),
        )
        self._runner.run(context)
        return self._result(context)

    def _step_load_context(self, context: TurnContext) -> None:
        # Stored profile wins; the supplied one only seeds sessions without a profile.
        source = "supplied" if context.supplied_profile else "default"
        if context.stateless:
            context.profile = _profile_from(context.session_key, context.supplied_profile)
        else:
            stored = self._store.get_profile(context.session_key)
            if stored is not None:
                source = "store"
            context.profile = stored or _profile_from(context.session_key, context.supplied_profile)
            context.history = self._store.get_history(context.session_key)
        logger.info(
            "session=%s step=load_context stateless=%s history=%d profile=%s",
            context.session_key,
            context.stateless,
            len(context.history),
            source,
        )

    def _step_prompt_build(self, context: TurnContext) -> None:
        context.prompt = self._builder.build(
            profile=context.profile,
            history=context.history,
            user_message=context.user_message,
            catalog=self._catalog,
            contract=self._contract,
        )
        logger.info(
            "session=%s step=prompt_build contract=%s history_included=%d chars=%d",
            context.session_key,
            context.prompt.contract.value,
            context.prompt.history_included,
            len(context.prompt.text),
        )

    def _step_completion(self, context: TurnContext) -> None:
        context.raw_completion = self._client.complete(context.prompt.text, context.prompt.contract)
        logger.debug("session=%s raw_completion=%s", context.session_key, context.raw_completion)

    def _step_extraction(self, context: TurnContext) -> None:
        try:
            context.extracted = extract_response(
                context.raw_completion,
                context.prompt.contract,
                self._catalog.names,
            )
        except MalformedCompletionError as exc:
            logger.error(
                "session=%s step=extraction malformed completion: %s raw=%r",
                context.session_key,
                exc,
                exc.raw_text,
            )
            raise
        logger.info(
            "session=%s step=extraction suggestions=%d",
            context.session_key,
            len(context.extracted.suggested_careers),
        )

    def _step_persist_turn(self, context: TurnContext) -> None:
        self._store.append_turn(
            context.session_key,
            context.user_message,
            context.extracted.chat_reply,
            default_profile=context.supplied_profile,
        )
        logger.info("session=%s step=persist_turn appended=2", context.session_key)

    def _result(self, context: TurnContext) -> TurnResult:
        return TurnResult(
            bot_message=context.extracted.chat_reply,
            suggested_options=list(context.extracted.suggested_careers),
            profile_snapshot=context.profile.model_dump(),
        )


def _profile_from(session_key: str, data: Optional[Dict[str, Any]]) -> StudentProfile:
    seed = dict(data or {})
    seed["userId"] = session_key
    try:
        return StudentProfile(**seed)
    except ValidationError as exc:
        raise RequestFieldError.from_validation(exc.errors(), prefix="studentProfile") from exc


def _history_from(entries: Optional[List[Dict[str, Any]]]) -> List[ChatMessage]:
    # Client-held history may omit timestamps; list position then defines order.
    messages: List[ChatMessage] = []
    for index, entry in enumerate(entries or []):
        record = dict(entry)
        record.setdefault("timestamp", float(index))
        try:
            messages.append(ChatMessage(**record))
        except ValidationError as exc:
            raise RequestFieldError.from_validation(exc.errors(), prefix=f"chatHistory.{index}") from exc
    return messages
