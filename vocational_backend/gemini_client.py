from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai import types as genai_types

from .config import Settings
from .errors import ProviderError
from .prompt_builder import OutputContract

logger = logging.getLogger("vocational.gemini")

DEFAULT_SAFETY_SETTINGS = [
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    },
    {
        "category": genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        "threshold": genai_types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    },
]

CHAT_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "chatReply": {"type": "STRING"},
        "suggestedCareers": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING"},
                    "percentageMatch": {"type": "NUMBER"},
                    "reason": {"type": "STRING"},
                },
                "required": ["name", "percentageMatch", "reason"],
            },
        },
    },
    "required": ["chatReply", "suggestedCareers"],
}


class CompletionClient(Protocol):
    """Anything that turns a rendered prompt into raw completion text."""

    def complete(self, prompt_text: str, contract: OutputContract) -> str:  # pragma: no cover - interface only
        ...


class GeminiClient:
    """Thin wrapper around the Gemini SDK with model caching and safety settings."""

    def __init__(self, settings: Settings, max_output_tokens: int = 2048) -> None:
        """Purpose: Configure the Gemini SDK and initialize the model cache.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures the SDK global API key when present.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: None at init; a missing key surfaces as ProviderError on
            the first complete() call so profile endpoints keep working.
        If Removed: Chat turns cannot reach the completion provider.
        Testing Notes: Construct without a key and assert complete() raises ProviderError.
        """
        # Configure API key and remember generation defaults.
        self._api_key = settings.gemini_api_key
        self._model_name = _normalize_model_name(settings.gemini_model)
        self._temperature = settings.temperature
        self._max_output_tokens = max_output_tokens
        self._models: Dict[str, genai.GenerativeModel] = {}
        if self._api_key:
            genai.configure(api_key=self._api_key)

    def complete(self, prompt_text: str, contract: OutputContract) -> str:
        """Purpose: Send a rendered prompt and return the raw completion text.
        Inputs/Outputs: Prompt text and output contract; returns stripped text.
        Side Effects / State: Network call; may add a model to the cache.
        Dependencies: genai.GenerativeModel.generate_content.
        Failure Modes: Missing key, transport/auth/quota errors, and blocked
            responses raise ProviderError with the original cause chained.
        If Removed: The conversation pipeline has nothing to extract from.
        Testing Notes: Patch the model and verify strict mode requests JSON output.
        """
        # Strict mode asks the SDK for JSON constrained by the response schema.
        if not self._api_key:
            raise ProviderError("GEMINI_API_KEY is required")
        if not self._model_name:
            raise ProviderError("Gemini model name is required")

        generation_config: Dict[str, object] = {
            "temperature": self._temperature,
            "max_output_tokens": self._max_output_tokens,
        }
        if contract is OutputContract.STRICT:
            generation_config["response_mime_type"] = "application/json"
            generation_config["response_schema"] = CHAT_RESPONSE_SCHEMA

        try:
            response = self._model().generate_content(
                prompt_text,
                generation_config=generation_config,
                safety_settings=DEFAULT_SAFETY_SETTINGS,
            )
            text: Optional[str] = response.text
        except google_exceptions.GoogleAPIError as exc:
            logger.error("provider call failed model=%s error=%r", self._model_name, exc)
            raise ProviderError(f"Completion provider error: {exc}") from exc
        except ValueError as exc:
            # response.text raises ValueError when the candidate was blocked or empty.
            logger.error("provider returned no text model=%s error=%r", self._model_name, exc)
            raise ProviderError(f"Completion provider returned no text: {exc}") from exc

        return (text or "").strip()

    def _model(self) -> genai.GenerativeModel:
        if self._model_name not in self._models:
            self._models[self._model_name] = genai.GenerativeModel(self._model_name)
        return self._models[self._model_name]


def _normalize_model_name(name: Optional[str]) -> str:
    """Strip a ``models/`` prefix and whitespace; falsy input gives ``""``."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
