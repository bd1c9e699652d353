"""
Shared fixtures for the vocational backend test suite.
"""

import json
from pathlib import Path
from typing import List, Optional, Union

import pytest
from fastapi.testclient import TestClient

from vocational_backend.app import create_app
from vocational_backend.catalog import CatalogLoader
from vocational_backend.config import BASE_DIR, Settings
from vocational_backend.profile_store import InMemoryProfileStore
from vocational_backend.prompt_builder import OutputContract, PromptBuilder
from vocational_backend.submissions import QuestionnaireStore


class FakeCompletionClient:
    """Completion client double that replays queued outputs or errors."""

    def __init__(self, responses: Optional[List[Union[str, Exception]]] = None) -> None:
        self.responses = list(responses or [])
        self.calls: List[tuple] = []

    def queue(self, *responses: Union[str, Exception]) -> None:
        self.responses.extend(responses)

    def complete(self, prompt_text: str, contract: OutputContract) -> str:
        self.calls.append((prompt_text, contract))
        if not self.responses:
            raise AssertionError("FakeCompletionClient has no queued response")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def strict_completion(reply: str = "¡Hola! Exploremos juntos.", careers: Optional[list] = None) -> str:
    """Build a well-formed strict-mode completion wrapped in a json fence."""
    payload = {
        "chatReply": reply,
        "suggestedCareers": careers
        if careers is not None
        else [
            {"name": "Psicología", "percentageMatch": 87, "reason": "Interés en las personas."},
            {"name": "Diseño Gráfico Digital", "percentageMatch": 75, "reason": "Creatividad."},
            {"name": "Mecatrónica", "percentageMatch": 60, "reason": "Gusto por la tecnología."},
        ],
    }
    return "```json\n" + json.dumps(payload, ensure_ascii=False) + "\n```"


@pytest.fixture
def catalog():
    """Bundled career catalog."""
    loaded, _ = CatalogLoader(BASE_DIR / "resources" / "careers.json").load()
    return loaded


@pytest.fixture
def prompt_builder():
    """Prompt builder over the bundled templates with the default window."""
    return PromptBuilder(BASE_DIR / "prompts")


@pytest.fixture
def settings() -> Settings:
    """Settings that keep every store in memory."""
    return Settings(
        gemini_api_key="",
        gemini_model="gemini-1.5-flash",
        temperature=0.4,
        output_contract="strict",
        history_window=10,
        store_path=None,
        submissions_path=None,
        catalog_path=BASE_DIR / "resources" / "careers.json",
        prompts_dir=BASE_DIR / "prompts",
        host="127.0.0.1",
        port=5000,
        log_level="INFO",
    )


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def memory_store() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture
def api_client(settings, memory_store, fake_client, catalog):
    """TestClient over an app wired to in-memory stores and the fake client."""
    app = create_app(
        settings=settings,
        store=memory_store,
        completion_client=fake_client,
        catalog=catalog,
        questionnaires=QuestionnaireStore(None),
    )
    with TestClient(app) as client:
        yield client


@pytest.fixture
def store_file(tmp_path) -> Path:
    return tmp_path / "data" / "store.json"
