from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as ModelValidationError

from .catalog import CareerCatalog, CatalogLoader
from .config import BASE_DIR, Settings, load_settings
from .conversation import ConversationService
from .errors import MalformedCompletionError, ProviderError, RequestFieldError, StoreUnavailable, VocationalError
from .gemini_client import CompletionClient, GeminiClient
from .models import (
    ChatRequest,
    ChatResponse,
    HealthResponse,
    LoadDataResponse,
    SaveProfileRequest,
    SaveProfileResponse,
    StatsResponse,
    SubmitResponse,
)
from .profile_store import ProfileStore, open_profile_store
from .prompt_builder import OutputContract, PromptBuilder
from .submissions import QuestionnaireStore

logger = logging.getLogger("vocational.app")

ENV_PATH = BASE_DIR / ".env"

PUBLIC_ERROR_MESSAGES = {
    ProviderError: "The guidance assistant is not reachable right now. Please try again.",
    MalformedCompletionError: "The guidance assistant returned an unreadable answer. Please try again.",
    StoreUnavailable: "Stored data could not be accessed.",
}


def configure_logging(level_name: str) -> None:
    """Install the root handler once and set the ``vocational`` logger level."""
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    logging.getLogger("vocational").setLevel(log_level)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ProfileStore] = None,
    completion_client: Optional[CompletionClient] = None,
    catalog: Optional[CareerCatalog] = None,
    questionnaires: Optional[QuestionnaireStore] = None,
) -> FastAPI:
    """Purpose: Build the FastAPI app with its store, model client, and catalog.
    Inputs/Outputs: Optional pre-built collaborators; returns a FastAPI app.
    Side Effects / State: Loads .env, configures logging, opens stores, reads
        the catalog and prompt templates.
    Dependencies: load_settings, open_profile_store, GeminiClient, CatalogLoader.
    Failure Modes: Invalid settings or a missing catalog/template raise at startup;
        an unusable store file degrades to memory with a warning.
    If Removed: No HTTP surface exists.
    Testing Notes: Inject an in-memory store and a fake completion client.
    """
    # Resolve configuration, then build collaborators that were not injected.
    if settings is None:
        if ENV_PATH.exists():
            load_dotenv(ENV_PATH, override=True)
        else:
            load_dotenv()
        settings = load_settings()
    configure_logging(settings.log_level)

    if catalog is None:
        catalog, _ = CatalogLoader(settings.catalog_path).load()
    if store is None:
        store = open_profile_store(settings.store_path)
    if completion_client is None:
        completion_client = GeminiClient(settings)
    if questionnaires is None:
        questionnaires = QuestionnaireStore(settings.submissions_path)

    contract = OutputContract(settings.output_contract)
    conversation = ConversationService(
        store=store,
        completion_client=completion_client,
        prompt_builder=PromptBuilder(settings.prompts_dir, history_window=settings.history_window),
        catalog=catalog,
        contract=contract,
    )

    app = FastAPI(title="Vocational Guidance Chat")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.state.settings = settings
    app.state.store = store
    app.state.conversation = conversation
    app.state.questionnaires = questionnaires
    _register_error_handlers(app)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info("%s %s -> %d", request.method, request.url.path, response.status_code)
        return response

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(
            status="ok",
            storeMode=store.mode,
            outputContract=contract.value,
            catalogSize=len(catalog),
        )

    @app.post("/chat", response_model=ChatResponse)
    def chat(request: ChatRequest) -> ChatResponse:
        """Purpose: Run one chat turn and relay the reply and suggestions.
        Inputs/Outputs: ChatRequest with a session key, or a message plus
            studentProfile/chatHistory; returns ChatResponse.
        Side Effects / State: Store-backed turns append two history messages.
        Failure Modes: Missing fields give 400; provider, parse, and store
            failures give 500 with nothing appended.
        Testing Notes: Post with a fake client and check history length.
        """
        message = (request.message or "").strip()
        session_key = (request.session_key or "").strip()
        missing: List[str] = []
        if not message:
            missing.append("message")
        if not session_key and request.student_profile is None:
            missing.append("sessionKey")
        if missing:
            raise RequestFieldError(missing)

        if session_key:
            result = conversation.handle_turn(session_key, message, fallback_profile=request.student_profile)
        else:
            result = conversation.handle_stateless(message, request.student_profile, request.chat_history)
        return ChatResponse(
            botMessage=result.bot_message,
            suggestedOptions=result.suggested_options,
            updatedStudentProfile=result.profile_snapshot,
        )

    @app.post("/save-profile", response_model=SaveProfileResponse)
    def save_profile(request: SaveProfileRequest) -> SaveProfileResponse:
        session_key = (request.session_key or "").strip()
        missing: List[str] = []
        if not session_key:
            missing.append("sessionKey")
        if request.profile_data is None:
            missing.append("profileData")
        if missing:
            raise RequestFieldError(missing)
        try:
            profile = store.save_profile(session_key, request.profile_data)
        except ModelValidationError as exc:
            raise RequestFieldError.from_validation(exc.errors(), prefix="profileData") from exc
        logger.info("session=%s profile saved mode=%s", session_key, store.mode)
        return SaveProfileResponse(message=f"Profile saved ({store.mode}).", profile=profile)

    @app.get("/load-data/{session_key}", response_model=LoadDataResponse)
    def load_data(session_key: str) -> LoadDataResponse:
        return LoadDataResponse(
            studentProfile=store.get_profile(session_key),
            chatHistory=store.get_history(session_key),
        )

    @app.post("/api/submit", response_model=SubmitResponse)
    def submit_questionnaire(payload: Dict[str, Any]) -> SubmitResponse:
        submission, answered, missing = questionnaires.record(payload)
        return SubmitResponse(
            mensaje="Respuestas guardadas correctamente.",
            id=submission.id,
            preguntasGuardadas=len(answered),
            preguntasFaltantes=missing,
        )

    @app.get("/api/stats", response_model=StatsResponse)
    def questionnaire_stats() -> StatsResponse:
        total, latest = questionnaires.stats()
        return StatsResponse(totalRespuestas=total, ultimaRespuesta=latest)

    logger.info(
        "app ready contract=%s store=%s careers=%d",
        contract.value,
        store.mode,
        len(catalog),
    )
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestFieldError)
    async def handle_field_error(request: Request, exc: RequestFieldError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc), "category": exc.category, "fields": exc.fields},
        )

    @app.exception_handler(VocationalError)
    async def handle_vocational_error(request: Request, exc: VocationalError) -> JSONResponse:
        logger.error("%s %s failed category=%s error=%s", request.method, request.url.path, exc.category, exc)
        public = PUBLIC_ERROR_MESSAGES.get(type(exc), "Internal server error.")
        return JSONResponse(status_code=exc.status_code, content={"error": public, "category": exc.category})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return await handle_field_error(request, RequestFieldError.from_validation(exc.errors()))


def run() -> None:
    """Console entrypoint: serve the app factory with uvicorn."""
    if ENV_PATH.exists():
        load_dotenv(ENV_PATH, override=True)
    else:
        load_dotenv()
    settings = load_settings()
    configure_logging(settings.log_level)
    logger.info("starting server on http://%s:%d", settings.host, settings.port)
    uvicorn.run(
        "vocational_backend.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=os.getenv("UVICORN_LOG_LEVEL", settings.log_level.lower()),
    )


if __name__ == "__main__":
    run()
