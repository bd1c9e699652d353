from __future__ import annotations

import time
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

QUESTION_COUNT = 18


class StudentProfile(BaseModel):
    """Persisted student profile keyed by the session key."""
    userId: str
    name: str = ""
    age: Union[int, str] = 0
    interests: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    preferences: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("interests", "skills", mode="before")
    @classmethod
    def _split_free_text(cls, value: Any) -> Any:
        # Form fields may arrive as one comma-separated string.
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("preferences", mode="before")
    @classmethod
    def _default_preferences(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("name", mode="before")
    @classmethod
    def _default_name(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("age", mode="before")
    @classmethod
    def _default_age(cls, value: Any) -> Any:
        return 0 if value is None else value


class ChatMessage(BaseModel):
    """One immutable entry of a session's conversation log."""
    sender: Literal["user", "bot"]
    message: str
    timestamp: float = Field(default_factory=time.time)


class CareerEntry(BaseModel):
    """Static catalog record; ``name`` is the join key for suggestions."""
    name: str
    description: str


class SuggestedCareer(BaseModel):
    """Career suggestion produced for a single chat turn (not persisted)."""
    name: str
    percentageMatch: int = 0
    reason: str = ""


class ChatRequest(BaseModel):
    """Request payload for /chat, store-backed or caller-supplied context."""
    model_config = ConfigDict(populate_by_name=True)

    session_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sessionKey", "userId", "session_key"),
    )
    message: Optional[str] = None
    student_profile: Optional[Dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("studentProfile", "student_profile"),
    )
    chat_history: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        validation_alias=AliasChoices("chatHistory", "chat_history"),
    )


class ChatResponse(BaseModel):
    """Response payload returned by the chat API."""
    botMessage: str
    suggestedOptions: List[SuggestedCareer]
    updatedStudentProfile: Optional[Dict[str, Any]] = None


class SaveProfileRequest(BaseModel):
    """Request payload for /save-profile."""
    model_config = ConfigDict(populate_by_name=True)

    session_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sessionKey", "userId", "session_key"),
    )
    profile_data: Optional[Dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("profileData", "profile_data"),
    )


class SaveProfileResponse(BaseModel):
    message: str
    profile: StudentProfile


class LoadDataResponse(BaseModel):
    studentProfile: Optional[StudentProfile] = None
    chatHistory: List[ChatMessage] = Field(default_factory=list)


class QuestionnaireSubmission(BaseModel):
    """Stored questionnaire answers with a server-assigned id and timestamp."""
    id: str
    answers: Dict[str, Any]
    fechaEnvio: float


class SubmitResponse(BaseModel):
    mensaje: str
    id: str
    preguntasGuardadas: int
    preguntasFaltantes: List[int]
    totalPreguntas: int = QUESTION_COUNT


class StatsResponse(BaseModel):
    totalRespuestas: int
    ultimaRespuesta: Optional[float] = None


class HealthResponse(BaseModel):
    status: str
    storeMode: str
    outputContract: str
    catalogSize: int
