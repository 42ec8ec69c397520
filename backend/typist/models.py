"""Pydantic models for the typing practice websocket contract."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class ClientEventType(str, Enum):
    SELECT_COLLECTION = "select_collection"
    SUBMIT = "submit"
    JUMP = "jump"
    LIST_COLLECTIONS = "list_collections"
    GET_FAVORITES = "get_favorites"
    TOGGLE_FAVORITE = "toggle_favorite"


class ClientEvent(BaseModel):
    """Inbound frame. ``type`` is kept as a plain string so unknown tags parse."""

    type: str
    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def coerce_content(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, bool):
            raise ValueError("content must be text or a number")
        if isinstance(value, (int, float)):
            return str(value)
        return value


class VerseRef(BaseModel):
    book_name: str
    book: int
    chapter: int
    verse: int


class ProgressPayload(BaseModel):
    current_index: int = Field(ge=0)
    total: int = Field(ge=0)
    correct: int = Field(ge=0)
    mistakes: int = Field(ge=0)


class RuntimePayload(BaseModel):
    start_time_ms: int = Field(ge=0)
    started: bool
    chars_typed: int = Field(ge=0)
    correct_chars: int = Field(ge=0)
    wpm: int = Field(ge=0)


class StatsPayload(BaseModel):
    progress: ProgressPayload
    runtime: RuntimePayload


class VerseMessage(BaseModel):
    type: Literal["verse"] = "verse"
    content: str
    verse: VerseRef
    number: int = Field(ge=1)
    total: int = Field(ge=1)
    stats: StatsPayload


class CorrectMessage(BaseModel):
    type: Literal["correct"] = "correct"
    content: str = "correct"


class WrongMessage(BaseModel):
    type: Literal["wrong"] = "wrong"
    content: str = "wrong"


class StatsMessage(BaseModel):
    type: Literal["stats"] = "stats"
    stats: StatsPayload


class CompleteMessage(BaseModel):
    type: Literal["complete"] = "complete"
    content: str
    stats: StatsPayload


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    content: str


class NoticeMessage(BaseModel):
    type: Literal["notice"] = "notice"
    content: str


class ResponseMessage(BaseModel):
    type: Literal["response"] = "response"
    content: str


class BooksMessage(BaseModel):
    type: Literal["books"] = "books"
    content: list[str]
    progress: dict[str, int]


class FavoritePayload(BaseModel):
    collection: str
    number: int = Field(ge=1)


class FavoritesMessage(BaseModel):
    type: Literal["favorites"] = "favorites"
    content: list[FavoritePayload]


ServerMessage = (
    VerseMessage
    | CorrectMessage
    | WrongMessage
    | StatsMessage
    | CompleteMessage
    | ErrorMessage
    | NoticeMessage
    | ResponseMessage
    | BooksMessage
    | FavoritesMessage
)
