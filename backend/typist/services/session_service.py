"""Per-connection typing session state."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum

from typist.services.passage_index import Passage
from typist.services.progress_store import ProgressRecord

WORD_LENGTH = 5


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_INPUT = "awaiting_input"
    COMPLETED = "completed"


@dataclass
class RuntimeMetrics:
    start_time: float = 0.0
    started: bool = False
    chars_typed: int = 0
    correct_chars: int = 0
    wpm: int = 0

    def start(self, now: float) -> None:
        self.started = True
        self.start_time = now

    def refresh_wpm(self, now: float) -> None:
        """Recompute WPM from correct characters; zero elapsed time keeps the old value."""
        elapsed_minutes = (now - self.start_time) / 60.0
        if elapsed_minutes <= 0:
            return
        self.wpm = max(0, int(self.correct_chars / WORD_LENGTH / elapsed_minutes))


@dataclass
class TypingSession:
    user_id: str
    collection: str | None = None
    passages: tuple[Passage, ...] = ()
    record: ProgressRecord | None = None
    metrics: RuntimeMetrics = field(default_factory=RuntimeMetrics)
    cursor: int = 0
    state: SessionState = SessionState.IDLE
    closed: bool = False
    # False while `record` is a stand-in for a stored record that could not be read.
    record_loaded: bool = True

    @property
    def at_frontier(self) -> bool:
        return self.record is not None and self.cursor == self.record.current_index

    def current_passage(self) -> Passage | None:
        if 0 <= self.cursor < len(self.passages):
            return self.passages[self.cursor]
        return None


class TypingSessionService:
    """Factory for per-connection typing sessions."""

    @staticmethod
    def create_session(user_id: str | None = None, now: float | None = None) -> TypingSession:
        if not user_id:
            user_id = uuid.uuid4().hex
        start = time.time() if now is None else now
        return TypingSession(user_id=user_id, metrics=RuntimeMetrics(start_time=start))
