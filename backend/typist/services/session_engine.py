"""Session engine: turns inbound client events into session mutations and
outbound messages.

The engine is synchronous; the connection loop runs each event on a worker
thread and awaits it before reading the next frame, so events for one session
are handled strictly in arrival order and no per-session lock is needed.

Progress counts only move at the frontier, the passage at
``record.current_index``. A passage reached through ``jump`` that lies behind
or ahead of the frontier is a replay: it gets correct/wrong feedback and
updates runtime metrics, but never touches the persisted record.
"""

from __future__ import annotations

import time
from typing import Callable

from shared.config.logging import get_logger
from typist.errors import CorruptRecordError, InputError, StorageError
from typist.models import (
    BooksMessage,
    ClientEvent,
    ClientEventType,
    CompleteMessage,
    CorrectMessage,
    ErrorMessage,
    FavoritePayload,
    FavoritesMessage,
    NoticeMessage,
    ProgressPayload,
    ResponseMessage,
    RuntimePayload,
    ServerMessage,
    StatsMessage,
    StatsPayload,
    VerseMessage,
    VerseRef,
    WrongMessage,
)
from typist.services.normalizer import canonical
from typist.services.passage_index import PassageIndex
from typist.services.progress_store import ProgressRecord, ProgressStore
from typist.services.session_service import RuntimeMetrics, SessionState, TypingSession

logger = get_logger(__name__)

GOODBYE = "goodbye"
STORAGE_NOTICE = "Progress could not be saved; continuing with unsaved progress."


class SessionEngine:
    """Drives one :class:`TypingSession` through the typing exercise."""

    def __init__(
        self,
        session: TypingSession,
        passages: PassageIndex,
        store: ProgressStore,
        *,
        quit_token: str = "quit",
        clock: Callable[[], float] = time.time,
    ):
        self.session = session
        self.passages = passages
        self.store = store
        self.quit_token = quit_token.strip().lower()
        self.clock = clock
        self._handlers: dict[str, Callable[[ClientEvent], list[ServerMessage]]] = {
            ClientEventType.SELECT_COLLECTION.value: self.select_collection,
            ClientEventType.SUBMIT.value: self.submit,
            ClientEventType.JUMP.value: self.jump,
            ClientEventType.LIST_COLLECTIONS.value: self.list_collections,
            ClientEventType.GET_FAVORITES.value: self.get_favorites,
            ClientEventType.TOGGLE_FAVORITE.value: self.toggle_favorite,
        }

    @property
    def closed(self) -> bool:
        return self.session.closed

    def open(self) -> list[ServerMessage]:
        """Messages sent right after the connection is accepted."""
        return self.list_collections(ClientEvent(type=ClientEventType.LIST_COLLECTIONS.value))

    def handle(self, event: ClientEvent) -> list[ServerMessage]:
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.debug("Ignoring unknown event type=%r user=%s", event.type, self.session.user_id)
            return []
        try:
            return handler(event)
        except InputError as exc:
            return [ErrorMessage(content=str(exc))]

    # -- event handlers -------------------------------------------------

    def select_collection(self, event: ClientEvent) -> list[ServerMessage]:
        name = event.content.strip()
        passages = self.passages.get(name)
        if passages is None:
            raise InputError(f"Unknown collection: {name!r}")

        session = self.session
        notices: list[ServerMessage] = []
        total = len(passages)
        record_loaded = True
        try:
            record = self.store.get_or_create(session.user_id, name, total)
        except CorruptRecordError:
            logger.warning(
                "Discarding unreadable progress user=%s collection=%s", session.user_id, name, exc_info=True
            )
            record = ProgressRecord(current_index=0, total=total)
            notices.append(NoticeMessage(content="Saved progress was unreadable; starting from the beginning."))
        except StorageError:
            logger.error("Progress lookup failed user=%s collection=%s", session.user_id, name, exc_info=True)
            record = ProgressRecord(current_index=0, total=total)
            record_loaded = False
            notices.append(NoticeMessage(content="Saved progress is unavailable; starting from the beginning."))

        session.collection = name
        session.passages = passages
        session.record = record
        session.record_loaded = record_loaded
        session.metrics = RuntimeMetrics(start_time=self.clock())

        if record.total != total:
            logger.warning(
                "Reconciling total for user=%s collection=%s: %d -> %d",
                session.user_id,
                name,
                record.total,
                total,
            )
            record.total = total
            record.current_index = min(record.current_index, total)
            self._persist(notices)

        session.cursor = record.current_index
        logger.info(
            "Collection selected user=%s collection=%s position=%d/%d",
            session.user_id,
            name,
            record.current_index,
            total,
        )
        return notices + [self._present_or_complete()]

    def submit(self, event: ClientEvent) -> list[ServerMessage]:
        session = self.session
        passage = session.current_passage()
        if session.state != SessionState.AWAITING_INPUT or session.closed or passage is None:
            return []

        typed = canonical(event.content)
        target = canonical(passage.text)

        if typed.lower() == self.quit_token:
            session.closed = True
            logger.info("User quit user=%s collection=%s", session.user_id, session.collection)
            return [ResponseMessage(content=GOODBYE)]

        now = self.clock()
        metrics = session.metrics
        if not metrics.started and typed:
            metrics.start(now)
        metrics.chars_typed += len(typed)

        if typed == target:
            return self._on_match(len(target), now)
        return self._on_mismatch()

    def jump(self, event: ClientEvent) -> list[ServerMessage]:
        session = self.session
        if session.record is None:
            raise InputError("Select a collection before jumping to a passage.")
        raw = event.content.strip()
        if not raw.isdecimal():
            raise InputError(f"Invalid passage number: {raw!r}")
        number = int(raw)
        total = len(session.passages)
        if not 1 <= number <= total:
            raise InputError(f"Passage {number} is out of range 1-{total}.")

        session.cursor = number - 1
        session.state = SessionState.AWAITING_INPUT
        return [self._verse_message()]

    def list_collections(self, event: ClientEvent) -> list[ServerMessage]:
        names = self.passages.names()
        progress = {name: 0 for name in names}
        messages: list[ServerMessage] = []
        try:
            stored = self.store.list_all(self.session.user_id)
        except StorageError:
            logger.error("Progress listing failed user=%s", self.session.user_id, exc_info=True)
            messages.append(NoticeMessage(content="Saved progress is unavailable."))
        else:
            progress.update({name: pct for name, pct in stored.items() if name in progress})
        return [BooksMessage(content=names, progress=progress)] + messages

    def get_favorites(self, event: ClientEvent) -> list[ServerMessage]:
        try:
            return [self._favorites_message()]
        except StorageError:
            logger.error("Favorites lookup failed user=%s", self.session.user_id, exc_info=True)
            return [NoticeMessage(content="Favorites are unavailable.")]

    def toggle_favorite(self, event: ClientEvent) -> list[ServerMessage]:
        session = self.session
        if session.collection is None:
            raise InputError("Select a collection before marking favorites.")
        raw = event.content.strip()
        if not raw:
            number = session.cursor + 1
        elif raw.isdecimal():
            number = int(raw)
        else:
            raise InputError(f"Invalid passage number: {raw!r}")
        if not 1 <= number <= len(session.passages):
            raise InputError(f"Passage {number} is out of range 1-{len(session.passages)}.")

        try:
            self.store.toggle_favorite(session.user_id, session.collection, number)
            return [self._favorites_message()]
        except StorageError:
            logger.error("Favorite toggle failed user=%s", session.user_id, exc_info=True)
            return [NoticeMessage(content="Favorites could not be saved.")]

    # -- submission outcomes --------------------------------------------

    def _on_match(self, target_length: int, now: float) -> list[ServerMessage]:
        session = self.session
        record = session.record
        metrics = session.metrics
        notices: list[ServerMessage] = []

        metrics.correct_chars += target_length
        if session.at_frontier:
            record.correct += 1
            record.current_index += 1
            metrics.refresh_wpm(now)
            self._persist(notices)
            # _persist may have merged in a stored record with a later frontier.
            session.cursor = session.record.current_index
        else:
            # Replay: feedback and metrics only.
            metrics.refresh_wpm(now)
            session.cursor += 1
            if session.cursor >= len(session.passages):
                session.cursor = record.current_index

        messages: list[ServerMessage] = [CorrectMessage(), StatsMessage(stats=self._stats())]
        return messages + notices + [self._present_or_complete()]

    def _on_mismatch(self) -> list[ServerMessage]:
        session = self.session
        notices: list[ServerMessage] = []
        if session.at_frontier:
            session.record.mistakes += 1
            self._persist(notices)
        return [WrongMessage(), StatsMessage(stats=self._stats())] + notices

    # -- helpers --------------------------------------------------------

    def _persist(self, notices: list[ServerMessage]) -> None:
        """Single write point for the progress record; failures keep the in-memory state.

        A stand-in record is never written over a stored one: the stored record
        is read again first and merged, and the write is skipped while it stays
        unreadable.
        """
        session = self.session
        try:
            if not session.record_loaded:
                self._restore_record(notices)
            self.store.update(session.user_id, session.collection, session.record.copy())
        except StorageError:
            logger.error(
                "Progress update failed user=%s collection=%s",
                session.user_id,
                session.collection,
                exc_info=True,
            )
            notices.append(NoticeMessage(content=STORAGE_NOTICE))

    def _restore_record(self, notices: list[ServerMessage]) -> None:
        """Fold the progress made on a stand-in record into the stored one.

        Raises StorageError while the store stays unreachable.
        """
        session = self.session
        total = len(session.passages)
        try:
            stored = self.store.get_or_create(session.user_id, session.collection, total)
        except CorruptRecordError:
            logger.warning(
                "Replacing unreadable progress user=%s collection=%s",
                session.user_id,
                session.collection,
                exc_info=True,
            )
        else:
            local = session.record
            session.record = ProgressRecord(
                current_index=min(max(stored.current_index, local.current_index), total),
                total=total,
                correct=stored.correct + local.correct,
                mistakes=stored.mistakes + local.mistakes,
            )
            logger.info(
                "Merged restored progress user=%s collection=%s position=%d/%d",
                session.user_id,
                session.collection,
                session.record.current_index,
                total,
            )
            notices.append(NoticeMessage(content="Saved progress was restored and merged."))
        session.record_loaded = True

    def _present_or_complete(self) -> ServerMessage:
        session = self.session
        if session.cursor >= len(session.passages):
            session.state = SessionState.COMPLETED
            logger.info("Collection complete user=%s collection=%s", session.user_id, session.collection)
            return CompleteMessage(content=f"{session.collection} complete", stats=self._stats())
        session.state = SessionState.AWAITING_INPUT
        return self._verse_message()

    def _verse_message(self) -> VerseMessage:
        session = self.session
        passage = session.passages[session.cursor]
        return VerseMessage(
            content=passage.text,
            verse=VerseRef(
                book_name=passage.collection,
                book=passage.book,
                chapter=passage.chapter,
                verse=passage.verse,
            ),
            number=session.cursor + 1,
            total=len(session.passages),
            stats=self._stats(),
        )

    def _favorites_message(self) -> FavoritesMessage:
        favorites = self.store.get_favorites(self.session.user_id)
        return FavoritesMessage(
            content=[FavoritePayload(collection=item.collection, number=item.number) for item in favorites]
        )

    def _stats(self) -> StatsPayload:
        record = self.session.record or ProgressRecord()
        metrics = self.session.metrics
        return StatsPayload(
            progress=ProgressPayload(
                current_index=record.current_index,
                total=record.total,
                correct=record.correct,
                mistakes=record.mistakes,
            ),
            runtime=RuntimePayload(
                start_time_ms=max(0, int(metrics.start_time * 1000)),
                started=metrics.started,
                chars_typed=metrics.chars_typed,
                correct_chars=metrics.correct_chars,
                wpm=metrics.wpm,
            ),
        )
