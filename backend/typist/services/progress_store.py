"""Durable per-user, per-collection progress records.

Two backends implement the same contract and are picked at startup:

* ``JsonFileProgressStore`` keeps one JSON file per (user, collection) pair and
  one favorites file per user.
* ``SqlProgressStore`` keeps rows in a relational database via SQLAlchemy.

Callers only depend on :class:`ProgressStore`. Every method that touches the
backend raises :class:`StorageError` on failure.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

from sqlalchemy import Integer, String, UniqueConstraint, create_engine, delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from shared.config.logging import get_logger
from typist.errors import CorruptRecordError, StorageError

logger = get_logger(__name__)


@dataclass
class ProgressRecord:
    current_index: int = 0
    total: int = 0
    correct: int = 0
    mistakes: int = 0

    @property
    def completed(self) -> bool:
        return self.current_index >= self.total

    def percent_complete(self) -> int:
        if self.total <= 0:
            return 0
        return self.current_index * 100 // self.total

    def copy(self) -> "ProgressRecord":
        return replace(self)


@dataclass(frozen=True)
class Favorite:
    collection: str
    number: int


class ProgressStore(ABC):
    """Contract shared by every progress backend."""

    @abstractmethod
    def get_or_create(self, user_id: str, collection_id: str, total_count: int) -> ProgressRecord:
        ...

    @abstractmethod
    def update(self, user_id: str, collection_id: str, record: ProgressRecord) -> None:
        ...

    @abstractmethod
    def list_all(self, user_id: str) -> dict[str, int]:
        ...

    @abstractmethod
    def get_favorites(self, user_id: str) -> list[Favorite]:
        ...

    @abstractmethod
    def toggle_favorite(self, user_id: str, collection_id: str, number: int) -> bool:
        ...

    def close(self) -> None:
        pass


class KeyedLocks:
    """Hands out one lock per key; unrelated keys never contend."""

    def __init__(self) -> None:
        self._locks: dict[Any, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, key: Any) -> threading.Lock:
        lock = self._locks.get(key)
        if lock is None:
            with self._guard:
                lock = self._locks.setdefault(key, threading.Lock())
        return lock


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:32]


def _check_record(record: ProgressRecord) -> ProgressRecord:
    if not 0 <= record.current_index <= record.total:
        raise ValueError(f"current_index {record.current_index} outside 0..{record.total}")
    if record.correct < 0 or record.mistakes < 0:
        raise ValueError("negative counters")
    return record


def _record_from_payload(payload: Any) -> ProgressRecord:
    if not isinstance(payload, dict):
        raise ValueError("progress payload is not an object")
    return _check_record(
        ProgressRecord(
            current_index=int(payload["current_index"]),
            total=int(payload["total"]),
            correct=int(payload["correct"]),
            mistakes=int(payload["mistakes"]),
        )
    )


class JsonFileProgressStore(ProgressStore):
    """File-per-key JSON store.

    Layout::

        <root>/<user digest>/progress/<collection digest>.json
        <root>/<user digest>/favorites.json

    Writes go to a temporary file that replaces the target atomically.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self._locks = KeyedLocks()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Progress directory {self.root} is unusable: {exc}") from exc

    def _user_dir(self, user_id: str) -> Path:
        return self.root / _digest(user_id)

    def _progress_path(self, user_id: str, collection_id: str) -> Path:
        return self._user_dir(user_id) / "progress" / f"{_digest(collection_id)}.json"

    def _favorites_path(self, user_id: str) -> Path:
        return self._user_dir(user_id) / "favorites.json"

    def _read_json(self, path: Path) -> Any:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            raise CorruptRecordError(f"Corrupted progress file {path}: {exc}") from exc
        except OSError as exc:
            raise StorageError(f"Unable to read {path}: {exc}") from exc

    def _write_json(self, path: Path, payload: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=1)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as exc:
            raise StorageError(f"Unable to write {path}: {exc}") from exc

    def _read_record(self, path: Path) -> ProgressRecord | None:
        payload = self._read_json(path)
        if payload is None:
            return None
        try:
            return _record_from_payload(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise CorruptRecordError(f"Malformed progress record {path}: {exc}") from exc

    def get_or_create(self, user_id: str, collection_id: str, total_count: int) -> ProgressRecord:
        path = self._progress_path(user_id, collection_id)
        with self._locks.get((user_id, collection_id)):
            record = self._read_record(path)
            if record is None:
                record = ProgressRecord(current_index=0, total=total_count)
                self._write_json(path, {"collection": collection_id, **asdict(record)})
                logger.info("[Progress] Created record user=%s collection=%s", user_id, collection_id)
            return record

    def update(self, user_id: str, collection_id: str, record: ProgressRecord) -> None:
        path = self._progress_path(user_id, collection_id)
        with self._locks.get((user_id, collection_id)):
            self._write_json(path, {"collection": collection_id, **asdict(record)})

    def list_all(self, user_id: str) -> dict[str, int]:
        progress_dir = self._user_dir(user_id) / "progress"
        result: dict[str, int] = {}
        if not progress_dir.is_dir():
            return result
        for path in sorted(progress_dir.glob("*.json")):
            try:
                payload = self._read_json(path)
                if payload is None:
                    continue
                result[str(payload["collection"])] = _record_from_payload(payload).percent_complete()
            except (CorruptRecordError, KeyError, TypeError, ValueError) as exc:
                # One broken key must not hide the others.
                logger.warning("[Progress] Skipping unreadable record %s: %s", path, exc)
        return result

    def _read_favorites(self, path: Path) -> list[Favorite]:
        payload = self._read_json(path) or []
        try:
            return [Favorite(collection=str(item["collection"]), number=int(item["number"])) for item in payload]
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Malformed favorites file {path}: {exc}") from exc

    def get_favorites(self, user_id: str) -> list[Favorite]:
        path = self._favorites_path(user_id)
        with self._locks.get(("favorites", user_id)):
            return self._read_favorites(path)

    def toggle_favorite(self, user_id: str, collection_id: str, number: int) -> bool:
        path = self._favorites_path(user_id)
        favorite = Favorite(collection=collection_id, number=number)
        with self._locks.get(("favorites", user_id)):
            favorites = self._read_favorites(path)
            if favorite in favorites:
                favorites.remove(favorite)
                added = False
            else:
                favorites.append(favorite)
                added = True
            self._write_json(path, [asdict(item) for item in favorites])
        return added


class Base(DeclarativeBase):
    pass


class ProgressRow(Base):
    __tablename__ = "progress"
    __table_args__ = (UniqueConstraint("user_id", "collection", name="uq_progress_user_collection"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    collection: Mapped[str] = mapped_column(String(128), nullable=False)

    current_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    correct: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    mistakes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def to_record(self) -> ProgressRecord:
        record = ProgressRecord(
            current_index=self.current_index,
            total=self.total,
            correct=self.correct,
            mistakes=self.mistakes,
        )
        try:
            return _check_record(record)
        except ValueError as exc:
            raise CorruptRecordError(f"Malformed progress row {self.user_id}/{self.collection}: {exc}") from exc


class FavoriteRow(Base):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint("user_id", "collection", "number", name="uq_favorite"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    collection: Mapped[str] = mapped_column(String(128), nullable=False)
    number: Mapped[int] = mapped_column(Integer, nullable=False)


class SqlProgressStore(ProgressStore):
    """Relational store; the unique constraint on (user_id, collection) keeps
    one row per pair and each update is a single statement."""

    def __init__(self, url: str):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        try:
            if url.startswith("sqlite:///"):
                db_path = url.removeprefix("sqlite:///")
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
            Base.metadata.create_all(self.engine)
        except (OSError, SQLAlchemyError) as exc:
            raise StorageError(f"Progress database {url} is unreachable: {exc}") from exc
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)

    def _select_row(self, db: Session, user_id: str, collection_id: str) -> ProgressRow | None:
        return db.scalars(
            select(ProgressRow).where(
                ProgressRow.user_id == user_id,
                ProgressRow.collection == collection_id,
            )
        ).first()

    def get_or_create(self, user_id: str, collection_id: str, total_count: int) -> ProgressRecord:
        try:
            with self._sessions() as db:
                row = self._select_row(db, user_id, collection_id)
                if row is not None:
                    return row.to_record()
                row = ProgressRow(user_id=user_id, collection=collection_id, current_index=0, total=total_count)
                db.add(row)
                try:
                    db.commit()
                    logger.info("[Progress] Created row user=%s collection=%s", user_id, collection_id)
                    return row.to_record()
                except IntegrityError:
                    # Another session inserted the same pair first.
                    db.rollback()
                    row = self._select_row(db, user_id, collection_id)
                    if row is None:
                        raise StorageError(f"Progress row for {user_id}/{collection_id} vanished")
                    return row.to_record()
        except SQLAlchemyError as exc:
            raise StorageError(f"Progress lookup failed: {exc}") from exc

    def update(self, user_id: str, collection_id: str, record: ProgressRecord) -> None:
        values = asdict(record)
        try:
            with self._sessions() as db:
                result = db.execute(
                    update(ProgressRow)
                    .where(ProgressRow.user_id == user_id, ProgressRow.collection == collection_id)
                    .values(**values)
                )
                if result.rowcount == 0:
                    db.add(ProgressRow(user_id=user_id, collection=collection_id, **values))
                db.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Progress update failed: {exc}") from exc

    def list_all(self, user_id: str) -> dict[str, int]:
        try:
            with self._sessions() as db:
                rows = db.scalars(select(ProgressRow).where(ProgressRow.user_id == user_id)).all()
            result: dict[str, int] = {}
            for row in rows:
                try:
                    result[row.collection] = row.to_record().percent_complete()
                except CorruptRecordError as exc:
                    logger.warning("[Progress] Skipping unreadable row: %s", exc)
            return result
        except SQLAlchemyError as exc:
            raise StorageError(f"Progress listing failed: {exc}") from exc

    def get_favorites(self, user_id: str) -> list[Favorite]:
        try:
            with self._sessions() as db:
                rows = db.scalars(
                    select(FavoriteRow).where(FavoriteRow.user_id == user_id).order_by(FavoriteRow.id)
                ).all()
                return [Favorite(collection=row.collection, number=row.number) for row in rows]
        except SQLAlchemyError as exc:
            raise StorageError(f"Favorites lookup failed: {exc}") from exc

    def toggle_favorite(self, user_id: str, collection_id: str, number: int) -> bool:
        where = (
            FavoriteRow.user_id == user_id,
            FavoriteRow.collection == collection_id,
            FavoriteRow.number == number,
        )
        try:
            with self._sessions() as db:
                removed = db.execute(delete(FavoriteRow).where(*where)).rowcount
                if not removed:
                    db.add(FavoriteRow(user_id=user_id, collection=collection_id, number=number))
                db.commit()
                return not removed
        except IntegrityError:
            # Concurrent toggle already added it.
            return True
        except SQLAlchemyError as exc:
            raise StorageError(f"Favorites update failed: {exc}") from exc

    def close(self) -> None:
        self.engine.dispose()


def build_progress_store(backend: str, *, progress_dir: str | Path, database_url: str) -> ProgressStore:
    """Create the configured progress store (``file`` or ``sql``)."""
    if backend == "file":
        logger.info("[Progress] Using JSON file store at %s", progress_dir)
        return JsonFileProgressStore(progress_dir)
    if backend == "sql":
        logger.info("[Progress] Using SQL store at %s", database_url)
        return SqlProgressStore(database_url)
    raise ValueError(f"Unknown progress backend: {backend!r}")
