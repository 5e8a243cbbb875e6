"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from labhub.enums import MessageType, Phase, Role
from labhub.errors import StorageError


def iso_timestamp(value: float) -> str:
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


class MonotonicClock:
    """
    Wall-clock timestamps that strictly increase across calls.

    Two appends in the same clock tick still get distinct, ordered
    creation times.
    """

    def __init__(self, floor: float = 0.0):
        self._last = floor
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            current = time.time()
            if current <= self._last:
                current = self._last + 1e-6
            self._last = current
            return current


@dataclass
class UserRecord:
    user_id: str
    name: str
    role: Role = Role.IMAGING
    email: Optional[str] = None
    password_hash: Optional[str] = None
    is_active: bool = True
    created_at: float = field(default_factory=lambda: time.time())

    def public(self) -> dict:
        return {"id": self.user_id, "name": self.name, "role": self.role.value}


@dataclass
class MessageRecord:
    message_id: str
    sender_id: str
    content: str
    channel: str
    message_type: MessageType = MessageType.TEXT
    created_at: float = field(default_factory=lambda: time.time())
    sender: Optional[UserRecord] = None

    def as_dict(self) -> dict:
        return {
            "id": self.message_id,
            "senderId": self.sender_id,
            "sender": self.sender.public() if self.sender else None,
            "content": self.content,
            "channel": self.channel,
            "messageType": self.message_type.value,
            "createdAt": iso_timestamp(self.created_at),
        }


@dataclass
class NoteRecord:
    note_id: str
    author_id: str
    title: str
    content: str
    phase: Phase = Phase.GENERAL
    tags: List[str] = field(default_factory=list)
    is_completed: bool = False
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())
    author: Optional[UserRecord] = None

    def as_dict(self) -> dict:
        return {
            "id": self.note_id,
            "authorId": self.author_id,
            "author": self.author.public() if self.author else None,
            "title": self.title,
            "content": self.content,
            "phase": self.phase.value,
            "tags": list(self.tags),
            "isCompleted": self.is_completed,
            "createdAt": iso_timestamp(self.created_at),
            "updatedAt": iso_timestamp(self.updated_at),
        }


class DbClient(Protocol):
    """Interface for database access."""

    def add_user(self, user: UserRecord) -> UserRecord:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_name(self, name: str) -> Optional[UserRecord]:
        ...

    def list_users(self) -> list[UserRecord]:
        ...

    def count_users(self) -> int:
        ...

    def create_note(
        self,
        author_id: str,
        title: str,
        content: str,
        phase: Phase = Phase.GENERAL,
        tags: Optional[list[str]] = None,
    ) -> NoteRecord:
        ...

    def get_note(self, note_id: str) -> Optional[NoteRecord]:
        ...

    def list_notes(self) -> list[NoteRecord]:
        ...

    def update_note(self, note_id: str, **changes) -> Optional[NoteRecord]:
        ...

    def delete_note(self, note_id: str) -> bool:
        ...

    def clear_notes(self) -> int:
        ...

    def append_message(
        self,
        sender_id: str,
        channel: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> MessageRecord:
        ...

    def list_messages(self, channel: str) -> list[MessageRecord]:
        ...

    def count_messages(self, channel: Optional[str] = None) -> int:
        ...

    def clear_messages(self, channel: Optional[str] = None) -> int:
        ...


NOTE_FIELDS = ("title", "content", "phase", "tags", "is_completed")


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.notes: Dict[str, NoteRecord] = {}
        self.messages: List[MessageRecord] = []
        self._clock = MonotonicClock()
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.users.clear()
            self.notes.clear()
            self.messages.clear()

    def add_user(self, user: UserRecord) -> UserRecord:
        with self._lock:
            self.users[user.user_id] = user
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def get_user_by_name(self, name: str) -> Optional[UserRecord]:
        for user in self.users.values():
            if user.name == name:
                return user
        return None

    def list_users(self) -> list[UserRecord]:
        return sorted(self.users.values(), key=lambda u: u.created_at)

    def count_users(self) -> int:
        return len(self.users)

    def _with_author(self, note: NoteRecord) -> NoteRecord:
        return replace(
            note, tags=list(note.tags), author=self.users.get(note.author_id)
        )

    def create_note(
        self,
        author_id: str,
        title: str,
        content: str,
        phase: Phase = Phase.GENERAL,
        tags: Optional[list[str]] = None,
    ) -> NoteRecord:
        now = self._clock.now()
        note = NoteRecord(
            note_id=uuid.uuid4().hex,
            author_id=author_id,
            title=title,
            content=content,
            phase=phase,
            tags=list(tags or []),
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self.notes[note.note_id] = note
        return self._with_author(note)

    def get_note(self, note_id: str) -> Optional[NoteRecord]:
        note = self.notes.get(note_id)
        return self._with_author(note) if note else None

    def list_notes(self) -> list[NoteRecord]:
        notes = sorted(self.notes.values(), key=lambda n: n.created_at, reverse=True)
        return [self._with_author(note) for note in notes]

    def update_note(self, note_id: str, **changes) -> Optional[NoteRecord]:
        with self._lock:
            note = self.notes.get(note_id)
            if not note:
                return None
            for key in NOTE_FIELDS:
                if changes.get(key) is not None:
                    setattr(note, key, changes[key])
            note.phase = Phase(note.phase)
            note.tags = list(note.tags)
            note.updated_at = self._clock.now()
        return self._with_author(note)

    def delete_note(self, note_id: str) -> bool:
        with self._lock:
            return self.notes.pop(note_id, None) is not None

    def clear_notes(self) -> int:
        with self._lock:
            removed = len(self.notes)
            self.notes.clear()
            return removed

    def append_message(
        self,
        sender_id: str,
        channel: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> MessageRecord:
        with self._lock:
            record = MessageRecord(
                message_id=uuid.uuid4().hex,
                sender_id=sender_id,
                content=content,
                channel=channel,
                message_type=message_type,
                created_at=self._clock.now(),
            )
            self.messages.append(record)
            return replace(record, sender=self.users.get(sender_id))

    def list_messages(self, channel: str) -> list[MessageRecord]:
        with self._lock:
            return [
                replace(m, sender=self.users.get(m.sender_id))
                for m in self.messages
                if m.channel == channel
            ]

    def count_messages(self, channel: Optional[str] = None) -> int:
        if channel is None:
            return len(self.messages)
        return sum(1 for m in self.messages if m.channel == channel)

    def clear_messages(self, channel: Optional[str] = None) -> int:
        with self._lock:
            before = len(self.messages)
            if channel is None:
                self.messages.clear()
            else:
                self.messages = [m for m in self.messages if m.channel != channel]
            return before - len(self.messages)


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    SQLAlchemy failures surface as StorageError.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        engine_kwargs = {"future": True, "pool_pre_ping": True}
        if not database_url.startswith("sqlite"):
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)
        # Serializes id/timestamp assignment with the insert that uses them.
        self._write_lock = threading.Lock()
        self._clock = MonotonicClock(floor=self._latest_message_time())

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

    def _latest_message_time(self) -> float:
        with self._session() as session:
            latest = session.execute(select(func.max(MessageRow.created_at))).scalar()
            return latest or 0.0

    def _to_user_record(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            user_id=row.user_id,
            name=row.name,
            role=Role(row.role),
            email=row.email,
            password_hash=row.password_hash,
            is_active=row.is_active,
            created_at=row.created_at,
        )

    def _to_note_record(
        self, row: "NoteRow", author: Optional["UserRow"]
    ) -> NoteRecord:
        return NoteRecord(
            note_id=row.note_id,
            author_id=row.author_id,
            title=row.title,
            content=row.content,
            phase=Phase(row.phase),
            tags=list(row.tags or []),
            is_completed=row.is_completed,
            created_at=row.created_at,
            updated_at=row.updated_at,
            author=self._to_user_record(author) if author else None,
        )

    def _to_message_record(
        self, row: "MessageRow", sender: Optional["UserRow"]
    ) -> MessageRecord:
        return MessageRecord(
            message_id=row.message_id,
            sender_id=row.sender_id,
            content=row.content,
            channel=row.channel,
            message_type=MessageType(row.message_type),
            created_at=row.created_at,
            sender=self._to_user_record(sender) if sender else None,
        )

    def add_user(self, user: UserRecord) -> UserRecord:
        with self._session() as session:
            row = session.get(UserRow, user.user_id)
            if row is None:
                row = UserRow(user_id=user.user_id)
                session.add(row)
            row.name = user.name
            row.role = user.role.value
            row.email = user.email
            row.password_hash = user.password_hash
            row.is_active = user.is_active
            row.created_at = user.created_at
            session.commit()
            return self._to_user_record(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user_record(row) if row else None

    def get_user_by_name(self, name: str) -> Optional[UserRecord]:
        with self._session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.name == name).limit(1)
            ).scalar_one_or_none()
            return self._to_user_record(row) if row else None

    def list_users(self) -> list[UserRecord]:
        with self._session() as session:
            rows = session.execute(
                select(UserRow).order_by(UserRow.created_at.asc())
            ).scalars()
            return [self._to_user_record(row) for row in rows]

    def count_users(self) -> int:
        with self._session() as session:
            return session.execute(select(func.count(UserRow.user_id))).scalar() or 0

    def create_note(
        self,
        author_id: str,
        title: str,
        content: str,
        phase: Phase = Phase.GENERAL,
        tags: Optional[list[str]] = None,
    ) -> NoteRecord:
        now = self._clock.now()
        with self._session() as session:
            row = NoteRow(
                note_id=uuid.uuid4().hex,
                author_id=author_id,
                title=title,
                content=content,
                phase=phase.value,
                tags=list(tags or []),
                is_completed=False,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            return self._to_note_record(row, session.get(UserRow, author_id))

    def get_note(self, note_id: str) -> Optional[NoteRecord]:
        with self._session() as session:
            row = session.get(NoteRow, note_id)
            if not row:
                return None
            return self._to_note_record(row, session.get(UserRow, row.author_id))

    def list_notes(self) -> list[NoteRecord]:
        with self._session() as session:
            stmt = (
                select(NoteRow, UserRow)
                .outerjoin(UserRow, UserRow.user_id == NoteRow.author_id)
                .order_by(NoteRow.created_at.desc())
            )
            return [
                self._to_note_record(note, author)
                for note, author in session.execute(stmt).all()
            ]

    def update_note(self, note_id: str, **changes) -> Optional[NoteRecord]:
        with self._session() as session:
            row = session.get(NoteRow, note_id)
            if not row:
                return None
            if changes.get("title") is not None:
                row.title = changes["title"]
            if changes.get("content") is not None:
                row.content = changes["content"]
            if changes.get("phase") is not None:
                row.phase = Phase(changes["phase"]).value
            if changes.get("tags") is not None:
                row.tags = list(changes["tags"])
            if changes.get("is_completed") is not None:
                row.is_completed = changes["is_completed"]
            row.updated_at = self._clock.now()
            session.commit()
            return self._to_note_record(row, session.get(UserRow, row.author_id))

    def delete_note(self, note_id: str) -> bool:
        with self._session() as session:
            result = session.execute(delete(NoteRow).where(NoteRow.note_id == note_id))
            session.commit()
            return bool(result.rowcount)

    def clear_notes(self) -> int:
        with self._session() as session:
            result = session.execute(delete(NoteRow))
            session.commit()
            return result.rowcount or 0

    def append_message(
        self,
        sender_id: str,
        channel: str,
        content: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> MessageRecord:
        with self._write_lock, self._session() as session:
            row = MessageRow(
                message_id=uuid.uuid4().hex,
                sender_id=sender_id,
                content=content,
                channel=channel,
                message_type=message_type.value,
                created_at=self._clock.now(),
            )
            session.add(row)
            session.commit()
            return self._to_message_record(row, session.get(UserRow, sender_id))

    def list_messages(self, channel: str) -> list[MessageRecord]:
        with self._session() as session:
            stmt = (
                select(MessageRow, UserRow)
                .outerjoin(UserRow, UserRow.user_id == MessageRow.sender_id)
                .where(MessageRow.channel == channel)
                .order_by(MessageRow.created_at.asc())
            )
            return [
                self._to_message_record(message, sender)
                for message, sender in session.execute(stmt).all()
            ]

    def count_messages(self, channel: Optional[str] = None) -> int:
        with self._session() as session:
            stmt = select(func.count(MessageRow.message_id))
            if channel is not None:
                stmt = stmt.where(MessageRow.channel == channel)
            return session.execute(stmt).scalar() or 0

    def clear_messages(self, channel: Optional[str] = None) -> int:
        with self._write_lock, self._session() as session:
            stmt = delete(MessageRow)
            if channel is not None:
                stmt = stmt.where(MessageRow.channel == channel)
            result = session.execute(stmt)
            session.commit()
            return result.rowcount or 0


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    user_id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True)
    role = Column(String, nullable=False, default=Role.IMAGING.value)
    email = Column(String, nullable=True)
    password_hash = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)


class NoteRow(Base):
    __tablename__ = "notes"

    note_id = Column(String, primary_key=True)
    author_id = Column(String, ForeignKey("users.user_id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    phase = Column(String, nullable=False, default=Phase.GENERAL.value)
    tags = Column(JSON, nullable=False, default=list)
    is_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)


class MessageRow(Base):
    __tablename__ = "chat_messages"

    message_id = Column(String, primary_key=True)
    sender_id = Column(String, ForeignKey("users.user_id"), nullable=False)
    content = Column(Text, nullable=False)
    channel = Column(String, nullable=False, index=True)
    message_type = Column(String, nullable=False, default=MessageType.TEXT.value)
    created_at = Column(Float, nullable=False, index=True)
