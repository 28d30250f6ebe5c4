from __future__ import annotations
import os
import logging
from datetime import datetime
from typing import Optional, Iterator
from contextlib import contextmanager
from dotenv import load_dotenv
from sqlalchemy import (
    create_engine, String, Integer, Float, Boolean, DateTime, ForeignKey, Text, CheckConstraint, Index,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from errors import StorageError

load_dotenv()
logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./mood_music.db")


def make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        # In-memory databases must share one connection across threads.
        if url in ("sqlite://", "sqlite:///:memory:"):
            return create_engine(url, echo=False, future=True, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(url, echo=False, future=True, connect_args=connect_args)
    return create_engine(url, echo=False, future=True)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


engine = make_engine(DATABASE_URL)
SessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    mood_logs: Mapped[list[MoodLog]] = relationship("MoodLog", back_populates="user", cascade="all, delete-orphan")
    preferences: Mapped[list[MusicPreference]] = relationship(
        "MusicPreference", back_populates="user", cascade="all, delete-orphan"
    )


class MoodLog(Base):
    __tablename__ = "mood_logs"
    __table_args__ = (
        CheckConstraint("mood_score >= 1 AND mood_score <= 10", name="ck_mood_score"),
        Index("ix_mood_logs_user_time", "user_id", "timestamp"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    mood_score: Mapped[int] = mapped_column(Integer)
    mood_category: Mapped[str] = mapped_column(String(50))
    activity: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    detected_automatically: Mapped[bool] = mapped_column(Boolean, default=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    user: Mapped[User] = relationship("User", back_populates="mood_logs")


class MusicPreference(Base):
    __tablename__ = "music_preferences"
    __table_args__ = (
        CheckConstraint("energy_level >= 1 AND energy_level <= 10", name="ck_pref_energy"),
        CheckConstraint("preference_weight >= 0", name="ck_pref_weight"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    genre: Mapped[str] = mapped_column(String(100), index=True)
    artist: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    mood_category: Mapped[str] = mapped_column(String(50))
    energy_level: Mapped[int] = mapped_column(Integer)
    preference_weight: Mapped[float] = mapped_column(Float, default=1.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    user: Mapped[User] = relationship("User", back_populates="preferences")


class MusicTrack(Base):
    __tablename__ = "music_tracks"
    __table_args__ = (
        CheckConstraint("energy_level >= 1 AND energy_level <= 10", name="ck_track_energy"),
        CheckConstraint("valence >= 0 AND valence <= 1", name="ck_track_valence"),
    )
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(512))
    artist: Mapped[str] = mapped_column(String(512))
    album: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    genre: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # JSON array of lowercase tags, e.g. '["calm", "chill"]'
    mood_tags: Mapped[str] = mapped_column(Text, default="[]")
    energy_level: Mapped[int] = mapped_column(Integer, default=5, index=True)
    valence: Mapped[float] = mapped_column(Float, default=0.5)
    spotify_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    youtube_id: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    preview_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


def init_db(bind: Optional[Engine] = None) -> None:
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """One transaction: commit on success, roll back and raise StorageError on database failure."""
    session = factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Database error: {e}")
        raise StorageError(str(e)) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def find_user(session: Session, user_id: str) -> Optional[User]:
    return session.query(User).filter_by(user_id=user_id).one_or_none()


def get_or_create_user(session: Session, user_id: str) -> User:
    user = find_user(session, user_id)
    if not user:
        user = User(user_id=user_id)
        session.add(user)
        session.flush()
    return user


def delete_user(factory: sessionmaker, user_id: str) -> bool:
    """Delete a user together with their mood logs and preferences."""
    with session_scope(factory) as session:
        user = find_user(session, user_id)
        if not user:
            return False
        session.delete(user)
        return True
