import logging
import math
from datetime import datetime
from typing import Dict, List, Sequence

from sqlalchemy.orm import sessionmaker

from db import MusicPreference, session_scope, find_user, get_or_create_user
from errors import ValidationError
from models import MoodCategory, Preference, PreferenceIn

logger = logging.getLogger(__name__)


def _to_preference(row: MusicPreference, user_id: str) -> Preference:
    return Preference(
        id=row.id,
        user_id=user_id,
        genre=row.genre,
        artist=row.artist,
        mood_category=MoodCategory(row.mood_category),
        energy_level=row.energy_level,
        weight=row.preference_weight,
    )


def _to_row(user_pk: int, pref: PreferenceIn) -> MusicPreference:
    return MusicPreference(
        user_id=user_pk,
        genre=pref.genre.strip().lower(),
        artist=pref.artist,
        mood_category=pref.mood_category.value,
        energy_level=pref.energy_level,
        preference_weight=pref.weight,
    )


def _coerce(preference) -> PreferenceIn:
    if isinstance(preference, PreferenceIn):
        return preference
    try:
        return PreferenceIn.model_validate(preference)
    except ValueError as e:
        raise ValidationError(f"Invalid preference: {e}") from e


class PreferenceStore:
    """Per-user (genre, mood) preference weights. Every mutation is one transaction."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def save(self, user_id: str, preferences: Sequence) -> None:
        """Replace the user's whole preference set. An empty list clears it."""
        if not user_id:
            raise ValidationError("user_id is required")
        validated = [_coerce(p) for p in preferences]

        with session_scope(self.session_factory) as session:
            user = get_or_create_user(session, user_id)
            session.query(MusicPreference).filter(MusicPreference.user_id == user.id).delete(
                synchronize_session=False
            )
            session.add_all([_to_row(user.id, p) for p in validated])
        logger.info(f"Saved {len(validated)} preferences for user {user_id}")

    def get(self, user_id: str) -> List[Preference]:
        with session_scope(self.session_factory) as session:
            user = find_user(session, user_id)
            if not user:
                return []
            rows = (
                session.query(MusicPreference)
                .filter(MusicPreference.user_id == user.id)
                .order_by(MusicPreference.preference_weight.desc(), MusicPreference.id.asc())
                .all()
            )
            return [_to_preference(row, user_id) for row in rows]

    def apply_feedback(self, user_id: str, genre_feedback: Dict[str, float]) -> int:
        """
        Scale the weight of every preference in each named genre by its multiplier.

        Genres the user has no preference for are skipped, and a genre named twice
        (ignoring case) is rejected. Weights never drop below zero. Returns the
        number of rows updated.
        """
        multipliers = {}
        for genre, multiplier in genre_feedback.items():
            if isinstance(multiplier, bool) or not isinstance(multiplier, (int, float)) or not math.isfinite(multiplier):
                raise ValidationError(f"Feedback multiplier for {genre!r} must be a finite number")
            key = genre.strip().lower()
            if key in multipliers:
                raise ValidationError(f"Genre {key!r} appears more than once in feedback")
            multipliers[key] = float(multiplier)
        if not multipliers:
            return 0

        updated = 0
        with session_scope(self.session_factory) as session:
            user = find_user(session, user_id)
            if not user:
                return 0
            rows = (
                session.query(MusicPreference)
                .filter(MusicPreference.user_id == user.id, MusicPreference.genre.in_(list(multipliers)))
                .with_for_update()
                .all()
            )
            now = datetime.utcnow()
            for row in rows:
                row.preference_weight = max(0.0, row.preference_weight * multipliers[row.genre])
                row.updated_at = now
                updated += 1
        return updated

    def add(self, user_id: str, preference) -> int:
        if not user_id:
            raise ValidationError("user_id is required")
        pref = _coerce(preference)
        with session_scope(self.session_factory) as session:
            user = get_or_create_user(session, user_id)
            row = _to_row(user.id, pref)
            session.add(row)
            session.flush()
            return row.id

    def remove(self, user_id: str, preference_id: int) -> None:
        """Delete one preference; silently does nothing if it is not this user's."""
        with session_scope(self.session_factory) as session:
            user = find_user(session, user_id)
            if not user:
                return
            session.query(MusicPreference).filter(
                MusicPreference.id == preference_id,
                MusicPreference.user_id == user.id,
            ).delete(synchronize_session=False)
