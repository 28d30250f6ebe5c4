# ==============================================================================
# LOCAL TRACK CATALOG
# ==============================================================================
# The `music_tracks` table doubles as a cache for everything the external
# providers have ever returned. Reads answer a QuerySpec with ranked matches;
# writes are idempotent on the provider id (Spotify or YouTube), so a track
# fetched twice, even by two concurrent requests, ends up as a single row.
# ------------------------------------------------------------------------------

import json
import logging
from typing import List, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker

from db import MusicTrack, session_scope
from models import QuerySpec, Track

logger = logging.getLogger(__name__)

RANK_COLUMNS = {
    "valence": MusicTrack.valence,
    "energy_level": MusicTrack.energy_level,
}


def _normalize_tags(tags: Sequence[str]) -> List[str]:
    seen = []
    for tag in tags:
        tag = tag.strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def _to_track(row: MusicTrack) -> Track:
    return Track(
        id=row.id,
        title=row.title,
        artist=row.artist,
        album=row.album,
        genre=row.genre,
        duration_seconds=row.duration,
        mood_tags=json.loads(row.mood_tags or "[]"),
        energy_level=row.energy_level,
        valence=row.valence,
        spotify_id=row.spotify_id,
        youtube_id=row.youtube_id,
        preview_url=row.preview_url,
    )


def _row_values(track: Track) -> dict:
    return {
        "title": track.title,
        "artist": track.artist,
        "album": track.album,
        "genre": track.genre.strip().lower() if track.genre else None,
        "duration": track.duration_seconds,
        "mood_tags": json.dumps(_normalize_tags(track.mood_tags)),
        "energy_level": track.energy_level,
        "valence": track.valence,
        "spotify_id": track.spotify_id,
        "youtube_id": track.youtube_id,
        "preview_url": track.preview_url,
    }


def _provider_column(track: Track):
    if track.spotify_id:
        return MusicTrack.spotify_id, track.spotify_id
    if track.youtube_id:
        return MusicTrack.youtube_id, track.youtube_id
    return None, None


class TrackCache:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def find(self, spec: QuerySpec, limit: Optional[int] = None) -> List[Track]:
        """Tracks tagged with the mood (or a synonym), filtered by genre and energy, ranked."""
        limit = spec.limit if limit is None else limit
        if limit <= 0:
            return []

        query = select(MusicTrack).where(
            or_(*[MusicTrack.mood_tags.like(f'%"{term}"%') for term in spec.mood_terms])
        )
        if spec.genre_filter:
            query = query.where(MusicTrack.genre.in_(sorted(spec.genre_filter)))
        if spec.energy_band:
            lo, hi = spec.energy_band
            query = query.where(MusicTrack.energy_level.between(lo, hi))

        ordering = []
        for column, direction in spec.rank_order:
            col = RANK_COLUMNS[column]
            ordering.append(col.desc() if direction == "desc" else col.asc())
        query = query.order_by(*ordering, MusicTrack.id.asc()).limit(limit)

        with session_scope(self.session_factory) as session:
            rows = session.execute(query).scalars().all()
            return [_to_track(row) for row in rows]

    def get(self, track_id: int) -> Optional[Track]:
        with session_scope(self.session_factory) as session:
            row = session.get(MusicTrack, track_id)
            return _to_track(row) if row else None

    def insert_if_absent(self, tracks: Sequence[Track]) -> List[Track]:
        """
        Persist tracks, ignoring any whose provider id is already catalogued.

        Returns the catalog version of every input track, in input order:
        the existing row for known provider ids, the new row otherwise.
        """
        stored = []
        inserted = 0
        with session_scope(self.session_factory) as session:
            for track in tracks:
                column, provider_id = _provider_column(track)
                if column is None:
                    row = MusicTrack(**_row_values(track))
                    session.add(row)
                    session.flush()
                    stored.append(_to_track(row))
                    inserted += 1
                    continue

                if self._insert_ignore(session, track, column, provider_id):
                    inserted += 1
                row = session.execute(select(MusicTrack).where(column == provider_id)).scalar_one()
                stored.append(_to_track(row))

        if inserted:
            logger.info(f"Cached {inserted} new tracks ({len(tracks) - inserted} already known)")
        return stored

    def _insert_ignore(self, session: Session, track: Track, column, provider_id: str) -> bool:
        dialect = session.get_bind().dialect.name
        values = _row_values(track)
        if dialect in ("sqlite", "postgresql"):
            insert = sqlite_insert if dialect == "sqlite" else pg_insert
            result = session.execute(insert(MusicTrack).values(**values).on_conflict_do_nothing())
            return result.rowcount == 1

        if session.execute(select(MusicTrack.id).where(column == provider_id)).first():
            return False
        session.add(MusicTrack(**values))
        session.flush()
        return True
