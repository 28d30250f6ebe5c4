# ==============================================================================
# TRACK NORMALIZATION & DEDUPLICATION
# ==============================================================================
# Helpers that turn raw provider payloads into comparable tracks: the
# fallback feature estimator used when a provider has no audio features, and
# the near-duplicate filter that keeps "Song (Official Video)" from showing
# up next to "Song" in the same recommendation list.
# ------------------------------------------------------------------------------

# --- Imports ---
import re
from typing import List, Sequence

from sklearn.feature_extraction.text import TfidfVectorizer
from sklearn.metrics.pairwise import cosine_similarity

from models import MOOD_TRACK_ENERGY, MOOD_VALENCE, MoodCategory, Track, clamp, round_half_up

# Titles at or above this cosine similarity (same artist) count as the same song.
DUPLICATE_SIMILARITY = 0.9


def clean_song_name(song_name: str) -> str:
    """Strip bracketed suffixes and video boilerplate from a track title."""
    cleaned_name = re.sub(r'[\(\[].*?[\)\]]', '', song_name)
    keywords_to_remove = [
        'official music video', 'official video', 'lyric video',
        'lyrics', 'audio', 'hd', 'full', 'video', 'music'
    ]
    for keyword in keywords_to_remove:
        cleaned_name = re.sub(r'\b' + re.escape(keyword) + r'\b', '', cleaned_name, flags=re.IGNORECASE)
    if ' - ' in cleaned_name:
        cleaned_name = cleaned_name.split(' - ')[-1]
    return re.sub(r'\s+', ' ', cleaned_name).strip()


def track_key(track: Track) -> str:
    title = clean_song_name(track.title) or track.title
    return f"{title.lower()}|{track.artist.lower().strip()}"


class FeatureEstimator:
    """
    Fallback energy/valence for provider tracks without audio features.

    These are rough proxies, not ground truth: any provider-native value
    (e.g. Spotify audio features) replaces them.
    """

    def energy_from_metadata(self, tempo=None, popularity=None) -> int:
        tempo = tempo or 120
        popularity = popularity or 50
        tempo_score = clamp((tempo - 60) / 20, 1, 10)
        popularity_score = clamp(popularity / 10, 1, 10)
        return clamp(round_half_up((tempo_score + popularity_score) / 2), 1, 10)

    def energy_for_mood(self, category: MoodCategory) -> int:
        return MOOD_TRACK_ENERGY.get(category, 5)

    def valence_for_mood(self, category: MoodCategory) -> float:
        return MOOD_VALENCE.get(category, 0.5)


def deduplicate(candidates: Sequence[Track], existing: Sequence[Track] = ()) -> List[Track]:
    """
    Drop candidates already present in `existing` or earlier in `candidates`.

    A candidate is a duplicate when it shares a provider id or a cleaned
    title/artist key with a kept track, or when its cleaned title is nearly
    identical (character n-gram TF-IDF cosine) to a kept track by the same artist.
    """
    kept: List[Track] = []
    seen_ids = {t.provider_key for t in existing if t.provider_key}
    seen_keys = {track_key(t) for t in existing}

    unique = []
    for track in candidates:
        key = track_key(track)
        if (track.provider_key and track.provider_key in seen_ids) or key in seen_keys:
            continue
        unique.append(track)
        seen_keys.add(key)
        if track.provider_key:
            seen_ids.add(track.provider_key)

    if not unique:
        return kept

    reference = list(existing) + unique
    titles = [(clean_song_name(t.title) or t.title or "?").lower() for t in reference]
    vectorizer = TfidfVectorizer(analyzer="char_wb", ngram_range=(2, 3))
    matrix = vectorizer.fit_transform(titles)
    sims = cosine_similarity(matrix)

    accepted = list(range(len(existing)))
    for offset, track in enumerate(unique):
        i = len(existing) + offset
        artist = track.artist.lower().strip()
        if any(
            sims[i, j] >= DUPLICATE_SIMILARITY and reference[j].artist.lower().strip() == artist
            for j in accepted
        ):
            continue
        accepted.append(i)
        kept.append(track)
    return kept
