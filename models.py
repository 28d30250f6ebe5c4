# ==============================================================================
# DOMAIN MODELS
# ==============================================================================
# Value types that flow between the mood engine, the query planner, the
# resolver and the HTTP layer, plus the static lookup tables keyed by mood
# category. The database tables live in `db.py`; nothing here touches I/O.
# ------------------------------------------------------------------------------

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from errors import ValidationError


class MoodCategory(str, Enum):
    HAPPY = "happy"
    SAD = "sad"
    CALM = "calm"
    ENERGETIC = "energetic"
    ANXIOUS = "anxious"
    ANGRY = "angry"
    PEACEFUL = "peaceful"
    MOTIVATED = "motivated"
    NOSTALGIC = "nostalgic"
    ROMANTIC = "romantic"


# --- Lookup tables ---

MOOD_SYNONYMS: Dict[MoodCategory, Tuple[str, ...]] = {
    MoodCategory.HAPPY: ("joyful", "cheerful", "upbeat", "positive"),
    MoodCategory.SAD: ("melancholy", "sorrowful", "blue", "down"),
    MoodCategory.CALM: ("peaceful", "relaxed", "serene", "tranquil"),
    MoodCategory.ENERGETIC: ("upbeat", "dynamic", "lively", "vigorous"),
    MoodCategory.ANXIOUS: ("nervous", "worried", "stressed", "tense"),
    MoodCategory.ANGRY: ("furious", "mad", "rage", "frustrated"),
    MoodCategory.PEACEFUL: ("calm", "serene", "quiet", "still"),
    MoodCategory.MOTIVATED: ("inspired", "driven", "determined", "focused"),
    MoodCategory.NOSTALGIC: ("wistful", "reminiscent", "sentimental", "reflective"),
    MoodCategory.ROMANTIC: ("love", "tender", "passionate", "intimate"),
}

# Energy a mood sits at when the mood score is neutral (5).
BASE_ENERGY: Dict[MoodCategory, int] = {
    MoodCategory.HAPPY: 7,
    MoodCategory.SAD: 3,
    MoodCategory.CALM: 4,
    MoodCategory.ENERGETIC: 9,
    MoodCategory.ANXIOUS: 6,
    MoodCategory.ANGRY: 8,
    MoodCategory.PEACEFUL: 2,
    MoodCategory.MOTIVATED: 8,
    MoodCategory.NOSTALGIC: 4,
    MoodCategory.ROMANTIC: 5,
}

# Fallback valence for provider tracks that carry no audio features.
MOOD_VALENCE: Dict[MoodCategory, float] = {
    MoodCategory.HAPPY: 0.8,
    MoodCategory.SAD: 0.2,
    MoodCategory.CALM: 0.5,
    MoodCategory.ENERGETIC: 0.7,
    MoodCategory.ANXIOUS: 0.3,
    MoodCategory.ANGRY: 0.4,
    MoodCategory.PEACEFUL: 0.6,
    MoodCategory.MOTIVATED: 0.8,
    MoodCategory.NOSTALGIC: 0.4,
    MoodCategory.ROMANTIC: 0.6,
}

# Fallback energy for providers that expose neither tempo nor popularity.
MOOD_TRACK_ENERGY: Dict[MoodCategory, int] = {
    MoodCategory.HAPPY: 7,
    MoodCategory.SAD: 3,
    MoodCategory.CALM: 4,
    MoodCategory.ENERGETIC: 9,
    MoodCategory.ANXIOUS: 5,
    MoodCategory.ANGRY: 8,
    MoodCategory.PEACEFUL: 2,
    MoodCategory.MOTIVATED: 8,
    MoodCategory.NOSTALGIC: 5,
    MoodCategory.ROMANTIC: 5,
}

# Primary search terms sent to Spotify; one is picked per query.
MOOD_SEARCH_KEYWORDS: Dict[MoodCategory, Tuple[str, ...]] = {
    MoodCategory.HAPPY: ("happy", "upbeat", "cheerful", "joyful"),
    MoodCategory.SAD: ("sad", "melancholy", "emotional", "blue"),
    MoodCategory.CALM: ("calm", "peaceful", "relaxing", "chill"),
    MoodCategory.ENERGETIC: ("energetic", "pump up", "workout", "high energy"),
    MoodCategory.ANXIOUS: ("calming", "soothing", "anxiety relief", "peaceful"),
    MoodCategory.ANGRY: ("aggressive", "heavy", "intense", "metal"),
    MoodCategory.PEACEFUL: ("peaceful", "ambient", "meditation", "zen"),
    MoodCategory.MOTIVATED: ("motivational", "inspiring", "pump up", "confidence"),
    MoodCategory.NOSTALGIC: ("nostalgic", "throwback", "memories", "classic"),
    MoodCategory.ROMANTIC: ("romantic", "love", "intimate", "tender"),
}

MOOD_VIDEO_QUERIES: Dict[MoodCategory, str] = {
    MoodCategory.HAPPY: "happy upbeat music",
    MoodCategory.SAD: "sad emotional music",
    MoodCategory.CALM: "calm relaxing music",
    MoodCategory.ENERGETIC: "energetic workout music",
    MoodCategory.ANXIOUS: "calming anxiety relief music",
    MoodCategory.ANGRY: "aggressive intense music",
    MoodCategory.PEACEFUL: "peaceful meditation music",
    MoodCategory.MOTIVATED: "motivational inspiring music",
    MoodCategory.NOSTALGIC: "nostalgic throwback music",
    MoodCategory.ROMANTIC: "romantic love songs",
}


def parse_category(value) -> MoodCategory:
    """Coerce a raw string (or enum) into a MoodCategory, rejecting unknowns."""
    if isinstance(value, MoodCategory):
        return value
    try:
        return MoodCategory(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown mood category: {value!r}") from None


def check_level(value, name: str) -> int:
    """Validate a 1..10 integer scale (mood score or energy level)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if value < 1 or value > 10:
        raise ValidationError(f"{name} must be between 1 and 10, got {value}")
    return value


def clamp(value, lo, hi):
    return max(lo, min(hi, value))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


# --- Value types ---

class MoodObservation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    user_id: str
    score: int = Field(ge=1, le=10)
    category: MoodCategory
    activity: Optional[str] = None
    notes: Optional[str] = None
    automatic: bool = False
    timestamp: datetime


class MoodEstimate(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: MoodCategory
    score: int = Field(ge=1, le=10)
    confidence: float = Field(ge=0.0, le=1.0)
    energy_level: int = Field(ge=1, le=10)


class BehaviorSignals(BaseModel):
    """Raw behavioural input for the rule-table mood detector."""
    time_of_day: Optional[int] = Field(default=None, ge=0, le=23)
    app_usage_minutes: float = Field(default=0, ge=0)
    listening_history: List[str] = Field(default_factory=list)


class PreferenceIn(BaseModel):
    genre: str = Field(min_length=1, max_length=100)
    artist: Optional[str] = None
    mood_category: MoodCategory
    energy_level: int = Field(ge=1, le=10)
    weight: float = Field(default=1.0, ge=0)


class Preference(PreferenceIn):
    id: int
    user_id: str


class Track(BaseModel):
    id: Optional[int] = None
    title: str
    artist: str
    album: Optional[str] = None
    genre: Optional[str] = None
    duration_seconds: Optional[int] = None
    mood_tags: List[str] = Field(default_factory=list)
    energy_level: int = Field(default=5, ge=1, le=10)
    valence: float = Field(default=0.5, ge=0.0, le=1.0)
    spotify_id: Optional[str] = None
    youtube_id: Optional[str] = None
    preview_url: Optional[str] = None

    @property
    def provider_key(self) -> Optional[Tuple[str, str]]:
        if self.spotify_id:
            return ("spotify", self.spotify_id)
        if self.youtube_id:
            return ("youtube", self.youtube_id)
        return None


class QuerySpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    mood_category: MoodCategory
    synonyms: Tuple[str, ...] = ()
    # Ordered by preference weight; membership is what filters.
    genres: Tuple[str, ...] = ()
    energy_level: Optional[int] = Field(default=None, ge=1, le=10)
    energy_band: Optional[Tuple[int, int]] = None
    limit: int = Field(default=15, ge=1)
    rank_order: Tuple[Tuple[str, str], ...] = (("valence", "desc"), ("energy_level", "asc"))

    @property
    def genre_filter(self) -> frozenset:
        return frozenset(self.genres)

    @property
    def mood_terms(self) -> Tuple[str, ...]:
        """Category followed by its synonyms, deduplicated in order."""
        terms = [self.mood_category.value]
        for synonym in self.synonyms:
            if synonym not in terms:
                terms.append(synonym)
        return tuple(terms)

    @property
    def primary_genre(self) -> Optional[str]:
        return self.genres[0] if self.genres else None
