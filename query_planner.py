from typing import Optional, Sequence

from errors import ValidationError
from models import (
    MOOD_SYNONYMS,
    MoodEstimate,
    Preference,
    QuerySpec,
    check_level,
    parse_category,
)

PERSONALIZED_LIMIT = 20
GENERIC_LIMIT = 15
ENERGY_SPREAD = 2
HIGH_ENERGY_THRESHOLD = 6


def energy_band(energy_level: Optional[int]):
    if energy_level is None:
        return None
    return (max(1, energy_level - ENERGY_SPREAD), min(10, energy_level + ENERGY_SPREAD))


def rank_order(energy_level: Optional[int]):
    """Valence first; energy follows the direction of the requested energy."""
    direction = "desc" if energy_level is not None and energy_level > HIGH_ENERGY_THRESHOLD else "asc"
    return (("valence", "desc"), ("energy_level", direction))


class QueryPlanner:
    """Builds a QuerySpec from a mood and the user's stored preferences."""

    def plan(
        self,
        estimate: MoodEstimate,
        preferences: Sequence[Preference] = (),
        limit: Optional[int] = None,
        genre: Optional[str] = None,
    ) -> QuerySpec:
        return self.plan_for_category(
            estimate.category, preferences, energy_level=estimate.energy_level, limit=limit, genre=genre
        )

    def plan_for_category(
        self,
        category,
        preferences: Sequence[Preference] = (),
        energy_level: Optional[int] = None,
        limit: Optional[int] = None,
        genre: Optional[str] = None,
    ) -> QuerySpec:
        category = parse_category(category)
        if energy_level is not None:
            check_level(energy_level, "energy_level")

        if genre:
            genres = (genre.strip().lower(),)
        else:
            matching = sorted(
                (p for p in preferences if p.mood_category == category),
                key=lambda p: p.weight,
                reverse=True,
            )
            genres = tuple(dict.fromkeys(p.genre for p in matching))

        if limit is None:
            limit = PERSONALIZED_LIMIT if genres else GENERIC_LIMIT
        elif limit < 1:
            raise ValidationError(f"limit must be at least 1, got {limit}")

        return QuerySpec(
            mood_category=category,
            synonyms=MOOD_SYNONYMS.get(category, ()),
            genres=genres,
            energy_level=energy_level,
            energy_band=energy_band(energy_level),
            limit=limit,
            rank_order=rank_order(energy_level),
        )
