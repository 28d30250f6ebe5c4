import pytest

from errors import ValidationError
from models import MoodCategory, MoodEstimate, Preference
from query_planner import QueryPlanner


def stored(genre, mood, weight, pref_id=1):
    return Preference(id=pref_id, user_id="u1", genre=genre, mood_category=mood, energy_level=5, weight=weight)


@pytest.fixture
def planner():
    return QueryPlanner()


def test_synonyms_come_from_static_table(planner):
    spec = planner.plan_for_category("calm")
    assert spec.synonyms == ("peaceful", "relaxed", "serene", "tranquil")
    assert spec.mood_terms[0] == "calm"


def test_cold_start_matches_any_genre(planner):
    prefs = [stored("metal", MoodCategory.ANGRY, 3.0)]
    spec = planner.plan(MoodEstimate(category="calm", score=5, confidence=0.5, energy_level=4), prefs)
    assert spec.genre_filter == frozenset()
    assert spec.limit == 15


def test_preferences_for_the_mood_become_the_genre_filter(planner):
    prefs = [
        stored("jazz", MoodCategory.CALM, 0.5, 1),
        stored("metal", MoodCategory.ANGRY, 9.0, 2),
        stored("lofi", MoodCategory.CALM, 2.0, 3),
        stored("lofi", MoodCategory.CALM, 1.0, 4),
    ]
    spec = planner.plan(MoodEstimate(category="calm", score=5, confidence=0.5, energy_level=4), prefs)
    assert spec.genres == ("lofi", "jazz")
    assert spec.genre_filter == {"lofi", "jazz"}
    assert spec.primary_genre == "lofi"
    assert spec.limit == 20


def test_explicit_genre_overrides_preferences(planner):
    prefs = [stored("jazz", MoodCategory.CALM, 1.0)]
    spec = planner.plan_for_category("calm", prefs, genre="Ambient")
    assert spec.genres == ("ambient",)


@pytest.mark.parametrize("energy, band", [(1, (1, 3)), (5, (3, 7)), (10, (8, 10))])
def test_energy_band(planner, energy, band):
    assert planner.plan_for_category("happy", energy_level=energy).energy_band == band


def test_no_energy_means_unrestricted(planner):
    spec = planner.plan_for_category("happy")
    assert spec.energy_band is None
    assert spec.rank_order == (("valence", "desc"), ("energy_level", "asc"))


@pytest.mark.parametrize("energy, direction", [(7, "desc"), (6, "asc"), (2, "asc")])
def test_rank_order_follows_energy_direction(planner, energy, direction):
    spec = planner.plan_for_category("energetic", energy_level=energy)
    assert spec.rank_order == (("valence", "desc"), ("energy_level", direction))


def test_explicit_limit_wins(planner):
    assert planner.plan_for_category("sad", limit=5).limit == 5


@pytest.mark.parametrize("kwargs", [{"energy_level": 0}, {"energy_level": 11}, {"limit": 0}])
def test_rejects_bad_input(planner, kwargs):
    with pytest.raises(ValidationError):
        planner.plan_for_category("sad", **kwargs)


def test_rejects_unknown_category(planner):
    with pytest.raises(ValidationError):
        planner.plan_for_category("bored")
