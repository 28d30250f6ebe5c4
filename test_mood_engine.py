import pytest

from errors import ValidationError
from models import BehaviorSignals, MoodCategory
from mood_engine import DEFAULT_ESTIMATE, MoodInferenceEngine, infer_from_signals


@pytest.fixture
def engine(session_factory, clock):
    return MoodInferenceEngine(session_factory, clock=clock)


def log_sequence(engine, clock, user_id, entries, hours_apart=1):
    """Log (score, category) pairs oldest first, spaced out in time."""
    for score, category in entries:
        engine.log_mood(user_id, score, category)
        clock.advance(hours=hours_apart)


def test_no_history_returns_neutral_prior(engine):
    estimate = engine.estimate("nobody")
    assert estimate == DEFAULT_ESTIMATE
    assert estimate.category == MoodCategory.CALM
    assert estimate.score == 5
    assert estimate.confidence == 0.3
    assert estimate.energy_level == 5


def test_consistent_sad_week(engine):
    for score in [2, 3, 2, 4, 3]:
        engine.log_mood("u1", score, "sad")

    estimate = engine.estimate("u1")
    assert estimate.category == MoodCategory.SAD
    assert estimate.score == 3
    # consistency 1.0, recency (5+4+3+2+1)/5/5 = 0.6
    assert estimate.confidence == pytest.approx(0.88)
    assert estimate.confidence <= 0.95
    # base 3 + (2.8 - 5) * 0.5 = 1.9
    assert estimate.energy_level == 2


def test_modal_tie_goes_to_most_recent_category(engine, clock):
    log_sequence(engine, clock, "u1", [(5, "happy"), (5, "sad"), (5, "happy"), (5, "sad")])
    assert engine.estimate("u1").category == MoodCategory.SAD

    log_sequence(engine, clock, "u2", [(5, "sad"), (5, "happy"), (5, "sad"), (5, "happy")])
    assert engine.estimate("u2").category == MoodCategory.HAPPY


def test_confidence_floor_for_scattered_old_history(engine, clock):
    for category in ["happy", "sad", "angry", "calm", "romantic"]:
        engine.log_mood("u1", 5, category)
    clock.advance(days=6, hours=23)

    estimate = engine.estimate("u1")
    assert estimate.confidence == 0.3


def test_confidence_stays_within_bounds(engine, clock):
    for i in range(12):
        engine.log_mood("u1", 1 + i % 10, ["happy", "sad", "calm"][i % 3])
        clock.advance(hours=9)

    estimate = engine.estimate("u1")
    assert 0.3 <= estimate.confidence <= 0.95


def test_window_drops_old_observations(engine, clock):
    engine.log_mood("u1", 9, "happy")
    clock.advance(days=8)
    assert engine.estimate("u1") == DEFAULT_ESTIMATE
    assert engine.estimate("u1", window_days=10).category == MoodCategory.HAPPY


def test_score_rounds_half_up_and_energy_clamps(engine):
    engine.log_mood("u1", 10, "energetic")
    engine.log_mood("u1", 9, "energetic")

    estimate = engine.estimate("u1")
    assert estimate.score == 10
    assert estimate.energy_level == 10


@pytest.mark.parametrize("score, category", [(0, "happy"), (11, "happy"), (5, "bored")])
def test_log_mood_rejects_bad_input(engine, score, category):
    with pytest.raises(ValidationError):
        engine.log_mood("u1", score, category)
    assert engine.observations("u1") == []


@pytest.mark.parametrize("signals, expected", [
    (BehaviorSignals(time_of_day=8), (MoodCategory.ENERGETIC, 6, 7)),
    (BehaviorSignals(time_of_day=14), (MoodCategory.MOTIVATED, 7, 6)),
    (BehaviorSignals(time_of_day=20), (MoodCategory.CALM, 6, 4)),
    (BehaviorSignals(time_of_day=20, app_usage_minutes=150), (MoodCategory.ANXIOUS, 5, 4)),
    (BehaviorSignals(time_of_day=2), (MoodCategory.PEACEFUL, 4, 3)),
    (BehaviorSignals(time_of_day=2, app_usage_minutes=90), (MoodCategory.ANXIOUS, 4, 3)),
    (BehaviorSignals(time_of_day=14, listening_history=["rock", "Melancholy"]), (MoodCategory.SAD, 5, 4)),
    (BehaviorSignals(time_of_day=8, listening_history=["dance"]), (MoodCategory.HAPPY, 7, 9)),
])
def test_signal_rule_table(signals, expected):
    estimate = infer_from_signals(signals, hour=12)
    assert (estimate.category, estimate.score, estimate.energy_level) == expected
    assert estimate.confidence == 0.6


def test_only_last_five_listening_keywords_count():
    signals = BehaviorSignals(time_of_day=14, listening_history=["sad", "rock", "pop", "jazz", "folk", "metal"])
    assert infer_from_signals(signals, hour=12).category == MoodCategory.MOTIVATED


def test_signal_detection_uses_clock_hour_when_missing(engine, clock):
    # fixture clock sits at 12:00
    assert engine.estimate_from_signals("u1", BehaviorSignals()).category == MoodCategory.MOTIVATED


def test_signal_detection_is_logged_as_automatic(engine):
    detected = engine.estimate_from_signals("u1", BehaviorSignals(time_of_day=8))

    observations = engine.observations("u1")
    assert len(observations) == 1
    assert observations[0].automatic is True
    assert observations[0].category == detected.category
    assert "60% confidence" in observations[0].notes
    assert engine.estimate("u1").category == MoodCategory.ENERGETIC


def test_statistics(engine, clock):
    assert engine.statistics("u1")["total_logs"] == 0

    log_sequence(engine, clock, "u1", [(3, "sad"), (3, "sad"), (8, "happy"), (8, "happy")])
    stats = engine.statistics("u1")
    assert stats["average_mood"] == 5.5
    assert stats["mood_trend"] == "improving"
    assert stats["mood_distribution"] == {"sad": 2, "happy": 2}
    assert stats["dominant_mood"] == "happy"
    assert stats["total_logs"] == 4
