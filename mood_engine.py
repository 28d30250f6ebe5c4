# ==============================================================================
# MOOD INFERENCE
# ==============================================================================
# Derives a MoodEstimate (category, score, confidence, energy level) from the
# user's recent mood log, or from raw behavioural signals through a fixed
# rule table. The rule table is a placeholder policy, not a learned model:
# the same signals always produce the same mood.
# ------------------------------------------------------------------------------

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

import numpy as np
from sqlalchemy.orm import sessionmaker

from db import MoodLog, session_scope, find_user, get_or_create_user
from errors import ValidationError
from models import (
    BASE_ENERGY,
    BehaviorSignals,
    MoodCategory,
    MoodEstimate,
    MoodObservation,
    check_level,
    clamp,
    parse_category,
    round_half_up,
)

logger = logging.getLogger(__name__)

DEFAULT_ESTIMATE = MoodEstimate(category=MoodCategory.CALM, score=5, confidence=0.3, energy_level=5)

CONFIDENCE_FLOOR = 0.3
CONFIDENCE_CEILING = 0.95
CONFIDENCE_SAMPLE = 5
RECENCY_HORIZON_DAYS = 7.0
SIGNAL_CONFIDENCE = 0.6
HEAVY_USAGE_MINUTES = 120

SAD_KEYWORDS = {"sad", "melancholy"}
HAPPY_KEYWORDS = {"upbeat", "dance"}


def modal_category(observations: Sequence[MoodObservation]) -> MoodCategory:
    """
    Most frequent category among observations ordered newest first.

    Ties go to the category whose most recent observation is newest, i.e.
    the first category reaching the top count when scanning by recency.
    """
    counts = Counter(obs.category for obs in observations)
    top = max(counts.values())
    for obs in observations:
        if counts[obs.category] == top:
            return obs.category
    raise ValueError("no observations")


def confidence_for(observations: Sequence[MoodObservation], category: MoodCategory, now: datetime) -> float:
    """Blend of consistency and recency over the most recent observations, clamped."""
    if not observations:
        return CONFIDENCE_FLOOR
    recent = list(observations[:CONFIDENCE_SAMPLE])
    n = len(recent)

    consistency = sum(1 for obs in recent if obs.category == category) / n

    recency = 0.0
    for index, obs in enumerate(recent):
        age_days = (now - obs.timestamp).total_seconds() / 86400
        weight = max(0.0, 1 - age_days / RECENCY_HORIZON_DAYS)
        recency += weight * (n - index) / n
    recency /= n

    return clamp(consistency * 0.7 + recency * 0.3, CONFIDENCE_FLOOR, CONFIDENCE_CEILING)


def energy_for(category: MoodCategory, score: float) -> int:
    base = BASE_ENERGY.get(category, 5)
    return clamp(round_half_up(base + (score - 5) * 0.5), 1, 10)


def summarize(observations: Sequence[MoodObservation], now: datetime) -> MoodEstimate:
    """Turn a newest-first observation window into a MoodEstimate."""
    if not observations:
        return DEFAULT_ESTIMATE

    mean_score = float(np.mean([obs.score for obs in observations]))
    category = modal_category(observations)
    return MoodEstimate(
        category=category,
        score=clamp(round_half_up(mean_score), 1, 10),
        confidence=confidence_for(observations, category, now),
        energy_level=energy_for(category, mean_score),
    )


def infer_from_signals(signals: BehaviorSignals, hour: int) -> MoodEstimate:
    """
    Rule-table mood detection from behaviour.

    Time of day picks the starting mood, heavy app usage nudges a good mood
    down, and the last five listening-history keywords can override the
    category entirely. `hour` is used when the signals carry no time of day.
    """
    time_of_day = signals.time_of_day if signals.time_of_day is not None else hour

    if 6 <= time_of_day <= 10:
        category, energy, score = MoodCategory.ENERGETIC, 7, 6
    elif 11 <= time_of_day <= 17:
        category, energy, score = MoodCategory.MOTIVATED, 6, 7
    elif 18 <= time_of_day <= 22:
        category, energy, score = MoodCategory.CALM, 4, 6
    elif signals.app_usage_minutes > 60:
        # Late and still on the phone.
        category, energy, score = MoodCategory.ANXIOUS, 3, 4
    else:
        category, energy, score = MoodCategory.PEACEFUL, 3, 4

    if signals.app_usage_minutes > HEAVY_USAGE_MINUTES and score > 5:
        score -= 1
        if category in (MoodCategory.CALM, MoodCategory.PEACEFUL):
            category = MoodCategory.ANXIOUS

    recent = {keyword.strip().lower() for keyword in signals.listening_history[-5:]}
    if recent & SAD_KEYWORDS:
        category = MoodCategory.SAD
        score = max(1, score - 2)
        energy = max(1, energy - 2)
    elif recent & HAPPY_KEYWORDS:
        category = MoodCategory.HAPPY
        score = min(10, score + 1)
        energy = min(10, energy + 2)

    return MoodEstimate(category=category, score=score, confidence=SIGNAL_CONFIDENCE, energy_level=energy)


def _to_observation(row: MoodLog, user_id: str) -> MoodObservation:
    return MoodObservation(
        id=row.id,
        user_id=user_id,
        score=row.mood_score,
        category=MoodCategory(row.mood_category),
        activity=row.activity,
        notes=row.notes,
        automatic=row.detected_automatically,
        timestamp=row.timestamp,
    )


class MoodInferenceEngine:
    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = datetime.utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def log_mood(
        self,
        user_id: str,
        score: int,
        category,
        activity: Optional[str] = None,
        notes: Optional[str] = None,
        automatic: bool = False,
    ) -> int:
        if not user_id:
            raise ValidationError("user_id is required")
        check_level(score, "mood_score")
        category = parse_category(category)

        with session_scope(self.session_factory) as session:
            user = get_or_create_user(session, user_id)
            row = MoodLog(
                user_id=user.id,
                mood_score=score,
                mood_category=category.value,
                activity=activity,
                notes=notes,
                detected_automatically=automatic,
                timestamp=self.clock(),
            )
            session.add(row)
            session.flush()
            return row.id

    def observations(self, user_id: str, window_days: float = 7) -> List[MoodObservation]:
        """Observations inside the window, newest first."""
        if window_days <= 0:
            raise ValidationError(f"window_days must be positive, got {window_days}")
        since = self.clock() - timedelta(days=window_days)
        with session_scope(self.session_factory) as session:
            user = find_user(session, user_id)
            if not user:
                return []
            rows = (
                session.query(MoodLog)
                .filter(MoodLog.user_id == user.id, MoodLog.timestamp >= since)
                .order_by(MoodLog.timestamp.desc(), MoodLog.id.desc())
                .all()
            )
            return [_to_observation(row, user_id) for row in rows]

    def estimate(self, user_id: str, window_days: float = 7) -> MoodEstimate:
        return summarize(self.observations(user_id, window_days), self.clock())

    def estimate_from_signals(self, user_id: str, signals: BehaviorSignals) -> MoodEstimate:
        """Detect a mood from behaviour and record it as an automatic observation."""
        estimate = infer_from_signals(signals, self.clock().hour)
        self.log_mood(
            user_id,
            estimate.score,
            estimate.category,
            notes=f"Auto-detected with {round_half_up(estimate.confidence * 100)}% confidence",
            automatic=True,
        )
        logger.info(f"Auto-detected mood '{estimate.category.value}' for user {user_id}")
        return estimate

    def statistics(self, user_id: str, days: float = 30) -> dict:
        observations = self.observations(user_id, days)
        if not observations:
            return {
                "average_mood": 5,
                "mood_trend": "stable",
                "dominant_mood": MoodCategory.CALM.value,
                "mood_distribution": {},
                "total_logs": 0,
            }

        scores = np.array([obs.score for obs in observations], dtype=float)
        distribution = Counter(obs.category.value for obs in observations)

        # Newest first: the leading half is the recent period.
        trend = "stable"
        midpoint = len(scores) // 2
        if midpoint > 0:
            recent_avg = scores[:midpoint].mean()
            older_avg = scores[midpoint:].mean()
            if recent_avg - older_avg > 0.5:
                trend = "improving"
            elif older_avg - recent_avg > 0.5:
                trend = "declining"

        return {
            "average_mood": round(float(scores.mean()), 1),
            "mood_trend": trend,
            "dominant_mood": modal_category(observations).value,
            "mood_distribution": dict(distribution),
            "total_logs": len(observations),
        }
