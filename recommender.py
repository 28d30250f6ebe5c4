import logging
from typing import List, Optional

from pydantic import BaseModel

from models import BehaviorSignals, MoodCategory, MoodEstimate, Track
from mood_engine import MoodInferenceEngine
from preferences import PreferenceStore
from query_planner import QueryPlanner
from resolver import RecommendationResolver

logger = logging.getLogger(__name__)


class RecommendationResult(BaseModel):
    tracks: List[Track]
    mood: Optional[MoodCategory] = None
    confidence: Optional[float] = None
    estimate: Optional[MoodEstimate] = None


class RecommendationService:
    """Request-level flow: mood inference, then planning, then resolution."""

    def __init__(
        self,
        mood_engine: MoodInferenceEngine,
        preferences: PreferenceStore,
        resolver: RecommendationResolver,
        planner: Optional[QueryPlanner] = None,
    ):
        self.mood_engine = mood_engine
        self.preferences = preferences
        self.resolver = resolver
        self.planner = planner or QueryPlanner()

    def recommend(
        self,
        user_id: str,
        mood_category=None,
        energy_level: Optional[int] = None,
        genre: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> RecommendationResult:
        """
        Tracks for the user's stated mood, or for the mood inferred from their
        history when none is given. Confidence is only reported for inferred moods.
        """
        prefs = self.preferences.get(user_id)
        if mood_category is not None:
            spec = self.planner.plan_for_category(
                mood_category, prefs, energy_level=energy_level, limit=limit, genre=genre
            )
            return RecommendationResult(tracks=self.resolver.resolve(spec), mood=spec.mood_category)

        estimate = self.mood_engine.estimate(user_id)
        if energy_level is not None:
            estimate = estimate.model_copy(update={"energy_level": energy_level})
        spec = self.planner.plan(estimate, prefs, limit=limit, genre=genre)
        return RecommendationResult(
            tracks=self.resolver.resolve(spec),
            mood=estimate.category,
            confidence=estimate.confidence,
            estimate=estimate,
        )

    def curated(
        self,
        mood_category,
        genre: Optional[str] = None,
        energy_level: Optional[int] = None,
        limit: int = 20,
    ) -> List[Track]:
        """Non-personalised tracks for a mood."""
        spec = self.planner.plan_for_category(mood_category, (), energy_level=energy_level, limit=limit, genre=genre)
        return self.resolver.resolve(spec)

    def auto_detect(self, user_id: str, signals: BehaviorSignals, limit: Optional[int] = None) -> RecommendationResult:
        estimate = self.mood_engine.estimate_from_signals(user_id, signals)
        spec = self.planner.plan(estimate, self.preferences.get(user_id), limit=limit)
        return RecommendationResult(
            tracks=self.resolver.resolve(spec),
            mood=estimate.category,
            confidence=estimate.confidence,
            estimate=estimate,
        )
