import html
import logging
import os
from typing import List, Optional

import requests
from dotenv import load_dotenv

from errors import ProviderAuthError, ProviderRequestError
from gateway import DEFAULT_TIMEOUT_SECONDS, MusicProvider
from models import MOOD_VIDEO_QUERIES, MoodCategory, QuerySpec, Track
from processing import FeatureEstimator

load_dotenv()
YOUTUBE_API_KEY = os.getenv("YOUTUBE_API_KEY")
YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
MUSIC_CATEGORY_ID = "10"

logger = logging.getLogger(__name__)


def build_video_query(category: MoodCategory, genre: Optional[str] = None) -> str:
    query = MOOD_VIDEO_QUERIES.get(category, "music")
    if genre and genre != "unknown":
        query += f" {genre}"
    return query


class YouTubeProvider(MusicProvider):
    """Music-category video search. YouTube has no audio features, so energy and valence are always estimated."""
    name = "youtube"
    auth_error_statuses = (401, 403)

    def __init__(
        self,
        api_key: Optional[str] = YOUTUBE_API_KEY,
        http: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        estimator: Optional[FeatureEstimator] = None,
    ):
        super().__init__(http=http, timeout=timeout)
        self.api_key = api_key
        self.estimator = estimator or FeatureEstimator()

    def search(self, spec: QuerySpec, count: int) -> List[Track]:
        if count <= 0:
            return []
        if not self.api_key:
            raise ProviderAuthError(self.name, "YOUTUBE_API_KEY not configured")

        query = build_video_query(spec.mood_category, spec.primary_genre)
        params = {
            "part": "snippet",
            "maxResults": min(count, 50),
            "q": query,
            "type": "video",
            "videoCategoryId": MUSIC_CATEGORY_ID,
            "key": self.api_key,
        }
        data = self._get_json(YOUTUBE_SEARCH_URL, params=params)

        tracks = []
        try:
            for item in data.get("items", []):
                video_id = (item.get("id") or {}).get("videoId")
                if not video_id:
                    continue
                snippet = item.get("snippet") or {}
                tracks.append(Track(
                    title=html.unescape(snippet.get("title") or "Untitled"),
                    artist=html.unescape(snippet.get("channelTitle") or "Unknown artist"),
                    genre=spec.primary_genre,
                    mood_tags=[spec.mood_category.value],
                    energy_level=self.estimator.energy_for_mood(spec.mood_category),
                    valence=self.estimator.valence_for_mood(spec.mood_category),
                    youtube_id=video_id,
                    preview_url=f"https://www.youtube.com/watch?v={video_id}",
                ))
        except (AttributeError, TypeError) as e:
            raise ProviderRequestError(self.name, f"Unexpected search payload for query '{query}': {e}") from e

        logger.info(f"YouTube returned {len(tracks)} videos for query '{query}'")
        return tracks[:count]
