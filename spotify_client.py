# ==============================================================================
# SPOTIFY PROVIDER
# ==============================================================================
# Client-credentials token lifecycle, mood-driven track search and audio
# feature enrichment. The bearer token lives on the provider instance behind
# a lock, so several independently configured providers can coexist and
# concurrent requests never refresh the same token twice.
# ------------------------------------------------------------------------------

# --- Imports ---
import base64
import logging
import os
import random
import threading
import time
from typing import Callable, List, Optional, Sequence

import requests
from dotenv import load_dotenv

from errors import ProviderAuthError, ProviderError, ProviderRequestError
from gateway import DEFAULT_TIMEOUT_SECONDS, MusicProvider
from models import MOOD_SEARCH_KEYWORDS, MoodCategory, QuerySpec, Track, clamp, round_half_up
from processing import FeatureEstimator

# --- Initial Setup ---
load_dotenv()
SPOTIFY_CLIENT_ID = os.getenv("SPOTIFY_CLIENT_ID")
SPOTIFY_CLIENT_SECRET = os.getenv("SPOTIFY_CLIENT_SECRET")
SPOTIFY_MARKET = os.getenv("SPOTIFY_MARKET", "US")
SPOTIFY_AUTH_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_URL = "https://api.spotify.com/v1"

TOKEN_SAFETY_MARGIN_SECONDS = 60
MAX_SEARCH_LIMIT = 50

logger = logging.getLogger(__name__)


def build_search_query(
    category: MoodCategory,
    genre: Optional[str] = None,
    energy_level: Optional[int] = None,
    selector: Callable[[Sequence[str]], str] = random.choice,
) -> str:
    """One mood keyword, then an optional genre qualifier and an energy term at the extremes."""
    query_parts = []
    keywords = MOOD_SEARCH_KEYWORDS.get(category, ())
    if keywords:
        query_parts.append(selector(keywords))
    if genre and genre != "unknown":
        query_parts.append(f"genre:{genre}")
    if energy_level is not None:
        if energy_level >= 8:
            query_parts.append("high energy")
        elif energy_level <= 3:
            query_parts.append("low energy")
    return " ".join(query_parts)


class SpotifyProvider(MusicProvider):
    name = "spotify"

    def __init__(
        self,
        client_id: Optional[str] = SPOTIFY_CLIENT_ID,
        client_secret: Optional[str] = SPOTIFY_CLIENT_SECRET,
        http: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        market: str = SPOTIFY_MARKET,
        estimator: Optional[FeatureEstimator] = None,
        keyword_selector: Callable[[Sequence[str]], str] = random.choice,
        clock: Callable[[], float] = time.time,
        safety_margin: float = TOKEN_SAFETY_MARGIN_SECONDS,
    ):
        super().__init__(http=http, timeout=timeout)
        self.client_id = client_id
        self.client_secret = client_secret
        self.market = market
        self.estimator = estimator or FeatureEstimator()
        self.keyword_selector = keyword_selector
        self.clock = clock
        self.safety_margin = safety_margin

        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._token_lock = threading.Lock()

    # --- Token lifecycle ---

    def get_token(self) -> str:
        """
        Return the cached bearer token, refreshing it once it is within the
        safety margin of expiry. Check and refresh run under one lock, so
        callers arriving during a refresh wait for it instead of starting another.
        """
        with self._token_lock:
            if self._token and self.clock() < self._expires_at - self.safety_margin:
                return self._token
            token, expires_in = self._request_token()
            self._token = token
            self._expires_at = self.clock() + expires_in
            logger.info(f"Refreshed Spotify token (expires in {expires_in}s)")
            return token

    def on_unauthorized(self, headers: Optional[dict] = None) -> None:
        """Drop the cached token, unless another caller already replaced the rejected one."""
        rejected = (headers or {}).get("Authorization", "").split("Bearer ", 1)[-1]
        with self._token_lock:
            if self._token is not None and self._token != rejected:
                return
            self._token = None
            self._expires_at = 0.0

    def _request_token(self):
        if not self.client_id or not self.client_secret:
            raise ProviderAuthError(self.name, "SPOTIFY_CLIENT_ID or SPOTIFY_CLIENT_SECRET not configured")

        auth_header = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        try:
            response = self.http.post(
                SPOTIFY_AUTH_URL,
                headers={"Authorization": f"Basic {auth_header}"},
                data={"grant_type": "client_credentials"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise ProviderAuthError(self.name, f"Network error during token exchange: {e}") from e

        if response.status_code != 200:
            raise ProviderAuthError(
                self.name, f"Token exchange failed ({response.status_code}): {response.text[:200]}"
            )
        try:
            payload = response.json()
            return payload["access_token"], int(payload.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderAuthError(self.name, "Malformed token response") from e

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.get_token()}"}

    # --- Search ---

    def search(self, spec: QuerySpec, count: int) -> List[Track]:
        if count <= 0:
            return []
        query = build_search_query(spec.mood_category, spec.primary_genre, spec.energy_level, self.keyword_selector)
        params = {"q": query, "type": "track", "limit": min(count, MAX_SEARCH_LIMIT), "market": self.market}
        data = self._get_json(f"{SPOTIFY_API_URL}/search", params=params, headers=self._auth_headers())

        try:
            items = data["tracks"]["items"]
            tracks = [self._normalize(item, spec) for item in items if item and item.get("id")]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderRequestError(self.name, f"Unexpected search payload for query '{query}': {e}") from e

        logger.info(f"Spotify returned {len(tracks)} tracks for query '{query}'")
        return self._with_audio_features(tracks)[:count]

    def _normalize(self, item: dict, spec: QuerySpec) -> Track:
        duration_ms = item.get("duration_ms")
        artists = ", ".join(a["name"] for a in item.get("artists") or [] if a.get("name"))
        return Track(
            title=item["name"],
            artist=artists or "Unknown artist",
            album=(item.get("album") or {}).get("name"),
            genre=spec.primary_genre,
            duration_seconds=round_half_up(duration_ms / 1000) if duration_ms else None,
            mood_tags=[spec.mood_category.value],
            energy_level=self.estimator.energy_from_metadata(item.get("tempo"), item.get("popularity")),
            valence=self.estimator.valence_for_mood(spec.mood_category),
            spotify_id=item["id"],
            preview_url=item.get("preview_url"),
        )

    def _with_audio_features(self, tracks: List[Track]) -> List[Track]:
        """Swap estimated energy/valence for Spotify's own values; keep estimates if the call fails."""
        if not tracks:
            return tracks
        ids = ",".join(t.spotify_id for t in tracks)
        try:
            data = self._get_json(f"{SPOTIFY_API_URL}/audio-features", params={"ids": ids}, headers=self._auth_headers())
            features_by_id = {f["id"]: f for f in data.get("audio_features") or [] if f and f.get("id")}
        except ProviderError as e:
            logger.warning(f"Audio features unavailable, keeping estimated values: {e}")
            return tracks
        except (AttributeError, KeyError, TypeError) as e:
            logger.warning(f"Malformed audio features payload, keeping estimated values: {e}")
            return tracks

        enriched = []
        for track in tracks:
            features = features_by_id.get(track.spotify_id)
            if not features:
                enriched.append(track)
                continue
            update = {}
            try:
                if features.get("energy") is not None:
                    update["energy_level"] = clamp(round_half_up(float(features["energy"]) * 10), 1, 10)
                if features.get("valence") is not None:
                    update["valence"] = clamp(float(features["valence"]), 0.0, 1.0)
            except (TypeError, ValueError) as e:
                logger.warning(f"Bad audio features for {track.spotify_id}, keeping estimated values: {e}")
                update = {}
            enriched.append(track.model_copy(update=update))
        return enriched
