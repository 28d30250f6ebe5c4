import json
import logging
from typing import List, Optional, Sequence

import redis
import requests

from errors import ProviderAuthError, ProviderError, ProviderRequestError
from models import QuerySpec, Track

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10


class MusicProvider:
    """
    Base class for external track sources.

    Subclasses set `name`, implement `search(spec, count)` and use
    `_get_json` for HTTP so that timeouts, rate limits and malformed bodies
    all surface as ProviderError subclasses.
    """
    name = "provider"
    auth_error_statuses = (401,)

    def __init__(self, http: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.http = http or requests.Session()
        self.timeout = timeout

    def search(self, spec: QuerySpec, count: int) -> List[Track]:
        raise NotImplementedError

    def on_unauthorized(self, headers: Optional[dict] = None) -> None:
        """Called with the request headers that were rejected as unauthorized."""
        pass

    def _get_json(self, url: str, params: Optional[dict] = None, headers: Optional[dict] = None) -> dict:
        try:
            resp = self.http.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise ProviderRequestError(self.name, f"Request to {url} timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise ProviderRequestError(self.name, f"Network error calling {url}: {e}") from e

        if resp.status_code in self.auth_error_statuses:
            self.on_unauthorized(headers)
            raise ProviderAuthError(self.name, f"Unauthorized ({resp.status_code}): {resp.text[:200]}")
        if resp.status_code == 429:
            retry_after = resp.headers.get("Retry-After", "?")
            raise ProviderRequestError(self.name, f"Rate limited, retry after {retry_after}s")
        if resp.status_code != 200:
            raise ProviderRequestError(self.name, f"HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderRequestError(self.name, f"Malformed JSON from {url}") from e


class ExternalSourceGateway:
    """
    Uniform front for the configured providers, asked in order until `count`
    tracks are collected. A failing provider is logged and skipped, never raised.
    """

    def __init__(
        self,
        providers: Sequence[MusicProvider],
        redis_client: Optional[redis.Redis] = None,
        redis_ttl: int = 3600,
    ):
        self.providers = list(providers)
        self.redis_client = redis_client
        self.redis_ttl = redis_ttl

    def search(self, spec: QuerySpec, count: int) -> List[Track]:
        results: List[Track] = []
        for provider in self.providers:
            remaining = count - len(results)
            if remaining <= 0:
                break
            try:
                tracks = self._search_provider(provider, spec, remaining)
            except ProviderError as e:
                logger.error(
                    f"Provider '{provider.name}' failed for mood={spec.mood_category.value} "
                    f"genre={spec.primary_genre} energy={spec.energy_level}: {e}"
                )
                continue
            except Exception as e:
                logger.exception(
                    f"Provider '{provider.name}' raised unexpectedly for mood={spec.mood_category.value} "
                    f"genre={spec.primary_genre} energy={spec.energy_level}: {e}"
                )
                continue
            results.extend(tracks[:remaining])
        return results

    def _cache_key(self, provider: MusicProvider, spec: QuerySpec, count: int) -> str:
        return (
            f"tracks:{provider.name}:{spec.mood_category.value}:"
            f"{spec.primary_genre or '-'}:{spec.energy_level or '-'}:{count}"
        )

    def _search_provider(self, provider: MusicProvider, spec: QuerySpec, count: int) -> List[Track]:
        cache_key = self._cache_key(provider, spec, count)
        if self.redis_client:
            try:
                val = self.redis_client.get(cache_key)
                if val:
                    return [Track.model_validate(item) for item in json.loads(val)]
            except Exception as e:
                logger.warning(f"Redis get failed: {e}")

        tracks = provider.search(spec, count)

        if self.redis_client and tracks:
            try:
                payload = json.dumps([t.model_dump(mode="json") for t in tracks])
                self.redis_client.setex(cache_key, self.redis_ttl, payload)
            except Exception as e:
                logger.warning(f"Redis set failed: {e}")
        return tracks
