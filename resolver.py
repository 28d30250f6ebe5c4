import logging
from typing import List

from gateway import ExternalSourceGateway
from models import QuerySpec, Track
from processing import deduplicate
from track_cache import TrackCache

logger = logging.getLogger(__name__)

# Most tracks ever read from the local catalog for one request.
LOCAL_LOOKUP_CAP = 10


class RecommendationResolver:
    """
    Local catalog first, external providers only for the shortfall.

    Catalog errors propagate (the catalog is the source of truth); gateway
    errors are logged and the request degrades to whatever the catalog had.
    """

    def __init__(self, cache: TrackCache, gateway: ExternalSourceGateway):
        self.cache = cache
        self.gateway = gateway

    def resolve(self, spec: QuerySpec) -> List[Track]:
        limit = spec.limit
        local = self.cache.find(spec, min(limit, LOCAL_LOOKUP_CAP))
        if len(local) >= limit:
            return local[:limit]

        remaining = limit - len(local)
        try:
            fetched = self.gateway.search(spec, remaining)
        except Exception as e:
            logger.error(
                f"External search failed for mood={spec.mood_category.value} "
                f"genres={list(spec.genres)}; serving {len(local)} local tracks: {e}"
            )
            return local

        fresh = deduplicate(fetched, existing=local)[:remaining]
        if fresh:
            fresh = self.cache.insert_if_absent(fresh)

        logger.info(
            f"Resolved {len(local)} local + {len(fresh)} external tracks for mood={spec.mood_category.value}"
        )
        return (local + fresh)[:limit]
