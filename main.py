import os
import logging
from typing import List, Optional, Dict
from dotenv import load_dotenv
from fastapi import FastAPI, Query, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy.orm import sessionmaker
import redis

from database import get_session_factory
from db import init_db
from errors import StorageError, ValidationError
from gateway import ExternalSourceGateway, DEFAULT_TIMEOUT_SECONDS
from models import BehaviorSignals, MoodCategory, MoodEstimate, Preference, PreferenceIn, Track
from mood_engine import MoodInferenceEngine
from preferences import PreferenceStore
from recommender import RecommendationService
from resolver import RecommendationResolver
from spotify_client import SpotifyProvider, SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET
from track_cache import TrackCache
from youtube_client import YouTubeProvider, YOUTUBE_API_KEY

# Load environment variables
load_dotenv()

# Initialize FastAPI app
app = FastAPI(
    title="Mood Music API",
    description="Infers a user's mood from their mood log and recommends tracks from the local catalog, "
                "topped up from Spotify and YouTube when the catalog runs short.",
    version="2.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Environment variables
REDIS_URL = os.getenv("REDIS_URL")
REDIS_TTL_SECONDS = int(os.getenv("REDIS_TTL_SECONDS", "3600"))
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))

# Optional Redis client
redis_client: Optional[redis.Redis] = None
if REDIS_URL:
    try:
        redis_client = redis.from_url(REDIS_URL, decode_responses=True)
        redis_client.ping()
        logger.info("Connected to Redis successfully.")
    except Exception as e:
        logger.error(f"Failed to initialize Redis: {e}")
        redis_client = None


def build_gateway() -> ExternalSourceGateway:
    providers = []
    if SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET:
        providers.append(SpotifyProvider(timeout=PROVIDER_TIMEOUT_SECONDS))
    else:
        logger.warning("Spotify credentials not found. Set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET.")
    if YOUTUBE_API_KEY:
        providers.append(YouTubeProvider(timeout=PROVIDER_TIMEOUT_SECONDS))
    else:
        logger.warning("YouTube API key not found. Please set YOUTUBE_API_KEY environment variable.")
    return ExternalSourceGateway(providers, redis_client=redis_client, redis_ttl=REDIS_TTL_SECONDS)


# One gateway per process: it owns the provider tokens.
external_gateway = build_gateway()


# Pydantic models
class MoodLogRequest(BaseModel):
    user_id: str = Field(min_length=1)
    mood_score: int = Field(ge=1, le=10)
    mood_category: MoodCategory
    activity: Optional[str] = None
    notes: Optional[str] = None

class MoodLogResponse(BaseModel):
    log_id: int

class MoodStatistics(BaseModel):
    average_mood: float
    mood_trend: str
    dominant_mood: str
    mood_distribution: Dict[str, int]
    total_logs: int

class AutoDetectRequest(BaseModel):
    user_id: str = Field(min_length=1)
    behavior: BehaviorSignals = Field(default_factory=BehaviorSignals)
    limit: Optional[int] = Field(default=None, ge=1, le=50)

class AutoDetectResponse(MoodEstimate):
    tracks: List[Track]

class RecommendationRequest(BaseModel):
    user_id: str = Field(min_length=1)
    mood_category: Optional[MoodCategory] = None
    energy_level: Optional[int] = Field(default=None, ge=1, le=10)
    genre_preference: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1, le=50)

class RecommendationResponse(BaseModel):
    tracks: List[Track]
    mood: Optional[MoodCategory] = None
    confidence: Optional[float] = None

class CuratedResponse(BaseModel):
    tracks: List[Track]
    mood: MoodCategory

class PreferencesRequest(BaseModel):
    user_id: str = Field(min_length=1)
    preferences: List[PreferenceIn]

class PreferencesResponse(BaseModel):
    preferences: List[Preference]

class PreferenceAddResponse(BaseModel):
    preference_id: int

class FeedbackRequest(BaseModel):
    genre_feedback: Dict[str, float]


@app.on_event("startup")
def on_startup() -> None:
    init_db()


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Storage failure, please retry later."})


# --- DEPENDENCY INJECTION ---
def get_gateway() -> ExternalSourceGateway:
    return external_gateway

def get_mood_engine(factory: sessionmaker = Depends(get_session_factory)) -> MoodInferenceEngine:
    return MoodInferenceEngine(factory)

def get_preference_store(factory: sessionmaker = Depends(get_session_factory)) -> PreferenceStore:
    return PreferenceStore(factory)

def get_recommendation_service(
    factory: sessionmaker = Depends(get_session_factory),
    mood_engine: MoodInferenceEngine = Depends(get_mood_engine),
    preference_store: PreferenceStore = Depends(get_preference_store),
    gateway: ExternalSourceGateway = Depends(get_gateway),
) -> RecommendationService:
    resolver = RecommendationResolver(TrackCache(factory), gateway)
    return RecommendationService(mood_engine, preference_store, resolver)


# --- API ENDPOINTS ---
# Handlers are plain `def`: FastAPI runs them in its thread pool, so blocking
# database and provider I/O only holds up the request that made it.
@app.get("/health", summary="Health check")
def health_check():
    return {"status": "healthy"}

@app.post("/mood/log", response_model=MoodLogResponse, summary="Log a mood manually")
def log_mood(request: MoodLogRequest, mood_engine: MoodInferenceEngine = Depends(get_mood_engine)):
    log_id = mood_engine.log_mood(
        request.user_id, request.mood_score, request.mood_category, request.activity, request.notes
    )
    return MoodLogResponse(log_id=log_id)

@app.get("/mood/estimate", response_model=MoodEstimate, summary="Estimate the current mood from recent logs")
def estimate_mood(
    user_id: str = Query(..., min_length=1),
    window_days: float = Query(7, gt=0, le=365),
    mood_engine: MoodInferenceEngine = Depends(get_mood_engine),
):
    return mood_engine.estimate(user_id, window_days)

@app.get("/mood/statistics", response_model=MoodStatistics, summary="Mood statistics over a period")
def mood_statistics(
    user_id: str = Query(..., min_length=1),
    days: float = Query(30, gt=0, le=365),
    mood_engine: MoodInferenceEngine = Depends(get_mood_engine),
):
    return mood_engine.statistics(user_id, days)

@app.post("/mood/auto-detect", response_model=AutoDetectResponse, summary="Detect mood from behaviour and suggest tracks")
def auto_detect_mood(request: AutoDetectRequest, service: RecommendationService = Depends(get_recommendation_service)):
    result = service.auto_detect(request.user_id, request.behavior, limit=request.limit)
    return AutoDetectResponse(**result.estimate.model_dump(), tracks=result.tracks)

@app.post("/recommendations", response_model=RecommendationResponse, summary="Tracks for a stated or inferred mood",
          description="Uses the given mood if present, otherwise infers it from the user's mood log. "
                      "Never fails because an external provider is down; it returns fewer tracks instead.")
def get_recommendations(request: RecommendationRequest, service: RecommendationService = Depends(get_recommendation_service)):
    result = service.recommend(
        request.user_id,
        mood_category=request.mood_category,
        energy_level=request.energy_level,
        genre=request.genre_preference,
        limit=request.limit,
    )
    return RecommendationResponse(tracks=result.tracks, mood=result.mood, confidence=result.confidence)

@app.get("/curated/{mood}", response_model=CuratedResponse, summary="Non-personalised tracks for a mood")
def curated_tracks(
    mood: MoodCategory,
    genre: Optional[str] = Query(None),
    energy_level: Optional[int] = Query(None, ge=1, le=10),
    limit: int = Query(20, ge=1, le=50),
    service: RecommendationService = Depends(get_recommendation_service),
):
    tracks = service.curated(mood, genre=genre, energy_level=energy_level, limit=limit)
    return CuratedResponse(tracks=tracks, mood=mood)

@app.post("/preferences", response_model=PreferencesResponse, summary="Replace a user's preferences")
def save_preferences(request: PreferencesRequest, store: PreferenceStore = Depends(get_preference_store)):
    store.save(request.user_id, request.preferences)
    return PreferencesResponse(preferences=store.get(request.user_id))

@app.get("/preferences", response_model=PreferencesResponse, summary="Get a user's preferences")
def get_preferences(user_id: str = Query(..., min_length=1), store: PreferenceStore = Depends(get_preference_store)):
    return PreferencesResponse(preferences=store.get(user_id))

@app.post("/preferences/{user_id}/items", response_model=PreferenceAddResponse, summary="Add one preference")
def add_preference(user_id: str, preference: PreferenceIn, store: PreferenceStore = Depends(get_preference_store)):
    return PreferenceAddResponse(preference_id=store.add(user_id, preference))

@app.put("/preferences/{user_id}/feedback", response_model=PreferencesResponse, summary="Scale genre weights from feedback")
def apply_feedback(user_id: str, request: FeedbackRequest, store: PreferenceStore = Depends(get_preference_store)):
    store.apply_feedback(user_id, request.genre_feedback)
    return PreferencesResponse(preferences=store.get(user_id))

@app.delete("/preferences/{user_id}/{preference_id}", summary="Remove one preference")
def remove_preference(user_id: str, preference_id: int, store: PreferenceStore = Depends(get_preference_store)):
    store.remove(user_id, preference_id)
    return {"success": True}
