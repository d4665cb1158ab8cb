"""
calmplan - FastAPI Backend
HTTP surface for day planning and mood estimation
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional, List, Dict, Any

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .agents import PlanningEngine, get_planning_engine, to_calendar_event
from .ai_client import close_decision_client
from .config import get_config_summary, get_engine_config
from .exceptions import InputError
from .logger import setup_logger
from .models import IntensityResult, MoodEstimate, PlanRequest, PlanResult, Sentiment
from .mood import estimate_mood

logger = logging.getLogger(__name__)


class MoodRequest(BaseModel):
    today: IntensityResult
    yesterday: Optional[IntensityResult] = None
    sentiment: Optional[Sentiment] = None


class HealthStatus(BaseModel):
    status: str
    version: str
    config: Dict[str, Any]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logger()
    logger.info(f"calmplan {__version__} started")
    yield
    await close_decision_client()
    logger.info("calmplan shutting down")


app = FastAPI(
    title="calmplan",
    description="Wellness activity planner that fits breaks into a busy calendar",
    version=__version__,
    lifespan=lifespan
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError):
    logger.warning(f"Rejected request to {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ============================================
# HEALTH & STATUS
# ============================================

@app.get("/health", response_model=HealthStatus)
@app.get("/api/health", response_model=HealthStatus)
async def health_check():
    """Report status and the active configuration."""
    return HealthStatus(
        status="healthy",
        version=__version__,
        config=get_config_summary(),
    )


# ============================================
# PLANNING
# ============================================

@app.post("/api/plan", response_model=PlanResult)
async def plan_day(request: PlanRequest, engine: PlanningEngine = Depends(get_planning_engine)):
    """Plan wellness activities into the free time of one day."""
    return await engine.plan_day(request)


@app.post("/api/plan/events", response_model=List[dict])
async def plan_day_events(request: PlanRequest, engine: PlanningEngine = Depends(get_planning_engine)):
    """Plan a day and return calendar create-event payloads."""
    result = await engine.plan_day(request)
    return [to_calendar_event(activity) for activity in result.activities]


# ============================================
# MOOD
# ============================================

@app.post("/api/mood", response_model=MoodEstimate)
async def mood_estimate(request: MoodRequest):
    """Estimate mood, energy and stress from schedule intensity."""
    return estimate_mood(
        request.today,
        request.yesterday,
        request.sentiment,
        get_engine_config().thresholds,
    )


# ============================================
# RUN SERVER
# ============================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
