"""
calmplan - Planning State Definitions
Shared state type for the LangGraph planning pipeline
"""

import asyncio
import random
from datetime import datetime
from typing import TypedDict, Optional, List, Callable

from ..ai_client import DecisionServiceClient
from ..config import EngineConfig
from ..models import (
    ActivityCandidate, DecisionResult, IntensityResult, MoodEstimate, PlanRequest,
    RunRecord, Strategy, StrategyContext, TimeInterval, ValidatedActivity, Window,
)


class PlanningState(TypedDict, total=False):
    """
    Planning Pipeline State.

    Request-scoped: one state per plan_day call, never shared.
    """
    # Input
    request: PlanRequest
    engine_config: EngineConfig
    client: Optional[DecisionServiceClient]
    cancel_event: Optional[asyncio.Event]
    rng: random.Random
    sink: Optional[Callable[[RunRecord], None]]

    # Day analysis
    active_start: datetime
    active_end: datetime
    merged: List[TimeInterval]
    windows: List[Window]
    intensity: IntensityResult
    mood: MoodEstimate
    context: StrategyContext

    # Stage results
    strategy_result: DecisionResult[Strategy]
    generation_result: DecisionResult[List[ActivityCandidate]]

    # Validation
    activities: List[ValidatedActivity]
    rejected_count: int

    # Output
    reasoning: str
    record: RunRecord


def create_planning_state(
    request: PlanRequest,
    engine_config: EngineConfig,
    client: Optional[DecisionServiceClient] = None,
    cancel_event: Optional[asyncio.Event] = None,
    sink: Optional[Callable[[RunRecord], None]] = None,
) -> PlanningState:
    """Create initial state for a planning run."""
    seed = request.seed if request.seed is not None else engine_config.random_seed
    return PlanningState(
        request=request,
        engine_config=engine_config,
        client=client,
        cancel_event=cancel_event,
        rng=random.Random(seed),
        sink=sink,
        activities=[],
        rejected_count=0,
        reasoning="",
    )
