"""
calmplan - Planning Agent
LangGraph pipeline that turns a day's busy blocks into validated wellness activities
"""

import asyncio
import logging
from typing import Optional, Dict, Any, Callable

from langgraph.graph import StateGraph, END

from ..ai_client import DecisionServiceClient, get_decision_client
from ..config import EngineConfig, get_engine_config
from ..exceptions import InputError
from ..generator import generate_activities
from ..intensity import intensity_for_day
from ..intervals import ensure_valid_interval, find_windows, merge_intervals, resolve_active_bounds, total_available_minutes
from ..models import (
    DEFAULT_CATEGORY_COLORS, ActivityCategory, MoodEstimate, MoodPattern, PlanRequest,
    PlanResult, RunRecord, StrategyContext, ValidatedActivity,
)
from ..mood import estimate_mood
from ..strategy import select_strategy
from ..validator import validate_placements
from .state import PlanningState, create_planning_state

logger = logging.getLogger(__name__)


# ============================================
# NODE: Analyze Day
# ============================================

def _resolve_mood(request: PlanRequest, state: PlanningState) -> MoodEstimate:
    if request.has_mood:
        return MoodEstimate(
            mood_score=request.mood_score,
            energy_level=request.energy_level,
            stress_level=request.stress_level,
            reasoning="Reported at check-in.",
            pattern=MoodPattern.REPORTED,
        )

    estimate = estimate_mood(
        state["intensity"],
        request.yesterday,
        request.sentiment,
        state["engine_config"].thresholds,
    )

    # Partially reported values still win over the inferred ones
    overrides = {
        "mood_score": request.mood_score,
        "energy_level": request.energy_level,
        "stress_level": request.stress_level,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    return estimate.model_copy(update=overrides) if overrides else estimate


async def analyze_day(state: PlanningState) -> PlanningState:
    """
    Measure the day.

    Clamps to active hours, merges busy blocks, finds free windows and
    computes intensity and mood.
    """
    request = state["request"]
    cfg = state["engine_config"]

    active_start, active_end = resolve_active_bounds(
        request.day_start, request.day_end,
        request.wake_time, request.bed_time,
        cfg.default_wake_hour, cfg.default_bed_hour,
    )
    merged = merge_intervals(request.busy_blocks, cfg.merge_buffer_minutes)
    windows = find_windows(
        merged, active_start, active_end,
        buffer_minutes=cfg.merge_buffer_minutes,
        min_window_minutes=cfg.min_window_minutes,
        energy_windows=request.energy_windows,
    )
    intensity = intensity_for_day(
        request.busy_blocks, request.day_start, request.day_end,
        request.wake_time, request.bed_time,
        cfg.thresholds, cfg.default_active_minutes,
    )

    state = {
        **state,
        "active_start": active_start,
        "active_end": active_end,
        "merged": merged,
        "windows": windows,
        "intensity": intensity,
    }
    mood = _resolve_mood(request, state)

    context = StrategyContext(
        tier=intensity.tier,
        ratio=intensity.ratio,
        band=intensity.band,
        mood_score=mood.mood_score,
        energy_level=mood.energy_level,
        stress_level=mood.stress_level,
        total_available_minutes=total_available_minutes(windows),
        window_count=len(windows),
        user_context=request.user_context,
    )

    return {
        **state,
        "mood": mood,
        "context": context,
    }


# ============================================
# NODE: Choose Strategy
# ============================================

async def choose_strategy(state: PlanningState) -> PlanningState:
    """Stage 1: decision service, or the rule table."""
    client = state.get("client")
    result = await select_strategy(
        state["context"],
        client=client,
        rng=state["rng"],
        config=client.config if client is not None else None,
        cancel_event=state.get("cancel_event"),
    )

    return {
        **state,
        "strategy_result": result,
    }


# ============================================
# NODE: Generate Candidates
# ============================================

async def generate_candidates(state: PlanningState) -> PlanningState:
    """Stage 2: decision service, or the greedy window fill."""
    client = state.get("client")
    result = await generate_activities(
        state["strategy_result"].value,
        state["context"],
        state["windows"],
        state["request"].busy_blocks,
        day=state["active_start"].date(),
        client=client,
        config=client.config if client is not None else None,
        cancel_event=state.get("cancel_event"),
    )

    return {
        **state,
        "generation_result": result,
    }


# ============================================
# NODE: Validate Placements
# ============================================

async def validate_candidates(state: PlanningState) -> PlanningState:
    """Apply placement rules to whatever stage 2 produced."""
    outcome = validate_placements(
        state["generation_result"].value,
        state["request"].busy_blocks,
        state["windows"],
        state["intensity"].band,
        state["engine_config"].caps,
    )

    return {
        **state,
        "activities": outcome.accepted,
        "rejected_count": outcome.rejected_count,
    }


# ============================================
# NODE: Record Run
# ============================================

def build_reasoning(state: PlanningState) -> str:
    intensity = state["intensity"]
    mood = state["mood"]
    strategy_result = state["strategy_result"]
    generation_result = state["generation_result"]
    context = state["context"]

    lines = [
        f"{intensity.band.value.capitalize()} day: {round(intensity.ratio * 100)}% busy "
        f"({intensity.tier.value} intensity), {context.total_available_minutes} free min "
        f"across {context.window_count} windows.",
        f"Mood {mood.mood_score}/10, energy {mood.energy_level.value}, "
        f"stress {mood.stress_level.value} ({mood.pattern.value}). {mood.reasoning}",
        f"Strategy '{strategy_result.value.priority_label}' targeting "
        f"{strategy_result.value.target_count} activities ({strategy_result.provenance.value}).",
        f"Placed {len(state['activities'])} activities, rejected {state['rejected_count']} "
        f"({generation_result.provenance.value}).",
    ]
    return " ".join(lines)


def log_run_record(record: RunRecord):
    """Default analytics sink."""
    logger.info(f"Run record: {record.model_dump_json()}")


async def record_run(state: PlanningState) -> PlanningState:
    """Emit the write-only analytics record."""
    request = state["request"]
    record = RunRecord(
        context={
            "day_start": request.day_start.isoformat(),
            "day_end": request.day_end.isoformat(),
            "busy_block_count": len(request.busy_blocks),
            "intensity": state["intensity"].model_dump(mode="json"),
            "mood": state["mood"].model_dump(mode="json"),
            "window_count": len(state["windows"]),
        },
        strategy=state["strategy_result"].value,
        activities=state["activities"],
        rejected_count=state["rejected_count"],
        strategy_provenance=state["strategy_result"].provenance,
        generation_provenance=state["generation_result"].provenance,
    )

    sink = state.get("sink") or log_run_record
    try:
        sink(record)
    except Exception as e:
        logger.error(f"Analytics sink failed: {e}")

    return {
        **state,
        "reasoning": build_reasoning(state),
        "record": record,
    }


# ============================================
# GRAPH CONSTRUCTION
# ============================================

def create_planning_graph() -> StateGraph:
    """
    Create the planning pipeline graph.

    Flow:
    1. analyze_day - Windows, intensity and mood
    2. choose_strategy - Categories and target count
    3. generate_candidates - Timed activity proposals
    4. validate_candidates - Placement rules and cap
    5. record_run - Reasoning text and analytics record
    """
    workflow = StateGraph(PlanningState)

    # Add nodes
    workflow.add_node("analyze_day", analyze_day)
    workflow.add_node("choose_strategy", choose_strategy)
    workflow.add_node("generate_candidates", generate_candidates)
    workflow.add_node("validate_candidates", validate_candidates)
    workflow.add_node("record_run", record_run)

    # Define edges
    workflow.set_entry_point("analyze_day")
    workflow.add_edge("analyze_day", "choose_strategy")
    workflow.add_edge("choose_strategy", "generate_candidates")
    workflow.add_edge("generate_candidates", "validate_candidates")
    workflow.add_edge("validate_candidates", "record_run")
    workflow.add_edge("record_run", END)

    return workflow


def compile_planning_agent():
    """Compile the planning graph. State is request-scoped, so no checkpointer."""
    return create_planning_graph().compile()


# ============================================
# CALENDAR MAPPING
# ============================================

def to_calendar_event(
    activity: ValidatedActivity,
    colors: Optional[Dict[ActivityCategory, str]] = None,
) -> Dict[str, Any]:
    """Map an activity to a calendar create-event payload."""
    colors = colors or DEFAULT_CATEGORY_COLORS
    event = {
        "summary": activity.title,
        "description": activity.description,
        "start": {"dateTime": activity.start_time.isoformat()},
        "end": {"dateTime": activity.end_time.isoformat()},
    }
    color = colors.get(activity.category)
    if color:
        event["colorId"] = color
    return event


# ============================================
# AGENT INTERFACE
# ============================================

def validate_request(request: PlanRequest):
    """Reject malformed requests before any work is done."""
    if request.day_start is None or request.day_end is None:
        raise InputError("Day bounds (day_start, day_end) are required")
    if request.day_end <= request.day_start:
        raise InputError("Day end must be after day start")
    for block in request.busy_blocks:
        ensure_valid_interval(block)
    for window in request.energy_windows:
        if window.end <= window.start:
            raise InputError(f"Energy window {window.start}-{window.end} must end after it starts")


class PlanningEngine:
    """
    High-level interface for the planning pipeline.

    Usage:
        engine = PlanningEngine()
        result = await engine.plan_day(request)
    """

    def __init__(
        self,
        client: Optional[DecisionServiceClient] = None,
        use_decision_service: bool = True,
        engine_config: Optional[EngineConfig] = None,
        sink: Optional[Callable[[RunRecord], None]] = None,
    ):
        self._client = client
        self.use_decision_service = use_decision_service
        self.engine_config = engine_config or get_engine_config()
        self.sink = sink or log_run_record
        self.agent = compile_planning_agent()

    @property
    def client(self) -> Optional[DecisionServiceClient]:
        if not self.use_decision_service:
            return None
        return self._client or get_decision_client()

    async def plan_day(
        self,
        request: PlanRequest,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PlanResult:
        """
        Plan wellness activities for one day.

        Args:
            request: Busy blocks, day bounds, preferences and mood context
            cancel_event: When set, pending decision-service calls are
                abandoned and the rule-based fallbacks run instead

        Returns:
            PlanResult (activities may be empty)

        Raises:
            InputError: malformed request
        """
        validate_request(request)

        initial_state = create_planning_state(
            request,
            self.engine_config,
            client=self.client,
            cancel_event=cancel_event,
            sink=self.sink,
        )
        final_state = await self.agent.ainvoke(initial_state)

        strategy_result = final_state["strategy_result"]
        generation_result = final_state["generation_result"]

        return PlanResult(
            activities=final_state.get("activities", []),
            intensity=final_state["intensity"],
            windows=final_state["windows"],
            strategy=strategy_result.value,
            mood=final_state["mood"],
            strategy_provenance=strategy_result.provenance,
            generation_provenance=generation_result.provenance,
            rejected_count=final_state.get("rejected_count", 0),
            reasoning=final_state.get("reasoning", ""),
        )


# Create default engine instance
default_planning_engine = None


def get_planning_engine() -> PlanningEngine:
    """Get or create the default planning engine instance."""
    global default_planning_engine
    if default_planning_engine is None:
        default_planning_engine = PlanningEngine()
    return default_planning_engine
