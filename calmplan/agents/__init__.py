"""
calmplan - Agent Package
LangGraph-based planning pipeline
"""

from .state import (
    # State types
    PlanningState,
    # State creators
    create_planning_state,
)

from .planning_agent import (
    PlanningEngine,
    get_planning_engine,
    create_planning_graph,
    compile_planning_agent,
    to_calendar_event,
    log_run_record,
)


__all__ = [
    # State types
    "PlanningState",
    # State creators
    "create_planning_state",
    # Engine
    "PlanningEngine",
    "get_planning_engine",
    # Graph builders
    "create_planning_graph",
    "compile_planning_agent",
    # Output mapping
    "to_calendar_event",
    "log_run_record",
]
