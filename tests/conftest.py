"""
Pytest configuration and shared fixtures for calmplan tests.
"""

from datetime import date, datetime, time, timedelta
from pathlib import Path
import sys
from unittest.mock import AsyncMock, Mock

import pytest


# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from calmplan.agents import PlanningEngine
from calmplan.config import DecisionServiceConfig, EngineConfig
from calmplan.intensity import calculate_intensity
from calmplan.models import BusyBlock


PLAN_DAY = date(2026, 3, 10)


def at(hour: int, minute: int = 0) -> datetime:
    """Datetime on the planning day."""
    return datetime.combine(PLAN_DAY, time(hour, minute))


def block(start_hour, start_minute, end_hour, end_minute, label="Busy") -> BusyBlock:
    return BusyBlock(start=at(start_hour, start_minute), end=at(end_hour, end_minute), label=label)


def intensity(ratio: float):
    """IntensityResult for a given ratio of a 16-hour day."""
    return calculate_intensity(ratio * 960, 960)


@pytest.fixture
def day_start():
    return at(0)


@pytest.fixture
def day_end():
    return at(0) + timedelta(days=1)


@pytest.fixture
def engine_config():
    """Engine configuration with defaults and a fixed seed."""
    return EngineConfig(random_seed=7)


@pytest.fixture
def decision_config():
    return DecisionServiceConfig(api_key="test-key")


@pytest.fixture
def mock_client(decision_config):
    """Decision service client whose answers are set per test."""
    client = Mock()
    client.config = decision_config
    client.complete = AsyncMock()
    return client


@pytest.fixture
def run_records():
    """Collects analytics records emitted by the engine."""
    return []


@pytest.fixture
def offline_engine(engine_config, run_records):
    """Engine that never calls the decision service."""
    return PlanningEngine(
        use_decision_service=False,
        engine_config=engine_config,
        sink=run_records.append,
    )
