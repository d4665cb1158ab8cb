"""
calmplan - Pydantic Models (v2 syntax)
"""

from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import Optional, List, Dict, Any, Generic, TypeVar, NamedTuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================
# ENUMS
# ============================================

class IntensityTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LoadBand(str, Enum):
    """Finer split of the intensity ratio used for targets and caps."""
    OVERLOADED = "overloaded"   # tier high
    BUSY = "busy"               # tier medium, upper half
    MODERATE = "moderate"       # tier medium, lower half
    OPEN = "open"               # tier low


class SizeClass(str, Enum):
    MICRO = "micro"     # < 10 min
    SMALL = "small"     # 10-29 min
    MEDIUM = "medium"   # 30-59 min
    LARGE = "large"     # >= 60 min

    @classmethod
    def for_minutes(cls, minutes: float) -> "SizeClass":
        if minutes < 10:
            return cls.MICRO
        if minutes < 30:
            return cls.SMALL
        if minutes < 60:
            return cls.MEDIUM
        return cls.LARGE


class Level(str, Enum):
    """Energy / stress level."""
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Any) -> Optional["Level"]:
        """Accept the wider vocabulary used by check-in collaborators."""
        if value is None or isinstance(value, Level):
            return value
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        if key not in LEVEL_ALIASES:
            raise ValueError(f"Unknown level: {value!r}")
        return LEVEL_ALIASES[key]


LEVEL_ALIASES = {
    "very_low": Level.LOW,
    "low": Level.LOW,
    "calm": Level.LOW,
    "mild": Level.LOW,
    "medium": Level.MODERATE,
    "moderate": Level.MODERATE,
    "high": Level.HIGH,
    "very_high": Level.HIGH,
    "overwhelming": Level.HIGH,
}


class MoodPattern(str, Enum):
    BURNOUT = "burnout"
    RECOVERY = "recovery"
    RAMP_UP = "ramp_up"
    OPTIMAL = "optimal"
    STABLE = "stable"
    MIXED = "mixed"
    SINGLE_DAY = "single_day"
    REPORTED = "reported"       # supplied by the check-in, not inferred


class Provenance(str, Enum):
    FROM_SERVICE = "from_service"
    FROM_FALLBACK = "from_fallback"


# ============================================
# ACTIVITY CATEGORIES
# ============================================

class ActivityCategory(str, Enum):
    BREATHING = "BREATHING"
    HYDRATION = "HYDRATION"
    LIGHT_WALK = "LIGHT_WALK"
    STRETCH = "STRETCH"
    YOGA = "YOGA"
    SWIMMING = "SWIMMING"
    WORKOUT = "WORKOUT"
    GYM = "GYM"
    ROCK_CLIMBING = "ROCK_CLIMBING"
    CYCLING = "CYCLING"
    RUNNING = "RUNNING"
    MEAL = "MEAL"
    NATURE = "NATURE"
    CREATIVE = "CREATIVE"
    SOCIAL = "SOCIAL"
    LEARNING = "LEARNING"
    ORGANIZATION = "ORGANIZATION"
    # Fallback-only support categories
    TRANSITION = "TRANSITION"
    SENSORY = "SENSORY"
    ENERGY_BOOST = "ENERGY_BOOST"

    @classmethod
    def parse(cls, value: Any) -> Optional["ActivityCategory"]:
        """Lenient lookup for names coming back from the decision service."""
        if isinstance(value, ActivityCategory):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            return None

    @property
    def profile(self) -> "CategoryProfile":
        return CATEGORY_PROFILES[self]

    @property
    def min_minutes(self) -> int:
        return self.profile.min_minutes

    @property
    def max_minutes(self) -> int:
        return self.profile.max_minutes

    @property
    def is_calming(self) -> bool:
        return self.profile.calming

    @property
    def is_vigorous(self) -> bool:
        return self.profile.vigorous


class CategoryProfile(NamedTuple):
    min_minutes: int
    max_minutes: int
    calming: bool
    vigorous: bool
    color_id: str


# Duration ranges (minutes), calming / vigorous flags and default calendar colors
CATEGORY_PROFILES: Dict[ActivityCategory, CategoryProfile] = {
    ActivityCategory.BREATHING: CategoryProfile(5, 10, True, False, "7"),
    ActivityCategory.HYDRATION: CategoryProfile(5, 10, True, False, "7"),
    ActivityCategory.LIGHT_WALK: CategoryProfile(10, 15, False, False, "10"),
    ActivityCategory.STRETCH: CategoryProfile(10, 15, False, False, "10"),
    ActivityCategory.YOGA: CategoryProfile(20, 45, True, False, "2"),
    ActivityCategory.SWIMMING: CategoryProfile(30, 60, False, False, "9"),
    ActivityCategory.WORKOUT: CategoryProfile(15, 60, False, True, "11"),
    ActivityCategory.GYM: CategoryProfile(45, 75, False, True, "11"),
    ActivityCategory.ROCK_CLIMBING: CategoryProfile(60, 90, False, True, "11"),
    ActivityCategory.CYCLING: CategoryProfile(30, 90, False, True, "11"),
    ActivityCategory.RUNNING: CategoryProfile(20, 60, False, True, "11"),
    ActivityCategory.MEAL: CategoryProfile(25, 35, False, False, "6"),
    ActivityCategory.NATURE: CategoryProfile(15, 30, True, False, "10"),
    ActivityCategory.CREATIVE: CategoryProfile(20, 45, False, False, "3"),
    ActivityCategory.SOCIAL: CategoryProfile(15, 60, False, False, "4"),
    ActivityCategory.LEARNING: CategoryProfile(15, 60, False, False, "5"),
    ActivityCategory.ORGANIZATION: CategoryProfile(15, 30, False, False, "8"),
    ActivityCategory.TRANSITION: CategoryProfile(5, 10, False, False, "8"),
    ActivityCategory.SENSORY: CategoryProfile(10, 15, True, False, "7"),
    ActivityCategory.ENERGY_BOOST: CategoryProfile(5, 10, False, False, "5"),
}

SUPPORT_CATEGORIES = (
    ActivityCategory.TRANSITION,
    ActivityCategory.SENSORY,
    ActivityCategory.ENERGY_BOOST,
)

# Vocabulary offered to the decision service
SERVICE_VOCABULARY = tuple(c for c in ActivityCategory if c not in SUPPORT_CATEGORIES)

DEFAULT_CATEGORY_COLORS: Dict[ActivityCategory, str] = {
    category: profile.color_id for category, profile in CATEGORY_PROFILES.items()
}


# ============================================
# TIME MODELS
# ============================================

class TimeInterval(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end", mode="after")
    @classmethod
    def drop_timezone(cls, value: datetime) -> datetime:
        # Times are local wall-clock times
        return value.replace(tzinfo=None)

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    def overlaps(self, other: "TimeInterval") -> bool:
        """Half-open intersection test."""
        return self.start < other.end and self.end > other.start


class BusyBlock(TimeInterval):
    label: str = "Busy"


class EnergyWindow(BaseModel):
    """Preferred high-energy time of day, e.g. 09:00-11:00."""
    start: time
    end: time


class Window(TimeInterval):
    duration: int  # whole minutes
    size_class: SizeClass
    in_energy_window: bool = False


# ============================================
# INTENSITY / STRATEGY MODELS
# ============================================

class IntensityResult(BaseModel):
    tier: IntensityTier
    ratio: float = Field(ge=0.0, le=1.0)
    busy_minutes: float = Field(ge=0.0)
    total_minutes: float = Field(gt=0.0)
    band: LoadBand


class Strategy(BaseModel):
    categories: List[ActivityCategory] = Field(min_length=1)
    target_count: int = Field(ge=1)
    priority_label: str = "balanced"


class StrategyContext(BaseModel):
    """Everything the strategy and generation stages decide from."""
    tier: IntensityTier
    ratio: float = Field(ge=0.0, le=1.0)
    band: LoadBand
    mood_score: int = Field(default=5, ge=1, le=10)
    energy_level: Level = Level.MODERATE
    stress_level: Level = Level.MODERATE
    total_available_minutes: int = 0
    window_count: int = 0
    user_context: Optional[str] = None


# ============================================
# ACTIVITY MODELS
# ============================================

def _activity_id() -> str:
    return f"activity-{uuid4().hex[:12]}"


class ActivityCandidate(BaseModel):
    id: str = Field(default_factory=_activity_id)
    category: ActivityCategory
    title: str
    start_time: datetime
    end_time: datetime
    duration_seconds: int
    description: str = ""
    is_calming: bool = False

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(start=self.start_time, end=self.end_time)


class ValidatedActivity(ActivityCandidate):
    buffer_minutes: int


# ============================================
# MOOD MODELS
# ============================================

class Sentiment(BaseModel):
    """Free-text sentiment from the check-in collaborator."""
    score: float = Field(ge=-1.0, le=1.0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class MoodEstimate(BaseModel):
    mood_score: int = Field(ge=1, le=10)
    energy_level: Level
    stress_level: Level
    reasoning: str
    pattern: MoodPattern


# ============================================
# DECISION RESULT
# ============================================

T = TypeVar("T")


@dataclass
class DecisionResult(Generic[T]):
    """Outcome of a stage that prefers the decision service."""
    value: T
    provenance: Provenance
    error: Optional[str] = None

    @property
    def from_service(self) -> bool:
        return self.provenance == Provenance.FROM_SERVICE


# ============================================
# ENGINE REQUEST / RESULT
# ============================================

class PlanRequest(BaseModel):
    day_start: Optional[datetime] = None
    day_end: Optional[datetime] = None
    busy_blocks: List[BusyBlock] = Field(default_factory=list)

    # Preferences
    wake_time: Optional[time] = None
    bed_time: Optional[time] = None
    energy_windows: List[EnergyWindow] = Field(default_factory=list)

    # Mood / context
    mood_score: Optional[int] = Field(default=None, ge=1, le=10)
    energy_level: Optional[Level] = None
    stress_level: Optional[Level] = None
    yesterday: Optional[IntensityResult] = None
    sentiment: Optional[Sentiment] = None
    user_context: Optional[str] = None

    seed: Optional[int] = None

    @field_validator("energy_level", "stress_level", mode="before")
    @classmethod
    def parse_level(cls, value):
        return Level.parse(value)

    @field_validator("day_start", "day_end", "wake_time", "bed_time", mode="after")
    @classmethod
    def drop_timezone(cls, value):
        if value is None:
            return value
        return value.replace(tzinfo=None)

    @property
    def has_mood(self) -> bool:
        return (
            self.mood_score is not None
            and self.energy_level is not None
            and self.stress_level is not None
        )


class PlanResult(BaseModel):
    activities: List[ValidatedActivity]
    intensity: IntensityResult
    windows: List[Window]
    strategy: Strategy
    mood: MoodEstimate
    strategy_provenance: Provenance
    generation_provenance: Provenance
    rejected_count: int = 0
    reasoning: str = ""


class RunRecord(BaseModel):
    """Write-only analytics record, one per planning run."""
    created_at: datetime = Field(default_factory=datetime.now)
    context: Dict[str, Any]
    strategy: Strategy
    activities: List[ValidatedActivity]
    rejected_count: int
    strategy_provenance: Provenance
    generation_provenance: Provenance
