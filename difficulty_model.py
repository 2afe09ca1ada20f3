"""
Difficulty assessment data models.
Pydantic v2 models shared by the assessment engine and its callers.
"""

from enum import Enum
from typing import Iterator, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

IndicatorLabel = Literal["struggling", "moderate", "excelling"]

FACTORS = ["response_length", "response_time", "help_requests", "quality", "patterns"]


class InvalidInput(ValueError):
    """Raised when the learner message (or its metrics) cannot be assessed."""


class DifficultyLevel(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    HARD = "hard"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @classmethod
    def from_rank(cls, rank: int) -> "DifficultyLevel":
        for level, value in _RANKS.items():
            if value == rank:
                return level
        raise ValueError(f"No difficulty level with rank {rank}")


_RANKS = {
    DifficultyLevel.EASY: 1,
    DifficultyLevel.MODERATE: 2,
    DifficultyLevel.HARD: 3,
}

# Accepted spellings for the caller's current difficulty token
DIFFICULTY_SYNONYMS = {
    "easy": DifficultyLevel.EASY,
    "easier": DifficultyLevel.EASY,
    "beginner": DifficultyLevel.EASY,
    "1": DifficultyLevel.EASY,
    "moderate": DifficultyLevel.MODERATE,
    "medium": DifficultyLevel.MODERATE,
    "intermediate": DifficultyLevel.MODERATE,
    "2": DifficultyLevel.MODERATE,
    "3": DifficultyLevel.MODERATE,
    "hard": DifficultyLevel.HARD,
    "harder": DifficultyLevel.HARD,
    "advanced": DifficultyLevel.HARD,
    "expert": DifficultyLevel.HARD,
    "4": DifficultyLevel.HARD,
    "5": DifficultyLevel.HARD,
}


def normalize_difficulty(difficulty: Union[str, int, DifficultyLevel, None]) -> DifficultyLevel:
    """Map a free-form level token onto easy/moderate/hard. Unknown tokens fall back to moderate."""
    if isinstance(difficulty, DifficultyLevel):
        return difficulty
    if difficulty is None:
        return DifficultyLevel.MODERATE
    token = str(difficulty).strip().lower()
    return DIFFICULTY_SYNONYMS.get(token, DifficultyLevel.MODERATE)


# ---------------------------------------------------------------------------
# Signal results
# ---------------------------------------------------------------------------

class SignalResult(BaseModel):
    indicator: IndicatorLabel = "moderate"
    score: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: str = ""


class ResponseLengthSignal(SignalResult):
    word_count: int = 0
    char_count: int = 0


class ResponseTimeSignal(SignalResult):
    response_time: Optional[float] = None  # seconds
    available: bool = False


class HelpRequestSignal(SignalResult):
    struggle_phrases: int = 0
    example_phrases: int = 0
    confident_phrases: int = 0
    help_request_count: int = 0


class QualityChecks(BaseModel):
    on_topic: bool = False
    asks_questions: bool = False
    provides_details: bool = False
    shows_social_awareness: bool = False
    uses_complete_sentences: bool = False
    appropriate_length: bool = False


class QualitySignal(SignalResult):
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    checks: QualityChecks = Field(default_factory=QualityChecks)


class PatternSignal(SignalResult):
    hesitation_count: int = 0
    has_repetition: bool = False
    repetition_ratio: float = 1.0
    is_improving: bool = False


class SignalAnalysis(BaseModel):
    """Per-factor diagnostics for one learner turn."""

    response_length: ResponseLengthSignal = Field(default_factory=ResponseLengthSignal)
    response_time: ResponseTimeSignal = Field(default_factory=ResponseTimeSignal)
    help_requests: HelpRequestSignal = Field(default_factory=HelpRequestSignal)
    quality: QualitySignal = Field(default_factory=QualitySignal)
    patterns: PatternSignal = Field(default_factory=PatternSignal)

    def factors(self) -> Iterator[tuple[str, SignalResult]]:
        for name in FACTORS:
            yield name, getattr(self, name)


# ---------------------------------------------------------------------------
# Aggregation and decision
# ---------------------------------------------------------------------------

class SignalWeights(BaseModel):
    """Weight profile used when combining the five signals."""

    model_config = ConfigDict(frozen=True)

    response_length: float = Field(default=1.5, ge=0.0)
    response_time: float = Field(default=1.0, ge=0.0)
    help_requests: float = Field(default=2.0, ge=0.0)
    quality: float = Field(default=2.0, ge=0.0)
    patterns: float = Field(default=1.0, ge=0.0)

    @property
    def total(self) -> float:
        return sum(self.for_factor(name) for name in FACTORS)

    def for_factor(self, name: str) -> float:
        return getattr(self, name, 1.0)


DEFAULT_WEIGHTS = SignalWeights()


class IndicatorSummary(BaseModel):
    struggling: int = Field(default=0, ge=0, le=len(FACTORS))
    moderate: int = Field(default=0, ge=0, le=len(FACTORS))
    excelling: int = Field(default=0, ge=0, le=len(FACTORS))
    normalized_struggling: float = Field(default=0.0, ge=0.0, le=1.0)
    normalized_excelling: float = Field(default=0.0, ge=0.0, le=1.0)
    dominant_indicator: IndicatorLabel = "moderate"


class AdjustmentDecision(BaseModel):
    should_adjust: bool = False
    new_level: DifficultyLevel = DifficultyLevel.MODERATE
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    reasoning: str = ""


class AssessmentResult(BaseModel):
    should_adjust: bool
    new_level: DifficultyLevel
    previous_level: DifficultyLevel = DifficultyLevel.MODERATE
    confidence: float = Field(ge=0.0, le=1.0)
    indicators: IndicatorSummary = Field(default_factory=IndicatorSummary)
    reasoning: str = ""
    recommendations: list[str] = Field(default_factory=list)
    analysis: SignalAnalysis = Field(default_factory=SignalAnalysis)


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

# Callers may send snake_case or camelCase keys; unknown keys are rejected
INPUT_CONFIG = ConfigDict(extra="forbid", populate_by_name=True, alias_generator=to_camel)


class PerformanceMetrics(BaseModel):
    model_config = INPUT_CONFIG

    response_time: Optional[float] = None  # seconds, measured by the caller
    exchange_count: int = Field(default=0, ge=0)
    help_requests: int = Field(default=0, ge=0)
    previous_assessments: list[AssessmentResult] = Field(default_factory=list)


class AssessmentInput(BaseModel):
    model_config = INPUT_CONFIG

    message: Optional[str] = None  # validated by the engine, not here
    performance_metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    current_difficulty: Union[str, int, None] = "moderate"
