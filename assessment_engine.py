"""
Assessment engine — pure logic, no I/O.
Signal extraction, weighted aggregation, difficulty adjustment and recommendations
for a single learner turn.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from typing import Optional, Union

from pydantic import ValidationError

from difficulty_model import (
    DEFAULT_WEIGHTS,
    AdjustmentDecision,
    AssessmentInput,
    AssessmentResult,
    DifficultyLevel,
    HelpRequestSignal,
    IndicatorSummary,
    InvalidInput,
    PatternSignal,
    PerformanceMetrics,
    QualityChecks,
    QualitySignal,
    ResponseLengthSignal,
    ResponseTimeSignal,
    SignalAnalysis,
    SignalWeights,
    normalize_difficulty,
)

logger = logging.getLogger("assessment_engine")


def _patterns(*phrases: str) -> list[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in phrases]


# Connector words that mark an elaborated answer
DETAIL_PATTERNS = _patterns(
    r"\bbecause\b", r"\bso\b", r"\bwhen\b", r"\bwhere\b", r"\bwhat\b", r"\bwhy\b",
    r"\bhow\b", r"\band\b", r"\bbut\b", r"\bfor\b", r"\bexample\b", r"\bsuch as\b",
    r"\blike\b", r"\bsuch\b",
)

STRUGGLE_PATTERNS = _patterns(
    r"\bi don'?t know\b", r"\bi'?m not sure\b", r"\bi don'?t understand\b",
    r"\bi can'?t\b", r"\bhelp\b", r"\bwhat\?", r"\bhuh\?", r"\bi'?m confused\b",
    r"\bi'?m lost\b", r"\bthis is hard\b", r"\btoo hard\b", r"\btoo difficult\b",
)

EXAMPLE_REQUEST_PATTERNS = _patterns(
    r"\bcan you give me an example\b", r"\bshow me\b", r"\bfor example\b",
    r"\blike what\b", r"\bsuch as\b", r"\bhow do you\b",
)

CONFIDENCE_PATTERNS = _patterns(
    r"\bi think\b", r"\bi believe\b", r"\bin my opinion\b", r"\bi would\b",
    r"\bi could\b", r"\bi might\b", r"\bprobably\b", r"\bdefinitely\b",
)

OFF_TOPIC_PATTERNS = _patterns(r"\brandom\b", r"\bunrelated\b", r"\bwhat\?", r"\bhuh\?")

SOCIAL_AWARENESS_PATTERNS = _patterns(
    r"\bfeel\b", r"\bthink\b", r"\bunderstand\b", r"\bempathy\b", r"\bemotion\b",
    r"\bperspective\b", r"\bpoint of view\b", r"\bopinion\b", r"\brespect\b",
    r"\bkind\b", r"\bnice\b", r"\bpolite\b", r"\bconsiderate\b", r"\bother\b",
    r"\btheir\b", r"\bthey\b", r"\bthem\b",
)

QUESTION_WORD_PATTERN = re.compile(
    r"\b(what|how|why|when|where|who|can|could|would|should)\b", re.IGNORECASE
)

HESITATION_WORDS = ["um", "uh", "er", "ah", "like", "you know", "well"]
HESITATION_PATTERNS = [re.compile(rf"\b{w}\b", re.IGNORECASE) for w in HESITATION_WORDS]

# Any terminator counts; a terminator followed by a capital is a subset of this
SENTENCE_END_PATTERN = re.compile(r"[.!?]")

# Aggregation and decision thresholds (calibrated against the full weight total)
DOMINANT_STRUGGLING_THRESHOLD = 0.6
DOMINANT_EXCELLING_THRESHOLD = 0.7
DOMINANT_COUNT = 3
MIN_EXCHANGES = 3
EVIDENCE_THRESHOLD = 0.4
STEP_DOWN_THRESHOLD = 0.5
STEP_UP_THRESHOLD = 0.6
HOLD_CONFIDENCE = 0.3

SCAFFOLDING_RECOMMENDATIONS = [
    "Provide more scaffolding and support",
    "Offer sentence starters or templates",
    "Break down complex questions into smaller parts",
    "Give more positive reinforcement",
    "Use simpler vocabulary and shorter sentences",
]

STRETCH_RECOMMENDATIONS = [
    "Introduce more complex scenarios",
    "Ask open-ended questions requiring deeper thought",
    "Encourage elaboration and detail",
    "Add follow-up questions to challenge thinking",
    "Introduce nuanced social situations",
]

MAINTENANCE_RECOMMENDATIONS = [
    "Maintain current support level",
    "Continue monitoring for patterns",
    "Provide balanced feedback",
]


def _words(message: str) -> list[str]:
    return message.split()


def _count_matches(patterns: list[re.Pattern], text: str) -> int:
    """Number of patterns that match at least once."""
    return sum(1 for p in patterns if p.search(text))


def has_detail(message: str) -> bool:
    return any(p.search(message) for p in DETAIL_PATTERNS)


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------

def analyze_response_length(message: str) -> ResponseLengthSignal:
    """
    Brevity vs elaboration.
    1-3 words struggling, 4-10 moderate, 11+ excelling only with connector words.
    """
    word_count = len(_words(message))

    if word_count <= 3:
        indicator, score = "struggling", 0.2
        reasoning = "Very short response (1-3 words) suggests difficulty expressing thoughts"
    elif word_count <= 10:
        indicator, score = "moderate", 0.5
        reasoning = "Moderate length response (4-10 words) indicates adequate engagement"
    elif has_detail(message):
        indicator, score = "excelling", 0.9
        reasoning = "Detailed response (11+ words with elaboration) shows strong engagement"
    else:
        indicator, score = "moderate", 0.6
        reasoning = "Long response but may lack depth"

    return ResponseLengthSignal(
        indicator=indicator,
        score=score,
        reasoning=reasoning,
        word_count=word_count,
        char_count=len(message),
    )


def analyze_response_time(response_time: Optional[float]) -> ResponseTimeSignal:
    if response_time is None:
        return ResponseTimeSignal(
            indicator="moderate",
            score=0.5,
            reasoning="Response time not available",
            available=False,
        )

    if response_time > 5:
        indicator, score = "struggling", 0.2
        reasoning = (
            f"Slow response time ({response_time:.1f}s) suggests difficulty "
            "processing or formulating response"
        )
    elif response_time >= 2:
        indicator, score = "moderate", 0.5
        reasoning = f"Moderate response time ({response_time:.1f}s) indicates normal processing"
    else:
        indicator, score = "excelling", 0.8
        reasoning = f"Quick response time ({response_time:.1f}s) shows confident understanding"

    return ResponseTimeSignal(
        indicator=indicator,
        score=score,
        reasoning=reasoning,
        response_time=response_time,
        available=True,
    )


def analyze_help_requests(message: str, help_request_count: int = 0) -> HelpRequestSignal:
    """
    Uncertainty phrasing plus explicit help requests.
    Two or more struggle markers in total outweigh everything else; confident
    phrasing only counts when there is no struggle marker at all.
    """
    struggle = _count_matches(STRUGGLE_PATTERNS, message)
    examples = _count_matches(EXAMPLE_REQUEST_PATTERNS, message)
    confident = _count_matches(CONFIDENCE_PATTERNS, message)

    total_struggle = struggle + help_request_count

    if total_struggle >= 2:
        indicator, score = "struggling", 0.2
        reasoning = "Multiple indicators of difficulty (uncertainty phrases or help requests)"
    elif examples > 0:
        indicator, score = "moderate", 0.4
        reasoning = "Requesting examples suggests need for more support"
    elif confident > 0 and total_struggle == 0:
        indicator, score = "excelling", 0.8
        reasoning = "Confident language suggests good understanding"
    else:
        indicator, score = "moderate", 0.5
        reasoning = "No clear indicators of struggle or excellence"

    return HelpRequestSignal(
        indicator=indicator,
        score=score,
        reasoning=reasoning,
        struggle_phrases=struggle,
        example_phrases=examples,
        confident_phrases=confident,
        help_request_count=help_request_count,
    )


def check_on_topic(message: str) -> bool:
    # Without conversation context only very short or dismissive replies are flagged
    if len(_words(message)) < 3 and "?" not in message:
        return False
    return not any(p.search(message) for p in OFF_TOPIC_PATTERNS)


def check_social_awareness(message: str) -> bool:
    return any(p.search(message) for p in SOCIAL_AWARENESS_PATTERNS)


def check_complete_sentences(message: str) -> bool:
    return bool(SENTENCE_END_PATTERN.search(message))


def analyze_quality(message: str) -> QualitySignal:
    checks = QualityChecks(
        on_topic=check_on_topic(message),
        asks_questions="?" in message and bool(QUESTION_WORD_PATTERN.search(message)),
        provides_details=has_detail(message),
        shows_social_awareness=check_social_awareness(message),
        uses_complete_sentences=check_complete_sentences(message),
        appropriate_length=len(_words(message)) >= 4,
    )

    flags = checks.model_dump()
    positive = sum(1 for v in flags.values() if v)
    total = len(flags)
    quality_score = positive / total

    if quality_score >= 0.7:
        indicator, score = "excelling", 0.9
        reasoning = f"High quality response with {positive}/{total} positive indicators"
    elif quality_score >= 0.4:
        indicator, score = "moderate", 0.5
        reasoning = f"Moderate quality response with {positive}/{total} positive indicators"
    else:
        indicator, score = "struggling", 0.2
        reasoning = f"Low quality response with only {positive}/{total} positive indicators"

    return QualitySignal(
        indicator=indicator,
        score=score,
        reasoning=reasoning,
        quality_score=quality_score,
        checks=checks,
    )


def count_hesitations(message: str) -> int:
    return sum(len(p.findall(message)) for p in HESITATION_PATTERNS)


def detect_improvement(previous_assessments: Sequence[AssessmentResult]) -> bool:
    """
    Improving when the newest of the last three assessments carried more
    excelling factors than the oldest of them.
    """
    if len(previous_assessments) < 3:
        return False
    recent = previous_assessments[-3:]
    return recent[-1].indicators.excelling > recent[0].indicators.excelling


def analyze_patterns(
    message: str, previous_assessments: Sequence[AssessmentResult] = ()
) -> PatternSignal:
    hesitation_count = count_hesitations(message)

    words = _words(message.lower())
    repetition_ratio = len(set(words)) / len(words) if words else 1.0
    has_repetition = repetition_ratio < 0.7 and len(words) > 5

    is_improving = detect_improvement(previous_assessments)

    if hesitation_count >= 3 or has_repetition:
        indicator, score = "struggling", 0.3
        reasoning = (
            f"Pattern indicates difficulty: {hesitation_count} hesitation words, "
            f"{'repetitive' if has_repetition else 'no repetition'}"
        )
    elif hesitation_count == 0 and is_improving:
        indicator, score = "excelling", 0.8
        reasoning = "Clear patterns with improvement over time"
    else:
        indicator, score = "moderate", 0.5
        reasoning = "Normal patterns detected"

    return PatternSignal(
        indicator=indicator,
        score=score,
        reasoning=reasoning,
        hesitation_count=hesitation_count,
        has_repetition=has_repetition,
        repetition_ratio=repetition_ratio,
        is_improving=is_improving,
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def determine_dominant_indicator(
    struggling_count: int,
    excelling_count: int,
    normalized_struggling: float,
    normalized_excelling: float,
) -> str:
    # Struggling is checked first so it wins ties
    if normalized_struggling > DOMINANT_STRUGGLING_THRESHOLD or struggling_count >= DOMINANT_COUNT:
        return "struggling"
    if normalized_excelling > DOMINANT_EXCELLING_THRESHOLD or excelling_count >= DOMINANT_COUNT:
        return "excelling"
    return "moderate"


def calculate_indicators(
    analysis: SignalAnalysis, weights: SignalWeights = DEFAULT_WEIGHTS
) -> IndicatorSummary:
    """
    Combine the five signals into counts and weighted scores.

    Both normalized scores divide by the weight of all five factors, not only
    the factors carrying that label, so they rarely approach 1.0. The decision
    thresholds assume this denominator.
    """
    counts = {"struggling": 0, "moderate": 0, "excelling": 0}
    struggling_score = 0.0
    excelling_score = 0.0

    for name, signal in analysis.factors():
        counts[signal.indicator] += 1
        weight = weights.for_factor(name)
        if signal.indicator == "struggling":
            struggling_score += signal.score * weight
        elif signal.indicator == "excelling":
            excelling_score += signal.score * weight

    total_weight = weights.total
    normalized_struggling = struggling_score / total_weight if total_weight > 0 else 0.0
    normalized_excelling = excelling_score / total_weight if total_weight > 0 else 0.0

    return IndicatorSummary(
        struggling=counts["struggling"],
        moderate=counts["moderate"],
        excelling=counts["excelling"],
        normalized_struggling=normalized_struggling,
        normalized_excelling=normalized_excelling,
        dominant_indicator=determine_dominant_indicator(
            counts["struggling"],
            counts["excelling"],
            normalized_struggling,
            normalized_excelling,
        ),
    )


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------

def _hold(level: DifficultyLevel, confidence: float, reasoning: str) -> AdjustmentDecision:
    return AdjustmentDecision(
        should_adjust=False, new_level=level, confidence=confidence, reasoning=reasoning
    )


def determine_adjustment(
    indicators: IndicatorSummary,
    current_level: DifficultyLevel,
    exchange_count: int,
    previous_assessments: Sequence[AssessmentResult] = (),
) -> AdjustmentDecision:
    """
    Guarded three-level state machine. First matching rule wins:
    1. fewer than 3 exchanges: hold
    2. neither normalized score above 0.4: hold
    3. both of the last two assessments adjusted: hold (damping)
    4. step down one level on strong struggle, up one level on strong excellence
    Moves are always a single step and clamp at easy/hard.
    """
    if exchange_count < MIN_EXCHANGES:
        return _hold(
            current_level,
            HOLD_CONFIDENCE,
            "Insufficient data - need at least 3 exchanges before adjusting difficulty",
        )

    struggling = indicators.normalized_struggling
    excelling = indicators.normalized_excelling

    if struggling <= EVIDENCE_THRESHOLD and excelling <= EVIDENCE_THRESHOLD:
        return _hold(
            current_level,
            HOLD_CONFIDENCE,
            "Insufficient evidence for difficulty adjustment - performance is stable",
        )

    recent_adjustments = [a for a in previous_assessments[-2:] if a.should_adjust]
    if len(recent_adjustments) >= 2:
        return _hold(
            current_level,
            HOLD_CONFIDENCE,
            "Recent adjustments made - maintaining current difficulty to allow time for adaptation",
        )

    dominant = indicators.dominant_indicator

    if dominant == "struggling" and struggling > STEP_DOWN_THRESHOLD:
        if current_level.rank > DifficultyLevel.EASY.rank:
            return AdjustmentDecision(
                should_adjust=True,
                new_level=DifficultyLevel.from_rank(current_level.rank - 1),
                confidence=min(0.9, struggling * 1.2),
                reasoning=(
                    f"Strong indicators of struggle (score: {struggling:.2f}) - "
                    "reducing difficulty to preserve confidence"
                ),
            )
        return _hold(
            current_level,
            HOLD_CONFIDENCE,
            "Already at easiest level - maintaining with additional support",
        )

    if dominant == "excelling" and excelling > STEP_UP_THRESHOLD:
        if current_level.rank < DifficultyLevel.HARD.rank:
            return AdjustmentDecision(
                should_adjust=True,
                new_level=DifficultyLevel.from_rank(current_level.rank + 1),
                confidence=min(0.95, excelling * 1.1),
                reasoning=(
                    f"Strong indicators of excellence (score: {excelling:.2f}) - "
                    "increasing difficulty to encourage growth"
                ),
            )
        return _hold(
            current_level,
            HOLD_CONFIDENCE,
            "Already at hardest level - maintaining challenge",
        )

    return _hold(
        current_level,
        0.5,
        "Moderate performance - maintaining current difficulty level",
    )


def generate_recommendations(
    indicators: IndicatorSummary, new_level: DifficultyLevel
) -> list[str]:
    dominant = indicators.dominant_indicator

    if new_level == DifficultyLevel.EASY or dominant == "struggling":
        recommendations = list(SCAFFOLDING_RECOMMENDATIONS)
    elif new_level == DifficultyLevel.HARD or dominant == "excelling":
        recommendations = list(STRETCH_RECOMMENDATIONS)
    else:
        recommendations = list(MAINTENANCE_RECOMMENDATIONS)

    if indicators.struggling >= 2:
        recommendations.append("Consider additional practice with similar scenarios")
    if indicators.excelling >= 2:
        recommendations.append("Consider introducing advanced concepts")

    return recommendations


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _coerce_metrics(
    performance_metrics: Union[PerformanceMetrics, Mapping, None],
) -> PerformanceMetrics:
    if performance_metrics is None:
        return PerformanceMetrics()
    if isinstance(performance_metrics, PerformanceMetrics):
        return performance_metrics
    try:
        return PerformanceMetrics.model_validate(dict(performance_metrics))
    except (ValidationError, TypeError, ValueError) as e:
        raise InvalidInput(f"Invalid performance metrics: {e}") from e


def assess_difficulty(
    message: str,
    performance_metrics: Union[PerformanceMetrics, Mapping, None] = None,
    current_difficulty: Union[str, int, DifficultyLevel, None] = "moderate",
    weights: SignalWeights = DEFAULT_WEIGHTS,
) -> AssessmentResult:
    """
    Assess one learner turn and decide whether to raise, lower or hold difficulty.

    Raises InvalidInput when the message is missing, empty or not a string.
    Never mutates the metrics or the assessment history it is given.
    """
    if not message or not isinstance(message, str):
        raise InvalidInput("message is required and must be a string")

    metrics = _coerce_metrics(performance_metrics)
    text = message.strip()
    current_level = normalize_difficulty(current_difficulty)
    history = metrics.previous_assessments

    analysis = SignalAnalysis(
        response_length=analyze_response_length(text),
        response_time=analyze_response_time(metrics.response_time),
        help_requests=analyze_help_requests(text, metrics.help_requests),
        quality=analyze_quality(text),
        patterns=analyze_patterns(text, history),
    )

    indicators = calculate_indicators(analysis, weights)
    decision = determine_adjustment(indicators, current_level, metrics.exchange_count, history)
    recommendations = generate_recommendations(indicators, decision.new_level)

    logger.debug(
        f"{current_level.value} -> {decision.new_level.value} "
        f"(adjust={decision.should_adjust}, dominant={indicators.dominant_indicator}, "
        f"confidence={decision.confidence:.2f})"
    )

    return AssessmentResult(
        should_adjust=decision.should_adjust,
        new_level=decision.new_level,
        previous_level=current_level,
        confidence=decision.confidence,
        indicators=indicators,
        reasoning=decision.reasoning,
        recommendations=recommendations,
        analysis=analysis,
    )


def assess_input(assessment_input: AssessmentInput) -> AssessmentResult:
    """Run assess_difficulty on an AssessmentInput request body."""
    return assess_difficulty(
        assessment_input.message,
        assessment_input.performance_metrics,
        assessment_input.current_difficulty,
    )
