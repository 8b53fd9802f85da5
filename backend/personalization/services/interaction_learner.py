"""
Interaction learning - closes the loop between predicted and actual engagement.

For every interaction we store what the relevance scorer predicted at that
moment next to what the user actually did. When predictions drift too far
from reality (or enough time has passed) a learning cycle analyses the
buffer and nudges the user's scoring weights:

    dimension accuracy < 0.7  ->  weight -= adaptation_rate
    dimension accuracy > 0.9  ->  weight += adaptation_rate
    recency/quality bias > +0.2 (over-prediction)   ->  weight -= adaptation_rate
    recency/quality bias < -0.2 (under-prediction)  ->  weight += adaptation_rate

Each weight stays within [weight_floor, weight_ceiling].
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import numpy as np
import structlog
from pydantic import ValidationError

from personalization.config import LearningSettings, Settings, get_settings
from personalization.core.clock import as_naive_utc, hours_between, utcnow
from personalization.core.errors import DataValidationError, persistence_context
from personalization.models.domain import (
    ENGAGED_INTERACTIONS,
    ActualOutcome,
    ContentItem,
    ContentSummary,
    Interaction,
    InteractionRecord,
    InterestProfile,
    LearningMetrics,
    Polarity,
    Prediction,
    RecordedInteraction,
    ScoringWeights,
    UserLearningMetrics,
)
from personalization.repositories.base import InteractionRepository
from personalization.services.interest_modeler import InterestModeler
from personalization.services.relevance_scorer import RelevanceScorer

logger = structlog.get_logger()

UNKNOWN_GROUP = "unknown"
MAX_REALISTIC_ACCURACY = 0.95
RECENT_CONTENT_HOURS = 24
TRIGGER_SAMPLE_SIZE = 10


# =============================================================================
# Pure engagement mappings
# =============================================================================

def map_interaction_to_engagement(interaction: Interaction) -> float:
    """Observed engagement level for an interaction type."""
    return interaction.type.observed_engagement


def calculate_engagement(interaction: Interaction) -> float:
    """Estimate engagement from type, time spent and scroll depth."""
    engagement = interaction.type.base_engagement
    if interaction.duration:
        engagement += min(interaction.duration / 300, 0.3)
    if interaction.scroll_depth:
        engagement += interaction.scroll_depth * 0.2
    return min(engagement, 1.0)


def infer_satisfaction(interaction: Interaction) -> float:
    """Heuristic satisfaction from interaction type and duration."""
    satisfaction = 0.5
    if interaction.type in ENGAGED_INTERACTIONS:
        satisfaction = 0.8
    elif interaction.type.polarity is Polarity.NEGATIVE:
        satisfaction = 0.2

    if interaction.duration:
        if interaction.duration > 60:
            satisfaction += 0.2
        elif interaction.duration < 10:
            satisfaction -= 0.2

    return max(0.0, min(1.0, satisfaction))


# =============================================================================
# Analysis results
# =============================================================================

@dataclass
class GroupAccuracy:
    count: int
    accuracy: float
    confidence: float


@dataclass
class DimensionAccuracy:
    """Accuracy of predictions grouped along one content dimension."""
    groups: dict[str, GroupAccuracy]
    accuracy: float
    coverage: int


@dataclass
class EngagementPattern:
    key: Any
    avg_engagement: float
    count: int


@dataclass
class AccuracyAnalysis:
    """Everything a learning cycle found out about a user's predictions."""
    total_interactions: int
    accuracy_by_type: dict[str, DimensionAccuracy]
    overall_accuracy: float
    biases: dict[str, float]
    patterns: dict[str, list[EngagementPattern]]
    improvement_potential: float = 0.0
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_interactions": self.total_interactions,
            "accuracy_by_type": {k: v.accuracy for k, v in self.accuracy_by_type.items()},
            "overall_accuracy": round(self.overall_accuracy, 4),
            "biases": {k: round(v, 4) for k, v in self.biases.items()},
            "improvement_potential": round(self.improvement_potential, 4),
            "confidence": round(self.confidence, 4),
        }


@dataclass
class LearningOutcome:
    """Result of a learning cycle. success=False carries a reason instead of analysis."""
    success: bool
    reason: Optional[str] = None
    analysis: Optional[AccuracyAnalysis] = None
    adjustments: dict[str, float] = field(default_factory=dict)
    improvement_potential: float = 0.0
    confidence: float = 0.0


@dataclass
class InteractionProcessingResult:
    success: bool
    learning_triggered: bool
    profile: InterestProfile
    metrics: UserLearningMetrics
    learning: Optional[LearningOutcome] = None


# Adjustment key -> dimension in AccuracyAnalysis.accuracy_by_type
ACCURACY_DIMENSIONS = {
    "topic_match": "topic",
    "category_match": "category",
    "source_type_match": "source_type",
}

# Adjustment key -> bias in AccuracyAnalysis.biases
BIAS_DIMENSIONS = {
    "recency": "recency_bias",
    "quality": "quality_bias",
}


class InteractionLearner:
    """
    Adapts per-user scoring weights from observed behaviour.

    Records live in a bounded per-user buffer (evaluation_window, oldest
    evicted first) behind an InteractionRepository.
    """

    def __init__(
        self,
        interest_modeler: InterestModeler,
        relevance_scorer: RelevanceScorer,
        repository: InteractionRepository,
        settings: Optional[Settings] = None,
    ):
        self.interest_modeler = interest_modeler
        self.relevance_scorer = relevance_scorer
        self.repository = repository
        self.settings = settings or get_settings()
        self.learning_config: LearningSettings = self.settings.learning.model_copy()

    # =========================================================================
    # Recording
    # =========================================================================

    async def process_interaction(
        self,
        user_id: str,
        interaction: Interaction,
        content: ContentItem,
        now: Optional[datetime] = None,
    ) -> InteractionProcessingResult:
        """
        Full pipeline for one interaction: record, learn interests, maybe adapt weights.

        Returns:
            InteractionProcessingResult with the updated profile and metrics
        """
        now = now or utcnow()
        await self.record_interaction(user_id, interaction, content, now)
        profile = await self.interest_modeler.update_from_interaction(user_id, interaction, content, now)

        learning = None
        triggered = await self.should_trigger_learning(user_id, now)
        if triggered:
            learning = await self.perform_learning(user_id, now)

        return InteractionProcessingResult(
            success=True,
            learning_triggered=triggered,
            profile=profile,
            metrics=await self.get_user_learning_metrics(user_id, now),
            learning=learning,
        )

    async def record_interaction(
        self,
        user_id: str,
        interaction: Interaction,
        content: ContentItem,
        now: Optional[datetime] = None,
    ) -> InteractionRecord:
        """Snapshot the current prediction and pair it with the observed outcome."""
        if interaction is None or content is None:
            raise DataValidationError("interaction and content are required")

        now = now or utcnow()
        prediction = await self.relevance_scorer.calculate_relevance_score(user_id, content, now=now)

        engagement = interaction.engagement
        if engagement is None:
            engagement = calculate_engagement(interaction)

        record = InteractionRecord(
            timestamp=as_naive_utc(interaction.timestamp) or now,
            interaction=RecordedInteraction(
                type=interaction.type,
                duration=interaction.duration,
                engagement=engagement,
            ),
            content=ContentSummary.from_content(content),
            prediction=Prediction(
                relevance_score=prediction.total_score,
                confidence=prediction.confidence,
                breakdown=prediction.breakdown,
            ),
            actual=ActualOutcome(
                user_engagement=map_interaction_to_engagement(interaction),
                satisfaction=infer_satisfaction(interaction),
            ),
        )

        async with persistence_context("record interaction"):
            await self.repository.append(user_id, record, self.learning_config.evaluation_window)
        return record

    # =========================================================================
    # Learning
    # =========================================================================

    async def should_trigger_learning(self, user_id: str, now: Optional[datetime] = None) -> bool:
        """
        Learn when recent predictions are off, or periodically with enough data.
        """
        now = now or utcnow()
        records = await self._records(user_id)
        if len(records) < self.learning_config.min_interactions:
            return False

        recent = records[-TRIGGER_SAMPLE_SIZE:]
        mean_error = float(np.mean([r.error for r in recent]))
        if mean_error > self.learning_config.feedback_threshold:
            return True

        if len(records) < self.learning_config.periodic_min_interactions:
            return False
        metrics = await self._metrics(user_id)
        if metrics.last_learning_update is None:
            return True
        return hours_between(metrics.last_learning_update, now) >= self.learning_config.periodic_interval_hours

    async def perform_learning(self, user_id: str, now: Optional[datetime] = None) -> LearningOutcome:
        """
        Run one learning cycle and apply the resulting weight adjustments.

        Returns:
            LearningOutcome; success=False with reason "Insufficient data"
            when the buffer is too small
        """
        now = now or utcnow()
        records = await self._records(user_id)
        if len(records) < self.learning_config.min_interactions:
            return LearningOutcome(success=False, reason="Insufficient data")

        analysis = self.analyze_prediction_accuracy(records, now)
        adjustments = self.calculate_weight_adjustments(analysis)
        await self.apply_scoring_adjustments(user_id, adjustments)
        await self._update_learning_metrics(user_id, analysis, adjustments, now)

        logger.info(
            "Learning cycle completed",
            user_id=user_id,
            accuracy=round(analysis.overall_accuracy, 4),
            adjustments={k: v for k, v in adjustments.items() if v},
        )
        return LearningOutcome(
            success=True,
            analysis=analysis,
            adjustments=adjustments,
            improvement_potential=analysis.improvement_potential,
            confidence=analysis.confidence,
        )

    def analyze_prediction_accuracy(
        self,
        records: list[InteractionRecord],
        now: Optional[datetime] = None,
    ) -> AccuracyAnalysis:
        now = now or utcnow()
        analysis = AccuracyAnalysis(
            total_interactions=len(records),
            accuracy_by_type={
                "topic": self._dimension_accuracy(
                    records, lambda r: r.content.topics[0] if r.content.topics else None
                ),
                "category": self._dimension_accuracy(
                    records, lambda r: r.content.categories[0] if r.content.categories else None
                ),
                "source_type": self._dimension_accuracy(records, lambda r: r.content.source_type),
            },
            overall_accuracy=float(np.mean([r.accuracy for r in records])),
            biases=self.identify_prediction_biases(records, now),
            patterns=self.identify_learning_patterns(records),
        )
        analysis.improvement_potential = (
            MAX_REALISTIC_ACCURACY - analysis.overall_accuracy
        ) / MAX_REALISTIC_ACCURACY
        analysis.confidence = self._analysis_confidence(records, analysis)
        return analysis

    @staticmethod
    def _dimension_accuracy(
        records: list[InteractionRecord],
        key: Callable[[InteractionRecord], Optional[str]],
    ) -> DimensionAccuracy:
        grouped: dict[str, list[InteractionRecord]] = defaultdict(list)
        for record in records:
            grouped[key(record) or UNKNOWN_GROUP].append(record)

        groups = {}
        weighted_total = 0.0
        for name, members in grouped.items():
            accuracy = float(np.mean([r.accuracy for r in members]))
            groups[name] = GroupAccuracy(
                count=len(members),
                accuracy=accuracy,
                confidence=min(len(members) / 10, 1.0),
            )
            weighted_total += accuracy * len(members)

        return DimensionAccuracy(
            groups=groups,
            accuracy=weighted_total / len(records) if records else 0.0,
            coverage=len(groups),
        )

    @staticmethod
    def identify_prediction_biases(
        records: list[InteractionRecord],
        now: Optional[datetime] = None,
    ) -> dict[str, float]:
        """
        Mean signed error (positive = over-prediction) on recent and on
        high-quality content. A bias is absent when no record qualifies.
        """
        now = now or utcnow()
        biases = {}

        recent = [
            r for r in records
            if hours_between(r.content.published_at or r.timestamp, now) < RECENT_CONTENT_HOURS
        ]
        if recent:
            biases["recency_bias"] = float(np.mean([r.signed_error for r in recent]))

        high_quality = [r for r in records if r.prediction.breakdown.quality_score > 0.7]
        if high_quality:
            biases["quality_bias"] = float(np.mean([r.signed_error for r in high_quality]))

        return biases

    @staticmethod
    def identify_learning_patterns(records: list[InteractionRecord]) -> dict[str, list[EngagementPattern]]:
        """Mean engagement by hour of day and by source type, best first."""
        def patterns(key: Callable[[InteractionRecord], Any]) -> list[EngagementPattern]:
            grouped: dict[Any, list[float]] = defaultdict(list)
            for record in records:
                grouped[key(record)].append(record.actual.user_engagement)
            found = [
                EngagementPattern(key=k, avg_engagement=float(np.mean(v)), count=len(v))
                for k, v in grouped.items()
            ]
            return sorted(found, key=lambda p: p.avg_engagement, reverse=True)

        return {
            "time_of_day": patterns(lambda r: r.timestamp.hour),
            "source_type_preference": patterns(lambda r: r.content.source_type or UNKNOWN_GROUP),
        }

    @staticmethod
    def _analysis_confidence(records: list[InteractionRecord], analysis: AccuracyAnalysis) -> float:
        unique_topics = {r.content.topics[0] for r in records if r.content.topics}
        unique_categories = {r.content.categories[0] for r in records if r.content.categories}

        confidence = min(len(records) / 100, 0.4)
        confidence += min((len(unique_topics) + len(unique_categories)) / 20, 0.3)
        confidence += analysis.overall_accuracy * 0.3
        return min(confidence, 1.0)

    def calculate_weight_adjustments(self, analysis: AccuracyAnalysis) -> dict[str, float]:
        rate = self.learning_config.adaptation_rate
        adjustments = {name: 0.0 for name in ScoringWeights.model_fields}

        for weight_name, dimension in ACCURACY_DIMENSIONS.items():
            accuracy = analysis.accuracy_by_type[dimension].accuracy
            if accuracy < 0.7:
                adjustments[weight_name] = -rate
            elif accuracy > 0.9:
                adjustments[weight_name] = rate

        for weight_name, bias_name in BIAS_DIMENSIONS.items():
            bias = analysis.biases.get(bias_name)
            if bias is None:
                continue
            if bias > 0.2:
                adjustments[weight_name] = -rate
            elif bias < -0.2:
                adjustments[weight_name] = rate

        return adjustments

    async def apply_scoring_adjustments(self, user_id: str, adjustments: dict[str, float]) -> ScoringWeights:
        """Apply non-zero adjustments to this user's weights only."""
        config = await self.relevance_scorer.get_scoring_config(user_id)
        weights = config.weights.model_dump()
        floor = self.learning_config.weight_floor
        ceiling = self.learning_config.weight_ceiling

        changed = {}
        for name, delta in adjustments.items():
            if delta:
                weights[name] = max(floor, min(ceiling, weights[name] + delta))
                changed[name] = weights[name]

        if changed:
            config = await self.relevance_scorer.update_scoring_config(user_id, weights=changed)
        return config.weights

    async def _update_learning_metrics(
        self,
        user_id: str,
        analysis: AccuracyAnalysis,
        adjustments: dict[str, float],
        now: datetime,
    ) -> LearningMetrics:
        metrics = await self._metrics(user_id)

        trend = 0.0
        if metrics.last_accuracy is not None:
            trend = max(-1.0, min(1.0, (analysis.overall_accuracy - metrics.last_accuracy) * 10))

        metrics.last_learning_update = now
        metrics.learning_cycles += 1
        metrics.last_accuracy = analysis.overall_accuracy
        metrics.last_improvement_potential = analysis.improvement_potential
        metrics.last_adjustments = dict(adjustments)
        metrics.improvement_trend = trend

        async with persistence_context("save learning metrics"):
            await self.repository.save_metrics(user_id, metrics)
        return metrics

    # =========================================================================
    # Metrics & configuration
    # =========================================================================

    async def get_user_learning_metrics(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> UserLearningMetrics:
        now = now or utcnow()
        records = await self._records(user_id)
        metrics = await self._metrics(user_id)
        week_ago = now - timedelta(days=7)

        return UserLearningMetrics(
            total_interactions=len(records),
            recent_interactions=sum(1 for r in records if r.timestamp > week_ago),
            average_engagement=float(np.mean([r.actual.user_engagement for r in records])) if records else 0.0,
            prediction_accuracy=float(np.mean([r.accuracy for r in records])) if records else 0.0,
            last_learning_update=metrics.last_learning_update,
            learning_cycles=metrics.learning_cycles,
            improvement_trend=metrics.improvement_trend,
        )

    async def reset_learning_data(self, user_id: str) -> None:
        async with persistence_context("reset learning data"):
            await self.repository.clear(user_id)
        logger.info("Reset learning data", user_id=user_id)

    def get_learning_config(self) -> LearningSettings:
        return self.learning_config.model_copy()

    def update_learning_config(self, **changes: Any) -> LearningSettings:
        """
        Merge new values into the learning config.

        Raises:
            DataValidationError: On unknown keys or out-of-range values
        """
        unknown = set(changes) - set(LearningSettings.model_fields)
        if unknown:
            raise DataValidationError(f"Unknown learning config keys: {sorted(unknown)}")
        try:
            self.learning_config = LearningSettings(**{**self.learning_config.model_dump(), **changes})
        except ValidationError as e:
            raise DataValidationError(f"Invalid learning config: {e}") from e

        logger.info("Updated learning config", changes=changes)
        return self.get_learning_config()

    async def list_user_ids(self) -> list[str]:
        async with persistence_context("list learning users"):
            return await self.repository.list_user_ids()

    async def _records(self, user_id: str) -> list[InteractionRecord]:
        async with persistence_context("load interaction records"):
            return await self.repository.list_records(user_id)

    async def _metrics(self, user_id: str) -> LearningMetrics:
        async with persistence_context("load learning metrics"):
            metrics = await self.repository.get_metrics(user_id)
        return metrics or LearningMetrics()
