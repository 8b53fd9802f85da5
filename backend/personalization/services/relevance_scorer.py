"""
Relevance scoring - how well does a content item fit a user?

The score is a weighted sum of five factors, each in [0, 1]:

    Relevance = w_t * TopicScore
              + w_c * CategoryScore
              + w_s * SourceTypeScore
              + w_r * RecencyScore
              + w_q * QualityScore

normalized to an integer 0-100. Weights are stored per user so that the
interaction learner can adapt them without affecting anyone else; users
without a stored config use the defaults from settings.
"""
import math
from datetime import datetime
from typing import Optional

import structlog

from personalization.config import Settings, get_settings
from personalization.core.clock import hours_between, utcnow
from personalization.core.errors import DataValidationError, persistence_context
from personalization.models.domain import (
    BatchScoringResult,
    ContentItem,
    InterestKind,
    InterestMatch,
    InterestProfile,
    ItemFailure,
    RecencyDecay,
    RelevanceBreakdown,
    RelevanceResult,
    ScoreFactors,
    ScoredContent,
    ScoringConfig,
    ScoringWeights,
)
from personalization.repositories.base import ScoringConfigRepository
from personalization.services.interest_modeler import InterestModeler

logger = structlog.get_logger()


def normalize_score(score: float) -> int:
    """Map a raw weighted score to an integer in [0, 100], rounding half up."""
    return int(math.floor(max(0.0, min(100.0, score * 100)) + 0.5))


def calculate_length_score(word_count: int) -> float:
    """Prefer moderate length content (300-2000 words)."""
    if 300 <= word_count <= 2000:
        return 1.0
    if word_count < 300:
        return word_count / 300
    return max(0.3, 1 - (word_count - 2000) / 5000)


def _matched_entries(profile: InterestProfile, kind: InterestKind, names: list[str]):
    for name in names:
        entry = profile.find_interest(kind, name)
        if entry is not None:
            yield name, entry


class RelevanceScorer:
    """
    Scores and ranks content for individual users.

    Factor functions are pure; only config and profile lookups touch
    storage.
    """

    def __init__(
        self,
        interest_modeler: InterestModeler,
        config_repository: ScoringConfigRepository,
        settings: Optional[Settings] = None,
    ):
        self.interest_modeler = interest_modeler
        self.config_repository = config_repository
        self.settings = settings or get_settings()

    # =========================================================================
    # Factor scores
    # =========================================================================

    def calculate_topic_score(self, content: ContentItem, profile: InterestProfile) -> float:
        """
        Mean weight of matched topics plus a bonus for the share of topics matched.

        Returns:
            Score in [0, 1]; 0 if the content has no topics or none match
        """
        if not content.topics:
            return 0.0
        weights = [e.weight for _, e in _matched_entries(profile, InterestKind.TOPICS, content.topics)]
        if not weights:
            return 0.0
        average = sum(weights) / len(weights)
        match_bonus = min(len(weights) / len(content.topics), 1) * 0.2
        return min(average + match_bonus, 1.0)

    def calculate_category_score(self, content: ContentItem, profile: InterestProfile) -> float:
        if not content.categories:
            return 0.0
        weights = [
            e.weight for _, e in _matched_entries(profile, InterestKind.CATEGORIES, content.categories)
        ]
        if not weights:
            return 0.0
        return sum(weights) / len(weights)

    def calculate_source_type_score(self, content: ContentItem, profile: InterestProfile) -> float:
        # Neutral when unknown, low when the user never engaged with this type
        if not content.source_type:
            return 0.5
        entry = profile.find_interest(InterestKind.SOURCE_TYPES, content.source_type)
        return entry.weight if entry else 0.3

    def calculate_recency_score(
        self,
        content: ContentItem,
        recency_decay: RecencyDecay,
        now: Optional[datetime] = None,
    ) -> float:
        """Step function over content age; 0.5 when the content has no date."""
        reference = content.reference_date
        if reference is None:
            return 0.5

        age_hours = hours_between(reference, now or utcnow())
        if age_hours <= 24:
            return recency_decay.hourly
        if age_hours <= 24 * 7:
            return recency_decay.daily
        if age_hours <= 24 * 30:
            return recency_decay.weekly
        if age_hours <= 24 * 365:
            return recency_decay.monthly
        return recency_decay.older

    def calculate_quality_score(self, content: ContentItem) -> float:
        """
        Base 0.5, plus engagement ratio, source credibility and length bonuses.

        Returns:
            Score in [0.5, 1]
        """
        score = 0.5

        if content.metrics is not None:
            engagement = min(content.metrics.weighted_engagement / max(content.metrics.views, 1), 1)
            score += engagement * 0.3

        if content.source is not None and content.source.credibility_score:
            score += content.source.credibility_score * 0.2

        word_count = content.effective_word_count
        if word_count is not None:
            score += calculate_length_score(word_count) * 0.1

        return min(score, 1.0)

    @staticmethod
    def calculate_weighted_score(breakdown: RelevanceBreakdown, weights: ScoringWeights) -> float:
        return (
            breakdown.topic_score * weights.topic_match
            + breakdown.category_score * weights.category_match
            + breakdown.source_type_score * weights.source_type_match
            + breakdown.recency_score * weights.recency
            + breakdown.quality_score * weights.quality
        )

    @staticmethod
    def calculate_confidence(profile: InterestProfile, breakdown: RelevanceBreakdown) -> float:
        """More interaction history and stronger matches mean higher confidence."""
        confidence = 0.5
        confidence += min(profile.total_interactions / 50, 0.4)
        confidence += max(breakdown.topic_score, breakdown.category_score) * 0.3
        return min(confidence, 1.0)

    def get_score_factors(
        self,
        content: ContentItem,
        profile: InterestProfile,
        breakdown: RelevanceBreakdown,
    ) -> ScoreFactors:
        """Human-readable explanation of a score."""
        positive = []
        if breakdown.topic_score > 0.7:
            positive.append("Strong topic match")
        elif breakdown.topic_score > 0.4:
            positive.append("Moderate topic match")
        if breakdown.category_score > 0.7:
            positive.append("Strong category match")
        if breakdown.source_type_score > 0.7:
            positive.append("Preferred source type")
        if breakdown.recency_score > 0.8:
            positive.append("Very recent content")
        elif breakdown.recency_score > 0.6:
            positive.append("Recent content")
        if breakdown.quality_score > 0.7:
            positive.append("High quality content")

        def matches(kind: InterestKind, names: list[str]) -> list[InterestMatch]:
            return [
                InterestMatch(name=name, weight=e.weight, interaction_count=e.interaction_count)
                for name, e in _matched_entries(profile, kind, names)
            ]

        return ScoreFactors(
            positive=positive,
            top_topics=matches(InterestKind.TOPICS, content.topics),
            top_categories=matches(InterestKind.CATEGORIES, content.categories),
            score_distribution={
                "topic": normalize_score(breakdown.topic_score),
                "category": normalize_score(breakdown.category_score),
                "source_type": normalize_score(breakdown.source_type_score),
                "recency": normalize_score(breakdown.recency_score),
                "quality": normalize_score(breakdown.quality_score),
            },
        )

    def score_with_profile(
        self,
        profile: InterestProfile,
        content: ContentItem,
        config: ScoringConfig,
        weights: Optional[dict[str, float]] = None,
        now: Optional[datetime] = None,
    ) -> RelevanceResult:
        """
        Score one item against an already loaded profile and config.

        Args:
            profile: The user's interest profile
            content: Item to score
            config: The user's scoring config
            weights: Partial weight overrides for this call only
            now: Reference time for recency

        Returns:
            RelevanceResult with 0-100 score, breakdown, factors and confidence
        """
        if content is None:
            raise DataValidationError("content is required")

        effective = config.weights
        if weights:
            self._check_keys(weights, ScoringWeights)
            try:
                effective = ScoringWeights.model_validate({**config.weights.model_dump(), **weights})
            except ValueError as e:
                raise DataValidationError(f"Invalid weight override: {e}") from e

        breakdown = RelevanceBreakdown(
            topic_score=self.calculate_topic_score(content, profile),
            category_score=self.calculate_category_score(content, profile),
            source_type_score=self.calculate_source_type_score(content, profile),
            recency_score=self.calculate_recency_score(content, config.recency_decay, now),
            quality_score=self.calculate_quality_score(content),
        )
        breakdown.weighted_score = self.calculate_weighted_score(breakdown, effective)
        breakdown.normalized_score = normalize_score(breakdown.weighted_score)

        return RelevanceResult(
            total_score=breakdown.normalized_score,
            breakdown=breakdown,
            factors=self.get_score_factors(content, profile, breakdown),
            confidence=self.calculate_confidence(profile, breakdown),
        )

    # =========================================================================
    # User-facing operations
    # =========================================================================

    async def calculate_relevance_score(
        self,
        user_id: str,
        content: ContentItem,
        weights: Optional[dict[str, float]] = None,
        now: Optional[datetime] = None,
    ) -> RelevanceResult:
        """Score one item for a user."""
        if content is None:
            raise DataValidationError("content is required")
        profile = await self.interest_modeler.get_profile(user_id)
        config = await self.get_scoring_config(user_id)
        return self.score_with_profile(profile, content, config, weights, now)

    async def score_and_rank_content(
        self,
        user_id: str,
        items: list[ContentItem],
        weights: Optional[dict[str, float]] = None,
        diversify: Optional[dict[str, int]] = None,
        now: Optional[datetime] = None,
    ) -> list[ScoredContent]:
        """
        Score a list of items and sort them by relevance, highest first.

        Args:
            user_id: User to rank for
            items: Content items
            weights: Partial weight overrides
            diversify: If given, cap items per primary category / source name.
                Keys "max_per_category" and "max_per_source" fall back to
                settings when omitted.
            now: Reference time for recency

        Returns:
            Scored items in rank order
        """
        if items is None:
            raise DataValidationError("items are required")

        profile = await self.interest_modeler.get_profile(user_id)
        config = await self.get_scoring_config(user_id)

        scored = []
        for content in items:
            result = self.score_with_profile(profile, content, config, weights, now)
            scored.append(self._to_scored(content, result))

        # sorted() is stable, so equal scores keep input order
        ranked = sorted(scored, key=lambda s: s.relevance_score, reverse=True)

        if diversify is not None:
            ranked = self.apply_diversification(
                ranked,
                max_per_category=diversify.get("max_per_category", self.settings.scoring.max_per_category),
                max_per_source=diversify.get("max_per_source", self.settings.scoring.max_per_source),
            )

        logger.debug("Ranked content", user_id=user_id, items=len(items), returned=len(ranked))
        return ranked

    @staticmethod
    def apply_diversification(
        ranked: list[ScoredContent],
        max_per_category: int = 3,
        max_per_source: int = 2,
    ) -> list[ScoredContent]:
        """Drop items once their primary category or source name hits its cap."""
        category_counts: dict[str, int] = {}
        source_counts: dict[str, int] = {}
        diversified = []

        for item in ranked:
            category = item.content.primary_category
            source = item.content.source.name if item.content.source else None

            if category and category_counts.get(category, 0) >= max_per_category:
                continue
            if source and source_counts.get(source, 0) >= max_per_source:
                continue

            diversified.append(item)
            if category:
                category_counts[category] = category_counts.get(category, 0) + 1
            if source:
                source_counts[source] = source_counts.get(source, 0) + 1

        return diversified

    async def batch_score_content(
        self,
        user_id: str,
        items: list[Optional[ContentItem]],
        now: Optional[datetime] = None,
    ) -> BatchScoringResult:
        """Score many items; a failing item is recorded and the batch goes on."""
        profile = await self.interest_modeler.get_profile(user_id)
        config = await self.get_scoring_config(user_id)

        batch = BatchScoringResult()
        for content in items:
            try:
                result = self.score_with_profile(profile, content, config, now=now)
            except Exception as e:
                content_id = content.id if content is not None else None
                logger.warning(
                    "Failed to score content item",
                    user_id=user_id,
                    content_id=content_id,
                    error=str(e),
                )
                batch.failed += 1
                batch.failures.append(ItemFailure(content_id=content_id, error=str(e)))
                continue
            batch.processed += 1
            batch.results.append(self._to_scored(content, result))

        logger.info(
            "Batch scoring completed",
            user_id=user_id,
            processed=batch.processed,
            failed=batch.failed,
        )
        return batch

    # =========================================================================
    # Per-user configuration
    # =========================================================================

    def default_config(self) -> ScoringConfig:
        return ScoringConfig.from_settings(self.settings.scoring)

    async def get_scoring_config(self, user_id: str) -> ScoringConfig:
        """The user's stored config, or the defaults."""
        async with persistence_context("load scoring config"):
            config = await self.config_repository.get(user_id)
        return config or self.default_config()

    async def update_scoring_config(
        self,
        user_id: str,
        weights: Optional[dict[str, float]] = None,
        recency_decay: Optional[dict[str, float]] = None,
    ) -> ScoringConfig:
        """
        Merge partial weight / recency updates into the user's config.

        Raises:
            DataValidationError: If a value is outside [0, 1] or a key is unknown
        """
        config = await self.get_scoring_config(user_id)
        try:
            if weights:
                self._check_keys(weights, ScoringWeights)
                config.weights = ScoringWeights.model_validate(
                    {**config.weights.model_dump(), **weights}
                )
            if recency_decay:
                self._check_keys(recency_decay, RecencyDecay)
                config.recency_decay = RecencyDecay.model_validate(
                    {**config.recency_decay.model_dump(), **recency_decay}
                )
        except ValueError as e:
            raise DataValidationError(f"Invalid scoring config: {e}") from e

        config.updated_at = utcnow()
        async with persistence_context("save scoring config"):
            await self.config_repository.save(user_id, config)

        logger.info("Updated scoring config", user_id=user_id, weights=config.weights.model_dump())
        return config

    async def reset_scoring_config(self, user_id: str) -> ScoringConfig:
        """Return the user to the default config."""
        async with persistence_context("delete scoring config"):
            await self.config_repository.delete(user_id)
        logger.info("Reset scoring config", user_id=user_id)
        return self.default_config()

    @staticmethod
    def _check_keys(values: dict[str, float], model: type) -> None:
        unknown = set(values) - set(model.model_fields)
        if unknown:
            raise DataValidationError(f"Unknown keys: {sorted(unknown)}")

    @staticmethod
    def _to_scored(content: ContentItem, result: RelevanceResult) -> ScoredContent:
        return ScoredContent(
            content=content,
            relevance_score=result.total_score,
            breakdown=result.breakdown,
            factors=result.factors,
            confidence=result.confidence,
        )
