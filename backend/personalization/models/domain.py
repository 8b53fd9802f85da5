"""
Domain models for the personalization core.
These are the core business entities, independent of database representation.
"""
import math
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from personalization.config import ScoringDefaults
from personalization.core.clock import as_naive_utc, days_between, utcnow


# =============================================================================
# Enums
# =============================================================================

class Polarity(str, Enum):
    """Whether an interaction signals interest or disinterest."""
    POSITIVE = "positive"
    NEGATIVE = "negative"

    @property
    def sign(self) -> int:
        return 1 if self is Polarity.POSITIVE else -1


class InteractionType(str, Enum):
    """
    Kinds of user interaction with a content item.

    Unrecognised values parse to UNKNOWN, which is treated as a weak positive
    signal everywhere (the default arm of every lookup below).
    """
    VIEW = "view"
    CLICK = "click"
    SAVE = "save"
    SHARE = "share"
    LIKE = "like"
    COMMENT = "comment"
    DISMISS = "dismiss"
    DISLIKE = "dislike"
    REPORT = "report"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "InteractionType":
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return cls.UNKNOWN

    @property
    def polarity(self) -> Polarity:
        if self in NEGATIVE_INTERACTIONS:
            return Polarity.NEGATIVE
        return Polarity.POSITIVE

    @property
    def strength(self) -> float:
        """Magnitude of the interest update caused by this interaction."""
        return INTERACTION_STRENGTH.get(self, 0.1)

    @property
    def observed_engagement(self) -> float:
        """Engagement level used as ground truth by the learner."""
        return OBSERVED_ENGAGEMENT.get(self, 0.1)

    @property
    def base_engagement(self) -> float:
        """Starting point for engagement estimates before duration/scroll bonuses."""
        return BASE_ENGAGEMENT.get(self, 0.1)


NEGATIVE_INTERACTIONS = frozenset({
    InteractionType.DISMISS,
    InteractionType.DISLIKE,
    InteractionType.REPORT,
})

# Types that signal clear satisfaction, beyond a plain view/click
ENGAGED_INTERACTIONS = frozenset({
    InteractionType.SAVE,
    InteractionType.SHARE,
    InteractionType.LIKE,
    InteractionType.COMMENT,
})

INTERACTION_STRENGTH = {
    InteractionType.VIEW: 0.1,
    InteractionType.SAVE: 0.8,
    InteractionType.SHARE: 0.9,
    InteractionType.DISMISS: 0.5,
    InteractionType.LIKE: 0.7,
    InteractionType.COMMENT: 0.6,
    InteractionType.CLICK: 0.3,
}

OBSERVED_ENGAGEMENT = {
    InteractionType.DISMISS: 0.0,
    InteractionType.VIEW: 0.2,
    InteractionType.CLICK: 0.4,
    InteractionType.LIKE: 0.7,
    InteractionType.SAVE: 0.8,
    InteractionType.SHARE: 0.9,
    InteractionType.COMMENT: 0.8,
}

BASE_ENGAGEMENT = {
    InteractionType.VIEW: 0.1,
    InteractionType.CLICK: 0.3,
    InteractionType.SAVE: 0.8,
    InteractionType.SHARE: 0.9,
    InteractionType.LIKE: 0.7,
    InteractionType.COMMENT: 0.8,
    InteractionType.DISMISS: 0.0,
}


class InterestKind(str, Enum):
    """The three interest collections of a profile."""
    TOPICS = "topics"
    CATEGORIES = "categories"
    SOURCE_TYPES = "source_types"

    @property
    def case_sensitive(self) -> bool:
        # Source types are identifiers ("blog", "academic"), matched exactly
        return self is InterestKind.SOURCE_TYPES


class FocusAreaPriority(str, Enum):
    """User-assigned importance of a focus area."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> float:
        return {"high": 1.0, "medium": 0.8, "low": 0.6}[self.value]


class BreakingPriority(str, Enum):
    """Urgency class of a breaking news analysis."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    NORMAL = "normal"


class NotificationChannel(str, Enum):
    """How a notification should reach the user."""
    PUSH = "push"
    EMAIL = "email"
    IN_APP = "in-app"
    NONE = "none"


# =============================================================================
# Content & Interactions
# =============================================================================

class ContentMetrics(BaseModel):
    """Engagement counters reported by the content source."""
    views: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)
    shares: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)

    @property
    def weighted_engagement(self) -> float:
        return self.likes + self.shares * 2 + self.comments * 1.5


class ContentSource(BaseModel):
    """Publisher of a content item."""
    name: Optional[str] = None
    credibility_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class ContentItem(BaseModel):
    """A content item as delivered by the ingestion layer."""
    id: str
    title: str = ""
    description: Optional[str] = None
    body: Optional[str] = None
    summary: Optional[str] = None

    topics: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    source_type: Optional[str] = None

    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    metrics: Optional[ContentMetrics] = None
    source: Optional[ContentSource] = None
    word_count: Optional[int] = Field(default=None, ge=0)

    @property
    def primary_topic(self) -> Optional[str]:
        return self.topics[0] if self.topics else None

    @property
    def primary_category(self) -> Optional[str]:
        return self.categories[0] if self.categories else None

    @property
    def reference_date(self) -> Optional[datetime]:
        """Publication date, falling back to creation date."""
        return as_naive_utc(self.published_at or self.created_at)

    @property
    def effective_word_count(self) -> Optional[int]:
        if self.word_count is not None:
            return self.word_count
        if self.body is not None:
            return len(self.body.split())
        return None

    @property
    def text(self) -> str:
        """Title, description and body as one lowercase string for keyword search."""
        return f"{self.title or ''} {self.description or ''} {self.body or ''}".lower()


class Interaction(BaseModel):
    """A single user interaction event."""
    type: InteractionType
    duration: Optional[float] = Field(default=None, ge=0, description="Seconds spent")
    scroll_depth: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    engagement: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=utcnow)


# =============================================================================
# Interest Profile
# =============================================================================

EXPLICIT_INTEREST_WEIGHT = 0.8
POSITIVE_SEED_WEIGHT = 0.6
NEGATIVE_SEED_WEIGHT = 0.4
DECAY_FLOOR = 0.1
DECAY_PERIOD_DAYS = 7


class InterestEntry(BaseModel):
    """One weighted interest (a topic, a category or a source type)."""
    name: str
    weight: float = Field(default=0.5, ge=0.0, le=1.0)
    interaction_count: int = Field(default=0, ge=0)
    last_updated: datetime = Field(default_factory=utcnow)
    # Whole weeks of decay already folded into `weight` since last_updated
    decay_weeks_applied: int = Field(default=0, ge=0)


class ExplicitPreferences(BaseModel):
    """Interests the user declared directly."""
    topics: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    source_types: list[str] = Field(default_factory=list)

    def names(self, kind: InterestKind) -> list[str]:
        return getattr(self, kind.value)


class AdaptiveWeights(BaseModel):
    """Trust split between explicit and implicitly learned interests."""
    explicit_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    implicit_weight: float = Field(default=0.3, ge=0.0, le=1.0)


class InterestProfile(BaseModel):
    """Per-user weighted interest model."""
    user_id: str
    topics: list[InterestEntry] = Field(default_factory=list)
    categories: list[InterestEntry] = Field(default_factory=list)
    source_types: list[InterestEntry] = Field(default_factory=list)
    explicit_preferences: ExplicitPreferences = Field(default_factory=ExplicitPreferences)
    adaptive_weights: AdaptiveWeights = Field(default_factory=AdaptiveWeights)
    learning_rate: float = Field(default=0.1, ge=0.01, le=0.5)
    decay_rate: float = Field(default=0.95, ge=0.8, le=0.99)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def interests(self, kind: InterestKind) -> list[InterestEntry]:
        return getattr(self, kind.value)

    def find_interest(self, kind: InterestKind, name: str) -> Optional[InterestEntry]:
        if kind.case_sensitive:
            return next((e for e in self.interests(kind) if e.name == name), None)
        lowered = name.lower()
        return next((e for e in self.interests(kind) if e.name.lower() == lowered), None)

    def seed_explicit(self, kind: InterestKind, name: str, now: datetime) -> InterestEntry:
        """Raise an interest to at least the explicit weight, creating it if missing."""
        entry = self.find_interest(kind, name)
        if entry is None:
            entry = InterestEntry(
                name=name,
                weight=EXPLICIT_INTEREST_WEIGHT,
                interaction_count=0,
                last_updated=now,
            )
            self.interests(kind).append(entry)
        else:
            entry.weight = max(entry.weight, EXPLICIT_INTEREST_WEIGHT)
        return entry

    def update_interest(
        self,
        kind: InterestKind,
        name: str,
        polarity: Polarity,
        strength: float,
        now: datetime,
    ) -> InterestEntry:
        """Nudge one interest up or down by learning_rate * strength."""
        entry = self.find_interest(kind, name)
        if entry is None:
            entry = InterestEntry(
                name=name,
                weight=POSITIVE_SEED_WEIGHT if polarity is Polarity.POSITIVE else NEGATIVE_SEED_WEIGHT,
                interaction_count=1,
                last_updated=now,
            )
            self.interests(kind).append(entry)
            return entry

        adjustment = self.learning_rate * abs(strength) * polarity.sign
        entry.weight = max(0.0, min(1.0, entry.weight + adjustment))
        entry.interaction_count += 1
        entry.last_updated = now
        entry.decay_weeks_applied = 0
        return entry

    def apply_decay(self, now: Optional[datetime] = None) -> bool:
        """
        Decay interests that have not been touched for more than a week.

        weight *= decay_rate ** floor(days / 7), floored at 0.1. Only weeks not
        yet applied are folded in, so repeated passes with the same
        last_updated are idempotent.

        Returns:
            True if any weight changed
        """
        now = now or utcnow()
        changed = False
        for kind in InterestKind:
            for entry in self.interests(kind):
                days = days_between(entry.last_updated, now)
                if days <= DECAY_PERIOD_DAYS:
                    continue
                weeks = math.floor(days / DECAY_PERIOD_DAYS)
                pending = weeks - entry.decay_weeks_applied
                if pending <= 0:
                    continue
                entry.weight = max(DECAY_FLOOR, entry.weight * self.decay_rate ** pending)
                entry.decay_weeks_applied = weeks
                changed = True
        return changed

    def top_interests(self, kind: InterestKind, limit: int = 10) -> list[InterestEntry]:
        return sorted(self.interests(kind), key=lambda e: e.weight, reverse=True)[:limit]

    @property
    def total_interactions(self) -> int:
        """Interactions recorded against topics and categories."""
        return sum(e.interaction_count for e in self.topics) + sum(
            e.interaction_count for e in self.categories
        )


class InterestSummaryEntry(BaseModel):
    name: str
    weight: float
    interaction_count: int


class ProfileStats(BaseModel):
    total_topics: int
    total_categories: int
    total_source_types: int
    learning_rate: float
    decay_rate: float
    last_updated: datetime


class InterestSummary(BaseModel):
    """Top interests of a user, for display."""
    top_topics: list[InterestSummaryEntry]
    top_categories: list[InterestSummaryEntry]
    top_source_types: list[InterestSummaryEntry]
    explicit_preferences: ExplicitPreferences
    profile_stats: ProfileStats


# =============================================================================
# Relevance Scoring
# =============================================================================

class ScoringWeights(BaseModel):
    """Weights of the five relevance factors."""
    topic_match: float = Field(default=0.4, ge=0.0, le=1.0)
    category_match: float = Field(default=0.3, ge=0.0, le=1.0)
    source_type_match: float = Field(default=0.15, ge=0.0, le=1.0)
    recency: float = Field(default=0.1, ge=0.0, le=1.0)
    quality: float = Field(default=0.05, ge=0.0, le=1.0)


class RecencyDecay(BaseModel):
    """Recency score per content age tier."""
    hourly: float = Field(default=1.0, ge=0.0, le=1.0)
    daily: float = Field(default=0.9, ge=0.0, le=1.0)
    weekly: float = Field(default=0.7, ge=0.0, le=1.0)
    monthly: float = Field(default=0.5, ge=0.0, le=1.0)
    older: float = Field(default=0.2, ge=0.0, le=1.0)


class ScoringConfig(BaseModel):
    """A user's relevance scoring configuration."""
    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    recency_decay: RecencyDecay = Field(default_factory=RecencyDecay)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_settings(cls, defaults: ScoringDefaults) -> "ScoringConfig":
        return cls(
            weights=ScoringWeights(
                topic_match=defaults.weight_topic_match,
                category_match=defaults.weight_category_match,
                source_type_match=defaults.weight_source_type_match,
                recency=defaults.weight_recency,
                quality=defaults.weight_quality,
            ),
            recency_decay=RecencyDecay(
                hourly=defaults.recency_hourly,
                daily=defaults.recency_daily,
                weekly=defaults.recency_weekly,
                monthly=defaults.recency_monthly,
                older=defaults.recency_older,
            ),
        )


class RelevanceBreakdown(BaseModel):
    """Per-factor scores behind a relevance score."""
    topic_score: float
    category_score: float
    source_type_score: float
    recency_score: float
    quality_score: float
    weighted_score: float = 0.0
    normalized_score: int = 0


class InterestMatch(BaseModel):
    name: str
    weight: float
    interaction_count: int


class ScoreFactors(BaseModel):
    """Human-readable explanation of a relevance score."""
    positive: list[str] = Field(default_factory=list)
    top_topics: list[InterestMatch] = Field(default_factory=list)
    top_categories: list[InterestMatch] = Field(default_factory=list)
    score_distribution: dict[str, int] = Field(default_factory=dict)


class RelevanceResult(BaseModel):
    """Relevance of one content item for one user."""
    total_score: int = Field(ge=0, le=100)
    breakdown: RelevanceBreakdown
    factors: ScoreFactors
    confidence: float = Field(ge=0.0, le=1.0)


class ScoredContent(BaseModel):
    """A content item with its relevance result attached."""
    content: ContentItem
    relevance_score: int
    breakdown: RelevanceBreakdown
    factors: ScoreFactors
    confidence: float


class ItemFailure(BaseModel):
    content_id: Optional[str]
    error: str


class BatchScoringResult(BaseModel):
    """Outcome of scoring a batch where single items may fail."""
    processed: int = 0
    failed: int = 0
    results: list[ScoredContent] = Field(default_factory=list)
    failures: list[ItemFailure] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


# =============================================================================
# Interaction Learning
# =============================================================================

class RecordedInteraction(BaseModel):
    type: InteractionType
    duration: Optional[float] = None
    engagement: float


class ContentSummary(BaseModel):
    """The parts of a content item the learner needs later."""
    id: str
    topics: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    source_type: Optional[str] = None
    published_at: Optional[datetime] = None

    @classmethod
    def from_content(cls, content: ContentItem) -> "ContentSummary":
        return cls(
            id=content.id,
            topics=list(content.topics),
            categories=list(content.categories),
            source_type=content.source_type,
            published_at=content.reference_date,
        )


class Prediction(BaseModel):
    relevance_score: int
    confidence: float
    breakdown: RelevanceBreakdown


class ActualOutcome(BaseModel):
    user_engagement: float = Field(ge=0.0, le=1.0)
    satisfaction: float = Field(ge=0.0, le=1.0)


class InteractionRecord(BaseModel):
    """Predicted versus observed engagement for one interaction."""
    timestamp: datetime
    interaction: RecordedInteraction
    content: ContentSummary
    prediction: Prediction
    actual: ActualOutcome

    @property
    def signed_error(self) -> float:
        """Positive when the scorer over-predicted engagement."""
        return self.prediction.relevance_score / 100 - self.actual.user_engagement

    @property
    def error(self) -> float:
        return abs(self.signed_error)

    @property
    def accuracy(self) -> float:
        return 1 - self.error


class LearningMetrics(BaseModel):
    """Per-user bookkeeping of learning cycles."""
    last_learning_update: Optional[datetime] = None
    learning_cycles: int = 0
    last_accuracy: Optional[float] = None
    last_improvement_potential: Optional[float] = None
    last_adjustments: dict[str, float] = Field(default_factory=dict)
    improvement_trend: float = 0.0


class UserLearningMetrics(BaseModel):
    """Learning state of a user as reported to callers."""
    total_interactions: int
    recent_interactions: int
    average_engagement: float
    prediction_accuracy: float
    last_learning_update: Optional[datetime]
    learning_cycles: int
    improvement_trend: float


# =============================================================================
# Focus Areas
# =============================================================================

class FocusArea(BaseModel):
    """A named, persistent content filter owned by a user."""
    id: str
    user_id: str
    name: str
    description: str = ""
    topics: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    source_types: list[str] = Field(default_factory=list)
    priority: FocusAreaPriority = FocusAreaPriority.MEDIUM
    is_active: bool = True
    content_count: int = 0
    last_matched_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FocusAreaMatch(BaseModel):
    """How well one content item matches one focus area."""
    focus_area_id: str
    priority: FocusAreaPriority
    score: float
    breakdown: dict[str, float]
    matched_elements: dict[str, list[str]]


class FilteredContent(BaseModel):
    """A content item that passed the user's active focus filters."""
    content: ContentItem
    focus_area_matches: list[FocusAreaMatch] = Field(default_factory=list)
    focus_area_score: float = 0.0
    matching_focus_areas: list[str] = Field(default_factory=list)


class FocusAreaSuggestion(BaseModel):
    """A focus area proposed from templates or from interaction history."""
    name: str
    description: str
    topics: list[str]
    categories: list[str]
    keywords: list[str]
    source_types: list[str]
    priority: FocusAreaPriority
    reason: str
    confidence: float
    template_id: Optional[str] = None


class InteractionHistoryEntry(BaseModel):
    """An interaction paired with its content, as used for suggestions."""
    type: InteractionType
    content: ContentItem


# =============================================================================
# Breaking News
# =============================================================================

class BreakingFactorScores(BaseModel):
    velocity: float = 0.0
    engagement: float = 0.0
    keywords: float = 0.0
    source: float = 0.0
    recency: float = 0.0
    uniqueness: float = 0.0


class AnalysisContext(BaseModel):
    """Optional live signals supplied alongside a content item."""
    engagement: Optional[ContentMetrics] = None


class BreakingNewsAnalysis(BaseModel):
    """Urgency analysis of a content item."""
    content_id: str
    topics: list[str] = Field(default_factory=list)
    timestamp: datetime
    scores: BreakingFactorScores
    composite_score: float
    priority: BreakingPriority
    is_breaking_news: bool
    confidence: float
    factors: list[str] = Field(default_factory=list)
    recommended_actions: list[str] = Field(default_factory=list)


class TrackedContent(BaseModel):
    """An analyzed item remembered for velocity and uniqueness scoring."""
    content_id: str
    topics: list[str]
    timestamp: datetime
    composite_score: float


class NotificationDecision(BaseModel):
    should_notify: bool = False
    reason: str = ""
    notification_type: NotificationChannel = NotificationChannel.NONE
    priority: BreakingPriority
    cooldown_active: bool = False
    relevance_score: Optional[float] = None


class Notification(BaseModel):
    id: str
    user_id: str
    content_id: str
    topics: list[str] = Field(default_factory=list)
    type: NotificationChannel
    priority: BreakingPriority
    title: str
    message: str
    timestamp: datetime
    delivered: bool = False
    opened: bool = False


class NotificationResult(BaseModel):
    success: bool
    notification: Notification
    delivery_method: NotificationChannel


def model_to_json(model: BaseModel) -> dict[str, Any]:
    """Serialize a model to JSON-compatible primitives (for JSON columns)."""
    return model.model_dump(mode="json")
