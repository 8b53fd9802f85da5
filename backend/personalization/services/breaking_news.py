"""
Breaking news detection and notification decisions.

Each analyzed item gets six factor scores in [0, 1]:

    Composite = 0.25 * Velocity      (same-topic items in the last hour)
              + 0.20 * Engagement    (weighted interactions per hour of age)
              + 0.20 * Keywords      (breaking-news lexicon hits)
              + 0.15 * Source        (publisher credibility)
              + 0.15 * Recency       (minutes since publication)
              + 0.05 * Uniqueness    (topic novelty over the last 4 hours)

Analyzed items are remembered per topic for 24 hours, so detection depends
on what was analyzed before: a burst of same-topic items raises velocity and
lowers uniqueness for the items that follow.
"""
import re
from datetime import datetime, timedelta
from typing import Any, Optional

import numpy as np
import structlog
from pydantic import BaseModel, Field, ValidationError

from personalization.config import Settings, get_settings
from personalization.core.clock import utcnow
from personalization.core.errors import DataValidationError, DeliveryError, persistence_context
from personalization.models.domain import (
    AnalysisContext,
    BreakingFactorScores,
    BreakingNewsAnalysis,
    BreakingPriority,
    ContentItem,
    ContentMetrics,
    InterestKind,
    InterestProfile,
    Notification,
    NotificationChannel,
    NotificationDecision,
    NotificationResult,
    TrackedContent,
)
from personalization.repositories.base import NotificationRepository, NotificationSender

logger = structlog.get_logger()


class Thresholds(BaseModel):
    critical: float
    high: float
    medium: float


class TimeWindows(BaseModel):
    """Analysis windows in minutes."""
    immediate: int = 15
    short: int = 60
    medium: int = 240
    long: int = 1440


class DetectionConfig(BaseModel):
    """Tunable parameters of the detector."""
    velocity_thresholds: Thresholds = Field(
        default_factory=lambda: Thresholds(critical=10, high=5, medium=3)
    )
    engagement_thresholds: Thresholds = Field(
        default_factory=lambda: Thresholds(critical=1000, high=500, medium=200)
    )
    breaking_keywords: list[str] = Field(
        default_factory=lambda: [
            "breaking", "urgent", "alert", "emergency", "developing",
            "just in", "live", "update", "confirmed", "reports",
            "explosion", "attack", "earthquake", "fire", "crash",
            "death", "killed", "injured", "missing", "rescue",
        ]
    )
    source_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "reuters": 1.0,
            "ap": 1.0,
            "bbc": 0.95,
            "cnn": 0.9,
            "nytimes": 0.95,
            "washingtonpost": 0.9,
            "guardian": 0.9,
        }
    )
    default_source_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    time_windows: TimeWindows = Field(default_factory=TimeWindows)
    breaking_news_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    notification_cooldown_minutes: int = Field(default=30, ge=0)
    tracker_window_hours: int = Field(default=24, ge=1)
    notification_history_days: int = Field(default=7, ge=1)


COMPOSITE_WEIGHTS = {
    "velocity": 0.25,
    "engagement": 0.2,
    "keywords": 0.2,
    "source": 0.15,
    "recency": 0.15,
    "uniqueness": 0.05,
}

SEVERE_KEYWORDS = frozenset({"breaking", "urgent", "alert", "emergency"})
DEVELOPING_KEYWORDS = frozenset({"developing", "just in", "live", "confirmed"})

TITLE_PREFIXES = {
    BreakingPriority.CRITICAL: "🚨 URGENT: ",
    BreakingPriority.HIGH: "⚡ Breaking: ",
    BreakingPriority.MEDIUM: "📰 News: ",
    BreakingPriority.NORMAL: "",
}

MESSAGE_MAX_LENGTH = 100
FALLBACK_MESSAGE = "Breaking news update available"
MINIMUM_USER_RELEVANCE = 0.3
STRONG_SIGNAL = 0.7
EPOCH = datetime(1970, 1, 1)


def topic_jaccard(topics_a: list[str], topics_b: list[str]) -> float:
    a, b = set(topics_a), set(topics_b)
    union = a | b
    return len(a & b) / len(union) if union else 0.0


class BreakingNewsDetector:
    """
    Scores content urgency and decides who gets notified.

    The per-topic content tracker lives in process memory; notification
    history goes through a NotificationRepository so cooldowns survive
    restarts when a persistent repository is used.
    """

    def __init__(
        self,
        notification_repository: NotificationRepository,
        sender: Optional[NotificationSender] = None,
        settings: Optional[Settings] = None,
    ):
        self.notification_repository = notification_repository
        self.sender = sender
        self.settings = settings or get_settings()

        breaking = self.settings.breaking_news
        self.config = DetectionConfig(
            breaking_news_threshold=breaking.threshold,
            notification_cooldown_minutes=breaking.notification_cooldown_minutes,
            tracker_window_hours=breaking.tracker_window_hours,
            notification_history_days=breaking.notification_history_days,
        )

        # topic -> tracked items, oldest first
        self.content_tracker: dict[str, list[TrackedContent]] = {}

    # =========================================================================
    # Analysis
    # =========================================================================

    def analyze_content(
        self,
        content: ContentItem,
        context: Optional[AnalysisContext] = None,
        now: Optional[datetime] = None,
    ) -> BreakingNewsAnalysis:
        """
        Analyze one item and remember it for later velocity/uniqueness scoring.

        Args:
            content: Item to analyze
            context: Live engagement counters, preferred over content.metrics
            now: Reference time

        Returns:
            BreakingNewsAnalysis with factor scores, composite score and priority
        """
        if content is None:
            raise DataValidationError("content is required")

        now = now or utcnow()
        context = context or AnalysisContext()

        scores = BreakingFactorScores(
            velocity=self.calculate_velocity_score(content, now),
            engagement=self.calculate_engagement_score(content, context, now),
            keywords=self.calculate_keyword_score(content),
            source=self.calculate_source_score(content),
            recency=self.calculate_recency_score(content, now),
            uniqueness=self.calculate_uniqueness_score(content, now),
        )
        composite = self.calculate_composite_score(scores)
        priority = self.determine_priority(composite, scores)
        is_breaking = composite >= self.config.breaking_news_threshold
        confidence = self.calculate_confidence(scores, context)

        analysis = BreakingNewsAnalysis(
            content_id=content.id,
            topics=list(content.topics),
            timestamp=now,
            scores=scores,
            composite_score=composite,
            priority=priority,
            is_breaking_news=is_breaking,
            confidence=confidence,
            factors=self.identify_contributing_factors(scores),
        )
        analysis.recommended_actions = self.generate_recommended_actions(analysis)

        self.track_content(content, analysis, now)

        if is_breaking:
            logger.info(
                "Breaking news detected",
                content_id=content.id,
                composite_score=round(composite, 3),
                priority=priority.value,
            )
        return analysis

    def calculate_velocity_score(self, content: ContentItem, now: Optional[datetime] = None) -> float:
        if not content.topics:
            return 0.0

        count = len(self.get_related_content(content.primary_topic, self.config.time_windows.short, now))
        if count == 0:
            return 0.0

        thresholds = self.config.velocity_thresholds
        if count >= thresholds.critical:
            return 1.0
        if count >= thresholds.high:
            return 0.8
        if count >= thresholds.medium:
            return 0.6
        return min(count / thresholds.medium, 0.4)

    def calculate_engagement_score(
        self,
        content: ContentItem,
        context: Optional[AnalysisContext] = None,
        now: Optional[datetime] = None,
    ) -> float:
        metrics: Optional[ContentMetrics] = (context.engagement if context else None) or content.metrics
        if metrics is None:
            return 0.0

        age_hours = max(self._content_age(content, now).total_seconds() / 3600, 0.1)
        velocity = metrics.weighted_engagement / age_hours

        thresholds = self.config.engagement_thresholds
        if velocity >= thresholds.critical:
            return 1.0
        if velocity >= thresholds.high:
            return 0.8
        if velocity >= thresholds.medium:
            return 0.6
        return min(velocity / thresholds.medium, 0.4)

    def calculate_keyword_score(self, content: ContentItem) -> float:
        """
        Substring hits against the lexicon: 0.3 for severe words, 0.2 for
        developing-story words, 0.1 otherwise, plus a multi-match bonus.
        """
        text = content.text
        score = 0.0
        matches = 0
        for keyword in self.config.breaking_keywords:
            keyword = keyword.lower()
            if keyword not in text:
                continue
            matches += 1
            if keyword in SEVERE_KEYWORDS:
                score += 0.3
            elif keyword in DEVELOPING_KEYWORDS:
                score += 0.2
            else:
                score += 0.1

        if matches > 1:
            score += min(matches * 0.1, 0.3)
        return min(score, 1.0)

    def calculate_source_score(self, content: ContentItem) -> float:
        """
        Named-source table first, then the source's own credibility, then the default.

        Short keys ("ap", "bbc") must match a whole word of the source name;
        longer keys may appear anywhere in the name with spaces removed.
        """
        source = content.source
        if source is None or not source.name:
            return self.config.default_source_weight

        name = source.name.lower()
        tokens = set(re.findall(r"[a-z0-9]+", name))
        compact = re.sub(r"[^a-z0-9]", "", name)
        for key, weight in self.config.source_weights.items():
            if len(key) <= 3:
                if key in tokens:
                    return weight
            elif key in compact:
                return weight

        if source.credibility_score is not None:
            return source.credibility_score
        return self.config.default_source_weight

    def calculate_recency_score(self, content: ContentItem, now: Optional[datetime] = None) -> float:
        minutes = self._content_age(content, now).total_seconds() / 60
        windows = self.config.time_windows
        if minutes <= windows.immediate:
            return 1.0
        if minutes <= windows.short:
            return 0.8
        if minutes <= windows.medium:
            return 0.6
        if minutes <= windows.long:
            return 0.3
        return 0.1

    def calculate_uniqueness_score(self, content: ContentItem, now: Optional[datetime] = None) -> float:
        if not content.topics:
            return 0.5

        recent = self.get_related_content(content.primary_topic, self.config.time_windows.medium, now)
        if not recent:
            return 1.0

        similarity = float(np.mean([topic_jaccard(content.topics, item.topics) for item in recent]))
        return max(0.0, 1 - similarity)

    @staticmethod
    def calculate_composite_score(scores: BreakingFactorScores) -> float:
        values = scores.model_dump()
        return sum(values[name] * weight for name, weight in COMPOSITE_WEIGHTS.items())

    @staticmethod
    def determine_priority(composite: float, scores: BreakingFactorScores) -> BreakingPriority:
        if composite >= 0.9 or scores.keywords >= 0.8:
            return BreakingPriority.CRITICAL
        if composite >= 0.7 or scores.velocity >= 0.8:
            return BreakingPriority.HIGH
        if composite >= 0.5:
            return BreakingPriority.MEDIUM
        return BreakingPriority.NORMAL

    @staticmethod
    def calculate_confidence(scores: BreakingFactorScores, context: Optional[AnalysisContext] = None) -> float:
        strong_signals = sum(1 for v in scores.model_dump().values() if v >= STRONG_SIGNAL)
        confidence = min(strong_signals * 0.2, 0.6)
        if scores.source >= 0.9:
            confidence += 0.2
        if context is not None and context.engagement is not None:
            confidence += 0.1
        if scores.keywords >= 0.5:
            confidence += 0.1
        return min(confidence, 1.0)

    @staticmethod
    def identify_contributing_factors(scores: BreakingFactorScores) -> list[str]:
        factors = []
        if scores.velocity >= 0.6:
            factors.append("High content velocity detected")
        if scores.engagement >= 0.6:
            factors.append("High engagement velocity")
        if scores.keywords >= 0.5:
            factors.append("Breaking news keywords present")
        if scores.source >= 0.8:
            factors.append("High credibility source")
        if scores.recency >= 0.8:
            factors.append("Very recent content")
        if scores.uniqueness >= 0.7:
            factors.append("Unique or novel topic")
        return factors

    @staticmethod
    def generate_recommended_actions(analysis: BreakingNewsAnalysis) -> list[str]:
        actions = []
        if analysis.is_breaking_news:
            actions.append("Send immediate notifications to interested users")
            if analysis.priority is BreakingPriority.CRITICAL:
                actions.extend(["Escalate to editorial team", "Consider push notifications"])
            elif analysis.priority is BreakingPriority.HIGH:
                actions.extend(["Feature in breaking news section", "Send email alerts to subscribers"])

        if analysis.scores.velocity >= 0.6:
            actions.extend(["Monitor for developing story", "Aggregate related content"])
        if analysis.confidence < 0.5:
            actions.append("Require manual review before notification")
        return actions

    # =========================================================================
    # Notifications
    # =========================================================================

    async def should_notify_user(
        self,
        user_id: str,
        content: ContentItem,
        analysis: BreakingNewsAnalysis,
        profile: Optional[InterestProfile] = None,
        now: Optional[datetime] = None,
    ) -> NotificationDecision:
        """
        Decide whether and how to notify a user, checking in order: breaking
        status, topic cooldown, user relevance, then priority-specific thresholds.
        """
        if content is None or analysis is None:
            raise DataValidationError("content and analysis are required")

        decision = NotificationDecision(priority=analysis.priority)

        if not analysis.is_breaking_news:
            decision.reason = "Content not classified as breaking news"
            return decision

        if await self.is_notification_cooldown_active(user_id, content, now):
            decision.cooldown_active = True
            decision.reason = "Notification cooldown active"
            return decision

        relevance = self.calculate_user_relevance(content, profile)
        decision.relevance_score = relevance
        if relevance < MINIMUM_USER_RELEVANCE:
            decision.reason = "Content not relevant to user interests"
            return decision

        if analysis.priority is BreakingPriority.CRITICAL and relevance >= 0.7:
            decision.notification_type = NotificationChannel.PUSH
            decision.reason = "Critical breaking news relevant to user"
        elif analysis.priority is BreakingPriority.HIGH and relevance >= 0.5:
            decision.notification_type = NotificationChannel.EMAIL
            decision.reason = "High priority breaking news relevant to user"
        elif relevance >= 0.6:
            decision.notification_type = NotificationChannel.IN_APP
            decision.reason = "Breaking news relevant to user interests"
        else:
            decision.reason = "Relevance score too low for notification"
            return decision

        decision.should_notify = True
        return decision

    async def send_notification(
        self,
        user_id: str,
        content: ContentItem,
        analysis: BreakingNewsAnalysis,
        notification_type: NotificationChannel,
        now: Optional[datetime] = None,
    ) -> NotificationResult:
        """
        Build a notification, hand it to the sender (if any) and record it.

        Raises:
            DeliveryError: If the sender fails; nothing is recorded then
        """
        if content is None or analysis is None:
            raise DataValidationError("content and analysis are required")

        now = now or utcnow()
        notification = Notification(
            id=f"breaking_{content.id}_{int((now - EPOCH).total_seconds() * 1000)}",
            user_id=user_id,
            content_id=content.id,
            topics=list(content.topics),
            type=notification_type,
            priority=analysis.priority,
            title=self.generate_notification_title(content, analysis),
            message=self.generate_notification_message(content),
            timestamp=now,
        )

        if self.sender is not None:
            try:
                await self.sender.send(notification)
            except Exception as e:
                logger.error(
                    "Notification delivery failed",
                    user_id=user_id,
                    content_id=content.id,
                    error=str(e),
                )
                raise DeliveryError(f"Failed to deliver notification {notification.id}: {e}") from e

        notification.delivered = True
        await self.record_notification(notification, now)

        logger.info(
            "Notification sent",
            user_id=user_id,
            content_id=content.id,
            channel=notification_type.value,
            priority=analysis.priority.value,
        )
        return NotificationResult(success=True, notification=notification, delivery_method=notification_type)

    @staticmethod
    def generate_notification_title(content: ContentItem, analysis: BreakingNewsAnalysis) -> str:
        return f"{TITLE_PREFIXES[analysis.priority]}{content.title}"

    @staticmethod
    def generate_notification_message(content: ContentItem) -> str:
        description = content.description or content.summary or ""
        if len(description) > MESSAGE_MAX_LENGTH:
            description = description[:MESSAGE_MAX_LENGTH] + "..."
        return description or FALLBACK_MESSAGE

    @staticmethod
    def calculate_user_relevance(content: ContentItem, profile: Optional[InterestProfile]) -> float:
        """
        Average matched interest weight; categories count at 80%.

        Returns:
            0.5 without a profile, 0 when nothing matches
        """
        if profile is None:
            return 0.5

        total = 0.0
        matches = 0
        for topic in content.topics:
            entry = profile.find_interest(InterestKind.TOPICS, topic)
            if entry is not None:
                total += entry.weight
                matches += 1
        for category in content.categories:
            entry = profile.find_interest(InterestKind.CATEGORIES, category)
            if entry is not None:
                total += entry.weight * 0.8
                matches += 1

        return total / matches if matches else 0.0

    async def is_notification_cooldown_active(
        self,
        user_id: str,
        content: ContentItem,
        now: Optional[datetime] = None,
    ) -> bool:
        """True if the user got a notification sharing a topic with `content` within the cooldown."""
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.config.notification_cooldown_minutes)
        topics = set(content.topics)

        async with persistence_context("load notification history"):
            history = await self.notification_repository.list_for_user(user_id)
        return any(n.timestamp > cutoff and topics.intersection(n.topics) for n in history)

    async def record_notification(self, notification: Notification, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        async with persistence_context("record notification"):
            await self.notification_repository.add(notification)
            await self.notification_repository.prune(
                now - timedelta(days=self.config.notification_history_days)
            )

    # =========================================================================
    # Tracking state
    # =========================================================================

    def get_related_content(
        self,
        topic: str,
        window_minutes: int,
        now: Optional[datetime] = None,
    ) -> list[TrackedContent]:
        cutoff = (now or utcnow()) - timedelta(minutes=window_minutes)
        return [item for item in self.content_tracker.get(topic, []) if item.timestamp > cutoff]

    def track_content(
        self,
        content: ContentItem,
        analysis: BreakingNewsAnalysis,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        cutoff = now - timedelta(hours=self.config.tracker_window_hours)
        for topic in content.topics:
            items = [i for i in self.content_tracker.get(topic, []) if i.timestamp > cutoff]
            items.append(
                TrackedContent(
                    content_id=content.id,
                    topics=list(content.topics),
                    timestamp=now,
                    composite_score=analysis.composite_score,
                )
            )
            self.content_tracker[topic] = items

    async def prune_tracking_data(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Drop tracker entries older than the tracker window and expired notifications."""
        now = now or utcnow()
        cutoff = now - timedelta(hours=self.config.tracker_window_hours)

        removed_items = 0
        for topic in list(self.content_tracker):
            kept = [i for i in self.content_tracker[topic] if i.timestamp > cutoff]
            removed_items += len(self.content_tracker[topic]) - len(kept)
            if kept:
                self.content_tracker[topic] = kept
            else:
                del self.content_tracker[topic]

        async with persistence_context("prune notification history"):
            removed_notifications = await self.notification_repository.prune(
                now - timedelta(days=self.config.notification_history_days)
            )

        return {"tracked_items_removed": removed_items, "notifications_removed": removed_notifications}

    async def clear_tracking_data(self) -> None:
        self.content_tracker.clear()
        async with persistence_context("clear notification history"):
            await self.notification_repository.clear()
        logger.info("Cleared breaking news tracking data")

    async def get_statistics(self) -> dict[str, Any]:
        async with persistence_context("load notification history"):
            notifications = await self.notification_repository.list_all()

        by_priority = {p.value: 0 for p in BreakingPriority}
        for notification in notifications:
            by_priority[notification.priority.value] += 1

        return {
            "total_tracked_topics": len(self.content_tracker),
            "total_notifications_sent": len(notifications),
            "notifications_by_priority": by_priority,
            "active_users": len({n.user_id for n in notifications}),
        }

    # =========================================================================
    # Configuration
    # =========================================================================

    def get_detection_config(self) -> DetectionConfig:
        return self.config.model_copy(deep=True)

    def update_detection_config(self, **changes: Any) -> DetectionConfig:
        """
        Merge new values into the detection config.

        Raises:
            DataValidationError: On unknown keys or invalid values
        """
        unknown = set(changes) - set(DetectionConfig.model_fields)
        if unknown:
            raise DataValidationError(f"Unknown detection config keys: {sorted(unknown)}")
        try:
            self.config = DetectionConfig.model_validate({**self.config.model_dump(), **changes})
        except ValidationError as e:
            raise DataValidationError(f"Invalid detection config: {e}") from e

        logger.info("Updated detection config", keys=sorted(changes))
        return self.get_detection_config()

    @staticmethod
    def _content_age(content: ContentItem, now: Optional[datetime] = None) -> timedelta:
        now = now or utcnow()
        reference = content.reference_date or now
        return now - reference
