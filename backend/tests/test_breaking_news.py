"""
Tests for breaking news detection and notification decisions.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from factories import NOW, make_content
from personalization.core.errors import DataValidationError, DeliveryError
from personalization.models.domain import (
    AnalysisContext,
    BreakingFactorScores,
    BreakingPriority,
    ContentMetrics,
    InterestEntry,
    InterestProfile,
    NotificationChannel,
)
from personalization.repositories import InMemoryNotificationRepository
from personalization.services.breaking_news import BreakingNewsDetector


def breaking_story(content_id: str = "story-1", topics=None, age=timedelta(minutes=5)):
    """A fresh, heavily engaged Reuters story with urgent wording."""
    return make_content(
        content_id,
        title="URGENT ALERT: Breaking turmoil on global markets",
        description="Stock exchanges halted trading this morning.",
        topics=topics or ["Markets"],
        categories=["finance"],
        age=age,
        source_name="Reuters",
        metrics=ContentMetrics(views=5000, likes=1000, shares=200, comments=100),
    )


def markets_fan() -> InterestProfile:
    return InterestProfile(user_id="u", topics=[InterestEntry(name="Markets", weight=0.9)])


class TestFactorScores:
    """Tests for the individual urgency factors."""

    def test_multiple_keywords_get_bonus(self, breaking_news):
        """Three severe keywords plus the multi-match bonus saturate the score."""
        content = make_content(title="URGENT ALERT: Breaking developments downtown")

        score = breaking_news.calculate_keyword_score(content)

        assert score > 0.5
        assert score == 1.0

    def test_single_keyword(self, breaking_news):
        assert breaking_news.calculate_keyword_score(make_content(title="Live coverage")) == pytest.approx(0.2)
        assert breaking_news.calculate_keyword_score(make_content(title="Quiet afternoon")) == 0.0

    def test_keywords_found_in_body(self, breaking_news):
        content = make_content(title="Weather", body="Officials confirmed an earthquake overnight")

        # "confirmed" 0.2, "earthquake" 0.1, two matches bonus 0.2
        assert breaking_news.calculate_keyword_score(content) == pytest.approx(0.5)

    @pytest.mark.parametrize(
        "name,credibility,expected",
        [
            ("Reuters", None, 1.0),
            ("AP News", None, 1.0),
            ("BBC World", None, 0.95),
            ("The Guardian", None, 0.9),
            ("Rapid City Journal", None, 0.5),
            ("Local Herald", 0.7, 0.7),
            (None, None, 0.5),
        ],
    )
    def test_source_score(self, breaking_news, name, credibility, expected):
        content = make_content(source_name=name, credibility=credibility)

        assert breaking_news.calculate_source_score(content) == expected

    @pytest.mark.parametrize(
        "age,expected",
        [
            (timedelta(minutes=10), 1.0),
            (timedelta(minutes=30), 0.8),
            (timedelta(hours=2), 0.6),
            (timedelta(hours=10), 0.3),
            (timedelta(days=2), 0.1),
        ],
    )
    def test_recency_score(self, breaking_news, age, expected):
        assert breaking_news.calculate_recency_score(make_content(age=age), NOW) == expected

    def test_engagement_score_prefers_context(self, breaking_news):
        """Live counters replace the item's own metrics."""
        content = make_content(age=timedelta(hours=1), metrics=ContentMetrics(likes=5))
        context = AnalysisContext(engagement=ContentMetrics(likes=100, shares=50, comments=20))

        assert breaking_news.calculate_engagement_score(content, None, NOW) == pytest.approx(5 / 200)
        assert breaking_news.calculate_engagement_score(content, context, NOW) == 0.6

    def test_engagement_score_without_metrics(self, breaking_news):
        assert breaking_news.calculate_engagement_score(make_content(), None, NOW) == 0.0

    def test_velocity_grows_with_same_topic_items(self, breaking_news):
        for i in range(3):
            breaking_news.analyze_content(make_content(f"c{i}", topics=["Election"]), now=NOW)

        velocity = breaking_news.calculate_velocity_score(make_content("next", topics=["Election"]), NOW)

        assert velocity == 0.6

    def test_velocity_ignores_items_outside_window(self, breaking_news):
        breaking_news.analyze_content(make_content("old", topics=["Election"]), now=NOW - timedelta(hours=2))

        assert breaking_news.calculate_velocity_score(make_content(topics=["Election"]), NOW) == 0.0

    def test_uniqueness(self, breaking_news):
        first = breaking_news.analyze_content(make_content("c1", topics=["Election", "Poll"]), now=NOW)
        second = breaking_news.analyze_content(make_content("c2", topics=["Election", "Poll"]), now=NOW)

        assert first.scores.uniqueness == 1.0
        assert second.scores.uniqueness == 0.0
        assert breaking_news.calculate_uniqueness_score(make_content(), NOW) == 0.5


class TestAnalysis:
    """Tests for composite scoring and priorities."""

    def test_breaking_story(self, breaking_news):
        analysis = breaking_news.analyze_content(breaking_story(), now=NOW)

        assert analysis.scores.keywords == 1.0
        assert analysis.scores.source == 1.0
        assert analysis.composite_score == pytest.approx(0.75)
        assert analysis.is_breaking_news
        assert analysis.priority is BreakingPriority.CRITICAL
        assert "Breaking news keywords present" in analysis.factors
        assert "Escalate to editorial team" in analysis.recommended_actions

    def test_quiet_story(self, breaking_news):
        content = make_content(title="Gardening tips", topics=["Gardening"], age=timedelta(days=3))

        analysis = breaking_news.analyze_content(content, now=NOW)

        assert not analysis.is_breaking_news
        assert analysis.priority is BreakingPriority.NORMAL
        assert "Require manual review before notification" in analysis.recommended_actions

    @pytest.mark.parametrize(
        "composite,scores,expected",
        [
            (0.95, BreakingFactorScores(), BreakingPriority.CRITICAL),
            (0.2, BreakingFactorScores(keywords=0.8), BreakingPriority.CRITICAL),
            (0.75, BreakingFactorScores(), BreakingPriority.HIGH),
            (0.2, BreakingFactorScores(velocity=0.8), BreakingPriority.HIGH),
            (0.55, BreakingFactorScores(), BreakingPriority.MEDIUM),
            (0.3, BreakingFactorScores(), BreakingPriority.NORMAL),
        ],
    )
    def test_determine_priority(self, composite, scores, expected):
        assert BreakingNewsDetector.determine_priority(composite, scores) is expected

    def test_composite_weights(self):
        scores = BreakingFactorScores(velocity=1, engagement=1, keywords=1, source=1, recency=1, uniqueness=1)

        assert BreakingNewsDetector.calculate_composite_score(scores) == pytest.approx(1.0)

    def test_missing_content(self, breaking_news):
        with pytest.raises(DataValidationError):
            breaking_news.analyze_content(None)


class TestNotificationDecisions:
    """Tests for deciding who gets notified."""

    async def test_critical_story_pushes_to_interested_user(self, breaking_news):
        content = breaking_story()
        analysis = breaking_news.analyze_content(content, now=NOW)

        decision = await breaking_news.should_notify_user("u", content, analysis, markets_fan(), NOW)

        assert decision.should_notify
        assert decision.notification_type is NotificationChannel.PUSH
        assert decision.relevance_score == 0.9

    async def test_not_breaking(self, breaking_news):
        content = make_content(title="Gardening tips", age=timedelta(days=3))
        analysis = breaking_news.analyze_content(content, now=NOW)

        decision = await breaking_news.should_notify_user("u", content, analysis, markets_fan(), NOW)

        assert not decision.should_notify
        assert decision.reason == "Content not classified as breaking news"

    async def test_irrelevant_to_user(self, breaking_news):
        content = breaking_story()
        analysis = breaking_news.analyze_content(content, now=NOW)
        profile = InterestProfile(user_id="u", topics=[InterestEntry(name="Gardening", weight=0.9)])

        decision = await breaking_news.should_notify_user("u", content, analysis, profile, NOW)

        assert not decision.should_notify
        assert decision.reason == "Content not relevant to user interests"

    async def test_neutral_relevance_without_profile(self, breaking_news):
        """Without a profile relevance is 0.5, too low for a critical push."""
        content = breaking_story()
        analysis = breaking_news.analyze_content(content, now=NOW)

        decision = await breaking_news.should_notify_user("u", content, analysis, None, NOW)

        assert not decision.should_notify
        assert decision.relevance_score == 0.5
        assert decision.reason == "Relevance score too low for notification"

    async def test_cooldown_per_topic(self, breaking_news):
        content = breaking_story()
        analysis = breaking_news.analyze_content(content, now=NOW)
        await breaking_news.send_notification("u", content, analysis, NotificationChannel.PUSH, NOW)

        soon = NOW + timedelta(minutes=10)
        decision = await breaking_news.should_notify_user("u", breaking_story("story-2"), analysis, markets_fan(), soon)
        assert decision.cooldown_active
        assert not decision.should_notify

        other_topic = breaking_story("story-3", topics=["Weather"])
        assert not await breaking_news.is_notification_cooldown_active("u", other_topic, soon)
        assert not await breaking_news.is_notification_cooldown_active("other-user", content, soon)
        assert not await breaking_news.is_notification_cooldown_active("u", content, NOW + timedelta(minutes=31))


class TestSendNotification:
    """Tests for building, delivering and recording notifications."""

    async def test_notification_recorded(self, breaking_news):
        content = breaking_story()
        analysis = breaking_news.analyze_content(content, now=NOW)

        result = await breaking_news.send_notification("u", content, analysis, NotificationChannel.PUSH, NOW)

        assert result.success
        assert result.notification.title == "🚨 URGENT: " + content.title
        assert result.notification.message == content.description
        assert result.notification.id.startswith("breaking_story-1_")
        assert result.notification.delivered
        assert len(await breaking_news.notification_repository.list_for_user("u")) == 1

    async def test_sender_called(self, settings):
        sender = AsyncMock()
        detector = BreakingNewsDetector(InMemoryNotificationRepository(), sender, settings)
        content = breaking_story()
        analysis = detector.analyze_content(content, now=NOW)

        result = await detector.send_notification("u", content, analysis, NotificationChannel.EMAIL, NOW)

        sender.send.assert_awaited_once_with(result.notification)

    async def test_delivery_failure_not_recorded(self, settings):
        sender = AsyncMock()
        sender.send.side_effect = ConnectionError("gateway down")
        repository = InMemoryNotificationRepository()
        detector = BreakingNewsDetector(repository, sender, settings)
        content = breaking_story()
        analysis = detector.analyze_content(content, now=NOW)

        with pytest.raises(DeliveryError):
            await detector.send_notification("u", content, analysis, NotificationChannel.PUSH, NOW)

        assert await repository.list_for_user("u") == []

    def test_message_truncated(self):
        content = make_content(description="x" * 150)

        message = BreakingNewsDetector.generate_notification_message(content)

        assert message == "x" * 100 + "..."
        assert BreakingNewsDetector.generate_notification_message(make_content()) == "Breaking news update available"


class TestTrackingState:
    """Tests for pruning, statistics and configuration."""

    async def test_prune_tracking_data(self, breaking_news):
        content = breaking_story()
        analysis = breaking_news.analyze_content(content, now=NOW)
        await breaking_news.send_notification("u", content, analysis, NotificationChannel.PUSH, NOW)

        removed = await breaking_news.prune_tracking_data(NOW + timedelta(days=8))

        assert removed == {"tracked_items_removed": 1, "notifications_removed": 1}
        assert breaking_news.content_tracker == {}

    async def test_statistics(self, breaking_news):
        content = breaking_story()
        analysis = breaking_news.analyze_content(content, now=NOW)
        await breaking_news.send_notification("u", content, analysis, NotificationChannel.PUSH, NOW)

        stats = await breaking_news.get_statistics()

        assert stats["total_tracked_topics"] == 1
        assert stats["total_notifications_sent"] == 1
        assert stats["notifications_by_priority"]["critical"] == 1
        assert stats["active_users"] == 1

    async def test_clear(self, breaking_news):
        breaking_news.analyze_content(breaking_story(), now=NOW)

        await breaking_news.clear_tracking_data()

        assert (await breaking_news.get_statistics())["total_tracked_topics"] == 0

    def test_update_detection_config(self, breaking_news):
        config = breaking_news.update_detection_config(breaking_news_threshold=0.5)

        assert config.breaking_news_threshold == 0.5
        with pytest.raises(DataValidationError):
            breaking_news.update_detection_config(breaking_news_threshold=2.0)
        with pytest.raises(DataValidationError):
            breaking_news.update_detection_config(sirens=True)
