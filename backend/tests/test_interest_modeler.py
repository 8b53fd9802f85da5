"""
Tests for interest modeling: seeding, interaction updates, decay and tuning.
"""

from datetime import timedelta

import pytest

from factories import NOW, make_content, make_interaction
from personalization.core.errors import DataValidationError, NotFoundError
from personalization.models.domain import (
    ExplicitPreferences,
    InterestEntry,
    InterestKind,
    InterestProfile,
    InteractionType,
    Polarity,
)


class TestInitializeProfile:
    """Tests for profile creation."""

    async def test_explicit_preferences_seeded(self, interest_modeler):
        """Declared interests start at weight 0.8 with no interactions."""
        profile = await interest_modeler.initialize_profile(
            "user-1",
            ExplicitPreferences(topics=["AI", "Climate"], source_types=["academic"]),
        )

        assert [t.name for t in profile.topics] == ["AI", "Climate"]
        assert all(t.weight == 0.8 for t in profile.topics)
        assert all(t.interaction_count == 0 for t in profile.topics)
        assert profile.source_types[0].name == "academic"
        assert profile.explicit_preferences.topics == ["AI", "Climate"]

    async def test_existing_profile_returned(self, interest_modeler):
        """Initializing twice keeps the first profile."""
        await interest_modeler.initialize_profile("user-1", ExplicitPreferences(topics=["AI"]))
        again = await interest_modeler.initialize_profile("user-1", ExplicitPreferences(topics=["Sports"]))

        assert [t.name for t in again.topics] == ["AI"]

    async def test_empty_user_id_rejected(self, interest_modeler):
        with pytest.raises(DataValidationError):
            await interest_modeler.initialize_profile("")

    async def test_get_profile_creates_lazily(self, interest_modeler):
        """Unknown users get an empty profile on first read."""
        assert await interest_modeler.find_profile("new-user") is None

        profile = await interest_modeler.get_profile("new-user")

        assert profile.user_id == "new-user"
        assert profile.topics == []
        assert await interest_modeler.find_profile("new-user") is not None


class TestUpdateFromInteraction:
    """Tests for learning from single interactions."""

    async def test_new_interests_seeded_by_polarity(self, interest_modeler):
        """Positive interactions seed at 0.6, negative ones at 0.4."""
        liked = make_content("c1", topics=["AI"], categories=["tech"], source_type="blog")
        dismissed = make_content("c2", topics=["Sports"])

        await interest_modeler.update_from_interaction("u", make_interaction("like"), liked, NOW)
        profile = await interest_modeler.update_from_interaction(
            "u", make_interaction("dismiss"), dismissed, NOW
        )

        assert profile.find_interest(InterestKind.TOPICS, "AI").weight == 0.6
        assert profile.find_interest(InterestKind.TOPICS, "AI").interaction_count == 1
        assert profile.find_interest(InterestKind.CATEGORIES, "tech").weight == 0.6
        assert profile.find_interest(InterestKind.SOURCE_TYPES, "blog").weight == 0.6
        assert profile.find_interest(InterestKind.TOPICS, "Sports").weight == 0.4

    async def test_existing_interest_nudged(self, interest_modeler):
        """A repeat interaction moves the weight by learning_rate * strength."""
        content = make_content(topics=["AI"])
        await interest_modeler.update_from_interaction("u", make_interaction("like"), content, NOW)
        profile = await interest_modeler.update_from_interaction("u", make_interaction("like"), content, NOW)

        entry = profile.find_interest(InterestKind.TOPICS, "AI")
        assert entry.weight == pytest.approx(0.6 + 0.1 * 0.7)
        assert entry.interaction_count == 2

    async def test_negative_interaction_lowers_weight(self, interest_modeler):
        content = make_content(topics=["AI"])
        await interest_modeler.initialize_profile("u", ExplicitPreferences(topics=["AI"]))

        profile = await interest_modeler.update_from_interaction("u", make_interaction("dismiss"), content, NOW)

        assert profile.find_interest(InterestKind.TOPICS, "AI").weight == pytest.approx(0.8 - 0.1 * 0.5)

    async def test_weight_clamped_to_one(self, interest_modeler):
        """Weights never leave [0, 1]."""
        await interest_modeler.initialize_profile("u", ExplicitPreferences(topics=["AI"]))
        await interest_modeler.adjust_learning_parameters("u", learning_rate=0.5)
        content = make_content(topics=["AI"])

        for _ in range(5):
            profile = await interest_modeler.update_from_interaction("u", make_interaction("share"), content, NOW)

        assert profile.find_interest(InterestKind.TOPICS, "AI").weight == 1.0

    async def test_topic_matching_is_case_insensitive(self, interest_modeler):
        await interest_modeler.update_from_interaction("u", make_interaction("like"), make_content(topics=["AI"]), NOW)
        profile = await interest_modeler.update_from_interaction(
            "u", make_interaction("like"), make_content(topics=["ai"]), NOW
        )

        assert len(profile.topics) == 1
        assert profile.topics[0].interaction_count == 2

    async def test_source_type_matching_is_case_sensitive(self, interest_modeler):
        await interest_modeler.update_from_interaction(
            "u", make_interaction("like"), make_content(source_type="blog"), NOW
        )
        profile = await interest_modeler.update_from_interaction(
            "u", make_interaction("like"), make_content(source_type="Blog"), NOW
        )

        assert [s.name for s in profile.source_types] == ["blog", "Blog"]

    async def test_missing_content_rejected(self, interest_modeler):
        with pytest.raises(DataValidationError):
            await interest_modeler.update_from_interaction("u", make_interaction(), None, NOW)


class TestDecay:
    """Tests for weekly interest decay."""

    def _profile(self, age_days: float, weight: float = 0.8) -> InterestProfile:
        return InterestProfile(
            user_id="u",
            topics=[InterestEntry(name="AI", weight=weight, last_updated=NOW - timedelta(days=age_days))],
        )

    def test_no_decay_within_a_week(self):
        profile = self._profile(age_days=7)

        assert profile.apply_decay(NOW) is False
        assert profile.topics[0].weight == 0.8

    def test_decay_per_elapsed_week(self):
        """15 days is two whole weeks of decay."""
        profile = self._profile(age_days=15)

        assert profile.apply_decay(NOW) is True
        assert profile.topics[0].weight == pytest.approx(0.8 * 0.95 ** 2)

    def test_decay_is_idempotent(self):
        """Repeated passes at the same time do not compound."""
        profile = self._profile(age_days=15)
        profile.apply_decay(NOW)
        once = profile.topics[0].weight

        assert profile.apply_decay(NOW) is False
        assert profile.topics[0].weight == once

    def test_decay_applies_only_new_weeks(self):
        profile = self._profile(age_days=15)
        profile.apply_decay(NOW)

        profile.apply_decay(NOW + timedelta(days=7))

        assert profile.topics[0].weight == pytest.approx(0.8 * 0.95 ** 3)

    def test_decay_floor(self):
        profile = self._profile(age_days=7 * 60, weight=0.5)

        profile.apply_decay(NOW)

        assert profile.topics[0].weight == 0.1

    async def test_apply_decay_to_all_counts_changed_profiles(self, interest_modeler):
        await interest_modeler.repository.save(self._profile(age_days=15))
        fresh = self._profile(age_days=1)
        fresh.user_id = "fresh"
        await interest_modeler.repository.save(fresh)

        changed = await interest_modeler.apply_decay_to_all(NOW)

        assert changed == 1
        stored = await interest_modeler.find_profile("u")
        assert stored.topics[0].weight == pytest.approx(0.8 * 0.95 ** 2)


class TestPreferencesAndParameters:
    """Tests for explicit preferences, summaries and parameter tuning."""

    async def test_update_explicit_preferences_raises_existing_weight(self, interest_modeler):
        await interest_modeler.update_from_interaction(
            "u", make_interaction("dismiss"), make_content(topics=["AI"]), NOW
        )

        profile = await interest_modeler.update_explicit_preferences("u", {"topics": ["AI", "Space"]})

        assert profile.find_interest(InterestKind.TOPICS, "AI").weight == 0.8
        assert profile.find_interest(InterestKind.TOPICS, "Space").weight == 0.8
        assert profile.explicit_preferences.topics == ["AI", "Space"]

    async def test_update_explicit_preferences_rejects_unknown_keys(self, interest_modeler):
        with pytest.raises(DataValidationError):
            await interest_modeler.update_explicit_preferences("u", {"authors": ["someone"]})

    async def test_update_explicit_preferences_rejects_non_list(self, interest_modeler):
        with pytest.raises(DataValidationError):
            await interest_modeler.update_explicit_preferences("u", {"topics": "AI"})

    async def test_interest_summary_limits(self, interest_modeler):
        """Summaries keep the top 10 topics, sorted by weight."""
        topics = [f"topic-{i}" for i in range(12)]
        await interest_modeler.initialize_profile("u", ExplicitPreferences(topics=topics))
        await interest_modeler.update_from_interaction(
            "u", make_interaction("share"), make_content(topics=["topic-11"]), NOW
        )

        summary = await interest_modeler.get_interest_summary("u")

        assert len(summary.top_topics) == 10
        assert summary.top_topics[0].name == "topic-11"
        assert summary.profile_stats.total_topics == 12

    async def test_learning_rate_clamped(self, interest_modeler):
        """A learning rate of 0.8 is clamped to the 0.5 upper bound."""
        await interest_modeler.initialize_profile("u")

        profile = await interest_modeler.adjust_learning_parameters("u", learning_rate=0.8, decay_rate=0.5)

        assert profile.learning_rate == 0.5
        assert profile.decay_rate == 0.8

    async def test_adjust_unknown_user(self, interest_modeler):
        with pytest.raises(NotFoundError):
            await interest_modeler.adjust_learning_parameters("missing", learning_rate=0.2)

    async def test_reset_keeps_explicit_preferences(self, interest_modeler):
        await interest_modeler.initialize_profile("u", ExplicitPreferences(topics=["AI"]))
        await interest_modeler.update_from_interaction(
            "u", make_interaction("like"), make_content(topics=["Sports"], categories=["games"]), NOW
        )

        profile = await interest_modeler.reset_profile("u")

        assert [t.name for t in profile.topics] == ["AI"]
        assert profile.categories == []

    async def test_reset_unknown_user(self, interest_modeler):
        with pytest.raises(NotFoundError):
            await interest_modeler.reset_profile("missing")


class TestInteractionType:
    """Tests for interaction classification."""

    def test_negative_types(self, interest_modeler):
        for value in ("dismiss", "dislike", "report"):
            assert interest_modeler.get_interaction_type(value) is Polarity.NEGATIVE

    def test_unknown_type_is_positive(self, interest_modeler):
        assert InteractionType("bookmark") is InteractionType.UNKNOWN
        assert interest_modeler.get_interaction_type("bookmark") is Polarity.POSITIVE

    def test_parsing_ignores_case(self):
        assert InteractionType("SHARE") is InteractionType.SHARE
