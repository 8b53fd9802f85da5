"""
Tests for relevance scoring and ranking.
"""

from datetime import timedelta

import pytest

from factories import NOW, make_content
from personalization.core.errors import DataValidationError
from personalization.models.domain import (
    ContentMetrics,
    ExplicitPreferences,
    InterestEntry,
    InterestProfile,
    RecencyDecay,
    RelevanceBreakdown,
    ScoringWeights,
)
from personalization.services.relevance_scorer import calculate_length_score, normalize_score


def profile_with(**collections) -> InterestProfile:
    """Profile with the given {name: weight} maps per collection."""
    return InterestProfile(
        user_id="u",
        **{
            kind: [InterestEntry(name=name, weight=weight) for name, weight in weights.items()]
            for kind, weights in collections.items()
        },
    )


class TestNormalizeScore:
    """Tests for score normalization."""

    def test_rounds_half_up(self):
        assert normalize_score(0.125) == 13
        assert normalize_score(0.51) == 51

    def test_clamps(self):
        assert normalize_score(-0.2) == 0
        assert normalize_score(1.7) == 100


class TestFactorScores:
    """Tests for the individual factor functions."""

    def test_topic_score_with_match_bonus(self, relevance_scorer):
        """One of two topics matched: mean weight plus half the 0.2 bonus."""
        profile = profile_with(topics={"AI": 0.8})
        content = make_content(topics=["AI", "Machine Learning"])

        assert relevance_scorer.calculate_topic_score(content, profile) == pytest.approx(0.9)

    def test_topic_score_capped(self, relevance_scorer):
        profile = profile_with(topics={"AI": 0.95})

        assert relevance_scorer.calculate_topic_score(make_content(topics=["AI"]), profile) == 1.0

    def test_topic_score_without_matches(self, relevance_scorer):
        profile = profile_with(topics={"AI": 0.8})

        assert relevance_scorer.calculate_topic_score(make_content(topics=["Cooking"]), profile) == 0.0
        assert relevance_scorer.calculate_topic_score(make_content(), profile) == 0.0

    def test_category_score_is_mean_of_matches(self, relevance_scorer):
        profile = profile_with(categories={"tech": 0.8, "science": 0.4})
        content = make_content(categories=["tech", "science", "sports"])

        assert relevance_scorer.calculate_category_score(content, profile) == pytest.approx(0.6)

    def test_source_type_score(self, relevance_scorer):
        profile = profile_with(source_types={"academic": 0.9})

        assert relevance_scorer.calculate_source_type_score(make_content(source_type="academic"), profile) == 0.9
        assert relevance_scorer.calculate_source_type_score(make_content(source_type="blog"), profile) == 0.3
        assert relevance_scorer.calculate_source_type_score(make_content(), profile) == 0.5

    @pytest.mark.parametrize(
        "age,expected",
        [
            (timedelta(hours=2), 1.0),
            (timedelta(days=3), 0.9),
            (timedelta(days=20), 0.7),
            (timedelta(days=61), 0.5),
            (timedelta(days=400), 0.2),
        ],
    )
    def test_recency_tiers(self, relevance_scorer, age, expected):
        content = make_content(age=age)

        assert relevance_scorer.calculate_recency_score(content, RecencyDecay(), NOW) == expected

    def test_recency_without_date(self, relevance_scorer):
        assert relevance_scorer.calculate_recency_score(make_content(), RecencyDecay(), NOW) == 0.5

    def test_quality_score_components(self, relevance_scorer):
        """Engagement ratio, credibility and length each add to the 0.5 base."""
        content = make_content(
            metrics=ContentMetrics(views=100, likes=10, shares=5, comments=2),
            credibility=0.8,
            word_count=500,
        )

        expected = 0.5 + (23 / 100) * 0.3 + 0.8 * 0.2 + 1.0 * 0.1
        assert relevance_scorer.calculate_quality_score(content) == pytest.approx(expected)

    def test_quality_score_baseline(self, relevance_scorer):
        assert relevance_scorer.calculate_quality_score(make_content()) == 0.5

    def test_length_score(self):
        assert calculate_length_score(1000) == 1.0
        assert calculate_length_score(150) == 0.5
        assert calculate_length_score(4500) == 0.5
        assert calculate_length_score(50000) == 0.3


class TestCalculateRelevanceScore:
    """Tests for the composite relevance score."""

    async def test_topic_match_scores_above_fifty(self, relevance_scorer, interest_modeler):
        """A strong topic match with a partial-match bonus lands at 51."""
        await interest_modeler.repository.save(profile_with(topics={"AI": 0.8}))
        content = make_content(topics=["AI", "Machine Learning"])

        result = await relevance_scorer.calculate_relevance_score("u", content, now=NOW)

        assert result.breakdown.topic_score > 0.7
        assert result.total_score > 50
        assert result.total_score == 51
        assert "Strong topic match" in result.factors.positive
        assert result.factors.top_topics[0].name == "AI"

    async def test_old_content_without_signals(self, relevance_scorer):
        result = await relevance_scorer.calculate_relevance_score(
            "u", make_content(age=timedelta(days=61)), now=NOW
        )

        assert result.breakdown.recency_score == 0.5

    async def test_higher_weight_never_lowers_score(self, relevance_scorer, interest_modeler):
        content = make_content(topics=["AI"], categories=["tech"])
        scores = []
        for weight in (0.2, 0.5, 0.9):
            await interest_modeler.repository.save(profile_with(topics={"AI": weight}, categories={"tech": 0.5}))
            result = await relevance_scorer.calculate_relevance_score("u", content, now=NOW)
            scores.append(result.total_score)

        assert scores == sorted(scores)

    @pytest.mark.parametrize(
        "factor",
        ["topic_score", "category_score", "source_type_score", "recency_score", "quality_score"],
    )
    def test_composite_monotonic_in_each_factor(self, relevance_scorer, factor):
        """Raising any single factor never lowers the weighted composite."""
        weights = ScoringWeights()
        base = dict.fromkeys(
            ["topic_score", "category_score", "source_type_score", "recency_score", "quality_score"], 0.5
        )
        composites = []
        for value in (0.0, 0.25, 0.5, 0.75, 1.0):
            breakdown = RelevanceBreakdown(**{**base, factor: value})
            composites.append(relevance_scorer.calculate_weighted_score(breakdown, weights))

        assert composites == sorted(composites)
        assert composites[-1] > composites[0]

    async def test_confidence(self, relevance_scorer, interest_modeler):
        await interest_modeler.repository.save(profile_with(topics={"AI": 0.8}))
        content = make_content(topics=["AI", "Machine Learning"])

        result = await relevance_scorer.calculate_relevance_score("u", content, now=NOW)

        assert result.confidence == pytest.approx(0.5 + 0.9 * 0.3)

    async def test_weight_overrides(self, relevance_scorer):
        """Overrides apply to this call only."""
        content = make_content()
        only_quality = {"topic_match": 0, "category_match": 0, "source_type_match": 0, "recency": 0, "quality": 1}

        result = await relevance_scorer.calculate_relevance_score("u", content, weights=only_quality, now=NOW)
        config = await relevance_scorer.get_scoring_config("u")

        assert result.total_score == 50
        assert config.weights.quality == 0.05

    async def test_invalid_weight_override(self, relevance_scorer):
        with pytest.raises(DataValidationError):
            await relevance_scorer.calculate_relevance_score("u", make_content(), weights={"topic_match": 2.0})

    async def test_missing_content(self, relevance_scorer):
        with pytest.raises(DataValidationError):
            await relevance_scorer.calculate_relevance_score("u", None)


class TestRanking:
    """Tests for ranking and diversification."""

    async def test_sorted_by_score(self, relevance_scorer, interest_modeler):
        await interest_modeler.initialize_profile("u", ExplicitPreferences(topics=["AI"]))
        items = [
            make_content("weak", topics=["Cooking"]),
            make_content("strong", topics=["AI"]),
        ]

        ranked = await relevance_scorer.score_and_rank_content("u", items, now=NOW)

        assert [r.content.id for r in ranked] == ["strong", "weak"]
        assert ranked[0].relevance_score > ranked[1].relevance_score

    async def test_ties_keep_input_order(self, relevance_scorer):
        items = [make_content(f"c{i}") for i in range(4)]

        ranked = await relevance_scorer.score_and_rank_content("u", items, now=NOW)

        assert [r.content.id for r in ranked] == ["c0", "c1", "c2", "c3"]

    async def test_diversification_caps_categories_and_sources(self, relevance_scorer):
        items = [
            make_content("t1", categories=["tech"], source_name="Wire"),
            make_content("t2", categories=["tech"], source_name="Daily"),
            make_content("s1", categories=["science"], source_name="Wire"),
            make_content("s2", categories=["science"], source_name="Wire"),
            make_content("h1", categories=["health"], source_name="Daily"),
            make_content("w1", categories=["world"], source_name="Wire"),
        ]

        ranked = await relevance_scorer.score_and_rank_content(
            "u", items, diversify={"max_per_category": 1}, now=NOW
        )

        # t2/s2 hit the category cap, w1 the default two-per-source cap
        assert [r.content.id for r in ranked] == ["t1", "s1", "h1"]

    async def test_without_diversification_everything_returned(self, relevance_scorer):
        items = [make_content(f"c{i}", categories=["tech"]) for i in range(5)]

        ranked = await relevance_scorer.score_and_rank_content("u", items, now=NOW)

        assert len(ranked) == 5


class TestBatchScoring:
    """Tests for batch scoring with per-item failures."""

    async def test_failed_item_recorded(self, relevance_scorer):
        items = [make_content("a"), None, make_content("b")]

        batch = await relevance_scorer.batch_score_content("u", items, now=NOW)

        assert batch.processed == 2
        assert batch.failed == 1
        assert batch.success is False
        assert [r.content.id for r in batch.results] == ["a", "b"]
        assert batch.failures[0].content_id is None


class TestScoringConfig:
    """Tests for per-user scoring configuration."""

    async def test_defaults_from_settings(self, relevance_scorer):
        config = await relevance_scorer.get_scoring_config("u")

        assert config.weights.topic_match == 0.4
        assert config.recency_decay.older == 0.2

    async def test_update_is_per_user(self, relevance_scorer):
        await relevance_scorer.update_scoring_config("a", weights={"topic_match": 0.6})

        assert (await relevance_scorer.get_scoring_config("a")).weights.topic_match == 0.6
        assert (await relevance_scorer.get_scoring_config("b")).weights.topic_match == 0.4

    async def test_update_recency_decay(self, relevance_scorer):
        config = await relevance_scorer.update_scoring_config("a", recency_decay={"older": 0.1})

        assert config.recency_decay.older == 0.1
        assert config.recency_decay.hourly == 1.0

    @pytest.mark.parametrize(
        "weights",
        [{"topic_match": 1.5}, {"topic_match": -0.1}, {"popularity": 0.2}],
    )
    async def test_invalid_updates_rejected(self, relevance_scorer, weights):
        with pytest.raises(DataValidationError):
            await relevance_scorer.update_scoring_config("a", weights=weights)

        assert (await relevance_scorer.get_scoring_config("a")).weights.topic_match == 0.4

    async def test_reset(self, relevance_scorer):
        await relevance_scorer.update_scoring_config("a", weights={"topic_match": 0.6})

        config = await relevance_scorer.reset_scoring_config("a")

        assert config.weights.topic_match == 0.4
        assert (await relevance_scorer.get_scoring_config("a")).weights.topic_match == 0.4
